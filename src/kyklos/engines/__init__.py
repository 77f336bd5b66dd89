"""
Pure scheduling logic, free of Kubernetes dependencies.
"""

from .clock import Clock, FakeClock, RealClock
from .decision import DecisionEngine, compute_next_boundary
from .types import EngineInput, EngineOutput, HolidayMode, WindowSpec

__all__ = [
    "Clock",
    "FakeClock",
    "RealClock",
    "DecisionEngine",
    "compute_next_boundary",
    "EngineInput",
    "EngineOutput",
    "HolidayMode",
    "WindowSpec",
]
