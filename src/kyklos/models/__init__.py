"""
Resource models for the Kyklos operator.
"""

from .timewindowscaler_crd import (
    Condition,
    TargetRef,
    TimeWindow,
    TimeWindowScaler,
    TimeWindowScalerSpec,
    TimeWindowScalerStatus,
)

__all__ = [
    "Condition",
    "TargetRef",
    "TimeWindow",
    "TimeWindowScaler",
    "TimeWindowScalerSpec",
    "TimeWindowScalerStatus",
]
