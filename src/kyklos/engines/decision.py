"""
Decision engine combining the window schedule, the grace period and pause.
"""

import logging
from dataclasses import replace
from datetime import datetime, timezone

from ..exceptions import InternalComputeError
from .hysteresis import apply_grace_period
from .schedule import compute_schedule
from .types import EngineInput, EngineOutput, REASON_PAUSED

LOG = logging.getLogger(__name__)

# ============================================================================
# Decision Engine
# ============================================================================

class DecisionEngine:
    """Stateless time-window decision engine"""

    def resolve(self, engine_input: EngineInput) -> EngineOutput:
        """Compute the effective replica count for ``engine_input``.

        Precedence: holiday override, then the last declared matching window,
        then the default; the grace period may then hold a scale-down. A
        paused input goes through exactly the same computation and only has
        its reason replaced.

        Raises:
            ConfigurationError: the timezone cannot be resolved.
            InternalComputeError: the output violates the engine invariants.
        """
        output = compute_schedule(engine_input)
        output = apply_grace_period(engine_input, output)

        if engine_input.pause:
            output = replace(output, reason=REASON_PAUSED)

        self.validate_decision(engine_input, output)
        return output

    def validate_decision(self, engine_input: EngineInput, output: EngineOutput):
        """Check the invariants every decision must satisfy"""
        now = engine_input.now
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)

        if output.effective_replicas < 0:
            raise InternalComputeError(
                "effective replicas must not be negative",
                {"effective_replicas": output.effective_replicas, "window": output.current_window},
            )
        if output.next_boundary <= now:
            raise InternalComputeError(
                "next boundary must be after the current instant",
                {"now": now.isoformat(), "next_boundary": output.next_boundary.isoformat()},
            )


def compute_next_boundary(engine_input: EngineInput) -> datetime:
    """The next instant at which the decision for ``engine_input`` could change"""
    return DecisionEngine().resolve(engine_input).next_boundary
