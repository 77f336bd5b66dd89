"""
Scale-down grace period.

Holds the previously observed replica count for a while after a scale
action, so a target hovering near a window boundary (or a reconciler woken
several times in quick succession) does not flap. Scale-ups are never held.
"""

import logging
from dataclasses import replace
from datetime import datetime, timedelta, timezone
from typing import Optional

from .types import EngineInput, EngineOutput, LABEL_GRACE_PERIOD, REASON_GRACE_PERIOD_ACTIVE

LOG = logging.getLogger(__name__)


def _as_utc(instant: datetime) -> datetime:
    if instant.tzinfo is None:
        return instant.replace(tzinfo=timezone.utc)
    return instant.astimezone(timezone.utc)


def grace_period_expiry(engine_input: EngineInput) -> Optional[datetime]:
    """When the grace period started by the last scale action ends, if known"""
    if engine_input.grace_period_seconds <= 0 or engine_input.last_scale_time is None:
        return None
    return _as_utc(engine_input.last_scale_time) + timedelta(seconds=engine_input.grace_period_seconds)


def apply_grace_period(engine_input: EngineInput, output: EngineOutput) -> EngineOutput:
    """Defer a computed scale-down while the grace period is running.

    While held, the decision also wakes up no later than the grace period
    expiry so the deferred scale-down is applied on time.
    """
    if output.effective_replicas >= engine_input.current_replicas:
        return output

    expiry = grace_period_expiry(engine_input)
    if expiry is None:
        return output

    now = _as_utc(engine_input.now)
    if now >= expiry:
        return output

    LOG.debug(
        f"Holding {engine_input.current_replicas} replicas until {expiry.isoformat()} "
        f"(would scale down to {output.effective_replicas}, window {output.current_window})"
    )
    return replace(
        output,
        effective_replicas=engine_input.current_replicas,
        next_boundary=min(output.next_boundary, expiry),
        current_window=LABEL_GRACE_PERIOD,
        reason=REASON_GRACE_PERIOD_ACTIVE,
    )
