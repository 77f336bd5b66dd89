"""
Utilities for working with TimeWindowScaler resources.
"""

from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional, Sequence

# ============================================================================
# Timestamps
# ============================================================================

def format_time(value: Optional[datetime]) -> Optional[str]:
    """Render an instant the way Kubernetes stores metav1.Time"""
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_time(value: Any) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp (or pass a datetime through) as an aware UTC datetime"""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)

# ============================================================================
# Finalizers
# ============================================================================

def has_finalizer(finalizers: Optional[Sequence[str]], finalizer: str) -> bool:
    return finalizer in (finalizers or ())


def add_finalizer(finalizers: Optional[Sequence[str]], finalizer: str) -> List[str]:
    """New finalizer list with ``finalizer`` appended once"""
    current = list(finalizers or ())
    if finalizer not in current:
        current.append(finalizer)
    return current


def remove_finalizer(finalizers: Optional[Sequence[str]], finalizer: str) -> List[str]:
    """New finalizer list without ``finalizer``"""
    return [f for f in (finalizers or ()) if f != finalizer]

# ============================================================================
# Requeue scheduling
# ============================================================================

def compute_requeue_delay(next_boundary: datetime, now: datetime,
                          lead_seconds: float, min_seconds: float) -> float:
    """Seconds to sleep so we wake ``lead_seconds`` ahead of ``next_boundary``.

    Clamped to ``min_seconds`` so imminent or already-passed boundaries (clock
    skew) do not turn into a busy loop.
    """
    delay = (next_boundary - now) - timedelta(seconds=lead_seconds)
    return max(delay.total_seconds(), float(min_seconds))
