"""
Value types flowing in and out of the decision engine.
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Optional, Tuple


class HolidayMode(Enum):
    """How a holiday overrides normal window evaluation"""
    IGNORE = "ignore"
    TREAT_AS_CLOSED = "treat-as-closed"
    TREAT_AS_OPEN = "treat-as-open"


# Reason codes
REASON_IN_WINDOW = "in-window"
REASON_NO_MATCHING_WINDOW = "no-matching-window"
REASON_HOLIDAY_CLOSED = "holiday-closed"
REASON_HOLIDAY_OPEN = "holiday-open"
REASON_PAUSED = "paused"
REASON_GRACE_PERIOD_ACTIVE = "grace-period-active"

# Window label sentinels
LABEL_DEFAULT = "Default"
LABEL_HOLIDAY_CLOSED = "Holiday-Closed"
LABEL_HOLIDAY_OPEN = "Holiday-Open"
LABEL_GRACE_PERIOD = "Grace-Period"

HOLIDAY_LABELS = (LABEL_HOLIDAY_CLOSED, LABEL_HOLIDAY_OPEN)


@dataclass(frozen=True)
class WindowSpec:
    """A configured time-of-day interval, local to the scaler's timezone"""
    start: str  # HH:MM
    end: str  # HH:MM
    replicas: int
    name: str = ""
    days: Tuple[str, ...] = ()

    def __post_init__(self):
        # Accept lists straight from the resource body
        if not isinstance(self.days, tuple):
            object.__setattr__(self, "days", tuple(self.days or ()))


@dataclass(frozen=True)
class ResolvedWindow:
    """A WindowSpec anchored to concrete UTC instants for the evaluation day.

    ``end`` lies on the following calendar day (or ``start`` on the previous
    one) when the window crosses midnight.
    """
    spec: WindowSpec
    start: datetime
    end: datetime
    start_hhmm: Tuple[int, int]
    end_hhmm: Tuple[int, int]

    def contains(self, instant: datetime) -> bool:
        # start inclusive, end exclusive
        return self.start <= instant < self.end

    @property
    def label(self) -> str:
        if self.spec.name:
            return self.spec.name
        return "%02d:%02d-%02d:%02d" % (self.start_hhmm + self.end_hhmm)


@dataclass(frozen=True)
class EngineInput:
    """Everything a single scaling decision depends on"""
    now: datetime
    timezone: str
    windows: Tuple[WindowSpec, ...] = ()
    default_replicas: int = 0
    holiday_mode: HolidayMode = HolidayMode.IGNORE
    is_holiday: bool = False
    pause: bool = False
    grace_period_seconds: int = 0
    last_scale_time: Optional[datetime] = None
    current_replicas: int = 0

    def __post_init__(self):
        if not isinstance(self.windows, tuple):
            object.__setattr__(self, "windows", tuple(self.windows or ()))
        if isinstance(self.holiday_mode, str):
            object.__setattr__(self, "holiday_mode", HolidayMode(self.holiday_mode))


@dataclass(frozen=True)
class EngineOutput:
    """A point-in-time scaling decision"""
    effective_replicas: int
    next_boundary: datetime
    current_window: str
    reason: str
