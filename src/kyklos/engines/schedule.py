"""
Time window engine.

Turns the current instant plus a list of local time-of-day windows into a
replica count and the next instant at which that answer could change. All
wall-clock arithmetic happens on calendar dates in the configured IANA
zone and is converted to UTC only when instants are compared, so daylight
saving transitions move window boundaries in UTC while keeping their local
meaning.
"""

import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Iterable, Optional, Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from ..exceptions import ConfigurationError
from .types import (
    EngineInput, EngineOutput, HolidayMode, ResolvedWindow, WindowSpec,
    LABEL_DEFAULT, LABEL_HOLIDAY_CLOSED, LABEL_HOLIDAY_OPEN,
    REASON_HOLIDAY_CLOSED, REASON_HOLIDAY_OPEN, REASON_IN_WINDOW,
    REASON_NO_MATCHING_WINDOW,
)

LOG = logging.getLogger(__name__)

ONE_DAY = timedelta(days=1)

# ============================================================================
# Parsing
# ============================================================================

def load_timezone(name: str) -> ZoneInfo:
    """Resolve an IANA timezone name"""
    if not name:
        raise ConfigurationError("timezone must not be empty")
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError) as e:
        raise ConfigurationError(f"invalid timezone {name}", {"error": e})


def parse_hhmm(value: str) -> Tuple[int, int]:
    """Parse a 24-hour "HH:MM" string into (hour, minute)"""
    parts = str(value).split(":")
    if len(parts) != 2:
        raise ConfigurationError(f"invalid time format: {value}")

    hour_str, minute_str = parts
    # ASCII digits only; str.isdigit also accepts superscripts int() rejects
    if not all(part.isascii() and part.isdigit() for part in parts):
        raise ConfigurationError(f"invalid time format: {value}")

    hour, minute = int(hour_str), int(minute_str)
    if hour > 23:
        raise ConfigurationError(f"invalid hour: {hour_str}")
    if minute > 59:
        raise ConfigurationError(f"invalid minute: {minute_str}")
    return hour, minute


def wall_clock(day: date, hhmm: Tuple[int, int], tz: ZoneInfo) -> datetime:
    """The UTC instant of a local wall-clock time on a calendar date.

    Nonexistent local times (spring-forward gap) resolve with the offset in
    force before the transition; ambiguous ones (fall-back) resolve to their
    first occurrence.
    """
    local = datetime.combine(day, time(hhmm[0], hhmm[1]), tzinfo=tz)
    return local.astimezone(timezone.utc)


def next_local_midnight(now_local: datetime, tz: ZoneInfo) -> datetime:
    return wall_clock(now_local.date() + ONE_DAY, (0, 0), tz)

# ============================================================================
# Window resolution
# ============================================================================

def is_day_match(days: Iterable[str], now_local: datetime) -> bool:
    """Check the window's weekday restriction; no restriction matches every day"""
    days = list(days or ())
    if not days:
        return True
    today = now_local.strftime("%A").lower()
    return any(day.lower() == today for day in days)


def resolve_window(spec: WindowSpec, now_local: datetime, tz: ZoneInfo) -> ResolvedWindow:
    """Anchor a window to concrete instants around ``now_local``.

    A window whose end is not after its start crosses midnight: while we are
    still in the early-morning part its start belongs to yesterday, otherwise
    its end belongs to tomorrow.
    """
    start_hhmm = parse_hhmm(spec.start)
    end_hhmm = parse_hhmm(spec.end)

    today = now_local.date()
    start_day = end_day = today
    if end_hhmm <= start_hhmm:
        if (now_local.hour, now_local.minute) < end_hhmm:
            start_day = today - ONE_DAY
        else:
            end_day = today + ONE_DAY

    return ResolvedWindow(
        spec=spec,
        start=wall_clock(start_day, start_hhmm, tz),
        end=wall_clock(end_day, end_hhmm, tz),
        start_hhmm=start_hhmm,
        end_hhmm=end_hhmm,
    )


def window_boundary(now: datetime, window: ResolvedWindow, tz: ZoneInfo) -> datetime:
    """The next start or end of ``window`` after ``now``"""
    if window.contains(now):
        return window.end
    if now < window.start:
        return window.start
    # Past today's occurrence, the next one starts tomorrow
    start_local = window.start.astimezone(tz)
    return wall_clock(start_local.date() + ONE_DAY, window.start_hhmm, tz)

# ============================================================================
# Engine
# ============================================================================

def holiday_decision(engine_input: EngineInput, now_local: datetime,
                     tz: ZoneInfo) -> Optional[EngineOutput]:
    """Override normal evaluation on holidays, or None to fall through"""
    if not engine_input.is_holiday:
        return None

    if engine_input.holiday_mode == HolidayMode.TREAT_AS_CLOSED:
        return EngineOutput(
            effective_replicas=0,
            next_boundary=next_local_midnight(now_local, tz),
            current_window=LABEL_HOLIDAY_CLOSED,
            reason=REASON_HOLIDAY_CLOSED,
        )

    if engine_input.holiday_mode == HolidayMode.TREAT_AS_OPEN:
        # Raw configured counts; weekday restrictions are not consulted
        max_replicas = max(
            [engine_input.default_replicas] + [w.replicas for w in engine_input.windows]
        )
        return EngineOutput(
            effective_replicas=max_replicas,
            next_boundary=next_local_midnight(now_local, tz),
            current_window=LABEL_HOLIDAY_OPEN,
            reason=REASON_HOLIDAY_OPEN,
        )

    return None


def evaluate_windows(engine_input: EngineInput, now: datetime, now_local: datetime,
                     tz: ZoneInfo) -> EngineOutput:
    """Pick the active window and the nearest future boundary.

    Windows have static declaration-order priority: when several match, the
    one declared last wins. The boundary search covers every window that
    applies today, active or not, and never looks past the next local
    midnight since weekday filters and holidays can flip there.
    """
    active: Optional[ResolvedWindow] = None
    next_boundary = next_local_midnight(now_local, tz)

    for spec in reversed(engine_input.windows):
        if not is_day_match(spec.days, now_local):
            continue

        try:
            window = resolve_window(spec, now_local, tz)
        except ConfigurationError as e:
            LOG.warning(f"Skipping window '{spec.name or spec.start + '-' + spec.end}': {e}")
            continue

        if active is None and window.contains(now):
            active = window

        boundary = window_boundary(now, window, tz)
        if now < boundary < next_boundary:
            next_boundary = boundary

    if active is not None:
        return EngineOutput(
            effective_replicas=active.spec.replicas,
            next_boundary=next_boundary,
            current_window=active.label,
            reason=REASON_IN_WINDOW,
        )

    return EngineOutput(
        effective_replicas=engine_input.default_replicas,
        next_boundary=next_boundary,
        current_window=LABEL_DEFAULT,
        reason=REASON_NO_MATCHING_WINDOW,
    )


def compute_schedule(engine_input: EngineInput) -> EngineOutput:
    """Window and holiday decision for ``engine_input``, ignoring pause and grace period"""
    tz = load_timezone(engine_input.timezone)

    now = engine_input.now
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    now = now.astimezone(timezone.utc)
    now_local = now.astimezone(tz)

    output = holiday_decision(engine_input, now_local, tz)
    if output is not None:
        return output
    return evaluate_windows(engine_input, now, now_local, tz)
