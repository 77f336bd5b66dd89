"""
Unit tests for the time window engine.
"""

from datetime import datetime, timedelta, timezone

import pytest

from kyklos.engines.decision import DecisionEngine, compute_next_boundary
from kyklos.engines.schedule import (
    compute_schedule, is_day_match, load_timezone, parse_hhmm, resolve_window,
)
from kyklos.engines.types import EngineInput, HolidayMode, WindowSpec
from kyklos.exceptions import ConfigurationError


def utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


BUSINESS_HOURS = WindowSpec(start="09:00", end="17:00", replicas=5, name="BusinessHours")
NIGHT_SHIFT = WindowSpec(start="22:00", end="02:00", replicas=3, name="NightShift")


SCHEDULE_CASES = [
    pytest.param(
        dict(now=utc(2025, 3, 10, 10, 0), timezone="UTC", windows=[BUSINESS_HOURS], default_replicas=1),
        5, "BusinessHours", "in-window", utc(2025, 3, 10, 17, 0),
        id="business-hours",
    ),
    pytest.param(
        dict(now=utc(2025, 3, 10, 18, 0), timezone="UTC", windows=[BUSINESS_HOURS], default_replicas=2),
        2, "Default", "no-matching-window", utc(2025, 3, 11, 0, 0),
        id="outside-window-uses-default",
    ),
    pytest.param(
        dict(now=utc(2025, 3, 10, 23, 0), timezone="UTC", windows=[NIGHT_SHIFT], default_replicas=1),
        3, "NightShift", "in-window", utc(2025, 3, 11, 0, 0),
        id="cross-midnight-before-midnight",
    ),
    pytest.param(
        dict(now=utc(2025, 3, 11, 1, 0), timezone="UTC", windows=[NIGHT_SHIFT], default_replicas=1),
        3, "NightShift", "in-window", utc(2025, 3, 11, 2, 0),
        id="cross-midnight-after-midnight",
    ),
    pytest.param(
        dict(now=utc(2025, 3, 10, 10, 0), timezone="UTC", windows=[NIGHT_SHIFT], default_replicas=1),
        1, "Default", "no-matching-window", utc(2025, 3, 10, 22, 0),
        id="cross-midnight-inactive",
    ),
    pytest.param(
        dict(
            now=utc(2025, 3, 10, 14, 0), timezone="UTC", default_replicas=1,
            windows=[BUSINESS_HOURS, WindowSpec(start="12:00", end="15:00", replicas=10, name="PeakHours")],
        ),
        10, "PeakHours", "in-window", utc(2025, 3, 10, 15, 0),
        id="overlapping-last-declared-wins",
    ),
    pytest.param(
        dict(
            now=utc(2025, 3, 10, 14, 0), timezone="UTC", default_replicas=1,
            windows=[WindowSpec(start="12:00", end="15:00", replicas=10, name="PeakHours"), BUSINESS_HOURS],
        ),
        5, "BusinessHours", "in-window", utc(2025, 3, 10, 15, 0),
        id="overlapping-order-matters",
    ),
    pytest.param(
        dict(
            now=utc(2025, 3, 9, 7, 30), timezone="America/New_York", default_replicas=1,
            windows=[WindowSpec(start="02:00", end="04:00", replicas=4, name="DSTWindow")],
        ),
        4, "DSTWindow", "in-window", utc(2025, 3, 9, 8, 0),
        id="dst-spring-forward",
    ),
    pytest.param(
        dict(
            now=utc(2025, 11, 2, 6, 30), timezone="America/New_York", default_replicas=1,
            windows=[WindowSpec(start="01:00", end="03:00", replicas=4, name="DSTWindow")],
        ),
        4, "DSTWindow", "in-window", utc(2025, 11, 2, 8, 0),
        id="dst-fall-back",
    ),
    pytest.param(
        dict(
            now=utc(2025, 3, 10, 4, 30), timezone="Asia/Kolkata", default_replicas=2,
            windows=[WindowSpec(start="09:30", end="17:30", replicas=6, name="ISTBusinessHours")],
        ),
        6, "ISTBusinessHours", "in-window", utc(2025, 3, 10, 12, 0),
        id="half-hour-offset",
    ),
]


class TestComputeSchedule:
    """Test cases for window evaluation."""

    @pytest.mark.parametrize("kwargs, replicas, window, reason, boundary", SCHEDULE_CASES)
    def test_schedule(self, kwargs, replicas, window, reason, boundary):
        output = DecisionEngine().resolve(EngineInput(**kwargs))

        assert output.effective_replicas == replicas
        assert output.current_window == window
        assert output.reason == reason
        assert output.next_boundary == boundary

    def test_day_restriction_matches(self):
        window = WindowSpec(start="09:00", end="17:00", replicas=5, name="MWF",
                            days=["Monday", "Wednesday", "Friday"])
        output = compute_schedule(EngineInput(now=utc(2025, 3, 10, 10, 0), timezone="UTC",
                                              windows=[window], default_replicas=1))

        assert output.effective_replicas == 5
        assert output.current_window == "MWF"

    def test_day_restriction_no_match(self):
        window = WindowSpec(start="09:00", end="17:00", replicas=5, name="MWF",
                            days=["Monday", "Wednesday", "Friday"])
        # Tuesday
        output = compute_schedule(EngineInput(now=utc(2025, 3, 11, 10, 0), timezone="UTC",
                                              windows=[window], default_replicas=1))

        assert output.effective_replicas == 1
        assert output.current_window == "Default"
        assert output.reason == "no-matching-window"
        assert output.next_boundary == utc(2025, 3, 12, 0, 0)

    def test_day_restriction_uses_local_weekday(self):
        # Monday 23:30 UTC is already Tuesday in Tokyo
        window = WindowSpec(start="08:00", end="09:00", replicas=7, name="TuesdayMorning", days=["tuesday"])
        output = compute_schedule(EngineInput(now=utc(2025, 3, 10, 23, 30), timezone="Asia/Tokyo",
                                              windows=[window], default_replicas=1))

        assert output.effective_replicas == 7
        assert output.current_window == "TuesdayMorning"

    def test_unnamed_window_label(self):
        window = WindowSpec(start="09:00", end="17:00", replicas=5)
        output = compute_schedule(EngineInput(now=utc(2025, 3, 10, 10, 0), timezone="UTC",
                                              windows=[window], default_replicas=1))

        assert output.current_window == "09:00-17:00"

    def test_start_is_inclusive_end_is_exclusive(self):
        engine_input = dict(timezone="UTC", windows=[BUSINESS_HOURS], default_replicas=1)

        at_start = compute_schedule(EngineInput(now=utc(2025, 3, 10, 9, 0), **engine_input))
        at_end = compute_schedule(EngineInput(now=utc(2025, 3, 10, 17, 0), **engine_input))

        assert at_start.effective_replicas == 5
        assert at_end.effective_replicas == 1
        assert at_end.current_window == "Default"

    def test_next_boundary_is_nearest_start_of_later_window(self):
        windows = [BUSINESS_HOURS, WindowSpec(start="12:00", end="13:00", replicas=8, name="Lunch")]
        output = compute_schedule(EngineInput(now=utc(2025, 3, 10, 10, 0), timezone="UTC",
                                              windows=windows, default_replicas=1))

        assert output.current_window == "BusinessHours"
        assert output.next_boundary == utc(2025, 3, 10, 12, 0)

    def test_no_windows(self):
        output = compute_schedule(EngineInput(now=utc(2025, 3, 10, 10, 0), timezone="UTC", default_replicas=4))

        assert output.effective_replicas == 4
        assert output.current_window == "Default"
        assert output.next_boundary == utc(2025, 3, 11, 0, 0)

    def test_malformed_window_is_skipped(self):
        windows = [BUSINESS_HOURS, WindowSpec(start="9AM", end="5PM", replicas=50, name="Broken")]
        output = compute_schedule(EngineInput(now=utc(2025, 3, 10, 10, 0), timezone="UTC",
                                              windows=windows, default_replicas=1))

        assert output.effective_replicas == 5
        assert output.current_window == "BusinessHours"

    def test_superscript_digits_skip_only_that_window(self):
        windows = [BUSINESS_HOURS, WindowSpec(start="\u00b2:00", end="17:00", replicas=50, name="Broken")]
        output = compute_schedule(EngineInput(now=utc(2025, 3, 10, 10, 0), timezone="UTC",
                                              windows=windows, default_replicas=1))

        assert output.effective_replicas == 5
        assert output.current_window == "BusinessHours"

    def test_naive_now_is_utc(self):
        output = compute_schedule(EngineInput(now=datetime(2025, 3, 10, 10, 0), timezone="UTC",
                                              windows=[BUSINESS_HOURS], default_replicas=1))

        assert output.effective_replicas == 5
        assert output.next_boundary == utc(2025, 3, 10, 17, 0)

    def test_deterministic(self):
        engine_input = EngineInput(now=utc(2025, 3, 10, 14, 0), timezone="Europe/Berlin",
                                   windows=[BUSINESS_HOURS, NIGHT_SHIFT], default_replicas=2)

        assert compute_schedule(engine_input) == compute_schedule(engine_input)

    def test_invalid_timezone(self):
        with pytest.raises(ConfigurationError):
            compute_schedule(EngineInput(now=utc(2025, 3, 10, 10, 0), timezone="Invalid/Timezone"))

    def test_empty_timezone(self):
        with pytest.raises(ConfigurationError):
            compute_schedule(EngineInput(now=utc(2025, 3, 10, 10, 0), timezone=""))


class TestHolidays:
    """Test cases for holiday overrides."""

    CHRISTMAS = utc(2025, 12, 25, 10, 0)

    def test_treat_as_closed(self):
        output = compute_schedule(EngineInput(
            now=self.CHRISTMAS, timezone="UTC", windows=[BUSINESS_HOURS], default_replicas=1,
            holiday_mode=HolidayMode.TREAT_AS_CLOSED, is_holiday=True,
        ))

        assert output.effective_replicas == 0
        assert output.current_window == "Holiday-Closed"
        assert output.reason == "holiday-closed"
        assert output.next_boundary == utc(2025, 12, 26, 0, 0)

    def test_treat_as_open_takes_maximum(self):
        windows = [BUSINESS_HOURS, WindowSpec(start="18:00", end="22:00", replicas=8, name="Evening")]
        output = compute_schedule(EngineInput(
            now=self.CHRISTMAS, timezone="UTC", windows=windows, default_replicas=1,
            holiday_mode="treat-as-open", is_holiday=True,
        ))

        assert output.effective_replicas == 8
        assert output.current_window == "Holiday-Open"
        assert output.reason == "holiday-open"
        assert output.next_boundary == utc(2025, 12, 26, 0, 0)

    def test_treat_as_open_without_windows(self):
        output = compute_schedule(EngineInput(
            now=self.CHRISTMAS, timezone="UTC", default_replicas=3,
            holiday_mode=HolidayMode.TREAT_AS_OPEN, is_holiday=True,
        ))

        assert output.effective_replicas == 3

    def test_treat_as_open_ignores_day_filters(self):
        # Christmas 2025 is a Thursday
        windows = [WindowSpec(start="09:00", end="17:00", replicas=9, name="Weekend", days=["Saturday"])]
        output = compute_schedule(EngineInput(
            now=self.CHRISTMAS, timezone="UTC", windows=windows, default_replicas=1,
            holiday_mode=HolidayMode.TREAT_AS_OPEN, is_holiday=True,
        ))

        assert output.effective_replicas == 9

    def test_ignore_mode_evaluates_windows(self):
        output = compute_schedule(EngineInput(
            now=self.CHRISTMAS, timezone="UTC", windows=[BUSINESS_HOURS], default_replicas=1,
            holiday_mode=HolidayMode.IGNORE, is_holiday=True,
        ))

        assert output.effective_replicas == 5
        assert output.reason == "in-window"

    def test_not_a_holiday(self):
        output = compute_schedule(EngineInput(
            now=self.CHRISTMAS, timezone="UTC", windows=[BUSINESS_HOURS], default_replicas=1,
            holiday_mode=HolidayMode.TREAT_AS_CLOSED, is_holiday=False,
        ))

        assert output.effective_replicas == 5

    def test_holiday_boundary_is_local_midnight(self):
        output = compute_schedule(EngineInput(
            now=self.CHRISTMAS, timezone="Asia/Kolkata", default_replicas=1,
            holiday_mode=HolidayMode.TREAT_AS_CLOSED, is_holiday=True,
        ))

        # 2025-12-26 00:00 IST
        assert output.next_boundary == utc(2025, 12, 25, 18, 30)


class TestPause:
    """Test cases for paused decisions."""

    def test_pause_computes_but_marks_paused(self):
        output = DecisionEngine().resolve(EngineInput(
            now=utc(2025, 3, 10, 10, 0), timezone="UTC", windows=[BUSINESS_HOURS],
            default_replicas=1, pause=True,
        ))

        assert output.effective_replicas == 5
        assert output.current_window == "BusinessHours"
        assert output.reason == "paused"
        assert output.next_boundary == utc(2025, 3, 10, 17, 0)

    def test_pause_still_honors_holidays(self):
        output = DecisionEngine().resolve(EngineInput(
            now=utc(2025, 12, 25, 10, 0), timezone="UTC", windows=[BUSINESS_HOURS], default_replicas=1,
            holiday_mode=HolidayMode.TREAT_AS_CLOSED, is_holiday=True, pause=True,
        ))

        assert output.effective_replicas == 0
        assert output.current_window == "Holiday-Closed"
        assert output.reason == "paused"


class TestNextBoundary:
    """Test cases for compute_next_boundary."""

    def test_matches_resolve(self):
        engine_input = EngineInput(now=utc(2025, 3, 10, 10, 0), timezone="UTC",
                                   windows=[BUSINESS_HOURS], default_replicas=1)

        assert compute_next_boundary(engine_input) == DecisionEngine().resolve(engine_input).next_boundary

    def test_always_in_the_future(self):
        windows = [BUSINESS_HOURS, NIGHT_SHIFT, WindowSpec(start="00:00", end="00:00", replicas=2)]
        now = utc(2025, 3, 10, 0, 0)
        for _ in range(48):
            engine_input = EngineInput(now=now, timezone="Europe/London", windows=windows, default_replicas=1)
            boundary = compute_next_boundary(engine_input)
            assert now < boundary <= now + timedelta(days=1, hours=1)
            now += timedelta(minutes=37)


class TestParsing:
    """Test cases for time parsing helpers."""

    @pytest.mark.parametrize("value, expected", [("09:00", (9, 0)), ("23:59", (23, 59)), ("00:00", (0, 0))])
    def test_parse_hhmm(self, value, expected):
        assert parse_hhmm(value) == expected

    @pytest.mark.parametrize("value", [
        "25:00", "17:60", "9AM", "", "12", "12:00:00", "-1:30",
        "\u00b2:00", "\u00b9\u00b2:00", "09:\u2075\u2070",
    ])
    def test_parse_hhmm_invalid(self, value):
        with pytest.raises(ConfigurationError):
            parse_hhmm(value)

    def test_load_timezone(self):
        assert load_timezone("Asia/Kolkata").key == "Asia/Kolkata"

    def test_is_day_match_case_insensitive(self):
        monday = utc(2025, 3, 10, 10, 0)

        assert is_day_match(["MONDAY"], monday)
        assert is_day_match([], monday)
        assert not is_day_match(["sunday"], monday)

    def test_resolve_cross_midnight_window(self):
        tz = load_timezone("UTC")

        early = resolve_window(NIGHT_SHIFT, utc(2025, 3, 11, 1, 0), tz)
        late = resolve_window(NIGHT_SHIFT, utc(2025, 3, 10, 23, 0), tz)

        assert (early.start, early.end) == (utc(2025, 3, 10, 22, 0), utc(2025, 3, 11, 2, 0))
        assert (late.start, late.end) == (utc(2025, 3, 10, 22, 0), utc(2025, 3, 11, 2, 0))
