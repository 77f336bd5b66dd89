"""
Unit tests for DecisionEngine invariants.
"""

from datetime import datetime, timedelta, timezone

import pytest

from kyklos.engines.decision import DecisionEngine
from kyklos.engines.types import EngineInput, EngineOutput
from kyklos.exceptions import InternalComputeError

NOW = datetime(2025, 3, 10, 10, 0, tzinfo=timezone.utc)


class TestValidateDecision:
    """Test cases for DecisionEngine.validate_decision."""

    def setup_method(self):
        self.engine = DecisionEngine()
        self.engine_input = EngineInput(now=NOW, timezone="UTC")

    def test_valid_decision(self):
        output = EngineOutput(effective_replicas=0, next_boundary=NOW + timedelta(seconds=1),
                              current_window="Default", reason="no-matching-window")

        self.engine.validate_decision(self.engine_input, output)

    def test_negative_replicas(self):
        output = EngineOutput(effective_replicas=-1, next_boundary=NOW + timedelta(hours=1),
                              current_window="Broken", reason="in-window")

        with pytest.raises(InternalComputeError) as exc_info:
            self.engine.validate_decision(self.engine_input, output)
        assert "effective_replicas=-1" in str(exc_info.value)

    @pytest.mark.parametrize("offset", [0, -60])
    def test_boundary_not_in_future(self, offset):
        output = EngineOutput(effective_replicas=1, next_boundary=NOW + timedelta(seconds=offset),
                              current_window="Default", reason="no-matching-window")

        with pytest.raises(InternalComputeError):
            self.engine.validate_decision(self.engine_input, output)

    def test_resolve_validates(self, mocker):
        bad = EngineOutput(effective_replicas=-3, next_boundary=NOW + timedelta(hours=1),
                           current_window="Default", reason="no-matching-window")
        mocker.patch("kyklos.engines.decision.compute_schedule", return_value=bad)

        with pytest.raises(InternalComputeError):
            self.engine.resolve(self.engine_input)
