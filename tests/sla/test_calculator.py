"""
Tests for SLA classification, policy validation and the notification ratchet
"""
from datetime import timedelta

import pytest
from pydantic import ValidationError

from src.config import SLAState
from src.sla.domain import (
    SLACalculator, SLAPolicy, is_terminal_status, normalize_priority, rank, should_notify
)
from tests.conftest import T0


class TestClassify:
    """P1, 4h target, warning at 20%, critical at 60%"""

    def setup_method(self):
        self.policy = SLAPolicy()

    def classify(self, elapsed: timedelta, priority="P1", status="New"):
        return SLACalculator.classify(T0, priority, status, self.policy, T0 + elapsed)

    def test_safe(self):
        result = self.classify(timedelta(minutes=30))
        assert result.state == SLAState.SAFE
        assert result.time_remaining == timedelta(hours=3, minutes=30)

    def test_warning_after_one_hour(self):
        result = self.classify(timedelta(hours=1))
        assert result.state == SLAState.WARNING
        assert result.percent_elapsed == pytest.approx(25.0)

    def test_critical_after_three_hours(self):
        result = self.classify(timedelta(hours=3))
        assert result.state == SLAState.CRITICAL
        assert result.percent_elapsed == pytest.approx(75.0)
        assert result.time_remaining == timedelta(hours=1)

    def test_breached_after_five_hours(self):
        result = self.classify(timedelta(hours=5))
        assert result.state == SLAState.BREACHED
        assert result.percent_elapsed == pytest.approx(125.0)
        assert result.overdue == timedelta(hours=1)
        assert result.time_remaining is None

    def test_boundaries_are_inclusive(self):
        assert self.classify(timedelta(minutes=48)).state == SLAState.WARNING
        assert self.classify(timedelta(minutes=144)).state == SLAState.CRITICAL
        assert self.classify(timedelta(hours=4)).state == SLAState.BREACHED

    @pytest.mark.parametrize("status", ["Closed", "resolved", "CANCELLED", " completed "])
    def test_terminal_status_is_completed_at_any_age(self, status):
        assert self.classify(timedelta(hours=50), status=status).state == SLAState.COMPLETED
        assert self.classify(timedelta(0), status=status).state == SLAState.COMPLETED

    def test_unknown_priority_uses_p3_target(self):
        result = self.classify(timedelta(hours=12), priority="P7")
        assert result.target_hours == 24
        assert result.state == SLAState.WARNING

    def test_deadline(self):
        assert SLACalculator.deadline(T0, "P2", self.policy) == T0 + timedelta(hours=12)

    def test_to_dict(self):
        data = self.classify(timedelta(hours=5)).to_dict()
        assert data["state"] == "breached"
        assert data["overdue_seconds"] == 3600
        assert data["time_remaining_seconds"] is None


class TestPolicy:
    def test_defaults(self):
        policy = SLAPolicy()
        assert policy.target_hours == {"P1": 4.0, "P2": 12.0, "P3": 24.0}
        assert (policy.warning_threshold, policy.critical_threshold) == (20, 60)

    def test_missing_priorities_filled(self):
        assert SLAPolicy(target_hours={"P1": 2}).target_hours == {"P1": 2, "P2": 12.0, "P3": 24.0}

    def test_warning_must_precede_critical(self):
        with pytest.raises(ValidationError):
            SLAPolicy(warning_threshold=70, critical_threshold=60)

    def test_targets_must_be_positive(self):
        with pytest.raises(ValidationError):
            SLAPolicy(target_hours={"P1": 0})


class TestNormalizePriority:
    @pytest.mark.parametrize("raw,expected", [
        ("P1", "P1"),
        ("1 - Critical", "P1"),
        ("critical", "P1"),
        ("2 - High", "P2"),
        ("3 - Moderate", "P2"),
        ("high", "P2"),
        ("4 - Low", "P3"),
        ("5 - Planning", "P3"),
        (None, "P3"),
        ("", "P3"),
    ])
    def test_mapping(self, raw, expected):
        assert normalize_priority(raw) == expected


class TestRatchet:
    def test_rank_order(self):
        assert rank(None) == rank("safe") == 0
        assert rank("warning") < rank("critical") < rank("breached")

    def test_only_forward_transitions_notify(self):
        assert should_notify(None, "warning")
        assert should_notify("warning", "breached")
        assert not should_notify("warning", "warning")
        assert not should_notify("critical", "warning")
        assert not should_notify(None, "safe")

    def test_completed_never_notifies(self):
        assert not should_notify(None, "completed")

    def test_terminal_status(self):
        assert is_terminal_status("Resolved")
        assert not is_terminal_status("In Progress")
        assert not is_terminal_status(None)
