"""Tests for the milestone status state machine."""

import pytest

from roadmap_engine.core.exceptions import (
    InvalidStatusTransitionError,
    UnknownStatusError,
)
from roadmap_engine.roadmap.transitions import (
    ROADMAP_STATUSES,
    RoadmapStatus,
    is_transition_allowed,
    normalise_status,
    validate_status_transition,
)


class TestNormaliseStatus:
    def test_case_and_whitespace_ignored(self):
        assert normalise_status(" Active ") == "active"
        assert normalise_status(RoadmapStatus.PAUSED) == "paused"

    def test_empty_values(self):
        assert normalise_status(None) == "pending"
        assert normalise_status("") == "pending"
        assert normalise_status(None, allow_null=True) is None

    def test_unknown_status_raises(self):
        with pytest.raises(UnknownStatusError) as exc_info:
            normalise_status("archived")
        assert exc_info.value.message == "Unknown roadmap status: archived"


class TestTransitions:
    @pytest.mark.parametrize("status", ROADMAP_STATUSES)
    def test_self_transition_always_allowed(self, status):
        assert is_transition_allowed(status, status)

    @pytest.mark.parametrize("target", ["pending", "active", "paused", "blocked"])
    def test_completed_is_terminal(self, target):
        with pytest.raises(InvalidStatusTransitionError) as exc_info:
            validate_status_transition("completed", target)
        assert exc_info.value.message == (
            f"Invalid roadmap status transition: completed -> {target}"
        )

    def test_nothing_returns_to_pending(self):
        for status in ("active", "paused", "blocked"):
            assert not is_transition_allowed(status, "pending")

    def test_any_open_status_can_complete(self):
        for status in ("pending", "active", "paused", "blocked"):
            assert validate_status_transition(status, "completed") == (status, "completed")

    def test_missing_previous_treated_as_pending(self):
        assert validate_status_transition(None, "ACTIVE") == ("pending", "active")

    def test_unknown_target_raises(self):
        with pytest.raises(UnknownStatusError):
            validate_status_transition("active", "done")
