"""
Unit tests for the verification status state machine.
"""

import pytest

from app.models import VerificationStatus
from app.verification.exceptions import StaleTransition
from app.verification.state_machine import (
    can_transition,
    is_terminal,
    validate_transition,
)

PENDING = VerificationStatus.PENDING
IN_PROGRESS = VerificationStatus.IN_PROGRESS
VERIFIED = VerificationStatus.VERIFIED
FAILED = VerificationStatus.FAILED
EXPIRED = VerificationStatus.EXPIRED
SUSPENDED = VerificationStatus.SUSPENDED


class TestTransitions:
    @pytest.mark.parametrize(
        "current,new",
        [
            (PENDING, IN_PROGRESS),
            (PENDING, VERIFIED),
            (PENDING, FAILED),
            (IN_PROGRESS, VERIFIED),
            (IN_PROGRESS, FAILED),
            (VERIFIED, EXPIRED),
            (VERIFIED, SUSPENDED),
        ],
    )
    def test_forward_edges_allowed(self, current, new):
        assert can_transition(current, new)
        validate_transition(current, new)

    @pytest.mark.parametrize(
        "current,new",
        [
            (IN_PROGRESS, PENDING),
            (VERIFIED, IN_PROGRESS),
            (VERIFIED, PENDING),
            (VERIFIED, FAILED),
            (FAILED, VERIFIED),
            (SUSPENDED, VERIFIED),
            (EXPIRED, VERIFIED),
            (PENDING, EXPIRED),
        ],
    )
    def test_backward_or_unknown_edges_rejected(self, current, new):
        assert not can_transition(current, new)
        with pytest.raises(StaleTransition):
            validate_transition(current, new)

    def test_expired_to_in_progress_only_on_recheck(self):
        assert not can_transition(EXPIRED, IN_PROGRESS)
        assert can_transition(EXPIRED, IN_PROGRESS, recheck=True)

    def test_recheck_does_not_open_other_edges(self):
        assert not can_transition(FAILED, IN_PROGRESS, recheck=True)
        assert not can_transition(EXPIRED, VERIFIED, recheck=True)

    def test_stale_message_names_both_statuses(self):
        with pytest.raises(StaleTransition) as exc_info:
            validate_transition(VERIFIED, PENDING)

        assert "VERIFIED -> PENDING" in exc_info.value.message


class TestTerminal:
    def test_terminal_statuses(self):
        assert is_terminal(FAILED)
        assert is_terminal(EXPIRED)
        assert is_terminal(SUSPENDED)

    def test_non_terminal_statuses(self):
        assert not is_terminal(PENDING)
        assert not is_terminal(IN_PROGRESS)
        assert not is_terminal(VERIFIED)
