"""
Verification status state machine.

    PENDING      -> IN_PROGRESS | VERIFIED | FAILED
    IN_PROGRESS  -> VERIFIED | FAILED
    VERIFIED     -> EXPIRED | SUSPENDED
    EXPIRED      -> IN_PROGRESS   (recheck only)
    FAILED, SUSPENDED: terminal
"""

from typing import Dict, FrozenSet

from app.models import VerificationStatus
from app.verification.exceptions import StaleTransition

PENDING = VerificationStatus.PENDING
IN_PROGRESS = VerificationStatus.IN_PROGRESS
VERIFIED = VerificationStatus.VERIFIED
FAILED = VerificationStatus.FAILED
EXPIRED = VerificationStatus.EXPIRED
SUSPENDED = VerificationStatus.SUSPENDED

ALLOWED_TRANSITIONS: Dict[VerificationStatus, FrozenSet[VerificationStatus]] = {
    PENDING: frozenset({IN_PROGRESS, VERIFIED, FAILED}),
    IN_PROGRESS: frozenset({VERIFIED, FAILED}),
    VERIFIED: frozenset({EXPIRED, SUSPENDED}),
    EXPIRED: frozenset(),
    FAILED: frozenset(),
    SUSPENDED: frozenset(),
}

RECHECK_TRANSITIONS: Dict[VerificationStatus, FrozenSet[VerificationStatus]] = {
    EXPIRED: frozenset({IN_PROGRESS}),
}

# A record in one of these states is never reused by initiate; a new check
# supersedes it.
TERMINAL_STATUSES = frozenset({FAILED, EXPIRED, SUSPENDED})

# Transitions that produce an alert
ALERTING_STATUSES = frozenset({FAILED, EXPIRED, SUSPENDED})


def is_terminal(status: VerificationStatus) -> bool:
    return status in TERMINAL_STATUSES


def can_transition(
    current: VerificationStatus, new: VerificationStatus, recheck: bool = False
) -> bool:
    if new in ALLOWED_TRANSITIONS[current]:
        return True
    return recheck and new in RECHECK_TRANSITIONS.get(current, frozenset())


def validate_transition(
    current: VerificationStatus, new: VerificationStatus, recheck: bool = False
) -> None:
    """
    Raise StaleTransition unless current -> new is an edge of the machine.

    Same-status updates are not transitions and are validated by the caller.
    """
    if not can_transition(current, new, recheck=recheck):
        raise StaleTransition(
            f"Transition {current.value} -> {new.value} not allowed"
            + (" (recheck)" if recheck else "")
        )
