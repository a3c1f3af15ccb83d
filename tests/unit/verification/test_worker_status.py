"""
Unit tests for worker status derivation and the worker directory.
"""

from datetime import datetime, timedelta, timezone
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from app.auth.service import Principal
from app.models import VerificationStatus, VerificationType, WorkerStatus
from app.verification.directory import WorkerDirectory, parse_verification_types
from app.verification.exceptions import AuthorizationError, NotFoundError
from app.verification.orchestrator import derive_worker_status

NOW = datetime(2026, 1, 1, tzinfo=timezone.utc)
IDENTITY = VerificationType.IDENTITY
VEVO = VerificationType.VEVO


def record(status, expires_at=None):
    return SimpleNamespace(status=status, expires_at=expires_at)


class TestDeriveWorkerStatus:
    def test_all_verified_unexpired(self):
        current = {
            IDENTITY: record(VerificationStatus.VERIFIED),
            VEVO: record(VerificationStatus.VERIFIED, NOW + timedelta(days=10)),
        }

        assert derive_worker_status([IDENTITY, VEVO], current, NOW) == WorkerStatus.VERIFIED

    def test_missing_required_type_keeps_onboarding(self):
        current = {IDENTITY: record(VerificationStatus.VERIFIED)}

        assert (
            derive_worker_status([IDENTITY, VEVO], current, NOW)
            == WorkerStatus.ONBOARDING_IN_PROGRESS
        )

    def test_verified_but_past_expiry_not_cleared(self):
        current = {
            IDENTITY: record(VerificationStatus.VERIFIED),
            VEVO: record(VerificationStatus.VERIFIED, NOW - timedelta(seconds=1)),
        }

        assert (
            derive_worker_status([IDENTITY, VEVO], current, NOW)
            == WorkerStatus.ONBOARDING_IN_PROGRESS
        )

    def test_failed_wins_over_suspended(self):
        current = {
            IDENTITY: record(VerificationStatus.FAILED),
            VEVO: record(VerificationStatus.SUSPENDED),
        }

        assert derive_worker_status([IDENTITY, VEVO], current, NOW) == WorkerStatus.REJECTED

    def test_suspended(self):
        current = {
            IDENTITY: record(VerificationStatus.VERIFIED),
            VEVO: record(VerificationStatus.SUSPENDED),
        }

        assert derive_worker_status([IDENTITY, VEVO], current, NOW) == WorkerStatus.SUSPENDED

    def test_non_required_failure_ignored(self):
        current = {
            IDENTITY: record(VerificationStatus.VERIFIED),
            VerificationType.ABN: record(VerificationStatus.FAILED),
        }

        assert derive_worker_status([IDENTITY], current, NOW) == WorkerStatus.VERIFIED

    def test_naive_expiry_treated_as_utc(self):
        naive_future = (NOW + timedelta(days=1)).replace(tzinfo=None)
        current = {IDENTITY: record(VerificationStatus.VERIFIED, naive_future)}

        assert derive_worker_status([IDENTITY], current, NOW) == WorkerStatus.VERIFIED


class TestParseVerificationTypes:
    def test_case_insensitive_and_deduplicated(self):
        assert parse_verification_types(["identity", "VEVO", "Identity"]) == [IDENTITY, VEVO]

    def test_unknown_values_skipped(self):
        assert parse_verification_types(["POLICE_CHECK", "WWCC"]) == [VerificationType.WWCC]


class TestWorkerDirectory:
    def test_owner_allowed(self, mock_db, sample_worker):
        WorkerDirectory(mock_db).ensure_access(sample_worker, Principal(id="user-1"))

    def test_admin_allowed(self, mock_db, sample_worker):
        WorkerDirectory(mock_db).ensure_access(
            sample_worker, Principal(id="someone", role="admin")
        )

    def test_other_user_denied(self, mock_db, sample_worker):
        with pytest.raises(AuthorizationError):
            WorkerDirectory(mock_db).ensure_access(sample_worker, Principal(id="user-2"))

    @pytest.mark.asyncio
    async def test_unknown_worker(self, mock_db):
        result = MagicMock()
        result.scalar_one_or_none.return_value = None
        mock_db.execute.return_value = result

        with pytest.raises(NotFoundError):
            await WorkerDirectory(mock_db).get_worker("missing")

    def test_worker_override_wins(self, mock_db, sample_worker):
        sample_worker.required_verification_types = ["ABN"]

        assert WorkerDirectory(mock_db).required_types(sample_worker) == [
            VerificationType.ABN
        ]

    def test_configured_default_includes_flags(self, mock_db, sample_worker):
        with patch("app.verification.directory.settings") as mock_settings:
            mock_settings.required_verification_types = ["IDENTITY", "VEVO", "WWCC"]

            required = WorkerDirectory(mock_db).required_types(sample_worker)

        assert required == [IDENTITY, VEVO, VerificationType.WWCC]
