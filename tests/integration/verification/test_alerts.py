"""
Integration tests for the expiry sweeps and alert records.
"""

from datetime import timedelta

import pytest

from app.models import AlertType, VerificationStatus, VerificationType, WorkerStatus
from app.utils.datetime_utils import utcnow


async def create_verified(orchestrator, worker, expires_at):
    record = await orchestrator.store.create(
        worker_id=worker.id,
        verification_type=VerificationType.WWCC,
        provider="oho",
        status=VerificationStatus.VERIFIED,
        provider_request_id="oho-1",
        expires_at=expires_at,
    )
    await orchestrator.db.commit()
    return record


class TestExpiringSweep:
    @pytest.mark.asyncio
    async def test_one_alert_per_warning_window(self, orchestrator, worker):
        await create_verified(orchestrator, worker, utcnow() + timedelta(days=10))

        first = await orchestrator.alerts.check_expiring_verifications()
        second = await orchestrator.alerts.check_expiring_verifications()

        assert first["alerts_created"] == 1
        assert second["alerts_created"] == 0
        assert second["already_alerted"] == 1

        alerts = await orchestrator.alerts.list_for_worker(worker.id)
        assert [a.alert_type for a in alerts] == [AlertType.EXPIRING_SOON]
        assert "Working With Children Check expires in" in alerts[0].message

    @pytest.mark.asyncio
    async def test_outside_window_ignored(self, orchestrator, worker):
        await create_verified(orchestrator, worker, utcnow() + timedelta(days=200))

        results = await orchestrator.alerts.check_expiring_verifications()

        assert results["checked"] == 0


class TestExpiredSweep:
    @pytest.mark.asyncio
    async def test_expires_once_with_single_alert(self, orchestrator, worker, test_db):
        record = await create_verified(orchestrator, worker, utcnow() - timedelta(hours=1))
        await orchestrator.update_worker_status(worker.id)
        await orchestrator.db.commit()

        first = await orchestrator.alerts.check_expired_verifications(orchestrator)
        second = await orchestrator.alerts.check_expired_verifications(orchestrator)

        assert first["expired"] == 1
        assert second["checked"] == 0

        await orchestrator.store.refresh(record)
        assert record.status == VerificationStatus.EXPIRED
        alerts = await orchestrator.alerts.list_for_worker(worker.id)
        assert [a.alert_type for a in alerts] == [AlertType.VERIFICATION_EXPIRED]

        await test_db.refresh(worker)
        assert worker.status == WorkerStatus.ONBOARDING_IN_PROGRESS

    @pytest.mark.asyncio
    async def test_expire_requires_past_expiry(self, orchestrator, worker):
        record = await create_verified(orchestrator, worker, utcnow() + timedelta(days=5))

        outcome = await orchestrator.expire_verification(record)

        assert outcome.applied is False
        assert record.status == VerificationStatus.VERIFIED
