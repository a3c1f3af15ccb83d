"""
Verification alert service.

Alerts are append-only rows. Delivery (email/SMS) is handled by the
notification service that consumes them; here they are recorded and logged.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional, TYPE_CHECKING

from sqlalchemy import and_, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.models import (
    AlertType,
    VerificationAlert,
    VerificationRecord,
    VerificationStatus,
    VerificationType,
)
from app.utils.datetime_utils import ensure_utc, utcnow
from app.verification.store import VerificationRecordStore

if TYPE_CHECKING:
    from app.verification.orchestrator import VerificationOrchestrator

logger = logging.getLogger(__name__)

TRANSITION_ALERTS: Dict[VerificationStatus, AlertType] = {
    VerificationStatus.FAILED: AlertType.VERIFICATION_FAILED,
    VerificationStatus.EXPIRED: AlertType.VERIFICATION_EXPIRED,
    VerificationStatus.SUSPENDED: AlertType.STATUS_CHANGED,
}

VERIFICATION_TYPE_NAMES: Dict[VerificationType, str] = {
    VerificationType.IDENTITY: "Identity Verification",
    VerificationType.VEVO: "VEVO Work Rights Check",
    VerificationType.WWCC: "Working With Children Check",
    VerificationType.NDIS: "NDIS Worker Screening Check",
    VerificationType.FIRST_AID: "First Aid Certificate",
    VerificationType.ABN: "ABN Verification",
    VerificationType.TFN: "TFN Verification",
}


def verification_type_name(verification_type: VerificationType) -> str:
    return VERIFICATION_TYPE_NAMES.get(verification_type, verification_type.value)


class AlertService:
    def __init__(self, db: AsyncSession):
        self.db = db
        self.store = VerificationRecordStore(db)
        self.warning_window = timedelta(days=settings.EXPIRY_WARNING_DAYS)

    async def create_alert(
        self,
        worker_id: str,
        verification_record_id: Optional[str],
        alert_type: AlertType,
        message: str,
    ) -> VerificationAlert:
        alert = VerificationAlert(
            id=str(uuid.uuid4()),
            worker_id=worker_id,
            verification_record_id=verification_record_id,
            alert_type=alert_type,
            message=message,
            created_at=utcnow(),
        )
        self.db.add(alert)
        await self.db.flush()

        logger.info(
            f"Alert {alert_type.value} for worker {worker_id} "
            f"(verification {verification_record_id}): {message}"
        )
        return alert

    async def on_transition(
        self,
        record: VerificationRecord,
        previous: VerificationStatus,
        current: VerificationStatus,
    ) -> Optional[VerificationAlert]:
        """Record the alert for a transition into FAILED, EXPIRED or SUSPENDED."""
        alert_type = TRANSITION_ALERTS.get(current)
        if alert_type is None or previous == current:
            return None

        name = verification_type_name(record.verification_type)
        if current == VerificationStatus.FAILED:
            message = f"{name} failed" + (
                f": {record.error_message}" if record.error_message else ""
            )
        elif current == VerificationStatus.EXPIRED:
            message = f"{name} has expired"
        else:
            message = f"{name} status changed from {previous.value} to {current.value}" + (
                f": {record.error_message}" if record.error_message else ""
            )

        return await self.create_alert(record.worker_id, record.id, alert_type, message)

    async def list_for_worker(self, worker_id: str) -> List[VerificationAlert]:
        result = await self.db.execute(
            select(VerificationAlert)
            .where(VerificationAlert.worker_id == worker_id)
            .order_by(VerificationAlert.created_at)
        )
        return list(result.scalars().all())

    async def _has_expiring_alert_since(
        self, record_id: str, since: datetime
    ) -> bool:
        result = await self.db.execute(
            select(VerificationAlert.id)
            .where(
                and_(
                    VerificationAlert.verification_record_id == record_id,
                    VerificationAlert.alert_type == AlertType.EXPIRING_SOON,
                    VerificationAlert.created_at >= since,
                )
            )
            .limit(1)
        )
        return result.scalar_one_or_none() is not None

    async def check_expiring_verifications(
        self, now: Optional[datetime] = None
    ) -> Dict[str, int]:
        """
        Create one EXPIRING_SOON alert per VERIFIED record inside the warning
        window (now < expires_at <= now + EXPIRY_WARNING_DAYS).

        A record already alerted since its window opened is skipped, so
        repeated sweeps are idempotent.
        """
        now = now or utcnow()
        results = {"checked": 0, "alerts_created": 0, "already_alerted": 0, "errors": 0}

        records = await self.store.list_current_by_status(
            [VerificationStatus.VERIFIED],
            expires_after=now,
            expires_before=now + self.warning_window,
        )

        # Snapshot before the loop: a rollback expires every loaded instance
        pending = [
            (r.id, r.worker_id, r.verification_type, ensure_utc(r.expires_at))
            for r in records
        ]

        for record_id, worker_id, verification_type, expires_at in pending:
            results["checked"] += 1
            try:
                window_opened = expires_at - self.warning_window
                if await self._has_expiring_alert_since(record_id, window_opened):
                    results["already_alerted"] += 1
                    continue

                days_left = max((expires_at - now).days, 0)
                await self.create_alert(
                    worker_id,
                    record_id,
                    AlertType.EXPIRING_SOON,
                    f"{verification_type_name(verification_type)} expires in {days_left} days",
                )
                await self.db.commit()
                results["alerts_created"] += 1
            except Exception:
                results["errors"] += 1
                await self.db.rollback()
                logger.exception(f"Expiring check failed for verification {record_id}")

        logger.info(f"Expiring verification sweep complete: {results}")
        return results

    async def check_expired_verifications(
        self,
        orchestrator: "VerificationOrchestrator",
        now: Optional[datetime] = None,
    ) -> Dict[str, int]:
        """
        Drive VERIFIED records past expires_at to EXPIRED.

        The transition goes through the orchestrator, so the conditional
        update guarantees one VERIFICATION_EXPIRED alert per expiry event.
        """
        now = now or utcnow()
        results = {"checked": 0, "expired": 0, "skipped": 0, "errors": 0}

        records = await self.store.list_current_by_status(
            [VerificationStatus.VERIFIED], expires_before=now
        )

        record_ids = [r.id for r in records]

        for record_id in record_ids:
            results["checked"] += 1
            try:
                record = await self.store.get(record_id)
                if record is None:
                    results["skipped"] += 1
                    continue
                outcome = await orchestrator.expire_verification(record, now=now)
                if outcome.applied:
                    results["expired"] += 1
                else:
                    results["skipped"] += 1
            except Exception:
                results["errors"] += 1
                await self.db.rollback()
                logger.exception(f"Expiry failed for verification {record_id}")

        logger.info(f"Expired verification sweep complete: {results}")
        return results
