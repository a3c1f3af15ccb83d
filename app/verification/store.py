"""
Verification record persistence.

Status is only ever written through conditional_update, which keys the
UPDATE on the status the caller last observed. A zero rowcount means another
writer got there first.
"""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from app.models import (
    VerificationDocument,
    VerificationRecord,
    VerificationStatus,
    VerificationType,
)
from app.utils.datetime_utils import utcnow
from app.verification.exceptions import NotFoundError
from app.verification.providers.base import DocumentSubmission

logger = logging.getLogger(__name__)

CURRENT = VerificationRecord.superseded_at.is_(None)


class VerificationRecordStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    # --------- Reads ---------
    async def get(self, verification_id: str) -> Optional[VerificationRecord]:
        result = await self.db.execute(
            select(VerificationRecord).where(VerificationRecord.id == verification_id)
        )
        return result.scalar_one_or_none()

    async def get_or_404(self, verification_id: str) -> VerificationRecord:
        record = await self.get(verification_id)
        if record is None:
            raise NotFoundError(f"Verification {verification_id} not found")
        return record

    async def get_current(
        self, worker_id: str, verification_type: VerificationType
    ) -> Optional[VerificationRecord]:
        result = await self.db.execute(
            select(VerificationRecord).where(
                and_(
                    VerificationRecord.worker_id == worker_id,
                    VerificationRecord.verification_type == verification_type,
                    CURRENT,
                )
            )
        )
        return result.scalar_one_or_none()

    async def find_by_provider_request(
        self, provider_request_id: str, verification_type: VerificationType
    ) -> Optional[VerificationRecord]:
        """Current record for a provider request id, else the most recent one."""
        result = await self.db.execute(
            select(VerificationRecord)
            .where(
                and_(
                    VerificationRecord.provider_request_id == provider_request_id,
                    VerificationRecord.verification_type == verification_type,
                )
            )
            .order_by(VerificationRecord.created_at.desc())
        )
        records = list(result.scalars().all())
        if not records:
            return None
        return next((r for r in records if r.superseded_at is None), records[0])

    async def list_for_worker(self, worker_id: str) -> List[VerificationRecord]:
        """All records, current and superseded, with documents loaded."""
        result = await self.db.execute(
            select(VerificationRecord)
            .where(VerificationRecord.worker_id == worker_id)
            .options(selectinload(VerificationRecord.documents))
            .order_by(
                VerificationRecord.verification_type, VerificationRecord.created_at
            )
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def list_current_for_worker(self, worker_id: str) -> List[VerificationRecord]:
        result = await self.db.execute(
            select(VerificationRecord).where(
                and_(VerificationRecord.worker_id == worker_id, CURRENT)
            )
        )
        return list(result.scalars().all())

    async def list_current_by_status(
        self,
        statuses: Iterable[VerificationStatus],
        expires_after: Optional[datetime] = None,
        expires_before: Optional[datetime] = None,
    ) -> List[VerificationRecord]:
        """
        Current records in the given statuses, optionally filtered on
        expires_after < expires_at <= expires_before.
        """
        conditions = [VerificationRecord.status.in_(list(statuses)), CURRENT]
        if expires_after is not None:
            conditions.append(VerificationRecord.expires_at > expires_after)
        if expires_before is not None:
            conditions.append(VerificationRecord.expires_at <= expires_before)

        result = await self.db.execute(
            select(VerificationRecord)
            .where(and_(*conditions))
            .order_by(VerificationRecord.created_at)
        )
        return list(result.scalars().all())

    # --------- Writes ---------
    async def create(
        self,
        *,
        worker_id: str,
        verification_type: VerificationType,
        provider: str,
        status: VerificationStatus,
        provider_request_id: Optional[str] = None,
        submitted_data: Optional[Dict[str, Any]] = None,
        provider_response: Optional[Dict[str, Any]] = None,
        expires_at: Optional[datetime] = None,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        supersedes_id: Optional[str] = None,
    ) -> VerificationRecord:
        now = utcnow()
        record = VerificationRecord(
            id=str(uuid.uuid4()),
            worker_id=worker_id,
            verification_type=verification_type,
            provider=provider,
            status=status,
            provider_request_id=provider_request_id,
            submitted_data=submitted_data,
            provider_response=provider_response,
            expires_at=expires_at,
            error_message=error_message,
            record_metadata=metadata,
            consecutive_poll_failures=0,
            supersedes_id=supersedes_id,
            created_at=now,
            updated_at=now,
        )
        self.db.add(record)
        await self.db.flush()
        return record

    async def supersede(self, record: VerificationRecord) -> None:
        await self.db.execute(
            update(VerificationRecord)
            .where(VerificationRecord.id == record.id)
            .values({VerificationRecord.superseded_at: utcnow()})
            .execution_options(synchronize_session=False)
        )
        await self.db.flush()
        await self.db.refresh(record)

    async def conditional_update(
        self,
        record_id: str,
        expected_status: VerificationStatus,
        values: Dict[Any, Any],
    ) -> bool:
        """
        UPDATE ... WHERE id = :id AND status = :expected.

        Returns False when the persisted status no longer matches.
        """
        result = await self.db.execute(
            update(VerificationRecord)
            .where(
                and_(
                    VerificationRecord.id == record_id,
                    VerificationRecord.status == expected_status,
                )
            )
            .values({**values, VerificationRecord.updated_at: utcnow()})
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    async def save_provider_response(
        self, record_id: str, payload: Optional[Dict[str, Any]]
    ) -> None:
        """Unconditional audit write of the latest provider payload."""
        await self.db.execute(
            update(VerificationRecord)
            .where(VerificationRecord.id == record_id)
            .values(
                {
                    VerificationRecord.provider_response: payload,
                    VerificationRecord.last_checked_at: utcnow(),
                }
            )
            .execution_options(synchronize_session=False)
        )

    async def record_poll_failure(self, record: VerificationRecord) -> int:
        await self.db.execute(
            update(VerificationRecord)
            .where(VerificationRecord.id == record.id)
            .values(
                {
                    VerificationRecord.consecutive_poll_failures: VerificationRecord.consecutive_poll_failures
                    + 1,
                    VerificationRecord.last_checked_at: utcnow(),
                }
            )
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(record)
        return record.consecutive_poll_failures

    async def reset_poll_failures(self, record: VerificationRecord) -> None:
        if not record.consecutive_poll_failures:
            return
        await self.db.execute(
            update(VerificationRecord)
            .where(VerificationRecord.id == record.id)
            .values({VerificationRecord.consecutive_poll_failures: 0})
            .execution_options(synchronize_session=False)
        )
        await self.db.refresh(record)

    async def refresh(self, record: VerificationRecord) -> VerificationRecord:
        await self.db.refresh(record)
        return record

    async def add_documents(
        self, record: VerificationRecord, documents: List[DocumentSubmission]
    ) -> List[VerificationDocument]:
        created = []
        for document in documents:
            row = VerificationDocument(
                id=str(uuid.uuid4()),
                verification_record_id=record.id,
                document_type=document.document_type,
                file_url=document.file_url,
                document_metadata=document.metadata,
                uploaded_at=utcnow(),
            )
            self.db.add(row)
            created.append(row)
        if created:
            await self.db.flush()
            logger.info(f"Stored {len(created)} documents for verification {record.id}")
        return created
