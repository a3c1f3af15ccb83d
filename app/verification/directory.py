"""
Worker directory.

Existence, ownership and required-verification lookups over the workers
table. Worker CRUD lives in the platform's worker service.
"""

import logging
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.service import Principal
from app.core.config import settings
from app.models import VerificationType, Worker
from app.verification.exceptions import AuthorizationError, NotFoundError

logger = logging.getLogger(__name__)


def parse_verification_types(values: List[str]) -> List[VerificationType]:
    types: List[VerificationType] = []
    for value in values:
        try:
            verification_type = VerificationType(str(value).upper())
        except ValueError:
            logger.warning(f"Ignoring unknown required verification type: {value}")
            continue
        if verification_type not in types:
            types.append(verification_type)
    return types


class WorkerDirectory:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get_worker(self, worker_id: str) -> Worker:
        result = await self.db.execute(select(Worker).where(Worker.id == worker_id))
        worker = result.scalar_one_or_none()
        if worker is None:
            raise NotFoundError(f"Worker {worker_id} not found")
        return worker

    def ensure_access(self, worker: Worker, principal: Optional[Principal]) -> None:
        """Owner or admin only. A None principal is an internal (system) caller."""
        if principal is None or principal.is_admin:
            return
        if worker.user_id != principal.id:
            logger.warning(
                f"Principal {principal.id} denied access to worker {worker.id}"
            )
            raise AuthorizationError("Not authorized to access this worker")

    async def get_authorized_worker(
        self, worker_id: str, principal: Optional[Principal]
    ) -> Worker:
        worker = await self.get_worker(worker_id)
        self.ensure_access(worker, principal)
        return worker

    def required_types(self, worker: Worker) -> List[VerificationType]:
        """Worker override when set, else the configured default."""
        if worker.required_verification_types is not None:
            return parse_verification_types(worker.required_verification_types)
        return parse_verification_types(settings.required_verification_types)
