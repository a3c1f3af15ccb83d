"""
Verification Monitor.

Scheduled sweeps over verification records:
- expiring-soon alerts for VERIFIED records inside the warning window
- VERIFIED -> EXPIRED once expires_at has passed
- polling PENDING / IN_PROGRESS records whose provider never called back
- polling VERIFIED records of providers that report revocations
- weekly recheck of EXPIRED records (renewed credentials)

Triggered by the external scheduler through the verification-monitor routes.
Each sweep runs in its own session. Poll and recheck sweeps run providers
concurrently and the records of one provider sequentially.
"""

import asyncio
import logging
import uuid
from collections import defaultdict
from datetime import datetime
from typing import Awaitable, Callable, Dict, List, Optional

from app.alerts.service import AlertService
from app.core.config import settings
from app.core.database import AsyncSessionLocal
from app.core.logging_config import clear_job_id, set_job_id
from app.models import VerificationStatus
from app.utils.datetime_utils import utcnow
from app.verification.exceptions import ProviderUnavailable, VerificationError
from app.verification.orchestrator import build_orchestrator
from app.verification.providers import ProviderRegistry
from app.verification.store import VerificationRecordStore

logger = logging.getLogger(__name__)

POLLED_STATUSES = [VerificationStatus.PENDING, VerificationStatus.IN_PROGRESS]


class VerificationMonitor:
    def __init__(self, registry: ProviderRegistry, session_factory=AsyncSessionLocal):
        self.registry = registry
        self.session_factory = session_factory

    async def run_all_tasks(self, now: Optional[datetime] = None) -> Dict[str, Dict]:
        """
        Run the expiry sweeps, the in-progress poll and the revocation poll
        concurrently, then the weekly expired recheck (which keeps its own
        weekday gate).

        A failing sweep is reported in its slot and does not affect the others.
        """
        logger.info("Verification monitor: running all tasks")

        names = ["expiring", "expired", "in_progress", "verified"]
        outcomes = await asyncio.gather(
            self.check_expiring_verifications(now),
            self.check_expired_verifications(now),
            self.update_in_progress_verifications(),
            self.monitor_verified_verifications(),
            return_exceptions=True,
        )

        results: Dict[str, Dict] = {}
        for name, outcome in zip(names, outcomes):
            if isinstance(outcome, Exception):
                logger.error(
                    f"Verification monitor task {name} failed: {outcome}",
                    exc_info=outcome,
                )
                results[name] = {"error": str(outcome)}
            else:
                results[name] = outcome

        try:
            results["recheck_expired"] = await self.recheck_expired_verifications(now=now)
        except Exception as e:
            logger.error(f"Verification monitor task recheck_expired failed: {e}", exc_info=True)
            results["recheck_expired"] = {"error": str(e)}

        logger.info(f"Verification monitor: completed {results}")
        return results

    async def check_expiring_verifications(
        self, now: Optional[datetime] = None
    ) -> Dict[str, int]:
        set_job_id(f"expiring-{uuid.uuid4().hex[:8]}")
        try:
            async with self.session_factory() as db:
                return await AlertService(db).check_expiring_verifications(now)
        finally:
            clear_job_id()

    async def check_expired_verifications(
        self, now: Optional[datetime] = None
    ) -> Dict[str, int]:
        set_job_id(f"expired-{uuid.uuid4().hex[:8]}")
        try:
            async with self.session_factory() as db:
                orchestrator = build_orchestrator(db, self.registry)
                return await orchestrator.alerts.check_expired_verifications(
                    orchestrator, now
                )
        finally:
            clear_job_id()

    async def update_in_progress_verifications(self) -> Dict[str, int]:
        """Poll providers for PENDING and IN_PROGRESS records."""
        set_job_id(f"poll-{uuid.uuid4().hex[:8]}")
        try:
            groups = await self._group_by_provider(POLLED_STATUSES)
            return await self._run_provider_groups(
                groups, self._poll_record, label="poll"
            )
        finally:
            clear_job_id()

    async def monitor_verified_verifications(self) -> Dict[str, int]:
        """
        Re-poll VERIFIED records whose provider reports cancellations
        (visa cancelled, WWCC barred, ABN cancelled).
        """
        set_job_id(f"revocation-{uuid.uuid4().hex[:8]}")
        try:
            groups = await self._group_by_provider([VerificationStatus.VERIFIED])
            monitored = {
                provider: record_ids
                for provider, record_ids in groups.items()
                if self._reports_revocations(provider)
            }
            return await self._run_provider_groups(
                monitored, self._monitor_record, label="revocation"
            )
        finally:
            clear_job_id()

    async def recheck_expired_verifications(
        self, force: bool = False, now: Optional[datetime] = None
    ) -> Dict[str, int]:
        """
        Recheck EXPIRED records with their providers.

        Runs on EXPIRED_RECHECK_WEEKDAY unless forced.
        """
        now = now or utcnow()
        if not force and now.weekday() != settings.EXPIRED_RECHECK_WEEKDAY:
            logger.info(
                f"Expired recheck skipped: weekday {now.weekday()} is not "
                f"{settings.EXPIRED_RECHECK_WEEKDAY}"
            )
            return {"checked": 0, "renewed": 0, "still_expired": 0, "errors": 0, "skipped": 1}

        set_job_id(f"recheck-{uuid.uuid4().hex[:8]}")
        try:
            groups = await self._group_by_provider([VerificationStatus.EXPIRED])
            return await self._run_provider_groups(
                groups, self._recheck_record, label="recheck"
            )
        finally:
            clear_job_id()

    async def _group_by_provider(
        self, statuses: List[VerificationStatus]
    ) -> Dict[str, List[str]]:
        async with self.session_factory() as db:
            records = await VerificationRecordStore(db).list_current_by_status(statuses)
            groups: Dict[str, List[str]] = defaultdict(list)
            for record in records:
                groups[record.provider].append(record.id)
            return dict(groups)

    async def _run_provider_groups(
        self,
        groups: Dict[str, List[str]],
        handler: Callable[..., Awaitable[str]],
        label: str,
    ) -> Dict[str, int]:
        results: Dict[str, int] = defaultdict(int)
        if not groups:
            logger.info(f"Verification monitor {label}: nothing to do")
            return {"checked": 0, "errors": 0}

        group_results = await asyncio.gather(
            *(
                self._run_provider(provider, record_ids, handler, label)
                for provider, record_ids in groups.items()
            )
        )
        for counts in group_results:
            for key, value in counts.items():
                results[key] += value

        results.setdefault("errors", 0)
        logger.info(f"Verification monitor {label} complete: {dict(results)}")
        return dict(results)

    async def _run_provider(
        self,
        provider: str,
        record_ids: List[str],
        handler: Callable[..., Awaitable[str]],
        label: str,
    ) -> Dict[str, int]:
        counts: Dict[str, int] = defaultdict(int)
        async with self.session_factory() as db:
            orchestrator = build_orchestrator(db, self.registry)
            for record_id in record_ids:
                counts["checked"] += 1
                try:
                    outcome = await handler(orchestrator, record_id)
                    counts[outcome] += 1
                except ProviderUnavailable as e:
                    counts["provider_unavailable"] += 1
                    logger.warning(f"{label} {record_id} via {provider}: {e.message}")
                except Exception:
                    counts["errors"] += 1
                    await db.rollback()
                    logger.exception(f"{label} failed for verification {record_id} via {provider}")
        return counts

    async def _poll_record(self, orchestrator, record_id: str) -> str:
        before = await orchestrator.store.get(record_id)
        if before is None:
            return "skipped"
        previous = before.status
        record = await orchestrator.check_verification_status(record_id)
        return "updated" if record.status != previous else "unchanged"

    def _reports_revocations(self, provider: str) -> bool:
        adapter = self.registry.for_provider(provider)
        return adapter is not None and adapter.reports_revocations

    async def _monitor_record(self, orchestrator, record_id: str) -> str:
        record = await orchestrator.check_verification_status(
            record_id, include_verified=True
        )
        if record.status == VerificationStatus.SUSPENDED:
            return "revoked"
        if record.status != VerificationStatus.VERIFIED:
            return "updated"
        return "unchanged"

    async def _recheck_record(self, orchestrator, record_id: str) -> str:
        try:
            record = await orchestrator.recheck_verification(record_id)
        except ProviderUnavailable:
            raise
        except VerificationError as e:
            logger.info(f"Recheck skipped for verification {record_id}: {e.message}")
            return "skipped"
        if record.status == VerificationStatus.EXPIRED:
            return "still_expired"
        return "renewed"
