"""
Verification orchestrator.

Initiates checks with providers and reconciles their answers (webhook push
or polling) into verification records. apply_status_update is the only code
path that changes a record's status.

Public operations that mutate state commit their unit of work;
apply_status_update and update_worker_status only flush so callers can
compose them.
"""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from dateutil.relativedelta import relativedelta
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.alerts.service import AlertService
from app.auth.service import Principal
from app.core.config import settings
from app.models import (
    OnboardingStatus,
    VerificationAlert,
    VerificationRecord,
    VerificationStatus,
    VerificationType,
    Worker,
    WorkerStatus,
)
from app.utils.datetime_utils import ensure_utc, utcnow
from app.verification.directory import WorkerDirectory
from app.verification.exceptions import (
    AuthorizationError,
    NotFoundError,
    ProviderUnavailable,
    StaleTransition,
    ValidationError,
    VerificationError,
)
from app.verification.providers import ProviderRegistry
from app.verification.providers.base import DocumentSubmission, ProviderResult
from app.verification.state_machine import (
    ALERTING_STATUSES,
    is_terminal,
    validate_transition,
)
from app.verification.store import VerificationRecordStore

logger = logging.getLogger(__name__)

PENDING = VerificationStatus.PENDING
IN_PROGRESS = VerificationStatus.IN_PROGRESS
VERIFIED = VerificationStatus.VERIFIED
FAILED = VerificationStatus.FAILED
EXPIRED = VerificationStatus.EXPIRED
SUSPENDED = VerificationStatus.SUSPENDED

# Order used when a worker submits several checks at once
INITIATION_ORDER: Tuple[VerificationType, ...] = (
    VerificationType.IDENTITY,
    VerificationType.VEVO,
    VerificationType.WWCC,
    VerificationType.NDIS,
    VerificationType.FIRST_AID,
    VerificationType.ABN,
    VerificationType.TFN,
)

MANUAL_DECISIONS = {"cleared": VERIFIED, "excluded": FAILED}


@dataclass
class TransitionResult:
    record: VerificationRecord
    previous: VerificationStatus
    current: VerificationStatus
    applied: bool


@dataclass
class InitiateResult:
    record: VerificationRecord
    created: bool


@dataclass
class WorkerVerifications:
    worker: Worker
    records: List[VerificationRecord]
    alerts: List[VerificationAlert]


def derive_worker_status(
    required: Iterable[VerificationType],
    current_records: Mapping[VerificationType, VerificationRecord],
    now: Optional[datetime] = None,
) -> WorkerStatus:
    """
    Worker status over the required verification types.

    REJECTED if any required type FAILED, else SUSPENDED if any is SUSPENDED,
    else VERIFIED if every required type is VERIFIED and unexpired, else
    ONBOARDING_IN_PROGRESS.
    """
    now = now or utcnow()
    required = list(required)
    records = [current_records.get(t) for t in required]
    statuses = [r.status for r in records if r is not None]

    if FAILED in statuses:
        return WorkerStatus.REJECTED
    if SUSPENDED in statuses:
        return WorkerStatus.SUSPENDED

    def cleared(record: Optional[VerificationRecord]) -> bool:
        if record is None or record.status != VERIFIED:
            return False
        expires_at = ensure_utc(record.expires_at)
        return expires_at is None or expires_at > now

    if all(cleared(r) for r in records):
        return WorkerStatus.VERIFIED
    return WorkerStatus.ONBOARDING_IN_PROGRESS


class VerificationOrchestrator:
    def __init__(
        self,
        store: VerificationRecordStore,
        registry: ProviderRegistry,
        directory: WorkerDirectory,
        alerts: AlertService,
    ):
        self.store = store
        self.registry = registry
        self.directory = directory
        self.alerts = alerts
        self.db = store.db
        self.warning_window = timedelta(days=settings.EXPIRY_WARNING_DAYS)

    # --------- Initiation ---------
    async def initiate_verification(
        self,
        worker_id: str,
        verification_type: VerificationType,
        data: Optional[Dict[str, Any]] = None,
        documents: Optional[List[DocumentSubmission]] = None,
        principal: Optional[Principal] = None,
    ) -> InitiateResult:
        """
        Start a check, or return the worker's in-flight/verified record.

        Raises:
            NotFoundError: unknown worker
            AuthorizationError: principal does not own the worker
            ValidationError: no adapter for the type, or bad submission
            ProviderUnavailable: provider unreachable; nothing is persisted
        """
        data = data or {}
        documents = documents or []

        await self.directory.get_authorized_worker(worker_id, principal)
        adapter = self.registry.get(verification_type)

        current = await self.store.get_current(worker_id, verification_type)
        if current is not None and not is_terminal(current.status):
            logger.info(
                f"Returning existing {verification_type.value} verification {current.id} "
                f"for worker {worker_id} (status {current.status.value})"
            )
            return InitiateResult(record=current, created=False)

        result = await adapter.initiate(worker_id, data, documents)

        initial_status = (
            result.status if result.status in (PENDING, IN_PROGRESS) else IN_PROGRESS
        )
        try:
            if current is not None:
                await self.store.supersede(current)
            record = await self.store.create(
                worker_id=worker_id,
                verification_type=verification_type,
                provider=adapter.name,
                status=initial_status,
                provider_request_id=result.provider_request_id,
                submitted_data=(
                    result.submitted_data
                    if result.submitted_data is not None
                    else adapter.redact_submission(data)
                ),
                provider_response=result.payload or None,
                expires_at=result.expires_at,
                error_message=(
                    result.error_message if initial_status == result.status else None
                ),
                metadata=result.metadata,
                supersedes_id=current.id if current is not None else None,
            )
        except IntegrityError:
            # Lost the race on the current-record index
            await self.db.rollback()
            winner = await self.store.get_current(worker_id, verification_type)
            if winner is None:
                raise
            logger.info(
                f"Concurrent initiate for worker {worker_id} {verification_type.value} "
                f"resolved to verification {winner.id}"
            )
            return InitiateResult(record=winner, created=False)

        logger.info(
            f"Created {verification_type.value} verification {record.id} for worker "
            f"{worker_id} via {adapter.name} (status {initial_status.value})"
        )

        await self.store.add_documents(record, documents)

        if result.status != initial_status:
            await self._apply_initial_decision(record, result)

        await self.update_worker_status(worker_id)
        await self.db.commit()
        return InitiateResult(record=record, created=True)

    async def _apply_initial_decision(
        self, record: VerificationRecord, result: ProviderResult
    ) -> TransitionResult:
        decision = result.status
        error_message = result.error_message
        if decision in (EXPIRED, SUSPENDED):
            # A credential cannot expire before it was ever verified
            decision = FAILED
            error_message = error_message or f"Credential reported {result.status.value.lower()}"

        return await self.apply_status_update(
            record,
            decision,
            None,
            verified_at=result.verified_at,
            expires_at=result.expires_at,
            error_message=error_message,
            metadata=result.metadata,
        )

    async def initiate_all_verifications(
        self,
        worker_id: str,
        bundle: Mapping[VerificationType, Tuple[Dict[str, Any], List[DocumentSubmission]]],
        principal: Optional[Principal] = None,
    ) -> Tuple[Dict[VerificationType, InitiateResult], Dict[VerificationType, str], WorkerStatus]:
        """
        Initiate several checks, identity first. One type's failure is
        recorded and does not stop the others.
        """
        await self.directory.get_authorized_worker(worker_id, principal)

        results: Dict[VerificationType, InitiateResult] = {}
        errors: Dict[VerificationType, str] = {}

        ordered = [t for t in INITIATION_ORDER if t in bundle]
        for verification_type in ordered:
            data, documents = bundle[verification_type]
            try:
                results[verification_type] = await self.initiate_verification(
                    worker_id, verification_type, data, documents, principal
                )
            except VerificationError as e:
                await self.db.rollback()
                errors[verification_type] = e.message
                logger.warning(
                    f"{verification_type.value} initiation failed for worker {worker_id}: {e.message}"
                )
            except Exception as e:
                await self.db.rollback()
                errors[verification_type] = "Internal error"
                logger.exception(
                    f"{verification_type.value} initiation failed for worker {worker_id}: {e}"
                )

        worker_status = await self.update_worker_status(worker_id)
        await self.db.commit()
        return results, errors, worker_status

    # --------- State changes ---------
    async def apply_status_update(
        self,
        record: VerificationRecord,
        new_status: VerificationStatus,
        provider_payload: Optional[Dict[str, Any]] = None,
        *,
        verified_at: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
        error_message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        recheck: bool = False,
    ) -> TransitionResult:
        """
        Apply a canonical status to a record.

        The provider payload is persisted on every call. Same-status updates
        refresh expires_at/metadata without a transition. Edges outside the
        state machine, and updates that lose the conditional write, are
        logged no-ops. Transitions into FAILED, EXPIRED or SUSPENDED raise
        an alert.

        A FAILED report on a VERIFIED record (barred, visa cancelled) is a
        revocation and is applied as SUSPENDED.
        """
        previous = record.status

        if previous == VERIFIED and new_status == FAILED:
            logger.warning(
                f"Verification {record.id} revoked by provider "
                f"(reported {new_status.value}), applying {SUSPENDED.value}"
            )
            new_status = SUSPENDED

        if provider_payload is not None:
            await self.store.save_provider_response(record.id, provider_payload)

        if new_status == previous:
            values: Dict[Any, Any] = {}
            if expires_at is not None:
                values[VerificationRecord.expires_at] = expires_at
            if metadata is not None:
                values[VerificationRecord.record_metadata] = metadata
            if values:
                await self.store.conditional_update(record.id, previous, values)
            await self.store.refresh(record)
            logger.info(
                f"Verification {record.id} refreshed at {previous.value} "
                f"(requested {new_status.value}, no transition)"
            )
            return TransitionResult(record, previous, record.status, applied=False)

        try:
            validate_transition(previous, new_status, recheck=recheck)
        except StaleTransition as e:
            await self.store.refresh(record)
            logger.info(
                f"Verification {record.id} stale update ignored: {e} "
                f"(persisted {record.status.value})"
            )
            return TransitionResult(record, previous, record.status, applied=False)

        values = {VerificationRecord.status: new_status}
        if new_status == VERIFIED:
            values[VerificationRecord.verified_at] = verified_at or utcnow()
            values[VerificationRecord.error_message] = None
        if expires_at is not None:
            values[VerificationRecord.expires_at] = expires_at
        if error_message is not None and new_status != VERIFIED:
            values[VerificationRecord.error_message] = error_message
        if metadata is not None:
            values[VerificationRecord.record_metadata] = metadata

        applied = await self.store.conditional_update(record.id, previous, values)
        await self.store.refresh(record)

        if not applied:
            logger.info(
                f"Verification {record.id} {previous.value} -> {new_status.value} lost "
                f"conditional update (persisted {record.status.value})"
            )
            return TransitionResult(record, previous, record.status, applied=False)

        logger.info(
            f"Verification {record.id} ({record.verification_type.value}) "
            f"{previous.value} -> {new_status.value}"
        )

        if new_status in ALERTING_STATUSES:
            await self.alerts.on_transition(record, previous, new_status)

        return TransitionResult(record, previous, new_status, applied=True)

    async def _apply_provider_result(
        self, record: VerificationRecord, result: ProviderResult, recheck: bool = False
    ) -> TransitionResult:
        return await self.apply_status_update(
            record,
            result.status,
            result.payload or None,
            verified_at=result.verified_at,
            expires_at=result.expires_at,
            error_message=result.error_message,
            metadata=result.metadata,
            recheck=recheck,
        )

    async def expire_verification(
        self, record: VerificationRecord, now: Optional[datetime] = None
    ) -> TransitionResult:
        """VERIFIED -> EXPIRED once expires_at has passed."""
        now = now or utcnow()
        expires_at = ensure_utc(record.expires_at)
        if record.status != VERIFIED or expires_at is None or expires_at > now:
            return TransitionResult(record, record.status, record.status, applied=False)

        outcome = await self.apply_status_update(record, EXPIRED)
        if outcome.applied:
            await self.update_worker_status(record.worker_id)
        await self.db.commit()
        return outcome

    # --------- Pull path ---------
    def _needs_provider_check(
        self, record: VerificationRecord, now: datetime, include_verified: bool = False
    ) -> bool:
        if is_terminal(record.status):
            return False
        if record.status == VERIFIED:
            if include_verified:
                return True
            expires_at = ensure_utc(record.expires_at)
            return expires_at is not None and expires_at - now <= self.warning_window
        return True

    async def _count_poll_failure(
        self, record: VerificationRecord, adapter_name: str, reason: str
    ) -> int:
        """
        Count one unproductive status check. A PENDING/IN_PROGRESS record
        that reaches MAX_CONSECUTIVE_POLL_FAILURES is failed.
        """
        failures = await self.store.record_poll_failure(record)
        logger.warning(
            f"Status check for verification {record.id} unproductive ({reason}) "
            f"({failures}/{settings.MAX_CONSECUTIVE_POLL_FAILURES})"
        )
        if (
            failures >= settings.MAX_CONSECUTIVE_POLL_FAILURES
            and record.status in (PENDING, IN_PROGRESS)
        ):
            outcome = await self.apply_status_update(
                record,
                FAILED,
                None,
                error_message=f"Provider {adapter_name} {reason} after {failures} status checks",
            )
            if outcome.applied:
                await self.update_worker_status(record.worker_id)
        return failures

    async def check_verification_status(
        self,
        verification_id: str,
        principal: Optional[Principal] = None,
        include_verified: bool = False,
    ) -> VerificationRecord:
        """
        Refresh a record from its provider when it can still change.

        include_verified polls VERIFIED records outside the expiry warning
        window too (revocation monitoring).

        An unverified record for which the provider keeps reporting EXPIRED
        or SUSPENDED cannot move; those reports count toward
        MAX_CONSECUTIVE_POLL_FAILURES like outages do.

        Raises:
            ProviderUnavailable: after the failure has been counted (and the
                record failed once MAX_CONSECUTIVE_POLL_FAILURES is reached)
        """
        record = await self.store.get_or_404(verification_id)
        if principal is not None:
            await self.directory.get_authorized_worker(record.worker_id, principal)

        if (
            not self._needs_provider_check(record, utcnow(), include_verified)
            or not record.provider_request_id
        ):
            return record

        adapter = self.registry.for_record(record)
        try:
            result = await adapter.check_status(record.provider_request_id)
        except ProviderUnavailable:
            await self._count_poll_failure(
                record, adapter.name, "unavailable: exhausted adapter retries"
            )
            await self.db.commit()
            raise

        outcome = await self._apply_provider_result(record, result)
        if (
            not outcome.applied
            and record.status in (PENDING, IN_PROGRESS)
            and result.status in (EXPIRED, SUSPENDED)
        ):
            await self._count_poll_failure(
                record,
                adapter.name,
                f"reported {result.status.value} for an unverified check",
            )
        else:
            await self.store.reset_poll_failures(record)
        await self.update_worker_status(record.worker_id)
        await self.db.commit()
        return outcome.record

    async def check_worker_verification(
        self,
        worker_id: str,
        verification_type: VerificationType,
        principal: Optional[Principal] = None,
    ) -> VerificationRecord:
        await self.directory.get_authorized_worker(worker_id, principal)
        record = await self.store.get_current(worker_id, verification_type)
        if record is None:
            raise NotFoundError(
                f"No {verification_type.value} verification for worker {worker_id}"
            )
        return await self.check_verification_status(record.id)

    async def recheck_verification(
        self, verification_id: str, principal: Optional[Principal] = None
    ) -> VerificationRecord:
        """
        Re-query the provider for an EXPIRED record without resubmitting.

        A renewed credential goes EXPIRED -> IN_PROGRESS -> decision. A
        credential the provider still reports as expired stays EXPIRED.
        """
        record = await self.store.get_or_404(verification_id)
        if principal is not None:
            await self.directory.get_authorized_worker(record.worker_id, principal)

        if record.status != EXPIRED:
            raise ValidationError(
                f"Only EXPIRED verifications can be rechecked (status {record.status.value})"
            )
        if not record.provider_request_id:
            raise ValidationError("Verification has no provider request to recheck")

        adapter = self.registry.for_record(record)
        result = await adapter.check_status(record.provider_request_id)

        now = utcnow()
        effective_expiry = result.expires_at or ensure_utc(record.expires_at)
        still_expired = result.status in (EXPIRED, SUSPENDED) or (
            result.status == VERIFIED
            and effective_expiry is not None
            and effective_expiry <= now
        )

        if still_expired:
            # Same-status refresh: keeps the audit trail, no transition
            await self.apply_status_update(record, EXPIRED, result.payload or None)
            logger.info(
                f"Recheck of verification {record.id}: provider still reports "
                f"{result.status.value}, record stays EXPIRED"
            )
            await self.db.commit()
            return record

        await self.apply_status_update(
            record, IN_PROGRESS, result.payload or None, recheck=True
        )
        if result.status not in (PENDING, IN_PROGRESS):
            await self._apply_provider_result(record, result)

        await self.update_worker_status(record.worker_id)
        await self.db.commit()
        return record

    # --------- Manual review ---------
    async def record_manual_decision(
        self,
        verification_id: str,
        decision: str,
        expires_at: Optional[datetime] = None,
        notes: Optional[str] = None,
        reviewer: Optional[Principal] = None,
    ) -> TransitionResult:
        """Admin decision for providers without an automated answer (NDIS portal, First Aid certificates)."""
        if reviewer is not None and not reviewer.is_admin:
            raise AuthorizationError("Only administrators can record manual decisions")

        new_status = MANUAL_DECISIONS.get(decision)
        if new_status is None:
            raise ValidationError(f"Unknown decision: {decision}")

        record = await self.store.get_or_404(verification_id)
        adapter = self.registry.for_record(record)
        if not adapter.manual_review:
            raise ValidationError(
                f"{record.verification_type.value} verifications are not manually reviewed"
            )

        now = utcnow()
        expiry = None
        if new_status == VERIFIED:
            expiry = ensure_utc(expires_at) or ensure_utc(record.expires_at)
            if expiry is None and adapter.default_validity_years:
                expiry = now + relativedelta(years=adapter.default_validity_years)

        metadata = {
            **(record.record_metadata or {}),
            "manually_verified": True,
            "decision": decision,
            "reviewed_by": reviewer.id if reviewer else None,
            "reviewed_at": now.isoformat(),
            "notes": notes,
        }

        outcome = await self.apply_status_update(
            record,
            new_status,
            {"manual_decision": decision, "reviewed_by": reviewer.id if reviewer else None},
            expires_at=expiry,
            error_message=(notes or "Excluded by manual review") if new_status == FAILED else None,
            metadata=metadata,
        )
        if not outcome.applied and outcome.current != new_status:
            raise ValidationError(
                f"Cannot record '{decision}' for verification in status {outcome.current.value}"
            )

        await self.update_worker_status(record.worker_id)
        await self.db.commit()
        return outcome

    # --------- Worker aggregate ---------
    async def update_worker_status(self, worker_id: str) -> WorkerStatus:
        """Recompute Worker.status from the current records. Idempotent."""
        worker = await self.directory.get_worker(worker_id)
        required = self.directory.required_types(worker)
        current = {
            r.verification_type: r
            for r in await self.store.list_current_for_worker(worker_id)
        }

        new_status = derive_worker_status(required, current)
        if worker.status != new_status:
            logger.info(
                f"Worker {worker_id} status {worker.status.value if worker.status else None} "
                f"-> {new_status.value}"
            )
            worker.status = new_status
            if new_status == WorkerStatus.VERIFIED:
                worker.onboarding_status = OnboardingStatus.COMPLETED
            await self.db.flush()
        return new_status

    async def get_worker_verifications(
        self, worker_id: str, principal: Optional[Principal] = None
    ) -> WorkerVerifications:
        worker = await self.directory.get_authorized_worker(worker_id, principal)
        records = await self.store.list_for_worker(worker_id)
        alerts = await self.alerts.list_for_worker(worker_id)
        return WorkerVerifications(worker=worker, records=records, alerts=alerts)


def build_orchestrator(
    db: AsyncSession, registry: ProviderRegistry
) -> VerificationOrchestrator:
    """Orchestrator and collaborators bound to one session."""
    store = VerificationRecordStore(db)
    return VerificationOrchestrator(
        store=store,
        registry=registry,
        directory=WorkerDirectory(db),
        alerts=AlertService(db),
    )
