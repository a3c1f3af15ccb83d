"""
Worker verification routes.

Endpoints:
    POST /workers/{worker_id}/verifications/{type}          initiate one check
    GET  /workers/{worker_id}/verifications/{type}          current record, refreshed
    POST /workers/{worker_id}/verifications/{type}/recheck  re-query an EXPIRED record
    GET  /workers/{worker_id}/verifications                 full history and alerts
    POST /workers/{worker_id}/verifications                 initiate several checks
    POST /verifications/{verification_id}/manual-decision   admin review outcome
"""

import logging
from typing import List

from fastapi import APIRouter, Depends, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.service import Principal, auth_service
from app.core.database import get_db
from app.models import VerificationType
from app.verification.exceptions import ProviderUnavailable, ValidationError
from app.verification.orchestrator import VerificationOrchestrator, build_orchestrator
from app.verification.providers import ProviderRegistry
from app.verification.providers.base import DocumentSubmission
from app.verification.schemas import (
    BundleVerificationRequest,
    BundleVerificationResponse,
    DocumentInput,
    InitiateVerificationRequest,
    InitiateVerificationResponse,
    ManualDecisionRequest,
    VerificationAlertResponse,
    VerificationRecordDetail,
    VerificationRecordResponse,
    WorkerVerificationsResponse,
)
from app.verification.store import VerificationRecordStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["verifications"])


def get_provider_registry(request: Request) -> ProviderRegistry:
    """Registry built at startup and stored on app.state."""
    return request.app.state.provider_registry


def get_orchestrator(
    db: AsyncSession = Depends(get_db),
    registry: ProviderRegistry = Depends(get_provider_registry),
) -> VerificationOrchestrator:
    return build_orchestrator(db, registry)


def parse_verification_type(value: str) -> VerificationType:
    try:
        return VerificationType(value.upper())
    except ValueError:
        raise ValidationError(f"Unknown verification type: {value}")


def to_submissions(documents: List[DocumentInput]) -> List[DocumentSubmission]:
    return [
        DocumentSubmission(
            document_type=d.type, file_url=d.file_url, metadata=d.metadata
        )
        for d in documents
    ]


@router.post(
    "/workers/{worker_id}/verifications/{verification_type}",
    response_model=InitiateVerificationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def initiate_verification(
    worker_id: str,
    verification_type: str,
    body: InitiateVerificationRequest,
    response: Response,
    principal: Principal = Depends(auth_service.get_current_principal),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """
    Start a verification with the type's provider.

    Returns 201 with the new record, or 200 with the existing record when a
    check of this type is already pending, in progress or verified.
    Provider outages return 502 and nothing is stored.
    """
    parsed_type = parse_verification_type(verification_type)
    result = await orchestrator.initiate_verification(
        worker_id,
        parsed_type,
        body.data,
        to_submissions(body.documents),
        principal=principal,
    )
    if not result.created:
        response.status_code = status.HTTP_200_OK

    return InitiateVerificationResponse(
        verification=VerificationRecordResponse.model_validate(result.record),
        created=result.created,
    )


@router.get(
    "/workers/{worker_id}/verifications/{verification_type}",
    response_model=VerificationRecordResponse,
)
async def get_verification(
    worker_id: str,
    verification_type: str,
    principal: Principal = Depends(auth_service.get_current_principal),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """Current record for the type, refreshed from the provider when it can still change."""
    parsed_type = parse_verification_type(verification_type)
    try:
        record = await orchestrator.check_worker_verification(
            worker_id, parsed_type, principal=principal
        )
    except ProviderUnavailable as e:
        # Serve the stored state; the failure has already been counted
        logger.warning(f"Serving cached {parsed_type.value} for worker {worker_id}: {e.message}")
        record = await VerificationRecordStore(orchestrator.db).get_current(
            worker_id, parsed_type
        )
    return VerificationRecordResponse.model_validate(record)


@router.post(
    "/workers/{worker_id}/verifications/{verification_type}/recheck",
    response_model=VerificationRecordResponse,
)
async def recheck_verification(
    worker_id: str,
    verification_type: str,
    principal: Principal = Depends(auth_service.get_current_principal),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    parsed_type = parse_verification_type(verification_type)
    await orchestrator.directory.get_authorized_worker(worker_id, principal)
    current = await orchestrator.store.get_current(worker_id, parsed_type)
    if current is None:
        raise ValidationError(f"No {parsed_type.value} verification to recheck")

    record = await orchestrator.recheck_verification(current.id, principal=principal)
    return VerificationRecordResponse.model_validate(record)


@router.get(
    "/workers/{worker_id}/verifications",
    response_model=WorkerVerificationsResponse,
)
async def get_worker_verifications(
    worker_id: str,
    principal: Principal = Depends(auth_service.get_current_principal),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """Every record (current and superseded) with documents, plus alerts."""
    view = await orchestrator.get_worker_verifications(worker_id, principal=principal)
    return WorkerVerificationsResponse(
        worker_id=view.worker.id,
        worker_status=view.worker.status,
        verifications=[VerificationRecordDetail.model_validate(r) for r in view.records],
        alerts=[VerificationAlertResponse.model_validate(a) for a in view.alerts],
    )


@router.post(
    "/workers/{worker_id}/verifications",
    response_model=BundleVerificationResponse,
)
async def initiate_all_verifications(
    worker_id: str,
    body: BundleVerificationRequest,
    principal: Principal = Depends(auth_service.get_current_principal),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """Initiate several types at once. Per-type failures are reported in `errors`."""
    bundle = {
        parse_verification_type(name): (item.data, to_submissions(item.documents))
        for name, item in body.verifications.items()
    }

    results, errors, worker_status = await orchestrator.initiate_all_verifications(
        worker_id, bundle, principal=principal
    )

    return BundleVerificationResponse(
        results={
            t.value: InitiateVerificationResponse(
                verification=VerificationRecordResponse.model_validate(r.record),
                created=r.created,
            )
            for t, r in results.items()
        },
        errors={t.value: message for t, message in errors.items()},
        worker_status=worker_status,
    )


@router.post(
    "/verifications/{verification_id}/manual-decision",
    response_model=VerificationRecordResponse,
)
async def record_manual_decision(
    verification_id: str,
    body: ManualDecisionRequest,
    principal: Principal = Depends(auth_service.get_current_principal),
    orchestrator: VerificationOrchestrator = Depends(get_orchestrator),
):
    """Admin only. `cleared` verifies the record, `excluded` fails it."""
    outcome = await orchestrator.record_manual_decision(
        verification_id,
        body.decision,
        expires_at=body.expires_at,
        notes=body.notes,
        reviewer=principal,
    )
    return VerificationRecordResponse.model_validate(outcome.record)
