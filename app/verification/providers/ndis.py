"""
NDIS Worker Screening Check.

The NDIS Worker Screening Database has no public API. Checks are recorded
for manual review through the portal and decided by an administrator
(see VerificationOrchestrator.record_manual_decision).
"""

import time
from typing import Any, Dict, List

from app.models import VerificationStatus, VerificationType
from app.verification.providers.base import (
    DocumentSubmission,
    ProviderAdapter,
    ProviderResult,
)


class NdisPortalAdapter(ProviderAdapter):
    name = "ndis"
    verification_type = VerificationType.NDIS
    sensitive_fields = ("dateOfBirth",)
    manual_review = True

    def __init__(self, portal_url: str, default_validity_years: int = 5):
        super().__init__(webhook_secret=None)
        self.portal_url = portal_url
        self.default_validity_years = default_validity_years

    async def initiate(
        self,
        worker_id: str,
        data: Dict[str, Any],
        documents: List[DocumentSubmission],
    ) -> ProviderResult:
        screening_id = data.get("screeningId")
        if screening_id:
            return ProviderResult(
                status=VerificationStatus.IN_PROGRESS,
                provider_request_id=str(screening_id),
                metadata={
                    "screening_id": screening_id,
                    "requires_manual_verification": True,
                    "portal_url": self.portal_url,
                },
                submitted_data=self.redact_submission(data),
            )

        request_id = data.get("applicationId") or f"ndis-{worker_id}-{int(time.time())}"
        return ProviderResult(
            status=VerificationStatus.PENDING,
            provider_request_id=str(request_id),
            metadata={
                "employer_id": data.get("employerId"),
                "requires_manual_verification": True,
                "portal_url": self.portal_url,
            },
            error_message=(
                "NDIS verification requires manual portal verification. "
                "Complete the check through the NDIS portal and provide the Screening ID."
            ),
            submitted_data=self.redact_submission(data),
        )

    async def check_status(self, provider_request_id: str) -> ProviderResult:
        # Portal status is only known after manual review
        return ProviderResult(
            status=VerificationStatus.IN_PROGRESS,
            provider_request_id=provider_request_id,
        )
