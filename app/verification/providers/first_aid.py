"""
First Aid (HLTAID011 Provide First Aid) verification.

With a USI number the unit is confirmed against the learner's USI transcript.
Otherwise a certificate is queued for manual review.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from dateutil.relativedelta import relativedelta

from app.models import VerificationStatus, VerificationType
from app.verification.exceptions import ProviderUnavailable, ValidationError
from app.verification.providers.base import (
    DocumentSubmission,
    HttpProviderAdapter,
    ProviderResult,
    find_document,
    parse_date,
)

logger = logging.getLogger(__name__)

FIRST_AID_UNIT = "HLTAID011"
VALID_UNIT_CODES = ("HLTAID009", "HLTAID011", "HLTAID012")

USI_PREFIX = "usi-"
MANUAL_PREFIX = "manual-"


class UsiFirstAidAdapter(HttpProviderAdapter):
    name = "usi"
    verification_type = VerificationType.FIRST_AID
    sensitive_fields = ("usiNumber",)
    manual_review = True

    def __init__(self, *args, validity_years: int = 3, **kwargs):
        super().__init__(*args, **kwargs)
        self.default_validity_years = validity_years

    async def initiate(
        self,
        worker_id: str,
        data: Dict[str, Any],
        documents: List[DocumentSubmission],
    ) -> ProviderResult:
        usi_number = data.get("usiNumber")
        if usi_number:
            try:
                result = await self._verify_transcript(str(usi_number))
            except ProviderUnavailable:
                if not self._has_certificate(data, documents):
                    raise
                logger.warning("USI transcript unavailable, falling back to certificate review")
            else:
                if result.status == VerificationStatus.VERIFIED or not self._has_certificate(
                    data, documents
                ):
                    result.submitted_data = self.redact_submission(data)
                    return result

        if self._has_certificate(data, documents):
            result = self._review_certificate(data, documents)
            result.submitted_data = self.redact_submission(data)
            return result

        raise ValidationError(
            "Either usiNumber or certificate details are required for First Aid verification"
        )

    @staticmethod
    def _has_certificate(
        data: Dict[str, Any], documents: List[DocumentSubmission]
    ) -> bool:
        return bool(data.get("certificateNumber")) or bool(
            find_document(documents, "first_aid_certificate")
        )

    async def _verify_transcript(self, usi_number: str) -> ProviderResult:
        body = await self._request_json(
            "POST",
            "/api/v1/transcript/verify",
            json={"usi": usi_number, "unitCode": FIRST_AID_UNIT},
        )

        if body.get("verified") is True and body.get("completed") is True:
            completed_at = parse_date(body.get("completionDate"))
            return ProviderResult(
                status=VerificationStatus.VERIFIED,
                provider_request_id=f"{USI_PREFIX}{usi_number}",
                expires_at=(
                    completed_at + relativedelta(years=self.default_validity_years)
                    if completed_at
                    else None
                ),
                metadata={
                    "verified_via": "usi",
                    "unit_code": body.get("unitCode"),
                    "unit_name": body.get("unitName"),
                    "completion_date": body.get("completionDate"),
                    "rto_number": body.get("rtoNumber"),
                    "rto_name": body.get("rtoName"),
                },
                payload=body,
            )

        return ProviderResult(
            status=VerificationStatus.FAILED,
            provider_request_id=f"{USI_PREFIX}{usi_number}",
            error_message="First Aid unit not found in USI transcript",
            payload=body,
        )

    def _review_certificate(
        self, data: Dict[str, Any], documents: List[DocumentSubmission]
    ) -> ProviderResult:
        unit_code = data.get("unitCode")
        if unit_code and unit_code not in VALID_UNIT_CODES:
            raise ValidationError(
                f"Invalid unit code: {unit_code}. Must be one of: {', '.join(VALID_UNIT_CODES)}"
            )

        now = datetime.now(timezone.utc)
        expires_at: Optional[datetime] = parse_date(data.get("expiryDate"))
        if expires_at is None:
            issued_at = parse_date(data.get("issueDate")) or now
            expires_at = issued_at + relativedelta(years=self.default_validity_years)

        certificate = find_document(documents, "first_aid_certificate")
        metadata = {
            "verified_via": "manual",
            "certificate_number": data.get("certificateNumber"),
            "rto_number": data.get("rtoNumber"),
            "unit_code": unit_code,
            "issue_date": data.get("issueDate"),
            "requires_manual_review": True,
            "document_url": certificate.file_url if certificate else None,
        }
        request_id = f"{MANUAL_PREFIX}{data.get('certificateNumber') or int(now.timestamp())}"

        if expires_at <= now:
            return ProviderResult(
                status=VerificationStatus.FAILED,
                provider_request_id=request_id,
                expires_at=expires_at,
                metadata=metadata,
                error_message="First Aid certificate has expired",
            )

        return ProviderResult(
            status=VerificationStatus.PENDING,
            provider_request_id=request_id,
            expires_at=expires_at,
            metadata=metadata,
        )

    async def check_status(self, provider_request_id: str) -> ProviderResult:
        if not provider_request_id.startswith(USI_PREFIX):
            # Manual certificate review is decided by an administrator
            return ProviderResult(
                status=VerificationStatus.PENDING,
                provider_request_id=provider_request_id,
            )

        usi_number = provider_request_id[len(USI_PREFIX):]
        body = await self._request_json(
            "GET", f"/api/v1/transcript/{usi_number}/status"
        )
        return ProviderResult(
            status=(
                VerificationStatus.VERIFIED
                if body.get("verified")
                else VerificationStatus.IN_PROGRESS
            ),
            provider_request_id=provider_request_id,
            verified_at=parse_date(body.get("verifiedAt")),
            expires_at=parse_date(body.get("expiryDate")),
            metadata={"unit_code": body.get("unitCode"), "verified_via": "usi"},
            payload=body,
        )
