"""
VEVO work-rights checks.

Two interchangeable providers sit behind VEVO_PROVIDER: VSure (camelCase API)
and CheckWorkRights (snake_case API). Both push status changes to
/webhooks/vevo with the same payload shape.
"""

from typing import Any, Dict, List, Optional

from app.models import VerificationStatus, VerificationType
from app.verification.exceptions import ValidationError
from app.verification.providers.base import (
    DocumentSubmission,
    HttpProviderAdapter,
    ProviderResult,
    WebhookEvent,
    parse_date,
    require_fields,
)

_STATUS_WORDS = {
    "verified": VerificationStatus.VERIFIED,
    "valid": VerificationStatus.VERIFIED,
    "expired": VerificationStatus.EXPIRED,
    "invalid": VerificationStatus.FAILED,
    "failed": VerificationStatus.FAILED,
    "suspended": VerificationStatus.SUSPENDED,
    "pending": VerificationStatus.PENDING,
    "in_progress": VerificationStatus.IN_PROGRESS,
}


def map_vevo_status(
    status: Optional[str], visa_status: Optional[str] = None, work_rights: Any = None
) -> VerificationStatus:
    if work_rights is True:
        return VerificationStatus.VERIFIED
    for word in (status, visa_status):
        mapped = _STATUS_WORDS.get(str(word or "").lower())
        if mapped is not None:
            return mapped
    return VerificationStatus.IN_PROGRESS


class VevoAdapter(HttpProviderAdapter):
    """Shared webhook handling for both work-rights providers."""

    verification_type = VerificationType.VEVO
    sensitive_fields = ("passportNumber", "dateOfBirth")
    aliases = ("vevo",)
    reports_revocations = True

    def translate_webhook(self, payload: Dict[str, Any]) -> WebhookEvent:
        request_id = payload.get("requestId")
        if not request_id:
            raise ValidationError("Missing requestId")

        return WebhookEvent(
            provider_request_id=str(request_id),
            status=map_vevo_status(payload.get("status"), payload.get("visaStatus")),
            expires_at=parse_date(payload.get("visaExpiryDate")),
            metadata={
                "visa_status": payload.get("visaStatus"),
                "status": payload.get("status"),
            },
            error_message=payload.get("reason"),
            payload=payload,
        )


class VSureAdapter(VevoAdapter):
    name = "vsure"

    async def initiate(
        self,
        worker_id: str,
        data: Dict[str, Any],
        documents: List[DocumentSubmission],
    ) -> ProviderResult:
        require_fields(data, "passportNumber", "dateOfBirth", "firstName", "lastName")

        body = await self._request_json(
            "POST",
            "/api/v1/vevo/check",
            json={
                "passportNumber": data["passportNumber"],
                "dateOfBirth": data["dateOfBirth"],
                "firstName": data["firstName"],
                "lastName": data["lastName"],
                "visaGrantNumber": data.get("visaGrantNumber"),
                "transactionReferenceNumber": data.get("transactionReferenceNumber"),
            },
        )

        verified = body.get("status") == "valid" or body.get("workRights") is True
        request_id = body.get("requestId") or body.get("transactionId")
        return ProviderResult(
            status=(
                VerificationStatus.VERIFIED
                if verified
                else VerificationStatus.FAILED
            ),
            provider_request_id=str(request_id) if request_id else None,
            expires_at=parse_date(body.get("visaExpiryDate")),
            metadata={
                "visa_type": body.get("visaType"),
                "visa_subclass": body.get("visaSubclass"),
                "work_rights": body.get("workRights"),
                "work_restrictions": body.get("workRestrictions"),
            },
            error_message=None if verified else body.get("reason") or "VEVO check failed",
            payload=body,
            submitted_data=self.redact_submission(data),
        )

    async def check_status(self, provider_request_id: str) -> ProviderResult:
        body = await self._request_json(
            "GET", f"/api/v1/vevo/status/{provider_request_id}"
        )
        return ProviderResult(
            status=map_vevo_status(
                body.get("status"), body.get("visaStatus"), body.get("workRights")
            ),
            provider_request_id=provider_request_id,
            verified_at=parse_date(body.get("verifiedAt")),
            expires_at=parse_date(body.get("visaExpiryDate")),
            metadata={
                "visa_type": body.get("visaType"),
                "visa_subclass": body.get("visaSubclass"),
                "work_rights": body.get("workRights"),
            },
            error_message=body.get("error") or body.get("reason"),
            payload=body,
        )


class CheckWorkRightsAdapter(VevoAdapter):
    name = "checkworkrights"

    async def initiate(
        self,
        worker_id: str,
        data: Dict[str, Any],
        documents: List[DocumentSubmission],
    ) -> ProviderResult:
        require_fields(data, "passportNumber", "dateOfBirth", "firstName", "lastName")

        body = await self._request_json(
            "POST",
            "/api/v3/work-rights/check",
            json={
                "passport_number": data["passportNumber"],
                "date_of_birth": data["dateOfBirth"],
                "first_name": data["firstName"],
                "last_name": data["lastName"],
                "visa_grant_number": data.get("visaGrantNumber"),
                "transaction_reference_number": data.get("transactionReferenceNumber"),
            },
        )

        verified = body.get("status") == "verified" or body.get("work_rights") is True
        request_id = body.get("request_id") or body.get("id")
        return ProviderResult(
            status=(
                VerificationStatus.VERIFIED
                if verified
                else VerificationStatus.FAILED
            ),
            provider_request_id=str(request_id) if request_id else None,
            expires_at=parse_date(body.get("visa_expiry_date")),
            metadata={
                "visa_type": body.get("visa_type"),
                "visa_subclass": body.get("visa_subclass"),
                "work_rights": body.get("work_rights"),
                "work_restrictions": body.get("work_restrictions"),
            },
            error_message=None if verified else body.get("message") or "VEVO check failed",
            payload=body,
            submitted_data=self.redact_submission(data),
        )

    async def check_status(self, provider_request_id: str) -> ProviderResult:
        body = await self._request_json(
            "GET", f"/api/v3/work-rights/status/{provider_request_id}"
        )
        return ProviderResult(
            status=map_vevo_status(
                body.get("status"), body.get("visa_status"), body.get("work_rights")
            ),
            provider_request_id=provider_request_id,
            verified_at=parse_date(body.get("verified_at")),
            expires_at=parse_date(body.get("visa_expiry_date")),
            metadata={
                "visa_type": body.get("visa_type"),
                "visa_subclass": body.get("visa_subclass"),
                "work_rights": body.get("work_rights"),
            },
            error_message=body.get("error") or body.get("message"),
            payload=body,
        )
