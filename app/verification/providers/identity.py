"""
Identity document verification (DVS) through Chandler Macleod or Privy.

A driver's licence or passport image already in document storage is sent by
URL alongside the document details.
"""

from typing import Any, Dict, List

from app.models import VerificationStatus, VerificationType
from app.verification.exceptions import ValidationError
from app.verification.providers.base import (
    DocumentSubmission,
    HttpProviderAdapter,
    ProviderResult,
    WebhookEvent,
    find_document,
    parse_date,
    require_fields,
)

DOCUMENT_TYPES = ("drivers_licence", "passport")


def build_identity_request(
    data: Dict[str, Any], documents: List[DocumentSubmission]
) -> Dict[str, Any]:
    require_fields(
        data, "firstName", "lastName", "dateOfBirth", "documentType", "documentNumber"
    )
    if data["documentType"] not in DOCUMENT_TYPES:
        raise ValidationError(
            f"documentType must be one of: {', '.join(DOCUMENT_TYPES)}"
        )

    body: Dict[str, Any] = {
        "firstName": data["firstName"],
        "lastName": data["lastName"],
        "dateOfBirth": data["dateOfBirth"],
        "documentType": data["documentType"],
        "documentNumber": data["documentNumber"],
    }

    if data["documentType"] == "drivers_licence":
        body["state"] = data.get("state")
        body["expiryDate"] = data.get("expiryDate")
        image = find_document(documents, "drivers_licence_front")
    else:
        image = find_document(documents, "passport")

    if image:
        body["documentImage"] = image.file_url
    return body


def map_identity_status(payload: Dict[str, Any]) -> VerificationStatus:
    """`verified` wins; otherwise the provider status word is the canonical name."""
    if payload.get("verified") is True:
        return VerificationStatus.VERIFIED
    status = str(payload.get("status") or "").upper()
    if status == "REJECTED":
        return VerificationStatus.FAILED
    try:
        return VerificationStatus(status)
    except ValueError:
        return VerificationStatus.IN_PROGRESS


class IdentityAdapter(HttpProviderAdapter):
    verification_type = VerificationType.IDENTITY
    sensitive_fields = ("documentNumber", "dateOfBirth")
    verify_path = ""
    status_path = "/api/v1/status/{request_id}"

    def _decision(self, body: Dict[str, Any]) -> Dict[str, Any]:
        raise NotImplementedError

    async def initiate(
        self,
        worker_id: str,
        data: Dict[str, Any],
        documents: List[DocumentSubmission],
    ) -> ProviderResult:
        body = await self._request_json(
            "POST", self.verify_path, json=build_identity_request(data, documents)
        )
        decision = self._decision(body)
        verified = decision.pop("verified")
        request_id = decision.pop("request_id")
        return ProviderResult(
            status=(
                VerificationStatus.VERIFIED if verified else VerificationStatus.FAILED
            ),
            provider_request_id=str(request_id) if request_id else None,
            expires_at=parse_date(body.get("expiryDate")),
            metadata={"document_type": data["documentType"], **decision},
            error_message=(
                None
                if verified
                else body.get("reason")
                or body.get("message")
                or "Identity verification failed"
            ),
            payload=body,
            submitted_data=self.redact_submission(data),
        )

    async def check_status(self, provider_request_id: str) -> ProviderResult:
        body = await self._request_json(
            "GET", self.status_path.format(request_id=provider_request_id)
        )
        return ProviderResult(
            status=map_identity_status(body),
            provider_request_id=provider_request_id,
            verified_at=parse_date(body.get("verifiedAt")),
            expires_at=parse_date(body.get("expiryDate")),
            metadata={
                "match_score": body.get("matchScore"),
                "dvs_verified": body.get("dvsVerified"),
            },
            error_message=body.get("error") or body.get("reason"),
            payload=body,
        )

    def translate_webhook(self, payload: Dict[str, Any]) -> WebhookEvent:
        request_id = payload.get("requestId")
        if not request_id:
            raise ValidationError("Missing requestId")

        return WebhookEvent(
            provider_request_id=str(request_id),
            status=map_identity_status(payload),
            expires_at=parse_date(payload.get("expiryDate")),
            error_message=payload.get("reason"),
            payload=payload,
        )


class ChandlerAdapter(IdentityAdapter):
    name = "chandler"
    verify_path = "/api/v1/verify"

    def _decision(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "verified": body.get("verified") is True,
            "request_id": body.get("requestId") or body.get("transactionId"),
            "match_score": body.get("matchScore"),
            "dvs_verified": body.get("dvsVerified"),
            "biometric_verified": body.get("biometricVerified"),
        }


class PrivyAdapter(IdentityAdapter):
    name = "privy"
    verify_path = "/api/verify"

    def _decision(self, body: Dict[str, Any]) -> Dict[str, Any]:
        return {
            "verified": body.get("status") == "verified" or body.get("verified") is True,
            "request_id": body.get("requestId") or body.get("id"),
            "confidence": body.get("confidence"),
            "dvs_match": body.get("dvsMatch"),
        }
