"""
Working With Children Check via Oho.

Oho scans the state WWC registers asynchronously: the scan request is
accepted with status "submitted" and the outcome arrives by webhook.
"""

import logging
from typing import Any, Dict, List

from app.models import VerificationStatus, VerificationType
from app.verification.providers.base import (
    DocumentSubmission,
    HttpProviderAdapter,
    ProviderResult,
    WebhookEvent,
    parse_date,
    require_fields,
)
from app.verification.exceptions import ValidationError

logger = logging.getLogger(__name__)

AUSTRALIAN_STATES = {"nsw", "vic", "qld", "wa", "sa", "tas", "act", "nt"}


def map_oho_status(payload: Dict[str, Any]) -> VerificationStatus:
    status = str(payload.get("status") or "").lower()

    if payload.get("verified") is True or status in ("cleared", "verified"):
        return VerificationStatus.VERIFIED
    if payload.get("barred") is True or status == "barred":
        return VerificationStatus.FAILED
    if status == "expired":
        return VerificationStatus.EXPIRED
    if status == "suspended":
        return VerificationStatus.SUSPENDED
    if status == "submitted":
        return VerificationStatus.PENDING
    return VerificationStatus.IN_PROGRESS


def _card_metadata(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "state": payload.get("state"),
        "card_number": payload.get("card_number"),
        "card_type": payload.get("card_type"),
        "status": payload.get("status"),
    }


class OhoAdapter(HttpProviderAdapter):
    name = "oho"
    verification_type = VerificationType.WWCC
    sensitive_fields = ("dateOfBirth",)
    reports_revocations = True

    async def initiate(
        self,
        worker_id: str,
        data: Dict[str, Any],
        documents: List[DocumentSubmission],
    ) -> ProviderResult:
        require_fields(data, "state", "wwccNumber", "firstName", "lastName")
        state = str(data["state"]).lower()
        if state not in AUSTRALIAN_STATES:
            raise ValidationError(f"Unknown state for WWCC: {data['state']}")

        body = await self._request_json(
            "POST",
            "/api/scan",
            json={
                "type": "statewwc",
                "state": state,
                "identifier": data["wwccNumber"],
                "first_name": data["firstName"],
                "surname": data["lastName"],
                "birth_date": data.get("dateOfBirth"),
                "expiry": data.get("expiryDate"),
            },
        )

        status = map_oho_status(body)
        request_id = body.get("request_id") or body.get("id")
        result = ProviderResult(
            status=status,
            provider_request_id=str(request_id) if request_id else None,
            expires_at=parse_date(body.get("expiry_date") or data.get("expiryDate")),
            metadata={**_card_metadata(body), "state": data["state"]},
            payload=body,
            submitted_data=self.redact_submission(data),
        )
        if status == VerificationStatus.FAILED:
            result.error_message = (
                "Worker is barred from working with children"
                if body.get("barred") is True or body.get("status") == "barred"
                else body.get("reason") or "WWCC verification failed"
            )
        return result

    async def check_status(self, provider_request_id: str) -> ProviderResult:
        body = await self._request_json("GET", f"/api/status/{provider_request_id}")
        return ProviderResult(
            status=map_oho_status(body),
            provider_request_id=provider_request_id,
            verified_at=parse_date(body.get("verified_at") or body.get("verifiedAt")),
            expires_at=parse_date(body.get("expiry_date") or body.get("expiryDate")),
            metadata=_card_metadata(body),
            error_message=body.get("error") or body.get("reason"),
            payload=body,
        )

    def translate_webhook(self, payload: Dict[str, Any]) -> WebhookEvent:
        request_id = payload.get("request_id")
        if not request_id:
            raise ValidationError("Missing request_id")

        return WebhookEvent(
            provider_request_id=str(request_id),
            status=map_oho_status(payload),
            expires_at=parse_date(payload.get("expiry_date")),
            metadata=_card_metadata(payload),
            error_message=payload.get("reason"),
            payload=payload,
        )

