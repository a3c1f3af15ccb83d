"""
ABN verification against the Australian Business Register.

The 11-digit checksum is always validated locally. When an ABR GUID is
configured the ABN is also looked up with the ABR JSON (JSONP) service.
"""

import json
import logging
import re
from typing import Any, Dict, List, Optional

from app.models import VerificationStatus, VerificationType
from app.verification.exceptions import ProviderUnavailable, ValidationError
from app.verification.providers.base import (
    DocumentSubmission,
    HttpProviderAdapter,
    ProviderResult,
)

logger = logging.getLogger(__name__)

ABN_WEIGHTS = (10, 1, 3, 5, 7, 9, 11, 13, 15, 17, 19)
REQUEST_PREFIX = "abn-"

_JSONP_PATTERN = re.compile(r"^\s*\w+\((.*)\)\s*;?\s*$", re.DOTALL)


def clean_abn(abn: str) -> str:
    return re.sub(r"[\s-]", "", abn)


def format_abn(abn: str) -> str:
    """Display form: XX XXX XXX XXX"""
    cleaned = clean_abn(abn)
    if len(cleaned) != 11:
        return abn
    return f"{cleaned[0:2]} {cleaned[2:5]} {cleaned[5:8]} {cleaned[8:11]}"


def is_valid_abn(abn: str) -> bool:
    """
    ABN checksum: subtract 1 from the first digit, weight each digit and the
    weighted sum is divisible by 89. Equivalent to sum(d * w) % 89 == 10 on
    the unmodified digits.
    """
    cleaned = clean_abn(abn)
    if not re.fullmatch(r"\d{11}", cleaned):
        return False
    total = sum(int(d) * w for d, w in zip(cleaned, ABN_WEIGHTS))
    return total % 89 == 10


class AbrAdapter(HttpProviderAdapter):
    name = "abr"
    verification_type = VerificationType.ABN
    reports_revocations = True

    def __init__(self, base_url: str, guid: Optional[str] = None, **kwargs):
        super().__init__(base_url, **kwargs)
        self.guid = guid

    async def initiate(
        self,
        worker_id: str,
        data: Dict[str, Any],
        documents: List[DocumentSubmission],
    ) -> ProviderResult:
        abn = data.get("abn")
        if not abn:
            raise ValidationError("ABN is required")

        cleaned = clean_abn(str(abn))
        result = await self._verify(cleaned)
        result.submitted_data = {"abn": cleaned}
        return result

    async def check_status(self, provider_request_id: str) -> ProviderResult:
        abn = provider_request_id
        if abn.startswith(REQUEST_PREFIX):
            abn = abn[len(REQUEST_PREFIX):]

        result = await self._verify(abn)
        # A previously active ABN that is now cancelled is a suspension
        if result.status == VerificationStatus.FAILED and result.payload:
            result.status = VerificationStatus.SUSPENDED
        return result

    async def _verify(self, abn: str) -> ProviderResult:
        request_id = f"{REQUEST_PREFIX}{abn}"

        if not is_valid_abn(abn):
            return ProviderResult(
                status=VerificationStatus.FAILED,
                provider_request_id=request_id,
                error_message="Invalid ABN format. ABN must be 11 digits and pass checksum validation.",
            )

        metadata: Dict[str, Any] = {"abn": abn, "formatted_abn": format_abn(abn)}

        if not self.guid:
            return ProviderResult(
                status=VerificationStatus.VERIFIED,
                provider_request_id=request_id,
                metadata={**metadata, "format_validated_only": True},
            )

        details = await self._lookup(abn)
        if details.get("Message"):
            return ProviderResult(
                status=VerificationStatus.FAILED,
                provider_request_id=request_id,
                metadata=metadata,
                error_message=details["Message"],
            )

        metadata.update(
            {
                "entity_name": details.get("EntityName"),
                "entity_type": details.get("EntityTypeName"),
                "abn_status": details.get("AbnStatus"),
                "gst_registered": bool(details.get("Gst")),
                "state": details.get("AddressState"),
                "postcode": details.get("AddressPostcode"),
            }
        )

        if str(details.get("AbnStatus", "")).lower() == "active":
            return ProviderResult(
                status=VerificationStatus.VERIFIED,
                provider_request_id=request_id,
                metadata=metadata,
                payload=details,
            )

        return ProviderResult(
            status=VerificationStatus.FAILED,
            provider_request_id=request_id,
            metadata=metadata,
            error_message=f"ABN status is {details.get('AbnStatus') or 'unknown'}",
            payload=details,
        )

    async def _lookup(self, abn: str) -> Dict[str, Any]:
        response = await self._request(
            "GET",
            "/AbnDetails.aspx",
            params={"abn": abn, "guid": self.guid, "callback": "callback"},
        )
        match = _JSONP_PATTERN.match(response.text)
        try:
            details = json.loads(match.group(1) if match else response.text)
        except ValueError as e:
            raise ProviderUnavailable(self.name, f"invalid ABR response: {e}") from e

        if not isinstance(details, dict):
            raise ProviderUnavailable(self.name, "unexpected ABR response shape")
        return details
