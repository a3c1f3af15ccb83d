"""
Tax File Number validation.

Full TFN verification needs ATO authorization, so only the format and
weighted checksum are validated. The TFN itself is never persisted: the
submission is redacted and the request id is a salted hash.
"""

import hashlib
import hmac
import re
from typing import Any, Dict, List

from app.models import VerificationStatus, VerificationType
from app.verification.exceptions import ValidationError
from app.verification.providers.base import (
    DocumentSubmission,
    ProviderAdapter,
    ProviderResult,
)

TFN_WEIGHTS_8 = (10, 7, 8, 4, 6, 3, 5, 1)
TFN_WEIGHTS_9 = (10, 7, 8, 4, 6, 3, 5, 2, 1)


def clean_tfn(tfn: str) -> str:
    return re.sub(r"[\s-]", "", tfn)


def is_valid_tfn(tfn: str) -> bool:
    """8 or 9 digits, no leading zero, weighted sum divisible by 11."""
    cleaned = clean_tfn(tfn)
    if not re.fullmatch(r"[1-9]\d{7,8}", cleaned):
        return False
    weights = TFN_WEIGHTS_8 if len(cleaned) == 8 else TFN_WEIGHTS_9
    return sum(int(d) * w for d, w in zip(cleaned, weights)) % 11 == 0


class AtoTfnAdapter(ProviderAdapter):
    name = "ato"
    verification_type = VerificationType.TFN
    sensitive_fields = ("tfn",)

    def __init__(self, hash_key: str):
        super().__init__(webhook_secret=None)
        self._hash_key = hash_key.encode("utf-8")

    def request_id_for(self, tfn: str) -> str:
        digest = hmac.new(self._hash_key, clean_tfn(tfn).encode("utf-8"), hashlib.sha256)
        return f"tfn-{digest.hexdigest()[:32]}"

    async def initiate(
        self,
        worker_id: str,
        data: Dict[str, Any],
        documents: List[DocumentSubmission],
    ) -> ProviderResult:
        tfn = data.get("tfn")
        if not tfn:
            raise ValidationError("TFN is required")

        tfn = str(tfn)
        submitted = self.redact_submission(data)

        if not is_valid_tfn(tfn):
            return ProviderResult(
                status=VerificationStatus.FAILED,
                provider_request_id=self.request_id_for(tfn),
                error_message="Invalid TFN format. TFN must be 8-9 digits and pass checksum validation.",
                submitted_data=submitted,
            )

        return ProviderResult(
            status=VerificationStatus.VERIFIED,
            provider_request_id=self.request_id_for(tfn),
            metadata={
                "format_valid": True,
                "note": "Format validated only. Full verification requires ATO authorization.",
            },
            submitted_data=submitted,
        )

    async def check_status(self, provider_request_id: str) -> ProviderResult:
        # Format validation is final; there is no upstream state to poll
        return ProviderResult(
            status=VerificationStatus.VERIFIED,
            provider_request_id=provider_request_id,
        )
