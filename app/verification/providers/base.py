"""
Provider adapter contract.

Every adapter translates one external provider's vocabulary into the
canonical VerificationStatus set. Adapters hold configuration only, so a
single instance is shared by every request and sweep.
"""

import hashlib
import hmac
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any, Dict, Iterable, List, Optional

import httpx
from dateutil import parser as date_parser

from app.core.config import settings
from app.models import VerificationStatus, VerificationType
from app.utils.retry_decorator import retry_external_api
from app.verification.exceptions import (
    InvalidSignature,
    ProviderUnavailable,
    ValidationError,
)

logger = logging.getLogger(__name__)

REDACTED = "[REDACTED]"

SIGNATURE_PREFIX = "sha256="


@dataclass
class DocumentSubmission:
    document_type: str
    file_url: str
    metadata: Optional[Dict[str, Any]] = None


@dataclass
class ProviderResult:
    """Canonical outcome of an initiate or status call."""

    status: VerificationStatus
    provider_request_id: Optional[str] = None
    expires_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)
    # Submission as persisted on the record, sensitive fields redacted
    submitted_data: Optional[Dict[str, Any]] = None


@dataclass
class WebhookEvent:
    provider_request_id: str
    status: VerificationStatus
    expires_at: Optional[datetime] = None
    verified_at: Optional[datetime] = None
    metadata: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
    payload: Dict[str, Any] = field(default_factory=dict)


def parse_date(value: Any) -> Optional[datetime]:
    """
    Parse a provider date or datetime into an aware UTC datetime.

    Date-only values become midnight UTC. Unparseable values return None.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime.combine(value, time.min)
    else:
        try:
            parsed = date_parser.isoparse(str(value))
        except (ValueError, OverflowError):
            try:
                parsed = date_parser.parse(str(value), dayfirst=True)
            except (ValueError, OverflowError):
                logger.warning(f"Unparseable provider date: {value!r}")
                return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def redact(data: Dict[str, Any], fields: Iterable[str]) -> Dict[str, Any]:
    """Copy of data with the given keys masked."""
    sensitive = set(fields)
    return {
        key: (REDACTED if key in sensitive and value not in (None, "") else value)
        for key, value in data.items()
    }


def find_document(
    documents: List[DocumentSubmission], document_type: str
) -> Optional[DocumentSubmission]:
    return next((d for d in documents if d.document_type == document_type), None)


def require_fields(data: Dict[str, Any], *names: str) -> None:
    missing = [name for name in names if not data.get(name)]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


class ProviderAdapter(ABC):
    """Closed capability set every provider implements."""

    name: str = ""
    verification_type: VerificationType
    # Submission keys masked before the submission is persisted
    sensitive_fields: tuple = ()
    # Extra webhook path names routed to this adapter
    aliases: tuple = ()
    # Decided by an administrator instead of the provider
    manual_review: bool = False
    # Provider reports cancellations of credentials it has cleared
    reports_revocations: bool = False
    default_validity_years: Optional[int] = None

    def __init__(self, webhook_secret: Optional[str] = None):
        self.webhook_secret = webhook_secret

    @abstractmethod
    async def initiate(
        self,
        worker_id: str,
        data: Dict[str, Any],
        documents: List[DocumentSubmission],
    ) -> ProviderResult:
        """Submit a new check. Provider decisions are results, not errors."""

    @abstractmethod
    async def check_status(self, provider_request_id: str) -> ProviderResult:
        """Fetch the provider's current view of a submitted check."""

    def redact_submission(self, data: Dict[str, Any]) -> Dict[str, Any]:
        return redact(data, self.sensitive_fields)

    def verify_signature(self, raw_body: bytes, signature: Optional[str]) -> None:
        """
        Validate an HMAC-SHA256 hex signature over the raw request body.

        Missing secret or signature is rejected.
        """
        if not self.webhook_secret:
            logger.error(f"Webhook secret not configured for provider {self.name}")
            raise InvalidSignature(f"Webhook secret not configured for {self.name}")

        if not signature:
            raise InvalidSignature("Missing webhook signature")

        if signature.startswith(SIGNATURE_PREFIX):
            signature = signature[len(SIGNATURE_PREFIX):]

        expected = hmac.new(
            self.webhook_secret.encode("utf-8"), raw_body, hashlib.sha256
        ).hexdigest()

        # Header values may carry arbitrary latin-1 text
        if not hmac.compare_digest(
            expected.encode("ascii"), signature.encode("utf-8", "replace")
        ):
            raise InvalidSignature("Invalid webhook signature")

    def parse_webhook(self, raw_body: bytes, signature: Optional[str]) -> WebhookEvent:
        """Authenticate and translate a provider push into a WebhookEvent."""
        self.verify_signature(raw_body, signature)

        try:
            payload = json.loads(raw_body)
        except (ValueError, UnicodeDecodeError) as e:
            raise ValidationError(f"Invalid JSON payload: {e}")

        if not isinstance(payload, dict):
            raise ValidationError("Webhook payload must be a JSON object")

        return self.translate_webhook(payload)

    def translate_webhook(self, payload: Dict[str, Any]) -> WebhookEvent:
        raise ValidationError(f"Provider {self.name} does not send webhooks")


class HttpProviderAdapter(ProviderAdapter):
    """Adapter backed by a bearer-authenticated JSON HTTP API."""

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        super().__init__(webhook_secret=webhook_secret)
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout or settings.PROVIDER_HTTP_TIMEOUT_SECONDS

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """
        Call the provider with retries.

        Raises:
            ProviderUnavailable: network failure or error status after retries
        """
        url = f"{self.base_url}{path}"
        try:
            async for attempt in retry_external_api(self.name):
                with attempt:
                    async with httpx.AsyncClient(timeout=self.timeout) as client:
                        response = await client.request(
                            method,
                            url,
                            json=json,
                            params=params,
                            headers=self._headers(),
                        )
                        response.raise_for_status()
                        return response
        except httpx.HTTPError as e:
            logger.error(f"[{self.name}] {method} {path} failed: {e}")
            raise ProviderUnavailable(self.name, str(e)) from e

    async def _request_json(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        response = await self._request(method, path, json=json, params=params)
        try:
            body = response.json()
        except ValueError as e:
            raise ProviderUnavailable(self.name, f"invalid JSON response: {e}") from e
        if not isinstance(body, dict):
            raise ProviderUnavailable(self.name, "unexpected response shape")
        return body
