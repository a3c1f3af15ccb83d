"""
Unit tests for the provider adapter contract: webhook signatures, payload
parsing, date handling and HTTP retries.
"""

import json
from datetime import datetime, timezone

import httpx
import pytest

from app.core.config import settings
from app.models import VerificationStatus
from app.verification.exceptions import (
    InvalidSignature,
    ProviderUnavailable,
    ValidationError,
)
from app.verification.providers.base import REDACTED, parse_date, redact
from app.verification.providers.oho import OhoAdapter
from tests.conftest import make_response, sign

SECRET = "oho-secret"


@pytest.fixture
def adapter():
    return OhoAdapter("https://oho.test", api_key="key", webhook_secret=SECRET)


class TestVerifySignature:
    def test_valid_signature(self, adapter):
        body = b'{"request_id": "r1"}'
        adapter.verify_signature(body, sign(SECRET, body))

    def test_sha256_prefix_accepted(self, adapter):
        body = b'{"request_id": "r1"}'
        adapter.verify_signature(body, f"sha256={sign(SECRET, body)}")

    def test_wrong_signature_rejected(self, adapter):
        body = b'{"request_id": "r1"}'
        with pytest.raises(InvalidSignature):
            adapter.verify_signature(body, sign("other-secret", body))

    def test_signature_over_different_body_rejected(self, adapter):
        signature = sign(SECRET, b'{"request_id": "r1"}')
        with pytest.raises(InvalidSignature):
            adapter.verify_signature(b'{"request_id": "r2"}', signature)

    def test_non_ascii_signature_rejected(self, adapter):
        body = b'{"request_id": "r1"}'
        with pytest.raises(InvalidSignature):
            adapter.verify_signature(body, "\xff" * 64)

    def test_missing_signature_rejected(self, adapter):
        with pytest.raises(InvalidSignature) as exc_info:
            adapter.verify_signature(b"{}", None)

        assert "missing" in exc_info.value.message.lower()

    def test_missing_secret_rejected(self):
        unconfigured = OhoAdapter("https://oho.test", webhook_secret=None)
        body = b"{}"
        with pytest.raises(InvalidSignature) as exc_info:
            unconfigured.verify_signature(body, sign("", body))

        assert "not configured" in exc_info.value.message


class TestParseWebhook:
    def test_parses_signed_payload(self, adapter):
        body = json.dumps({"request_id": "r1", "status": "cleared"}).encode()

        event = adapter.parse_webhook(body, sign(SECRET, body))

        assert event.provider_request_id == "r1"
        assert event.status == VerificationStatus.VERIFIED

    def test_signature_checked_before_parsing(self, adapter):
        with pytest.raises(InvalidSignature):
            adapter.parse_webhook(b"not json", "bad")

    def test_invalid_json_is_validation_error(self, adapter):
        body = b"not json"
        with pytest.raises(ValidationError):
            adapter.parse_webhook(body, sign(SECRET, body))

    def test_non_object_payload_is_validation_error(self, adapter):
        body = b'["request_id"]'
        with pytest.raises(ValidationError):
            adapter.parse_webhook(body, sign(SECRET, body))

    def test_missing_request_id_is_validation_error(self, adapter):
        body = b'{"status": "cleared"}'
        with pytest.raises(ValidationError):
            adapter.parse_webhook(body, sign(SECRET, body))


class TestParseDate:
    def test_date_only_is_midnight_utc(self):
        assert parse_date("2027-03-01") == datetime(2027, 3, 1, tzinfo=timezone.utc)

    def test_offset_is_converted_to_utc(self):
        assert parse_date("2027-03-01T10:00:00+10:00") == datetime(
            2027, 3, 1, 0, 0, tzinfo=timezone.utc
        )

    def test_day_first_fallback(self):
        assert parse_date("15/06/2027") == datetime(2027, 6, 15, tzinfo=timezone.utc)

    def test_empty_and_garbage_are_none(self):
        assert parse_date(None) is None
        assert parse_date("") is None
        assert parse_date("not a date") is None


class TestRedact:
    def test_sensitive_fields_masked(self):
        result = redact({"dateOfBirth": "1990-01-01", "state": "NSW"}, ["dateOfBirth"])

        assert result == {"dateOfBirth": REDACTED, "state": "NSW"}

    def test_empty_values_left_alone(self):
        assert redact({"dateOfBirth": ""}, ["dateOfBirth"]) == {"dateOfBirth": ""}


class TestHttpRetries:
    @pytest.mark.asyncio
    async def test_server_errors_retried_then_unavailable(self, adapter, mock_http):
        mock_http.request.return_value = make_response({}, status_code=503)

        with pytest.raises(ProviderUnavailable) as exc_info:
            await adapter.check_status("r1")

        assert exc_info.value.provider == "oho"
        assert exc_info.value.status_code == 502
        assert mock_http.request.call_count == settings.EXTERNAL_API_RETRY_ATTEMPTS

    @pytest.mark.asyncio
    async def test_timeouts_retried_then_unavailable(self, adapter, mock_http):
        mock_http.request.side_effect = httpx.ConnectTimeout("timed out")

        with pytest.raises(ProviderUnavailable):
            await adapter.check_status("r1")

        assert mock_http.request.call_count == settings.EXTERNAL_API_RETRY_ATTEMPTS

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self, adapter, mock_http):
        mock_http.request.return_value = make_response({}, status_code=400)

        with pytest.raises(ProviderUnavailable):
            await adapter.check_status("r1")

        assert mock_http.request.call_count == 1

    @pytest.mark.asyncio
    async def test_recovers_after_transient_failure(self, adapter, mock_http):
        mock_http.request.side_effect = [
            make_response({}, status_code=502),
            make_response({"status": "cleared"}),
        ]

        result = await adapter.check_status("r1")

        assert result.status == VerificationStatus.VERIFIED
        assert mock_http.request.call_count == 2

    @pytest.mark.asyncio
    async def test_bearer_token_sent(self, adapter, mock_http):
        mock_http.request.return_value = make_response({"status": "submitted"})

        await adapter.check_status("r1")

        headers = mock_http.request.call_args.kwargs["headers"]
        assert headers["Authorization"] == "Bearer key"

    @pytest.mark.asyncio
    async def test_non_object_response_is_unavailable(self, adapter, mock_http):
        mock_http.request.return_value = make_response(["unexpected"])

        with pytest.raises(ProviderUnavailable):
            await adapter.check_status("r1")
