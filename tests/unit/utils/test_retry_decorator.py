"""
Unit tests for the provider retry helper.
"""

from unittest.mock import MagicMock

import httpx
import pytest

from app.utils.retry_decorator import _is_retryable_http_error, retry_external_api


def status_error(status_code: int) -> httpx.HTTPStatusError:
    return httpx.HTTPStatusError(
        f"HTTP {status_code}",
        request=MagicMock(),
        response=MagicMock(status_code=status_code),
    )


class TestIsRetryable:
    @pytest.mark.parametrize("status_code", [500, 502, 503, 504, 408, 429])
    def test_transient_statuses(self, status_code):
        assert _is_retryable_http_error(status_error(status_code))

    @pytest.mark.parametrize("status_code", [400, 401, 403, 404, 422])
    def test_permanent_statuses(self, status_code):
        assert not _is_retryable_http_error(status_error(status_code))

    def test_network_errors(self):
        assert _is_retryable_http_error(httpx.ConnectError("refused"))
        assert _is_retryable_http_error(httpx.ReadTimeout("slow"))

    def test_other_exceptions(self):
        assert not _is_retryable_http_error(ValueError("bad"))


class TestRetryExternalApi:
    @pytest.mark.asyncio
    async def test_reraises_after_attempts(self):
        calls = 0

        with pytest.raises(httpx.HTTPStatusError):
            async for attempt in retry_external_api("test"):
                with attempt:
                    calls += 1
                    raise status_error(503)

        assert calls == 4

    @pytest.mark.asyncio
    async def test_permanent_error_not_retried(self):
        calls = 0

        with pytest.raises(httpx.HTTPStatusError):
            async for attempt in retry_external_api("test"):
                with attempt:
                    calls += 1
                    raise status_error(404)

        assert calls == 1
