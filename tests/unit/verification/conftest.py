from unittest.mock import AsyncMock, MagicMock, patch

import pytest


@pytest.fixture
def mock_http():
    """
    Patch the provider HTTP client.

    Yields the client returned by `async with httpx.AsyncClient()`; set
    `mock_http.request.return_value` (or side_effect) per test.
    """
    with patch("app.verification.providers.base.httpx.AsyncClient") as mock_client:
        client = MagicMock()
        client.request = AsyncMock()

        mock_context = AsyncMock()
        mock_context.__aenter__.return_value = client
        mock_context.__aexit__.return_value = False
        mock_client.return_value = mock_context

        yield client
