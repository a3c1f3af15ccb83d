"""
Integration tests for the worker verification routes.

Endpoints:
- POST /api/v1/workers/{worker_id}/verifications/{type}
- GET /api/v1/workers/{worker_id}/verifications/{type}
- POST /api/v1/workers/{worker_id}/verifications/{type}/recheck
- GET /api/v1/workers/{worker_id}/verifications
- POST /api/v1/workers/{worker_id}/verifications
- POST /api/v1/verifications/{verification_id}/manual-decision
"""

import json
from datetime import timedelta
from unittest.mock import AsyncMock, patch

import pytest

from app.core.config import settings
from app.models import VerificationStatus, VerificationType
from app.utils.datetime_utils import utcnow
from app.verification.exceptions import ProviderUnavailable
from app.verification.providers.base import ProviderResult
from tests.conftest import make_response, sign
from tests.integration.conftest import (
    API_PREFIX,
    create_worker,
    get_admin_headers,
    get_auth_headers,
)

WWCC_SUBMISSION = {
    "data": {
        "state": "NSW",
        "wwccNumber": "WWC0123456E",
        "firstName": "Alex",
        "lastName": "Citizen",
        "dateOfBirth": "1990-02-01",
    },
    "documents": [{"type": "wwcc_card", "file_url": "s3://docs/wwcc.jpg"}],
}


def url(worker_id, suffix=""):
    return f"{API_PREFIX}/workers/{worker_id}/verifications{suffix}"


class TestAuthentication:
    @pytest.mark.asyncio
    async def test_missing_token(self, client, worker):
        response = await client.get(url(worker.id))

        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_other_user_forbidden(self, client, worker):
        response = await client.get(url(worker.id), headers=get_auth_headers("user-2"))

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_admin_allowed(self, client, worker):
        response = await client.get(url(worker.id), headers=get_admin_headers())

        assert response.status_code == 200

    @pytest.mark.asyncio
    async def test_unknown_worker(self, client):
        response = await client.get(url("missing"), headers=get_auth_headers("user-1"))

        assert response.status_code == 404


class TestInitiateRoute:
    @pytest.mark.asyncio
    async def test_wwcc_submitted_then_cleared_by_webhook(self, client, worker):
        headers = get_auth_headers(worker.user_id)

        with patch("app.verification.providers.base.httpx.AsyncClient") as mock_client:
            http = AsyncMock()
            http.request.return_value = make_response(
                {"request_id": "oho-77", "status": "submitted"}
            )
            mock_client.return_value.__aenter__.return_value = http
            mock_client.return_value.__aexit__.return_value = False

            response = await client.post(
                url(worker.id, "/wwcc"), json=WWCC_SUBMISSION, headers=headers
            )

        assert response.status_code == 201
        data = response.json()
        assert data["created"] is True
        verification = data["verification"]
        assert verification["status"] == "PENDING"
        assert verification["provider"] == "oho"
        assert verification["provider_request_id"] == "oho-77"

        body = json.dumps({"request_id": "oho-77", "status": "cleared"}).encode("utf-8")
        webhook = await client.post(
            f"{API_PREFIX}/webhooks/oho",
            content=body,
            headers={"X-Signature": sign(settings.OHO_WEBHOOK_SECRET, body)},
        )
        assert webhook.status_code == 200

        view = await client.get(url(worker.id), headers=headers)
        view_data = view.json()
        assert view_data["worker_status"] == "VERIFIED"
        assert view_data["verifications"][0]["status"] == "VERIFIED"
        assert view_data["verifications"][0]["documents"][0]["document_type"] == "wwcc_card"

    @pytest.mark.asyncio
    async def test_second_initiate_returns_existing(self, client, registry, worker):
        headers = get_auth_headers(worker.user_id)
        adapter = registry.get(VerificationType.WWCC)
        pending = ProviderResult(
            status=VerificationStatus.PENDING, provider_request_id="oho-1"
        )

        with patch.object(adapter, "initiate", AsyncMock(return_value=pending)):
            first = await client.post(
                url(worker.id, "/WWCC"), json=WWCC_SUBMISSION, headers=headers
            )
            second = await client.post(
                url(worker.id, "/WWCC"), json=WWCC_SUBMISSION, headers=headers
            )

        assert first.status_code == 201
        assert second.status_code == 200
        assert second.json()["created"] is False
        assert (
            second.json()["verification"]["id"] == first.json()["verification"]["id"]
        )

    @pytest.mark.asyncio
    async def test_unknown_type(self, client, worker):
        response = await client.post(
            url(worker.id, "/police_check"),
            json={"data": {}},
            headers=get_auth_headers(worker.user_id),
        )

        assert response.status_code == 400
        assert "Unknown verification type" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_missing_fields(self, client, worker):
        response = await client.post(
            url(worker.id, "/WWCC"),
            json={"data": {"state": "NSW"}},
            headers=get_auth_headers(worker.user_id),
        )

        assert response.status_code == 400
        assert "wwccNumber" in response.json()["detail"]

    @pytest.mark.asyncio
    async def test_provider_outage(self, client, registry, worker):
        adapter = registry.get(VerificationType.WWCC)

        with patch.object(
            adapter,
            "initiate",
            AsyncMock(side_effect=ProviderUnavailable("oho", "connection refused")),
        ):
            response = await client.post(
                url(worker.id, "/WWCC"),
                json=WWCC_SUBMISSION,
                headers=get_auth_headers(worker.user_id),
            )

        assert response.status_code == 502

        listing = await client.get(url(worker.id), headers=get_auth_headers(worker.user_id))
        assert listing.json()["verifications"] == []


class TestGetVerificationRoute:
    @pytest.mark.asyncio
    async def test_no_record(self, client, worker):
        response = await client.get(
            url(worker.id, "/WWCC"), headers=get_auth_headers(worker.user_id)
        )

        assert response.status_code == 404

    @pytest.mark.asyncio
    async def test_provider_outage_serves_stored_record(
        self, client, orchestrator, registry, worker
    ):
        record = await orchestrator.store.create(
            worker_id=worker.id,
            verification_type=VerificationType.WWCC,
            provider="oho",
            status=VerificationStatus.IN_PROGRESS,
            provider_request_id="oho-5",
        )
        await orchestrator.db.commit()
        adapter = registry.get(VerificationType.WWCC)

        with patch.object(
            adapter, "check_status", AsyncMock(side_effect=ProviderUnavailable("oho", "down"))
        ):
            response = await client.get(
                url(worker.id, "/WWCC"), headers=get_auth_headers(worker.user_id)
            )

        assert response.status_code == 200
        data = response.json()
        assert data["id"] == record.id
        assert data["status"] == "IN_PROGRESS"
        assert data["consecutive_poll_failures"] == 1


class TestRecheckRoute:
    @pytest.mark.asyncio
    async def test_recheck_renewed(self, client, orchestrator, registry, worker):
        await orchestrator.store.create(
            worker_id=worker.id,
            verification_type=VerificationType.WWCC,
            provider="oho",
            status=VerificationStatus.EXPIRED,
            provider_request_id="oho-8",
            expires_at=utcnow() - timedelta(days=1),
        )
        await orchestrator.db.commit()
        adapter = registry.get(VerificationType.WWCC)
        renewed = ProviderResult(
            status=VerificationStatus.VERIFIED,
            expires_at=utcnow() + timedelta(days=1800),
        )

        with patch.object(adapter, "check_status", AsyncMock(return_value=renewed)):
            response = await client.post(
                url(worker.id, "/WWCC/recheck"), headers=get_auth_headers(worker.user_id)
            )

        assert response.status_code == 200
        assert response.json()["status"] == "VERIFIED"

    @pytest.mark.asyncio
    async def test_recheck_requires_expired(self, client, orchestrator, worker):
        await orchestrator.store.create(
            worker_id=worker.id,
            verification_type=VerificationType.WWCC,
            provider="oho",
            status=VerificationStatus.PENDING,
            provider_request_id="oho-9",
        )
        await orchestrator.db.commit()

        response = await client.post(
            url(worker.id, "/WWCC/recheck"), headers=get_auth_headers(worker.user_id)
        )

        assert response.status_code == 400


class TestBundleRoute:
    @pytest.mark.asyncio
    async def test_reports_per_type_errors(self, client, test_db):
        worker = await create_worker(test_db, required=["ABN", "TFN"])

        response = await client.post(
            url(worker.id),
            json={
                "verifications": {
                    "ABN": {"data": {"abn": "51 824 753 556"}},
                    "TFN": {"data": {"tfn": "123456789"}},
                }
            },
            headers=get_auth_headers(worker.user_id),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["results"]["ABN"]["verification"]["status"] == "VERIFIED"
        assert data["results"]["TFN"]["verification"]["status"] == "FAILED"
        assert data["errors"] == {}
        assert data["worker_status"] == "REJECTED"

    @pytest.mark.asyncio
    async def test_validation_error_listed(self, client, test_db):
        worker = await create_worker(test_db, required=["ABN"])

        response = await client.post(
            url(worker.id),
            json={"verifications": {"ABN": {"data": {}}}},
            headers=get_auth_headers(worker.user_id),
        )

        data = response.json()
        assert data["results"] == {}
        assert data["errors"]["ABN"] == "ABN is required"
        assert data["worker_status"] == "ONBOARDING_IN_PROGRESS"


class TestManualDecisionRoute:
    @pytest.mark.asyncio
    async def test_admin_clears_first_aid(self, client, test_db):
        worker = await create_worker(test_db, required=["FIRST_AID"])
        initiated = await client.post(
            url(worker.id, "/FIRST_AID"),
            json={
                "data": {"certificateNumber": "FA-123"},
                "documents": [
                    {"type": "first_aid_certificate", "file_url": "s3://docs/fa.pdf"}
                ],
            },
            headers=get_auth_headers(worker.user_id),
        )
        verification_id = initiated.json()["verification"]["id"]

        response = await client.post(
            f"{API_PREFIX}/verifications/{verification_id}/manual-decision",
            json={"decision": "cleared", "notes": "Certificate sighted"},
            headers=get_admin_headers(),
        )

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "VERIFIED"
        assert data["metadata"]["manually_verified"] is True
        assert data["expires_at"] is not None

    @pytest.mark.asyncio
    async def test_worker_cannot_decide(self, client, test_db):
        worker = await create_worker(test_db, required=["NDIS"])
        initiated = await client.post(
            url(worker.id, "/NDIS"),
            json={"data": {}},
            headers=get_auth_headers(worker.user_id),
        )
        verification_id = initiated.json()["verification"]["id"]

        response = await client.post(
            f"{API_PREFIX}/verifications/{verification_id}/manual-decision",
            json={"decision": "cleared"},
            headers=get_auth_headers(worker.user_id),
        )

        assert response.status_code == 403

    @pytest.mark.asyncio
    async def test_unknown_decision_rejected(self, client):
        response = await client.post(
            f"{API_PREFIX}/verifications/some-id/manual-decision",
            json={"decision": "maybe"},
            headers=get_admin_headers(),
        )

        assert response.status_code == 422
