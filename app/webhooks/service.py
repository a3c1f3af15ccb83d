"""
Provider webhook ingestion.

Authenticates a provider push, finds the verification it refers to and
applies the reported status through the orchestrator. Once a push is
authenticated it is always acknowledged, so providers do not retry
deliveries that can never succeed.
"""

import logging
from typing import Any, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.verification.exceptions import NotFoundError
from app.verification.orchestrator import build_orchestrator
from app.verification.providers import ProviderRegistry

logger = logging.getLogger(__name__)


class WebhookIngestionService:
    def __init__(self, db: AsyncSession, registry: ProviderRegistry):
        self.db = db
        self.registry = registry

    async def handle(
        self, provider: str, raw_body: bytes, signature: Optional[str]
    ) -> Dict[str, Any]:
        """
        Process one webhook delivery.

        Raises:
            NotFoundError: unknown provider
            InvalidSignature: missing secret, missing or wrong signature
            ValidationError: payload is not a recognisable provider event
        """
        adapter = self.registry.for_provider(provider)
        if adapter is None:
            raise NotFoundError(f"Unknown provider: {provider}")

        event = adapter.parse_webhook(raw_body, signature)
        logger.info(
            f"Webhook from {adapter.name}: request {event.provider_request_id} "
            f"reports {event.status.value}"
        )

        orchestrator = build_orchestrator(self.db, self.registry)
        record = await orchestrator.store.find_by_provider_request(
            event.provider_request_id, adapter.verification_type
        )
        if record is None:
            logger.warning(
                f"No {adapter.verification_type.value} verification for provider "
                f"request {event.provider_request_id}"
            )
            return {"status": "ignored", "message": "No matching verification"}

        record_id = record.id
        try:
            outcome = await orchestrator.apply_status_update(
                record,
                event.status,
                event.payload,
                verified_at=event.verified_at,
                expires_at=event.expires_at,
                error_message=event.error_message,
                metadata=event.metadata,
            )
            await orchestrator.update_worker_status(record.worker_id)
            await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.error(
                f"Failed to apply webhook to verification {record_id}: {e}",
                exc_info=True,
            )
            return {"status": "error", "verification_id": record_id}

        return {
            "status": "processed",
            "verification_id": record_id,
            "previous_status": outcome.previous.value,
            "current_status": outcome.current.value,
            "applied": outcome.applied,
        }
