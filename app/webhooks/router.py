"""
Provider Webhook Router

Endpoint: POST /api/v1/webhooks/{provider}

Security: every request is verified with an HMAC-SHA256 signature of the raw
body using the provider's webhook secret (X-Signature or X-Webhook-Signature).
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from slowapi import Limiter
from slowapi.util import get_remote_address
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.database import get_db
from app.verification.providers import ProviderRegistry
from app.verification.router import get_provider_registry
from app.webhooks.service import WebhookIngestionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

# Rate limiter for webhook endpoints
limiter = Limiter(key_func=get_remote_address)


@router.post("/{provider}")
@limiter.limit(settings.WEBHOOK_RATE_LIMIT)
async def handle_provider_webhook(
    provider: str,
    request: Request,
    db: AsyncSession = Depends(get_db),
    registry: ProviderRegistry = Depends(get_provider_registry),
    x_signature: Optional[str] = Header(None, alias="X-Signature"),
    x_webhook_signature: Optional[str] = Header(None, alias="X-Webhook-Signature"),
):
    """
    Provider push endpoint.

    Responses:
        200: processed, or authenticated but no matching verification
        400: payload is not valid JSON or lacks the provider's request id
        401: missing or invalid signature
        404: unknown provider
    """
    # Raw body is needed for signature verification
    raw_body = await request.body()

    service = WebhookIngestionService(db, registry)
    return await service.handle(provider, raw_body, x_signature or x_webhook_signature)
