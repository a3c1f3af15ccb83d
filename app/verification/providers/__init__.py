"""
Provider registry.

One adapter per verification type, selected from settings once at startup.
The registry is read-only afterwards.
"""

import logging
from typing import Dict, Iterable, List, Optional

from app.models import VerificationRecord, VerificationType
from app.verification.exceptions import ValidationError
from app.verification.providers.abn import AbrAdapter
from app.verification.providers.base import (
    DocumentSubmission,
    ProviderAdapter,
    ProviderResult,
    WebhookEvent,
)
from app.verification.providers.first_aid import UsiFirstAidAdapter
from app.verification.providers.identity import ChandlerAdapter, PrivyAdapter
from app.verification.providers.ndis import NdisPortalAdapter
from app.verification.providers.oho import OhoAdapter
from app.verification.providers.tfn import AtoTfnAdapter
from app.verification.providers.vevo import CheckWorkRightsAdapter, VSureAdapter

logger = logging.getLogger(__name__)

__all__ = [
    "DocumentSubmission",
    "ProviderAdapter",
    "ProviderRegistry",
    "ProviderResult",
    "WebhookEvent",
    "build_provider_registry",
]


class ProviderRegistry:
    def __init__(self, adapters: Iterable[ProviderAdapter]):
        self._by_type: Dict[VerificationType, ProviderAdapter] = {}
        self._by_name: Dict[str, ProviderAdapter] = {}

        for adapter in adapters:
            if adapter.verification_type in self._by_type:
                raise ValueError(
                    f"Duplicate adapter for {adapter.verification_type.value}"
                )
            self._by_type[adapter.verification_type] = adapter
            for name in (adapter.name, *adapter.aliases):
                self._by_name[name.lower()] = adapter

    @property
    def verification_types(self) -> List[VerificationType]:
        return list(self._by_type)

    def get(self, verification_type: VerificationType) -> ProviderAdapter:
        adapter = self._by_type.get(verification_type)
        if adapter is None:
            raise ValidationError(
                f"No provider configured for verification type {verification_type.value}"
            )
        return adapter

    def for_provider(self, provider: str) -> Optional[ProviderAdapter]:
        """Adapter by provider name or webhook alias."""
        return self._by_name.get(provider.lower())

    def for_record(self, record: VerificationRecord) -> ProviderAdapter:
        """Adapter that created the record, else the type's current adapter."""
        adapter = self._by_name.get(record.provider)
        if adapter is not None and adapter.verification_type == record.verification_type:
            return adapter
        return self.get(record.verification_type)


def build_provider_registry(settings) -> ProviderRegistry:
    """Instantiate the configured adapter for every verification type."""
    identity_provider = settings.IDENTITY_PROVIDER.lower()
    if identity_provider == "privy":
        identity = PrivyAdapter(
            settings.PRIVY_API_URL,
            api_key=settings.PRIVY_API_KEY,
            webhook_secret=settings.IDENTITY_WEBHOOK_SECRET,
        )
    elif identity_provider == "chandler":
        identity = ChandlerAdapter(
            settings.CHANDLER_API_URL,
            api_key=settings.CHANDLER_API_KEY,
            webhook_secret=settings.IDENTITY_WEBHOOK_SECRET,
        )
    else:
        raise ValueError(f"Unknown IDENTITY_PROVIDER: {settings.IDENTITY_PROVIDER}")

    vevo_provider = settings.VEVO_PROVIDER.lower()
    if vevo_provider == "checkworkrights":
        vevo = CheckWorkRightsAdapter(
            settings.CHECKWORKRIGHTS_API_URL,
            api_key=settings.CHECKWORKRIGHTS_API_KEY,
            webhook_secret=settings.VEVO_WEBHOOK_SECRET,
        )
    elif vevo_provider == "vsure":
        vevo = VSureAdapter(
            settings.VSURE_API_URL,
            api_key=settings.VSURE_API_KEY,
            webhook_secret=settings.VEVO_WEBHOOK_SECRET,
        )
    else:
        raise ValueError(f"Unknown VEVO_PROVIDER: {settings.VEVO_PROVIDER}")

    registry = ProviderRegistry(
        [
            identity,
            vevo,
            OhoAdapter(
                settings.OHO_API_URL,
                api_key=settings.OHO_API_KEY,
                webhook_secret=settings.OHO_WEBHOOK_SECRET,
            ),
            NdisPortalAdapter(
                settings.NDIS_PORTAL_URL,
                default_validity_years=settings.NDIS_DEFAULT_VALIDITY_YEARS,
            ),
            UsiFirstAidAdapter(
                settings.USI_API_URL,
                api_key=settings.USI_API_KEY,
                validity_years=settings.FIRST_AID_VALIDITY_YEARS,
            ),
            AbrAdapter(settings.ABR_API_URL, guid=settings.ABR_GUID),
            AtoTfnAdapter(
                hash_key=settings.TFN_HASH_KEY or settings.JWT_SECRET_KEY or ""
            ),
        ]
    )

    logger.info(
        f"Provider registry built: identity={identity.name}, vevo={vevo.name}, "
        f"types={[t.value for t in registry.verification_types]}"
    )
    return registry
