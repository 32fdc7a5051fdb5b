"""Registry of distributor adapters."""

from __future__ import annotations

import logging
from typing import Mapping, TYPE_CHECKING

from .adapter import ProviderAdapter
from .aliexpress import AliExpressAdapter
from .digikey import DigiKeyAdapter
from .models import ProviderConfig
from .mouser import MouserAdapter
from .octopart import OctopartAdapter

if TYPE_CHECKING:
    from .coordinator import CredentialRefreshCoordinator

logger = logging.getLogger(__name__)

ADAPTER_TYPES: dict[str, type[ProviderAdapter]] = {
    "digikey": DigiKeyAdapter,
    "mouser": MouserAdapter,
    "octopart": OctopartAdapter,
    "aliexpress": AliExpressAdapter,
}


def build_adapters(
    configs: Mapping[str, ProviderConfig],
    coordinator: CredentialRefreshCoordinator | None = None,
) -> dict[str, ProviderAdapter]:
    """Instantiate an adapter for every enabled provider config, in config order."""
    adapters: dict[str, ProviderAdapter] = {}
    for provider_id, config in configs.items():
        adapter_type = ADAPTER_TYPES.get(provider_id)
        if adapter_type is None:
            logger.warning(f"No adapter for configured provider {provider_id!r}, skipping")
            continue
        if not config.enabled:
            logger.info(f"{provider_id} disabled (missing credentials or switched off)")
            continue
        adapters[provider_id] = adapter_type(config, coordinator)
        logger.info(f"{provider_id} adapter initialized")
    return adapters
