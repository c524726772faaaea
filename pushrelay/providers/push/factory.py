from __future__ import annotations

import httpx

from pushrelay.core.config import Settings, get_settings
from pushrelay.core.errors import ProviderConfigError
from pushrelay.providers.push.base import PushProvider
from pushrelay.providers.push.expo import ExpoPushProvider
from pushrelay.providers.push.simulated import SimulatedPushProvider


def get_push_provider(
    settings: Settings | None = None,
    *,
    client: httpx.AsyncClient | None = None,
) -> PushProvider:
    settings = settings or get_settings()
    provider = (settings.push_provider or "expo").lower()

    if provider == "expo":
        return ExpoPushProvider(client=client, settings=settings)
    if provider == "simulated":
        # Must be selected explicitly; never a fallback.
        return SimulatedPushProvider(settings=settings)

    raise ProviderConfigError(f"Unsupported push provider: {provider}")
