"""vaultpulse configuration — plain frozen dataclass, no pydantic.

The host application constructs this from its own settings (env vars,
pydantic-settings, etc.) and passes it to the client and cache.
"""

from dataclasses import dataclass

from vaultpulse.constants import (
    CACHE_DURATION_SECS,
    HARVEST_API_URL,
    HARVEST_NETWORK,
    REFRESH_CHECK_INTERVAL_SECS,
)


@dataclass(frozen=True)
class VaultPulseConfig:
    harvest_api_url: str = HARVEST_API_URL
    harvest_api_key: str | None = None
    harvest_network: str = HARVEST_NETWORK
    balance_api_url: str | None = None
    cache_duration_secs: float = CACHE_DURATION_SECS
    refresh_check_interval_secs: float = REFRESH_CHECK_INTERVAL_SECS
