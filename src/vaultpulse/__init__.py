"""vaultpulse — shared vault-data cache for yield vault dashboards.

Coalesced, stale-while-revalidate caching of Harvest vault metrics and
token/USD valuation of a user's balance history.
"""

__version__ = "0.1.0"

from vaultpulse.config import VaultPulseConfig
from vaultpulse.constants import SUPPORTED_VAULTS, VaultInfo, find_vault
from vaultpulse.metrics import CacheSnapshot, VaultMetrics, parse_decimal
from vaultpulse.series import (
    BalanceSample,
    DerivedSample,
    Readout,
    derive,
    resolve_share_price,
    resolve_token_price,
)
from vaultpulse.harvest_client import (
    HarvestClient,
    MalformedResponseError,
    SourceUnavailableError,
    VaultSourceError,
)
from vaultpulse.vault_source import BalanceSource, VaultSource
from vaultpulse.vault_cache import (
    CacheState,
    VaultCache,
    VaultSubscription,
    get_shared_cache,
    reset_shared_cache,
)
from vaultpulse.views import BalanceChartView, DataState

__all__ = [
    "VaultPulseConfig",
    "SUPPORTED_VAULTS",
    "VaultInfo",
    "find_vault",
    "CacheSnapshot",
    "VaultMetrics",
    "parse_decimal",
    "BalanceSample",
    "DerivedSample",
    "Readout",
    "derive",
    "resolve_share_price",
    "resolve_token_price",
    "HarvestClient",
    "MalformedResponseError",
    "SourceUnavailableError",
    "VaultSourceError",
    "BalanceSource",
    "VaultSource",
    "CacheState",
    "VaultCache",
    "VaultSubscription",
    "get_shared_cache",
    "reset_shared_cache",
    "BalanceChartView",
    "DataState",
]
