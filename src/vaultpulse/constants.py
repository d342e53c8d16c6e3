"""Constants for the Harvest vault dashboard core."""

from dataclasses import dataclass


HARVEST_API_URL = "https://api.harvest.finance"
HARVEST_NETWORK = "base"

CACHE_DURATION_SECS = 2 * 60 * 60  # vault metrics stay fresh for two hours
REFRESH_CHECK_INTERVAL_SECS = 60  # staleness poll while subscribers exist

DEFAULT_CHAIN_ID = 8453  # Base
DEFAULT_VAULT_DECIMALS = 18
DEFAULT_PERIOD = "30d"

TOKEN_AXIS_HEADROOM = 1.1
USD_AXIS_HEADROOM = 1.3


@dataclass(frozen=True)
class VaultInfo:
    """Static configuration for a vault shown on the dashboard."""

    symbol: str
    name: str
    id: str
    token_address: str
    vault_address: str
    decimals: int
    vault_decimals: int
    vault_symbol: str


SUPPORTED_VAULTS: tuple[VaultInfo, ...] = (
    VaultInfo(
        symbol="USDC",
        name="USD Coin",
        id="IPOR_USDC_base",
        token_address="0x833589fcd6edb6e08f4c7c32d4f71b54bda02913",
        vault_address="0x0d877Dc7C8Fa3aD980DfDb18B48eC9F8768359C4",
        decimals=6,
        vault_decimals=8,
        vault_symbol="bAutopilot_USDC",
    ),
    VaultInfo(
        symbol="WETH",
        name="Wrapped Ethereum",
        id="IPOR_WETH_base",
        token_address="0x4200000000000000000000000000000000000006",
        vault_address="0x7872893e528Fe2c0829e405960db5B742112aa97",
        decimals=18,
        vault_decimals=20,
        vault_symbol="bAutopilot_wETH",
    ),
    VaultInfo(
        symbol="cbBTC",
        name="Coinbase Wrapped BTC",
        id="IPOR_cbBTC_base",
        token_address="0xcbB7C0000aB88B473b1f5aFd9ef808440eed33Bf",
        vault_address="0x31A421271414641cb5063B71594b642D2666dB6B",
        decimals=8,
        vault_decimals=10,
        vault_symbol="bAutopilot_cbBTC",
    ),
)


def find_vault(vault_id: str) -> VaultInfo | None:
    """Look up a supported vault by its Harvest id."""
    for info in SUPPORTED_VAULTS:
        if info.id == vault_id:
            return info
    return None
