"""Abstract interfaces for the external data sources.

Defines the VaultSource Protocol that VaultCache depends on and the
BalanceSource Protocol the balance chart depends on. The concrete
implementation (HarvestClient) lives in ``vaultpulse.harvest_client``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from vaultpulse.metrics import VaultMetrics
    from vaultpulse.series import BalanceSample


@runtime_checkable
class VaultSource(Protocol):
    """Async source of vault metrics keyed by vault id.

    Implementations raise ``VaultSourceError`` subclasses on failure.
    """

    async def fetch_vaults(self) -> dict[str, VaultMetrics]: ...


@runtime_checkable
class BalanceSource(Protocol):
    """Async source of a holder's balance history in one vault.

    An empty list means "no data for this period", not an error.
    """

    async def fetch_user_balance(
        self,
        vault_address: str,
        user_address: str,
        period: str,
        chain_id: int,
        decimals: int,
    ) -> list[BalanceSample]: ...
