"""User balance chart: balance history valued with cached vault prices.

Framework-agnostic consumer of the vault cache. The host UI mounts the
view, awaits ``load()``, and renders ``render_model()``; pointer events
map to ``hover()`` and ``leave()``.
"""

from __future__ import annotations

import logging
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Sequence

from vaultpulse.constants import DEFAULT_CHAIN_ID, DEFAULT_PERIOD, DEFAULT_VAULT_DECIMALS, find_vault
from vaultpulse.harvest_client import VaultSourceError
from vaultpulse.series import (
    BalanceSample,
    DerivedSample,
    Readout,
    axis_domains,
    derive,
    nearest_sample,
    readout,
    resolve_share_price,
    resolve_token_price,
)

if TYPE_CHECKING:
    from vaultpulse.metrics import VaultMetrics
    from vaultpulse.vault_cache import VaultCache, VaultSubscription
    from vaultpulse.vault_source import BalanceSource

logger = logging.getLogger(__name__)

NO_DATA_MESSAGE = "No balance history available for this period"
LOADING_MESSAGE = "Loading chart data..."


class DataState(str, Enum):
    """Whether the chart has a series to draw."""

    LOADING = "loading"
    READY = "ready"
    NO_DATA = "no_data"


class BalanceChartView:
    """One user's balance history in one vault.

    Balance samples come either pre-fetched from the host (``prefetched``)
    or from the balance source on ``load()``. Prices always come from the
    shared vault cache, so the derived series follows every cache refresh.
    An empty history is the ``NO_DATA`` state, never an error.
    """

    def __init__(
        self,
        cache: VaultCache,
        balances: BalanceSource,
        *,
        vault_address: str,
        user_address: str,
        vault_id: str = "",
        period: str = DEFAULT_PERIOD,
        chain_id: int = DEFAULT_CHAIN_ID,
        vault_decimals: int | None = None,
        prefetched: Sequence[BalanceSample] | None = None,
        external_loading: bool = False,
    ) -> None:
        self._cache = cache
        self._balances = balances
        self._vault_address = vault_address
        self._user_address = user_address
        self._vault_id = vault_id
        self._period = period
        self._chain_id = chain_id
        if vault_decimals is None:
            info = find_vault(vault_id)
            vault_decimals = info.vault_decimals if info else DEFAULT_VAULT_DECIMALS
        self._vault_decimals = vault_decimals
        self._prefetched = list(prefetched) if prefetched is not None else None
        self._samples: list[BalanceSample] = []
        self._data_state = DataState.LOADING
        self._hovered: DerivedSample | None = None
        self._subscription: VaultSubscription | None = None
        self._external_loading = external_loading
        if self._prefetched is not None and not external_loading:
            self._use_samples(self._prefetched)

    # -- lifecycle ------------------------------------------------------------

    def mount(self) -> None:
        """Subscribe to the vault cache. Needs a running event loop."""
        if self._subscription is None:
            self._subscription = self._cache.subscribe()

    def unmount(self) -> None:
        if self._subscription is not None:
            self._subscription.dispose()
            self._subscription = None

    @property
    def mounted(self) -> bool:
        return self._subscription is not None

    async def __aenter__(self) -> BalanceChartView:
        self.mount()
        await self.load()
        return self

    async def __aexit__(self, *args: object) -> None:
        self.unmount()

    # -- data -----------------------------------------------------------------

    def _use_samples(self, samples: Sequence[BalanceSample]) -> None:
        self._samples = list(samples)
        self._hovered = None
        self._data_state = DataState.READY if self._samples else DataState.NO_DATA

    def supply(self, samples: Sequence[BalanceSample]) -> DataState:
        """Host-fetched history has arrived; ends ``external_loading``."""
        self._external_loading = False
        self._prefetched = list(samples)
        self._use_samples(self._prefetched)
        return self._data_state

    async def load(self) -> DataState:
        """Load the balance history unless the host supplied it.

        While the host is still fetching (``external_loading``) the view
        stays ``LOADING`` and makes no request of its own.
        """
        if self._external_loading:
            self._data_state = DataState.LOADING
            return self._data_state

        if self._prefetched is not None:
            self._use_samples(self._prefetched)
            return self._data_state

        if not self._vault_address or not self._user_address:
            self._use_samples([])
            return self._data_state

        self._data_state = DataState.LOADING
        try:
            samples = await self._balances.fetch_user_balance(
                self._vault_address,
                self._user_address,
                self._period,
                self._chain_id,
                self._vault_decimals,
            )
        except VaultSourceError as e:
            logger.warning(
                "Error fetching balance history for %s/%s: %s",
                self._vault_address, self._user_address, e,
            )
            samples = []
        except Exception:
            logger.exception(
                "Unexpected error loading balance history for %s/%s",
                self._vault_address, self._user_address,
            )
            samples = []
        self._use_samples(samples)
        return self._data_state

    @property
    def data_state(self) -> DataState:
        return self._data_state

    @property
    def metrics(self) -> VaultMetrics | None:
        return self._cache.get().metrics_for(self._vault_id)

    @property
    def token_price(self) -> float:
        return resolve_token_price(self.metrics)

    @property
    def share_price(self) -> float:
        return resolve_share_price(self.metrics, self._vault_decimals)

    @property
    def series(self) -> list[DerivedSample]:
        return derive(self._samples, self.metrics, self._vault_decimals)

    @property
    def domains(self) -> tuple[tuple[float, float], tuple[float, float]]:
        """(token axis, usd axis) chart domains."""
        return axis_domains(self.series)

    # -- interaction ----------------------------------------------------------

    @property
    def readout(self) -> Readout | None:
        """Header values: the hovered sample, else the latest one."""
        sample = self._hovered
        if sample is None:
            if not self._samples:
                return None
            latest = self._samples[-1]
            return readout(latest.timestamp, latest.value, self.token_price, self.share_price)
        return readout(sample.timestamp, sample.token_value, self.token_price, self.share_price)

    def hover(self, timestamp: datetime) -> Readout | None:
        """Select the sample nearest the pointer and return its readout."""
        self._hovered = nearest_sample(self.series, timestamp)
        return self.readout

    def leave(self) -> Readout | None:
        """Pointer left the chart: fall back to the latest sample."""
        self._hovered = None
        return self.readout

    def render_model(self) -> dict[str, Any]:
        """Everything a renderer needs, as plain data."""
        state = self._data_state
        result: dict[str, Any] = {
            "state": state.value,
            "vault_id": self._vault_id,
            "period": self._period,
            "prices_loading": self._cache.state.loading,
        }
        if state is DataState.LOADING:
            result["message"] = LOADING_MESSAGE
            return result
        if state is DataState.NO_DATA:
            result["message"] = NO_DATA_MESSAGE
            return result

        series = self.series
        token_domain, usd_domain = self.domains
        current = self.readout
        result.update({
            "token_price": self.token_price,
            "share_price": self.share_price,
            "readout": current.to_dict() if current else None,
            "points": [s.to_dict() for s in series],
            "token_domain": token_domain,
            "usd_domain": usd_domain,
        })
        return result
