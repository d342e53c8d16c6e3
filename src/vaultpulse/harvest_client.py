"""Async HTTP client for the Harvest Finance vault and balance APIs."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

import httpx

from vaultpulse.constants import HARVEST_API_URL, HARVEST_NETWORK
from vaultpulse.metrics import VaultMetrics, parse_decimal
from vaultpulse.series import BalanceSample, parse_timestamp

if TYPE_CHECKING:
    from vaultpulse.config import VaultPulseConfig

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Exception hierarchy
# ---------------------------------------------------------------------------


class VaultSourceError(Exception):
    """Base exception for vault data source operations."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SourceUnavailableError(VaultSourceError):
    """Network/DNS failure, timeout, throttling or 5xx (retryable)."""


class MalformedResponseError(VaultSourceError):
    """Body is not JSON or lacks the expected top-level field."""


# ---------------------------------------------------------------------------
# Status code → exception mapping
# ---------------------------------------------------------------------------

_STATUS_MAP: dict[int, type[VaultSourceError]] = {
    408: SourceUnavailableError,
    429: SourceUnavailableError,
}


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class HarvestClient:
    """Async client for the Harvest vault API and the balance history API.

    Implements both ``VaultSource`` and ``BalanceSource``. Constructor
    accepts explicit params — no env-var loading. The balance history
    lives on ``balance_url`` when given, else on the vault API host.
    """

    def __init__(
        self,
        api_url: str = HARVEST_API_URL,
        api_key: str | None = None,
        network: str = HARVEST_NETWORK,
        balance_url: str | None = None,
    ) -> None:
        self._api_key = api_key
        self._network = network
        self._client = httpx.AsyncClient(
            base_url=api_url.rstrip("/"),
            timeout=httpx.Timeout(connect=5.0, read=20.0, write=10.0, pool=5.0),
        )
        self._balance_url = balance_url.rstrip("/") if balance_url else None

    @classmethod
    def from_config(cls, config: VaultPulseConfig) -> HarvestClient:
        return cls(
            api_url=config.harvest_api_url,
            api_key=config.harvest_api_key,
            network=config.harvest_network,
            balance_url=config.balance_api_url,
        )

    # -- internal request dispatcher -----------------------------------------

    async def _get(self, url: str, params: dict[str, Any] | None = None) -> Any:
        """Send a GET and map errors to the VaultSourceError hierarchy."""
        try:
            response = await self._client.get(url, params=params)
        except httpx.TimeoutException as exc:
            raise SourceUnavailableError(f"timeout: {exc}") from exc
        except httpx.TransportError as exc:
            raise SourceUnavailableError(str(exc)) from exc
        except httpx.RequestError as exc:
            raise SourceUnavailableError(f"request failed: {exc}") from exc

        if response.status_code >= 400:
            body = response.text
            exc_cls = _STATUS_MAP.get(response.status_code)
            if exc_cls is not None:
                raise exc_cls(body, status_code=response.status_code)
            if response.status_code >= 500:
                raise SourceUnavailableError(body, status_code=response.status_code)
            raise VaultSourceError(body, status_code=response.status_code)

        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponseError(
                f"response from {url} is not JSON", status_code=response.status_code
            ) from exc

    # -- public API methods ---------------------------------------------------

    async def fetch_vaults(self) -> dict[str, VaultMetrics]:
        """GET /vaults — every vault on the configured network, keyed by id."""
        params = {"key": self._api_key} if self._api_key else None
        payload = await self._get("/vaults", params=params)

        records = payload.get(self._network) if isinstance(payload, dict) else None
        if not isinstance(records, dict):
            raise MalformedResponseError(
                f"No '{self._network}' vault data received from Harvest API"
            )

        vaults: dict[str, VaultMetrics] = {}
        for vault_id, record in records.items():
            if not isinstance(record, dict):
                logger.warning("Skipping malformed vault record %s.", vault_id)
                continue
            vaults[vault_id] = VaultMetrics.from_dict(record, vault_id=vault_id)
        return vaults

    async def fetch_user_balance(
        self,
        vault_address: str,
        user_address: str,
        period: str,
        chain_id: int,
        decimals: int,
    ) -> list[BalanceSample]:
        """GET /user-balances — a holder's balance history, oldest first.

        Raw values are base units; they are scaled by ``10 ** decimals``.
        Points without a usable value are dropped with a warning.
        """
        base = self._balance_url or ""
        payload = await self._get(
            f"{base}/user-balances",
            params={
                "vault": vault_address,
                "user": user_address,
                "period": period,
                "chainId": chain_id,
            },
        )

        points = payload.get("balance") if isinstance(payload, dict) else None
        if not isinstance(points, list):
            raise MalformedResponseError("No 'balance' series received from balance API")

        scale = 10**decimals
        samples: list[BalanceSample] = []
        for point in points:
            raw = parse_decimal(point.get("value")) if isinstance(point, dict) else None
            if raw is None:
                logger.warning("Dropping balance point without a value: %r", point)
                continue
            try:
                ts = parse_timestamp(point.get("timestamp"))
            except ValueError:
                logger.warning("Dropping balance point with bad timestamp: %r", point)
                continue
            samples.append(BalanceSample(timestamp=ts, value=raw / scale))
        samples.sort(key=lambda s: s.timestamp)
        return samples

    # -- lifecycle ------------------------------------------------------------

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> HarvestClient:
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.close()
