"""Tests for the Harvest vault/balance API client."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock

import httpx
import pytest

from vaultpulse.config import VaultPulseConfig
from vaultpulse.harvest_client import (
    HarvestClient,
    MalformedResponseError,
    SourceUnavailableError,
    VaultSourceError,
)
from vaultpulse.vault_source import BalanceSource, VaultSource


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _response(
    status: int = 200, json_data: dict | list | None = None, text: str | None = None
) -> httpx.Response:
    request = httpx.Request("GET", "https://api.harvest.finance/vaults")
    if text is not None:
        return httpx.Response(status_code=status, text=text, request=request)
    return httpx.Response(status_code=status, json=json_data, request=request)


VAULTS_PAYLOAD = {
    "eth": {"some_eth_vault": {"id": "some_eth_vault", "usdPrice": "3000"}},
    "base": {
        "IPOR_USDC_base": {
            "id": "IPOR_USDC_base",
            "estimatedApy": "7.1",
            "totalValueLocked": "1000000",
            "inactive": False,
            "usdPrice": "1.0",
            "pricePerFullShare": "104000000",
        },
        "IPOR_WETH_base": {
            "id": "IPOR_WETH_base",
            "estimatedApy": "3.2",
            "totalValueLocked": "500",
            "inactive": False,
            "sharePrice": "1.01",
        },
    },
}


# ---------------------------------------------------------------------------
# Init / constructor
# ---------------------------------------------------------------------------


class TestHarvestClientInit:
    def test_base_url(self) -> None:
        client = HarvestClient("https://api.harvest.finance/")
        assert str(client._client.base_url).rstrip("/") == "https://api.harvest.finance"

    def test_timeout_configured(self) -> None:
        t = HarvestClient()._client.timeout
        assert t.connect == 5.0
        assert t.read == 20.0

    def test_from_config(self) -> None:
        config = VaultPulseConfig(
            harvest_api_url="https://harvest.example.com",
            harvest_api_key="k1",
            harvest_network="arbitrum",
            balance_api_url="https://balances.example.com/",
        )
        client = HarvestClient.from_config(config)
        assert str(client._client.base_url).rstrip("/") == "https://harvest.example.com"
        assert client._api_key == "k1"
        assert client._network == "arbitrum"
        assert client._balance_url == "https://balances.example.com"

    def test_implements_protocols(self) -> None:
        client = HarvestClient()
        assert isinstance(client, VaultSource)
        assert isinstance(client, BalanceSource)


# ---------------------------------------------------------------------------
# fetch_vaults
# ---------------------------------------------------------------------------


class TestFetchVaults:
    @pytest.mark.asyncio
    async def test_returns_network_vaults(self) -> None:
        client = HarvestClient()
        client._client.get = AsyncMock(return_value=_response(200, VAULTS_PAYLOAD))
        vaults = await client.fetch_vaults()
        assert set(vaults) == {"IPOR_USDC_base", "IPOR_WETH_base"}
        assert vaults["IPOR_USDC_base"].usd_price == "1.0"
        assert vaults["IPOR_WETH_base"].usd_price is None
        client._client.get.assert_called_once_with("/vaults", params=None)

    @pytest.mark.asyncio
    async def test_sends_api_key(self) -> None:
        client = HarvestClient(api_key="secret")
        client._client.get = AsyncMock(return_value=_response(200, VAULTS_PAYLOAD))
        await client.fetch_vaults()
        client._client.get.assert_called_once_with("/vaults", params={"key": "secret"})

    @pytest.mark.asyncio
    async def test_other_network(self) -> None:
        client = HarvestClient(network="eth")
        client._client.get = AsyncMock(return_value=_response(200, VAULTS_PAYLOAD))
        vaults = await client.fetch_vaults()
        assert list(vaults) == ["some_eth_vault"]

    @pytest.mark.asyncio
    async def test_missing_network_key_is_malformed(self) -> None:
        client = HarvestClient()
        client._client.get = AsyncMock(return_value=_response(200, {"eth": {}}))
        with pytest.raises(MalformedResponseError, match="base"):
            await client.fetch_vaults()

    @pytest.mark.asyncio
    async def test_non_object_payload_is_malformed(self) -> None:
        client = HarvestClient()
        client._client.get = AsyncMock(return_value=_response(200, [1, 2, 3]))
        with pytest.raises(MalformedResponseError):
            await client.fetch_vaults()

    @pytest.mark.asyncio
    async def test_non_json_body_is_malformed(self) -> None:
        client = HarvestClient()
        client._client.get = AsyncMock(return_value=_response(200, text="<html>oops</html>"))
        with pytest.raises(MalformedResponseError, match="not JSON"):
            await client.fetch_vaults()

    @pytest.mark.asyncio
    async def test_skips_non_object_records(self) -> None:
        client = HarvestClient()
        payload = {"base": {"good": {"id": "good"}, "bad": "nope"}}
        client._client.get = AsyncMock(return_value=_response(200, payload))
        vaults = await client.fetch_vaults()
        assert list(vaults) == ["good"]

    @pytest.mark.asyncio
    async def test_record_id_defaults_to_key(self) -> None:
        client = HarvestClient()
        payload = {"base": {"keyed": {"usdPrice": "1"}}}
        client._client.get = AsyncMock(return_value=_response(200, payload))
        vaults = await client.fetch_vaults()
        assert vaults["keyed"].id == "keyed"


# ---------------------------------------------------------------------------
# Error mapping
# ---------------------------------------------------------------------------


class TestErrorMapping:
    @pytest.mark.asyncio
    async def test_connect_error(self) -> None:
        client = HarvestClient()
        client._client.get = AsyncMock(side_effect=httpx.ConnectError("dns failure"))
        with pytest.raises(SourceUnavailableError, match="dns failure"):
            await client.fetch_vaults()

    @pytest.mark.asyncio
    async def test_timeout(self) -> None:
        client = HarvestClient()
        client._client.get = AsyncMock(side_effect=httpx.ReadTimeout("slow"))
        with pytest.raises(SourceUnavailableError, match="timeout"):
            await client.fetch_vaults()

    @pytest.mark.asyncio
    async def test_server_error(self) -> None:
        client = HarvestClient()
        client._client.get = AsyncMock(return_value=_response(502, {"error": "bad gateway"}))
        with pytest.raises(SourceUnavailableError) as exc_info:
            await client.fetch_vaults()
        assert exc_info.value.status_code == 502

    @pytest.mark.asyncio
    async def test_throttled(self) -> None:
        client = HarvestClient()
        client._client.get = AsyncMock(return_value=_response(429, {}))
        with pytest.raises(SourceUnavailableError) as exc_info:
            await client.fetch_vaults()
        assert exc_info.value.status_code == 429

    @pytest.mark.asyncio
    async def test_decoding_error_is_unavailable(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.DecodingError("bad gzip", request=request)

        client = HarvestClient()
        client._client = httpx.AsyncClient(
            base_url="https://api.harvest.finance", transport=httpx.MockTransport(handler)
        )
        with pytest.raises(SourceUnavailableError, match="bad gzip"):
            await client.fetch_vaults()

    @pytest.mark.asyncio
    async def test_too_many_redirects_is_unavailable(self) -> None:
        client = HarvestClient()
        client._client.get = AsyncMock(side_effect=httpx.TooManyRedirects("loop"))
        with pytest.raises(SourceUnavailableError):
            await client.fetch_vaults()

    @pytest.mark.asyncio
    async def test_client_error_is_base_class(self) -> None:
        client = HarvestClient()
        client._client.get = AsyncMock(return_value=_response(401, {"error": "bad key"}))
        with pytest.raises(VaultSourceError) as exc_info:
            await client.fetch_vaults()
        assert type(exc_info.value) is VaultSourceError
        assert exc_info.value.status_code == 401


# ---------------------------------------------------------------------------
# fetch_user_balance
# ---------------------------------------------------------------------------


class TestFetchUserBalance:
    @pytest.mark.asyncio
    async def test_scales_and_sorts(self) -> None:
        client = HarvestClient()
        payload = {
            "balance": [
                {"timestamp": 1700086400000, "value": "2500000"},
                {"timestamp": 1700000000000, "value": "1500000"},
            ]
        }
        client._client.get = AsyncMock(return_value=_response(200, payload))
        samples = await client.fetch_user_balance("0xvault", "0xuser", "30d", 8453, 6)
        assert [s.value for s in samples] == [1.5, 2.5]
        assert samples[0].timestamp == datetime.fromtimestamp(1700000000, tz=timezone.utc)
        client._client.get.assert_called_once_with(
            "/user-balances",
            params={"vault": "0xvault", "user": "0xuser", "period": "30d", "chainId": 8453},
        )

    @pytest.mark.asyncio
    async def test_separate_balance_host(self) -> None:
        client = HarvestClient(balance_url="https://balances.example.com/")
        client._client.get = AsyncMock(return_value=_response(200, {"balance": []}))
        await client.fetch_user_balance("0xvault", "0xuser", "7d", 8453, 18)
        url = client._client.get.call_args[0][0]
        assert url == "https://balances.example.com/user-balances"

    @pytest.mark.asyncio
    async def test_empty_history_is_not_an_error(self) -> None:
        client = HarvestClient()
        client._client.get = AsyncMock(return_value=_response(200, {"balance": []}))
        assert await client.fetch_user_balance("0xvault", "0xuser", "30d", 8453, 6) == []

    @pytest.mark.asyncio
    async def test_missing_balance_key_is_malformed(self) -> None:
        client = HarvestClient()
        client._client.get = AsyncMock(return_value=_response(200, {"data": []}))
        with pytest.raises(MalformedResponseError, match="balance"):
            await client.fetch_user_balance("0xvault", "0xuser", "30d", 8453, 6)

    @pytest.mark.asyncio
    async def test_drops_unusable_points(self) -> None:
        client = HarvestClient()
        payload = {
            "balance": [
                {"timestamp": 1700000000, "value": "1000000"},
                {"timestamp": 1700003600, "value": None},
                {"timestamp": "not-a-time", "value": "1"},
                "garbage",
            ]
        }
        client._client.get = AsyncMock(return_value=_response(200, payload))
        samples = await client.fetch_user_balance("0xvault", "0xuser", "30d", 8453, 6)
        assert [s.value for s in samples] == [1.0]


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_context_manager_closes(self) -> None:
        client = HarvestClient()
        client._client.aclose = AsyncMock()
        async with client as c:
            assert c is client
        client._client.aclose.assert_called_once()
