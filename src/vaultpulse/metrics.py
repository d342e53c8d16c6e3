"""Vault metrics records and the cache snapshot that holds them.

Pure data model — no I/O. Numeric fields are kept exactly as the source
sent them (decimal text) and parsed on read, since the source may omit
or garble any of them.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Any


def parse_decimal(text: Any) -> float | None:
    """Parse decimal text into a finite float. Returns None when unusable."""
    if text is None or isinstance(text, bool):
        return None
    if isinstance(text, str):
        text = text.strip()
        if not text:
            return None
    try:
        value = float(text)
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    return value


def _optional_str(value: Any) -> str | None:
    if value is None:
        return None
    return str(value)


def _optional_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# VaultMetrics
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VaultMetrics:
    """One vault record from the yield-aggregation API."""

    id: str
    estimated_apy: str = ""
    total_value_locked: str = ""
    inactive: bool = False
    usd_price: str | None = None  # Underlying token price in USD
    share_price: str | None = None
    price_per_full_share: str | None = None  # Scaled by 10**decimals
    decimals: int | None = None

    # -- parsed accessors -----------------------------------------------------

    @property
    def apy(self) -> float | None:
        return parse_decimal(self.estimated_apy)

    @property
    def tvl(self) -> float | None:
        return parse_decimal(self.total_value_locked)

    @property
    def usd_price_value(self) -> float | None:
        return parse_decimal(self.usd_price)

    @property
    def share_price_value(self) -> float | None:
        return parse_decimal(self.share_price)

    @property
    def price_per_full_share_value(self) -> float | None:
        return parse_decimal(self.price_per_full_share)

    def resolve_decimals(self, fallback: int) -> int:
        """Vault decimals, falling back to the caller's vault configuration."""
        if self.decimals is None:
            return fallback
        return self.decimals

    # -- serialization --------------------------------------------------------

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "id": self.id,
            "estimatedApy": self.estimated_apy,
            "totalValueLocked": self.total_value_locked,
            "inactive": self.inactive,
        }
        if self.usd_price is not None:
            data["usdPrice"] = self.usd_price
        if self.share_price is not None:
            data["sharePrice"] = self.share_price
        if self.price_per_full_share is not None:
            data["pricePerFullShare"] = self.price_per_full_share
        if self.decimals is not None:
            data["decimals"] = self.decimals
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any], vault_id: str = "") -> VaultMetrics:
        """Build from a source record; ``vault_id`` is used when ``id`` is absent."""
        return cls(
            id=str(data.get("id") or vault_id),
            estimated_apy=str(data.get("estimatedApy") or ""),
            total_value_locked=str(data.get("totalValueLocked") or ""),
            inactive=bool(data.get("inactive", False)),
            usd_price=_optional_str(data.get("usdPrice")),
            share_price=_optional_str(data.get("sharePrice")),
            price_per_full_share=_optional_str(data.get("pricePerFullShare")),
            decimals=_optional_int(data.get("decimals")),
        )


# ---------------------------------------------------------------------------
# CacheSnapshot
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CacheSnapshot:
    """The cached vault collection and the time it was fetched.

    Either both fields are set or neither is. A new snapshot always
    replaces the previous one wholesale.
    """

    data: dict[str, VaultMetrics] | None = None
    fetched_at: float | None = None

    @classmethod
    def empty(cls) -> CacheSnapshot:
        return cls()

    @property
    def has_data(self) -> bool:
        return self.data is not None

    def age(self, now: float) -> float | None:
        """Seconds since the fetch, or None if nothing was ever fetched."""
        if self.fetched_at is None:
            return None
        return now - self.fetched_at

    def is_fresh(self, now: float, max_age: float) -> bool:
        if self.data is None or self.fetched_at is None:
            return False
        return now - self.fetched_at < max_age

    def metrics_for(self, vault_id: str) -> VaultMetrics | None:
        if not self.data or not vault_id:
            return None
        return self.data.get(vault_id)
