"""Derived balance series: token and USD values for a user's vault position.

Pure functions only. The chart view calls these on every render and on
every pointer move, so nothing here touches the cache or the network.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Sequence

from vaultpulse.constants import TOKEN_AXIS_HEADROOM, USD_AXIS_HEADROOM
from vaultpulse.metrics import VaultMetrics, parse_decimal

# Epoch values above this are milliseconds, not seconds.
_EPOCH_MILLIS_THRESHOLD = 10**11


def parse_timestamp(value: Any) -> datetime:
    """Parse epoch seconds, epoch milliseconds or ISO-8601 text into UTC.

    Raises ValueError when the value is none of those.
    """
    if isinstance(value, datetime):
        ts = value
    elif isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = value / 1000 if abs(value) > _EPOCH_MILLIS_THRESHOLD else value
        try:
            ts = datetime.fromtimestamp(seconds, tz=timezone.utc)
        except (OverflowError, OSError) as exc:
            raise ValueError(f"timestamp out of range: {value!r}") from exc
    elif isinstance(value, str):
        text = value.strip()
        number = parse_decimal(text)
        if number is not None:
            return parse_timestamp(number)
        ts = datetime.fromisoformat(text.replace("Z", "+00:00"))
    else:
        raise ValueError(f"unsupported timestamp: {value!r}")
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc)


# ---------------------------------------------------------------------------
# Samples
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BalanceSample:
    """A raw balance point from the balance source, in token units."""

    timestamp: datetime
    value: float

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> BalanceSample:
        value = parse_decimal(data.get("value"))
        if value is None:
            raise ValueError(f"balance sample has no numeric value: {data!r}")
        return cls(timestamp=parse_timestamp(data.get("timestamp")), value=value)


@dataclass(frozen=True)
class DerivedSample:
    """A balance point with its USD valuation."""

    timestamp: datetime
    token_value: float
    usd_value: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "tokenValue": self.token_value,
            "usdValue": self.usd_value,
        }


# ---------------------------------------------------------------------------
# Price resolution
# ---------------------------------------------------------------------------


def resolve_token_price(metrics: VaultMetrics | None) -> float:
    """USD price of the underlying token, with fallbacks.

    1. ``usd_price`` when it parses positive.
    2. ``share_price`` when both TVL and share price parse positive.
       TVL is only checked, never used in the computation.
    3. ``1.0``.
    """
    if metrics is None:
        return 1.0
    usd_price = metrics.usd_price_value
    if usd_price is not None and usd_price > 0:
        return usd_price
    tvl = metrics.tvl
    share_price = metrics.share_price_value
    if tvl is not None and share_price is not None and tvl > 0 and share_price > 0:
        return share_price
    return 1.0


def resolve_share_price(metrics: VaultMetrics | None, fallback_decimals: int) -> float:
    """Underlying tokens per vault share.

    ``price_per_full_share`` is scaled by ``10 ** decimals``; decimals come
    from the metrics record when present, else from ``fallback_decimals``.
    """
    if metrics is None:
        return 1.0
    ppfs = metrics.price_per_full_share_value
    if ppfs is None:
        return 1.0
    decimals = metrics.resolve_decimals(fallback_decimals)
    try:
        share_price = ppfs / 10.0**decimals
    except (OverflowError, ZeroDivisionError):
        return 1.0
    return share_price if math.isfinite(share_price) else 1.0


def usd_value(token_value: float, token_price: float, share_price: float) -> float:
    """``token × token_price × share_price``, valued at par if that overflows."""
    value = token_value * token_price * share_price
    if math.isfinite(value):
        return value
    return token_value if math.isfinite(token_value) else 0.0


def derive(
    samples: Iterable[BalanceSample],
    metrics: VaultMetrics | None,
    fallback_decimals: int,
) -> list[DerivedSample]:
    """Value every balance sample in USD, preserving order."""
    token_price = resolve_token_price(metrics)
    share_price = resolve_share_price(metrics, fallback_decimals)
    return [
        DerivedSample(
            timestamp=s.timestamp,
            token_value=s.value,
            usd_value=usd_value(s.value, token_price, share_price),
        )
        for s in samples
    ]


# ---------------------------------------------------------------------------
# Formatting and interaction helpers
# ---------------------------------------------------------------------------


def _trim(text: str) -> str:
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_balance(value: float) -> str:
    """Human-readable token amount."""
    if value == 0:
        return "0"
    magnitude = abs(value)
    if magnitude < 0.000001:
        return "<0.000001" if value > 0 else ">-0.000001"
    if magnitude >= 1000:
        return _trim(f"{value:,.2f}")
    if magnitude >= 1:
        return _trim(f"{value:.4f}")
    return _trim(f"{value:.6f}")


def format_usd(value: float) -> str:
    return f"${value:.2f}"


def format_date(ts: datetime) -> str:
    """``M/D/YYYY`` in UTC."""
    ts = ts.astimezone(timezone.utc)
    return f"{ts.month}/{ts.day}/{ts.year}"


@dataclass(frozen=True)
class Readout:
    """Formatted header/tooltip values for one sample."""

    date: str
    token_value: str
    usd_value: str

    def to_dict(self) -> dict[str, str]:
        return {"date": self.date, "token_value": self.token_value, "usd_value": self.usd_value}


def readout(
    timestamp: datetime,
    token_value: float,
    token_price: float,
    share_price: float,
) -> Readout:
    """Format a sample for display. Pure; safe to call on every pointer move."""
    return Readout(
        date=format_date(timestamp),
        token_value=format_balance(token_value),
        usd_value=format_usd(usd_value(token_value, token_price, share_price)),
    )


def nearest_sample(samples: Sequence[DerivedSample], timestamp: datetime) -> DerivedSample | None:
    """The sample closest in time to ``timestamp``; ties go to the earlier one."""
    if not samples:
        return None
    return min(samples, key=lambda s: abs((s.timestamp - timestamp).total_seconds()))


def axis_domains(
    derived: Sequence[DerivedSample],
) -> tuple[tuple[float, float], tuple[float, float]]:
    """Chart domains ``(token_domain, usd_domain)`` with headroom above the max."""
    if not derived:
        return (0.0, 0.0), (0.0, 0.0)
    token_max = max(s.token_value for s in derived) * TOKEN_AXIS_HEADROOM
    usd_max = max(s.usd_value for s in derived) * USD_AXIS_HEADROOM
    return (0.0, token_max), (0.0, usd_max)
