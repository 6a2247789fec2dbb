#!/usr/bin/env python3
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class TokenInfo:
    """A token as seen by the DEX adapters: symbol, contract address and decimals."""
    symbol: str
    address: str
    decimals: int = 18

    def __post_init__(self):
        object.__setattr__(self, 'symbol', self.symbol.upper())
        object.__setattr__(self, 'address', self.address.lower())


@dataclass(frozen=True)
class TokenPair:
    """Ordered (base, quote) pair. Prices are quoted as quote units per one base unit."""
    base: TokenInfo
    quote: TokenInfo

    def __post_init__(self):
        if self.base.address == self.quote.address:
            raise ValueError(f"Token pair needs two distinct tokens, got {self.base.symbol} twice")

    @property
    def name(self) -> str:
        return f"{self.base.symbol}/{self.quote.symbol}"

    def __str__(self) -> str:
        return self.name


@dataclass(frozen=True)
class Quote:
    """A single venue price observation for one scan cycle."""
    source: str
    pair: TokenPair
    price: float
    liquidity: float
    observed_at: datetime = field(default_factory=_utc_now)
    fee_percentage: float = 0.0

    def __post_init__(self):
        if not math.isfinite(self.price) or self.price <= 0:
            raise ValueError(f"Quote price must be positive and finite, got {self.price!r}")
        if not math.isfinite(self.liquidity) or self.liquidity < 0:
            raise ValueError(f"Quote liquidity must be non-negative and finite, got {self.liquidity!r}")
        if not math.isfinite(self.fee_percentage) or self.fee_percentage < 0:
            raise ValueError(f"Quote fee must be non-negative and finite, got {self.fee_percentage!r}")


@dataclass(frozen=True)
class ArbitrageOpportunity:
    """Represents a cross-venue price discrepancy that survived all filters."""
    pair: TokenPair
    buy_venue: str
    sell_venue: str
    buy_price: float
    sell_price: float
    profit_percentage: float
    liquidity: float
    confidence_score: float
    gas_cost_estimate: float
    estimated_profit: float
    slippage_pct: float
    detected_at: datetime = field(default_factory=_utc_now)
    base_market_cap_rank: Optional[int] = None
    # Spread left after both venues' swap fees; informational, never filtered on.
    net_profit_percentage: Optional[float] = None

    @property
    def pair_name(self) -> str:
        return self.pair.name

    @property
    def key(self) -> tuple[TokenPair, str, str]:
        return (self.pair, self.buy_venue, self.sell_venue)
