"""Dataclasses representing stored scan history records."""
from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(slots=True)
class ScanCycleRecord:
    id: int
    started_at: datetime
    finished_at: Optional[datetime]
    pairs: list[str]
    opportunities_found: int


@dataclass(slots=True)
class OpportunityRecord:
    id: int
    scan_cycle_id: Optional[int]
    pair: str
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
    base_market_cap_rank: Optional[int]
    detected_at: datetime
