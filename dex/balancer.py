#!/usr/bin/env python3
"""Balancer V2 pools via the Balancer subgraph."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from analysis.models import Quote, TokenPair
from constants import BALANCER_SUBGRAPH_URL
from dex.base import DexSource
from dex.errors import InvalidPair, ParseError

logger = logging.getLogger(__name__)

POOLS_QUERY = """
query PoolsForPair($tokens: [Bytes!]) {
  pools(
    first: 1
    orderBy: totalLiquidity
    orderDirection: desc
    where: { tokensList_contains: $tokens, totalShares_gt: "0" }
  ) {
    id
    poolType
    totalLiquidity
    tokens { address balance weight }
  }
}
"""


class BalancerSource(DexSource):
    """Spot price from the deepest Balancer pool containing both tokens."""

    def __init__(self, session, *, subgraph_url: str = BALANCER_SUBGRAPH_URL, **kwargs) -> None:
        super().__init__(session, **kwargs)
        self._subgraph_url = subgraph_url

    async def quote(self, pair: TokenPair) -> Quote:
        base = self.resolve_token(pair.base)
        quote_token = self.resolve_token(pair.quote)
        payload = {
            "query": POOLS_QUERY,
            "variables": {"tokens": [base.address, quote_token.address]},
        }
        data = await self._request_json("POST", self._subgraph_url, payload=payload)
        if not isinstance(data, dict):
            raise ParseError(self.name, "unexpected subgraph payload")
        if data.get('errors'):
            raise ParseError(self.name, f"subgraph error: {data['errors']}")
        try:
            pools = data['data']['pools']
        except (KeyError, TypeError) as exc:
            raise ParseError(self.name, "subgraph payload missing pools") from exc
        if not pools:
            raise InvalidPair(self.name, f"no pool for {pair.name}")

        pool = pools[0]
        tokens = {str(token.get('address', '')).lower(): token for token in pool.get('tokens') or []}
        base_entry = tokens.get(base.address)
        quote_entry = tokens.get(quote_token.address)
        if base_entry is None or quote_entry is None:
            raise ParseError(self.name, f"pool {pool.get('id')} does not hold {pair.name}")

        token_count = max(len(tokens), 2)
        try:
            base_balance = float(base_entry['balance'])
            quote_balance = float(quote_entry['balance'])
        except (KeyError, TypeError, ValueError) as exc:
            raise ParseError(self.name, f"malformed balances in pool {pool.get('id')}") from exc
        base_weight = self._weight(base_entry, token_count)
        quote_weight = self._weight(quote_entry, token_count)

        if base_balance <= 0 or quote_balance <= 0:
            raise InvalidPair(self.name, f"pool {pool.get('id')} for {pair.name} has empty balances")

        price = (quote_balance / quote_weight) / (base_balance / base_weight)
        liquidity = quote_balance / quote_weight
        return self.build_quote(pair, price, liquidity)

    @staticmethod
    def _weight(entry: Dict[str, Any], token_count: int) -> float:
        raw: Optional[Any] = entry.get('weight')
        try:
            weight = float(raw) if raw is not None else 0.0
        except (TypeError, ValueError):
            weight = 0.0
        # Stable and composable pools report no weights.
        return weight if weight > 0 else 1.0 / token_count
