#!/usr/bin/env python3
"""Curve pools via the public Curve REST API."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Dict, List, Optional, Tuple

from analysis.models import Quote, TokenPair
from constants import CURVE_API_BASE_URL
from dex.base import DexSource
from dex.errors import InvalidPair, ParseError

logger = logging.getLogger(__name__)


class CurveSource(DexSource):
    """Prices a pair from the deepest Curve pool holding both coins."""

    def __init__(
        self,
        session,
        *,
        registry: str = "main",
        base_url: str = CURVE_API_BASE_URL,
        pool_cache_ttl: float = 30.0,
        **kwargs,
    ) -> None:
        super().__init__(session, **kwargs)
        self._url = f"{base_url}/getPools/{self.chain}/{registry}"
        self._pool_cache_ttl = pool_cache_ttl
        self._pool_cache: Optional[Tuple[List[Dict[str, Any]], float]] = None
        self._lock = asyncio.Lock()

    async def quote(self, pair: TokenPair) -> Quote:
        base = self.resolve_token(pair.base)
        quote_token = self.resolve_token(pair.quote)
        pools = await self._get_pools()

        best: Optional[Tuple[float, Dict[str, Any], Dict[str, Any], Dict[str, Any]]] = None
        for pool in pools:
            coins = {str(coin.get('address', '')).lower(): coin for coin in pool.get('coins') or []}
            base_coin = coins.get(base.address)
            quote_coin = coins.get(quote_token.address)
            if base_coin is None or quote_coin is None:
                continue
            depth = self._to_float(pool.get('usdTotal')) or 0.0
            if best is None or depth > best[0]:
                best = (depth, pool, base_coin, quote_coin)

        if best is None:
            raise InvalidPair(self.name, f"no pool for {pair.name}")

        usd_total, pool, base_coin, quote_coin = best
        try:
            base_balance = int(base_coin['poolBalance']) / (10 ** int(base_coin['decimals']))
            quote_balance = int(quote_coin['poolBalance']) / (10 ** int(quote_coin['decimals']))
        except (KeyError, TypeError, ValueError) as exc:
            raise ParseError(self.name, f"malformed coin data in pool {pool.get('id')}") from exc

        base_usd = self._to_float(base_coin.get('usdPrice'))
        quote_usd = self._to_float(quote_coin.get('usdPrice'))
        if base_usd and quote_usd:
            price = base_usd / quote_usd
            liquidity = usd_total / quote_usd if usd_total else 2 * quote_balance
        else:
            if base_balance <= 0:
                raise InvalidPair(self.name, f"pool {pool.get('id')} has no {pair.base.symbol} balance")
            price = quote_balance / base_balance
            liquidity = 2 * quote_balance
        return self.build_quote(pair, price, liquidity)

    async def _get_pools(self) -> List[Dict[str, Any]]:
        async with self._lock:
            now = time.monotonic()
            if self._pool_cache and now - self._pool_cache[1] <= self._pool_cache_ttl:
                return self._pool_cache[0]
            data = await self._request_json("GET", self._url)
            try:
                if not data.get('success', True):
                    raise ParseError(self.name, "Curve API returned an unsuccessful response")
                pools = data['data']['poolData']
            except (AttributeError, KeyError, TypeError) as exc:
                raise ParseError(self.name, "unexpected Curve pools payload") from exc
            if not isinstance(pools, list):
                raise ParseError(self.name, "Curve poolData is not a list")
            logger.debug("Fetched %d Curve pools", len(pools))
            self._pool_cache = (pools, now)
            return pools

    @staticmethod
    def _to_float(value: Any) -> Optional[float]:
        if value is None:
            return None
        try:
            return float(value)
        except (TypeError, ValueError):
            return None
