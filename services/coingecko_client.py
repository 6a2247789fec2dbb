#!/usr/bin/env python3
import asyncio
import logging
import time
from typing import Any, Dict, List, Optional

import aiohttp
from constants import (
    COINGECKO_API_BASE_URL,
    TOKEN_CACHE_ANONYMOUS_BATCH_DELAY,
    TOKEN_CACHE_BATCH_DELAY,
)

logger = logging.getLogger(__name__)

RATE_LIMIT_BACKOFF_SECONDS = 60.0


class RegistryError(Exception):
    """Raised when the token registry cannot be reached or returns unusable data."""


async def api_get(
    url: str,
    session: aiohttp.ClientSession,
    params: Optional[Dict] = None,
    headers: Optional[Dict] = None,
    retries: int = 3,
    timeout: int = 10,
    retry_delay: float = 2.0,
) -> Optional[Any]:
    """Makes an async GET request with retries and timeout. Returns None once retries are exhausted."""
    for attempt in range(retries):
        try:
            async with session.get(url, params=params, headers=headers, timeout=timeout) as response:
                if response.status == 429:
                    retry_after = _retry_after(response.headers)
                    logger.warning("Registry rate limit hit on %s, backing off %.0fs", url, retry_after)
                    if attempt < retries - 1:
                        await asyncio.sleep(retry_after)
                        continue
                    logger.error("API request to %s still rate limited after %d attempts", url, retries)
                    return None
                response.raise_for_status()
                return await response.json()
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            # ValueError covers a truncated or malformed JSON body.
            if attempt < retries - 1:
                await asyncio.sleep(retry_delay)
            else:
                logger.error("API request failed after %d attempts: %s", retries, e)
                return None
    return None


def _retry_after(headers) -> float:
    try:
        return max(float(headers.get('Retry-After')), 1.0)
    except (AttributeError, TypeError, ValueError):
        return RATE_LIMIT_BACKOFF_SECONDS


class CoinGeckoClient:
    """Thin CoinGecko REST client paced by a minimum delay between requests."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        api_key: Optional[str] = None,
        *,
        base_url: str = COINGECKO_API_BASE_URL,
        min_request_interval: float = TOKEN_CACHE_BATCH_DELAY,
        retries: int = 3,
        timeout: int = 10,
    ):
        self.session = session
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.headers = {'x-cg-demo-api-key': self.api_key} if self.api_key else {}
        self.retries = retries
        self.timeout = timeout
        self._last_request_time = 0.0
        self._rate_limit_delay = min_request_interval if api_key else max(
            min_request_interval, TOKEN_CACHE_ANONYMOUS_BATCH_DELAY
        )

    @property
    def rate_limit_delay(self) -> float:
        return self._rate_limit_delay

    async def _wait_for_rate_limit(self):
        elapsed = time.monotonic() - self._last_request_time
        if self._last_request_time and elapsed < self._rate_limit_delay:
            await asyncio.sleep(self._rate_limit_delay - elapsed)
        self._last_request_time = time.monotonic()

    async def _get(self, path: str, params: Optional[Dict] = None) -> Any:
        await self._wait_for_rate_limit()
        url = f"{self.base_url}{path}"
        data = await api_get(
            url, self.session, params=params, headers=self.headers,
            retries=self.retries, timeout=self.timeout,
        )
        if data is None:
            raise RegistryError(f"CoinGecko request to {path} failed")
        return data

    async def list_coins_with_platforms(self) -> Dict[str, Dict[str, Optional[str]]]:
        """Returns coin id -> {platform: contract address} for every listed coin."""
        data = await self._get('/coins/list', params={'include_platform': 'true'})
        if not isinstance(data, list):
            raise RegistryError("Unexpected /coins/list payload")
        platforms: Dict[str, Dict[str, Optional[str]]] = {}
        for coin in data:
            if not isinstance(coin, dict) or not coin.get('id'):
                continue
            raw = coin.get('platforms') or {}
            platforms[coin['id']] = {
                chain: (address.lower() if address else None)
                for chain, address in raw.items()
                if chain
            }
        logger.debug("Fetched platform data for %d coins", len(platforms))
        return platforms

    async def get_markets(self, page: int = 1, per_page: int = 100, vs_currency: str = 'usd') -> List[Dict]:
        """One page of coins ordered by market cap."""
        params = {
            'vs_currency': vs_currency,
            'order': 'market_cap_desc',
            'per_page': str(per_page),
            'page': str(page),
            'sparkline': 'false',
        }
        data = await self._get('/coins/markets', params=params)
        if not isinstance(data, list):
            raise RegistryError(f"Unexpected /coins/markets payload for page {page}")
        return data
