#!/usr/bin/env python3
"""Shared contract and HTTP plumbing for DEX quote sources."""
from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Mapping, Optional

import aiohttp

from analysis.models import Quote, TokenInfo, TokenPair
from dex.errors import InvalidPair, NetworkError, ParseError, RateLimited

logger = logging.getLogger(__name__)


class DexSource(ABC):
    """One venue able to quote a token pair.

    Subclasses normalise their native representation into a :class:`Quote`
    priced in quote units per base unit, with liquidity in quote units.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        *,
        name: str,
        chain: str,
        fee_percentage: float,
        timeout: float = 30.0,
        token_overrides: Optional[Mapping[str, TokenInfo]] = None,
    ) -> None:
        self._session = session
        self.name = name
        self.chain = chain
        self.fee_percentage = fee_percentage
        self._timeout = timeout
        self._token_overrides = dict(token_overrides or {})

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, chain={self.chain!r})"

    @abstractmethod
    async def quote(self, pair: TokenPair) -> Quote:
        """Returns a fresh quote or raises a :class:`dex.errors.QuoteError`."""

    def resolve_token(self, token: TokenInfo) -> TokenInfo:
        """Maps a token to this venue's chain, by symbol, when the venue lives elsewhere."""
        if not self._token_overrides:
            return token
        resolved = self._token_overrides.get(token.symbol)
        if resolved is None:
            raise InvalidPair(self.name, f"{token.symbol} is not listed on {self.chain}")
        return resolved

    def build_quote(self, pair: TokenPair, price: float, liquidity: float) -> Quote:
        try:
            return Quote(
                source=self.name, pair=pair, price=price, liquidity=liquidity, fee_percentage=self.fee_percentage,
            )
        except ValueError as exc:
            raise ParseError(self.name, f"unusable price for {pair.name}: {exc}") from exc

    async def _request_json(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        payload: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Performs one HTTP request and maps transport failures to the quote error taxonomy."""
        try:
            async with self._session.request(method, url, params=params, json=payload, timeout=self._timeout) as response:
                if response.status == 429:
                    raise RateLimited(self.name, f"rate limited by {url}")
                response.raise_for_status()
                return await response.json(content_type=None)
        except RateLimited:
            raise
        except asyncio.TimeoutError as exc:
            raise NetworkError(self.name, f"request to {url} timed out") from exc
        except aiohttp.ContentTypeError as exc:
            raise ParseError(self.name, f"non-JSON response from {url}") from exc
        except aiohttp.ClientResponseError as exc:
            if exc.status == 429:
                raise RateLimited(self.name, f"rate limited by {url}") from exc
            raise NetworkError(self.name, f"HTTP {exc.status} from {url}") from exc
        except aiohttp.ClientError as exc:
            raise NetworkError(self.name, f"request to {url} failed: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise ParseError(self.name, f"malformed JSON from {url}") from exc
