#!/usr/bin/env python3
"""Token metadata cache backed by the CoinGecko registry and a JSON file."""
from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from config import TokenCacheConfig
from services.coingecko_client import CoinGeckoClient, RegistryError

logger = logging.getLogger(__name__)


class DataUnavailable(Exception):
    """No token list is cached and the registry could not provide one."""


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _optional_float(value: Any) -> Optional[float]:
    if value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class Token:
    id: str
    symbol: str
    name: str
    platforms: Dict[str, Optional[str]] = field(default_factory=dict)
    market_cap_rank: Optional[int] = None
    current_price: Optional[float] = None
    market_cap: Optional[float] = None
    total_volume: Optional[float] = None
    price_change_percentage_24h: Optional[float] = None

    def address_on(self, chain: str) -> Optional[str]:
        return self.platforms.get(chain)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'id': self.id,
            'symbol': self.symbol,
            'name': self.name,
            'platforms': dict(self.platforms),
            'market_cap_rank': self.market_cap_rank,
            'current_price': self.current_price,
            'market_cap': self.market_cap,
            'total_volume': self.total_volume,
            'price_change_percentage_24h': self.price_change_percentage_24h,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Token':
        platforms = data.get('platforms') or {}
        return cls(
            id=str(data['id']),
            symbol=str(data['symbol']),
            name=str(data.get('name') or data['symbol']),
            platforms={chain: (addr.lower() if addr else None) for chain, addr in platforms.items()},
            market_cap_rank=_optional_int(data.get('market_cap_rank')),
            current_price=_optional_float(data.get('current_price')),
            market_cap=_optional_float(data.get('market_cap')),
            total_volume=_optional_float(data.get('total_volume')),
            price_change_percentage_24h=_optional_float(data.get('price_change_percentage_24h')),
        )


@dataclass(frozen=True)
class TokenList:
    tokens: List[Token]
    last_updated: datetime
    total_count: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            'tokens': [token.to_dict() for token in self.tokens],
            'last_updated': self.last_updated.isoformat(),
            'total_count': self.total_count,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TokenList':
        tokens = [Token.from_dict(item) for item in data['tokens']]
        last_updated = datetime.fromisoformat(str(data['last_updated']).replace('Z', '+00:00'))
        if last_updated.tzinfo is None:
            last_updated = last_updated.replace(tzinfo=timezone.utc)
        return cls(tokens=tokens, last_updated=last_updated, total_count=int(data.get('total_count', len(tokens))))

    def limited(self, limit: Optional[int]) -> 'TokenList':
        if limit is None or limit >= len(self.tokens):
            return self
        tokens = self.tokens[:max(limit, 0)]
        return TokenList(tokens=tokens, last_updated=self.last_updated, total_count=len(tokens))


def sort_tokens(tokens: List[Token]) -> List[Token]:
    """Ranked tokens first by ascending rank, unranked ones after them by symbol."""
    return sorted(
        tokens,
        key=lambda t: (t.market_cap_rank is None, t.market_cap_rank or 0, t.symbol.lower()),
    )


def write_token_list(path: Path, token_list: TokenList) -> None:
    """Writes to a temporary file in the same directory and swaps it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix='.tmp', dir=path.parent)
    try:
        with os.fdopen(fd, 'w', encoding='utf-8') as handle:
            json.dump(token_list.to_dict(), handle, indent=2)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def read_token_list(path: Path) -> Optional[TokenList]:
    """Loads a cache file; a missing file gives None, a corrupt one is logged and gives None."""
    if not path.exists():
        return None
    try:
        with path.open('r', encoding='utf-8') as handle:
            return TokenList.from_dict(json.load(handle))
    except (OSError, ValueError, KeyError, TypeError) as exc:
        logger.warning("Ignoring unreadable token cache %s: %s", path, exc)
        return None


class TokenCache:
    """
    In-memory token list mirrored to disk and refreshed from the registry.

    One refresh runs at a time. Readers always see a complete snapshot, either
    the previous list or the new one.
    """

    def __init__(
        self,
        client: CoinGeckoClient,
        config: TokenCacheConfig = TokenCacheConfig(),
        *,
        clock: Callable[[], datetime] = _utc_now,
    ):
        self.client = client
        self.config = config
        self.path = Path(config.cache_path)
        self._clock = clock
        self._snapshot: Optional[TokenList] = None
        self._file_checked = False
        self._lock = asyncio.Lock()

    @property
    def snapshot(self) -> Optional[TokenList]:
        """The current list, or None if nothing has been loaded yet. Never triggers I/O."""
        return self._snapshot

    def address_index(self, chain: str = 'ethereum') -> Dict[str, Token]:
        """Maps lower-cased contract address on ``chain`` to token for the current snapshot."""
        snapshot = self._snapshot
        if snapshot is None:
            return {}
        index: Dict[str, Token] = {}
        for token in snapshot.tokens:
            address = token.address_on(chain)
            if address and address not in index:
                index[address] = token
        return index

    def is_stale(self, token_list: Optional[TokenList] = None) -> bool:
        token_list = token_list if token_list is not None else self._snapshot
        if token_list is None:
            return True
        age = (self._clock() - token_list.last_updated).total_seconds()
        return age > self.config.ttl_seconds

    async def get_tokens(self, force_update: bool = False, limit: Optional[int] = None) -> TokenList:
        """
        Returns the token list, refreshing it first when forced, stale or absent.

        A failed refresh falls back to whatever is cached. Raises DataUnavailable
        only when there is nothing to fall back to.
        """
        async with self._lock:
            await self._load_file_once()
            if force_update or self.is_stale():
                try:
                    await self._refresh()
                except RegistryError as exc:
                    if self._snapshot is None:
                        raise DataUnavailable(f"No cached tokens and registry refresh failed: {exc}") from exc
                    logger.warning("Token refresh failed, serving cached list from %s: %s",
                                   self._snapshot.last_updated.isoformat(), exc)
            token_list = self._snapshot
        return token_list.limited(limit)

    async def get_token_by_symbol(self, symbol: str) -> Optional[Token]:
        token_list = await self._current()
        wanted = symbol.lower()
        for token in token_list.tokens:
            if token.symbol.lower() == wanted:
                return token
        return None

    async def get_token_by_address(self, address: str) -> Optional[Token]:
        token_list = await self._current()
        wanted = address.lower()
        for token in token_list.tokens:
            if any(addr and addr.lower() == wanted for addr in token.platforms.values()):
                return token
        return None

    async def get_top_tokens(self, n: int) -> List[Token]:
        token_list = await self.get_tokens()
        ranked = [token for token in token_list.tokens if token.market_cap_rank is not None]
        ranked.sort(key=lambda t: t.market_cap_rank)
        return ranked[:max(n, 0)]

    async def _current(self) -> TokenList:
        # Lookups never refresh a list that exists in memory or on disk, however old it is.
        snapshot = self._snapshot
        if snapshot is not None:
            return snapshot
        async with self._lock:
            await self._load_file_once()
            if self._snapshot is None:
                try:
                    await self._refresh()
                except RegistryError as exc:
                    raise DataUnavailable(f"No cached tokens and registry refresh failed: {exc}") from exc
            return self._snapshot

    async def _load_file_once(self) -> None:
        if self._file_checked or self._snapshot is not None:
            return
        self._file_checked = True
        loaded = await asyncio.get_running_loop().run_in_executor(None, read_token_list, self.path)
        if loaded is not None:
            logger.info("Loaded %d tokens from %s", loaded.total_count, self.path)
            self._snapshot = loaded

    async def _refresh(self) -> None:
        token_list = await self._fetch()
        self._snapshot = token_list
        try:
            await asyncio.get_running_loop().run_in_executor(None, write_token_list, self.path, token_list)
        except OSError as exc:
            logger.error("Could not persist token cache to %s: %s", self.path, exc)

    async def _fetch(self) -> TokenList:
        logger.info("Refreshing token list from CoinGecko (max %d tokens)", self.config.max_tokens)
        platforms = await self.client.list_coins_with_platforms()

        tokens: List[Token] = []
        seen = set()
        page = 1
        while len(tokens) < self.config.max_tokens:
            per_page = self.config.batch_size
            try:
                markets = await self.client.get_markets(page=page, per_page=per_page)
            except RegistryError as exc:
                # A cached list is never replaced by a partial one.
                if not tokens or self._snapshot is not None:
                    raise
                logger.warning("Stopping at page %d, keeping %d tokens: %s", page, len(tokens), exc)
                break
            for entry in markets:
                coin_id = entry.get('id')
                if not coin_id or coin_id in seen or not entry.get('symbol'):
                    continue
                seen.add(coin_id)
                tokens.append(Token.from_dict({**entry, 'platforms': platforms.get(coin_id, {})}))
                if len(tokens) >= self.config.max_tokens:
                    break
            if len(markets) < per_page:
                break
            page += 1

        tokens = sort_tokens(tokens)
        logger.info("Fetched %d tokens over %d page(s)", len(tokens), page)
        return TokenList(tokens=tokens, last_updated=self._clock(), total_count=len(tokens))
