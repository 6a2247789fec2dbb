#!/usr/bin/env python3
"""Constant-product (Uniswap V2 style) pool reader over raw JSON-RPC ``eth_call``."""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional, Tuple

from analysis.models import Quote, TokenPair
from dex.base import DexSource
from dex.errors import InvalidPair, ParseError

logger = logging.getLogger(__name__)

ZERO_ADDRESS = '0x' + '0' * 40


class ConstantProductSource(DexSource):
    """Reads pair reserves from a V2 factory and prices the pair from the reserve ratio."""

    _GET_PAIR_SIG = "0xe6a43905"
    _TOKEN0_SIG = "0x0dfe1681"
    _GET_RESERVES_SIG = "0x0902f1ac"

    def __init__(self, session, *, rpc_url: str, factory_address: str, **kwargs) -> None:
        super().__init__(session, **kwargs)
        self._rpc_url = rpc_url
        self._factory_address = self._normalise_address(factory_address)
        self._pair_cache: Dict[Tuple[str, str], str] = {}
        self._token0_cache: Dict[str, str] = {}
        self._next_request_id = 1

    async def quote(self, pair: TokenPair) -> Quote:
        base = self.resolve_token(pair.base)
        quote_token = self.resolve_token(pair.quote)

        pair_address = await self._get_pair_address(base.address, quote_token.address)
        if pair_address == ZERO_ADDRESS:
            raise InvalidPair(self.name, f"no pool for {pair.name}")

        token0 = await self._get_token0(pair_address)
        reserve0, reserve1 = await self._get_reserves(pair_address)

        if token0 == base.address:
            reserve_base, reserve_quote = reserve0, reserve1
        elif token0 == quote_token.address:
            reserve_base, reserve_quote = reserve1, reserve0
        else:
            raise ParseError(self.name, f"pool {pair_address} does not hold {pair.name}")

        if reserve_base == 0 or reserve_quote == 0:
            raise InvalidPair(self.name, f"pool {pair_address} for {pair.name} has empty reserves")

        base_amount = reserve_base / (10 ** base.decimals)
        quote_amount = reserve_quote / (10 ** quote_token.decimals)
        price = quote_amount / base_amount
        logger.debug("%s %s reserves base=%.4f quote=%.4f price=%.8f", self.name, pair.name, base_amount, quote_amount, price)
        return self.build_quote(pair, price, 2 * quote_amount)

    async def _get_pair_address(self, token_a: str, token_b: str) -> str:
        cache_key = (token_a, token_b)
        cached = self._pair_cache.get(cache_key)
        if cached:
            return cached
        data = self._GET_PAIR_SIG + self._encode_address(token_a) + self._encode_address(token_b)
        result = await self._eth_call(self._factory_address, data)
        pair_address = self._decode_address(result)
        if pair_address is None:
            raise ParseError(self.name, "getPair returned no address")
        self._pair_cache[cache_key] = pair_address
        return pair_address

    async def _get_token0(self, pair_address: str) -> str:
        cached = self._token0_cache.get(pair_address)
        if cached:
            return cached
        token0 = self._decode_address(await self._eth_call(pair_address, self._TOKEN0_SIG))
        if token0 is None:
            raise ParseError(self.name, f"token0 unavailable for pool {pair_address}")
        self._token0_cache[pair_address] = token0
        return token0

    async def _get_reserves(self, pair_address: str) -> Tuple[int, int]:
        result = await self._eth_call(pair_address, self._GET_RESERVES_SIG)
        if not result or len(result) < 130:
            raise ParseError(self.name, f"short getReserves result for pool {pair_address}")
        try:
            reserve0 = int(result[2:66], 16)
            reserve1 = int(result[66:130], 16)
        except ValueError as exc:
            raise ParseError(self.name, f"undecodable reserves for pool {pair_address}") from exc
        return reserve0, reserve1

    async def _eth_call(self, to: str, data: str, block: str = "latest") -> Optional[str]:
        call_params = {"to": to, "data": data}
        return await self._rpc_call("eth_call", [call_params, block])

    async def _rpc_call(self, method: str, params: list) -> Optional[str]:
        request_id = self._next_request_id
        self._next_request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params,
            "id": request_id,
        }
        data: Any = await self._request_json("POST", self._rpc_url, payload=payload)
        if not isinstance(data, dict):
            raise ParseError(self.name, f"unexpected JSON-RPC payload for {method}")
        if 'error' in data:
            raise ParseError(self.name, f"{method} failed: {data['error']}")
        return data.get('result')

    @staticmethod
    def _normalise_address(address: str) -> str:
        if address.startswith('0x'):
            return '0x' + address[2:].lower()
        return '0x' + address.lower()

    @staticmethod
    def _encode_address(address: str) -> str:
        return address[2:].lower().rjust(64, '0')

    @staticmethod
    def _decode_address(value: Optional[str]) -> Optional[str]:
        if not value or len(value) < 66:
            return None
        return '0x' + value[-40:].lower()


class UniswapV2Source(ConstantProductSource):
    """Uniswap V2 on Ethereum mainnet."""
