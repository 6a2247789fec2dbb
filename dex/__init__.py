"""DEX quote sources and the factory that wires them from configuration."""
from __future__ import annotations

from itertools import combinations
from typing import Dict, List, Type

import aiohttp

import constants
from analysis.models import TokenInfo, TokenPair
from dex.balancer import BalancerSource
from dex.base import DexSource
from dex.curve import CurveSource
from dex.errors import InvalidPair, NetworkError, ParseError, QuoteError, RateLimited
from dex.pancakeswap import PancakeSwapSource
from dex.sushiswap import SushiSwapSource
from dex.uniswap_v2 import ConstantProductSource, UniswapV2Source

SOURCE_CLASSES: Dict[str, Type[DexSource]] = {
    'uniswap_v2': UniswapV2Source,
    'sushiswap': SushiSwapSource,
    'pancakeswap': PancakeSwapSource,
    'curve': CurveSource,
    'balancer': BalancerSource,
}


def chain_tokens(chain: str) -> Dict[str, TokenInfo]:
    """Returns the known tokens of a chain keyed by upper-case symbol."""
    return {
        symbol: TokenInfo(symbol=symbol, address=str(info['address']), decimals=int(info['decimals']))
        for symbol, info in constants.COMMON_TOKENS.get(chain, {}).items()
    }


def build_token_pairs(symbols: List[str], chain: str = 'ethereum') -> List[TokenPair]:
    """Every unordered combination of the given symbols, in input order, on one chain."""
    known = chain_tokens(chain)
    missing = [symbol for symbol in symbols if symbol.upper() not in known]
    if missing:
        raise ValueError(f"Unknown token(s) on {chain}: {', '.join(missing)}")
    tokens = [known[symbol.upper()] for symbol in dict.fromkeys(symbols)]
    return [TokenPair(base=a, quote=b) for a, b in combinations(tokens, 2)]


def build_sources(session: aiohttp.ClientSession, config) -> List[DexSource]:
    """Instantiates the configured venues. ``config`` is a :class:`config.AppConfig`."""
    rpc_urls = {'ethereum': config.ethereum_rpc_url, 'bsc': config.bsc_rpc_url}
    timeout = config.monitoring.request_timeout_seconds
    sources: List[DexSource] = []
    for dex_name in config.dexes:
        dex_info = constants.DEX_CONFIG[dex_name]
        chain = str(dex_info['chain'])
        source_cls = SOURCE_CLASSES[dex_name]
        kwargs = dict(
            name=str(dex_info['name']),
            chain=chain,
            fee_percentage=float(dex_info['feePct']),
            timeout=timeout,
            token_overrides=chain_tokens(chain) if chain != 'ethereum' else None,
        )
        if issubclass(source_cls, ConstantProductSource):
            source = source_cls(
                session,
                rpc_url=rpc_urls[chain],
                factory_address=str(dex_info['factoryAddress']),
                **kwargs,
            )
        elif source_cls is CurveSource:
            source = CurveSource(session, registry=str(dex_info.get('registry', 'main')), **kwargs)
        else:
            source = BalancerSource(session, subgraph_url=config.balancer_subgraph_url, **kwargs)
        sources.append(source)
    return sources


__all__ = [
    "BalancerSource",
    "ConstantProductSource",
    "CurveSource",
    "DexSource",
    "InvalidPair",
    "NetworkError",
    "PancakeSwapSource",
    "ParseError",
    "QuoteError",
    "RateLimited",
    "SOURCE_CLASSES",
    "SushiSwapSource",
    "UniswapV2Source",
    "build_sources",
    "build_token_pairs",
    "chain_tokens",
]
