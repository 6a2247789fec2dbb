import pytest

from config import AppConfig, ArbitrageConfig, MonitoringConfig, TokenCacheConfig
from dex import (
    BalancerSource,
    CurveSource,
    PancakeSwapSource,
    SushiSwapSource,
    UniswapV2Source,
    build_sources,
    build_token_pairs,
)


def _config(dexes):
    return AppConfig(
        monitoring=MonitoringConfig(request_timeout_seconds=7.5),
        arbitrage=ArbitrageConfig(),
        token_cache=TokenCacheConfig(),
        dexes=dexes,
        tokens=['WETH', 'USDC'],
        ethereum_rpc_url='http://eth-rpc',
        bsc_rpc_url='http://bsc-rpc',
        balancer_subgraph_url='http://subgraph',
        history_db_path=None,
        log_level='INFO',
    )


def test_build_sources_instantiates_each_configured_venue():
    sources = build_sources(object(), _config(['uniswap_v2', 'sushiswap', 'pancakeswap', 'curve', 'balancer']))

    assert [type(s) for s in sources] == [
        UniswapV2Source, SushiSwapSource, PancakeSwapSource, CurveSource, BalancerSource,
    ]
    assert [s.name for s in sources] == ['uniswap_v2', 'sushiswap', 'pancakeswap', 'curve', 'balancer']
    assert sources[2].chain == 'bsc'
    assert sources[2]._rpc_url == 'http://bsc-rpc'
    assert sources[0]._rpc_url == 'http://eth-rpc'
    assert all(s._timeout == 7.5 for s in sources)


def test_build_token_pairs_forms_every_combination_once():
    pairs = build_token_pairs(['WETH', 'USDC', 'DAI'])

    assert [p.name for p in pairs] == ['WETH/USDC', 'WETH/DAI', 'USDC/DAI']


def test_build_token_pairs_rejects_unknown_symbols():
    with pytest.raises(ValueError, match='NOPE'):
        build_token_pairs(['WETH', 'NOPE'])
