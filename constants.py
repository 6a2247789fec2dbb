#!/usr/bin/env python3
from typing import Dict, Union

# --- ANSI Color Codes ---
C_GREEN = '\033[92m'
C_RED = '\033[91m'
C_YELLOW = '\033[93m'
C_BLUE = '\033[94m'
C_RESET = '\033[0m'

# --- API Configuration ---
COINGECKO_API_BASE_URL = 'https://api.coingecko.com/api/v3'
CURVE_API_BASE_URL = 'https://api.curve.fi/api'
BALANCER_SUBGRAPH_URL = 'https://api.thegraph.com/subgraphs/name/balancer-labs/balancer-v2'
USER_AGENT = 'DexArbMonitor/1.0'

# --- Environment Variable Names ---
COINGECKO_API_KEY_ENV_VAR = 'COINGECKO_API_KEY'
ETHEREUM_RPC_URL_ENV_VAR = 'ETHEREUM_RPC_URL'
BSC_RPC_URL_ENV_VAR = 'BSC_RPC_URL'
BALANCER_SUBGRAPH_URL_ENV_VAR = 'BALANCER_SUBGRAPH_URL'

DEFAULT_ETHEREUM_RPC_URL = 'https://eth.llamarpc.com'
DEFAULT_BSC_RPC_URL = 'https://bsc-dataseed1.binance.org'

# --- DEX Configuration ---
DEX_CONFIG: Dict[str, Dict[str, Union[str, int, float]]] = {
    'uniswap_v2': {
        'name': 'uniswap_v2',
        'chain': 'ethereum',
        'factoryAddress': '0x5c69bee701ef814a2b6a3edd4b1652cb9cc5aa6f',
        'feePct': 0.3,
    },
    'sushiswap': {
        'name': 'sushiswap',
        'chain': 'ethereum',
        'factoryAddress': '0xc0aee478e3658e2610c5f7a4a2e1777ce9e4f2ac',
        'feePct': 0.3,
    },
    'pancakeswap': {
        'name': 'pancakeswap',
        'chain': 'bsc',
        'factoryAddress': '0xca143ce32fe78f1f7019d7d551a6402fc5350c73',
        'feePct': 0.25,
    },
    'curve': {
        'name': 'curve',
        'chain': 'ethereum',
        'registry': 'main',
        'feePct': 0.04,
    },
    'balancer': {
        'name': 'balancer',
        'chain': 'ethereum',
        'feePct': 0.3,
    },
}

# --- Gas Configuration ---
GAS_UNITS_PER_SWAP: Dict[str, int] = {
    'ethereum': 150000,
    'bsc': 120000,
}

# --- Monitored Tokens (lowercase addresses, decimals) ---
COMMON_TOKENS: Dict[str, Dict[str, Dict[str, Union[str, int]]]] = {
    'ethereum': {
        'WETH': {'address': '0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2', 'decimals': 18},
        'USDT': {'address': '0xdac17f958d2ee523a2206206994597c13d831ec7', 'decimals': 6},
        'USDC': {'address': '0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48', 'decimals': 6},
        'DAI': {'address': '0x6b175474e89094c44da98b954eedeac495271d0f', 'decimals': 18},
        'WBTC': {'address': '0x2260fac5e5542a773aa44fbcfedf7c193bc2c599', 'decimals': 8},
    },
    'bsc': {
        'WBNB': {'address': '0xbb4cdb9cbd36b01bd1cbaebf2de08d9173bc095c', 'decimals': 18},
        'USDT': {'address': '0x55d398326f99059ff775485246999027b3197955', 'decimals': 18},
        'USDC': {'address': '0x8ac76a51cc950d9822d68b83fe1ad97b32cd580d', 'decimals': 18},
    },
}

# --- Confidence Scoring References ---
PROFIT_REFERENCE_PCT = 4.0
LIQUIDITY_REFERENCE = 100000.0
STABILITY_REFERENCE_PCT = 5.0
NEUTRAL_STABILITY = 0.5

# --- Token Cache Defaults ---
TOKEN_CACHE_DEFAULT_PATH = 'data/tokens.json'
TOKEN_CACHE_DEFAULT_TTL = 3600
TOKEN_CACHE_BATCH_SIZE = 100
TOKEN_CACHE_BATCH_DELAY = 1.0
TOKEN_CACHE_ANONYMOUS_BATCH_DELAY = 2.0
TOKEN_CACHE_DEFAULT_MAX_TOKENS = 500
