#!/usr/bin/env python3
import os
import argparse
from typing import NamedTuple, Optional
import constants


class ConfigError(ValueError):
    """Raised when a configuration value is missing or out of range."""


class MonitoringConfig(NamedTuple):
    """Scan scheduling and fetch concurrency."""
    scan_interval_seconds: float = 10.0
    max_concurrent_requests: int = 10
    request_timeout_seconds: float = 30.0
    shutdown_grace_seconds: float = 5.0
    max_cycles: Optional[int] = None


class ArbitrageConfig(NamedTuple):
    """Thresholds for opportunity detection. Percent values are in percent (1.0 == 1%)."""
    min_profit_threshold: float = 1.0
    max_slippage: float = 1.0
    min_liquidity: float = 1000.0
    max_gas_price_gwei: float = 100.0
    trade_size: float = 500.0
    gas_units_per_swap: int = constants.GAS_UNITS_PER_SWAP['ethereum']
    profit_reference_pct: float = constants.PROFIT_REFERENCE_PCT
    liquidity_reference: float = constants.LIQUIDITY_REFERENCE
    stability_reference_pct: float = constants.STABILITY_REFERENCE_PCT


class TokenCacheConfig(NamedTuple):
    """Token registry cache settings."""
    cache_path: str = constants.TOKEN_CACHE_DEFAULT_PATH
    ttl_seconds: float = constants.TOKEN_CACHE_DEFAULT_TTL
    batch_size: int = constants.TOKEN_CACHE_BATCH_SIZE
    batch_delay_seconds: float = constants.TOKEN_CACHE_BATCH_DELAY
    max_tokens: int = constants.TOKEN_CACHE_DEFAULT_MAX_TOKENS
    api_key: str | None = None


class AppConfig(NamedTuple):
    """Typed configuration object."""
    monitoring: MonitoringConfig
    arbitrage: ArbitrageConfig
    token_cache: TokenCacheConfig
    dexes: list[str]
    tokens: list[str]
    ethereum_rpc_url: str
    bsc_rpc_url: str
    balancer_subgraph_url: str
    history_db_path: str | None
    log_level: str
    show_history: bool = False
    history_limit: int = 20


def validate_config(config: AppConfig) -> AppConfig:
    """Checks value ranges that argparse cannot express."""
    monitoring = config.monitoring
    if monitoring.scan_interval_seconds < 0:
        raise ConfigError('--interval must not be negative.')
    if monitoring.max_concurrent_requests < 1:
        raise ConfigError('--max-concurrent-requests must be at least 1.')
    if monitoring.request_timeout_seconds <= 0:
        raise ConfigError('--request-timeout must be positive.')
    if config.arbitrage.trade_size <= 0:
        raise ConfigError('--trade-size must be positive.')
    if config.arbitrage.min_liquidity < 0:
        raise ConfigError('--min-liquidity must not be negative.')
    if config.token_cache.batch_size < 1:
        raise ConfigError('--cache-batch-size must be at least 1.')
    if config.token_cache.batch_delay_seconds < constants.TOKEN_CACHE_BATCH_DELAY:
        raise ConfigError(
            f'--cache-batch-delay must be at least {constants.TOKEN_CACHE_BATCH_DELAY} second(s).'
        )
    unknown = [dex for dex in config.dexes if dex not in constants.DEX_CONFIG]
    if unknown:
        raise ConfigError(f"Unknown DEX source(s): {', '.join(unknown)}")
    if len(config.dexes) < 2:
        raise ConfigError('At least two DEX sources are required to compare prices.')
    if len(config.tokens) < 2:
        raise ConfigError('At least two tokens are required to form a pair.')
    unknown_tokens = [t for t in config.tokens if t not in constants.COMMON_TOKENS['ethereum']]
    if unknown_tokens:
        raise ConfigError(f"Unknown token(s): {', '.join(unknown_tokens)}")
    if config.history_limit < 1:
        raise ConfigError('--history-limit must be at least 1.')
    return config


def load_config(argv: list[str] | None = None) -> AppConfig:
    """
    Parses command-line arguments and loads environment variables to create a configuration object.
    """
    parser = argparse.ArgumentParser(
        description="Monitor token pairs across DEX venues for cross-venue arbitrage opportunities.",
        epilog="Example: ./main.py --dex uniswap_v2 sushiswap curve --token WETH USDC DAI --min-profit 0.5"
    )
    # --- Sources ---
    parser.add_argument('--dex', nargs='+', default=list(constants.DEX_CONFIG.keys()), help='DEX sources to query (default: all).')
    parser.add_argument('--token', nargs='+', default=['WETH', 'USDT', 'USDC', 'DAI'], help='Token symbols to pair up (default: WETH USDT USDC DAI).')

    # --- Monitoring ---
    parser.add_argument('--interval', type=float, default=10.0, help='Seconds between scan cycle starts (default: 10).')
    parser.add_argument('--max-concurrent-requests', type=int, default=10, help='Maximum in-flight quote requests (default: 10).')
    parser.add_argument('--request-timeout', type=float, default=30.0, help='Per-request timeout in seconds (default: 30).')
    parser.add_argument('--shutdown-grace', type=float, default=5.0, help='Seconds pending fetches get to finish on shutdown (default: 5).')
    parser.add_argument('--max-cycles', type=int, default=None, help='Stop after this many scan cycles (default: run forever).')

    # --- Arbitrage thresholds ---
    parser.add_argument('--min-profit', type=float, default=1.0, help='Minimum price discrepancy percentage (default: 1.0).')
    parser.add_argument('--max-slippage', type=float, default=1.0, help='Maximum estimated slippage percentage (default: 1.0).')
    parser.add_argument('--min-liquidity', type=float, default=1000.0, help='Minimum liquidity in quote units on both venues (default: 1000).')
    parser.add_argument('--max-gas-price', type=float, default=100.0, help='Gas price in Gwei used for cost estimates (default: 100).')
    parser.add_argument('--trade-size', type=float, default=500.0, help='Assumed trade size in quote units (default: 500).')

    # --- Token cache ---
    parser.add_argument('--cache-file', type=str, default=constants.TOKEN_CACHE_DEFAULT_PATH, help='Token cache file path.')
    parser.add_argument('--cache-ttl', type=float, default=constants.TOKEN_CACHE_DEFAULT_TTL, help='Token cache TTL in seconds (default: 3600).')
    parser.add_argument('--cache-batch-size', type=int, default=constants.TOKEN_CACHE_BATCH_SIZE, help='Registry records per page (default: 100).')
    parser.add_argument('--cache-batch-delay', type=float, default=constants.TOKEN_CACHE_BATCH_DELAY, help='Minimum seconds between registry pages (default: 1).')
    parser.add_argument('--cache-max-tokens', type=int, default=constants.TOKEN_CACHE_DEFAULT_MAX_TOKENS, help='Maximum tokens fetched per refresh (default: 500).')

    # --- Output ---
    parser.add_argument('--history-db', type=str, default=None, help='Optional SQLite file recording scan cycles and opportunities.')
    parser.add_argument('--log-level', default='INFO', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], help='Log level (default: INFO).')
    parser.add_argument('--show-history', action='store_true', help='Print recently recorded opportunities from the history database and exit.')
    parser.add_argument('--history-limit', type=int, default=20, help='Number of records shown by --show-history (default: 20).')

    args = parser.parse_args(argv)

    # Load from environment
    coingecko_api_key = os.environ.get(constants.COINGECKO_API_KEY_ENV_VAR)
    ethereum_rpc_url = os.environ.get(constants.ETHEREUM_RPC_URL_ENV_VAR) or constants.DEFAULT_ETHEREUM_RPC_URL
    bsc_rpc_url = os.environ.get(constants.BSC_RPC_URL_ENV_VAR) or constants.DEFAULT_BSC_RPC_URL
    balancer_subgraph_url = os.environ.get(constants.BALANCER_SUBGRAPH_URL_ENV_VAR) or constants.BALANCER_SUBGRAPH_URL

    config = AppConfig(
        monitoring=MonitoringConfig(
            scan_interval_seconds=args.interval,
            max_concurrent_requests=args.max_concurrent_requests,
            request_timeout_seconds=args.request_timeout,
            shutdown_grace_seconds=args.shutdown_grace,
            max_cycles=args.max_cycles,
        ),
        arbitrage=ArbitrageConfig(
            min_profit_threshold=args.min_profit,
            max_slippage=args.max_slippage,
            min_liquidity=args.min_liquidity,
            max_gas_price_gwei=args.max_gas_price,
            trade_size=args.trade_size,
        ),
        token_cache=TokenCacheConfig(
            cache_path=args.cache_file,
            ttl_seconds=args.cache_ttl,
            batch_size=args.cache_batch_size,
            batch_delay_seconds=args.cache_batch_delay,
            max_tokens=args.cache_max_tokens,
            api_key=coingecko_api_key,
        ),
        dexes=args.dex,
        tokens=[symbol.upper() for symbol in args.token],
        ethereum_rpc_url=ethereum_rpc_url,
        bsc_rpc_url=bsc_rpc_url,
        balancer_subgraph_url=balancer_subgraph_url,
        history_db_path=args.history_db,
        log_level=args.log_level,
        show_history=args.show_history,
        history_limit=args.history_limit,
    )
    return validate_config(config)
