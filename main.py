#!/usr/bin/env python3
import asyncio
import logging
import signal
import sys
from datetime import datetime
from typing import List, Optional

import aiohttp

import constants
from aggregator import QuoteAggregator
from analysis.detector import OpportunityDetector
from analysis.models import ArbitrageOpportunity
from config import AppConfig, ConfigError, load_config
from dex import build_sources, build_token_pairs
from monitor import MonitorLoop
from services.coingecko_client import CoinGeckoClient
from services.token_cache import DataUnavailable, TokenCache
from storage import SQLiteRepository
from storage.models import OpportunityRecord

logger = logging.getLogger(__name__)

DEFAULT_HISTORY_DB = 'data/scan_history.db'

LEVEL_COLOURS = {
    logging.DEBUG: constants.C_BLUE,
    logging.INFO: constants.C_GREEN,
    logging.WARNING: constants.C_YELLOW,
    logging.ERROR: constants.C_RED,
    logging.CRITICAL: constants.C_RED,
}


class ColourFormatter(logging.Formatter):
    """Colours the level name with the console palette."""

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        colour = LEVEL_COLOURS.get(record.levelno)
        if not colour:
            return message
        return message.replace(record.levelname, f"{colour}{record.levelname}{constants.C_RESET}", 1)


def configure_logging(level: str) -> None:
    handler = logging.StreamHandler()
    handler.setFormatter(ColourFormatter("%(asctime)s %(levelname)s %(name)s: %(message)s", "%H:%M:%S"))
    logging.basicConfig(level=level, handlers=[handler])


def print_opportunities(opportunities: List[ArbitrageOpportunity]) -> None:
    """Console sink: one line per opportunity, best first."""
    if not opportunities:
        return
    print(f"{constants.C_BLUE}{'=' * 50}{constants.C_RESET}")
    for opp in opportunities:
        rank = f" rank #{opp.base_market_cap_rank}" if opp.base_market_cap_rank else ""
        net = f" net {opp.net_profit_percentage:.2f}%" if opp.net_profit_percentage is not None else ""
        print(
            f"{constants.C_GREEN}{opp.pair_name}{constants.C_RESET}{rank}: "
            f"buy {constants.C_YELLOW}{opp.buy_venue}{constants.C_RESET} @ {opp.buy_price:.6g} -> "
            f"sell {constants.C_YELLOW}{opp.sell_venue}{constants.C_RESET} @ {opp.sell_price:.6g} | "
            f"profit {opp.profit_percentage:.2f}%{net} (~{opp.estimated_profit:.2f}) | "
            f"liq {opp.liquidity:,.0f} | slip {opp.slippage_pct:.2f}% | "
            f"gas {opp.gas_cost_estimate:.5f} | conf {opp.confidence_score:.0f}"
        )


async def run_monitor(config: AppConfig) -> None:
    """Wires sources, cache and sinks together and runs the monitor until interrupted."""
    repository: Optional[SQLiteRepository] = None
    if config.history_db_path:
        repository = SQLiteRepository(config.history_db_path)

    async with aiohttp.ClientSession(headers={'User-Agent': constants.USER_AGENT}) as session:
        sources = build_sources(session, config)
        pairs = build_token_pairs(config.tokens)
        aggregator = QuoteAggregator(
            sources,
            max_concurrent_requests=config.monitoring.max_concurrent_requests,
            request_timeout=config.monitoring.request_timeout_seconds,
        )
        coingecko_client = CoinGeckoClient(
            session,
            config.token_cache.api_key,
            min_request_interval=config.token_cache.batch_delay_seconds,
        )
        token_cache = TokenCache(coingecko_client, config.token_cache)
        monitor = MonitorLoop(
            aggregator,
            OpportunityDetector(config.arbitrage),
            pairs,
            config.monitoring,
            sinks=[print_opportunities],
            token_cache=token_cache,
            repository=repository,
        )

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, monitor.stop)
            except NotImplementedError:
                pass

        warmup = asyncio.create_task(_warm_token_cache(token_cache))
        try:
            await monitor.run()
        finally:
            warmup.cancel()
            await asyncio.gather(warmup, return_exceptions=True)
            if repository:
                await repository.close()


async def _warm_token_cache(token_cache: TokenCache) -> None:
    try:
        token_list = await token_cache.get_tokens()
        logger.info("Token cache ready with %d tokens", token_list.total_count)
    except DataUnavailable as exc:
        logger.warning("Running without market context: %s", exc)


async def show_history(db_path: str, limit: int) -> List[OpportunityRecord]:
    repository = SQLiteRepository(db_path)
    try:
        return await repository.fetch_recent_opportunities(limit)
    finally:
        await repository.close()


def _print_history(records: List[OpportunityRecord], limit: int) -> None:
    heading = f"Showing up to {limit} recorded opportunities"
    print(heading)
    print("=" * len(heading))

    if not records:
        print("No opportunities recorded.")
        return

    headers = ["Time (UTC)", "Pair", "Buy", "Sell", "Profit %", "Liquidity", "Slip %", "Conf", "Rank"]

    def _format_row(record: OpportunityRecord) -> list[str]:
        detected_at: datetime = record.detected_at
        return [
            detected_at.strftime("%Y-%m-%d %H:%M:%S") if detected_at else "N/A",
            record.pair,
            record.buy_venue,
            record.sell_venue,
            f"{record.profit_percentage:.2f}",
            f"{record.liquidity:,.0f}",
            f"{record.slippage_pct:.2f}",
            f"{record.confidence_score:.1f}",
            str(record.base_market_cap_rank) if record.base_market_cap_rank is not None else "-",
        ]

    rows = [_format_row(rec) for rec in records]
    widths = [len(h) for h in headers]
    for row in rows:
        for idx, cell in enumerate(row):
            widths[idx] = max(widths[idx], len(cell))

    def _format_line(row: list[str]) -> str:
        return "  ".join(cell.ljust(widths[idx]) for idx, cell in enumerate(row))

    print(_format_line(headers))
    print("  ".join('-' * w for w in widths))
    for row in rows:
        print(_format_line(row))


def main() -> None:
    """The main synchronous entry point for the application."""
    try:
        config = load_config()
    except ConfigError as exc:
        print(f"{constants.C_RED}Configuration error: {exc}{constants.C_RESET}", file=sys.stderr)
        sys.exit(2)

    configure_logging(config.log_level)

    if config.show_history:
        records = asyncio.run(show_history(config.history_db_path or DEFAULT_HISTORY_DB, config.history_limit))
        _print_history(records, config.history_limit)
        return

    try:
        asyncio.run(run_monitor(config))
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
