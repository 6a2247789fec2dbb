from datetime import datetime, timedelta, timezone

import pytest

from analysis.models import ArbitrageOpportunity, TokenInfo, TokenPair
from storage import SQLiteRepository

WETH = TokenInfo('WETH', '0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2', 18)
USDC = TokenInfo('USDC', '0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48', 6)
DAI = TokenInfo('DAI', '0x6b175474e89094c44da98b954eedeac495271d0f', 18)


def _opportunity(pair, buy, sell, profit, detected_at, rank=None):
    return ArbitrageOpportunity(
        pair=pair,
        buy_venue=buy,
        sell_venue=sell,
        buy_price=100.0,
        sell_price=100.0 + profit,
        profit_percentage=profit,
        liquidity=250_000.0,
        confidence_score=72.5,
        gas_cost_estimate=0.03,
        estimated_profit=profit * 5,
        slippage_pct=0.2,
        detected_at=detected_at,
        base_market_cap_rank=rank,
    )


@pytest.mark.asyncio
async def test_persist_scan_cycle_and_opportunities(tmp_path):
    db_path = tmp_path / "test.db"
    repository = SQLiteRepository(db_path=db_path)

    scan_id = await repository.record_scan_cycle_start(["WETH/USDC", "WETH/DAI"])
    assert isinstance(scan_id, int)

    detected_at = datetime.now(timezone.utc)
    ids = await repository.record_opportunities(
        scan_id,
        [_opportunity(TokenPair(WETH, USDC), 'uniswap_v2', 'sushiswap', 5.0, detected_at, rank=2)],
    )
    await repository.record_scan_cycle_finish(scan_id, 1)

    records = await repository.fetch_recent_opportunities()
    assert len(records) == 1
    record = records[0]
    assert record.id == ids[0]
    assert record.scan_cycle_id == scan_id
    assert record.pair == "WETH/USDC"
    assert (record.buy_venue, record.sell_venue) == ('uniswap_v2', 'sushiswap')
    assert record.profit_percentage == 5.0
    assert record.base_market_cap_rank == 2
    assert abs((record.detected_at - detected_at).total_seconds()) < 0.001

    cycle = await repository.fetch_scan_cycle(scan_id)
    assert cycle is not None
    assert cycle.pairs == ["WETH/DAI", "WETH/USDC"]
    assert cycle.opportunities_found == 1
    assert cycle.finished_at is not None

    await repository.close()


@pytest.mark.asyncio
async def test_fetch_recent_opportunities_orders_and_filters(tmp_path):
    repository = SQLiteRepository(db_path=tmp_path / "history.db")
    scan_id = await repository.record_scan_cycle_start(["WETH/USDC", "WETH/DAI"])
    base_time = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

    await repository.record_opportunities(scan_id, [
        _opportunity(TokenPair(WETH, USDC), 'curve', 'balancer', 1.5, base_time),
        _opportunity(TokenPair(WETH, DAI), 'uniswap_v2', 'curve', 2.5, base_time + timedelta(minutes=1)),
        _opportunity(TokenPair(WETH, USDC), 'sushiswap', 'uniswap_v2', 3.5, base_time + timedelta(minutes=2)),
    ])

    latest = await repository.fetch_recent_opportunities(limit=2)
    assert [r.profit_percentage for r in latest] == [3.5, 2.5]

    weth_usdc = await repository.fetch_recent_opportunities(pair="weth/usdc")
    assert [r.buy_venue for r in weth_usdc] == ['sushiswap', 'curve']

    await repository.close()


@pytest.mark.asyncio
async def test_unknown_scan_cycle_returns_none(tmp_path):
    repository = SQLiteRepository(db_path=tmp_path / "empty.db")

    assert await repository.fetch_scan_cycle(42) is None
    assert await repository.fetch_recent_opportunities() == []

    await repository.close()
