import random

import pytest

from analysis.detector import OpportunityDetector, detect, estimate_gas_cost, estimate_slippage_pct
from analysis.models import Quote, TokenInfo, TokenPair
from config import ArbitrageConfig
from services.token_cache import Token

WETH = TokenInfo('WETH', '0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2', 18)
USDC = TokenInfo('USDC', '0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48', 6)
DAI = TokenInfo('DAI', '0x6b175474e89094c44da98b954eedeac495271d0f', 18)
PAIR = TokenPair(WETH, USDC)


def _quote(source, price, liquidity=100_000.0, pair=PAIR):
    return Quote(source=source, pair=pair, price=price, liquidity=liquidity)


def test_five_percent_spread_yields_one_opportunity():
    quotes = {PAIR: [_quote('uniswap_v2', 100.0), _quote('sushiswap', 105.0)]}

    opportunities = detect(quotes, ArbitrageConfig(min_profit_threshold=1.0))

    assert len(opportunities) == 1
    opp = opportunities[0]
    assert opp.buy_venue == 'uniswap_v2'
    assert opp.sell_venue == 'sushiswap'
    assert opp.profit_percentage == pytest.approx(5.0, abs=1e-9)
    assert opp.liquidity == 100_000.0
    assert opp.estimated_profit == pytest.approx(25.0)
    assert opp.slippage_pct == pytest.approx(500 / 100_500 * 100)
    # 40 for saturated profit, 30 for saturated liquidity, 15 for neutral stability.
    assert opp.confidence_score == pytest.approx(85.0)


def test_half_percent_spread_is_below_threshold():
    quotes = {PAIR: [_quote('uniswap_v2', 100.0), _quote('sushiswap', 100.5)]}

    assert detect(quotes, ArbitrageConfig(min_profit_threshold=1.0)) == []


def test_single_quote_and_equal_prices_produce_nothing():
    config = ArbitrageConfig(min_profit_threshold=0.0)

    assert detect({PAIR: [_quote('uniswap_v2', 100.0)]}, config) == []
    assert detect({PAIR: [_quote('uniswap_v2', 100.0), _quote('curve', 100.0)]}, config) == []


def test_same_venue_twice_is_never_compared():
    quotes = {PAIR: [_quote('curve', 100.0), _quote('curve', 110.0)]}

    assert detect(quotes, ArbitrageConfig()) == []


def test_shallow_venue_is_filtered_by_min_liquidity():
    quotes = {PAIR: [_quote('uniswap_v2', 100.0, liquidity=500.0), _quote('sushiswap', 105.0)]}

    assert detect(quotes, ArbitrageConfig(min_liquidity=1_000.0)) == []


def test_excessive_slippage_is_filtered():
    # 500 against 10k of depth moves the price about 4.76%.
    quotes = {PAIR: [_quote('uniswap_v2', 100.0, liquidity=10_000.0), _quote('sushiswap', 105.0)]}

    assert detect(quotes, ArbitrageConfig(max_slippage=1.0)) == []
    assert len(detect(quotes, ArbitrageConfig(max_slippage=5.0))) == 1


def test_ordering_is_profit_then_confidence_then_venue_names():
    pair_b = TokenPair(WETH, DAI)
    quotes = {
        PAIR: [_quote('uniswap_v2', 100.0), _quote('sushiswap', 103.0), _quote('curve', 106.0)],
        pair_b: [_quote('balancer', 100.0, pair=pair_b), _quote('curve', 103.0, pair=pair_b)],
    }

    opportunities = detect(quotes, ArbitrageConfig(min_profit_threshold=1.0))

    profits = [o.profit_percentage for o in opportunities]
    assert profits == sorted(profits, reverse=True)
    assert (opportunities[0].buy_venue, opportunities[0].sell_venue) == ('uniswap_v2', 'curve')
    ties = [o for o in opportunities if o.profit_percentage == pytest.approx(3.0)]
    assert len(ties) == 2
    assert ties[0].confidence_score >= ties[1].confidence_score


def test_equal_profit_and_confidence_fall_back_to_venue_names():
    pair_b = TokenPair(WETH, DAI)
    quotes = {
        PAIR: [_quote('sushiswap', 100.0), _quote('uniswap_v2', 102.0)],
        pair_b: [_quote('balancer', 100.0, pair=pair_b), _quote('curve', 102.0, pair=pair_b)],
    }

    opportunities = detect(quotes, ArbitrageConfig())

    assert [o.buy_venue for o in opportunities] == ['balancer', 'sushiswap']


def test_duplicate_quotes_keep_the_most_profitable_opportunity():
    quotes = {PAIR: [
        _quote('uniswap_v2', 100.0),
        _quote('uniswap_v2', 99.0),
        _quote('sushiswap', 104.0),
    ]}

    opportunities = detect(quotes, ArbitrageConfig())

    keys = [o.key for o in opportunities]
    assert len(keys) == len(set(keys))
    assert opportunities[0].buy_price == 99.0


def test_market_context_fills_base_rank():
    weth = Token(id='weth', symbol='weth', name='WETH', platforms={'ethereum': WETH.address}, market_cap_rank=17)
    quotes = {PAIR: [_quote('uniswap_v2', 100.0), _quote('sushiswap', 105.0)]}

    opportunities = OpportunityDetector(ArbitrageConfig()).detect(quotes, {WETH.address: weth})

    assert opportunities[0].base_market_cap_rank == 17


def test_invariants_hold_for_random_quotes():
    rng = random.Random(7)
    config = ArbitrageConfig(min_profit_threshold=0.5, min_liquidity=2_000.0, max_slippage=50.0)
    venues = ['uniswap_v2', 'sushiswap', 'pancakeswap', 'curve', 'balancer']

    for _ in range(200):
        quotes = {PAIR: [
            _quote(venue, rng.uniform(90.0, 110.0), liquidity=rng.uniform(0.0, 500_000.0))
            for venue in rng.sample(venues, rng.randint(2, 5))
        ]}
        for opp in detect(quotes, config):
            assert opp.buy_venue != opp.sell_venue
            assert opp.sell_price > opp.buy_price
            expected = (opp.sell_price - opp.buy_price) / opp.buy_price * 100
            assert abs(opp.profit_percentage - expected) <= 1e-9
            assert opp.profit_percentage >= config.min_profit_threshold
            assert opp.liquidity >= config.min_liquidity
            assert opp.slippage_pct <= config.max_slippage
            assert 0.0 <= opp.confidence_score <= 100.0


def test_cost_estimates():
    assert estimate_gas_cost(100.0, 150_000) == pytest.approx(0.03)
    assert estimate_slippage_pct(500.0, 0.0) == 100.0
    assert estimate_slippage_pct(1_000.0, 99_000.0) == pytest.approx(1.0)


def test_net_profit_deducts_both_venue_fees_without_filtering():
    quotes = {PAIR: [
        Quote(source='curve', pair=PAIR, price=100.0, liquidity=100_000.0, fee_percentage=0.04),
        Quote(source='sushiswap', pair=PAIR, price=101.2, liquidity=100_000.0, fee_percentage=0.3),
    ]}

    [opp] = detect(quotes, ArbitrageConfig(min_profit_threshold=1.0))

    assert opp.net_profit_percentage == pytest.approx(1.2 - 0.04 - 0.3)
    assert opp.profit_percentage == pytest.approx(1.2)
