#!/usr/bin/env python3
import logging
from typing import Dict, List, Mapping, Optional, Sequence

from analysis.confidence import calculate_confidence_score, price_stability
from analysis.models import ArbitrageOpportunity, Quote, TokenPair
from config import ArbitrageConfig

logger = logging.getLogger(__name__)


def estimate_slippage_pct(trade_size: float, liquidity: float) -> float:
    """Constant-product price impact of ``trade_size`` quote units, in percent."""
    if liquidity <= 0:
        return 100.0
    return trade_size / (liquidity + trade_size) * 100


def estimate_gas_cost(max_gas_price_gwei: float, gas_units_per_swap: int) -> float:
    """Worst-case gas for the buy and the sell swap, in native units."""
    return max_gas_price_gwei * 1e-9 * gas_units_per_swap * 2


class OpportunityDetector:
    def __init__(self, config: ArbitrageConfig):
        self.config = config

    def detect(
        self,
        quotes_by_pair: Mapping[TokenPair, Sequence[Quote]],
        market_context: Optional[Mapping[str, object]] = None,
    ) -> List[ArbitrageOpportunity]:
        """Compares every venue against every other for each pair and returns the profitable spreads."""
        return detect(quotes_by_pair, self.config, market_context)


def detect(
    quotes_by_pair: Mapping[TokenPair, Sequence[Quote]],
    config: ArbitrageConfig,
    market_context: Optional[Mapping[str, object]] = None,
) -> List[ArbitrageOpportunity]:
    """
    Finds cross-venue price discrepancies in one scan cycle's quotes.

    Args:
        quotes_by_pair: Successful quotes grouped by pair.
        config: Detection thresholds.
        market_context: Optional mapping of lower-cased base token address to a
            registry token; its ``market_cap_rank`` is attached to opportunities.

    Returns:
        Opportunities ordered by profit, then confidence, then venue names.
    """
    best: Dict[tuple, ArbitrageOpportunity] = {}
    gas_cost = estimate_gas_cost(config.max_gas_price_gwei, config.gas_units_per_swap)

    for pair, quotes in quotes_by_pair.items():
        if len(quotes) < 2:
            continue

        stability = price_stability([q.price for q in quotes], config.stability_reference_pct)
        rank = _market_cap_rank(market_context, pair)

        for i in range(len(quotes)):
            for j in range(i + 1, len(quotes)):
                quote_a = quotes[i]
                quote_b = quotes[j]

                if quote_a.source == quote_b.source:
                    continue
                if quote_a.price == quote_b.price:
                    continue

                buy_quote = quote_a if quote_a.price < quote_b.price else quote_b
                sell_quote = quote_b if buy_quote is quote_a else quote_a

                profit_percentage = (sell_quote.price - buy_quote.price) / buy_quote.price * 100
                if profit_percentage < config.min_profit_threshold:
                    continue

                liquidity = min(buy_quote.liquidity, sell_quote.liquidity)
                if liquidity < config.min_liquidity:
                    continue

                slippage_pct = estimate_slippage_pct(config.trade_size, liquidity)
                if slippage_pct > config.max_slippage:
                    logger.debug(
                        "%s %s->%s: slippage %.2f%% above %.2f%%",
                        pair.name, buy_quote.source, sell_quote.source, slippage_pct, config.max_slippage,
                    )
                    continue

                confidence = calculate_confidence_score(
                    profit_percentage,
                    liquidity,
                    stability,
                    profit_reference_pct=config.profit_reference_pct,
                    liquidity_reference=config.liquidity_reference,
                )

                opportunity = ArbitrageOpportunity(
                    pair=pair,
                    buy_venue=buy_quote.source,
                    sell_venue=sell_quote.source,
                    buy_price=buy_quote.price,
                    sell_price=sell_quote.price,
                    profit_percentage=profit_percentage,
                    liquidity=liquidity,
                    confidence_score=confidence,
                    gas_cost_estimate=gas_cost,
                    estimated_profit=profit_percentage * config.trade_size / 100,
                    slippage_pct=slippage_pct,
                    base_market_cap_rank=rank,
                    net_profit_percentage=profit_percentage - buy_quote.fee_percentage - sell_quote.fee_percentage,
                )

                current = best.get(opportunity.key)
                if current is None or opportunity.profit_percentage > current.profit_percentage:
                    best[opportunity.key] = opportunity

    return sorted(
        best.values(),
        key=lambda o: (-o.profit_percentage, -o.confidence_score, o.buy_venue, o.sell_venue),
    )


def _market_cap_rank(market_context: Optional[Mapping[str, object]], pair: TokenPair) -> Optional[int]:
    if not market_context:
        return None
    token = market_context.get(pair.base.address)
    if token is None:
        return None
    return getattr(token, 'market_cap_rank', None)
