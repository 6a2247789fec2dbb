# confidence.py
import math
import statistics
from typing import Sequence

from constants import (
    LIQUIDITY_REFERENCE,
    NEUTRAL_STABILITY,
    PROFIT_REFERENCE_PCT,
    STABILITY_REFERENCE_PCT,
)

PROFIT_WEIGHT = 40.0
LIQUIDITY_WEIGHT = 30.0
STABILITY_WEIGHT = 30.0


def _saturate(value: float, reference: float) -> float:
    """Linear ramp from 0 to 1 that saturates at ``reference``."""
    if reference <= 0 or not math.isfinite(value):
        return 1.0 if value == math.inf else 0.0
    return max(0.0, min(value / reference, 1.0))


def price_stability(prices: Sequence[float], reference_pct: float = STABILITY_REFERENCE_PCT) -> float:
    """Agreement among venue prices for one pair, in [0, 1].

    Uses the coefficient of variation of all quotes; it needs more than two
    quotes to say anything, otherwise the neutral midpoint is returned.
    """
    if len(prices) <= 2:
        return NEUTRAL_STABILITY
    mean = statistics.fmean(prices)
    if mean <= 0:
        return NEUTRAL_STABILITY
    dispersion_pct = statistics.pstdev(prices) / mean * 100
    return 1.0 - _saturate(dispersion_pct, reference_pct)


def calculate_confidence_score(
    profit_percentage: float,
    liquidity: float,
    stability: float,
    profit_reference_pct: float = PROFIT_REFERENCE_PCT,
    liquidity_reference: float = LIQUIDITY_REFERENCE,
) -> float:
    """
    Scores an opportunity on a 0-100 scale.

    Args:
        profit_percentage (float): Gross spread between the venues, in percent.
        liquidity (float): The shallower venue's depth, in quote units.
        stability (float): Price agreement in [0, 1] from :func:`price_stability`.

    Returns:
        40 points for profit, 30 for liquidity and 30 for stability, each
        component normalised into [0, 1] and saturating at its reference.
    """
    profit_component = _saturate(profit_percentage, profit_reference_pct)
    liquidity_component = _saturate(liquidity, liquidity_reference)
    stability_component = max(0.0, min(stability, 1.0)) if math.isfinite(stability) else NEUTRAL_STABILITY

    score = (
        PROFIT_WEIGHT * profit_component
        + LIQUIDITY_WEIGHT * liquidity_component
        + STABILITY_WEIGHT * stability_component
    )
    return max(0.0, min(score, 100.0))
