"""
Deal rating against the estimated market value.

Optional by nature: returns None rather than raising when there is no
asking price or no usable value range.
"""

import math
from typing import Optional

from src.models.schemas import DealAssessment, DealRating
from src.utils.logger import get_logger

logger = get_logger(__name__)


# Upper bound (inclusive, percent of market midpoint) for each rating
DEAL_THRESHOLDS: tuple[tuple[float, DealRating], ...] = (
    (50.0, DealRating.EXCEPTIONAL),
    (80.0, DealRating.GOOD),
    (120.0, DealRating.FAIR),
)

# (upper bound in whole currency units, rounding step)
PRICE_ROUNDING_STEPS: tuple[tuple[int, int], ...] = (
    (100, 10),
    (1_000, 50),
    (10_000, 100),
    (100_000, 500),
)
DEFAULT_ROUNDING_STEP = 1_000


def humanize_price(cents: int) -> int:
    """
    Round a price to avoid false precision.
    
    Works in whole currency units (1,234.56 becomes 1,200.00) and returns
    minor units. Halves round up, and a positive price never rounds below
    one step.
    """
    if cents <= 0:
        return 0
    units = cents / 100
    step = next(
        (step for bound, step in PRICE_ROUNDING_STEPS if units < bound),
        DEFAULT_ROUNDING_STEP,
    )
    return max(int(math.floor(units / step + 0.5)), 1) * step * 100


def _format_money(cents: int) -> str:
    sign = "-" if cents < 0 else ""
    return f"{sign}${abs(cents) / 100:,.2f}"


class DealCalculator:
    """Rates an asking price against an estimated value range."""
    
    def rate(
        self,
        asking_price: Optional[int],
        value_min: int,
        value_max: int,
    ) -> Optional[DealAssessment]:
        """
        Rate ``asking_price`` against the midpoint of [value_min, value_max].
        
        Args:
            asking_price: Seller's price in minor units, or None
            value_min: Low end of the estimate in minor units
            value_max: High end of the estimate in minor units
        
        Returns:
            DealAssessment, or None when there is no asking price or the
            midpoint is not positive
        """
        if asking_price is None:
            return None
        
        midpoint = (value_min + value_max) / 2
        if midpoint <= 0:
            logger.debug("Deal skipped: no usable value range", value_min=value_min, value_max=value_max)
            return None
        
        percent = asking_price / midpoint * 100
        rating = self.rating_for(percent)
        
        return DealAssessment(
            rating=rating,
            explanation=self.explain(rating, percent, asking_price, midpoint),
            asking_price=asking_price,
            market_midpoint=midpoint,
            percent_of_market=round(percent, 2),
            profit_potential_low=value_min - asking_price,
            profit_potential_high=value_max - asking_price,
        )
    
    @staticmethod
    def rating_for(percent_of_market: float) -> DealRating:
        for bound, rating in DEAL_THRESHOLDS:
            if percent_of_market <= bound:
                return rating
        return DealRating.OVERPRICED
    
    @staticmethod
    def explain(rating: DealRating, percent: float, asking_price: int, midpoint: float) -> str:
        asking = _format_money(asking_price)
        market = _format_money(int(round(midpoint)))
        if rating == DealRating.EXCEPTIONAL:
            return f"Asking {asking} is {percent:.0f}% of the estimated market value of {market}. Exceptional buy if authentic."
        if rating == DealRating.GOOD:
            return f"Asking {asking} is {percent:.0f}% of the estimated market value of {market}. Room for profit."
        if rating == DealRating.FAIR:
            return f"Asking {asking} is close to the estimated market value of {market} ({percent:.0f}%)."
        return f"Asking {asking} is {percent:.0f}% of the estimated market value of {market}. Overpriced for resale."


__all__ = ["DealCalculator", "humanize_price", "DEAL_THRESHOLDS", "PRICE_ROUNDING_STEPS"]
