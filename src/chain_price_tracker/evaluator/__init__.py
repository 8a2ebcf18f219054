"""Alert evaluation - Threshold and price-increase checks."""

from chain_price_tracker.evaluator.models import (
    AlertOutcome,
    CheckFailedError,
    PriceComparison,
    ThresholdCheckResult,
    TrendCheckResult,
)
from chain_price_tracker.evaluator.threshold import ThresholdAlertEvaluator, threshold_reached
from chain_price_tracker.evaluator.trend import (
    TrendAlertEvaluator,
    calculate_price_increase_percentage,
)

__all__ = [
    "AlertOutcome",
    "CheckFailedError",
    "PriceComparison",
    "ThresholdAlertEvaluator",
    "ThresholdCheckResult",
    "TrendAlertEvaluator",
    "TrendCheckResult",
    "calculate_price_increase_percentage",
    "threshold_reached",
]
