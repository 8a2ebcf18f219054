"""Alert message formatting for email delivery."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class FormattedAlert:
    """Subject and plain-text body of a notification."""

    subject: str
    body: str


def format_price(price: float | Decimal) -> str:
    """Format a price as a dollar amount without trailing float noise.

    Examples:
        1000.0 -> "$1000", 0.5 -> "$0.5", Decimal("900.00") -> "$900"
    """
    value = Decimal(str(price)).normalize()
    # normalize() turns 1000 into 1E+3
    text = f"{value:f}"
    return f"${text}"


def format_threshold_alert(chain: str, price: float) -> FormattedAlert:
    """Message for a threshold alert that has been reached."""
    return FormattedAlert(
        subject=f"{chain} Price Alert",
        body=f"The price of {chain} has reached {format_price(price)}.",
    )


def format_trend_alert(
    chain: str,
    *,
    current_price: float,
    previous_price: float,
    threshold_pct: Decimal,
    window_minutes: int = 60,
) -> FormattedAlert:
    """Message for a price increase over the trend window."""
    window = "an hour" if window_minutes == 60 else f"{window_minutes} minutes"
    return FormattedAlert(
        subject=f"{chain} Price Increase Alert",
        body=(
            f"The price of {chain} has increased by more than {threshold_pct.normalize():f}%. "
            f"Current price: {format_price(current_price)}. "
            f"Price {window} ago: {format_price(previous_price)}."
        ),
    )
