"""Alerting layer - Message formatting, delivery and alert claims."""

from chain_price_tracker.alerter.claims import AlertClaims
from chain_price_tracker.alerter.formatter import (
    FormattedAlert,
    format_price,
    format_threshold_alert,
    format_trend_alert,
)
from chain_price_tracker.alerter.notifier import (
    DryRunNotifier,
    NotificationError,
    Notifier,
    SmtpNotifier,
)

__all__ = [
    "AlertClaims",
    "DryRunNotifier",
    "FormattedAlert",
    "NotificationError",
    "Notifier",
    "SmtpNotifier",
    "format_price",
    "format_threshold_alert",
    "format_trend_alert",
]
