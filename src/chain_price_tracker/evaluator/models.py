"""Result types and errors for alert evaluation cycles."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum


class CheckFailedError(Exception):
    """Raised when an evaluation cycle could not complete cleanly."""


class AlertOutcome(str, Enum):
    """What happened to one threshold alert during a cycle."""

    NO_PRICE = "no_price"
    NOT_TRIGGERED = "not_triggered"
    ALREADY_CLAIMED = "already_claimed"
    GONE = "gone"
    NOTIFIED = "notified"
    NOTIFY_FAILED = "notify_failed"
    ERROR = "error"


@dataclass
class ThresholdCheckResult:
    """Summary of one threshold-alert cycle."""

    alerts_evaluated: int = 0
    outcomes: dict[int, AlertOutcome] = field(default_factory=dict)

    def count(self, outcome: AlertOutcome) -> int:
        return sum(1 for o in self.outcomes.values() if o == outcome)

    @property
    def notifications_sent(self) -> int:
        return self.count(AlertOutcome.NOTIFIED)

    @property
    def notification_failures(self) -> int:
        return self.count(AlertOutcome.NOTIFY_FAILED)


@dataclass(frozen=True)
class PriceComparison:
    """Current vs. window-start price for one chain."""

    chain: str
    previous_price: float
    current_price: float
    change_pct: Decimal


@dataclass
class TrendCheckResult:
    """Summary of one price-increase cycle."""

    comparisons: list[PriceComparison] = field(default_factory=list)
    notifications_sent: int = 0
    notification_failures: int = 0

    @property
    def chains_evaluated(self) -> int:
        return len(self.comparisons)
