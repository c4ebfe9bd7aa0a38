"""
Burn-rate estimation.

Turns a sliding window of balance samples into an hourly consumption
rate and a percentage-of-initial-balance rate, then classifies it.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional, Sequence

from balance_tracker.config.loader import EstimationConfig
from balance_tracker.storage.models import BalanceSample

DEFAULT_BURN_WINDOW = timedelta(minutes=30)


class BurnClassification(Enum):
    """How fast a key is spending, relative to its initial balance."""
    MINIMAL = "minimal"
    FAST = "fast"
    VERY_FAST = "veryFast"


@dataclass(frozen=True)
class BurnRateEstimate:
    """Burn rate over a sample window.

    `hourly_burn` is None when the window holds too little data;
    `hourly_percent_burn` is additionally None when the initial balance
    is not positive.
    """
    classification: BurnClassification
    hourly_burn: Optional[float] = None
    hourly_percent_burn: Optional[float] = None
    sample_count: int = 0

    @property
    def has_rate(self) -> bool:
        return self.hourly_burn is not None


def select_window(
    samples: Sequence[BalanceSample],
    now: datetime,
    window: timedelta = DEFAULT_BURN_WINDOW
) -> List[BalanceSample]:
    """Keep samples checked at or after `now - window`, oldest first."""
    cutoff = now - window
    in_window = [s for s in samples if s.checked_at >= cutoff]
    return sorted(in_window, key=lambda s: (s.checked_at, s.id if s.id is not None else 0))


def classify(hourly_percent_burn: float, config: Optional[EstimationConfig] = None) -> BurnClassification:
    config = config or EstimationConfig()
    if hourly_percent_burn > config.very_fast_percent_per_hour:
        return BurnClassification.VERY_FAST
    if hourly_percent_burn > config.fast_percent_per_hour:
        return BurnClassification.FAST
    return BurnClassification.MINIMAL


def estimate_burn_rate(
    window_samples: Sequence[BalanceSample],
    initial_balance: float,
    config: Optional[EstimationConfig] = None
) -> BurnRateEstimate:
    """Estimate the burn rate from the first and last sample of a window.

    Top-ups simply produce a zero or negative burn. Any computation that
    would divide by a non-positive denominator yields the minimal
    classification instead of NaN or infinity.

    Args:
        window_samples: Samples inside the burn window (any order)
        initial_balance: Balance of the key's earliest sample
        config: Classification thresholds, defaults if omitted

    Returns:
        BurnRateEstimate for the window
    """
    count = len(window_samples)
    if count < 2:
        return BurnRateEstimate(classification=BurnClassification.MINIMAL, sample_count=count)

    ordered = sorted(window_samples, key=lambda s: (s.checked_at, s.id if s.id is not None else 0))
    first, last = ordered[0], ordered[-1]

    hours_diff = (last.checked_at - first.checked_at).total_seconds() / 3600
    if hours_diff <= 0:
        return BurnRateEstimate(classification=BurnClassification.MINIMAL, sample_count=count)

    consumed = first.balance - last.balance
    hourly_burn = consumed / hours_diff

    if initial_balance <= 0:
        return BurnRateEstimate(
            classification=BurnClassification.MINIMAL,
            hourly_burn=hourly_burn,
            sample_count=count
        )

    hourly_percent_burn = hourly_burn / initial_balance * 100
    return BurnRateEstimate(
        classification=classify(hourly_percent_burn, config),
        hourly_burn=hourly_burn,
        hourly_percent_burn=hourly_percent_burn,
        sample_count=count
    )


def percentage_remaining(current_balance: float, initial_balance: float) -> float:
    """Share of the initial balance left, clamped to [0, 100].

    A non-positive initial balance cannot be divided by and counts as 100.
    """
    if initial_balance <= 0:
        return 100.0
    percentage = current_balance / initial_balance * 100
    return max(0.0, min(100.0, percentage))
