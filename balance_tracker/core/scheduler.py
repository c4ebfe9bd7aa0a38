"""
Adaptive balance-sampling scheduler.

Keys whose balance is moving are checked every minute so the burn-rate
curve stays useful; idle keys are checked every five minutes to limit
calls against the upstream rate limits.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Optional, Sequence

from balance_tracker.config.loader import SchedulerConfig
from balance_tracker.storage.models import BalanceSample, TrackedKey

from .change_detector import is_changing


class Cadence(Enum):
    """Sampling cadence of a key."""
    CHANGING = "changing"
    STABLE = "stable"


@dataclass(frozen=True)
class ScheduleDecision:
    """Outcome of the due-time predicate for one key."""
    due: bool
    cadence: Optional[Cadence]
    minutes_since_last_check: Optional[float]
    reason: str


def decide(
    key: TrackedKey,
    recent_samples: Sequence[BalanceSample],
    now: datetime,
    config: Optional[SchedulerConfig] = None
) -> ScheduleDecision:
    """Decide whether a key is due for an upstream check.

    Args:
        key: Tracked key being considered
        recent_samples: The key's most recent samples (any order)
        now: Reference time
        config: Cadence settings, defaults if omitted

    Returns:
        ScheduleDecision with the verdict and its inputs
    """
    config = config or SchedulerConfig()

    if key.last_checked_at is None:
        return ScheduleDecision(
            due=True,
            cadence=None,
            minutes_since_last_check=None,
            reason="never checked"
        )

    changing = is_changing(
        recent_samples,
        now,
        window=timedelta(minutes=config.change_window_minutes),
        epsilon=config.change_epsilon
    )
    cadence = Cadence.CHANGING if changing else Cadence.STABLE
    interval = (
        config.changing_interval_minutes if changing
        else config.stable_interval_minutes
    )

    minutes_since = (now - key.last_checked_at).total_seconds() / 60
    due = minutes_since >= interval
    return ScheduleDecision(
        due=due,
        cadence=cadence,
        minutes_since_last_check=minutes_since,
        reason=f"{cadence.value}, {minutes_since:.1f}m since last check (interval {interval:g}m)"
    )


def should_check_now(
    key: TrackedKey,
    recent_samples: Sequence[BalanceSample],
    now: datetime,
    config: Optional[SchedulerConfig] = None
) -> bool:
    """Due/not-due predicate evaluated once per key per batch pass."""
    return decide(key, recent_samples, now, config).due
