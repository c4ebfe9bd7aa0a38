"""
Balance change detection.

Decides whether a key's balance is still moving, which drives both the
sampling cadence and the dashboard's own refresh cadence.
"""

from datetime import datetime, timedelta
from typing import List, Sequence

from balance_tracker.storage.models import BalanceSample

DEFAULT_CHANGE_WINDOW = timedelta(minutes=6)


def sort_newest_first(samples: Sequence[BalanceSample]) -> List[BalanceSample]:
    """Order samples newest first, breaking timestamp ties by id."""
    return sorted(
        samples,
        key=lambda s: (s.checked_at, s.id if s.id is not None else 0),
        reverse=True
    )


def is_changing(
    samples: Sequence[BalanceSample],
    now: datetime,
    window: timedelta = DEFAULT_CHANGE_WINDOW,
    epsilon: float = 0.0
) -> bool:
    """Decide whether the balance changed within the trailing window.

    Consecutive pairs are compared newest to oldest. A pair counts while
    its newer sample lies inside the window, so the last compared
    predecessor may sit just outside it.

    With fewer than 2 samples there is no evidence either way, and the
    key is treated as changing so it gets sampled aggressively.

    Args:
        samples: Most recent samples of one key, in any order
        now: Reference time
        window: Trailing relevance window
        epsilon: Largest difference still considered equal; 0 means
            exact comparison

    Returns:
        True if any in-window pair differs by more than epsilon
    """
    if len(samples) < 2:
        return True

    threshold = now - window
    ordered = sort_newest_first(samples)

    for current, previous in zip(ordered, ordered[1:]):
        if current.checked_at < threshold:
            break
        if abs(current.balance - previous.balance) > epsilon:
            return True

    return False
