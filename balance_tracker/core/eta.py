"""
Time-to-depletion projection.
"""

import math
from dataclasses import dataclass
from typing import Optional

SAFE = "safe"

MINUTES_PER_DAY = 24 * 60
DEFAULT_SAFE_HORIZON_DAYS = 90


@dataclass(frozen=True)
class EtaProjection:
    """Projected time until the balance reaches zero.

    Either the "safe" sentinel (no net consumption, or depletion further
    away than the safe horizon) or a days/hours/minutes duration.
    """
    is_safe: bool
    days: int = 0
    hours: int = 0
    minutes: int = 0

    @property
    def text(self) -> str:
        """Render with exactly one granularity.

        `~{d}d{h}h` when days are left, else `~{h}h{m}m` when hours are
        left, else `~{m}m`. Zero trailing units are kept: two hours
        renders as `~2h0m`.
        """
        if self.is_safe:
            return SAFE
        if self.days > 0:
            return f"~{self.days}d{self.hours}h"
        if self.hours > 0:
            return f"~{self.hours}h{self.minutes}m"
        return f"~{self.minutes}m"

    @property
    def total_minutes(self) -> Optional[int]:
        if self.is_safe:
            return None
        return self.days * MINUTES_PER_DAY + self.hours * 60 + self.minutes


SAFE_ETA = EtaProjection(is_safe=True)


def project_eta(
    hourly_burn: Optional[float],
    current_balance: float,
    safe_horizon_days: float = DEFAULT_SAFE_HORIZON_DAYS
) -> EtaProjection:
    """Project time to depletion at the current burn rate.

    Args:
        hourly_burn: Consumption per hour, None when unknown
        current_balance: Latest balance
        safe_horizon_days: Depletion at or beyond this is reported as safe

    Returns:
        EtaProjection
    """
    if hourly_burn is None or hourly_burn <= 0:
        return SAFE_ETA

    # An exhausted key has nothing left to project
    hours_left = max(0.0, current_balance / hourly_burn)
    if hours_left >= 24 * safe_horizon_days:
        return SAFE_ETA

    total_minutes = math.floor(hours_left * 60)
    return EtaProjection(
        is_safe=False,
        days=total_minutes // MINUTES_PER_DAY,
        hours=(total_minutes % MINUTES_PER_DAY) // 60,
        minutes=total_minutes % 60
    )
