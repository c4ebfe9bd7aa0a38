"""
Unit tests for time-to-depletion projection.

Tests the safe sentinel, the 90-day horizon and single-granularity rendering.
"""

import pytest

from balance_tracker.core.eta import SAFE, EtaProjection, project_eta


class TestSafeSentinel:
    """Cases rendered as "safe"."""

    def test_unknown_burn_is_safe(self):
        assert project_eta(None, 10.0).is_safe

    def test_zero_burn_is_safe(self):
        assert project_eta(0.0, 10.0).text == SAFE

    def test_negative_burn_is_safe(self):
        assert project_eta(-3.0, 10.0).text == SAFE

    def test_beyond_horizon_is_safe(self):
        # exactly 90 days left
        assert project_eta(1.0, 24 * 90).is_safe

    def test_just_inside_horizon_is_projected(self):
        eta = project_eta(1.0, 24 * 90 - 1)
        assert not eta.is_safe
        assert eta.text == "~89d23h"

    def test_custom_horizon(self):
        assert project_eta(1.0, 48.0, safe_horizon_days=2).is_safe
        assert not project_eta(1.0, 47.0, safe_horizon_days=2).is_safe


class TestRendering:
    """Exactly one granularity, no zero leading units."""

    def test_two_hours_keeps_zero_minutes(self):
        eta = project_eta(5.0, 10.0)
        assert eta.text == "~2h0m"
        assert (eta.days, eta.hours, eta.minutes) == (0, 2, 0)

    def test_days_and_hours(self):
        # 50.5 hours left
        assert project_eta(2.0, 101.0).text == "~2d2h"

    def test_hours_and_minutes(self):
        # 1.5 hours left
        assert project_eta(2.0, 3.0).text == "~1h30m"

    def test_minutes_only(self):
        # 0.75 hours left
        assert project_eta(4.0, 3.0).text == "~45m"

    def test_floors_partial_minutes(self):
        # 59.9 seconds left
        assert project_eta(60.0, 0.999).text == "~0m"

    def test_exhausted_balance_renders_zero(self):
        assert project_eta(5.0, 0.0).text == "~0m"
        assert project_eta(5.0, -10.0).text == "~0m"

    def test_total_minutes(self):
        assert project_eta(2.0, 101.0).total_minutes == 50 * 60 + 30
        assert project_eta(0.0, 1.0).total_minutes is None

    def test_safe_projection_text(self):
        assert EtaProjection(is_safe=True, days=3).text == SAFE
