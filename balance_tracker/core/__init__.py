"""
Core modules for the balance tracker.

This package contains the adaptive sampling scheduler, change detection,
burn-rate estimation, ETA projection, the batch driver and the read-side
projections built on top of them.
"""
