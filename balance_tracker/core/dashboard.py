"""
Dashboard projections.

Read-only, per-key metrics derived from the sample history: percentage
remaining, burn classification, ETA and whether the balance is currently
changing. Missing data renders as safe defaults, never as an error.

These queries never mutate samples and may run alongside the batch
driver.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Iterable, List, Optional

from balance_tracker.config.loader import TrackerConfig
from balance_tracker.security.vault import CredentialError, CredentialVault, mask_api_key
from balance_tracker.storage.models import BalanceSample, TrackedKey
from balance_tracker.storage.repository import BalanceRepository

from .burn_rate import (
    BurnClassification,
    estimate_burn_rate,
    percentage_remaining,
    select_window,
)
from .change_detector import is_changing
from .eta import EtaProjection, project_eta

UNKNOWN_STATUS = "unknown"
UNREADABLE_KEY = "<unreadable>"


@dataclass(frozen=True)
class KeySnapshot:
    """Everything a consumer needs to render one tracked key."""
    tracked_key_id: int
    masked_key: str
    user_id: Optional[str]
    user_email: Optional[str]
    is_active: bool
    current_balance: float
    initial_balance: float
    used: float
    percentage: float
    account_status: str
    is_blocked: bool
    classification: BurnClassification
    hourly_burn: Optional[float]
    hourly_percent_burn: Optional[float]
    eta: EtaProjection
    balance_changing: bool
    created_at: datetime
    last_checked_at: Optional[datetime]
    last_update: Optional[datetime]
    initial_check_time: Optional[datetime]
    recent_history: List[BalanceSample] = field(default_factory=list)

    @property
    def eta_text(self) -> str:
        return self.eta.text

    @property
    def has_data(self) -> bool:
        return self.last_update is not None


@dataclass(frozen=True)
class DashboardView:
    keys: List[KeySnapshot]
    last_batch_check: Optional[datetime]

    @property
    def count(self) -> int:
        return len(self.keys)


def _masked(key: TrackedKey, vault: CredentialVault) -> str:
    try:
        return mask_api_key(vault.decrypt(key.api_key_encrypted))
    except CredentialError:
        return UNREADABLE_KEY


def build_key_snapshot(
    key: TrackedKey,
    repository: BalanceRepository,
    vault: CredentialVault,
    now: Optional[datetime] = None,
    config: Optional[TrackerConfig] = None
) -> KeySnapshot:
    """Derive the display metrics of one key.

    Args:
        key: Tracked key to project
        repository: Sample source
        vault: Used only to mask the key for display
        now: Reference time
        config: Window and threshold settings

    Returns:
        KeySnapshot for the key
    """
    now = now or datetime.now()
    config = config or TrackerConfig()
    scheduler_cfg = config.scheduler
    estimation_cfg = config.estimation

    recent = repository.get_recent_samples(key.id, limit=scheduler_cfg.recent_sample_limit)
    first = repository.get_first_sample(key.id)
    latest = recent[0] if recent else None

    current_balance = latest.balance if latest else 0.0
    initial_balance = first.balance if first else 0.0

    burn_window = timedelta(minutes=estimation_cfg.burn_window_minutes)
    window_samples = select_window(
        repository.get_samples_since(key.id, now - burn_window, until=now),
        now,
        burn_window
    )
    estimate = estimate_burn_rate(window_samples, initial_balance, estimation_cfg)
    eta = project_eta(
        estimate.hourly_burn,
        current_balance,
        safe_horizon_days=estimation_cfg.safe_horizon_days
    )

    changing = is_changing(
        recent,
        now,
        window=timedelta(minutes=scheduler_cfg.change_window_minutes),
        epsilon=scheduler_cfg.change_epsilon
    )

    return KeySnapshot(
        tracked_key_id=key.id,
        masked_key=_masked(key, vault),
        user_id=key.user_id,
        user_email=key.user_email,
        is_active=key.is_active,
        current_balance=current_balance,
        initial_balance=initial_balance,
        used=max(0.0, initial_balance - current_balance),
        percentage=percentage_remaining(current_balance, initial_balance),
        account_status=latest.status if latest else UNKNOWN_STATUS,
        is_blocked=latest.is_blocked if latest else False,
        classification=estimate.classification,
        hourly_burn=estimate.hourly_burn,
        hourly_percent_burn=estimate.hourly_percent_burn,
        eta=eta,
        balance_changing=changing,
        created_at=key.created_at,
        last_checked_at=key.last_checked_at,
        last_update=latest.checked_at if latest else None,
        initial_check_time=first.checked_at if first else None,
        recent_history=window_samples
    )


def build_dashboard(
    repository: BalanceRepository,
    vault: CredentialVault,
    now: Optional[datetime] = None,
    config: Optional[TrackerConfig] = None
) -> DashboardView:
    """Project every active key, most recently checked first."""
    now = now or datetime.now()
    snapshots = [
        build_key_snapshot(key, repository, vault, now, config)
        for key in repository.list_active_keys()
    ]
    return DashboardView(keys=snapshots, last_batch_check=repository.get_last_batch_check())


def build_dashboard_for_keys(
    api_keys: Iterable[str],
    repository: BalanceRepository,
    vault: CredentialVault,
    now: Optional[datetime] = None,
    config: Optional[TrackerConfig] = None
) -> DashboardView:
    """Project only the active keys among the given plaintext keys.

    Blank entries and keys that are unknown or inactive are skipped, so a
    caller only ever sees keys it already holds.
    """
    now = now or datetime.now()
    seen = set()
    matched: List[TrackedKey] = []
    for api_key in api_keys:
        if not isinstance(api_key, str) or not api_key.strip():
            continue
        fingerprint = vault.fingerprint(api_key.strip())
        if fingerprint in seen:
            continue
        seen.add(fingerprint)
        key = repository.find_by_fingerprint(fingerprint)
        if key is not None and key.is_active:
            matched.append(key)

    matched.sort(
        key=lambda k: k.last_checked_at or datetime.min,
        reverse=True
    )
    snapshots = [build_key_snapshot(key, repository, vault, now, config) for key in matched]
    return DashboardView(keys=snapshots, last_batch_check=repository.get_last_batch_check())
