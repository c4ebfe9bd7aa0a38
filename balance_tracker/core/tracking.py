"""
Tracking lifecycle for API keys.

A key enters tracking active through an explicit tracking request, or
inactive through a manual balance save. Keys are only ever deactivated,
never deleted, and an explicit re-add reactivates them.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Optional

from balance_tracker.logging_config import StructuredLogger
from balance_tracker.security.vault import CredentialVault
from balance_tracker.storage.models import BalanceSample, TrackedKey
from balance_tracker.storage.repository import BalanceRepository

DEFAULT_HISTORY_DAYS = 7
MAX_HISTORY_DAYS = 90

logger = StructuredLogger("tracking")


class TrackingError(LookupError):
    """Base class for lookups against tracked keys."""


class KeyNotTrackedError(TrackingError):
    """The API key has never been stored."""


class TrackingDisabledError(TrackingError):
    """The API key is stored but tracking is switched off."""


class NoBalanceDataError(TrackingError):
    """The API key has no balance samples yet."""


class TrackOutcome(Enum):
    ADDED = "added"
    REACTIVATED = "reactivated"
    ALREADY_TRACKED = "already_tracked"


@dataclass(frozen=True)
class TrackResult:
    tracked_key_id: int
    outcome: TrackOutcome


@dataclass(frozen=True)
class TrackingStatus:
    is_tracked: bool
    tracked_key_id: Optional[int] = None
    created_at: Optional[datetime] = None
    last_checked_at: Optional[datetime] = None


@dataclass(frozen=True)
class ManualSaveResult:
    tracked_key_id: int
    sample: BalanceSample
    created_key: bool


@dataclass(frozen=True)
class BalanceHistory:
    is_tracked: bool
    days: int
    samples: List[BalanceSample]
    tracked_key_id: Optional[int] = None


def _require_key(api_key: str) -> str:
    if not api_key or not api_key.strip():
        raise ValueError("api_key is required and cannot be empty")
    return api_key.strip()


def clamp_history_days(days: int) -> int:
    """Bound a history request to 1..90 days, falling back to 7."""
    if days < 1:
        return DEFAULT_HISTORY_DAYS
    return min(days, MAX_HISTORY_DAYS)


class TrackingService:
    """Add, remove and look up tracked keys."""

    def __init__(self, repository: BalanceRepository, vault: CredentialVault):
        self.repository = repository
        self.vault = vault

    def _find(self, api_key: str) -> Optional[TrackedKey]:
        return self.repository.find_by_fingerprint(self.vault.fingerprint(api_key))

    def track_key(
        self,
        api_key: str,
        user_id: Optional[str] = None,
        user_email: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> TrackResult:
        """Start tracking a key, reactivating it if it was switched off.

        Raises:
            ValueError: If api_key is empty
        """
        api_key = _require_key(api_key)
        existing = self._find(api_key)

        if existing is not None:
            if existing.is_active:
                return TrackResult(existing.id, TrackOutcome.ALREADY_TRACKED)
            self.repository.set_active(existing.id, True)
            logger.info("Re-activated tracking", tracked_key_id=existing.id)
            return TrackResult(existing.id, TrackOutcome.REACTIVATED)

        created = self.repository.create_tracked_key(
            api_key_hash=self.vault.fingerprint(api_key),
            api_key_encrypted=self.vault.encrypt(api_key),
            is_active=True,
            user_id=user_id,
            user_email=user_email,
            created_at=now or datetime.now()
        )
        logger.info("Added new tracking", tracked_key_id=created.id, api_key_hash=created.api_key_hash)
        return TrackResult(created.id, TrackOutcome.ADDED)

    def untrack_key(
        self,
        api_key: Optional[str] = None,
        tracked_key_id: Optional[int] = None
    ) -> bool:
        """Soft-deactivate a key by id or by plaintext key.

        Returns:
            True if a stored key was matched

        Raises:
            ValueError: If neither identifier is given
        """
        if tracked_key_id is None and not (api_key and api_key.strip()):
            raise ValueError("Either api_key or tracked_key_id is required")

        if tracked_key_id is None:
            existing = self._find(api_key.strip())
            if existing is None:
                return False
            tracked_key_id = existing.id

        matched = self.repository.set_active(tracked_key_id, False)
        if matched:
            logger.info("Deactivated tracking", tracked_key_id=tracked_key_id)
        return matched

    def tracking_status(self, api_key: str) -> TrackingStatus:
        existing = self._find(_require_key(api_key))
        if existing is None:
            return TrackingStatus(is_tracked=False)
        return TrackingStatus(
            is_tracked=existing.is_active,
            tracked_key_id=existing.id,
            created_at=existing.created_at,
            last_checked_at=existing.last_checked_at
        )

    def save_manual_query(
        self,
        api_key: str,
        balance: float,
        status: str = "active",
        user_id: Optional[str] = None,
        user_email: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> ManualSaveResult:
        """Record a balance the caller looked up themselves.

        Unknown keys are stored inactive: they keep their history but
        are excluded from the batch driver until explicitly tracked.
        """
        api_key = _require_key(api_key)
        now = now or datetime.now()
        existing = self._find(api_key)

        created_key = existing is None
        if existing is None:
            existing = self.repository.create_tracked_key(
                api_key_hash=self.vault.fingerprint(api_key),
                api_key_encrypted=self.vault.encrypt(api_key),
                is_active=False,
                user_id=user_id,
                user_email=user_email,
                created_at=now
            )
            logger.info("Created inactive key for manual save", tracked_key_id=existing.id)

        sample = self.repository.append_sample(existing.id, balance, status or "active", now)
        logger.info("Saved manual query", tracked_key_id=existing.id, history_id=sample.id)
        return ManualSaveResult(tracked_key_id=existing.id, sample=sample, created_key=created_key)

    def latest_balance(self, api_key: str) -> BalanceSample:
        """Most recent sample of an actively tracked key.

        Raises:
            KeyNotTrackedError: If the key is unknown
            TrackingDisabledError: If tracking is switched off
            NoBalanceDataError: If the key has no samples
        """
        existing = self._find(_require_key(api_key))
        if existing is None:
            raise KeyNotTrackedError("API key is not being tracked")
        if not existing.is_active:
            raise TrackingDisabledError("Tracking is disabled for this API key")

        latest = self.repository.get_latest_sample(existing.id)
        if latest is None:
            raise NoBalanceDataError("No balance records found for this API key")
        return latest

    def balance_history(
        self,
        api_key: str,
        days: int = DEFAULT_HISTORY_DAYS,
        now: Optional[datetime] = None
    ) -> BalanceHistory:
        """Samples of the last `days` days, oldest first.

        Unknown and inactive keys report `is_tracked=False` with no samples.
        """
        days = clamp_history_days(days)
        existing = self._find(_require_key(api_key))
        if existing is None or not existing.is_active:
            return BalanceHistory(is_tracked=False, days=days, samples=[])

        now = now or datetime.now()
        samples = self.repository.get_samples_since(existing.id, now - timedelta(days=days))
        return BalanceHistory(
            is_tracked=True,
            days=days,
            samples=samples,
            tracked_key_id=existing.id
        )
