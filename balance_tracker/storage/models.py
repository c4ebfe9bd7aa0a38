"""
Data models for storage layer.

Defines tracked keys, balance samples and system status markers.
"""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

BLOCKED_STATUS = "blocked"

# SystemStatus keys
LAST_BATCH_CHECK = "last_batch_check"


@dataclass(frozen=True)
class TrackedKey:
    """An API key whose balance is periodically sampled.
    
    The credential is only held encrypted; `api_key_hash` is the stable
    fingerprint used for lookups. Keys are soft-deactivated, never deleted.
    """
    id: int
    api_key_hash: str
    api_key_encrypted: str
    is_active: bool
    created_at: datetime
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    last_checked_at: Optional[datetime] = None


@dataclass(frozen=True)
class BalanceSample:
    """Immutable balance reading for one tracked key.
    
    Append-only: once written, samples are never updated or deleted.
    """
    tracked_key_id: int
    balance: float
    status: str
    checked_at: datetime
    id: Optional[int] = None

    @property
    def is_blocked(self) -> bool:
        """Upstream reported the account as blocked."""
        return self.status == BLOCKED_STATUS
