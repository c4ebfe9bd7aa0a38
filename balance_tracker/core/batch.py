"""
Batch balance checking.

One pass iterates every active key, asks the scheduler whether it is due,
and checks the due ones against the upstream API.

Error isolation:
1. A failure on one key (upstream, credential or persistence) is recorded
   in the summary and the pass moves on to the next key
2. Failed checks leave the key untouched and are retried on a later pass
3. Nothing at the key level aborts the pass
"""

import sqlite3
import time
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional

from balance_tracker.config.loader import SchedulerConfig
from balance_tracker.logging_config import StructuredLogger
from balance_tracker.sdk.siliconflow_client import SiliconFlowClient, UpstreamFailure
from balance_tracker.security.vault import CredentialError, CredentialVault
from balance_tracker.storage.models import TrackedKey
from balance_tracker.storage.repository import BalanceRepository

from .scheduler import decide

logger = StructuredLogger("batch")


class CheckOutcome(Enum):
    SUCCESS = "success"
    FAILED = "failed"
    SKIPPED = "skipped"


@dataclass(frozen=True)
class EntityCheckResult:
    """Result of considering one key in a batch pass."""
    tracked_key_id: int
    outcome: CheckOutcome
    balance: Optional[float] = None
    error: Optional[str] = None
    deactivated: bool = False


@dataclass
class BatchSummary:
    """Aggregated results of one batch pass."""
    started_at: datetime
    results: List[EntityCheckResult] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    def _count(self, outcome: CheckOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    @property
    def success(self) -> int:
        return self._count(CheckOutcome.SUCCESS)

    @property
    def failed(self) -> int:
        return self._count(CheckOutcome.FAILED)

    @property
    def skipped(self) -> int:
        return self._count(CheckOutcome.SKIPPED)

    @property
    def deactivated(self) -> int:
        return sum(1 for r in self.results if r.deactivated)


def check_key(
    key: TrackedKey,
    repository: BalanceRepository,
    client: SiliconFlowClient,
    vault: CredentialVault,
    now: datetime
) -> EntityCheckResult:
    """Check one key upstream and persist the reading.

    A balance at or below zero retires the key from polling.
    """
    try:
        api_key = vault.decrypt(key.api_key_encrypted)
        reading = client.fetch_balance(api_key)
    except (UpstreamFailure, CredentialError, ValueError) as e:
        logger.error("Failed to check balance", tracked_key_id=key.id, error=str(e))
        return EntityCheckResult(key.id, CheckOutcome.FAILED, error=str(e))

    deactivate = reading.balance <= 0
    try:
        repository.record_check(
            key.id,
            reading.balance,
            reading.status,
            checked_at=now,
            deactivate=deactivate
        )
    except sqlite3.Error as e:
        logger.error("Failed to record balance", tracked_key_id=key.id, error=str(e))
        return EntityCheckResult(
            key.id,
            CheckOutcome.FAILED,
            balance=reading.balance,
            error=f"Persistence failure: {e}"
        )

    if deactivate:
        logger.warning("Auto-disabled tracking, balance exhausted", tracked_key_id=key.id, balance=reading.balance)
    logger.info("Checked balance", tracked_key_id=key.id, balance=reading.balance)
    return EntityCheckResult(
        key.id,
        CheckOutcome.SUCCESS,
        balance=reading.balance,
        deactivated=deactivate
    )


def run_batch_check(
    repository: BalanceRepository,
    client: SiliconFlowClient,
    vault: CredentialVault,
    config: Optional[SchedulerConfig] = None,
    now: Optional[datetime] = None,
    sleep: Callable[[float], None] = time.sleep,
    clock: Optional[Callable[[], datetime]] = None
) -> BatchSummary:
    """Run one pass over every active key.

    Args:
        repository: Storage for keys and samples
        client: Upstream balance client
        vault: Decrypts stored credentials
        config: Cadence and throttle settings
        now: Pass start time; also the check time unless `clock` is given
        sleep: Throttle between executed checks
        clock: Time source for individual checks

    Returns:
        BatchSummary with one result per active key
    """
    config = config or SchedulerConfig()
    started_at = now or datetime.now()
    if clock is None:
        clock = (lambda: started_at) if now is not None else datetime.now
    summary = BatchSummary(started_at=started_at)

    keys = repository.list_active_keys()
    logger.info("Starting batch check", active_keys=len(keys))

    for key in keys:
        check_time = clock()
        try:
            recent = repository.get_recent_samples(key.id, limit=config.recent_sample_limit)
        except sqlite3.Error as e:
            logger.error("Failed to read recent samples", tracked_key_id=key.id, error=str(e))
            summary.results.append(EntityCheckResult(key.id, CheckOutcome.FAILED, error=str(e)))
            continue

        decision = decide(key, recent, check_time, config)
        if not decision.due:
            logger.debug("Skipping key", tracked_key_id=key.id, reason=decision.reason)
            summary.results.append(EntityCheckResult(key.id, CheckOutcome.SKIPPED))
            continue

        try:
            result = check_key(key, repository, client, vault, check_time)
        except Exception as e:
            # Nothing raised for one key may end the pass
            logger.error(
                "Unexpected error checking key",
                tracked_key_id=key.id,
                error_type=type(e).__name__,
                error=str(e)
            )
            result = EntityCheckResult(key.id, CheckOutcome.FAILED, error=f"{type(e).__name__}: {e}")
        summary.results.append(result)

        # Throttle upstream calls; skipped keys cost nothing
        if config.throttle_seconds > 0:
            sleep(config.throttle_seconds)

    logger.info(
        "Batch check completed",
        total=summary.total,
        success=summary.success,
        failed=summary.failed,
        skipped=summary.skipped,
        deactivated=summary.deactivated
    )

    try:
        repository.set_last_batch_check(clock())
    except sqlite3.Error as e:
        logger.error("Failed to record batch check time", error=str(e))

    return summary
