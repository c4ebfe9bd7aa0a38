"""
Repository pattern for data access.

Handles tracked keys, the append-only balance history and the
system status markers.
"""

from datetime import datetime
from typing import List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import LAST_BATCH_CHECK, BalanceSample, TrackedKey

_TRACKED_KEY_COLUMNS = """
    id, api_key_hash, api_key_encrypted, user_id, user_email,
    is_active, created_at, last_checked_at
"""

_SAMPLE_COLUMNS = "id, tracked_key_id, balance, status, checked_at"


def _parse_time(value: Optional[str]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromisoformat(value)


def _row_to_tracked_key(row: tuple) -> TrackedKey:
    return TrackedKey(
        id=row[0],
        api_key_hash=row[1],
        api_key_encrypted=row[2],
        user_id=row[3],
        user_email=row[4],
        is_active=bool(row[5]),
        created_at=datetime.fromisoformat(row[6]),
        last_checked_at=_parse_time(row[7])
    )


def _row_to_sample(row: tuple) -> BalanceSample:
    return BalanceSample(
        id=row[0],
        tracked_key_id=row[1],
        balance=float(row[2]),
        status=row[3],
        checked_at=datetime.fromisoformat(row[4])
    )


def initialize_schema(db_path: str = DEFAULT_DB_PATH) -> None:
    """Create the tracker tables if they don't exist.

    `balance_history` is an append-only ledger: no UPDATE or DELETE
    operations are ever performed on it.

    Args:
        db_path: Path to SQLite database file
    """
    conn = get_connection(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS tracked_keys (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                api_key_hash TEXT NOT NULL UNIQUE,
                api_key_encrypted TEXT NOT NULL,
                user_id TEXT,
                user_email TEXT,
                is_active INTEGER NOT NULL DEFAULT 1,
                created_at TEXT NOT NULL,
                last_checked_at TEXT
            )
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS balance_history (
                id INTEGER PRIMARY KEY AUTOINCREMENT,
                tracked_key_id INTEGER NOT NULL REFERENCES tracked_keys(id),
                balance REAL NOT NULL,
                status TEXT NOT NULL,
                checked_at TEXT NOT NULL
            )
        """)
        conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_balance_history_key_time
            ON balance_history (tracked_key_id, checked_at)
        """)
        conn.execute("""
            CREATE TABLE IF NOT EXISTS system_status (
                status_key TEXT PRIMARY KEY,
                status_value TEXT,
                updated_at TEXT NOT NULL
            )
        """)
        conn.commit()
    finally:
        conn.close()


class BalanceRepository:
    """Repository for tracked keys and their balance history.

    Every method opens its own short-lived connection, so a repository
    instance can be shared between the batch driver and read paths.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    # -- tracked keys -------------------------------------------------

    def create_tracked_key(
        self,
        api_key_hash: str,
        api_key_encrypted: str,
        is_active: bool,
        user_id: Optional[str] = None,
        user_email: Optional[str] = None,
        created_at: Optional[datetime] = None
    ) -> TrackedKey:
        """Insert a new tracked key and return it.

        Raises:
            sqlite3.IntegrityError: If the fingerprint is already stored
        """
        created_at = created_at or datetime.now()
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                INSERT INTO tracked_keys
                (api_key_hash, api_key_encrypted, user_id, user_email, is_active, created_at)
                VALUES (?, ?, ?, ?, ?, ?)
            """, (
                api_key_hash,
                api_key_encrypted,
                user_id,
                user_email,
                1 if is_active else 0,
                created_at.isoformat()
            ))
            conn.commit()
            key_id = cursor.lastrowid
        finally:
            conn.close()
        return TrackedKey(
            id=key_id,
            api_key_hash=api_key_hash,
            api_key_encrypted=api_key_encrypted,
            user_id=user_id,
            user_email=user_email,
            is_active=is_active,
            created_at=created_at
        )

    def get_tracked_key(self, tracked_key_id: int) -> Optional[TrackedKey]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                f"SELECT {_TRACKED_KEY_COLUMNS} FROM tracked_keys WHERE id = ?",
                (tracked_key_id,)
            ).fetchone()
            return _row_to_tracked_key(row) if row else None
        finally:
            conn.close()

    def find_by_fingerprint(self, api_key_hash: str) -> Optional[TrackedKey]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                f"SELECT {_TRACKED_KEY_COLUMNS} FROM tracked_keys WHERE api_key_hash = ?",
                (api_key_hash,)
            ).fetchone()
            return _row_to_tracked_key(row) if row else None
        finally:
            conn.close()

    def list_active_keys(self) -> List[TrackedKey]:
        """Get all active tracked keys, most recently checked first.

        Keys that were never checked sort last.
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(f"""
                SELECT {_TRACKED_KEY_COLUMNS}
                FROM tracked_keys
                WHERE is_active = 1
                ORDER BY last_checked_at IS NULL, last_checked_at DESC, id ASC
            """)
            return [_row_to_tracked_key(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def set_active(self, tracked_key_id: int, is_active: bool) -> bool:
        """Flip the active flag of one key.

        Returns:
            True if a row matched
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(
                "UPDATE tracked_keys SET is_active = ? WHERE id = ?",
                (1 if is_active else 0, tracked_key_id)
            )
            conn.commit()
            return cursor.rowcount > 0
        finally:
            conn.close()

    # -- balance history ------------------------------------------------

    def append_sample(
        self,
        tracked_key_id: int,
        balance: float,
        status: str,
        checked_at: Optional[datetime] = None
    ) -> BalanceSample:
        """Append a single sample to the balance history."""
        checked_at = checked_at or datetime.now()
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute("""
                INSERT INTO balance_history (tracked_key_id, balance, status, checked_at)
                VALUES (?, ?, ?, ?)
            """, (tracked_key_id, balance, status, checked_at.isoformat()))
            conn.commit()
            sample_id = cursor.lastrowid
        finally:
            conn.close()
        return BalanceSample(
            id=sample_id,
            tracked_key_id=tracked_key_id,
            balance=balance,
            status=status,
            checked_at=checked_at
        )

    def record_check(
        self,
        tracked_key_id: int,
        balance: float,
        status: str,
        checked_at: datetime,
        deactivate: bool = False
    ) -> BalanceSample:
        """Persist the outcome of one upstream check atomically.

        Appends the sample, stamps `last_checked_at` and optionally
        deactivates the key in a single transaction.

        Args:
            tracked_key_id: Key that was checked
            balance: Balance reported upstream
            status: Account status reported upstream
            checked_at: Time of the check
            deactivate: Also set the key inactive

        Returns:
            The stored sample
        """
        conn = get_connection(self.db_path)
        try:
            conn.execute("BEGIN TRANSACTION")
            cursor = conn.execute("""
                INSERT INTO balance_history (tracked_key_id, balance, status, checked_at)
                VALUES (?, ?, ?, ?)
            """, (tracked_key_id, balance, status, checked_at.isoformat()))
            sample_id = cursor.lastrowid
            if deactivate:
                conn.execute(
                    "UPDATE tracked_keys SET is_active = 0, last_checked_at = ? WHERE id = ?",
                    (checked_at.isoformat(), tracked_key_id)
                )
            else:
                conn.execute(
                    "UPDATE tracked_keys SET last_checked_at = ? WHERE id = ?",
                    (checked_at.isoformat(), tracked_key_id)
                )
            conn.commit()
        except Exception:
            conn.rollback()
            raise
        finally:
            conn.close()
        return BalanceSample(
            id=sample_id,
            tracked_key_id=tracked_key_id,
            balance=balance,
            status=status,
            checked_at=checked_at
        )

    def get_recent_samples(self, tracked_key_id: int, limit: int = 15) -> List[BalanceSample]:
        """Get the most recent samples of one key.

        Returns:
            Samples ordered newest first
        """
        conn = get_connection(self.db_path)
        try:
            cursor = conn.execute(f"""
                SELECT {_SAMPLE_COLUMNS}
                FROM balance_history
                WHERE tracked_key_id = ?
                ORDER BY checked_at DESC, id DESC
                LIMIT ?
            """, (tracked_key_id, limit))
            return [_row_to_sample(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def get_samples_since(
        self,
        tracked_key_id: int,
        since: datetime,
        until: Optional[datetime] = None
    ) -> List[BalanceSample]:
        """Get samples of one key in a time range.

        Args:
            tracked_key_id: Key to read
            since: Inclusive lower bound
            until: Optional inclusive upper bound

        Returns:
            Samples ordered oldest first
        """
        conn = get_connection(self.db_path)
        try:
            query = f"""
                SELECT {_SAMPLE_COLUMNS}
                FROM balance_history
                WHERE tracked_key_id = ? AND checked_at >= ?
            """
            params = [tracked_key_id, since.isoformat()]
            if until is not None:
                query += " AND checked_at <= ?"
                params.append(until.isoformat())
            query += " ORDER BY checked_at ASC, id ASC"
            cursor = conn.execute(query, params)
            return [_row_to_sample(row) for row in cursor.fetchall()]
        finally:
            conn.close()

    def get_first_sample(self, tracked_key_id: int) -> Optional[BalanceSample]:
        """Get the earliest sample, which defines the initial balance."""
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(f"""
                SELECT {_SAMPLE_COLUMNS}
                FROM balance_history
                WHERE tracked_key_id = ?
                ORDER BY checked_at ASC, id ASC
                LIMIT 1
            """, (tracked_key_id,)).fetchone()
            return _row_to_sample(row) if row else None
        finally:
            conn.close()

    def get_latest_sample(self, tracked_key_id: int) -> Optional[BalanceSample]:
        samples = self.get_recent_samples(tracked_key_id, limit=1)
        return samples[0] if samples else None

    # -- system status --------------------------------------------------

    def get_status_value(self, status_key: str) -> Optional[str]:
        conn = get_connection(self.db_path)
        try:
            row = conn.execute(
                "SELECT status_value FROM system_status WHERE status_key = ?",
                (status_key,)
            ).fetchone()
            return row[0] if row else None
        finally:
            conn.close()

    def set_status_value(self, status_key: str, value: str, updated_at: Optional[datetime] = None) -> None:
        """Upsert a singleton status marker."""
        updated_at = updated_at or datetime.now()
        conn = get_connection(self.db_path)
        try:
            conn.execute("""
                INSERT INTO system_status (status_key, status_value, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(status_key) DO UPDATE SET
                    status_value = excluded.status_value,
                    updated_at = excluded.updated_at
            """, (status_key, value, updated_at.isoformat()))
            conn.commit()
        finally:
            conn.close()

    def get_last_batch_check(self) -> Optional[datetime]:
        return _parse_time(self.get_status_value(LAST_BATCH_CHECK))

    def set_last_batch_check(self, when: datetime) -> None:
        self.set_status_value(LAST_BATCH_CHECK, when.isoformat(), updated_at=when)
