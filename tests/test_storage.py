"""
Unit tests for storage layer.

Tests schema creation, tracked key lifecycle, sample queries and
system status markers.
"""

import os
import shutil
import sqlite3
import tempfile
from datetime import datetime, timedelta

import pytest

from balance_tracker.storage.db import get_connection
from balance_tracker.storage.models import LAST_BATCH_CHECK, BalanceSample
from balance_tracker.storage.repository import BalanceRepository, initialize_schema

T0 = datetime(2024, 1, 1, 12, 0, 0)


class TestStorageSchema:
    """Test database schema creation and structure."""

    def test_schema_creation(self):
        """Verify tables are created correctly."""
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)

            conn = get_connection(db_path)
            try:
                cursor = conn.execute("""
                    SELECT name FROM sqlite_master
                    WHERE type='table' AND name IN ('tracked_keys', 'balance_history', 'system_status')
                    ORDER BY name
                """)
                tables = [row[0] for row in cursor.fetchall()]
                assert tables == ["balance_history", "system_status", "tracked_keys"]

                cursor = conn.execute("PRAGMA table_info(balance_history)")
                column_names = [col[1] for col in cursor.fetchall()]
                assert column_names == ['id', 'tracked_key_id', 'balance', 'status', 'checked_at']
            finally:
                conn.close()

    def test_schema_creation_is_idempotent(self):
        with tempfile.TemporaryDirectory() as temp_dir:
            db_path = os.path.join(temp_dir, "test.db")
            initialize_schema(db_path)
            initialize_schema(db_path)


class RepositoryTestCase:
    """Shared temporary database setup."""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.repo = BalanceRepository(self.db_path)

    def teardown_method(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def create_key(self, fingerprint: str = "hash-1", is_active: bool = True):
        return self.repo.create_tracked_key(
            api_key_hash=fingerprint,
            api_key_encrypted="cipher-" + fingerprint,
            is_active=is_active,
            user_id="u1",
            user_email="u1@example.com",
            created_at=T0
        )


class TestTrackedKeys(RepositoryTestCase):
    """Tracked key persistence."""

    def test_create_and_find(self):
        created = self.create_key()
        found = self.repo.find_by_fingerprint("hash-1")
        assert found == created
        assert found.is_active is True
        assert found.last_checked_at is None
        assert self.repo.get_tracked_key(created.id) == created

    def test_find_unknown_returns_none(self):
        assert self.repo.find_by_fingerprint("missing") is None
        assert self.repo.get_tracked_key(999) is None

    def test_fingerprint_is_unique(self):
        self.create_key()
        with pytest.raises(sqlite3.IntegrityError):
            self.create_key()

    def test_set_active(self):
        key = self.create_key()
        assert self.repo.set_active(key.id, False) is True
        assert self.repo.get_tracked_key(key.id).is_active is False
        assert self.repo.set_active(999, False) is False

    def test_list_active_keys_order(self):
        never = self.create_key("never")
        older = self.create_key("older")
        newer = self.create_key("newer")
        inactive = self.create_key("inactive", is_active=False)
        self.repo.record_check(older.id, 10.0, "active", T0)
        self.repo.record_check(newer.id, 10.0, "active", T0 + timedelta(minutes=5))

        ids = [k.id for k in self.repo.list_active_keys()]
        assert ids == [newer.id, older.id, never.id]
        assert inactive.id not in ids


class TestBalanceHistory(RepositoryTestCase):
    """Append-only sample ledger."""

    def test_append_and_read_latest(self):
        key = self.create_key()
        stored = self.repo.append_sample(key.id, 12.5, "active", T0)
        assert isinstance(stored, BalanceSample)
        assert stored.id is not None
        assert self.repo.get_latest_sample(key.id) == stored

    def test_recent_samples_newest_first_with_limit(self):
        key = self.create_key()
        for i in range(20):
            self.repo.append_sample(key.id, 100.0 - i, "active", T0 + timedelta(minutes=i))

        recent = self.repo.get_recent_samples(key.id, limit=15)
        assert len(recent) == 15
        assert recent[0].balance == 81.0
        assert recent[-1].balance == 95.0

    def test_same_timestamp_ordered_by_id(self):
        key = self.create_key()
        first = self.repo.append_sample(key.id, 10.0, "active", T0)
        second = self.repo.append_sample(key.id, 9.0, "active", T0)
        assert [s.id for s in self.repo.get_recent_samples(key.id)] == [second.id, first.id]
        assert self.repo.get_first_sample(key.id).id == first.id

    def test_samples_since_oldest_first(self):
        key = self.create_key()
        for i in range(5):
            self.repo.append_sample(key.id, float(i), "active", T0 + timedelta(minutes=10 * i))

        samples = self.repo.get_samples_since(key.id, T0 + timedelta(minutes=15))
        assert [s.balance for s in samples] == [2.0, 3.0, 4.0]

        bounded = self.repo.get_samples_since(
            key.id,
            T0 + timedelta(minutes=15),
            until=T0 + timedelta(minutes=30)
        )
        assert [s.balance for s in bounded] == [2.0, 3.0]

    def test_samples_are_per_key(self):
        a = self.create_key("a")
        b = self.create_key("b")
        self.repo.append_sample(a.id, 1.0, "active", T0)
        self.repo.append_sample(b.id, 2.0, "active", T0)
        assert [s.balance for s in self.repo.get_recent_samples(a.id)] == [1.0]

    def test_first_sample_defines_initial_balance(self):
        key = self.create_key()
        self.repo.append_sample(key.id, 50.0, "active", T0)
        self.repo.append_sample(key.id, 40.0, "active", T0 + timedelta(minutes=1))
        assert self.repo.get_first_sample(key.id).balance == 50.0

    def test_no_samples(self):
        key = self.create_key()
        assert self.repo.get_latest_sample(key.id) is None
        assert self.repo.get_first_sample(key.id) is None
        assert self.repo.get_recent_samples(key.id) == []

    def test_sample_requires_existing_key(self):
        with pytest.raises(sqlite3.IntegrityError):
            self.repo.append_sample(999, 1.0, "active", T0)


class TestRecordCheck(RepositoryTestCase):
    """Atomic persistence of a check result."""

    def test_record_check_updates_last_checked(self):
        key = self.create_key()
        self.repo.record_check(key.id, 50.0, "active", T0)

        stored = self.repo.get_tracked_key(key.id)
        assert stored.last_checked_at == T0
        assert stored.is_active is True
        assert self.repo.get_latest_sample(key.id).balance == 50.0

    def test_record_check_can_deactivate(self):
        key = self.create_key()
        self.repo.record_check(key.id, 0.0, "active", T0, deactivate=True)

        stored = self.repo.get_tracked_key(key.id)
        assert stored.is_active is False
        assert stored.last_checked_at == T0

    def test_failed_record_check_rolls_back(self):
        with pytest.raises(sqlite3.IntegrityError):
            self.repo.record_check(999, 1.0, "active", T0)

        conn = get_connection(self.db_path)
        try:
            count = conn.execute("SELECT COUNT(*) FROM balance_history").fetchone()[0]
        finally:
            conn.close()
        assert count == 0


class TestSystemStatus(RepositoryTestCase):
    """Singleton status markers."""

    def test_missing_marker(self):
        assert self.repo.get_status_value(LAST_BATCH_CHECK) is None
        assert self.repo.get_last_batch_check() is None

    def test_upsert_marker(self):
        self.repo.set_last_batch_check(T0)
        self.repo.set_last_batch_check(T0 + timedelta(minutes=1))
        assert self.repo.get_last_batch_check() == T0 + timedelta(minutes=1)

        conn = get_connection(self.db_path)
        try:
            count = conn.execute("SELECT COUNT(*) FROM system_status").fetchone()[0]
        finally:
            conn.close()
        assert count == 1
