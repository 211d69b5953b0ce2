"""
Tests for the append-only ledger store.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import gc
import sqlite3
import threading
import weakref

import pytest

from integrity_ledger.canonical import EMPTY_STATE_HASH
from integrity_ledger.clock import ManualClock
from integrity_ledger.fingerprint import fingerprint
from integrity_ledger.records import MAX_TIMESTAMP, InsertResult, RecordDraft
from integrity_ledger.store import (
    InMemoryLedgerStore,
    SQLiteLedgerStore,
    StoreUnavailable,
)

from conftest import START


FP = fingerprint(b"hello", "contract-v1")
DRAFT = RecordDraft(issuer="0xalice", purpose="contract-v1", expires_at=0)


@pytest.fixture(params=["sqlite-memory", "sqlite-file", "in-memory"])
def any_store(request, clock, tmp_path):
    """Every store implementation, behind the same contract."""
    if request.param == "sqlite-memory":
        ledger_store = SQLiteLedgerStore(":memory:", clock=clock)
    elif request.param == "sqlite-file":
        ledger_store = SQLiteLedgerStore(tmp_path / "ledger.db", clock=clock)
    else:
        ledger_store = InMemoryLedgerStore(clock=clock)
    yield ledger_store
    ledger_store.close()


class TestStoreContract:
    """Behaviour shared by all store implementations."""

    def test_insert_accepted(self, any_store):
        result, record = any_store.insert_if_absent(FP, DRAFT)
        assert result == InsertResult.ACCEPTED
        assert record.fingerprint == FP
        assert record.issuer == "0xalice"
        assert record.purpose == "contract-v1"
        assert record.expires_at == 0

    def test_issued_at_from_store_clock(self, any_store, clock):
        clock.advance(42)
        _, record = any_store.insert_if_absent(FP, DRAFT)
        assert record.issued_at == START + 42

    def test_get_missing(self, any_store):
        assert any_store.get(FP) is None

    def test_get_after_insert(self, any_store):
        _, record = any_store.insert_if_absent(FP, DRAFT)
        assert any_store.get(FP) == record

    def test_get_accepts_hex(self, any_store):
        any_store.insert_if_absent(FP, DRAFT)
        assert any_store.get(FP.to_boundary()).fingerprint == FP

    def test_second_insert_already_exists(self, any_store):
        any_store.insert_if_absent(FP, DRAFT)
        result, record = any_store.insert_if_absent(FP, DRAFT)
        assert result == InsertResult.ALREADY_EXISTS
        assert record is None

    def test_first_writer_kept(self, any_store, clock):
        _, first = any_store.insert_if_absent(FP, DRAFT)
        clock.advance(10)
        any_store.insert_if_absent(FP, RecordDraft(issuer="0xmallory", purpose="contract-v1", expires_at=99))
        assert any_store.get(FP) == first

    def test_negative_expiry_rejected(self, any_store):
        with pytest.raises(ValueError):
            any_store.insert_if_absent(FP, RecordDraft(issuer="0xalice", purpose="p", expires_at=-1))
        assert any_store.count() == 0

    def test_expiry_beyond_integer_range_rejected(self, any_store):
        with pytest.raises(ValueError):
            any_store.insert_if_absent(FP, RecordDraft(issuer="0xalice", purpose="p", expires_at=MAX_TIMESTAMP + 1))
        assert any_store.count() == 0

    def test_largest_expiry_stored(self, any_store):
        _, record = any_store.insert_if_absent(FP, RecordDraft(issuer="0xalice", purpose="p", expires_at=MAX_TIMESTAMP))
        assert any_store.get(FP) == record
        assert record.expires_at == MAX_TIMESTAMP

    def test_count_and_order(self, any_store):
        fps = [fingerprint(b"doc", f"purpose-{i}") for i in range(3)]
        for fp in fps:
            any_store.insert_if_absent(fp, DRAFT)
        assert any_store.count() == 3
        assert [r.fingerprint for r in any_store.iter_records()] == fps

    def test_ledger_state(self, any_store):
        assert any_store.get_ledger_state() == {"record_count": 0, "state_hash": EMPTY_STATE_HASH}
        any_store.insert_if_absent(FP, DRAFT)
        state = any_store.get_ledger_state()
        assert state["record_count"] == 1
        assert state["state_hash"] != EMPTY_STATE_HASH

    def test_duplicate_does_not_change_state(self, any_store):
        any_store.insert_if_absent(FP, DRAFT)
        before = any_store.get_ledger_state()
        any_store.insert_if_absent(FP, DRAFT)
        assert any_store.get_ledger_state() == before

    def test_audit_clean(self, any_store):
        any_store.insert_if_absent(FP, DRAFT)
        assert any_store.audit() == (True, [])


class TestSQLiteAppendOnly:
    """The SQLite schema refuses updates and deletes."""

    def test_update_blocked(self, store):
        store.insert_if_absent(FP, DRAFT)
        with pytest.raises(sqlite3.DatabaseError):
            store._conn.execute("UPDATE records SET issuer = '0xmallory'")
        store._conn.rollback()
        assert store.get(FP).issuer == "0xalice"

    def test_delete_blocked(self, store):
        store.insert_if_absent(FP, DRAFT)
        with pytest.raises(sqlite3.DatabaseError):
            store._conn.execute("DELETE FROM records")
        store._conn.rollback()
        assert store.count() == 1

    def test_audit_detects_tampering(self, store):
        store.insert_if_absent(FP, DRAFT)
        other = fingerprint(b"other", "p")
        store.insert_if_absent(other, DRAFT)

        # Bypass the guard the way a direct file edit would
        conn = store._conn
        conn.execute("DROP TRIGGER prevent_record_update")
        conn.execute("UPDATE records SET expires_at = 1 WHERE fingerprint = ?", (FP.digest,))
        conn.commit()

        intact, tampered = store.audit()
        assert not intact
        assert tampered == [FP.hex()]


class TestSQLitePersistence:

    def test_reopen_sees_records(self, tmp_path, clock):
        path = tmp_path / "ledger.db"
        with SQLiteLedgerStore(path, clock=clock) as first:
            _, record = first.insert_if_absent(FP, DRAFT)

        with SQLiteLedgerStore(path, clock=clock) as second:
            assert second.get(FP) == record
            result, _ = second.insert_if_absent(FP, DRAFT)
            assert result == InsertResult.ALREADY_EXISTS


class TestSQLiteUnavailable:
    """Backend failures are reported as StoreUnavailable, never as duplicates."""

    def test_unopenable_path(self, tmp_path):
        with pytest.raises(StoreUnavailable):
            SQLiteLedgerStore(tmp_path / "missing-dir" / "ledger.db")

    def test_locked_database(self, tmp_path, clock):
        path = tmp_path / "ledger.db"
        ledger_store = SQLiteLedgerStore(path, clock=clock, timeout=0.1)

        blocker = sqlite3.connect(path, isolation_level=None)
        blocker.execute("BEGIN EXCLUSIVE")
        try:
            with pytest.raises(StoreUnavailable):
                ledger_store.insert_if_absent(FP, DRAFT)
        finally:
            blocker.execute("ROLLBACK")
            blocker.close()

        assert ledger_store.get(FP) is None
        result, _ = ledger_store.insert_if_absent(FP, DRAFT)
        assert result == InsertResult.ACCEPTED
        ledger_store.close()


class TrackedConnection(sqlite3.Connection):
    live = weakref.WeakSet()

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        TrackedConnection.live.add(self)


class TrackedStore(SQLiteLedgerStore):
    connection_factory = TrackedConnection


class TestSQLiteConnections:
    """Per-thread connections do not outlive their threads."""

    @pytest.fixture(autouse=True)
    def fresh_tracking(self):
        TrackedConnection.live = weakref.WeakSet()

    def test_finished_threads_release_connections(self, tmp_path, clock):
        ledger_store = TrackedStore(tmp_path / "ledger.db", clock=clock)
        ledger_store.insert_if_absent(FP, DRAFT)

        for _ in range(50):
            thread = threading.Thread(target=ledger_store.get, args=(FP,))
            thread.start()
            thread.join()

        gc.collect()
        assert len(TrackedConnection.live) <= 2
        ledger_store.close()

    def test_close_releases_own_connection(self, tmp_path, clock):
        ledger_store = TrackedStore(tmp_path / "ledger.db", clock=clock)
        ledger_store.get(FP)
        ledger_store.close()
        gc.collect()
        assert len(TrackedConnection.live) == 0


class TestConcurrentInsert:
    """Exactly one racer wins a fingerprint."""

    THREADS = 12

    def _race(self, ledger_store, drafts_for):
        barrier = threading.Barrier(self.THREADS)
        results = [None] * self.THREADS

        def worker(index):
            fp, draft = drafts_for(index)
            barrier.wait()
            results[index] = ledger_store.insert_if_absent(fp, draft)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(self.THREADS)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return results

    @pytest.mark.parametrize("kind", ["sqlite-file", "sqlite-memory", "in-memory"])
    def test_single_winner(self, kind, tmp_path):
        clock = ManualClock(START)
        if kind == "sqlite-file":
            ledger_store = SQLiteLedgerStore(tmp_path / "race.db", clock=clock, timeout=30)
        elif kind == "sqlite-memory":
            ledger_store = SQLiteLedgerStore(":memory:", clock=clock)
        else:
            ledger_store = InMemoryLedgerStore(clock=clock)

        results = self._race(
            ledger_store,
            lambda i: (FP, RecordDraft(issuer=f"0xissuer{i}", purpose="contract-v1")),
        )

        winners = [record for result, record in results if result == InsertResult.ACCEPTED]
        assert len(winners) == 1
        assert sum(1 for result, _ in results if result == InsertResult.ALREADY_EXISTS) == self.THREADS - 1
        assert ledger_store.get(FP) == winners[0]
        ledger_store.close()

    def test_identical_drafts_single_winner(self, tmp_path):
        ledger_store = SQLiteLedgerStore(tmp_path / "race.db", clock=ManualClock(START), timeout=30)
        results = self._race(ledger_store, lambda i: (FP, DRAFT))
        assert [result for result, _ in results].count(InsertResult.ACCEPTED) == 1
        ledger_store.close()

    def test_unrelated_fingerprints_all_accepted(self, tmp_path):
        ledger_store = SQLiteLedgerStore(tmp_path / "race.db", clock=ManualClock(START), timeout=30)
        results = self._race(
            ledger_store,
            lambda i: (fingerprint(b"doc", f"purpose-{i}"), DRAFT),
        )
        assert all(result == InsertResult.ACCEPTED for result, _ in results)
        assert ledger_store.count() == self.THREADS
        ledger_store.close()
