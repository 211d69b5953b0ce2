"""
Integrity Ledger - Append-Only Record Store

One record per fingerprint, ever. The store offers an atomic
insert-if-absent and a point lookup; nothing is updated or deleted.

The SQLite store relies on a UNIQUE fingerprint column for first-writer-wins
and on triggers that abort any UPDATE or DELETE.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import sqlite3
import threading
from contextlib import contextmanager, nullcontext
from pathlib import Path
from typing import Iterator, Optional, Union

from .canonical import compute_hash, compute_state_hash
from .clock import Clock, SystemClock
from .fingerprint import Fingerprint
from .logger import get_logger, log_fields
from .records import MAX_TIMESTAMP, InsertResult, Record, RecordDraft


log = get_logger(__name__)

MEMORY_PATH = ":memory:"

FingerprintLike = Union[Fingerprint, bytes, str]


class LedgerError(Exception):
    """Base exception for ledger store operations."""
    pass


class StoreUnavailable(LedgerError):
    """The backend could not be reached or did not answer in time. Retryable."""
    pass


def _validate_draft(draft: RecordDraft):
    if not isinstance(draft, RecordDraft):
        raise TypeError(f"Expected RecordDraft, got {type(draft).__name__}")
    if not isinstance(draft.expires_at, int) or not 0 <= draft.expires_at <= MAX_TIMESTAMP:
        raise ValueError(
            f"expires_at must be an int between 0 and {MAX_TIMESTAMP}, got {draft.expires_at!r}"
        )


class LedgerStore:
    """
    Interface of the single shared authority.

    insert_if_absent() must be atomic against every concurrent caller, and a
    get() issued after an ACCEPTED insert must observe the record.
    """

    def insert_if_absent(
        self,
        fingerprint: FingerprintLike,
        draft: RecordDraft,
    ) -> tuple[InsertResult, Optional[Record]]:
        raise NotImplementedError

    def get(self, fingerprint: FingerprintLike) -> Optional[Record]:
        raise NotImplementedError

    def iter_records(self) -> Iterator[Record]:
        """All records in acceptance order."""
        raise NotImplementedError

    def count(self) -> int:
        raise NotImplementedError

    def get_ledger_state(self) -> dict:
        """Record count and state hash, for external anchoring."""
        raise NotImplementedError

    def audit(self) -> tuple[bool, list[str]]:
        """
        Recompute every stored record hash.

        Returns (all_intact, list_of_tampered_fingerprints).
        """
        raise NotImplementedError

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()


class SQLiteLedgerStore(LedgerStore):
    """
    SQLite-backed ledger.

    A file database gives each thread its own connection and lets SQLite
    serialize writers. ":memory:" uses one connection shared behind a lock,
    since every new in-memory connection would be a separate database.

    Thread connections are held only by the thread-local, so they are
    released when their thread exits.
    """

    connection_factory = sqlite3.Connection

    def __init__(
        self,
        db_path: Union[str, Path] = MEMORY_PATH,
        clock: Optional[Clock] = None,
        timeout: float = 5.0,
    ):
        self.db_path = str(db_path)
        self.timeout = timeout
        self._clock = clock or SystemClock()
        self._local = threading.local()
        self._memory = self.db_path == MEMORY_PATH
        self._shared: Optional[sqlite3.Connection] = None
        self._shared_lock = threading.RLock()

        try:
            self._init_db()
        except sqlite3.Error as exc:
            raise StoreUnavailable(f"Cannot open ledger at {self.db_path}: {exc}") from exc

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.timeout,
            isolation_level="IMMEDIATE",
            check_same_thread=False,
            factory=self.connection_factory,
        )
        conn.row_factory = sqlite3.Row
        return conn

    @property
    def _conn(self) -> sqlite3.Connection:
        """Connection for the calling thread."""
        if self._memory:
            if self._shared is None:
                self._shared = self._connect()
            return self._shared
        if not hasattr(self._local, "conn"):
            self._local.conn = self._connect()
        return self._local.conn

    def _guard(self):
        return self._shared_lock if self._memory else nullcontext()

    def _init_db(self):
        """Create the schema with append-only constraints."""
        conn = self._conn
        if not self._memory:
            conn.execute("PRAGMA journal_mode=WAL")
        with conn:
            conn.executescript("""
                CREATE TABLE IF NOT EXISTS records (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    fingerprint BLOB NOT NULL UNIQUE CHECK (length(fingerprint) = 32),
                    issuer TEXT NOT NULL,
                    purpose TEXT NOT NULL,
                    issued_at INTEGER NOT NULL,
                    expires_at INTEGER NOT NULL CHECK (expires_at >= 0),
                    record_hash TEXT NOT NULL
                );

                CREATE TRIGGER IF NOT EXISTS prevent_record_update
                BEFORE UPDATE ON records
                BEGIN
                    SELECT RAISE(ABORT, 'UPDATE not permitted on append-only ledger');
                END;

                CREATE TRIGGER IF NOT EXISTS prevent_record_delete
                BEFORE DELETE ON records
                BEGIN
                    SELECT RAISE(ABORT, 'DELETE not permitted on append-only ledger');
                END;
            """)

    @contextmanager
    def _transaction(self):
        """Context manager for database transactions."""
        conn = self._conn
        try:
            yield conn
            conn.commit()
        except Exception:
            conn.rollback()
            raise

    def insert_if_absent(
        self,
        fingerprint: FingerprintLike,
        draft: RecordDraft,
    ) -> tuple[InsertResult, Optional[Record]]:
        fingerprint = Fingerprint.coerce(fingerprint)
        _validate_draft(draft)

        with self._guard():
            record = Record.from_draft(fingerprint, draft, self._clock.now())
            record_hash = compute_hash(record)
            try:
                with self._transaction() as conn:
                    conn.execute(
                        """
                        INSERT INTO records (
                            fingerprint, issuer, purpose,
                            issued_at, expires_at, record_hash
                        ) VALUES (?, ?, ?, ?, ?, ?)
                        """,
                        (
                            fingerprint.digest,
                            record.issuer,
                            record.purpose,
                            record.issued_at,
                            record.expires_at,
                            record_hash,
                        ),
                    )
            except sqlite3.IntegrityError as exc:
                if "UNIQUE" not in str(exc):
                    raise LedgerError(f"Rejected by ledger constraints: {exc}") from exc
                log.debug(
                    "insert rejected, fingerprint exists",
                    extra=log_fields(fingerprint=fingerprint.hex()),
                )
                return InsertResult.ALREADY_EXISTS, None
            except sqlite3.Error as exc:
                log.warning(
                    "ledger insert failed",
                    extra=log_fields(fingerprint=fingerprint.hex(), error=str(exc)),
                )
                raise StoreUnavailable(str(exc)) from exc

        return InsertResult.ACCEPTED, record

    def get(self, fingerprint: FingerprintLike) -> Optional[Record]:
        fingerprint = Fingerprint.coerce(fingerprint)
        with self._guard():
            try:
                row = self._conn.execute(
                    "SELECT * FROM records WHERE fingerprint = ?",
                    (fingerprint.digest,),
                ).fetchone()
            except sqlite3.Error as exc:
                raise StoreUnavailable(str(exc)) from exc
        if row is None:
            return None
        return self._row_to_record(row)

    def _rows(self) -> list:
        with self._guard():
            try:
                return self._conn.execute(
                    "SELECT * FROM records ORDER BY seq"
                ).fetchall()
            except sqlite3.Error as exc:
                raise StoreUnavailable(str(exc)) from exc

    def iter_records(self) -> Iterator[Record]:
        for row in self._rows():
            yield self._row_to_record(row)

    def count(self) -> int:
        with self._guard():
            try:
                row = self._conn.execute("SELECT COUNT(*) AS n FROM records").fetchone()
            except sqlite3.Error as exc:
                raise StoreUnavailable(str(exc)) from exc
        return row["n"]

    def get_ledger_state(self) -> dict:
        rows = self._rows()
        return {
            "record_count": len(rows),
            "state_hash": compute_state_hash(row["record_hash"] for row in rows),
        }

    def audit(self) -> tuple[bool, list[str]]:
        tampered = []
        for row in self._rows():
            record = self._row_to_record(row)
            if compute_hash(record) != row["record_hash"]:
                tampered.append(record.fingerprint.hex())
        return (len(tampered) == 0, tampered)

    def close(self):
        """
        Close the shared connection and the calling thread's connection.

        Connections still held by other live threads are dropped with the
        thread-local and closed when collected.
        """
        if self._shared is not None:
            self._shared.close()
            self._shared = None
        conn = getattr(self._local, "conn", None)
        if conn is not None:
            conn.close()
        self._local = threading.local()

    def _row_to_record(self, row) -> Record:
        """Convert a database row to a Record."""
        return Record(
            fingerprint=Fingerprint(bytes(row["fingerprint"])),
            issuer=row["issuer"],
            purpose=row["purpose"],
            issued_at=row["issued_at"],
            expires_at=row["expires_at"],
        )


class InMemoryLedgerStore(LedgerStore):
    """
    Process-local ledger for tests and embedding.

    Only atomic within one process; use SQLiteLedgerStore across processes.
    """

    def __init__(self, clock: Optional[Clock] = None):
        self._clock = clock or SystemClock()
        self._records: dict[bytes, tuple[Record, str]] = {}
        self._order: list[bytes] = []
        self._lock = threading.Lock()

    def insert_if_absent(
        self,
        fingerprint: FingerprintLike,
        draft: RecordDraft,
    ) -> tuple[InsertResult, Optional[Record]]:
        fingerprint = Fingerprint.coerce(fingerprint)
        _validate_draft(draft)

        with self._lock:
            if fingerprint.digest in self._records:
                return InsertResult.ALREADY_EXISTS, None
            record = Record.from_draft(fingerprint, draft, self._clock.now())
            self._records[fingerprint.digest] = (record, compute_hash(record))
            self._order.append(fingerprint.digest)

        return InsertResult.ACCEPTED, record

    def get(self, fingerprint: FingerprintLike) -> Optional[Record]:
        fingerprint = Fingerprint.coerce(fingerprint)
        with self._lock:
            entry = self._records.get(fingerprint.digest)
        return entry[0] if entry else None

    def _entries(self) -> list[tuple[Record, str]]:
        with self._lock:
            return [self._records[key] for key in self._order]

    def iter_records(self) -> Iterator[Record]:
        for record, _ in self._entries():
            yield record

    def count(self) -> int:
        with self._lock:
            return len(self._order)

    def get_ledger_state(self) -> dict:
        entries = self._entries()
        return {
            "record_count": len(entries),
            "state_hash": compute_state_hash(record_hash for _, record_hash in entries),
        }

    def audit(self) -> tuple[bool, list[str]]:
        tampered = [
            record.fingerprint.hex()
            for record, record_hash in self._entries()
            if compute_hash(record) != record_hash
        ]
        return (len(tampered) == 0, tampered)
