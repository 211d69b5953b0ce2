"""
Integrity Ledger - Reference Implementation

Binds a fingerprint of a document and its declared purpose to an
immutable, timestamped, optionally-expiring record, and verifies
(document, purpose) pairs against it later:

- SHA-256 fingerprints over document bytes and purpose
- Append-only SQLite ledger with first-writer-wins registration
- Registration with distinct duplicate / unavailable outcomes
- Clock-relative expiry evaluated at verification time
- Ed25519-signed submissions for issuer identity

SPDX-License-Identifier: AGPL-3.0-or-later
"""

__version__ = "0.1.0"

from .fingerprint import Fingerprint, fingerprint, fingerprint_file
from .records import (
    Record,
    RecordDraft,
    NotFound,
    Found,
    FileStatus,
    Confirmation,
    InsertResult,
)
from .store import SQLiteLedgerStore, InMemoryLedgerStore, StoreUnavailable
from .registrar import (
    Registrar,
    RegistrationError,
    InvalidPurpose,
    DuplicateRegistration,
    RegistrationUnavailable,
    RegistrationRejected,
)
from .verifier import Verifier, VerificationUnavailable
from .interface import IntegrityLedger

__all__ = [
    "Fingerprint",
    "fingerprint",
    "fingerprint_file",
    "Record",
    "RecordDraft",
    "NotFound",
    "Found",
    "FileStatus",
    "Confirmation",
    "InsertResult",
    "SQLiteLedgerStore",
    "InMemoryLedgerStore",
    "StoreUnavailable",
    "Registrar",
    "RegistrationError",
    "InvalidPurpose",
    "DuplicateRegistration",
    "RegistrationUnavailable",
    "RegistrationRejected",
    "Verifier",
    "VerificationUnavailable",
    "IntegrityLedger",
]
