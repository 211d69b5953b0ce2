"""
Integrity Ledger - Record Types

Implements the ledger Record, the draft submitted for registration, and the
closed verification outcome (NotFound | Found).

SPDX-License-Identifier: AGPL-3.0-or-later
"""

from dataclasses import dataclass
from enum import Enum
from typing import Optional, Union

from .fingerprint import Fingerprint


NEVER_EXPIRES = 0

# Largest timestamp a SQLite INTEGER column can hold
MAX_TIMESTAMP = 2**63 - 1


class InsertResult(str, Enum):
    """Outcome of an atomic insert-if-absent."""
    ACCEPTED = "accepted"
    ALREADY_EXISTS = "already_exists"


class RegistrationStatus(str, Enum):
    """How a registration was confirmed."""
    ACCEPTED = "accepted"
    ALREADY_REGISTERED = "already_registered"


@dataclass(frozen=True)
class RecordDraft:
    """
    What a caller proposes for a fingerprint.

    issued_at is absent; the store stamps it on acceptance.
    """
    issuer: str
    purpose: str
    expires_at: int = NEVER_EXPIRES


@dataclass(frozen=True)
class Record:
    """An accepted, immutable ledger record."""
    fingerprint: Fingerprint
    issuer: str
    purpose: str
    issued_at: int  # unix seconds, assigned by the store
    expires_at: int  # unix seconds, 0 = never

    @classmethod
    def from_draft(cls, fingerprint: Fingerprint, draft: RecordDraft, issued_at: int) -> "Record":
        return cls(
            fingerprint=fingerprint,
            issuer=draft.issuer,
            purpose=draft.purpose,
            issued_at=issued_at,
            expires_at=draft.expires_at,
        )

    @property
    def never_expires(self) -> bool:
        return self.expires_at == NEVER_EXPIRES

    def is_expired_at(self, now: int) -> bool:
        """True once now is strictly past a non-zero expiry."""
        return not self.never_expires and now > self.expires_at

    def to_dict(self) -> dict:
        """Plain mapping used for canonical hashing and JSON output."""
        return {
            "fingerprint": self.fingerprint.hex(),
            "issuer": self.issuer,
            "purpose": self.purpose,
            "issued_at": self.issued_at,
            "expires_at": self.expires_at,
        }


@dataclass(frozen=True)
class Registration:
    """Result of a confirmed registration."""
    record: Record
    status: RegistrationStatus = RegistrationStatus.ACCEPTED

    @property
    def newly_accepted(self) -> bool:
        return self.status == RegistrationStatus.ACCEPTED


@dataclass(frozen=True)
class NotFound:
    """The fingerprint was never registered."""
    fingerprint: Fingerprint

    found = False


@dataclass(frozen=True)
class Found:
    """
    A previously issued record.

    is_expired is computed at query time; an expired record is still a
    valid historical registration.
    """
    record: Record
    is_expired: bool

    found = True


VerificationOutcome = Union[NotFound, Found]


@dataclass(frozen=True)
class Confirmation:
    """Acknowledgement returned by register_file."""
    fingerprint: str  # 0x-prefixed hex
    issuer: str
    issued_at: int
    expires_at: int


@dataclass(frozen=True)
class FileStatus:
    """
    Flat verification view for external collaborators.

    valid=False with zero/empty fields means not found. valid=True means
    found, regardless of expiry; callers compare expires_at with their clock.
    """
    valid: bool
    issuer: str
    purpose: str
    issued_at: int
    expires_at: int

    @classmethod
    def not_found(cls) -> "FileStatus":
        return cls(valid=False, issuer="", purpose="", issued_at=0, expires_at=0)

    @classmethod
    def from_outcome(cls, outcome: VerificationOutcome) -> "FileStatus":
        if isinstance(outcome, NotFound):
            return cls.not_found()
        record = outcome.record
        return cls(
            valid=True,
            issuer=record.issuer,
            purpose=record.purpose,
            issued_at=record.issued_at,
            expires_at=record.expires_at,
        )

    def as_tuple(self) -> tuple[bool, str, str, int, int]:
        return (self.valid, self.issuer, self.purpose, self.issued_at, self.expires_at)


def outcome_record(outcome: VerificationOutcome) -> Optional[Record]:
    """Return the record of a Found outcome, None for NotFound."""
    return outcome.record if isinstance(outcome, Found) else None
