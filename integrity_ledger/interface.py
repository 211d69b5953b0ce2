"""
Integrity Ledger - External Interface

The operations collaborators (UI, certificate renderer, QR encoder, any
client) call. Callers fingerprint documents locally and pass the 32-byte
fingerprint; the ledger never sees document bytes here.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

from typing import Optional, Union

from .clock import Clock, SystemClock
from .config import LedgerConfig
from .fingerprint import Fingerprint
from .identity import InvalidSignature, Submission, verify_submission
from .logger import get_logger
from .records import Confirmation, FileStatus, Found, Record, Registration
from .registrar import Registrar
from .store import LedgerStore, SQLiteLedgerStore
from .verifier import Verifier


FingerprintLike = Union[Fingerprint, bytes, str]


def _confirmation(record: Record) -> Confirmation:
    return Confirmation(
        fingerprint=record.fingerprint.to_boundary(),
        issuer=record.issuer,
        issued_at=record.issued_at,
        expires_at=record.expires_at,
    )


class IntegrityLedger:
    """Registrar and Verifier wired to one store and one clock."""

    def __init__(
        self,
        store: LedgerStore,
        clock: Optional[Clock] = None,
        retry_attempts: int = 3,
        retry_delay: float = 0.0,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.registrar = Registrar(
            store,
            clock=self.clock,
            retry_attempts=retry_attempts,
            retry_delay=retry_delay,
        )
        self.verifier = Verifier(store, clock=self.clock)

    @classmethod
    def from_config(cls, config: LedgerConfig, clock: Optional[Clock] = None) -> "IntegrityLedger":
        """Build a SQLite-backed ledger from configuration."""
        is_valid, errors = config.validate()
        if not is_valid:
            raise ValueError("; ".join(errors))
        get_logger(level=config.log_level)
        clock = clock or SystemClock()
        store = SQLiteLedgerStore(config.db_path, clock=clock, timeout=config.timeout_seconds)
        return cls(
            store,
            clock=clock,
            retry_attempts=config.retry_attempts,
            retry_delay=config.retry_delay,
        )

    def register_file(
        self,
        fingerprint: FingerprintLike,
        purpose: str,
        expires_at: int,
        issuer: str,
    ) -> Confirmation:
        """
        Claim a fingerprint for an issuer.

        Raises a RegistrationError subclass on failure; DuplicateRegistration
        and RegistrationUnavailable are kept distinct.
        """
        record = self.registrar.register_fingerprint(fingerprint, purpose, expires_at, issuer)
        return _confirmation(record)

    def register_signed(self, submission: Submission, resubmit: bool = False) -> Confirmation:
        """
        Register a signed submission under the identity of its signing key.

        With resubmit=True, an earlier accepted attempt by the same key is
        treated as success.
        """
        issuer = verify_submission(submission)
        if issuer is None:
            raise InvalidSignature("submission signature is invalid")

        if resubmit:
            registration: Registration = self.registrar.resubmit(
                submission.fingerprint,
                submission.purpose,
                submission.expires_at,
                issuer,
            )
            return _confirmation(registration.record)
        return self.register_file(
            submission.fingerprint,
            submission.purpose,
            submission.expires_at,
            issuer,
        )

    def verify_file(self, fingerprint: FingerprintLike) -> FileStatus:
        """
        Flat lookup result: valid=False and zero fields when not found,
        valid=True when found whether or not it has expired.
        """
        return FileStatus.from_outcome(self.verifier.verify_fingerprint(fingerprint))

    def certificate_fields(self, fingerprint: FingerprintLike, now: Optional[int] = None) -> Optional[dict]:
        """
        The data a certificate renderer or QR encoder consumes.

        Returns None when the fingerprint was never registered.
        """
        outcome = self.verifier.verify_fingerprint(fingerprint)
        if not isinstance(outcome, Found):
            return None

        record = outcome.record
        expired = outcome.is_expired if now is None else record.is_expired_at(now)
        return {
            "hash": record.fingerprint.hex(),
            "issuer": record.issuer,
            "purpose": record.purpose,
            "issuedAt": record.issued_at,
            "expiresAt": record.expires_at,
            "valid": True,
            "expired": expired,
        }

    def close(self):
        self.store.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
