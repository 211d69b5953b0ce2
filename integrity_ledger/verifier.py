"""
Integrity Ledger - Verification

Checks whether a (document, purpose) pair matches an issued record.
Verification is:
- Exact: the same fingerprint as registration, or nothing
- Read-only: never writes to the store
- Clock-relative: expiry is evaluated against the current time on every call

SPDX-License-Identifier: AGPL-3.0-or-later
"""

from typing import Optional, Union

from .clock import Clock, SystemClock
from .fingerprint import Fingerprint, fingerprint
from .logger import get_logger, log_fields
from .records import Found, NotFound, Record, VerificationOutcome
from .store import LedgerStore, StoreUnavailable


log = get_logger(__name__)


class VerificationUnavailable(Exception):
    """The ledger store could not be reached. The lookup can be retried."""

    def __init__(self, message: str, fingerprint: Optional[Fingerprint] = None):
        super().__init__(message)
        self.fingerprint = fingerprint


def is_expired(record: Record, now: int) -> bool:
    """A record with expires_at=0 never expires; otherwise now > expires_at."""
    return record.is_expired_at(now)


class Verifier:
    """Orchestrates the read path: Fingerprinter -> Verifier -> Ledger Store."""

    def __init__(self, store: LedgerStore, clock: Optional[Clock] = None):
        self.store = store
        self.clock = clock or SystemClock()

    def verify(self, document_bytes: bytes, purpose: str) -> VerificationOutcome:
        """Fingerprint the document exactly as registration does and look it up."""
        return self.verify_fingerprint(fingerprint(document_bytes, purpose))

    def verify_fingerprint(
        self,
        fingerprint: Union[Fingerprint, bytes, str],
    ) -> VerificationOutcome:
        fingerprint = Fingerprint.coerce(fingerprint)

        try:
            record = self.store.get(fingerprint)
        except StoreUnavailable as exc:
            log.warning(
                "verification unavailable",
                extra=log_fields(fingerprint=fingerprint.hex(), error=str(exc)),
            )
            raise VerificationUnavailable(str(exc), fingerprint) from exc

        if record is None:
            log.debug("not found", extra=log_fields(fingerprint=fingerprint.hex()))
            return NotFound(fingerprint)

        expired = is_expired(record, self.clock.now())
        log.debug(
            "found",
            extra=log_fields(fingerprint=fingerprint.hex(), expired=expired),
        )
        return Found(record=record, is_expired=expired)
