"""
Integrity Ledger - Registration

Validates a registration request, fingerprints it, and claims the
fingerprint through the store's atomic insert-if-absent.

Outcomes:
- accepted: a new Record
- DuplicateRegistration: someone already owns the fingerprint; never retried
- RegistrationUnavailable: the store failed; safe to retry
- RegistrationRejected: the store refused the row outright; not retried

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import time
from typing import Optional, Union

from .clock import Clock, SystemClock
from .fingerprint import Fingerprint, fingerprint, normalize_purpose
from .logger import get_logger, log_fields
from .records import (
    InsertResult,
    Record,
    RecordDraft,
    Registration,
    RegistrationStatus,
    MAX_TIMESTAMP,
    NEVER_EXPIRES,
)
from .store import LedgerError, LedgerStore, StoreUnavailable


log = get_logger(__name__)


class RegistrationError(Exception):
    """Base exception for registration failures."""
    code = "REGISTRATION_ERROR"
    retryable = False

    def __init__(self, message: str, fingerprint: Optional[Fingerprint] = None):
        super().__init__(message)
        self.fingerprint = fingerprint


class InvalidPurpose(RegistrationError):
    """Purpose is empty or whitespace only."""
    code = "INVALID_PURPOSE"


class InvalidExpiry(RegistrationError):
    """Requested validity is negative, not an integer, or already in the past."""
    code = "INVALID_EXPIRY"


class InvalidIssuer(RegistrationError):
    """Issuer identity is missing."""
    code = "INVALID_ISSUER"


class ExpiryInPast(InvalidExpiry):
    """The absolute expiry has already passed."""


class DuplicateRegistration(RegistrationError):
    """The fingerprint already has an owner."""
    code = "DUPLICATE"


class RegistrationUnavailable(RegistrationError):
    """The ledger store could not be reached."""
    code = "UNAVAILABLE"
    retryable = True


class RegistrationRejected(RegistrationError):
    """The store refused the record for a reason other than a duplicate."""
    code = "REJECTED"


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class Registrar:
    """
    Orchestrates the write path: Fingerprinter -> Registrar -> Ledger Store.

    Input is validated before any I/O; store failures keep their kind so
    callers can pick the right retry behaviour.
    """

    def __init__(
        self,
        store: LedgerStore,
        clock: Optional[Clock] = None,
        retry_attempts: int = 3,
        retry_delay: float = 0.0,
    ):
        if retry_attempts < 1:
            raise ValueError("retry_attempts must be at least 1")
        self.store = store
        self.clock = clock or SystemClock()
        self.retry_attempts = retry_attempts
        self.retry_delay = retry_delay

    def register(
        self,
        document_bytes: bytes,
        purpose: str,
        requested_validity_seconds: int = 0,
        issuer: str = "",
    ) -> Record:
        """
        Register a document under a purpose.

        A validity of 0 means the record never expires; otherwise it
        expires requested_validity_seconds after now.
        """
        purpose = self._check_purpose(purpose)
        issuer = self._check_issuer(issuer)
        if not _is_int(requested_validity_seconds) or requested_validity_seconds < 0:
            raise InvalidExpiry(
                f"requested validity must be a non-negative integer, got {requested_validity_seconds!r}"
            )

        if requested_validity_seconds == 0:
            expires_at = NEVER_EXPIRES
        else:
            expires_at = self.clock.now() + requested_validity_seconds
            if expires_at > MAX_TIMESTAMP:
                raise InvalidExpiry(
                    f"requested validity {requested_validity_seconds} exceeds the largest storable expiry"
                )

        return self._claim(
            fingerprint(document_bytes, purpose),
            RecordDraft(issuer=issuer, purpose=purpose, expires_at=expires_at),
        )

    def register_fingerprint(
        self,
        fingerprint: Union[Fingerprint, bytes, str],
        purpose: str,
        expires_at: int,
        issuer: str,
    ) -> Record:
        """
        Register a fingerprint the caller computed locally.

        expires_at is absolute unix seconds, 0 for never. An expiry already
        in the past is rejected.
        """
        purpose = self._check_purpose(purpose)
        issuer = self._check_issuer(issuer)
        try:
            fingerprint = Fingerprint.coerce(fingerprint)
        except (TypeError, ValueError) as exc:
            raise RegistrationError(f"Invalid fingerprint: {exc}") from exc
        if not _is_int(expires_at) or not 0 <= expires_at <= MAX_TIMESTAMP:
            raise InvalidExpiry(
                f"expires_at must be an integer between 0 and {MAX_TIMESTAMP}, got {expires_at!r}",
                fingerprint,
            )
        if expires_at != NEVER_EXPIRES and expires_at < self.clock.now():
            raise ExpiryInPast(f"expires_at {expires_at} is already in the past", fingerprint)

        return self._claim(
            fingerprint,
            RecordDraft(issuer=issuer, purpose=purpose, expires_at=expires_at),
        )

    def resubmit(
        self,
        fingerprint: Union[Fingerprint, bytes, str],
        purpose: str,
        expires_at: int,
        issuer: str,
        attempts: Optional[int] = None,
    ) -> Registration:
        """
        Submit a registration whose earlier outcome is unknown.

        Retries while the store is unavailable. A duplicate owned by the
        same issuer under the same purpose means an earlier attempt went
        through and is reported as ALREADY_REGISTERED; a duplicate owned by
        anyone else raises DuplicateRegistration. The same holds when the
        requested expiry has passed since the earlier attempt was written.
        """
        attempts = attempts or self.retry_attempts

        attempt = 1
        while True:
            try:
                return self._resubmit_once(fingerprint, purpose, expires_at, issuer)
            except RegistrationUnavailable:
                if attempt >= attempts:
                    raise
                log.warning(
                    "ledger unavailable, retrying",
                    extra=log_fields(attempt=attempt, max_attempts=attempts),
                )
                if self.retry_delay:
                    time.sleep(self.retry_delay * attempt)
                attempt += 1

    def _resubmit_once(self, fingerprint, purpose, expires_at, issuer) -> Registration:
        try:
            return Registration(self.register_fingerprint(fingerprint, purpose, expires_at, issuer))
        except DuplicateRegistration as exc:
            existing = self._earlier_claim(exc.fingerprint, purpose, issuer)
            if existing is None:
                raise
        except ExpiryInPast as exc:
            # An earlier attempt may have landed before the expiry passed
            existing = self._earlier_claim(exc.fingerprint, purpose, issuer)
            if existing is None or existing.expires_at != expires_at:
                raise

        log.info(
            "registration already confirmed",
            extra=log_fields(fingerprint=existing.fingerprint.hex(), issuer=existing.issuer),
        )
        return Registration(existing, RegistrationStatus.ALREADY_REGISTERED)

    def _earlier_claim(self, fingerprint: Fingerprint, purpose: str, issuer: str) -> Optional[Record]:
        """The stored record, if it was made by this issuer under this purpose."""
        try:
            existing = self.store.get(fingerprint)
        except StoreUnavailable as exc:
            raise RegistrationUnavailable(str(exc), fingerprint) from exc
        if existing is not None and existing.issuer == issuer.strip() and existing.purpose == purpose.strip():
            return existing
        return None

    def _check_purpose(self, purpose: str) -> str:
        if not isinstance(purpose, str):
            raise InvalidPurpose(f"purpose must be a string, got {type(purpose).__name__}")
        purpose = normalize_purpose(purpose)
        if not purpose:
            raise InvalidPurpose("purpose is required")
        return purpose

    def _check_issuer(self, issuer: str) -> str:
        if not isinstance(issuer, str) or not issuer.strip():
            raise InvalidIssuer("issuer identity is required")
        return issuer.strip()

    def _claim(self, fingerprint: Fingerprint, draft: RecordDraft) -> Record:
        try:
            result, record = self.store.insert_if_absent(fingerprint, draft)
        except StoreUnavailable as exc:
            log.warning(
                "registration unavailable",
                extra=log_fields(fingerprint=fingerprint.hex(), error=str(exc)),
            )
            raise RegistrationUnavailable(str(exc), fingerprint) from exc
        except LedgerError as exc:
            log.warning(
                "registration rejected by store",
                extra=log_fields(fingerprint=fingerprint.hex(), error=str(exc)),
            )
            raise RegistrationRejected(str(exc), fingerprint) from exc

        if result == InsertResult.ALREADY_EXISTS:
            log.info(
                "registration rejected as duplicate",
                extra=log_fields(fingerprint=fingerprint.hex(), issuer=draft.issuer),
            )
            raise DuplicateRegistration(
                f"fingerprint {fingerprint.hex()} is already registered", fingerprint
            )

        log.info(
            "registration accepted",
            extra=log_fields(
                fingerprint=fingerprint.hex(),
                issuer=record.issuer,
                issued_at=record.issued_at,
                expires_at=record.expires_at,
            ),
        )
        return record
