"""
Tests for verification.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import time

import pytest

from integrity_ledger.clock import SystemClock
from integrity_ledger.fingerprint import fingerprint
from integrity_ledger.records import Found, NotFound, outcome_record
from integrity_ledger.registrar import DuplicateRegistration, Registrar
from integrity_ledger.store import InMemoryLedgerStore, SQLiteLedgerStore, StoreUnavailable
from integrity_ledger.verifier import VerificationUnavailable, Verifier, is_expired


class DownStore(InMemoryLedgerStore):
    def get(self, fingerprint):
        raise StoreUnavailable("backend unreachable")


class TestVerify:
    """Tests for Verifier.verify()."""

    def test_unknown_is_not_found(self, verifier):
        outcome = verifier.verify(b"hello", "contract-v1")
        assert isinstance(outcome, NotFound)
        assert not outcome.found
        assert outcome.fingerprint == fingerprint(b"hello", "contract-v1")
        assert outcome_record(outcome) is None

    def test_round_trip(self, registrar, verifier):
        registrar.register(b"hello", "contract-v1", 0, "0xalice")
        outcome = verifier.verify(b"hello", "contract-v1")
        assert isinstance(outcome, Found)
        assert outcome.found
        assert outcome.record.issuer == "0xalice"
        assert outcome.record.purpose == "contract-v1"
        assert outcome.record.expires_at == 0
        assert outcome.is_expired is False

    def test_verify_uses_same_trimming_as_register(self, registrar, verifier):
        registrar.register(b"hello", "contract-v1", 0, "0xalice")
        assert isinstance(verifier.verify(b"hello", "\tcontract-v1  "), Found)

    def test_other_purpose_not_found(self, registrar, verifier):
        registrar.register(b"hello", "contract-v1", 0, "0xalice")
        assert isinstance(verifier.verify(b"hello", "contract-v2"), NotFound)

    def test_modified_document_not_found(self, registrar, verifier):
        registrar.register(b"hello", "contract-v1", 0, "0xalice")
        assert isinstance(verifier.verify(b"hello!", "contract-v1"), NotFound)

    def test_duplicate_keeps_first_issuer(self, registrar, verifier):
        registrar.register(b"hello", "contract-v1", 0, "0xalice")
        with pytest.raises(DuplicateRegistration):
            registrar.register(b"hello", "contract-v1", 0, "0xbob")
        assert verifier.verify(b"hello", "contract-v1").record.issuer == "0xalice"

    def test_verify_fingerprint_hex(self, registrar, verifier):
        record = registrar.register(b"hello", "contract-v1", 0, "0xalice")
        outcome = verifier.verify_fingerprint(record.fingerprint.to_boundary())
        assert outcome.record == record


class TestExpiry:
    """Expiry is evaluated against the clock at query time."""

    def test_transition_with_simulated_clock(self, registrar, verifier, clock):
        registrar.register(b"hello", "contract-v1", 1, "0xalice")
        assert verifier.verify(b"hello", "contract-v1").is_expired is False

        clock.advance(1)
        # Exactly at expires_at is still valid
        assert verifier.verify(b"hello", "contract-v1").is_expired is False

        clock.advance(1)
        outcome = verifier.verify(b"hello", "contract-v1")
        assert isinstance(outcome, Found)
        assert outcome.is_expired is True

    def test_expired_is_not_not_found(self, registrar, verifier, clock):
        registrar.register(b"hello", "contract-v1", 10, "0xalice")
        clock.advance(3600)
        outcome = verifier.verify(b"hello", "contract-v1")
        assert not isinstance(outcome, NotFound)
        assert outcome.record.issuer == "0xalice"

    def test_never_expires(self, registrar, verifier, clock):
        registrar.register(b"hello", "contract-v1", 0, "0xalice")
        clock.advance(10 * 365 * 24 * 3600)
        assert verifier.verify(b"hello", "contract-v1").is_expired is False

    def test_no_write_on_expiry(self, registrar, verifier, clock, store):
        registrar.register(b"hello", "contract-v1", 1, "0xalice")
        before = store.get_ledger_state()
        clock.advance(5)
        verifier.verify(b"hello", "contract-v1")
        assert store.get_ledger_state() == before

    def test_transition_with_wall_clock(self):
        ledger_store = SQLiteLedgerStore(":memory:")
        registrar = Registrar(ledger_store, clock=SystemClock())
        verifier = Verifier(ledger_store, clock=SystemClock())

        registrar.register(b"hello", "contract-v1", 1, "0xalice")
        assert verifier.verify(b"hello", "contract-v1").is_expired is False

        time.sleep(2.1)
        assert verifier.verify(b"hello", "contract-v1").is_expired is True
        ledger_store.close()

    def test_never_expires_flag(self, registrar):
        record = registrar.register(b"hello", "contract-v1", 0, "0xalice")
        assert record.never_expires
        assert not record.is_expired_at(2**62)
        assert not registrar.register(b"hello", "contract-v2", 10, "0xalice").never_expires

    def test_is_expired_helper(self, registrar):
        record = registrar.register(b"hello", "contract-v1", 100, "0xalice")
        assert not is_expired(record, record.expires_at)
        assert is_expired(record, record.expires_at + 1)


class TestUnavailable:

    def test_store_failure_is_not_not_found(self, clock):
        verifier = Verifier(DownStore(clock=clock), clock=clock)
        with pytest.raises(VerificationUnavailable) as excinfo:
            verifier.verify(b"hello", "contract-v1")
        assert excinfo.value.fingerprint == fingerprint(b"hello", "contract-v1")
