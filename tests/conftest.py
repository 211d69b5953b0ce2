"""
Pytest configuration and shared fixtures.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import sys
from pathlib import Path

import pytest

# Add the repository root to the path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from integrity_ledger.clock import ManualClock
from integrity_ledger.interface import IntegrityLedger
from integrity_ledger.registrar import Registrar
from integrity_ledger.store import SQLiteLedgerStore
from integrity_ledger.verifier import Verifier


START = 1_700_000_000


@pytest.fixture
def clock():
    """A simulated clock starting at a fixed instant."""
    return ManualClock(START)


@pytest.fixture
def store(clock):
    """In-memory SQLite ledger."""
    ledger_store = SQLiteLedgerStore(":memory:", clock=clock)
    yield ledger_store
    ledger_store.close()


@pytest.fixture
def registrar(store, clock):
    return Registrar(store, clock=clock)


@pytest.fixture
def verifier(store, clock):
    return Verifier(store, clock=clock)


@pytest.fixture
def ledger(store, clock):
    return IntegrityLedger(store, clock=clock)
