"""
Integrity Ledger - Time Sources

Issuance and expiry are expressed in unix seconds. Every component that
needs "now" receives a Clock, so expiry can be evaluated against a
simulated time in tests.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import threading
import time
from datetime import datetime, timezone
from typing import Optional


class Clock:
    """Source of the current time in whole unix seconds."""

    def now(self) -> int:
        raise NotImplementedError

    def __call__(self) -> int:
        return self.now()


class SystemClock(Clock):
    """Wall clock."""

    def now(self) -> int:
        return int(time.time())


class ManualClock(Clock):
    """
    Clock that only moves when told to.

    Used for deterministic expiry tests and simulations.
    """

    def __init__(self, start: Optional[int] = None):
        self._now = int(time.time()) if start is None else int(start)
        self._lock = threading.Lock()

    def now(self) -> int:
        with self._lock:
            return self._now

    def advance(self, seconds: int) -> int:
        """Move the clock forward and return the new time."""
        if seconds < 0:
            raise ValueError("ManualClock cannot move backwards")
        with self._lock:
            self._now += int(seconds)
            return self._now

    def set(self, timestamp: int):
        with self._lock:
            self._now = int(timestamp)


def to_datetime(timestamp: int) -> Optional[datetime]:
    """
    Convert unix seconds to an aware UTC datetime.

    0 is the "never" sentinel for expiry and maps to None.
    """
    if timestamp == 0:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc)


def format_timestamp(timestamp: int) -> str:
    """ISO 8601 with Z suffix, or "never" for 0."""
    dt = to_datetime(timestamp)
    if dt is None:
        return "never"
    return dt.strftime("%Y-%m-%dT%H:%M:%SZ")
