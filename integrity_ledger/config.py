"""
Integrity Ledger - Configuration

Settings come from constructor arguments or, for deployed use, from
INTEGRITY_LEDGER_* environment variables.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import logging
import os
from dataclasses import dataclass
from typing import Mapping, Optional


ENV_PREFIX = "INTEGRITY_LEDGER_"

DEFAULT_DB_PATH = "integrity_ledger.db"


@dataclass
class LedgerConfig:
    """Runtime settings for the ledger stack."""
    db_path: str = DEFAULT_DB_PATH
    timeout_seconds: float = 5.0
    log_level: str = "INFO"
    retry_attempts: int = 3
    retry_delay: float = 0.5

    def validate(self) -> tuple[bool, list[str]]:
        """Returns (is_valid, list_of_errors)."""
        errors = []

        if not self.db_path:
            errors.append("db_path cannot be empty")

        if self.timeout_seconds <= 0:
            errors.append("timeout_seconds must be positive")

        if not isinstance(logging.getLevelName(self.log_level.upper()), int):
            errors.append(f"unknown log_level {self.log_level!r}")

        if self.retry_attempts < 1:
            errors.append("retry_attempts must be at least 1")

        if self.retry_delay < 0:
            errors.append("retry_delay cannot be negative")

        return (len(errors) == 0, errors)

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "LedgerConfig":
        """
        Build a config from INTEGRITY_LEDGER_DB, _TIMEOUT, _LOG_LEVEL,
        _RETRIES and _RETRY_DELAY. Raises ValueError on invalid values.
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        try:
            config = cls(
                db_path=env.get(ENV_PREFIX + "DB", defaults.db_path),
                timeout_seconds=float(env.get(ENV_PREFIX + "TIMEOUT", defaults.timeout_seconds)),
                log_level=env.get(ENV_PREFIX + "LOG_LEVEL", defaults.log_level).upper(),
                retry_attempts=int(env.get(ENV_PREFIX + "RETRIES", defaults.retry_attempts)),
                retry_delay=float(env.get(ENV_PREFIX + "RETRY_DELAY", defaults.retry_delay)),
            )
        except ValueError as exc:
            raise ValueError(f"Invalid {ENV_PREFIX}* setting: {exc}") from exc

        is_valid, errors = config.validate()
        if not is_valid:
            raise ValueError("; ".join(errors))
        return config
