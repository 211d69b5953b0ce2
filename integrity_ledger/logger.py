"""
Integrity Ledger - Logging

Structured JSON-line logging on top of the standard library. Fingerprints
are logged; document contents never are.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import json
import logging
import os
import sys
import time
from typing import Optional, Union


ROOT_LOGGER = "integrity_ledger"


class JsonFormatter(logging.Formatter):
    """One JSON object per line, UTC timestamps."""

    converter = time.gmtime

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%SZ"),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        fields = getattr(record, "fields", None)
        if fields:
            entry.update(fields)
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False, default=str)


def get_logger(
    name: str = ROOT_LOGGER,
    level: Optional[Union[int, str]] = None,
    to_file: Optional[str] = None,
) -> logging.Logger:
    """
    Return a logger under the integrity_ledger namespace.

    Handlers are attached to the root package logger only once; child
    loggers propagate to it.
    """
    if name != ROOT_LOGGER and not name.startswith(ROOT_LOGGER + "."):
        name = f"{ROOT_LOGGER}.{name}"

    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(JsonFormatter())
        root.addHandler(handler)
        root.setLevel(logging.INFO)

    if to_file and not any(isinstance(h, logging.FileHandler) for h in root.handlers):
        directory = os.path.dirname(to_file)
        if directory:
            os.makedirs(directory, exist_ok=True)
        file_handler = logging.FileHandler(to_file)
        file_handler.setFormatter(JsonFormatter())
        root.addHandler(file_handler)

    if level is not None:
        root.setLevel(level)

    return logging.getLogger(name)


def log_fields(**fields) -> dict:
    """Build the `extra` mapping for structured fields."""
    return {"fields": fields}
