"""
Integrity Ledger - Document Fingerprints

A fingerprint binds document bytes to a declared purpose:

    SHA-256(document_bytes || "|" || UTF-8(purpose.strip()))

The purpose is part of the hashed preimage, so the same file registered
under two purposes yields two independent ledger subjects.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Union


FINGERPRINT_SIZE = 32
SEPARATOR = b"|"
BOUNDARY_PREFIX = "0x"

_CHUNK_SIZE = 64 * 1024


@dataclass(frozen=True)
class Fingerprint:
    """A 32-byte document fingerprint."""
    digest: bytes

    def __post_init__(self):
        if not isinstance(self.digest, bytes):
            raise TypeError(f"Fingerprint digest must be bytes, got {type(self.digest).__name__}")
        if len(self.digest) != FINGERPRINT_SIZE:
            raise ValueError(
                f"Fingerprint must be {FINGERPRINT_SIZE} bytes, got {len(self.digest)}"
            )

    def hex(self) -> str:
        """Lowercase hexadecimal rendering (64 chars)."""
        return self.digest.hex()

    def to_boundary(self) -> str:
        """Hex rendering with the 0x prefix used by external collaborators."""
        return BOUNDARY_PREFIX + self.hex()

    @classmethod
    def from_hex(cls, text: str) -> "Fingerprint":
        """
        Parse a hex fingerprint, with or without the 0x prefix.

        Raises ValueError on anything that is not exactly 32 bytes of hex.
        """
        if not isinstance(text, str):
            raise TypeError(f"Expected str, got {type(text).__name__}")
        value = text.strip()
        if value[:2].lower() == BOUNDARY_PREFIX:
            value = value[2:]
        if len(value) != FINGERPRINT_SIZE * 2:
            raise ValueError(f"Fingerprint hex must be {FINGERPRINT_SIZE * 2} chars, got {len(value)}")
        try:
            digest = bytes.fromhex(value)
        except ValueError as exc:
            raise ValueError(f"Invalid fingerprint hex: {text!r}") from exc
        return cls(digest)

    @classmethod
    def coerce(cls, value: Union["Fingerprint", bytes, str]) -> "Fingerprint":
        """Accept a Fingerprint, 32 raw bytes, or hex text."""
        if isinstance(value, Fingerprint):
            return value
        if isinstance(value, bytes):
            return cls(value)
        if isinstance(value, str):
            return cls.from_hex(value)
        raise TypeError(f"Cannot interpret {type(value).__name__} as a fingerprint")

    def __str__(self) -> str:
        return self.hex()


def normalize_purpose(purpose: str) -> str:
    """Strip surrounding whitespace from a purpose string."""
    if not isinstance(purpose, str):
        raise TypeError(f"purpose must be str, got {type(purpose).__name__}")
    return purpose.strip()


def fingerprint(document_bytes: bytes, purpose: str) -> Fingerprint:
    """
    Derive the fingerprint of a document under a purpose.

    An empty document and an empty (trimmed) purpose are both valid here;
    purpose requiredness is enforced by the registrar.
    """
    if not isinstance(document_bytes, (bytes, bytearray, memoryview)):
        raise TypeError(f"document_bytes must be bytes, got {type(document_bytes).__name__}")
    hasher = hashlib.sha256()
    hasher.update(document_bytes)
    hasher.update(SEPARATOR)
    hasher.update(normalize_purpose(purpose).encode("utf-8"))
    return Fingerprint(hasher.digest())


def fingerprint_file(path: Union[str, Path], purpose: str) -> Fingerprint:
    """
    Fingerprint a file without loading it into memory.

    Produces the same value as fingerprint(Path(path).read_bytes(), purpose).
    """
    purpose_bytes = normalize_purpose(purpose).encode("utf-8")
    hasher = hashlib.sha256()
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(_CHUNK_SIZE), b""):
            hasher.update(chunk)
    hasher.update(SEPARATOR)
    hasher.update(purpose_bytes)
    return Fingerprint(hasher.digest())
