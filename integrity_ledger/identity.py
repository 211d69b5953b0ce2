"""
Integrity Ledger - Issuer Identity and Signed Submissions

An issuer is identified by its Ed25519 public key. The identity string is
"0x" followed by the last 20 bytes of SHA-256(raw public key), so it is
short, stable and cannot be claimed without the private key.

A Submission is a registration request signed by the issuer. The ledger
derives the issuer identity from the submitting key instead of trusting a
caller-supplied name.

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import base64
import hashlib
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Union

from cryptography.exceptions import InvalidSignature as _CryptoInvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import (
    Ed25519PrivateKey,
    Ed25519PublicKey,
)

from .canonical import canonical_serialize
from .fingerprint import Fingerprint
from .registrar import RegistrationError


IDENTITY_BYTES = 20


class InvalidSignature(RegistrationError):
    """The submission signature does not match its content or key."""
    code = "INVALID_SIGNATURE"


def generate_keypair() -> tuple[Ed25519PrivateKey, Ed25519PublicKey]:
    """Generate a new issuer key pair."""
    private_key = Ed25519PrivateKey.generate()
    return private_key, private_key.public_key()


def public_key_to_base64(public_key: Ed25519PublicKey) -> str:
    """Serialize a public key to base64-encoded DER format."""
    der_bytes = public_key.public_bytes(
        encoding=serialization.Encoding.DER,
        format=serialization.PublicFormat.SubjectPublicKeyInfo,
    )
    return base64.b64encode(der_bytes).decode("ascii")


def base64_to_public_key(b64_key: str) -> Ed25519PublicKey:
    """Deserialize a base64-encoded DER public key."""
    der_bytes = base64.b64decode(b64_key)
    public_key = serialization.load_der_public_key(der_bytes)
    if not isinstance(public_key, Ed25519PublicKey):
        raise ValueError("Issuer keys must be Ed25519")
    return public_key


def issuer_identity(public_key: Ed25519PublicKey) -> str:
    """Derive the issuer identity string from a public key."""
    raw = public_key.public_bytes(
        encoding=serialization.Encoding.Raw,
        format=serialization.PublicFormat.Raw,
    )
    return "0x" + hashlib.sha256(raw).digest()[-IDENTITY_BYTES:].hex()


def save_private_key(private_key: Ed25519PrivateKey, path: Union[str, Path]):
    """Write a private key as unencrypted PKCS#8 PEM."""
    pem = private_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    )
    Path(path).write_bytes(pem)


def load_private_key(path: Union[str, Path]) -> Ed25519PrivateKey:
    private_key = serialization.load_pem_private_key(Path(path).read_bytes(), password=None)
    if not isinstance(private_key, Ed25519PrivateKey):
        raise ValueError(f"{path} does not hold an Ed25519 private key")
    return private_key


@dataclass(frozen=True)
class Submission:
    """A signed request to register a fingerprint."""
    fingerprint: str  # lowercase hex, no prefix
    purpose: str
    expires_at: int
    public_key: str  # base64 DER
    signature: str  # base64

    def signing_payload(self) -> bytes:
        return _signing_payload(Fingerprint.from_hex(self.fingerprint), self.purpose, self.expires_at)

    @property
    def issuer(self) -> str:
        return issuer_identity(base64_to_public_key(self.public_key))


def _signing_payload(fingerprint: Fingerprint, purpose: str, expires_at: int) -> bytes:
    return canonical_serialize({
        "fingerprint": fingerprint,
        "purpose": purpose,
        "expires_at": expires_at,
    })


def sign_submission(
    private_key: Ed25519PrivateKey,
    fingerprint: Union[Fingerprint, bytes, str],
    purpose: str,
    expires_at: int = 0,
) -> Submission:
    """Sign a registration request with the issuer's key."""
    fingerprint = Fingerprint.coerce(fingerprint)
    signature = private_key.sign(_signing_payload(fingerprint, purpose, expires_at))
    return Submission(
        fingerprint=fingerprint.hex(),
        purpose=purpose,
        expires_at=expires_at,
        public_key=public_key_to_base64(private_key.public_key()),
        signature=base64.b64encode(signature).decode("ascii"),
    )


def verify_submission(submission: Submission) -> Optional[str]:
    """
    Check a submission's signature.

    Returns the issuer identity if valid, None otherwise.
    """
    try:
        public_key = base64_to_public_key(submission.public_key)
        payload = submission.signing_payload()
        public_key.verify(base64.b64decode(submission.signature), payload)
    except (_CryptoInvalidSignature, ValueError, TypeError):
        return None
    return issuer_identity(public_key)
