#!/usr/bin/env python3
"""
Integrity Ledger - Basic Flow Demo

Demonstrates the complete flow of:
1. Creating an issuer key
2. Fingerprinting a document under a purpose
3. Registering the signed fingerprint
4. Verifying it, and failing to verify it under another purpose
5. Rejecting a second claim on the same fingerprint
6. Watching a time-limited registration expire

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from integrity_ledger.clock import ManualClock, format_timestamp
from integrity_ledger.fingerprint import fingerprint
from integrity_ledger.identity import generate_keypair, issuer_identity, sign_submission
from integrity_ledger.interface import IntegrityLedger
from integrity_ledger.registrar import DuplicateRegistration
from integrity_ledger.store import SQLiteLedgerStore


def main():
    print("=" * 60)
    print("Integrity Ledger - Basic Flow Demo")
    print("=" * 60)
    print()

    # Step 1: Generate key pair for the issuer
    print("[1] Generating Ed25519 key pair for issuer...")
    private_key, public_key = generate_keypair()
    print(f"    Issuer identity: {issuer_identity(public_key)}")
    print()

    # Step 2: Fingerprint the document
    print("[2] Fingerprinting document under purpose 'contract-v1'...")
    document = b"hello"
    fp = fingerprint(document, "contract-v1")
    print(f"    Fingerprint: {fp.to_boundary()}")
    print()

    # Step 3: Open the ledger with a controllable clock
    print("[3] Initializing append-only ledger...")
    clock = ManualClock()
    ledger = IntegrityLedger(SQLiteLedgerStore(":memory:", clock=clock), clock=clock)
    print("    Ledger: initialized")
    print()

    # Step 4: Register
    print("[4] Registering signed fingerprint...")
    confirmation = ledger.register_signed(sign_submission(private_key, fp, "contract-v1", 0))
    print(f"    Issued at: {format_timestamp(confirmation.issued_at)}")
    print(f"    Expires:   {format_timestamp(confirmation.expires_at)}")
    print()

    # Step 5: Verify under the registered purpose
    print("[5] Verifying under 'contract-v1'...")
    status = ledger.verify_file(fingerprint(document, "contract-v1"))
    print(f"    Valid: {status.valid}  Purpose: {status.purpose}")
    print()

    # Step 6: Verify under a different purpose
    print("[6] Verifying the same bytes under 'contract-v2'...")
    status = ledger.verify_file(fingerprint(document, "contract-v2"))
    print(f"    Valid: {status.valid}")
    print("    This is correct behavior - the purpose is part of the fingerprint")
    print()

    # Step 7: A second issuer tries to claim the same fingerprint
    print("[7] Second issuer attempts to register the same fingerprint...")
    other_key, _ = generate_keypair()
    try:
        ledger.register_signed(sign_submission(other_key, fp, "contract-v1", 0))
        print("    Result: ACCEPTED")
    except DuplicateRegistration as exc:
        print(f"    Result: REJECTED ({exc.code})")
    print()

    # Step 8: Time-limited registration
    print("[8] Registering a draft valid for one hour...")
    draft_fp = fingerprint(b"draft terms", "review")
    ledger.register_signed(sign_submission(private_key, draft_fp, "review", clock.now() + 3600))
    print(f"    Expired now?        {ledger.certificate_fields(draft_fp)['expired']}")
    clock.advance(3601)
    print(f"    Expired in 1h 1s?   {ledger.certificate_fields(draft_fp)['expired']}")
    print()

    # Step 9: Ledger state
    print("[9] Ledger Summary...")
    state = ledger.store.get_ledger_state()
    intact, _ = ledger.store.audit()
    print(f"    Records: {state['record_count']}")
    print(f"    State hash: {state['state_hash']}")
    print(f"    Audit: {'intact' if intact else 'TAMPERED'}")
    print()

    ledger.close()

    print("=" * 60)
    print("Demo completed successfully!")
    print()
    print("Key principles demonstrated:")
    print("  - Fingerprints bind document bytes to a purpose")
    print("  - First writer wins; later claims are rejected")
    print("  - Append-only ledger (immutability)")
    print("  - Expiry is evaluated at read time, never by rewriting records")
    print("=" * 60)


if __name__ == "__main__":
    main()
