"""
Integrity Ledger - Command Line Interface

    integrity-ledger keygen KEYFILE
    integrity-ledger register FILE --purpose P --key KEYFILE [--valid-for SECONDS]
    integrity-ledger verify FILE --purpose P
    integrity-ledger certificate FILE --purpose P
    integrity-ledger state

SPDX-License-Identifier: AGPL-3.0-or-later
"""

import json
from pathlib import Path

import click

from . import __version__
from .clock import format_timestamp
from .config import LedgerConfig
from .fingerprint import fingerprint_file
from .identity import generate_keypair, issuer_identity, load_private_key, save_private_key, sign_submission
from .interface import IntegrityLedger
from .registrar import RegistrationError
from .store import StoreUnavailable
from .verifier import VerificationUnavailable


EXIT_VALID = 0
EXIT_NOT_FOUND = 1
EXIT_EXPIRED = 2
EXIT_ERROR = 3


def _open_ledger(ctx: click.Context) -> IntegrityLedger:
    try:
        return IntegrityLedger.from_config(ctx.obj["config"])
    except (StoreUnavailable, ValueError) as exc:
        click.echo(f"Error: cannot open ledger: {exc}", err=True)
        ctx.exit(EXIT_ERROR)


@click.group()
@click.version_option(version=__version__)
@click.option("--db", "db_path", default=None, help="Ledger database path (overrides INTEGRITY_LEDGER_DB)")
@click.pass_context
def cli(ctx: click.Context, db_path):
    """Register and verify document fingerprints bound to a purpose."""
    try:
        config = LedgerConfig.from_env()
    except ValueError as exc:
        raise click.UsageError(str(exc))
    if db_path:
        config.db_path = db_path
    ctx.ensure_object(dict)
    ctx.obj["config"] = config


@cli.command()
@click.argument("keyfile", type=click.Path(dir_okay=False, writable=True))
@click.option("--force", is_flag=True, help="Overwrite an existing key file")
def keygen(keyfile: str, force: bool):
    """Create an issuer key and print its identity."""
    if Path(keyfile).exists() and not force:
        raise click.UsageError(f"{keyfile} exists; use --force to overwrite")
    private_key, public_key = generate_keypair()
    save_private_key(private_key, keyfile)
    click.echo(issuer_identity(public_key))


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--purpose", required=True, help="Declared usage context")
@click.option("--key", "keyfile", required=True, type=click.Path(exists=True, dir_okay=False), help="Issuer key file")
@click.option("--valid-for", default=0, type=click.IntRange(min=0), help="Validity in seconds, 0 = never expires")
@click.pass_context
def register(ctx: click.Context, file: str, purpose: str, keyfile: str, valid_for: int):
    """Register FILE under PURPOSE."""
    try:
        private_key = load_private_key(keyfile)
    except (ValueError, TypeError) as exc:
        click.echo(f"Error: cannot load issuer key {keyfile}: {exc}", err=True)
        ctx.exit(EXIT_ERROR)

    ledger = _open_ledger(ctx)
    with ledger:
        expires_at = 0 if valid_for == 0 else ledger.clock.now() + valid_for
        submission = sign_submission(
            private_key,
            fingerprint_file(file, purpose),
            purpose.strip(),
            expires_at,
        )
        try:
            # Retries per INTEGRITY_LEDGER_RETRIES; a repeat by the same key is not an error
            confirmation = ledger.register_signed(submission, resubmit=True)
        except RegistrationError as exc:
            click.echo(f"Error [{exc.code}]: {exc}", err=True)
            ctx.exit(EXIT_ERROR)

    click.echo(f"Registered {confirmation.fingerprint}")
    click.echo(f"  Issuer:  {confirmation.issuer}")
    click.echo(f"  Issued:  {format_timestamp(confirmation.issued_at)}")
    click.echo(f"  Expires: {format_timestamp(confirmation.expires_at)}")


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--purpose", required=True, help="Purpose the file was registered under")
@click.pass_context
def verify(ctx: click.Context, file: str, purpose: str):
    """Check FILE against the ledger. Exit 0 valid, 1 not found, 2 expired."""
    ledger = _open_ledger(ctx)
    fp = fingerprint_file(file, purpose)
    with ledger:
        try:
            fields = ledger.certificate_fields(fp)
        except VerificationUnavailable as exc:
            click.echo(f"Error [UNAVAILABLE]: {exc}", err=True)
            ctx.exit(EXIT_ERROR)

    if fields is None:
        click.echo(f"NOT FOUND {fp.to_boundary()}")
        ctx.exit(EXIT_NOT_FOUND)

    status = "EXPIRED" if fields["expired"] else "VALID"
    click.echo(f"{status} {fp.to_boundary()}")
    click.echo(f"  Issuer:  {fields['issuer']}")
    click.echo(f"  Purpose: {fields['purpose']}")
    click.echo(f"  Issued:  {format_timestamp(fields['issuedAt'])}")
    click.echo(f"  Expires: {format_timestamp(fields['expiresAt'])}")
    ctx.exit(EXIT_EXPIRED if fields["expired"] else EXIT_VALID)


@cli.command()
@click.argument("file", type=click.Path(exists=True, dir_okay=False))
@click.option("--purpose", required=True, help="Purpose the file was registered under")
@click.pass_context
def certificate(ctx: click.Context, file: str, purpose: str):
    """Print certificate fields for FILE as JSON."""
    ledger = _open_ledger(ctx)
    fp = fingerprint_file(file, purpose)
    with ledger:
        try:
            fields = ledger.certificate_fields(fp)
        except VerificationUnavailable as exc:
            click.echo(f"Error [UNAVAILABLE]: {exc}", err=True)
            ctx.exit(EXIT_ERROR)

    if fields is None:
        click.echo(json.dumps({"hash": fp.hex(), "valid": False}))
        ctx.exit(EXIT_NOT_FOUND)
    click.echo(json.dumps(fields, sort_keys=True))


@cli.command()
@click.pass_context
def state(ctx: click.Context):
    """Print record count, state hash and audit result."""
    ledger = _open_ledger(ctx)
    with ledger:
        try:
            ledger_state = ledger.store.get_ledger_state()
            intact, tampered = ledger.store.audit()
        except StoreUnavailable as exc:
            click.echo(f"Error [UNAVAILABLE]: {exc}", err=True)
            ctx.exit(EXIT_ERROR)

    click.echo(f"Records:    {ledger_state['record_count']}")
    click.echo(f"State hash: {ledger_state['state_hash']}")
    click.echo(f"Audit:      {'intact' if intact else 'TAMPERED'}")
    for fp_hex in tampered:
        click.echo(f"  tampered: {fp_hex}")
    if not intact:
        ctx.exit(EXIT_ERROR)


def main():
    cli(obj={})


if __name__ == "__main__":
    main()
