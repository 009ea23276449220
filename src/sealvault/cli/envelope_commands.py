#!/usr/bin/env python3
"""
SealVault Envelope CLI Commands - Registry Operations

Provides a CLI over a local envelope registry:
- Bootstrap the registry owner and recovery configuration
- Create, claim, revoke and refund envelopes
- Inspect envelopes and generate keys/secret commitments
"""

from __future__ import annotations

import json
import logging
import secrets
import sys
import time
from typing import Any

import click
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from sealvault.config_manager import ConfigManager
from sealvault.core.auth import SignedCall
from sealvault.core.config import RegistryConfig
from sealvault.core.crypto_utils import (
    generate_secp256k1_keypair_hex,
    hash_secret,
    public_key_to_address,
)
from sealvault.core.exceptions import EnvelopeError, get_error_context
from sealvault.core.logging_config import setup_registry_logging
from sealvault.core.models import Envelope, VestSlice, coerce_bytes32
from sealvault.core.registry import EnvelopeRegistry
from sealvault.core.vesting import vested_fraction

logger = logging.getLogger(__name__)
console = Console()


def _handle_cli_error(exc: Exception, exit_code: int = 1) -> None:
    """Centralized CLI error handler for consistent messaging/exit codes."""
    logger.debug("CLI error: %s", exc, exc_info=True)
    context = get_error_context(exc)
    console.print(f"[bold red]Error ({context['error_type']}):[/] {exc}")
    if context.get("details"):
        console.print(f"[dim]{json.dumps(context['details'], default=str)}[/]")
    sys.exit(exit_code)


def _emit(ctx: click.Context, payload: dict[str, Any], message: str) -> None:
    if ctx.obj["json_output"]:
        click.echo(json.dumps(payload, indent=2, default=str))
    else:
        console.print(message)


def _parse_vest(values: tuple[str, ...]) -> list[VestSlice]:
    schedule = []
    for raw in values:
        try:
            ts_text, bp_text = raw.split(":", 1)
            schedule.append(VestSlice(ts=int(ts_text), bp=int(bp_text)))
        except ValueError as exc:
            raise click.BadParameter(f"Invalid vesting slice '{raw}', expected TS:BP") from exc
    return schedule


def _caller(ctx: click.Context, caller: str | None, key: str | None, operation: str, subject: str) -> Any:
    """Build the caller credential for the configured authorization mode."""
    config: ConfigManager = ctx.obj["config"]
    if config.auth.mode == "signature":
        if not key:
            raise click.UsageError("--key is required when auth mode is 'signature'")
        return SignedCall.sign(
            key,
            operation=operation,
            subject=subject,
            nonce=time.time_ns(),
            timestamp=ctx.obj["clock"](),
        )
    if not caller:
        raise click.UsageError("--caller is required when auth mode is 'trusted'")
    return caller


def _envelope_table(envelope_id: str, envelope: Envelope, claimable: int, now: int) -> Table:
    table = Table(title=f"Envelope {envelope_id[:16]}...", box=box.ROUNDED, show_header=False)
    table.add_column("Field", style="cyan")
    table.add_column("Value", style="white")
    status = "[red]revoked[/]" if envelope.revoked else "[green]active[/]"
    table.add_row("ID", envelope_id)
    table.add_row("Status", status)
    table.add_row("Beneficiary", envelope.beneficiary)
    table.add_row("Amount", str(envelope.amount))
    table.add_row("Claimed", str(envelope.claimed))
    table.add_row("Claimable now", str(claimable))
    table.add_row("Vested", f"{vested_fraction(envelope.vesting, now) / 100:.2f}%")
    table.add_row("Unlock", str(envelope.unlock_ts) if envelope.unlock_ts is not None else "-")
    table.add_row("Expiry", str(envelope.expiry_ts) if envelope.expiry_ts is not None else "-")
    schedule = ", ".join(f"{s.ts}:{s.bp}" for s in envelope.vesting) or "immediate"
    table.add_row("Vesting", schedule)
    table.add_row("Secret hash", envelope.secret_hash.hex())
    return table


@click.group()
@click.option("--environment", "-e", default=None, help="Configuration environment (development/staging/production)")
@click.option("--config-dir", default=None, type=click.Path(file_okay=False), help="Directory holding <environment>.yaml files")
@click.option("--store", default=None, help="Path of the JSON registry store")
@click.option("--auth-mode", type=click.Choice(["trusted", "signature"]), default=None, help="Caller authorization mode")
@click.option("--now", type=int, default=None, help="Override the current timestamp (seconds)")
@click.option("--json", "json_output", is_flag=True, help="Emit machine-readable JSON")
@click.pass_context
def cli(ctx: click.Context, environment, config_dir, store, auth_mode, now, json_output):
    """SealVault time-locked envelope registry."""
    ctx.ensure_object(dict)
    try:
        config = ConfigManager(
            environment=environment,
            config_dir=config_dir,
            cli_overrides={"storage.path": store, "auth.mode": auth_mode},
        )
    except ValueError as exc:
        raise click.UsageError(f"Invalid configuration: {exc}") from exc

    setup_registry_logging(config.logging, environment=config.environment.value)

    clock = (lambda: now) if now is not None else (lambda: int(time.time()))
    ctx.obj["config"] = config
    ctx.obj["json_output"] = json_output
    ctx.obj["clock"] = clock
    ctx.obj["registry_factory"] = lambda: EnvelopeRegistry(
        store=config.build_store(),
        authorizer=config.build_authorizer(),
        time_provider=clock,
    )


def _registry(ctx: click.Context) -> EnvelopeRegistry:
    if "registry" not in ctx.obj:
        try:
            ctx.obj["registry"] = ctx.obj["registry_factory"]()
        except EnvelopeError as exc:
            _handle_cli_error(exc)
    return ctx.obj["registry"]


@cli.command("keygen")
@click.pass_context
def keygen(ctx: click.Context):
    """Generate a secp256k1 keypair and its address."""
    private_hex, public_hex = generate_secp256k1_keypair_hex()
    address = public_key_to_address(public_hex)
    payload = {"address": address, "public_key": public_hex, "private_key": private_hex}
    _emit(
        ctx,
        payload,
        f"[bold]Address:[/] {address}\n[bold]Public key:[/] {public_hex}\n"
        f"[bold yellow]Private key:[/] {private_hex}\n[dim]Store the private key securely.[/]",
    )


@cli.command("hash-secret")
@click.argument("preimage", required=False)
@click.pass_context
def hash_secret_cmd(ctx: click.Context, preimage: str | None):
    """Commit to a claim secret (random when PREIMAGE is omitted)."""
    if preimage is None:
        preimage = secrets.token_hex(32)
    commitment = hash_secret(preimage).hex()
    _emit(
        ctx,
        {"preimage": preimage, "secret_hash": commitment},
        f"[bold]Preimage:[/] {preimage}\n[bold]Secret hash:[/] {commitment}",
    )


@cli.command("init")
@click.option("--owner", required=True, help="Owner identity")
@click.option("--guardian", "-g", multiple=True, help="Guardian identity (can specify multiple)")
@click.option("--threshold", default=0, type=int, help="Recovery threshold")
@click.option("--delay", default=0, type=int, help="Recovery delay in seconds")
@click.pass_context
def init_registry(ctx: click.Context, owner: str, guardian: tuple[str, ...], threshold: int, delay: int):
    """Bootstrap the registry owner (one time only)."""
    registry = _registry(ctx)
    try:
        config = RegistryConfig(
            owner=owner,
            guardians=guardian,
            recovery_threshold=threshold,
            recovery_delay=delay,
        )
        registry.initialize(config)
    except (EnvelopeError, ValueError) as exc:
        _handle_cli_error(exc)
    _emit(ctx, {"initialized": True, **config.to_dict()}, f"[green]Registry initialized for owner {owner}[/]")


@cli.command("create")
@click.option("--caller", default=None, help="Authenticated caller identity (trusted mode)")
@click.option("--key", default=None, help="Caller private key hex (signature mode)")
@click.option("--id", "envelope_id", required=True, help="32-byte envelope ID (hex)")
@click.option("--beneficiary", required=True, help="Beneficiary identity")
@click.option("--amount", required=True, type=int, help="Total amount committed")
@click.option("--secret-hash", required=True, help="32-byte secret commitment (hex)")
@click.option("--unlock-ts", type=int, default=None, help="Earliest claim timestamp")
@click.option("--vest", multiple=True, help="Vesting slice TS:BP (can specify multiple)")
@click.option("--expiry-ts", type=int, default=None, help="Timestamp after which the owner may refund")
@click.pass_context
def create_envelope(ctx: click.Context, caller, key, envelope_id, beneficiary, amount, secret_hash, unlock_ts, vest, expiry_ts):
    """Create a new envelope (owner only)."""
    registry = _registry(ctx)
    try:
        envelope_key = coerce_bytes32(envelope_id, "Envelope ID").hex()
        registry.create_envelope(
            _caller(ctx, caller, key, "create_envelope", envelope_key),
            envelope_key,
            beneficiary=beneficiary,
            amount=amount,
            secret_hash=secret_hash,
            unlock_ts=unlock_ts,
            vesting=_parse_vest(vest),
            expiry_ts=expiry_ts,
        )
    except (EnvelopeError, ValueError) as exc:
        _handle_cli_error(exc)
    _emit(
        ctx,
        {"created": envelope_key, "amount": amount, "beneficiary": beneficiary},
        f"[green]Envelope {envelope_key[:16]}... created for {beneficiary} ({amount})[/]",
    )


@cli.command("claim")
@click.option("--caller", default=None, help="Authenticated caller identity (trusted mode)")
@click.option("--key", default=None, help="Caller private key hex (signature mode)")
@click.option("--id", "envelope_id", required=True, help="32-byte envelope ID (hex)")
@click.option("--secret", required=True, help="Secret commitment to present (hex)")
@click.pass_context
def claim_envelope(ctx: click.Context, caller, key, envelope_id, secret):
    """Claim the vested, unclaimed share of an envelope (beneficiary only)."""
    registry = _registry(ctx)
    try:
        envelope_key = coerce_bytes32(envelope_id, "Envelope ID").hex()
        paid = registry.claim(_caller(ctx, caller, key, "claim", envelope_key), envelope_key, secret)
    except (EnvelopeError, ValueError) as exc:
        _handle_cli_error(exc)
    message = (
        f"[green]Released {paid} to beneficiary[/]"
        if paid
        else "[yellow]Nothing newly vested; no change[/]"
    )
    _emit(ctx, {"envelope_id": envelope_key, "paid": paid}, message)


@cli.command("revoke")
@click.option("--caller", default=None, help="Authenticated caller identity (trusted mode)")
@click.option("--key", default=None, help="Caller private key hex (signature mode)")
@click.option("--id", "envelope_id", required=True, help="32-byte envelope ID (hex)")
@click.pass_context
def revoke_envelope(ctx: click.Context, caller, key, envelope_id):
    """Revoke an envelope; unclaimed value is forfeited (owner only)."""
    registry = _registry(ctx)
    try:
        envelope_key = coerce_bytes32(envelope_id, "Envelope ID").hex()
        registry.revoke_envelope(_caller(ctx, caller, key, "revoke_envelope", envelope_key), envelope_key)
    except (EnvelopeError, ValueError) as exc:
        _handle_cli_error(exc)
    _emit(ctx, {"revoked": envelope_key}, f"[red]Envelope {envelope_key[:16]}... revoked[/]")


@cli.command("refund")
@click.option("--caller", default=None, help="Authenticated caller identity (trusted mode)")
@click.option("--key", default=None, help="Caller private key hex (signature mode)")
@click.option("--id", "envelope_id", required=True, help="32-byte envelope ID (hex)")
@click.pass_context
def refund_envelope(ctx: click.Context, caller, key, envelope_id):
    """Reclaim the unclaimed remainder of an expired envelope (owner only)."""
    registry = _registry(ctx)
    try:
        envelope_key = coerce_bytes32(envelope_id, "Envelope ID").hex()
        refunded = registry.refund_owner(_caller(ctx, caller, key, "refund_owner", envelope_key), envelope_key)
    except (EnvelopeError, ValueError) as exc:
        _handle_cli_error(exc)
    _emit(
        ctx,
        {"envelope_id": envelope_key, "refunded": refunded},
        f"[green]Refunded {refunded} to owner[/]",
    )


@cli.command("show")
@click.argument("envelope_id")
@click.pass_context
def show_envelope(ctx: click.Context, envelope_id: str):
    """Show one envelope."""
    registry = _registry(ctx)
    try:
        envelope_key = coerce_bytes32(envelope_id, "Envelope ID").hex()
        envelope = registry.get_envelope(envelope_key)
        claimable = registry.claimable(envelope_key)
    except (EnvelopeError, ValueError) as exc:
        _handle_cli_error(exc)
    if ctx.obj["json_output"]:
        click.echo(json.dumps({"envelope_id": envelope_key, "claimable": claimable, **envelope.to_dict()}, indent=2))
        return
    console.print(_envelope_table(envelope_key, envelope, claimable, ctx.obj["clock"]()))


@cli.command("list")
@click.pass_context
def list_envelopes(ctx: click.Context):
    """List all envelopes."""
    registry = _registry(ctx)
    rows = []
    for raw_id in registry.envelope_ids():
        envelope = registry.get_envelope(raw_id)
        rows.append((raw_id.hex(), envelope))

    if ctx.obj["json_output"]:
        click.echo(json.dumps([{"envelope_id": key, **env.to_dict()} for key, env in rows], indent=2))
        return

    if not rows:
        console.print(Panel("No envelopes", box=box.ROUNDED))
        return

    table = Table(title="Envelopes", box=box.ROUNDED)
    table.add_column("ID", style="cyan")
    table.add_column("Beneficiary")
    table.add_column("Amount", justify="right")
    table.add_column("Claimed", justify="right")
    table.add_column("Status")
    for key, envelope in rows:
        table.add_row(
            f"{key[:16]}...",
            envelope.beneficiary,
            str(envelope.amount),
            str(envelope.claimed),
            "[red]revoked[/]" if envelope.revoked else "[green]active[/]",
        )
    console.print(table)
