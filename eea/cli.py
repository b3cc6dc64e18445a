"""Typer-based operator CLI for the attestation service."""

import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .auth import PLAN_RATE_LIMITS, KeyRegistry
from .hashing import event_hash
from .signing import verify as verify_signature
from .storage import make_kv

app = typer.Typer(
    name="eea",
    help="Economic event attestation: key provisioning, verification, serving",
    add_completion=False,
)

console = Console(highlight=False)

_DEFAULT_DSN = "sqlite:///eea.db"


def _registry(dsn: str) -> KeyRegistry:
    if dsn.strip().lower().startswith("mem://"):
        console.print(
            "[yellow]mem:// is process-local; the key will be gone when this command exits[/yellow]"
        )
    return KeyRegistry(make_kv(dsn))


@app.command("create-key")
def create_key(
    key_id: str = typer.Argument(..., help="Stable tenant identifier"),
    plan: str = typer.Argument(..., help="free | standard | enterprise"),
    description: Optional[str] = typer.Option(None, "--description", "-d"),
    dsn: str = typer.Option(_DEFAULT_DSN, "--dsn", envvar="EEA_KV_DSN", help="Key-value store DSN"),
    rate_limit: Optional[int] = typer.Option(
        None,
        "--rate-limit",
        min=0,
        help="Requests per minute (default: the plan's limit)",
    ),
):
    """Generate an API key and register its hash.

    The raw key is printed once and cannot be recovered afterwards.
    """
    if plan not in PLAN_RATE_LIMITS:
        console.print(
            f"[red]Unknown plan:[/red] {plan} (expected one of: {', '.join(PLAN_RATE_LIMITS)})"
        )
        raise typer.Exit(code=2)

    registry = _registry(dsn)
    raw_key, key_hash, entry = registry.create(
        key_id, plan, description=description, rate_limit_per_min=rate_limit
    )

    table = Table(title="API key created", show_header=False)
    table.add_column("field", style="cyan")
    table.add_column("value")
    table.add_row("key_id", entry.key_id)
    table.add_row("plan", entry.plan)
    table.add_row("rate_limit_per_min", str(entry.rate_limit_per_min))
    table.add_row("created_at", entry.created_at)
    if entry.description:
        table.add_row("description", entry.description)
    console.print(table)

    console.print("[bold]API key[/bold] (store it now, it is not kept):")
    console.print(raw_key, soft_wrap=True)
    console.print("[bold]Key hash[/bold] (use with disable-key):")
    console.print(key_hash, soft_wrap=True)


@app.command("disable-key")
def disable_key(
    key_hash: str = typer.Argument(..., help="sha256:<hex> hash printed by create-key"),
    dsn: str = typer.Option(_DEFAULT_DSN, "--dsn", envvar="EEA_KV_DSN", help="Key-value store DSN"),
):
    """Disable an API key. Requests using it are rejected as unauthorized."""
    entry = _registry(dsn).disable(key_hash)
    if entry is None:
        console.print(f"[red]No key registered for[/red] {key_hash}")
        raise typer.Exit(code=1)
    console.print(f"[green]Disabled[/green] key_id={entry.key_id}")


@app.command()
def verify(
    record_json: Path = typer.Argument(
        ...,
        exists=True,
        dir_okay=False,
        readable=True,
        help="File holding an attestation record or a fetch response",
    ),
    secret: str = typer.Option(
        ...,
        "--secret",
        envvar="EEA_SIGNING_KEY",
        help="Signing secret (default: EEA_SIGNING_KEY)",
    ),
):
    """Recompute the event hash and check the attestation signature.

    Exits 1 if either check fails.
    """
    try:
        doc = json.loads(record_json.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        console.print(f"[red]Cannot read record:[/red] {e}")
        raise typer.Exit(code=2)

    record = doc.get("record", doc) if isinstance(doc, dict) else None
    required = ("attestation_id", "attested_at", "event_hash", "attestation_sig", "canonical_event")
    if not isinstance(record, dict) or any(k not in record for k in required):
        console.print(f"[red]Not an attestation record; need fields:[/red] {', '.join(required)}")
        raise typer.Exit(code=2)

    try:
        recomputed = event_hash(record["canonical_event"])
    except TypeError as e:
        console.print(f"[red]canonical_event is not a JSON value:[/red] {e}")
        raise typer.Exit(code=2)

    hash_ok = recomputed == record["event_hash"]
    sig_kwargs = {}
    if record.get("schema_version"):
        sig_kwargs["schema_version"] = record["schema_version"]
    sig_ok = verify_signature(
        secret,
        record["attestation_id"],
        record["event_hash"],
        record["attested_at"],
        record["attestation_sig"],
        **sig_kwargs,
    )

    console.print(f"event_hash: {'[green]ok[/green]' if hash_ok else '[red]MISMATCH[/red]'}")
    console.print(f"signature:  {'[green]ok[/green]' if sig_ok else '[red]MISMATCH[/red]'}")
    if not (hash_ok and sig_ok):
        raise typer.Exit(code=1)


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", "--host"),
    port: int = typer.Option(8000, "--port"),
):
    """Run the HTTP service under uvicorn (settings from EEA_* env)."""
    import uvicorn

    from .service_http import create_app

    uvicorn.run(create_app(), host=host, port=port, log_config=None)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
