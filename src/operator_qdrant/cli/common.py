"""Shared helpers for the qdrant-operator CLI commands.

- Building settings and the operations facade from command-line options
- Peer selector parsing ("3" is a peer id, anything else a URI substring)
- Rich table / JSON rendering of operation results
"""

import asyncio
import json
import logging
from collections.abc import AsyncIterator, Coroutine
from contextlib import asynccontextmanager
from typing import Any, TypeVar

import typer
from rich.console import Console
from rich.table import Table

from operator_qdrant.config import ClientSettings
from operator_qdrant.factory import create_cluster_client, create_named_cluster_clients
from operator_qdrant.operations import CompoundOperationResult, CompoundOperations
from operator_qdrant.types import PeerSelector, TransferOutcome

T = TypeVar("T")

OUTCOME_STYLES = {
    TransferOutcome.PLANNED: "cyan",
    TransferOutcome.COMPLETED: "green",
    TransferOutcome.FAILED: "red",
    TransferOutcome.CANCELLED: "yellow",
}

# Reusable options
UrlOption = typer.Option(
    None,
    "--url",
    "-u",
    envvar="QDRANT_OPERATOR_URL",
    help="Qdrant peer URL (e.g., http://qdrant-0:6333)",
)
ApiKeyOption = typer.Option(
    None, "--api-key", envvar="QDRANT_OPERATOR_API_KEY", help="Qdrant API key"
)
ClusterOption = typer.Option(None, "--cluster", help="Named cluster from QDRANT_OPERATOR_CLUSTERS")
CollectionsOption = typer.Option(
    None, "--collection", "-c", help="Collection in scope (repeatable, default: all)"
)
DryRunOption = typer.Option(False, "--dry-run", help="Plan and print operations without executing")
JsonOption = typer.Option(False, "--json", "-j", help="Output as JSON")
VerboseOption = typer.Option(False, "--verbose", "-v", help="Log progress")


def configure_logging(verbose: bool) -> None:
    """Log progress messages to stderr when verbose."""
    logging.basicConfig(
        level=logging.INFO if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def parse_peer(value: str) -> PeerSelector:
    """Digits select a peer by id, anything else by URI substring."""
    value = value.strip()
    if value.isdigit():
        return int(value)
    return value


def build_settings(url: str | None = None, api_key: str | None = None) -> ClientSettings:
    settings = ClientSettings()
    overrides = {}
    if url:
        overrides["url"] = url
    if api_key:
        overrides["api_key"] = api_key
    if overrides:
        settings = settings.model_copy(update=overrides)
    return settings


@asynccontextmanager
async def open_operations(
    url: str | None = None, api_key: str | None = None
) -> AsyncIterator[CompoundOperations]:
    """Yield a CompoundOperations bound to the configured cluster(s), closing clients on exit."""
    settings = build_settings(url, api_key)
    client = create_cluster_client(settings)
    named = create_named_cluster_clients(settings)
    try:
        yield CompoundOperations(client, settings, named_directories=dict(named))
    finally:
        await client.http.aclose()
        for named_client in named.values():
            await named_client.http.aclose()


def print_result(result: CompoundOperationResult, title: str, json_output: bool) -> None:
    """Render a compound operation result and exit non-zero on failure."""
    if json_output:
        print(json.dumps(result.to_dict(), indent=2, default=str))
        if not result.is_success:
            raise typer.Exit(1)
        return

    console = Console()
    if result.transfer_results:
        table = Table(title=title)
        table.add_column("Outcome")
        table.add_column("Collection", style="cyan")
        table.add_column("Shard", justify="right")
        table.add_column("Mode")
        table.add_column("From", justify="right")
        table.add_column("To", justify="right")
        table.add_column("Error")

        for r in result.transfer_results:
            style = OUTCOME_STYLES[r.outcome]
            table.add_row(
                f"[{style}]{r.outcome.value}[/{style}]",
                r.collection_name,
                str(r.shard_id),
                r.mode.value,
                str(r.source_peer_id) if r.source_peer_id is not None else "-",
                str(r.target_peer_id) if r.target_peer_id is not None else "-",
                r.error_message or "",
            )
        console.print(table)

    for rejected in result.rejected:
        console.print(
            f"[yellow]Not planned:[/yellow] '{rejected.collection_name}' shard "
            f"{rejected.shard_id}: {rejected.reason}"
        )

    prefix = "[dry run] " if result.is_dry_run else ""
    summary = (
        f"{prefix}{len(result.transfer_results)} operations, "
        f"{result.already_satisfied_count} shards already satisfied "
        f"({result.time_seconds:.1f}s)"
    )
    if result.is_success:
        console.print(f"[green]{summary}[/green]")
    else:
        console.print(f"[red]Failed:[/red] {result.error_message}")
        console.print(summary)
        raise typer.Exit(1)


def run_operation(coro: Coroutine[Any, Any, T]) -> T:
    """Run a coroutine, turning input validation errors into exit code 2."""
    try:
        return asyncio.run(coro)
    except ValueError as e:
        Console(stderr=True).print(f"[red]Error:[/red] {e}")
        raise typer.Exit(2) from e
