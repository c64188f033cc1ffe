"""Cluster inspection CLI commands.

This module provides read-only commands:
- peers: list cluster peers with their replica counts, or show one peer
- is-empty: check whether a peer hosts any replica
- wait-ready: poll a collection until it is green
"""

import json

import typer
from rich.console import Console
from rich.table import Table

from operator_qdrant.cli.common import (
    ApiKeyOption,
    ClusterOption,
    CollectionsOption,
    JsonOption,
    UrlOption,
    VerboseOption,
    configure_logging,
    open_operations,
    parse_peer,
    print_result,
    run_operation,
)
from operator_qdrant.exceptions import (
    AmbiguousPeerSelectorError,
    ClusterApiError,
    InvalidClusterStateError,
    PeerNotFoundError,
)
from operator_qdrant.topology import fetch_snapshot

peers_app = typer.Typer(help="Inspect cluster peers and collections")


@peers_app.command("peers")
def list_peers(
    peer: str = typer.Argument(None, help="Show only this peer (id or URI substring)"),
    cluster: str = ClusterOption,
    url: str = UrlOption,
    api_key: str = ApiKeyOption,
    json_output: bool = JsonOption,
    verbose: bool = VerboseOption,
) -> None:
    """List cluster peers and how many shard replicas each one hosts."""
    configure_logging(verbose)

    async def _peers():
        async with open_operations(url, api_key) as ops:
            if peer is not None:
                info = await ops.get_peer_info(parse_peer(peer), cluster_name=cluster)
                snapshot = await fetch_snapshot(ops.get_directory(cluster))
                return {info.peer_id: info.uri}, snapshot.peer_loads()
            snapshot = await fetch_snapshot(ops.get_directory(cluster))
            return {p.peer_id: p.uri for p in snapshot.peers}, snapshot.peer_loads()

    try:
        peers, loads = run_operation(_peers())
    except (
        PeerNotFoundError,
        AmbiguousPeerSelectorError,
        InvalidClusterStateError,
        ClusterApiError,
    ) as e:
        print(str(e))
        raise typer.Exit(1) from e

    if json_output:
        data = [
            {"peer_id": peer_id, "uri": uri, "replica_count": loads.get(peer_id, 0)}
            for peer_id, uri in peers.items()
        ]
        print(json.dumps(data, indent=2))
        return

    console = Console()
    table = Table(title="Peers")
    table.add_column("ID", justify="right", style="cyan")
    table.add_column("URI")
    table.add_column("Replicas", justify="right")

    for peer_id, uri in peers.items():
        table.add_row(str(peer_id), uri, str(loads.get(peer_id, 0)))

    console.print(table)


@peers_app.command("is-empty")
def is_empty(
    peer: str = typer.Argument(..., help="Peer id or URI substring"),
    collections: list[str] = CollectionsOption,
    cluster: str = ClusterOption,
    url: str = UrlOption,
    api_key: str = ApiKeyOption,
    json_output: bool = JsonOption,
    verbose: bool = VerboseOption,
) -> None:
    """Check whether a peer hosts no shard replicas. Exits 1 if it is not empty."""
    configure_logging(verbose)

    async def _check():
        async with open_operations(url, api_key) as ops:
            return await ops.check_is_peer_empty(
                parse_peer(peer),
                collection_names=collections or None,
                cluster_name=cluster,
            )

    result = run_operation(_check())
    if not result.is_success:
        print_result(result, f"Peer {peer}", json_output)

    if json_output:
        print(json.dumps(result.to_dict(), indent=2, default=str))
    elif result.is_peer_empty:
        print(f"Peer {peer} is empty")
    else:
        print(f"Peer {peer} hosts shard replicas")

    if not result.is_peer_empty:
        raise typer.Exit(1)


@peers_app.command("wait-ready")
def wait_ready(
    collection: str = typer.Argument(..., help="Collection name"),
    timeout: float = typer.Option(None, "--timeout", "-t", help="Seconds to wait"),
    interval: float = typer.Option(None, "--interval", "-i", help="Seconds between polls"),
    consecutive: int = typer.Option(
        1, "--consecutive", help="Green responses in a row required"
    ),
    transfers: bool = typer.Option(
        False, "--check-transfers", help="Also wait for shard transfers to finish"
    ),
    cluster: str = ClusterOption,
    url: str = UrlOption,
    api_key: str = ApiKeyOption,
    json_output: bool = JsonOption,
    verbose: bool = VerboseOption,
) -> None:
    """Wait until a collection is green."""
    configure_logging(verbose)

    async def _wait():
        async with open_operations(url, api_key) as ops:
            return await ops.ensure_collection_ready(
                collection,
                polling_interval=interval,
                timeout=timeout,
                required_consecutive_green_responses=consecutive,
                check_transfers_completed=transfers,
                cluster_name=cluster,
            )

    result = run_operation(_wait())
    if json_output or not result.is_success:
        print_result(result, f"Collection {collection}", json_output)
        return
    print(f"Collection '{collection}' is ready ({result.time_seconds:.1f}s)")
