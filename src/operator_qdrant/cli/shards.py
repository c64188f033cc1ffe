"""Shard placement CLI commands.

This module provides the commands that change shard placement:
- drain: move every replica off a peer
- clear: drop every replica on a peer in place
- equalize: copy half of a peer's shards to an empty peer
- replicate: copy or move shards to a peer
- restore-rf: bring shards back to the replication factor

Every command accepts --dry-run to print the plan without executing it.
Peers are given by id ("3") or URI substring ("qdrant-2").
"""

import logging

import typer

from operator_qdrant.cli.common import (
    ApiKeyOption,
    ClusterOption,
    CollectionsOption,
    DryRunOption,
    JsonOption,
    UrlOption,
    VerboseOption,
    configure_logging,
    open_operations,
    parse_peer,
    print_result,
    run_operation,
)
from operator_qdrant.types import ShardTransferMethod

shards_app = typer.Typer(help="Change shard placement")

logger = logging.getLogger("operator_qdrant.cli")

MethodOption = typer.Option(
    None, "--method", "-m", help="Transfer method (stream_records, snapshot, wal_delta)"
)


@shards_app.command("drain")
def drain(
    peer: str = typer.Argument(..., help="Peer id or URI substring"),
    collections: list[str] = CollectionsOption,
    method: ShardTransferMethod = MethodOption,
    dry_run: bool = DryRunOption,
    cluster: str = ClusterOption,
    url: str = UrlOption,
    api_key: str = ApiKeyOption,
    json_output: bool = JsonOption,
    verbose: bool = VerboseOption,
) -> None:
    """Move every shard replica off a peer."""
    configure_logging(verbose)

    async def _drain():
        async with open_operations(url, api_key) as ops:
            return await ops.drain_peer(
                parse_peer(peer),
                collection_names=collections or None,
                is_dry_run=dry_run,
                transfer_method=method,
                logger=logger,
                cluster_name=cluster,
            )

    result = run_operation(_drain())
    print_result(result, f"Drain peer {peer}", json_output)


@shards_app.command("clear")
def clear(
    peer: str = typer.Argument(..., help="Peer id or URI substring"),
    collections: list[str] = CollectionsOption,
    force: bool = typer.Option(
        False, "--force", help="Drop replicas even if no other Active replica exists"
    ),
    dry_run: bool = DryRunOption,
    cluster: str = ClusterOption,
    url: str = UrlOption,
    api_key: str = ApiKeyOption,
    json_output: bool = JsonOption,
    verbose: bool = VerboseOption,
) -> None:
    """Drop every shard replica on a peer without relocating it."""
    configure_logging(verbose)

    async def _clear():
        async with open_operations(url, api_key) as ops:
            return await ops.clear_peer(
                parse_peer(peer),
                collection_names=collections or None,
                is_dry_run=dry_run,
                force=force,
                logger=logger,
                cluster_name=cluster,
            )

    result = run_operation(_clear())
    print_result(result, f"Clear peer {peer}", json_output)


@shards_app.command("equalize")
def equalize(
    source: str = typer.Argument(..., help="Source peer id or URI substring"),
    target: str = typer.Argument(..., help="Empty target peer id or URI substring"),
    collections: list[str] = CollectionsOption,
    method: ShardTransferMethod = MethodOption,
    dry_run: bool = DryRunOption,
    cluster: str = ClusterOption,
    url: str = UrlOption,
    api_key: str = ApiKeyOption,
    json_output: bool = JsonOption,
    verbose: bool = VerboseOption,
) -> None:
    """Copy half of the source peer's shards to an empty target peer."""
    configure_logging(verbose)

    async def _equalize():
        async with open_operations(url, api_key) as ops:
            return await ops.equalize_shard_replication(
                parse_peer(source),
                parse_peer(target),
                collection_names=collections or None,
                is_dry_run=dry_run,
                transfer_method=method,
                logger=logger,
                cluster_name=cluster,
            )

    result = run_operation(_equalize())
    print_result(result, f"Equalize {source} -> {target}", json_output)


@shards_app.command("replicate")
def replicate(
    target: str = typer.Argument(..., help="Target peer id or URI substring"),
    source: str = typer.Option(
        None, "--source", "-s", help="Source peer (default: any Active holder)"
    ),
    shard_ids: list[int] = typer.Option(
        None, "--shard", help="Shard id (repeatable, default: all)"
    ),
    move: bool = typer.Option(False, "--move", help="Drop the source replica after transfer"),
    collections: list[str] = CollectionsOption,
    method: ShardTransferMethod = MethodOption,
    dry_run: bool = DryRunOption,
    cluster: str = ClusterOption,
    url: str = UrlOption,
    api_key: str = ApiKeyOption,
    json_output: bool = JsonOption,
    verbose: bool = VerboseOption,
) -> None:
    """Copy (or move) shards to a target peer."""
    configure_logging(verbose)

    async def _replicate():
        async with open_operations(url, api_key) as ops:
            return await ops.replicate_shards(
                parse_peer(target),
                source_peer=parse_peer(source) if source else None,
                shard_ids=shard_ids or None,
                is_move=move,
                collection_names=collections or None,
                is_dry_run=dry_run,
                transfer_method=method,
                logger=logger,
                cluster_name=cluster,
            )

    result = run_operation(_replicate())
    print_result(result, f"{'Move' if move else 'Replicate'} shards to {target}", json_output)


@shards_app.command("restore-rf")
def restore_replication_factor(
    collections: list[str] = CollectionsOption,
    method: ShardTransferMethod = MethodOption,
    dry_run: bool = DryRunOption,
    cluster: str = ClusterOption,
    url: str = UrlOption,
    api_key: str = ApiKeyOption,
    json_output: bool = JsonOption,
    verbose: bool = VerboseOption,
) -> None:
    """Copy replicas until every shard reaches the replication factor."""
    configure_logging(verbose)

    async def _restore():
        async with open_operations(url, api_key) as ops:
            return await ops.restore_shard_replication_factor(
                collection_names=collections or None,
                is_dry_run=dry_run,
                transfer_method=method,
                logger=logger,
                cluster_name=cluster,
            )

    result = run_operation(_restore())
    print_result(result, "Restore replication factor", json_output)
