"""
Compound cluster operations.

CompoundOperations composes snapshot, peer resolution, planning and
execution into the public cluster operations:
- drain_peer: move every replica off a peer
- clear_peer: drop every replica on a peer in place
- equalize_shard_replication: copy half of a peer's shards to an empty peer
- restore_shard_replication_factor: bring shards back to the replication factor
- replicate_shards / replicate_shards_to_peer: copy or move shards to a peer

Every call fetches a fresh snapshot and shares no state with other calls.
Expected domain failures (unknown or ambiguous peer, missing collection,
planning precondition violations, per-shard transfer failures) are reported
in the returned CompoundOperationResult; only input validation errors raise
ValueError.
"""

import asyncio
import logging
import time
from collections.abc import AsyncIterator, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

import httpx

from operator_qdrant.config import ClientSettings
from operator_qdrant.exceptions import (
    AmbiguousPeerSelectorError,
    ClusterApiError,
    CollectionNotFoundError,
    InvalidClusterStateError,
    OperationCancelledError,
    PeerNotFoundError,
    PlanningError,
    ReadinessTimeoutError,
)
from operator_qdrant.executor import TransferExecutor
from operator_qdrant.planner import (
    plan_clear,
    plan_drain,
    plan_equalize,
    plan_replicate_shards,
    plan_restore_replication_factor,
)
from operator_qdrant.protocols import ClusterDirectoryProtocol
from operator_qdrant.readiness import ReadinessWaiter
from operator_qdrant.resolver import resolve_peer
from operator_qdrant.topology import ClusterTopologySnapshot, fetch_snapshot
from operator_qdrant.types import (
    PeerId,
    PeerSelector,
    RejectedShard,
    ShardId,
    ShardKey,
    ShardTransferMethod,
    ShardTransferOperation,
    ShardTransferResult,
    TransferPlan,
)

_log = logging.getLogger(__name__)

# Failures reported as a failed result instead of raised
_EXPECTED_ERRORS = (
    PeerNotFoundError,
    AmbiguousPeerSelectorError,
    InvalidClusterStateError,
    PlanningError,
    CollectionNotFoundError,
    ClusterApiError,
    httpx.HTTPError,
)


@dataclass(frozen=True)
class PeerInfo:
    """
    A resolved peer and its cluster neighbours.

    Attributes:
        peer_id: The resolved peer.
        uri: Its URI.
        other_peer_ids: Ids of every other peer, in cluster order.
        uri_per_peer_id: URI of every peer, including this one.
    """

    peer_id: PeerId
    uri: str
    other_peer_ids: list[PeerId]
    uri_per_peer_id: dict[PeerId, str]


@dataclass
class CompoundOperationResult:
    """
    Aggregated outcome of a compound operation.

    Attributes:
        is_success: True when planning succeeded, nothing was rejected and
            every operation succeeded.
        error_message: Why the operation failed, None on success.
        is_dry_run: Whether requests were suppressed.
        planned_operations: Operations the planner produced, in order.
        transfer_results: One result per planned operation, in order.
        already_satisfied: Shards that needed no operation.
        rejected: Shards that needed work the planner could not schedule.
        time_seconds: Wall time of the whole call.
        is_peer_empty: Set by check_is_peer_empty only.
    """

    is_success: bool = True
    error_message: str | None = None
    is_dry_run: bool = False
    planned_operations: list[ShardTransferOperation] = field(default_factory=list)
    transfer_results: list[ShardTransferResult] = field(default_factory=list)
    already_satisfied: list[ShardKey] = field(default_factory=list)
    rejected: list[RejectedShard] = field(default_factory=list)
    time_seconds: float = 0.0
    is_peer_empty: bool | None = None

    @property
    def already_satisfied_count(self) -> int:
        return len(self.already_satisfied)

    @property
    def failed_results(self) -> list[ShardTransferResult]:
        return [r for r in self.transfer_results if not r.is_success]

    @classmethod
    def failure(cls, error_message: str, is_dry_run: bool = False) -> "CompoundOperationResult":
        return cls(is_success=False, error_message=error_message, is_dry_run=is_dry_run)

    @classmethod
    def from_execution(
        cls,
        plan: TransferPlan,
        results: list[ShardTransferResult],
        is_dry_run: bool,
    ) -> "CompoundOperationResult":
        failed = [r for r in results if not r.is_success]
        errors = []
        if failed:
            errors.append(f"{len(failed)} of {len(results)} shard operations failed")
        if plan.rejected:
            errors.append(f"{len(plan.rejected)} shards could not be planned")
        return cls(
            is_success=not errors,
            error_message="; ".join(errors) or None,
            is_dry_run=is_dry_run,
            planned_operations=list(plan.operations),
            transfer_results=results,
            already_satisfied=list(plan.already_satisfied),
            rejected=list(plan.rejected),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dict."""
        return {
            "is_success": self.is_success,
            "error_message": self.error_message,
            "is_dry_run": self.is_dry_run,
            "time_seconds": round(self.time_seconds, 3),
            "already_satisfied_count": self.already_satisfied_count,
            "is_peer_empty": self.is_peer_empty,
            "transfer_results": [
                {
                    "outcome": r.outcome.value,
                    "collection_name": r.collection_name,
                    "shard_id": r.shard_id,
                    "source_peer_id": r.source_peer_id,
                    "target_peer_id": r.target_peer_id,
                    "mode": r.mode.value,
                    "error_message": r.error_message,
                }
                for r in self.transfer_results
            ],
            "rejected": [
                {"collection_name": r.collection_name, "shard_id": r.shard_id, "reason": r.reason}
                for r in self.rejected
            ],
        }


def _validate_selector(selector: PeerSelector | None, name: str = "peer") -> None:
    if isinstance(selector, bool) or selector is None:
        raise ValueError(f"Invalid {name} selector: {selector!r}")
    if isinstance(selector, str) and not selector.strip():
        raise ValueError(f"{name.capitalize()} selector must not be empty")


class CompoundOperations:
    """
    Facade for compound cluster operations.

    Attributes:
        directory: Default cluster directory.
        settings: Concurrency, transfer method and polling defaults.
        named_directories: Additional clusters addressable by cluster_name.

    Example:
        async with create_http_client(settings) as http:
            ops = CompoundOperations(ClusterClient(http=http), settings)
            result = await ops.drain_peer("qdrant-2", is_dry_run=True)
            for op in result.planned_operations:
                print(op.describe())
    """

    def __init__(
        self,
        directory: ClusterDirectoryProtocol,
        settings: ClientSettings | None = None,
        named_directories: dict[str, ClusterDirectoryProtocol] | None = None,
    ) -> None:
        self.directory = directory
        self.settings = settings or ClientSettings()
        self.named_directories = named_directories or {}

    def get_directory(self, cluster_name: str | None) -> ClusterDirectoryProtocol:
        if cluster_name is None:
            return self.directory
        if cluster_name not in self.named_directories:
            known = ", ".join(sorted(self.named_directories)) or "none"
            raise ValueError(f"Unknown cluster '{cluster_name}'. Known clusters: {known}")
        return self.named_directories[cluster_name]

    def _executor(self, directory: ClusterDirectoryProtocol) -> TransferExecutor:
        return TransferExecutor(
            directory=directory,
            max_concurrency=self.settings.max_concurrent_transfers,
            transfer_completion_timeout=self.settings.transfer_completion_timeout,
            polling_interval=self.settings.polling_interval,
        )

    async def _run(
        self,
        operation_name: str,
        build_plan: Callable[[ClusterTopologySnapshot], TransferPlan],
        collection_names: Iterable[str] | None,
        is_dry_run: bool,
        logger: logging.Logger | None,
        cluster_name: str | None,
        cancel_event: asyncio.Event | None,
    ) -> CompoundOperationResult:
        progress = logger or _log
        started = time.monotonic()
        directory = self.get_directory(cluster_name)

        try:
            snapshot = await fetch_snapshot(directory, collection_names)
            plan = build_plan(snapshot)
        except _EXPECTED_ERRORS as e:
            progress.error("%s failed before any change: %s", operation_name, e)
            result = CompoundOperationResult.failure(str(e), is_dry_run)
            result.time_seconds = time.monotonic() - started
            return result

        progress.info(
            "%s: %d operations planned, %d shards already satisfied, %d rejected",
            operation_name,
            len(plan.operations),
            len(plan.already_satisfied),
            len(plan.rejected),
        )
        for rejected in plan.rejected:
            progress.warning(
                "Collection '%s' shard %d not planned: %s",
                rejected.collection_name,
                rejected.shard_id,
                rejected.reason,
            )

        results = await self._executor(directory).execute(
            plan, is_dry_run=is_dry_run, logger=logger, cancel_event=cancel_event
        )
        result = CompoundOperationResult.from_execution(plan, results, is_dry_run)
        result.time_seconds = time.monotonic() - started
        return result

    async def drain_peer(
        self,
        peer: PeerSelector,
        collection_names: Iterable[str] | None = None,
        is_dry_run: bool = False,
        transfer_method: ShardTransferMethod | None = None,
        logger: logging.Logger | None = None,
        cluster_name: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CompoundOperationResult:
        """
        Move every replica off a peer.

        Args:
            peer: Peer id or URI substring.
            collection_names: Collections in scope. None means all.
            is_dry_run: Plan and report without issuing requests.
            transfer_method: Defaults to settings.transfer_method.
            logger: Receives progress messages.
            cluster_name: Named cluster to operate on. None means the default one.
            cancel_event: Set to stop submitting further operations.

        Raises:
            ValueError: On an empty selector or unknown cluster_name.
        """
        _validate_selector(peer)
        method = transfer_method or self.settings.transfer_method

        def _plan(snapshot: ClusterTopologySnapshot) -> TransferPlan:
            peer_id = resolve_peer(peer, snapshot).peer_id
            return plan_drain(snapshot, peer_id, method=method)

        return await self._run(
            f"Drain peer {peer}",
            _plan,
            collection_names,
            is_dry_run,
            logger,
            cluster_name,
            cancel_event,
        )

    async def clear_peer(
        self,
        peer: PeerSelector,
        collection_names: Iterable[str] | None = None,
        is_dry_run: bool = False,
        force: bool = False,
        logger: logging.Logger | None = None,
        cluster_name: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CompoundOperationResult:
        """
        Drop every replica on a peer without relocating it.

        Refuses (with no changes) if any affected shard has fewer than two
        Active replicas, unless force is set.
        """
        _validate_selector(peer)

        def _plan(snapshot: ClusterTopologySnapshot) -> TransferPlan:
            peer_id = resolve_peer(peer, snapshot).peer_id
            return plan_clear(snapshot, peer_id, force=force)

        return await self._run(
            f"Clear peer {peer}",
            _plan,
            collection_names,
            is_dry_run,
            logger,
            cluster_name,
            cancel_event,
        )

    async def drop_collection_shards_from_peer(
        self,
        collection_name: str,
        peer: PeerSelector,
        shard_ids: Iterable[ShardId] | None = None,
        is_dry_run: bool = False,
        force: bool = False,
        logger: logging.Logger | None = None,
        cluster_name: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CompoundOperationResult:
        """Drop replicas of one collection from a peer, with the same safety check as clear_peer."""
        _validate_selector(peer)
        wanted = list(shard_ids) if shard_ids is not None else None

        def _plan(snapshot: ClusterTopologySnapshot) -> TransferPlan:
            peer_id = resolve_peer(peer, snapshot).peer_id
            return plan_clear(snapshot, peer_id, force=force, shard_ids=wanted)

        return await self._run(
            f"Drop '{collection_name}' shards from peer {peer}",
            _plan,
            [collection_name],
            is_dry_run,
            logger,
            cluster_name,
            cancel_event,
        )

    async def equalize_shard_replication(
        self,
        source_peer: PeerSelector,
        empty_target_peer: PeerSelector,
        collection_names: Iterable[str] | None = None,
        is_dry_run: bool = False,
        transfer_method: ShardTransferMethod | None = None,
        logger: logging.Logger | None = None,
        cluster_name: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CompoundOperationResult:
        """
        Copy half of the source peer's shards to an empty target peer.

        Raises:
            ValueError: On empty selectors, an unknown cluster_name, or when
                both selectors resolve to the same peer.
        """
        _validate_selector(source_peer, "source peer")
        _validate_selector(empty_target_peer, "target peer")
        method = transfer_method or self.settings.transfer_method

        def _plan(snapshot: ClusterTopologySnapshot) -> TransferPlan:
            source_id = resolve_peer(source_peer, snapshot).peer_id
            target_id = resolve_peer(empty_target_peer, snapshot).peer_id
            return plan_equalize(snapshot, source_id, target_id, method=method)

        return await self._run(
            f"Equalize from peer {source_peer} to peer {empty_target_peer}",
            _plan,
            collection_names,
            is_dry_run,
            logger,
            cluster_name,
            cancel_event,
        )

    async def restore_shard_replication_factor(
        self,
        collection_names: Iterable[str] | None = None,
        is_dry_run: bool = False,
        transfer_method: ShardTransferMethod | None = None,
        logger: logging.Logger | None = None,
        cluster_name: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CompoundOperationResult:
        """Copy replicas until every shard reaches its collection's replication factor."""
        method = transfer_method or self.settings.transfer_method

        def _plan(snapshot: ClusterTopologySnapshot) -> TransferPlan:
            return plan_restore_replication_factor(snapshot, method=method)

        return await self._run(
            "Restore replication factor",
            _plan,
            collection_names,
            is_dry_run,
            logger,
            cluster_name,
            cancel_event,
        )

    async def stream_restore_shard_replication_factor(
        self,
        collection_names: Iterable[str] | None = None,
        is_dry_run: bool = False,
        transfer_method: ShardTransferMethod | None = None,
        logger: logging.Logger | None = None,
        cluster_name: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[list[ShardTransferResult]]:
        """
        Restore replication factor one shard at a time.

        Yields one batch of results per (collection, shard). The next shard
        is started only when the consumer asks for it, so the caller can
        wait for readiness in between. Shards the planner rejected are
        yielded first, as one batch of FAILED results carrying the reason.

        Raises:
            CollectionNotFoundError: If a requested collection does not exist.
            ClusterApiError: If the snapshot cannot be fetched.
        """
        progress = logger or _log
        method = transfer_method or self.settings.transfer_method
        directory = self.get_directory(cluster_name)

        snapshot = await fetch_snapshot(directory, collection_names)
        plan = plan_restore_replication_factor(snapshot, method=method)
        progress.info(
            "Restore replication factor: %d operations planned, "
            "%d shards already satisfied, %d rejected",
            len(plan.operations),
            len(plan.already_satisfied),
            len(plan.rejected),
        )
        for rejected in plan.rejected:
            progress.warning(
                "Collection '%s' shard %d not planned: %s",
                rejected.collection_name,
                rejected.shard_id,
                rejected.reason,
            )

        # Shards that cannot be restored come first, as one FAILED batch
        if plan.rejected:
            yield [ShardTransferResult.from_rejected(r) for r in plan.rejected]

        async for batch in self._executor(directory).stream(
            plan, is_dry_run=is_dry_run, logger=logger, cancel_event=cancel_event
        ):
            yield batch

    async def replicate_shards(
        self,
        target_peer: PeerSelector,
        source_peer: PeerSelector | None = None,
        shard_ids: Iterable[ShardId] | None = None,
        is_move: bool = False,
        collection_names: Iterable[str] | None = None,
        is_dry_run: bool = False,
        transfer_method: ShardTransferMethod | None = None,
        logger: logging.Logger | None = None,
        cluster_name: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CompoundOperationResult:
        """
        Copy (or move) shards to a target peer.

        Shards already on the target are reported as already satisfied.

        Args:
            target_peer: Peer to place replicas on.
            source_peer: Peer to copy from. None picks the first Active holder.
            shard_ids: Explicit shards. None means the source's Active shards,
                or every shard when no source is given.
            is_move: Drop the source replica after each transfer.

        Raises:
            ValueError: On empty selectors, an unknown cluster_name, or when
                source and target resolve to the same peer.
        """
        _validate_selector(target_peer, "target peer")
        if source_peer is not None:
            _validate_selector(source_peer, "source peer")
        method = transfer_method or self.settings.transfer_method
        wanted = list(shard_ids) if shard_ids is not None else None

        def _plan(snapshot: ClusterTopologySnapshot) -> TransferPlan:
            target_id = resolve_peer(target_peer, snapshot).peer_id
            source_id = None
            if source_peer is not None:
                source_id = resolve_peer(source_peer, snapshot).peer_id
            return plan_replicate_shards(
                snapshot,
                target_id,
                source_peer_id=source_id,
                shard_ids=wanted,
                is_move=is_move,
                method=method,
            )

        return await self._run(
            f"{'Move' if is_move else 'Replicate'} shards to peer {target_peer}",
            _plan,
            collection_names,
            is_dry_run,
            logger,
            cluster_name,
            cancel_event,
        )

    async def replicate_shards_to_peer(
        self,
        target_peer: PeerSelector,
        collection_names: Iterable[str] | None = None,
        is_dry_run: bool = False,
        transfer_method: ShardTransferMethod | None = None,
        logger: logging.Logger | None = None,
        cluster_name: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CompoundOperationResult:
        """Copy every shard missing on the target peer from its first Active holder."""
        return await self.replicate_shards(
            target_peer,
            collection_names=collection_names,
            is_dry_run=is_dry_run,
            transfer_method=transfer_method,
            logger=logger,
            cluster_name=cluster_name,
            cancel_event=cancel_event,
        )

    async def get_peer_info(
        self, peer: PeerSelector, cluster_name: str | None = None
    ) -> PeerInfo:
        """
        Resolve a peer and list the other cluster peers.

        Raises:
            ValueError: On an empty selector or unknown cluster_name.
            PeerNotFoundError: If no peer matches.
            AmbiguousPeerSelectorError: If more than one peer matches.
            InvalidClusterStateError: If peers report duplicated URIs.
        """
        _validate_selector(peer)
        directory = self.get_directory(cluster_name)
        snapshot = await fetch_snapshot(directory, collection_names=[], with_loads=False)
        resolved = resolve_peer(peer, snapshot)
        return PeerInfo(
            peer_id=resolved.peer_id,
            uri=resolved.uri,
            other_peer_ids=[p for p in snapshot.peer_ids if p != resolved.peer_id],
            uri_per_peer_id={p.peer_id: p.uri for p in snapshot.peers},
        )

    async def check_is_peer_empty(
        self,
        peer: PeerSelector,
        collection_names: Iterable[str] | None = None,
        cluster_name: str | None = None,
    ) -> CompoundOperationResult:
        """Report whether a peer hosts no replica of any collection in scope."""
        _validate_selector(peer)
        started = time.monotonic()
        directory = self.get_directory(cluster_name)
        try:
            snapshot = await fetch_snapshot(directory, collection_names)
            peer_id = resolve_peer(peer, snapshot).peer_id
        except _EXPECTED_ERRORS as e:
            result = CompoundOperationResult.failure(str(e))
        else:
            result = CompoundOperationResult(is_peer_empty=snapshot.is_peer_empty(peer_id))
        result.time_seconds = time.monotonic() - started
        return result

    async def ensure_collection_ready(
        self,
        collection_name: str,
        polling_interval: float | None = None,
        timeout: float | None = None,
        required_consecutive_green_responses: int = 1,
        check_transfers_completed: bool = False,
        cluster_name: str | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> CompoundOperationResult:
        """
        Wait until a collection is green.

        Timing defaults come from settings.polling_interval and
        settings.readiness_timeout.

        Raises:
            ValueError: On invalid timing parameters or unknown cluster_name.
        """
        if polling_interval is None:
            polling_interval = self.settings.polling_interval
        if timeout is None:
            timeout = self.settings.readiness_timeout

        started = time.monotonic()
        waiter = ReadinessWaiter(self.get_directory(cluster_name))
        try:
            await waiter.ensure_ready(
                collection_name,
                polling_interval=polling_interval,
                timeout=timeout,
                required_consecutive_green_responses=required_consecutive_green_responses,
                check_transfers_completed=check_transfers_completed,
                cancel_event=cancel_event,
            )
        except (ReadinessTimeoutError, OperationCancelledError, CollectionNotFoundError) as e:
            result = CompoundOperationResult.failure(str(e))
        else:
            result = CompoundOperationResult()
        result.time_seconds = time.monotonic() - started
        return result
