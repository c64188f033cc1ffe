"""
Transfer plan execution.

TransferExecutor runs the operations of a TransferPlan against a cluster
directory:
- Operations are grouped by (collection, shard); a group runs in plan order
  so that a shard never has two transfers in flight.
- Distinct groups run concurrently, bounded by an asyncio.Semaphore.
- Every failure (HTTP error, negative acknowledgement, completion timeout)
  becomes a FAILED ShardTransferResult; execute() never raises for them.
- Dry runs report every operation as PLANNED and issue no request.
- Once cancel_event is set no further operation is submitted; remaining
  ones are reported as CANCELLED. Calls already in flight are not undone.

Moves are executed as copy, wait for completion, drop source, so that a
failed copy never deletes the source replica.
"""

import asyncio
import logging
from collections.abc import AsyncIterator

import httpx

from operator_qdrant.exceptions import (
    ClusterApiError,
    CollectionNotFoundError,
    OperationCancelledError,
    ReadinessTimeoutError,
)
from operator_qdrant.protocols import ClusterDirectoryProtocol
from operator_qdrant.readiness import ReadinessWaiter
from operator_qdrant.types import (
    ShardKey,
    ShardTransferMode,
    ShardTransferOperation,
    ShardTransferResult,
    TransferOutcome,
    TransferPlan,
)

_log = logging.getLogger(__name__)

# Failures that are recorded per operation instead of raised
_OPERATION_ERRORS = (
    ClusterApiError,
    CollectionNotFoundError,
    ReadinessTimeoutError,
    httpx.HTTPError,
    ValueError,
)


def group_operations(plan: TransferPlan) -> list[list[ShardTransferOperation]]:
    """Split plan operations into per-(collection, shard) groups, in first-seen order."""
    groups: dict[ShardKey, list[ShardTransferOperation]] = {}
    for operation in plan.operations:
        groups.setdefault(operation.key, []).append(operation)
    return list(groups.values())


class TransferExecutor:
    """
    Executes transfer plans with bounded concurrency.

    Attributes:
        directory: Cluster directory that receives the requests.
        max_concurrency: Maximum number of shard groups in flight.
        transfer_completion_timeout: Seconds a move waits for its copy to finish.
        polling_interval: Seconds between completion polls.

    Example:
        executor = TransferExecutor(directory=client, max_concurrency=4)
        results = await executor.execute(plan)
        failed = [r for r in results if not r.is_success]
    """

    def __init__(
        self,
        directory: ClusterDirectoryProtocol,
        max_concurrency: int = 4,
        transfer_completion_timeout: float = 600.0,
        polling_interval: float = 1.0,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError(f"max_concurrency must be at least 1, got {max_concurrency}")
        self.directory = directory
        self.max_concurrency = max_concurrency
        self.transfer_completion_timeout = transfer_completion_timeout
        self.polling_interval = polling_interval
        self._waiter = ReadinessWaiter(directory)

    async def execute(
        self,
        plan: TransferPlan,
        is_dry_run: bool = False,
        logger: logging.Logger | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> list[ShardTransferResult]:
        """
        Execute every operation of a plan.

        Args:
            plan: Plan to execute.
            is_dry_run: Report operations as planned without issuing requests.
            logger: Receives per-operation progress messages.
            cancel_event: Set to stop submitting further operations.

        Returns:
            One result per operation, in plan order.
        """
        progress = logger or _log
        if cancel_event is None:
            cancel_event = asyncio.Event()

        if is_dry_run:
            return self._planned(plan.operations, progress)

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _run_bounded(
            group: list[ShardTransferOperation], results: list[ShardTransferResult]
        ) -> None:
            async with semaphore:
                await self._run_group(group, progress, cancel_event, results)

        groups = group_operations(plan)
        grouped: list[list[ShardTransferResult]] = [[] for _ in groups]
        outcomes = await asyncio.gather(
            *(_run_bounded(g, r) for g, r in zip(groups, grouped)),
            return_exceptions=True,
        )

        # A group that raised keeps the results it produced; the rest fail
        for group, results, outcome in zip(groups, grouped, outcomes):
            if outcome is None:
                continue
            if not isinstance(outcome, Exception):
                raise outcome
            progress.error(
                "Unexpected error in shard group %s: %r", group[0].describe(), outcome
            )
            for operation in group[len(results):]:
                results.append(
                    ShardTransferResult.from_operation(
                        operation, TransferOutcome.FAILED, f"unexpected error: {outcome!r}"
                    )
                )

        by_operation = {}
        for group, results in zip(groups, grouped):
            for operation, result in zip(group, results):
                by_operation[id(operation)] = result
        return [by_operation[id(operation)] for operation in plan.operations]

    async def stream(
        self,
        plan: TransferPlan,
        is_dry_run: bool = False,
        logger: logging.Logger | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> AsyncIterator[list[ShardTransferResult]]:
        """
        Execute a plan one (collection, shard) group at a time.

        Yields one batch of results per group, in plan order. The next group
        is started only when the consumer asks for the next batch, so the
        caller can wait for cluster readiness in between.
        """
        progress = logger or _log
        if cancel_event is None:
            cancel_event = asyncio.Event()

        for group in group_operations(plan):
            if is_dry_run:
                yield self._planned(group, progress)
            else:
                yield await self._run_group(group, progress, cancel_event)

    def _planned(
        self, operations: list[ShardTransferOperation], progress: logging.Logger
    ) -> list[ShardTransferResult]:
        results = []
        for operation in operations:
            progress.info("[dry run] Would %s", operation.describe())
            results.append(ShardTransferResult.from_operation(operation, TransferOutcome.PLANNED))
        return results

    async def _run_group(
        self,
        group: list[ShardTransferOperation],
        progress: logging.Logger,
        cancel_event: asyncio.Event,
        results: list[ShardTransferResult] | None = None,
    ) -> list[ShardTransferResult]:
        if results is None:
            results = []
        for operation in group:
            if cancel_event.is_set():
                results.append(
                    ShardTransferResult.from_operation(
                        operation,
                        TransferOutcome.CANCELLED,
                        "cancelled before submission",
                    )
                )
                continue
            results.append(await self._run_operation(operation, progress, cancel_event))
        return results

    async def _run_operation(
        self,
        operation: ShardTransferOperation,
        progress: logging.Logger,
        cancel_event: asyncio.Event,
    ) -> ShardTransferResult:
        progress.info("Starting: %s", operation.describe())
        try:
            if operation.mode is ShardTransferMode.DROP:
                error = await self._drop(operation)
            elif operation.mode is ShardTransferMode.COPY:
                error = await self._copy(operation)
            else:
                error = await self._move(operation, cancel_event)
        except OperationCancelledError as e:
            progress.warning("Cancelled: %s", operation.describe())
            return ShardTransferResult.from_operation(operation, TransferOutcome.CANCELLED, str(e))
        except _OPERATION_ERRORS as e:
            error = str(e) or type(e).__name__

        if error is not None:
            progress.error("Failed: %s: %s", operation.describe(), error)
            return ShardTransferResult.from_operation(operation, TransferOutcome.FAILED, error)

        progress.info("Completed: %s", operation.describe())
        return ShardTransferResult.from_operation(operation, TransferOutcome.COMPLETED)

    async def _copy(self, operation: ShardTransferOperation) -> str | None:
        assert operation.target_peer_id is not None
        accepted = await self.directory.request_shard_transfer(
            operation.collection_name,
            operation.shard_id,
            operation.source_peer_id,
            operation.target_peer_id,
            operation.method,
            is_move=False,
        )
        if not accepted:
            return "shard transfer request was not acknowledged"
        return None

    async def _drop(self, operation: ShardTransferOperation) -> str | None:
        accepted = await self.directory.drop_shard_replica(
            operation.collection_name, operation.shard_id, operation.source_peer_id
        )
        if not accepted:
            return "drop replica request was not acknowledged"
        return None

    async def _move(
        self, operation: ShardTransferOperation, cancel_event: asyncio.Event
    ) -> str | None:
        assert operation.target_peer_id is not None
        error = await self._copy(operation)
        if error is not None:
            return error

        finished = await self._waiter.wait_for_transfer(
            operation.collection_name,
            operation.shard_id,
            operation.target_peer_id,
            polling_interval=self.polling_interval,
            timeout=self.transfer_completion_timeout,
            cancel_event=cancel_event,
        )
        if not finished:
            return (
                f"transfer to peer {operation.target_peer_id} ended without an "
                f"active replica, source replica kept"
            )

        return await self._drop(operation)
