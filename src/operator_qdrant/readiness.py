"""
Readiness polling for collections and shard transfers.

ReadinessWaiter polls the cluster directory until a stability condition
holds:
- ensure_ready(): the collection reports green N times in a row
- wait_for_transfer(): a shard transfer to a peer has finished

The overall deadline is enforced with asyncio.wait_for around the whole
poll loop, independent of the HTTP timeout of each call. Sleeps between
polls use wait_for on the cancel event so that cancellation interrupts
them immediately; an in-flight poll is raced against the cancel event too.
"""

import asyncio
import logging
from collections.abc import Awaitable
from typing import TypeVar

import httpx

from operator_qdrant.exceptions import (
    ClusterApiError,
    OperationCancelledError,
    ReadinessTimeoutError,
)
from operator_qdrant.protocols import ClusterDirectoryProtocol
from operator_qdrant.types import CollectionHealth, CollectionStatus, PeerId, ShardId, ShardState

logger = logging.getLogger(__name__)

T = TypeVar("T")


def validate_timing(polling_interval: float, timeout: float) -> None:
    """
    Check polling parameters.

    Raises:
        ValueError: If timeout is not positive or the polling interval
            is not shorter than the timeout.
    """
    if timeout <= 0:
        raise ValueError(f"Timeout must be positive, got {timeout}")
    if polling_interval <= 0:
        raise ValueError(f"Polling interval must be positive, got {polling_interval}")
    if polling_interval >= timeout:
        raise ValueError(
            f"Polling interval ({polling_interval}s) must be shorter than timeout ({timeout}s)"
        )


def is_green(health: CollectionHealth, check_transfers_completed: bool = False) -> bool:
    """A poll is green when the collection is green and the optimizer is ok."""
    if health.status is not CollectionStatus.GREEN or not health.optimizer_ok:
        return False
    if check_transfers_completed and health.ongoing_transfer_count > 0:
        return False
    return True


async def _until_cancelled(
    awaitable: Awaitable[T], cancel_event: asyncio.Event, operation: str
) -> T:
    """Await a call, raising OperationCancelledError as soon as cancel_event is set."""
    task = asyncio.ensure_future(awaitable)
    if cancel_event.is_set():
        task.cancel()
        raise OperationCancelledError(operation)

    waiter = asyncio.ensure_future(cancel_event.wait())
    try:
        done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
    finally:
        for pending in (task, waiter):
            if not pending.done():
                pending.cancel()

    if task in done:
        return task.result()
    raise OperationCancelledError(operation)


async def _sleep(interval: float, cancel_event: asyncio.Event, operation: str) -> None:
    try:
        await asyncio.wait_for(cancel_event.wait(), timeout=interval)
    except asyncio.TimeoutError:
        return  # Normal timeout, poll again
    raise OperationCancelledError(operation)


class ReadinessWaiter:
    """
    Polls a cluster directory until collections or transfers settle.

    Example:
        waiter = ReadinessWaiter(directory=client)
        await waiter.ensure_ready("docs", timeout=60.0, check_transfers_completed=True)
    """

    def __init__(self, directory: ClusterDirectoryProtocol) -> None:
        self.directory = directory

    async def ensure_ready(
        self,
        collection_name: str,
        polling_interval: float = 1.0,
        timeout: float = 30.0,
        required_consecutive_green_responses: int = 1,
        check_transfers_completed: bool = False,
        cancel_event: asyncio.Event | None = None,
    ) -> None:
        """
        Wait until a collection reports green enough times in a row.

        A non-green poll resets the consecutive count. Failed polls (HTTP
        errors) count as non-green.

        Args:
            collection_name: Collection to poll.
            polling_interval: Seconds between polls.
            timeout: Overall deadline in seconds.
            required_consecutive_green_responses: Green polls in a row needed.
            check_transfers_completed: Also require zero ongoing shard transfers.
            cancel_event: Set to stop waiting.

        Raises:
            ValueError: On invalid timing parameters.
            ReadinessTimeoutError: If the deadline passes first.
            OperationCancelledError: If cancel_event is set.
            CollectionNotFoundError: If the collection does not exist.
        """
        validate_timing(polling_interval, timeout)
        if required_consecutive_green_responses < 1:
            raise ValueError(
                "required_consecutive_green_responses must be at least 1, "
                f"got {required_consecutive_green_responses}"
            )
        if cancel_event is None:
            cancel_event = asyncio.Event()
        operation = f"ensure_ready({collection_name})"

        async def _poll_loop() -> None:
            consecutive = 0
            while True:
                try:
                    health = await _until_cancelled(
                        self.directory.get_collection_health(collection_name),
                        cancel_event,
                        operation,
                    )
                except (ClusterApiError, httpx.HTTPError) as e:
                    logger.warning("Health poll of '%s' failed: %s", collection_name, e)
                    health = None

                if health is not None and is_green(health, check_transfers_completed):
                    consecutive += 1
                    if consecutive >= required_consecutive_green_responses:
                        return
                else:
                    if consecutive:
                        logger.debug(
                            "Collection '%s' left green after %d polls",
                            collection_name,
                            consecutive,
                        )
                    consecutive = 0

                await _sleep(polling_interval, cancel_event, operation)

        try:
            await asyncio.wait_for(_poll_loop(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ReadinessTimeoutError(collection_name, timeout) from e

        logger.info("Collection '%s' is ready", collection_name)

    async def wait_for_transfer(
        self,
        collection_name: str,
        shard_id: ShardId,
        target_peer_id: PeerId,
        polling_interval: float = 1.0,
        timeout: float = 600.0,
        cancel_event: asyncio.Event | None = None,
    ) -> bool:
        """
        Wait until a shard transfer to a peer has finished.

        Returns:
            True once the target holds an Active replica and no transfer of
            the shard to it is in progress. False if a transfer was seen and
            then disappeared without leaving an Active replica.

        Raises:
            ValueError: On invalid timing parameters.
            ReadinessTimeoutError: If the deadline passes first.
            OperationCancelledError: If cancel_event is set.
        """
        validate_timing(polling_interval, timeout)
        if cancel_event is None:
            cancel_event = asyncio.Event()
        operation = f"wait_for_transfer({collection_name}, shard {shard_id})"

        async def _poll_loop() -> bool:
            seen_transfer = False
            while True:
                layout = await _until_cancelled(
                    self.directory.get_collection_shard_layout(collection_name),
                    cancel_event,
                    operation,
                )
                ongoing = any(
                    t.shard_id == shard_id and t.to_peer_id == target_peer_id
                    for t in layout.shard_transfers
                )
                state = None
                for replica in layout.replicas:
                    if replica.shard_id == shard_id and replica.peer_id == target_peer_id:
                        state = replica.state

                if ongoing:
                    seen_transfer = True
                elif state is ShardState.ACTIVE:
                    return True
                elif seen_transfer and state in (None, ShardState.DEAD):
                    return False

                await _sleep(polling_interval, cancel_event, operation)

        try:
            return await asyncio.wait_for(_poll_loop(), timeout=timeout)
        except asyncio.TimeoutError as e:
            raise ReadinessTimeoutError(collection_name, timeout) from e
