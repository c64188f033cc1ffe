"""
Shared fixtures for operator-qdrant tests.

FakeClusterDirectory is an in-memory ClusterDirectoryProtocol that applies
shard transfers and drops to its own placement, so compound operations
can be run end to end and the resulting placement asserted.
"""

import asyncio

import pytest

from operator_qdrant.exceptions import ClusterApiError, CollectionNotFoundError
from operator_qdrant.types import (
    ClusterTopology,
    CollectionDescriptor,
    CollectionHealth,
    CollectionShardLayout,
    CollectionStatus,
    Peer,
    ShardReplica,
    ShardState,
    ShardTransferInfo,
    ShardTransferMethod,
)


class FakeClusterDirectory:
    """In-memory cluster that applies requested placement changes immediately."""

    def __init__(
        self,
        peers: dict[int, str],
        collections: dict[str, CollectionDescriptor],
        replicas: dict[str, list[ShardReplica]],
    ):
        self.peers = peers
        self.collections = collections
        self.replicas = {name: list(items) for name, items in replicas.items()}
        self.health: dict[str, list[CollectionHealth]] = {}
        self.transfers: dict[str, list[ShardTransferInfo]] = {}
        self.calls: list[tuple] = []

        # Failure injection
        self.rejected_transfers: set[tuple[str, int]] = set()
        self.failing_transfers: set[tuple[str, int]] = set()

        # Concurrency tracking
        self.transfer_delay = 0.0
        self.in_flight = 0
        self.max_in_flight = 0

    @property
    def mutation_calls(self) -> list[tuple]:
        return [c for c in self.calls if c[0] in ("transfer", "drop", "abort")]

    def shards_on(self, peer_id: int, collection_name: str = "docs") -> list[int]:
        return sorted(r.shard_id for r in self.replicas[collection_name] if r.peer_id == peer_id)

    def peers_of(self, collection_name: str, shard_id: int) -> list[int]:
        return sorted(
            r.peer_id for r in self.replicas[collection_name] if r.shard_id == shard_id
        )

    async def get_cluster_topology(self) -> ClusterTopology:
        self.calls.append(("topology",))
        peers = [Peer(peer_id=peer_id, uri=uri) for peer_id, uri in self.peers.items()]
        return ClusterTopology(peer_id=peers[0].peer_id, peers=peers)

    async def list_collection_names(self) -> list[str]:
        return list(self.collections)

    async def get_collection_descriptor(self, collection_name: str) -> CollectionDescriptor:
        if collection_name not in self.collections:
            raise CollectionNotFoundError(collection_name)
        return self.collections[collection_name]

    async def get_collection_shard_layout(self, collection_name: str) -> CollectionShardLayout:
        if collection_name not in self.collections:
            raise CollectionNotFoundError(collection_name)
        first_peer = next(iter(self.peers))
        replicas = self.replicas[collection_name]
        return CollectionShardLayout(
            peer_id=first_peer,
            shard_count=self.collections[collection_name].shard_count,
            local_shards=[r for r in replicas if r.peer_id == first_peer],
            remote_shards=[r for r in replicas if r.peer_id != first_peer],
            shard_transfers=list(self.transfers.get(collection_name, [])),
        )

    async def request_shard_transfer(
        self,
        collection_name: str,
        shard_id: int,
        source_peer_id: int,
        target_peer_id: int,
        method: ShardTransferMethod,
        is_move: bool = False,
    ) -> bool:
        self.calls.append(
            ("transfer", collection_name, shard_id, source_peer_id, target_peer_id, is_move)
        )
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.transfer_delay:
                await asyncio.sleep(self.transfer_delay)
        finally:
            self.in_flight -= 1

        key = (collection_name, shard_id)
        if key in self.failing_transfers:
            raise ClusterApiError(
                "POST", f"/collections/{collection_name}/cluster", 500, "transfer failed"
            )
        if key in self.rejected_transfers:
            return False

        self.replicas[collection_name].append(
            ShardReplica(shard_id=shard_id, peer_id=target_peer_id, state=ShardState.ACTIVE)
        )
        if is_move:
            self._remove(collection_name, shard_id, source_peer_id)
        return True

    async def drop_shard_replica(self, collection_name: str, shard_id: int, peer_id: int) -> bool:
        self.calls.append(("drop", collection_name, shard_id, peer_id))
        self._remove(collection_name, shard_id, peer_id)
        return True

    async def abort_shard_transfer(
        self, collection_name: str, shard_id: int, source_peer_id: int, target_peer_id: int
    ) -> bool:
        self.calls.append(("abort", collection_name, shard_id, source_peer_id, target_peer_id))
        return True

    async def get_collection_health(self, collection_name: str) -> CollectionHealth:
        if collection_name not in self.collections:
            raise CollectionNotFoundError(collection_name)
        queue = self.health.get(collection_name)
        if queue:
            return queue.pop(0) if len(queue) > 1 else queue[0]
        return CollectionHealth(status=CollectionStatus.GREEN, optimizer_ok=True)

    def _remove(self, collection_name: str, shard_id: int, peer_id: int) -> None:
        self.replicas[collection_name] = [
            r
            for r in self.replicas[collection_name]
            if not (r.shard_id == shard_id and r.peer_id == peer_id)
        ]


def make_directory(
    placement: dict[int, list[int]],
    shard_count: int | None = None,
    replication_factor: int | None = 1,
    collection_name: str = "docs",
    states: dict[tuple[int, int], ShardState] | None = None,
) -> FakeClusterDirectory:
    """
    Build a one-collection cluster from {peer_id: [shard ids]}.

    Peer URIs are http://qdrant-{peer_id}:6335/. states overrides the
    state of individual (peer_id, shard_id) replicas (default Active).
    """
    states = states or {}
    replicas = [
        ShardReplica(
            shard_id=shard_id,
            peer_id=peer_id,
            state=states.get((peer_id, shard_id), ShardState.ACTIVE),
        )
        for peer_id, shard_ids in placement.items()
        for shard_id in shard_ids
    ]
    if shard_count is None:
        shard_count = len({r.shard_id for r in replicas})
    return FakeClusterDirectory(
        peers={peer_id: f"http://qdrant-{peer_id}:6335/" for peer_id in placement},
        collections={
            collection_name: CollectionDescriptor(
                name=collection_name,
                shard_count=shard_count,
                replication_factor=replication_factor,
            )
        },
        replicas={collection_name: replicas},
    )


@pytest.fixture
def two_peer_cluster():
    """2 peers, 1 collection, 4 shards, replication factor 1, 2 shards per peer."""
    return make_directory({1: [0, 1], 2: [2, 3]}, replication_factor=1)


@pytest.fixture
def three_peer_cluster():
    """3 peers, 1 collection, 3 shards, replication factor 2."""
    return make_directory({1: [0, 1], 2: [1, 2], 3: [0, 2]}, replication_factor=2)
