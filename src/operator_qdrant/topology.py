"""
Cluster topology snapshot.

A ClusterTopologySnapshot is the read model every compound operation plans
against: peers in cluster order, sharding parameters and flat replica
lists per collection, and the transfers in progress when it was taken.

Snapshots are built fresh for each operation by fetch_snapshot() and never
cached; a snapshot never changes after construction.
"""

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from operator_qdrant.exceptions import CollectionNotFoundError
from operator_qdrant.protocols import ClusterDirectoryProtocol
from operator_qdrant.types import (
    CollectionDescriptor,
    Peer,
    PeerId,
    ShardId,
    ShardReplica,
    ShardState,
    ShardTransferInfo,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClusterTopologySnapshot:
    """
    Point-in-time view of peers and shard placement.

    Attributes:
        peers: Cluster peers in the order the cluster reported them.
        collections: Descriptor per collection in scope, in scope order.
        replicas: Flat replica list per collection.
        transfers: Ongoing transfers per collection.
        other_replicas: Replicas of collections outside the scope. They only
            contribute to peer_loads().
    """

    peers: list[Peer]
    collections: dict[str, CollectionDescriptor] = field(default_factory=dict)
    replicas: dict[str, list[ShardReplica]] = field(default_factory=dict)
    transfers: dict[str, list[ShardTransferInfo]] = field(default_factory=dict)
    other_replicas: dict[str, list[ShardReplica]] = field(default_factory=dict)

    @property
    def peer_ids(self) -> list[PeerId]:
        return [p.peer_id for p in self.peers]

    @property
    def collection_names(self) -> list[str]:
        return list(self.collections)

    def get_peer(self, peer_id: PeerId) -> Peer | None:
        for peer in self.peers:
            if peer.peer_id == peer_id:
                return peer
        return None

    def _peer_position(self, peer_id: PeerId) -> int:
        for index, peer in enumerate(self.peers):
            if peer.peer_id == peer_id:
                return index
        return len(self.peers)

    def shard_ids(self, collection_name: str) -> list[ShardId]:
        """
        All shard ids of a collection, ascending.

        Includes ids below the configured shard count even when no replica
        of them is reported.
        """
        ids = {r.shard_id for r in self.replicas.get(collection_name, [])}
        descriptor = self.collections.get(collection_name)
        if descriptor is not None:
            ids.update(range(descriptor.shard_count))
        return sorted(ids)

    def replicas_of(self, collection_name: str, shard_id: ShardId) -> list[ShardReplica]:
        """Replicas of one shard, ordered by peer position in the cluster."""
        found = [r for r in self.replicas.get(collection_name, []) if r.shard_id == shard_id]
        return sorted(found, key=lambda r: self._peer_position(r.peer_id))

    def replicas_on_peer(
        self, peer_id: PeerId, collection_name: str | None = None
    ) -> list[ShardReplica]:
        """Replicas hosted on a peer, ascending shard id."""
        names = [collection_name] if collection_name is not None else self.collection_names
        found = []
        for name in names:
            found.extend(r for r in self.replicas.get(name, []) if r.peer_id == peer_id)
        return sorted(found, key=lambda r: r.shard_id)

    def replica_on_peer(
        self, collection_name: str, shard_id: ShardId, peer_id: PeerId
    ) -> ShardReplica | None:
        for replica in self.replicas.get(collection_name, []):
            if replica.shard_id == shard_id and replica.peer_id == peer_id:
                return replica
        return None

    def active_holders(self, collection_name: str, shard_id: ShardId) -> list[PeerId]:
        """Peers with an Active replica of the shard, in cluster order."""
        return [
            r.peer_id
            for r in self.replicas_of(collection_name, shard_id)
            if r.state is ShardState.ACTIVE
        ]

    def active_replica_count(self, collection_name: str, shard_id: ShardId) -> int:
        return len(self.active_holders(collection_name, shard_id))

    def peer_loads(self) -> dict[PeerId, int]:
        """Total replica count per peer across every collection of the cluster."""
        loads = {peer_id: 0 for peer_id in self.peer_ids}
        for replicas in [*self.replicas.values(), *self.other_replicas.values()]:
            for replica in replicas:
                loads[replica.peer_id] = loads.get(replica.peer_id, 0) + 1
        return loads

    def transfers_of(self, collection_name: str, shard_id: ShardId) -> list[ShardTransferInfo]:
        return [t for t in self.transfers.get(collection_name, []) if t.shard_id == shard_id]

    def is_peer_empty(self, peer_id: PeerId) -> bool:
        return not self.replicas_on_peer(peer_id)


async def fetch_snapshot(
    directory: ClusterDirectoryProtocol,
    collection_names: Iterable[str] | None = None,
    with_loads: bool = True,
) -> ClusterTopologySnapshot:
    """
    Build a fresh snapshot from the cluster directory.

    Args:
        directory: Source of cluster state.
        collection_names: Collections to include. None means every collection.
            Duplicates are ignored; order is preserved.
        with_loads: Also fetch the layouts of collections outside the scope,
            so that peer loads cover the whole cluster.

    Returns:
        A new ClusterTopologySnapshot.

    Raises:
        CollectionNotFoundError: If a requested collection does not exist.
    """
    topology = await directory.get_cluster_topology()
    existing = await directory.list_collection_names()

    if collection_names is None:
        names = list(existing)
    else:
        names = list(dict.fromkeys(collection_names))
        for name in names:
            if name not in existing:
                raise CollectionNotFoundError(name)

    async def _load(name: str):
        descriptor = await directory.get_collection_descriptor(name)
        layout = await directory.get_collection_shard_layout(name)
        return descriptor, layout

    loaded = await asyncio.gather(*(_load(name) for name in names))

    others = [name for name in existing if name not in names] if with_loads else []
    other_layouts = await asyncio.gather(
        *(directory.get_collection_shard_layout(name) for name in others)
    )

    collections: dict[str, CollectionDescriptor] = {}
    replicas: dict[str, list[ShardReplica]] = {}
    transfers: dict[str, list[ShardTransferInfo]] = {}
    for name, (descriptor, layout) in zip(names, loaded):
        collections[name] = descriptor
        replicas[name] = layout.replicas
        transfers[name] = list(layout.shard_transfers)

    logger.debug(
        "Fetched topology snapshot: %d peers, %d collections", len(topology.peers), len(names)
    )
    return ClusterTopologySnapshot(
        peers=list(topology.peers),
        collections=collections,
        replicas=replicas,
        transfers=transfers,
        other_replicas={
            name: layout.replicas for name, layout in zip(others, other_layouts)
        },
    )
