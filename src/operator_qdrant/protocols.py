"""
Cluster directory protocol definition.

The ClusterDirectoryProtocol defines the interface compound operations use
to read cluster state and request placement changes. ClusterClient
implements it over the Qdrant REST API; tests use an in-memory fake.
"""

from typing import Protocol, runtime_checkable

from operator_qdrant.types import (
    ClusterTopology,
    CollectionDescriptor,
    CollectionHealth,
    CollectionShardLayout,
    PeerId,
    ShardId,
    ShardTransferMethod,
)


@runtime_checkable
class ClusterDirectoryProtocol(Protocol):
    """
    Protocol for a source of cluster state and sink of shard operations.

    Read methods return fresh state on every call; nothing is cached.
    Mutating methods return the cluster's acknowledgement. A False return
    means the request was received but not accepted.
    """

    async def get_cluster_topology(self) -> ClusterTopology:
        """Return peers and consensus status."""
        ...

    async def get_collection_shard_layout(self, collection_name: str) -> CollectionShardLayout:
        """Return replica placement and ongoing transfers of one collection."""
        ...

    async def list_collection_names(self) -> list[str]:
        """Return the names of all collections."""
        ...

    async def get_collection_descriptor(self, collection_name: str) -> CollectionDescriptor:
        """Return shard count and configured replication factor."""
        ...

    async def request_shard_transfer(
        self,
        collection_name: str,
        shard_id: ShardId,
        source_peer_id: PeerId,
        target_peer_id: PeerId,
        method: ShardTransferMethod,
        is_move: bool = False,
    ) -> bool:
        """
        Start copying (or moving) a shard replica to another peer.

        Args:
            collection_name: Collection the shard belongs to.
            shard_id: Shard to transfer.
            source_peer_id: Peer holding an Active replica.
            target_peer_id: Peer receiving the replica.
            method: Transfer method.
            is_move: Drop the source replica once the transfer finishes.

        Returns:
            True if the cluster accepted the request.
        """
        ...

    async def drop_shard_replica(
        self, collection_name: str, shard_id: ShardId, peer_id: PeerId
    ) -> bool:
        """Drop a shard replica from a peer."""
        ...

    async def abort_shard_transfer(
        self,
        collection_name: str,
        shard_id: ShardId,
        source_peer_id: PeerId,
        target_peer_id: PeerId,
    ) -> bool:
        """Abort an ongoing shard transfer."""
        ...

    async def get_collection_health(self, collection_name: str) -> CollectionHealth:
        """Return collection color, optimizer status and ongoing transfer count."""
        ...
