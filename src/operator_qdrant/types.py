"""
Shared data types for Qdrant cluster operations.

This module defines the core data structures used to represent cluster
peers, collections, shard replicas and shard transfers. These are internal
types used by the planner, executor and operations facade - not API models.

All types use @dataclass for simplicity. Pydantic models are reserved for
config parsing and API responses (see operator_qdrant.models).
"""

from dataclasses import dataclass, field
from enum import Enum

# Type aliases for common patterns
PeerId = int
"""Unique identifier for a Qdrant peer (node), unsigned 64-bit."""

ShardId = int
"""Identifier of a collection shard, unsigned 32-bit."""

PeerSelector = int | str
"""Either a numeric peer id or a substring of the peer URI."""


class ShardState(str, Enum):
    """
    State of a single shard replica within a replica set.

    Values match the strings reported by the cluster API.
    """

    ACTIVE = "Active"
    DEAD = "Dead"
    PARTIAL = "Partial"
    INITIALIZING = "Initializing"
    LISTENER = "Listener"
    PARTIAL_SNAPSHOT = "PartialSnapshot"
    RECOVERY = "Recovery"
    RESHARDING = "Resharding"
    RESHARDING_SCALE_DOWN = "ReshardingScaleDown"
    ACTIVE_READ = "ActiveRead"


class ShardTransferMethod(str, Enum):
    """How shard data is transferred to the target peer."""

    STREAM_RECORDS = "stream_records"
    """Stream shard records to the target peer in batches."""

    SNAPSHOT = "snapshot"
    """Transfer shard including index and quantized data via a snapshot."""

    WAL_DELTA = "wal_delta"
    """Transfer only the WAL difference between replicas."""


class ShardTransferMode(str, Enum):
    """Kind of placement change a planned operation performs."""

    COPY = "copy"
    """Create a new replica on the target, keep the source replica."""

    MOVE = "move"
    """Copy to the target, then drop the source replica."""

    DROP = "drop"
    """Drop the replica on the source peer, no data transfer."""


class TransferOutcome(str, Enum):
    """Outcome of one planned operation."""

    PLANNED = "planned"
    """Dry run - operation was planned but no request was issued."""

    COMPLETED = "completed"
    """The cluster accepted (and for moves, finished) the operation."""

    FAILED = "failed"
    """The request was rejected, errored or timed out."""

    CANCELLED = "cancelled"
    """Cancellation was requested before the operation was submitted."""


class CollectionStatus(str, Enum):
    """Collection health color reported by the cluster."""

    GREEN = "green"
    YELLOW = "yellow"
    GREY = "grey"
    RED = "red"


@dataclass(frozen=True)
class Peer:
    """
    Represents a Qdrant peer (node) in the cluster.

    Attributes:
        peer_id: Unique peer identifier assigned by consensus.
        uri: Internal peer URI (e.g., "http://qdrant-0:6335/").
    """

    peer_id: PeerId
    uri: str


@dataclass(frozen=True)
class CollectionDescriptor:
    """
    Static sharding parameters of a collection.

    Attributes:
        name: Collection name.
        shard_count: Configured number of shards.
        replication_factor: Configured replicas per shard. None when the
            server does not report one.
    """

    name: str
    shard_count: int
    replication_factor: int | None = None


@dataclass(frozen=True)
class ShardReplica:
    """
    One copy of a shard hosted on one peer.

    Attributes:
        shard_id: The shard this replica belongs to.
        peer_id: The peer hosting the replica.
        state: Current replica state.
    """

    shard_id: ShardId
    peer_id: PeerId
    state: ShardState


@dataclass(frozen=True)
class ShardTransferInfo:
    """
    An ongoing shard transfer as reported by the cluster.

    Attributes:
        shard_id: The shard being transferred.
        from_peer_id: Peer the data is read from.
        to_peer_id: Peer the data is written to.
        sync: True for replica synchronization, False for a plain transfer.
    """

    shard_id: ShardId
    from_peer_id: PeerId
    to_peer_id: PeerId
    sync: bool = False


@dataclass(frozen=True)
class ShardKey:
    """A (collection, shard) pair."""

    collection_name: str
    shard_id: ShardId


@dataclass(frozen=True)
class ShardTransferOperation:
    """
    A single planned placement change.

    Produced by the planner and consumed exactly once by the executor.

    Attributes:
        collection_name: Collection the shard belongs to.
        shard_id: The shard to transfer or drop.
        source_peer_id: Peer holding the data (for drops, the peer to drop from).
        target_peer_id: Peer receiving the replica. None for drops.
        mode: Copy, move or drop.
        method: Transfer method used for copies and moves.
    """

    collection_name: str
    shard_id: ShardId
    source_peer_id: PeerId
    target_peer_id: PeerId | None
    mode: ShardTransferMode
    method: ShardTransferMethod = ShardTransferMethod.SNAPSHOT

    @property
    def key(self) -> ShardKey:
        return ShardKey(self.collection_name, self.shard_id)

    def describe(self) -> str:
        """Human-readable one-liner used in logs and CLI output."""
        if self.mode is ShardTransferMode.DROP:
            return (
                f"drop collection '{self.collection_name}' shard {self.shard_id} "
                f"from peer {self.source_peer_id}"
            )
        return (
            f"{self.mode.value} collection '{self.collection_name}' shard {self.shard_id} "
            f"from peer {self.source_peer_id} to peer {self.target_peer_id}"
        )


@dataclass(frozen=True)
class ShardTransferResult:
    """
    Result of executing (or planning) one ShardTransferOperation.

    Attributes:
        outcome: What happened to the operation.
        collection_name: Collection the shard belongs to.
        shard_id: The shard.
        source_peer_id: Source peer of the operation, None for shards that
            could not be planned.
        target_peer_id: Target peer, None for drops.
        mode: Copy, move or drop.
        error_message: Failure description for failed or cancelled operations.
    """

    outcome: TransferOutcome
    collection_name: str
    shard_id: ShardId
    source_peer_id: PeerId | None
    target_peer_id: PeerId | None
    mode: ShardTransferMode
    error_message: str | None = None

    @property
    def is_success(self) -> bool:
        return self.outcome in (TransferOutcome.PLANNED, TransferOutcome.COMPLETED)

    @classmethod
    def from_operation(
        cls,
        operation: ShardTransferOperation,
        outcome: TransferOutcome,
        error_message: str | None = None,
    ) -> "ShardTransferResult":
        return cls(
            outcome=outcome,
            collection_name=operation.collection_name,
            shard_id=operation.shard_id,
            source_peer_id=operation.source_peer_id,
            target_peer_id=operation.target_peer_id,
            mode=operation.mode,
            error_message=error_message,
        )

    @classmethod
    def from_rejected(
        cls, rejected: "RejectedShard", mode: ShardTransferMode = ShardTransferMode.COPY
    ) -> "ShardTransferResult":
        """A FAILED result for a shard the planner could not schedule."""
        return cls(
            outcome=TransferOutcome.FAILED,
            collection_name=rejected.collection_name,
            shard_id=rejected.shard_id,
            source_peer_id=None,
            target_peer_id=None,
            mode=mode,
            error_message=rejected.reason,
        )


@dataclass(frozen=True)
class RejectedShard:
    """
    A shard the planner could not (fully) satisfy.

    Attributes:
        collection_name: Collection the shard belongs to.
        shard_id: The shard.
        reason: Why no operation was planned for it.
    """

    collection_name: str
    shard_id: ShardId
    reason: str


@dataclass
class TransferPlan:
    """
    Ordered list of operations computed by the planner.

    Attributes:
        operations: Operations to execute, in order.
        already_satisfied: Shards that already meet the goal and need no operation.
        rejected: Shards that need work the planner could not schedule.
    """

    operations: list[ShardTransferOperation] = field(default_factory=list)
    already_satisfied: list[ShardKey] = field(default_factory=list)
    rejected: list[RejectedShard] = field(default_factory=list)


@dataclass(frozen=True)
class CollectionHealth:
    """
    Health summary for a collection.

    Attributes:
        status: Collection color.
        optimizer_ok: True when the optimizer reports no error.
        ongoing_transfer_count: Number of shard transfers in progress.
        optimizer_error: Optimizer error text, if any.
    """

    status: CollectionStatus
    optimizer_ok: bool
    ongoing_transfer_count: int = 0
    optimizer_error: str | None = None


@dataclass(frozen=True)
class RaftInfo:
    """
    Consensus status as observed by the answering peer.

    Only observed - the consensus protocol itself is not implemented here.
    """

    term: int = 0
    commit: int = 0
    pending_operations: int = 0
    leader: PeerId | None = None
    role: str | None = None


@dataclass(frozen=True)
class ClusterTopology:
    """
    Cluster membership as reported by one peer.

    Attributes:
        peer_id: Id of the peer that answered the request.
        peers: All cluster peers, in the order the cluster reported them.
        status: Cluster mode ("enabled" / "disabled").
        raft_info: Consensus status.
    """

    peer_id: PeerId
    peers: list[Peer]
    status: str = "enabled"
    raft_info: RaftInfo | None = None


@dataclass(frozen=True)
class CollectionShardLayout:
    """
    Shard placement of one collection as reported by one peer.

    Attributes:
        peer_id: Id of the answering peer (owner of local_shards).
        shard_count: Total number of shards.
        local_shards: Replicas hosted on the answering peer.
        remote_shards: Replicas hosted on other peers.
        shard_transfers: Transfers in progress.
    """

    peer_id: PeerId
    shard_count: int
    local_shards: list[ShardReplica] = field(default_factory=list)
    remote_shards: list[ShardReplica] = field(default_factory=list)
    shard_transfers: list[ShardTransferInfo] = field(default_factory=list)

    @property
    def replicas(self) -> list[ShardReplica]:
        return [*self.local_shards, *self.remote_shards]
