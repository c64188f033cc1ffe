"""
Qdrant-specific Pydantic request and response types.

This module provides Pydantic models for the cluster-related parts of the
Qdrant REST API:
- GET /cluster: peers and consensus status
- GET /collections: collection names
- GET /collections/{name}: collection status and sharding parameters
- GET /collections/{name}/cluster: shard placement and ongoing transfers
- POST /collections/{name}/cluster: shard transfer / drop / abort requests

These are API types for external data validation. Internal types
(Peer, ShardReplica, etc.) are dataclasses in operator_qdrant.types.

Notes:
- Every response is wrapped in {"result": ..., "status": ..., "time": ...}
- Peer ids in /cluster are JSON object keys, i.e. strings; pydantic
  coerces them back to int
- optimizer_status is either the string "ok" or {"error": "..."}
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from operator_qdrant.types import ShardState, ShardTransferMethod


# =============================================================================
# Envelope
# =============================================================================


class QdrantErrorStatus(BaseModel):
    """Error status object returned on failed requests."""

    error: str = ""


class QdrantResponse(BaseModel):
    """
    Common response envelope.

    Example error response:
    {
        "status": {"error": "Not found: Collection `x` doesn't exist!"},
        "time": 0.0001
    }
    """

    status: str | QdrantErrorStatus | None = None
    time: float = 0.0

    @property
    def error(self) -> str | None:
        if isinstance(self.status, QdrantErrorStatus):
            return self.status.error
        return None


# =============================================================================
# GET /cluster
# =============================================================================


class PeerUri(BaseModel):
    """Single peer entry from the peers map."""

    uri: str


class RaftInfoModel(BaseModel):
    """Consensus status of the answering peer."""

    term: int = 0
    commit: int = 0
    pending_operations: int = 0
    leader: int | None = None
    role: str | None = None
    is_voter: bool = True


class ClusterInfoResult(BaseModel):
    """
    Result of GET /cluster.

    Example:
    {
        "status": "enabled",
        "peer_id": 1,
        "peers": {"1": {"uri": "http://qdrant-0:6335/"}},
        "raft_info": {"term": 2, "commit": 40, "leader": 1, "role": "Leader"}
    }
    """

    model_config = ConfigDict(extra="allow")

    status: str = "enabled"
    peer_id: int = 0
    peers: dict[int, PeerUri] = Field(default_factory=dict)
    raft_info: RaftInfoModel | None = None


class ClusterInfoResponse(QdrantResponse):
    result: ClusterInfoResult


# =============================================================================
# GET /collections and GET /collections/{name}
# =============================================================================


class CollectionName(BaseModel):
    name: str


class CollectionsListResult(BaseModel):
    collections: list[CollectionName] = Field(default_factory=list)


class CollectionsListResponse(QdrantResponse):
    """
    Response from GET /collections.

    Example response:
    {"result": {"collections": [{"name": "docs"}]}, "status": "ok", "time": 0.0}
    """

    result: CollectionsListResult


class CollectionParams(BaseModel):
    """Sharding-related subset of collection parameters."""

    model_config = ConfigDict(extra="allow")

    shard_number: int = 1
    replication_factor: int | None = None


class CollectionConfig(BaseModel):
    model_config = ConfigDict(extra="allow")

    params: CollectionParams = Field(default_factory=CollectionParams)


class CollectionInfoResult(BaseModel):
    """
    Result of GET /collections/{name}.

    Only fields needed for cluster operations are modeled; the rest
    (vectors config, payload schema, ...) is ignored.
    """

    model_config = ConfigDict(extra="allow")

    status: str
    optimizer_status: str | dict[str, Any] = "ok"
    points_count: int | None = None
    config: CollectionConfig = Field(default_factory=CollectionConfig)

    @property
    def optimizer_error(self) -> str | None:
        if isinstance(self.optimizer_status, dict):
            return str(self.optimizer_status.get("error", self.optimizer_status))
        if self.optimizer_status != "ok":
            return self.optimizer_status
        return None


class CollectionInfoResponse(QdrantResponse):
    result: CollectionInfoResult


# =============================================================================
# GET /collections/{name}/cluster
# =============================================================================


class LocalShardInfo(BaseModel):
    """Replica hosted on the answering peer."""

    shard_id: int
    points_count: int = 0
    state: ShardState


class RemoteShardInfo(BaseModel):
    """Replica hosted on another peer."""

    shard_id: int
    peer_id: int
    state: ShardState


class ShardTransferInfoModel(BaseModel):
    """Ongoing shard transfer. 'from' is a Python keyword, hence the alias."""

    model_config = ConfigDict(populate_by_name=True)

    shard_id: int
    from_peer_id: int = Field(alias="from")
    to_peer_id: int = Field(alias="to")
    sync: bool = False
    method: ShardTransferMethod | None = None


class CollectionClusterInfoResult(BaseModel):
    """
    Result of GET /collections/{name}/cluster.

    Example:
    {
        "peer_id": 1,
        "shard_count": 2,
        "local_shards": [{"shard_id": 0, "points_count": 10, "state": "Active"}],
        "remote_shards": [{"shard_id": 1, "peer_id": 2, "state": "Active"}],
        "shard_transfers": []
    }
    """

    model_config = ConfigDict(extra="allow")

    peer_id: int
    shard_count: int
    local_shards: list[LocalShardInfo] = Field(default_factory=list)
    remote_shards: list[RemoteShardInfo] = Field(default_factory=list)
    shard_transfers: list[ShardTransferInfoModel] = Field(default_factory=list)


class CollectionClusterInfoResponse(QdrantResponse):
    result: CollectionClusterInfoResult


# =============================================================================
# POST /collections/{name}/cluster
# =============================================================================


class ShardOperationDescription(BaseModel):
    """Body of move_shard / replicate_shard / abort_transfer."""

    shard_id: int
    from_peer_id: int
    to_peer_id: int
    method: ShardTransferMethod | None = None


class DropReplicaDescription(BaseModel):
    """Body of drop_replica."""

    shard_id: int
    peer_id: int


class UpdateCollectionClusterRequest(BaseModel):
    """
    Cluster setup update request. Exactly one operation field is set.

    Example body:
    {"replicate_shard": {"shard_id": 0, "from_peer_id": 1, "to_peer_id": 2, "method": "snapshot"}}
    """

    move_shard: ShardOperationDescription | None = None
    replicate_shard: ShardOperationDescription | None = None
    abort_transfer: ShardOperationDescription | None = None
    drop_replica: DropReplicaDescription | None = None

    def to_json(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class UpdateCollectionClusterResponse(QdrantResponse):
    """Acknowledgement of a cluster setup update: {"result": true, ...}."""

    result: bool = False
