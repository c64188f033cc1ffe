"""
Cluster operations for Qdrant.

This package plans and executes shard placement changes across the peers
of a Qdrant cluster. It includes:

- ClusterClient: async client for the cluster endpoints of the REST API
- ClusterTopologySnapshot: point-in-time view of peers and replicas
- Peer resolution by id or URI substring
- Planners for drain, clear, equalize, restore-replication and replicate
- TransferExecutor: bounded-concurrency plan execution with dry-run support
- ReadinessWaiter: collection health and transfer completion polling
- CompoundOperations: facade combining all of the above
"""

from operator_qdrant.client import ClusterClient
from operator_qdrant.config import ClientSettings
from operator_qdrant.exceptions import (
    AmbiguousPeerSelectorError,
    ClusterApiError,
    CollectionNotFoundError,
    InsufficientReplicasError,
    InvalidClusterStateError,
    OperationCancelledError,
    PeerNotFoundError,
    PlanningError,
    ReadinessTimeoutError,
    ShardNotOnSourceError,
    TargetNotEmptyError,
    TooFewShardsToEqualizeError,
)
from operator_qdrant.executor import TransferExecutor
from operator_qdrant.factory import create_cluster_client, create_http_client
from operator_qdrant.operations import CompoundOperationResult, CompoundOperations, PeerInfo
from operator_qdrant.protocols import ClusterDirectoryProtocol
from operator_qdrant.readiness import ReadinessWaiter
from operator_qdrant.resolver import PeerResolution, PeerResolutionError, resolve
from operator_qdrant.topology import ClusterTopologySnapshot, fetch_snapshot
from operator_qdrant.types import (
    CollectionDescriptor,
    Peer,
    ShardReplica,
    ShardState,
    ShardTransferMethod,
    ShardTransferMode,
    ShardTransferOperation,
    ShardTransferResult,
    TransferOutcome,
    TransferPlan,
)

__all__ = [
    # Facade
    "CompoundOperations",
    "CompoundOperationResult",
    "PeerInfo",
    # Client
    "ClusterClient",
    "ClusterDirectoryProtocol",
    "ClientSettings",
    "create_cluster_client",
    "create_http_client",
    # Building blocks
    "ClusterTopologySnapshot",
    "fetch_snapshot",
    "PeerResolution",
    "PeerResolutionError",
    "resolve",
    "TransferExecutor",
    "ReadinessWaiter",
    # Types
    "CollectionDescriptor",
    "Peer",
    "ShardReplica",
    "ShardState",
    "ShardTransferMethod",
    "ShardTransferMode",
    "ShardTransferOperation",
    "ShardTransferResult",
    "TransferOutcome",
    "TransferPlan",
    # Exceptions
    "AmbiguousPeerSelectorError",
    "ClusterApiError",
    "CollectionNotFoundError",
    "InsufficientReplicasError",
    "InvalidClusterStateError",
    "OperationCancelledError",
    "PeerNotFoundError",
    "PlanningError",
    "ReadinessTimeoutError",
    "ShardNotOnSourceError",
    "TargetNotEmptyError",
    "TooFewShardsToEqualizeError",
]
