"""
Exception classes for Qdrant cluster operations.

Peer resolution:
- PeerNotFoundError: No peer matches the selector
- AmbiguousPeerSelectorError: More than one peer matches a URI substring
- InvalidClusterStateError: Cluster reports duplicated peer URIs

Planning (precondition violations, raised before any mutating call):
- InsufficientReplicasError: Operation would leave a shard with no Active replica
- TargetNotEmptyError: Equalization target already hosts shards
- TooFewShardsToEqualizeError: Equalization source has fewer than 2 shards
- ShardNotOnSourceError: Requested shard is not Active on the source peer

Cluster API and waiting:
- CollectionNotFoundError: Requested collection does not exist
- ClusterApiError: Cluster API answered with a non-2xx status
- ReadinessTimeoutError: Collection did not become ready in time
- OperationCancelledError: Cancellation was requested

Per project patterns:
- Store context data in attributes for error handling
- Include descriptive message with relevant details
"""

from collections.abc import Iterable


class PeerNotFoundError(Exception):
    """
    Raised when no cluster peer matches a selector.

    Attributes:
        selector: The peer id or URI substring that was looked up
        known_peers: Mapping of peer id to URI for all cluster peers
    """

    def __init__(self, selector: int | str, known_peers: dict[int, str]) -> None:
        self.selector = selector
        self.known_peers = known_peers
        if isinstance(selector, int):
            what = f"with id {selector}"
        else:
            what = f"with URI containing '{selector}'"
        peers = ", ".join(f"{peer_id} - {uri}" for peer_id, uri in known_peers.items())
        super().__init__(f"No peer found {what}. Existing peers: [{peers}]")


class AmbiguousPeerSelectorError(Exception):
    """
    Raised when a URI substring matches more than one peer.

    Attributes:
        selector: The URI substring
        matches: Mapping of peer id to URI for every matching peer
    """

    def __init__(self, selector: str, matches: dict[int, str]) -> None:
        self.selector = selector
        self.matches = matches
        found = ", ".join(f"{peer_id} - {uri}" for peer_id, uri in matches.items())
        super().__init__(
            f"More than one peer found for URI substring '{selector}': [{found}]. "
            f"Use a more specific selector."
        )


class InvalidClusterStateError(Exception):
    """
    Raised when the cluster reports an inconsistent membership view.

    Attributes:
        reason: What is inconsistent
    """

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Invalid cluster state: {reason}")


class PlanningError(Exception):
    """Base class for precondition violations found while planning."""


class InsufficientReplicasError(PlanningError):
    """
    Raised when a plan would leave a shard without an Active replica.

    Attributes:
        peer_id: The peer the operation targets
        shards: (collection name, shard id, active replica count) per offending shard
    """

    def __init__(self, peer_id: int, shards: Iterable[tuple[str, int, int]]) -> None:
        self.peer_id = peer_id
        self.shards = list(shards)
        details = ", ".join(
            f"'{collection}' shard {shard_id} ({active} active)"
            for collection, shard_id, active in self.shards
        )
        super().__init__(
            f"Removing replicas from peer {peer_id} would leave shards without an "
            f"active replica: [{details}]. No changes were made."
        )


class TargetNotEmptyError(PlanningError):
    """
    Raised when the equalization target already hosts shards.

    Attributes:
        collection_name: Collection with shards on the target
        peer_id: The target peer
        shard_count: Number of replicas found on the target
    """

    def __init__(self, collection_name: str, peer_id: int, shard_count: int) -> None:
        self.collection_name = collection_name
        self.peer_id = peer_id
        self.shard_count = shard_count
        super().__init__(
            f"Collection '{collection_name}' has {shard_count} shards on target peer "
            f"{peer_id}. The target peer should be empty for equalization"
        )


class TooFewShardsToEqualizeError(PlanningError):
    """
    Raised when no collection has at least two shards on the source peer.

    Attributes:
        peer_id: The source peer
        shard_counts: Active shard count on the source per collection
    """

    def __init__(self, peer_id: int, shard_counts: dict[str, int]) -> None:
        self.peer_id = peer_id
        self.shard_counts = shard_counts
        counts = ", ".join(f"'{name}': {count}" for name, count in shard_counts.items())
        super().__init__(
            f"Source peer {peer_id} should have more than 1 shard of at least one "
            f"collection for equalization. Shards on source: [{counts}]"
        )


class ShardNotOnSourceError(PlanningError):
    """
    Raised when a requested shard has no Active replica on the source peer.

    Attributes:
        collection_name: The collection
        shard_id: The requested shard
        peer_id: The source peer
    """

    def __init__(self, collection_name: str, shard_id: int, peer_id: int) -> None:
        self.collection_name = collection_name
        self.shard_id = shard_id
        self.peer_id = peer_id
        super().__init__(
            f"Collection '{collection_name}' does not have active shard {shard_id} "
            f"on source peer {peer_id}"
        )


class CollectionNotFoundError(Exception):
    """
    Raised when a requested collection does not exist.

    Attributes:
        collection_name: The missing collection
    """

    def __init__(self, collection_name: str) -> None:
        self.collection_name = collection_name
        super().__init__(f"Collection '{collection_name}' does not exist, check parameters")


class ClusterApiError(Exception):
    """
    Raised when the cluster API answers with a non-2xx status.

    Attributes:
        method: HTTP method
        url: Requested URL
        status_code: Response status code
        error: Error text reported by the server, if any
    """

    def __init__(self, method: str, url: str, status_code: int, error: str | None) -> None:
        self.method = method
        self.url = url
        self.status_code = status_code
        self.error = error
        super().__init__(
            f"{method} {url} failed with status {status_code}: {error or 'no error details'}"
        )


class ReadinessTimeoutError(Exception):
    """
    Raised when a collection does not become ready before the deadline.

    Attributes:
        collection_name: The collection being waited on
        timeout_seconds: The deadline that passed
    """

    def __init__(self, collection_name: str, timeout_seconds: float) -> None:
        self.collection_name = collection_name
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Collection '{collection_name}' did not become ready "
            f"within {timeout_seconds:.1f}s"
        )


class OperationCancelledError(Exception):
    """
    Raised when a cancellation signal stops an operation.

    Attributes:
        operation: Name of the cancelled operation
    """

    def __init__(self, operation: str) -> None:
        self.operation = operation
        super().__init__(f"Operation '{operation}' was cancelled")
