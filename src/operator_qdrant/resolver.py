"""
Peer selector resolution.

Operations accept a peer either by numeric id or by a substring of its URI
(e.g. "qdrant-2" for "http://qdrant-2.qdrant-headless:6335/"). Resolution
returns a PeerResolution that carries either the peer or an explicit error
variant; call ensure_success() to turn the error into an exception.
"""

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum

from operator_qdrant.exceptions import (
    AmbiguousPeerSelectorError,
    InvalidClusterStateError,
    PeerNotFoundError,
)
from operator_qdrant.topology import ClusterTopologySnapshot
from operator_qdrant.types import Peer, PeerId, PeerSelector


class PeerResolutionError(str, Enum):
    """Why a selector did not resolve to exactly one peer."""

    NOT_FOUND = "not_found"
    AMBIGUOUS = "ambiguous"
    INVALID_CLUSTER_STATE = "invalid_cluster_state"


@dataclass(frozen=True)
class PeerResolution:
    """
    Result of resolving a peer selector.

    Attributes:
        selector: The selector that was resolved.
        peer: The resolved peer, None on error.
        error: Error variant, None on success.
        matches: Matching peers (id -> URI) for AMBIGUOUS, duplicated
            peers for INVALID_CLUSTER_STATE, all peers for NOT_FOUND.
    """

    selector: PeerSelector
    peer: Peer | None = None
    error: PeerResolutionError | None = None
    matches: dict[PeerId, str] = field(default_factory=dict)

    @property
    def is_success(self) -> bool:
        return self.error is None

    def ensure_success(self) -> Peer:
        """
        Return the resolved peer or raise the matching exception.

        Raises:
            PeerNotFoundError: For NOT_FOUND.
            AmbiguousPeerSelectorError: For AMBIGUOUS.
            InvalidClusterStateError: For INVALID_CLUSTER_STATE.
        """
        if self.error is PeerResolutionError.NOT_FOUND:
            raise PeerNotFoundError(self.selector, self.matches)
        if self.error is PeerResolutionError.AMBIGUOUS:
            raise AmbiguousPeerSelectorError(str(self.selector), self.matches)
        if self.error is PeerResolutionError.INVALID_CLUSTER_STATE:
            duplicates = ", ".join(f"{peer_id} - {uri}" for peer_id, uri in self.matches.items())
            raise InvalidClusterStateError(
                f"peers report identical URIs: [{duplicates}]"
            )
        assert self.peer is not None
        return self.peer


def _all_peers(snapshot: ClusterTopologySnapshot) -> dict[PeerId, str]:
    return {p.peer_id: p.uri for p in snapshot.peers}


def resolve_by_id(peer_id: PeerId, snapshot: ClusterTopologySnapshot) -> PeerResolution:
    """Resolve a numeric peer id."""
    peer = snapshot.get_peer(peer_id)
    if peer is None:
        return PeerResolution(
            selector=peer_id,
            error=PeerResolutionError.NOT_FOUND,
            matches=_all_peers(snapshot),
        )
    return PeerResolution(selector=peer_id, peer=peer)


def resolve_by_uri_substring(
    substring: str, snapshot: ClusterTopologySnapshot
) -> PeerResolution:
    """
    Resolve a URI substring to exactly one peer.

    Two peers reporting the same URI make the cluster state invalid for
    URI-based lookups.
    """
    uri_counts = Counter(p.uri for p in snapshot.peers)
    duplicated = {p.peer_id: p.uri for p in snapshot.peers if uri_counts[p.uri] > 1}
    if duplicated:
        return PeerResolution(
            selector=substring,
            error=PeerResolutionError.INVALID_CLUSTER_STATE,
            matches=duplicated,
        )

    matches = [p for p in snapshot.peers if substring in p.uri]
    if not matches:
        return PeerResolution(
            selector=substring,
            error=PeerResolutionError.NOT_FOUND,
            matches=_all_peers(snapshot),
        )
    if len(matches) > 1:
        return PeerResolution(
            selector=substring,
            error=PeerResolutionError.AMBIGUOUS,
            matches={p.peer_id: p.uri for p in matches},
        )
    return PeerResolution(selector=substring, peer=matches[0])


def resolve(selector: PeerSelector, snapshot: ClusterTopologySnapshot) -> PeerResolution:
    """
    Resolve a peer id or URI substring.

    Raises:
        ValueError: If the selector is an empty or blank string.
    """
    # bool is an int subclass; True is not a peer id
    if isinstance(selector, bool):
        raise ValueError(f"Invalid peer selector: {selector!r}")
    if isinstance(selector, int):
        return resolve_by_id(selector, snapshot)
    if not selector or not selector.strip():
        raise ValueError("Peer selector must not be empty")
    return resolve_by_uri_substring(selector, snapshot)


def resolve_peer(selector: PeerSelector, snapshot: ClusterTopologySnapshot) -> Peer:
    """Resolve a selector, raising on any resolution error."""
    return resolve(selector, snapshot).ensure_success()
