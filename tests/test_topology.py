"""
Tests for topology snapshots and peer resolution.
"""

import pytest

from conftest import make_directory
from operator_qdrant.exceptions import (
    AmbiguousPeerSelectorError,
    CollectionNotFoundError,
    InvalidClusterStateError,
    PeerNotFoundError,
)
from operator_qdrant.resolver import PeerResolutionError, resolve, resolve_peer
from operator_qdrant.topology import ClusterTopologySnapshot, fetch_snapshot
from operator_qdrant.types import CollectionDescriptor, Peer, ShardReplica, ShardState


def snapshot_with_peers(uris: dict[int, str]) -> ClusterTopologySnapshot:
    return ClusterTopologySnapshot(peers=[Peer(peer_id=p, uri=u) for p, u in uris.items()])


class TestFetchSnapshot:
    """Tests for fetch_snapshot."""

    @pytest.mark.asyncio
    async def test_all_collections_by_default(self, three_peer_cluster):
        """No collection names means every collection."""
        snapshot = await fetch_snapshot(three_peer_cluster)

        assert snapshot.collection_names == ["docs"]
        assert snapshot.peer_ids == [1, 2, 3]
        assert len(snapshot.replicas["docs"]) == 6

    @pytest.mark.asyncio
    async def test_unknown_collection_raises(self, three_peer_cluster):
        """A requested collection that does not exist raises CollectionNotFoundError."""
        with pytest.raises(CollectionNotFoundError) as exc_info:
            await fetch_snapshot(three_peer_cluster, ["docs", "missing"])

        assert exc_info.value.collection_name == "missing"

    @pytest.mark.asyncio
    async def test_duplicate_names_ignored(self, three_peer_cluster):
        """Repeated collection names appear once."""
        snapshot = await fetch_snapshot(three_peer_cluster, ["docs", "docs"])

        assert snapshot.collection_names == ["docs"]

    @pytest.mark.asyncio
    async def test_fresh_per_call(self, two_peer_cluster):
        """Each call reflects the current placement."""
        first = await fetch_snapshot(two_peer_cluster)
        await two_peer_cluster.drop_shard_replica("docs", 0, 1)
        second = await fetch_snapshot(two_peer_cluster)

        assert len(first.replicas_on_peer(1)) == 2
        assert len(second.replicas_on_peer(1)) == 1


class TestSnapshotQueries:
    """Tests for ClusterTopologySnapshot helpers."""

    @pytest.mark.asyncio
    async def test_active_replica_count_ignores_other_states(self):
        """Only Active replicas are counted as active."""
        directory = make_directory(
            {1: [0], 2: [0], 3: [0]},
            states={(3, 0): ShardState.DEAD},
        )
        snapshot = await fetch_snapshot(directory)

        assert snapshot.active_replica_count("docs", 0) == 2
        assert snapshot.active_holders("docs", 0) == [1, 2]

    @pytest.mark.asyncio
    async def test_peer_loads(self, three_peer_cluster):
        """Loads count replicas per peer across collections."""
        snapshot = await fetch_snapshot(three_peer_cluster)

        assert snapshot.peer_loads() == {1: 2, 2: 2, 3: 2}

    @pytest.mark.asyncio
    async def test_peer_loads_include_collections_outside_scope(self, three_peer_cluster):
        """A snapshot scoped to some collections still loads the whole cluster."""
        three_peer_cluster.collections["logs"] = CollectionDescriptor(
            name="logs", shard_count=1, replication_factor=1
        )
        three_peer_cluster.replicas["logs"] = [ShardReplica(0, 3, ShardState.ACTIVE)]

        scoped = await fetch_snapshot(three_peer_cluster, ["docs"])
        unloaded = await fetch_snapshot(three_peer_cluster, ["docs"], with_loads=False)

        assert scoped.collection_names == ["docs"]
        assert scoped.peer_loads() == {1: 2, 2: 2, 3: 3}
        assert unloaded.peer_loads() == {1: 2, 2: 2, 3: 2}

    @pytest.mark.asyncio
    async def test_shard_ids_include_unplaced_shards(self):
        """Shard ids below shard_count are listed even without replicas."""
        directory = make_directory({1: [0], 2: [1]}, shard_count=3)
        snapshot = await fetch_snapshot(directory)

        assert snapshot.shard_ids("docs") == [0, 1, 2]
        assert snapshot.replicas_of("docs", 2) == []

    @pytest.mark.asyncio
    async def test_is_peer_empty(self):
        """A peer without replicas is empty."""
        directory = make_directory({1: [0, 1], 2: []})
        snapshot = await fetch_snapshot(directory)

        assert snapshot.is_peer_empty(2)
        assert not snapshot.is_peer_empty(1)


class TestPeerResolver:
    """Tests for resolving peer selectors."""

    def test_resolve_by_id(self):
        """Numeric selectors match peer ids."""
        snapshot = snapshot_with_peers({1: "http://qdrant-0:6335/", 2: "http://qdrant-1:6335/"})

        resolution = resolve(2, snapshot)

        assert resolution.is_success
        assert resolution.peer.uri == "http://qdrant-1:6335/"

    def test_resolve_unknown_id(self):
        """An unknown id resolves to NOT_FOUND listing known peers."""
        snapshot = snapshot_with_peers({1: "http://qdrant-0:6335/"})

        resolution = resolve(9, snapshot)

        assert resolution.error is PeerResolutionError.NOT_FOUND
        with pytest.raises(PeerNotFoundError) as exc_info:
            resolution.ensure_success()
        assert exc_info.value.known_peers == {1: "http://qdrant-0:6335/"}

    def test_resolve_by_uri_substring(self):
        """A unique URI substring resolves to its peer."""
        snapshot = snapshot_with_peers(
            {1: "http://qdrant-0.headless:6335/", 2: "http://qdrant-1.headless:6335/"}
        )

        assert resolve_peer("qdrant-1", snapshot).peer_id == 2

    def test_ambiguous_uri_substring(self):
        """A substring matching several peers is AMBIGUOUS."""
        snapshot = snapshot_with_peers(
            {1: "http://qdrant-0.headless:6335/", 2: "http://qdrant-1.headless:6335/"}
        )

        resolution = resolve("headless", snapshot)

        assert resolution.error is PeerResolutionError.AMBIGUOUS
        assert set(resolution.matches) == {1, 2}
        with pytest.raises(AmbiguousPeerSelectorError):
            resolution.ensure_success()

    def test_no_uri_match(self):
        """A substring matching no peer is NOT_FOUND."""
        snapshot = snapshot_with_peers({1: "http://qdrant-0:6335/"})

        resolution = resolve("qdrant-7", snapshot)

        assert resolution.error is PeerResolutionError.NOT_FOUND

    def test_duplicate_uris_invalid_state(self):
        """Two peers with the same URI make the cluster state invalid."""
        snapshot = snapshot_with_peers({1: "http://qdrant-0:6335/", 2: "http://qdrant-0:6335/"})

        resolution = resolve("qdrant-0", snapshot)

        assert resolution.error is PeerResolutionError.INVALID_CLUSTER_STATE
        with pytest.raises(InvalidClusterStateError):
            resolution.ensure_success()

    @pytest.mark.parametrize("selector", ["", "   "])
    def test_empty_selector_is_value_error(self, selector):
        """Empty selectors are input validation errors."""
        snapshot = snapshot_with_peers({1: "http://qdrant-0:6335/"})

        with pytest.raises(ValueError):
            resolve(selector, snapshot)
