"""
Tests for the Qdrant cluster API client.

These tests verify the ClusterClient correctly:
- Parses /cluster, /collections and /collections/{name}/cluster responses
- Converts peer id keys from JSON strings to ints
- Builds replicate_shard / move_shard / drop_replica / abort_transfer bodies
- Raises ClusterApiError with the server error text on HTTP errors
- Raises CollectionNotFoundError on 404 for collection endpoints
- Rejects transfers from a peer to itself before any request
"""

import json

import httpx
import pytest
from httpx import Request, Response

from operator_qdrant.client import ClusterClient
from operator_qdrant.exceptions import ClusterApiError, CollectionNotFoundError
from operator_qdrant.types import CollectionStatus, ShardState, ShardTransferMethod


class MockTransport(httpx.AsyncBaseTransport):
    """Mock transport for testing HTTP responses."""

    def __init__(self, responses: dict[str, dict]):
        """
        Initialize with mapping of paths to response data.

        Args:
            responses: Dict mapping URL paths to response data.
                       Each value should have 'status_code' and 'json' keys.
        """
        self._responses = responses
        self.requests: list[Request] = []

    async def handle_async_request(self, request: Request) -> Response:
        """Handle an async request by returning mocked response."""
        self.requests.append(request)
        path = request.url.path
        if path in self._responses:
            resp_data = self._responses[path]
            return Response(
                status_code=resp_data.get("status_code", 200),
                json=resp_data.get("json", {}),
                request=request,
            )
        # Return 404 for unknown paths
        return Response(
            status_code=404,
            json={"status": {"error": f"Not found: {path}"}, "time": 0.0},
            request=request,
        )


def make_client(responses: dict[str, dict], operation_timeout: int | None = None):
    transport = MockTransport(responses)
    http = httpx.AsyncClient(transport=transport, base_url="http://qdrant-0:6333")
    return ClusterClient(http=http, operation_timeout=operation_timeout), transport


@pytest.fixture
def cluster_response():
    """Sample response for GET /cluster."""
    return {
        "result": {
            "status": "enabled",
            "peer_id": 11,
            "peers": {
                "11": {"uri": "http://qdrant-0.qdrant-headless:6335/"},
                "22": {"uri": "http://qdrant-1.qdrant-headless:6335/"},
                "33": {"uri": "http://qdrant-2.qdrant-headless:6335/"},
            },
            "raft_info": {
                "term": 4,
                "commit": 120,
                "pending_operations": 0,
                "leader": 22,
                "role": "Follower",
                "is_voter": True,
            },
            "consensus_thread_status": {"consensus_thread_status": "working"},
            "message_send_failures": {},
        },
        "status": "ok",
        "time": 0.00002,
    }


@pytest.fixture
def collection_cluster_response():
    """Sample response for GET /collections/docs/cluster."""
    return {
        "result": {
            "peer_id": 11,
            "shard_count": 3,
            "local_shards": [
                {"shard_id": 0, "points_count": 120, "state": "Active"},
                {"shard_id": 2, "points_count": 0, "state": "Partial"},
            ],
            "remote_shards": [
                {"shard_id": 1, "peer_id": 22, "state": "Active"},
                {"shard_id": 2, "peer_id": 33, "state": "Active"},
            ],
            "shard_transfers": [
                {"shard_id": 2, "from": 33, "to": 11, "sync": False, "method": "stream_records"}
            ],
        },
        "status": "ok",
        "time": 0.0001,
    }


@pytest.fixture
def collection_info_response():
    """Sample response for GET /collections/docs."""
    return {
        "result": {
            "status": "green",
            "optimizer_status": "ok",
            "points_count": 120,
            "segments_count": 6,
            "config": {
                "params": {
                    "vectors": {"size": 4, "distance": "Cosine"},
                    "shard_number": 3,
                    "replication_factor": 2,
                    "write_consistency_factor": 1,
                    "on_disk_payload": True,
                },
                "hnsw_config": {"m": 16, "ef_construct": 100},
            },
            "payload_schema": {},
        },
        "status": "ok",
        "time": 0.0001,
    }


class TestClusterTopology:
    """Tests for get_cluster_topology."""

    @pytest.mark.asyncio
    async def test_parses_peers(self, cluster_response):
        """Peers are returned in response order with int ids."""
        client, _ = make_client({"/cluster": {"json": cluster_response}})

        topology = await client.get_cluster_topology()

        assert topology.peer_id == 11
        assert [p.peer_id for p in topology.peers] == [11, 22, 33]
        assert topology.peers[2].uri == "http://qdrant-2.qdrant-headless:6335/"

    @pytest.mark.asyncio
    async def test_parses_raft_info(self, cluster_response):
        """Consensus status is exposed as RaftInfo."""
        client, _ = make_client({"/cluster": {"json": cluster_response}})

        topology = await client.get_cluster_topology()

        assert topology.raft_info is not None
        assert topology.raft_info.leader == 22
        assert topology.raft_info.term == 4
        assert topology.raft_info.role == "Follower"

    @pytest.mark.asyncio
    async def test_raises_on_server_error(self):
        """5xx responses become ClusterApiError with the server message."""
        client, _ = make_client(
            {
                "/cluster": {
                    "status_code": 500,
                    "json": {"status": {"error": "Service internal error"}, "time": 0.0},
                }
            }
        )

        with pytest.raises(ClusterApiError) as exc_info:
            await client.get_cluster_topology()

        assert exc_info.value.status_code == 500
        assert exc_info.value.error == "Service internal error"
        assert "Service internal error" in str(exc_info.value)


class TestCollections:
    """Tests for collection listing, descriptor and layout."""

    @pytest.mark.asyncio
    async def test_list_collection_names(self):
        """Collection names are returned in response order."""
        client, _ = make_client(
            {
                "/collections": {
                    "json": {
                        "result": {"collections": [{"name": "docs"}, {"name": "images"}]},
                        "status": "ok",
                        "time": 0.0,
                    }
                }
            }
        )

        assert await client.list_collection_names() == ["docs", "images"]

    @pytest.mark.asyncio
    async def test_get_collection_descriptor(self, collection_info_response):
        """Shard number and replication factor come from config.params."""
        client, _ = make_client({"/collections/docs": {"json": collection_info_response}})

        descriptor = await client.get_collection_descriptor("docs")

        assert descriptor.name == "docs"
        assert descriptor.shard_count == 3
        assert descriptor.replication_factor == 2

    @pytest.mark.asyncio
    async def test_descriptor_missing_collection(self):
        """404 on a collection endpoint raises CollectionNotFoundError."""
        client, _ = make_client({})

        with pytest.raises(CollectionNotFoundError) as exc_info:
            await client.get_collection_descriptor("missing")

        assert exc_info.value.collection_name == "missing"

    @pytest.mark.asyncio
    async def test_shard_layout_attributes_local_shards(self, collection_cluster_response):
        """Local shards are attributed to the answering peer."""
        client, _ = make_client(
            {"/collections/docs/cluster": {"json": collection_cluster_response}}
        )

        layout = await client.get_collection_shard_layout("docs")

        assert layout.peer_id == 11
        assert layout.shard_count == 3
        assert {(r.shard_id, r.peer_id) for r in layout.local_shards} == {(0, 11), (2, 11)}
        assert layout.local_shards[1].state is ShardState.PARTIAL
        assert len(layout.replicas) == 4

    @pytest.mark.asyncio
    async def test_shard_layout_parses_transfers(self, collection_cluster_response):
        """The 'from'/'to' fields of transfers map to from_peer_id/to_peer_id."""
        client, _ = make_client(
            {"/collections/docs/cluster": {"json": collection_cluster_response}}
        )

        layout = await client.get_collection_shard_layout("docs")

        assert len(layout.shard_transfers) == 1
        transfer = layout.shard_transfers[0]
        assert (transfer.shard_id, transfer.from_peer_id, transfer.to_peer_id) == (2, 33, 11)

    @pytest.mark.asyncio
    async def test_collection_health(self, collection_info_response, collection_cluster_response):
        """Health combines collection status and ongoing transfer count."""
        client, _ = make_client(
            {
                "/collections/docs": {"json": collection_info_response},
                "/collections/docs/cluster": {"json": collection_cluster_response},
            }
        )

        health = await client.get_collection_health("docs")

        assert health.status is CollectionStatus.GREEN
        assert health.optimizer_ok is True
        assert health.ongoing_transfer_count == 1

    @pytest.mark.asyncio
    async def test_collection_health_optimizer_error(
        self, collection_info_response, collection_cluster_response
    ):
        """An optimizer error object marks the optimizer as not ok."""
        collection_info_response["result"]["status"] = "red"
        collection_info_response["result"]["optimizer_status"] = {"error": "disk full"}
        client, _ = make_client(
            {
                "/collections/docs": {"json": collection_info_response},
                "/collections/docs/cluster": {"json": collection_cluster_response},
            }
        )

        health = await client.get_collection_health("docs")

        assert health.status is CollectionStatus.RED
        assert health.optimizer_ok is False
        assert health.optimizer_error == "disk full"


class TestClusterUpdates:
    """Tests for POST /collections/{name}/cluster requests."""

    ack = {"json": {"result": True, "status": "ok", "time": 0.001}}

    @pytest.mark.asyncio
    async def test_replicate_shard_body(self):
        """A copy sends a replicate_shard body."""
        client, transport = make_client({"/collections/docs/cluster": self.ack})

        accepted = await client.request_shard_transfer(
            "docs", 1, 11, 22, ShardTransferMethod.STREAM_RECORDS
        )

        assert accepted is True
        request = transport.requests[0]
        assert request.method == "POST"
        assert json.loads(request.content) == {
            "replicate_shard": {
                "shard_id": 1,
                "from_peer_id": 11,
                "to_peer_id": 22,
                "method": "stream_records",
            }
        }

    @pytest.mark.asyncio
    async def test_move_shard_body(self):
        """A move sends a move_shard body."""
        client, transport = make_client({"/collections/docs/cluster": self.ack})

        await client.request_shard_transfer(
            "docs", 0, 11, 33, ShardTransferMethod.SNAPSHOT, is_move=True
        )

        body = json.loads(transport.requests[0].content)
        assert list(body) == ["move_shard"]
        assert body["move_shard"]["method"] == "snapshot"

    @pytest.mark.asyncio
    async def test_drop_replica_body(self):
        """Dropping sends a drop_replica body with the peer id."""
        client, transport = make_client({"/collections/docs/cluster": self.ack})

        await client.drop_shard_replica("docs", 2, 33)

        assert json.loads(transport.requests[0].content) == {
            "drop_replica": {"shard_id": 2, "peer_id": 33}
        }

    @pytest.mark.asyncio
    async def test_abort_transfer_body(self):
        """Aborting sends an abort_transfer body without a method."""
        client, transport = make_client({"/collections/docs/cluster": self.ack})

        await client.abort_shard_transfer("docs", 2, 33, 11)

        assert json.loads(transport.requests[0].content) == {
            "abort_transfer": {"shard_id": 2, "from_peer_id": 33, "to_peer_id": 11}
        }

    @pytest.mark.asyncio
    async def test_operation_timeout_query_param(self):
        """operation_timeout is sent as the timeout query parameter."""
        client, transport = make_client(
            {"/collections/docs/cluster": self.ack}, operation_timeout=60
        )

        await client.drop_shard_replica("docs", 0, 11)

        assert transport.requests[0].url.params["timeout"] == "60"

    @pytest.mark.asyncio
    async def test_negative_ack(self):
        """result: false is returned as False."""
        client, _ = make_client(
            {"/collections/docs/cluster": {"json": {"result": False, "status": "ok", "time": 0.0}}}
        )

        assert await client.drop_shard_replica("docs", 0, 11) is False

    @pytest.mark.asyncio
    async def test_transfer_to_same_peer_rejected(self):
        """Copying a shard from a peer to itself raises before any request."""
        client, transport = make_client({"/collections/docs/cluster": self.ack})

        with pytest.raises(ValueError):
            await client.request_shard_transfer("docs", 0, 11, 11, ShardTransferMethod.SNAPSHOT)

        assert transport.requests == []

    @pytest.mark.asyncio
    async def test_bad_request_raises(self):
        """400 responses become ClusterApiError."""
        client, _ = make_client(
            {
                "/collections/docs/cluster": {
                    "status_code": 400,
                    "json": {
                        "status": {"error": "Bad request: Shard 7 does not exist"},
                        "time": 0.0,
                    },
                }
            }
        )

        with pytest.raises(ClusterApiError) as exc_info:
            await client.drop_shard_replica("docs", 7, 11)

        assert exc_info.value.status_code == 400
        assert "Shard 7 does not exist" in exc_info.value.error
