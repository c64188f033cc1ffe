"""
Qdrant cluster API client.

This module provides the ClusterClient class for the cluster-management
part of the Qdrant REST API: peer membership, shard placement, collection
health and shard transfer requests.

ClusterClient receives an injected httpx.AsyncClient with base_url set to
any Qdrant peer (and the api-key header, if the cluster requires one).
All methods are async. Non-2xx responses raise ClusterApiError; nothing is
retried.

Qdrant API Documentation:
- https://qdrant.tech/documentation/guides/distributed_deployment/
- https://api.qdrant.tech/api-reference/distributed
"""

import logging
from dataclasses import dataclass
from typing import Any

import httpx
from pydantic import ValidationError

from operator_qdrant.exceptions import ClusterApiError, CollectionNotFoundError
from operator_qdrant.models import (
    ClusterInfoResponse,
    CollectionClusterInfoResponse,
    CollectionInfoResponse,
    CollectionsListResponse,
    DropReplicaDescription,
    QdrantResponse,
    ShardOperationDescription,
    UpdateCollectionClusterRequest,
    UpdateCollectionClusterResponse,
)
from operator_qdrant.types import (
    ClusterTopology,
    CollectionDescriptor,
    CollectionHealth,
    CollectionShardLayout,
    CollectionStatus,
    Peer,
    PeerId,
    RaftInfo,
    ShardId,
    ShardReplica,
    ShardTransferInfo,
    ShardTransferMethod,
)

logger = logging.getLogger(__name__)


@dataclass
class ClusterClient:
    """
    Qdrant cluster API client with injected httpx client.

    Implements ClusterDirectoryProtocol. Converts Qdrant API response types
    to operator_qdrant.types dataclasses.

    Attributes:
        http: Pre-configured httpx.AsyncClient with base_url set to a Qdrant peer.
        operation_timeout: Server-side wait (seconds) passed as the `timeout`
            query parameter of cluster update requests. None leaves it to
            the server default.

    Example:
        async with httpx.AsyncClient(base_url="http://qdrant-0:6333") as http:
            client = ClusterClient(http=http)
            topology = await client.get_cluster_topology()
            for peer in topology.peers:
                print(f"Peer {peer.peer_id} at {peer.uri}")
    """

    http: httpx.AsyncClient
    operation_timeout: int | None = None

    async def _request(
        self,
        method: str,
        path: str,
        params: dict[str, Any] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        response = await self.http.request(method, path, params=params, json=json)
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise ClusterApiError(
                method=method,
                url=str(response.request.url),
                status_code=response.status_code,
                error=_error_text(response),
            ) from e
        return response.json()

    async def _collection_request(self, collection_name: str, path: str) -> Any:
        try:
            return await self._request("GET", path)
        except ClusterApiError as e:
            if e.status_code == 404:
                raise CollectionNotFoundError(collection_name) from e
            raise

    async def get_cluster_topology(self) -> ClusterTopology:
        """
        Get cluster peers and consensus status.

        Calls GET /cluster.

        Returns:
            ClusterTopology with peers in the order the cluster reported them.

        Raises:
            ClusterApiError: On HTTP errors (4xx, 5xx responses).
            pydantic.ValidationError: On malformed response data.
        """
        data = ClusterInfoResponse.model_validate(await self._request("GET", "/cluster"))
        result = data.result

        raft = None
        if result.raft_info is not None:
            raft = RaftInfo(
                term=result.raft_info.term,
                commit=result.raft_info.commit,
                pending_operations=result.raft_info.pending_operations,
                leader=result.raft_info.leader,
                role=result.raft_info.role,
            )

        return ClusterTopology(
            peer_id=result.peer_id,
            peers=[Peer(peer_id=peer_id, uri=p.uri) for peer_id, p in result.peers.items()],
            status=result.status,
            raft_info=raft,
        )

    async def list_collection_names(self) -> list[str]:
        """
        Get names of all collections.

        Calls GET /collections.

        Raises:
            ClusterApiError: On HTTP errors.
        """
        data = CollectionsListResponse.model_validate(await self._request("GET", "/collections"))
        return [c.name for c in data.result.collections]

    async def get_collection_descriptor(self, collection_name: str) -> CollectionDescriptor:
        """
        Get the sharding parameters of a collection.

        Calls GET /collections/{name}.

        Args:
            collection_name: Collection to describe.

        Returns:
            CollectionDescriptor with shard count and replication factor.

        Raises:
            CollectionNotFoundError: If the collection does not exist.
            ClusterApiError: On other HTTP errors.
        """
        raw = await self._collection_request(collection_name, f"/collections/{collection_name}")
        params = CollectionInfoResponse.model_validate(raw).result.config.params
        return CollectionDescriptor(
            name=collection_name,
            shard_count=params.shard_number,
            replication_factor=params.replication_factor,
        )

    async def get_collection_shard_layout(self, collection_name: str) -> CollectionShardLayout:
        """
        Get replica placement and ongoing transfers of a collection.

        Calls GET /collections/{name}/cluster. Local shards are reported
        relative to the answering peer and are attributed to its peer id.

        Args:
            collection_name: Collection to inspect.

        Raises:
            CollectionNotFoundError: If the collection does not exist.
            ClusterApiError: On other HTTP errors.
        """
        raw = await self._collection_request(
            collection_name, f"/collections/{collection_name}/cluster"
        )
        result = CollectionClusterInfoResponse.model_validate(raw).result

        return CollectionShardLayout(
            peer_id=result.peer_id,
            shard_count=result.shard_count,
            local_shards=[
                ShardReplica(shard_id=s.shard_id, peer_id=result.peer_id, state=s.state)
                for s in result.local_shards
            ],
            remote_shards=[
                ShardReplica(shard_id=s.shard_id, peer_id=s.peer_id, state=s.state)
                for s in result.remote_shards
            ],
            shard_transfers=[
                ShardTransferInfo(
                    shard_id=t.shard_id,
                    from_peer_id=t.from_peer_id,
                    to_peer_id=t.to_peer_id,
                    sync=t.sync,
                )
                for t in result.shard_transfers
            ],
        )

    async def get_collection_health(self, collection_name: str) -> CollectionHealth:
        """
        Get collection color, optimizer status and ongoing transfer count.

        Calls GET /collections/{name} and GET /collections/{name}/cluster.

        Raises:
            CollectionNotFoundError: If the collection does not exist.
            ClusterApiError: On other HTTP errors.
        """
        raw = await self._collection_request(collection_name, f"/collections/{collection_name}")
        info = CollectionInfoResponse.model_validate(raw).result
        layout = await self.get_collection_shard_layout(collection_name)

        optimizer_error = info.optimizer_error
        return CollectionHealth(
            status=CollectionStatus(info.status),
            optimizer_ok=optimizer_error is None,
            ongoing_transfer_count=len(layout.shard_transfers),
            optimizer_error=optimizer_error,
        )

    async def request_shard_transfer(
        self,
        collection_name: str,
        shard_id: ShardId,
        source_peer_id: PeerId,
        target_peer_id: PeerId,
        method: ShardTransferMethod = ShardTransferMethod.SNAPSHOT,
        is_move: bool = False,
    ) -> bool:
        """
        Request a shard replica copy (replicate_shard) or move (move_shard).

        Calls POST /collections/{name}/cluster.

        Args:
            collection_name: Collection the shard belongs to.
            shard_id: Shard to transfer.
            source_peer_id: Peer to read the shard from.
            target_peer_id: Peer to create the replica on.
            method: Transfer method.
            is_move: Send move_shard instead of replicate_shard.

        Returns:
            The cluster acknowledgement.

        Raises:
            ValueError: If source and target are the same peer.
            ClusterApiError: On HTTP errors.
        """
        if source_peer_id == target_peer_id:
            raise ValueError(
                f"Can't transfer shard {shard_id} of collection '{collection_name}' "
                f"from peer {source_peer_id} to itself"
            )

        description = ShardOperationDescription(
            shard_id=shard_id,
            from_peer_id=source_peer_id,
            to_peer_id=target_peer_id,
            method=method,
        )
        if is_move:
            body = UpdateCollectionClusterRequest(move_shard=description)
        else:
            body = UpdateCollectionClusterRequest(replicate_shard=description)

        logger.debug(
            "%s shard %d of '%s' from peer %d to peer %d (%s)",
            "Moving" if is_move else "Replicating",
            shard_id,
            collection_name,
            source_peer_id,
            target_peer_id,
            method.value,
        )
        return await self._update_cluster(collection_name, body)

    async def drop_shard_replica(
        self, collection_name: str, shard_id: ShardId, peer_id: PeerId
    ) -> bool:
        """
        Drop a shard replica from a peer.

        Calls POST /collections/{name}/cluster with a drop_replica body.

        Raises:
            ClusterApiError: On HTTP errors.
        """
        body = UpdateCollectionClusterRequest(
            drop_replica=DropReplicaDescription(shard_id=shard_id, peer_id=peer_id)
        )
        logger.debug("Dropping shard %d of '%s' from peer %d", shard_id, collection_name, peer_id)
        return await self._update_cluster(collection_name, body)

    async def abort_shard_transfer(
        self,
        collection_name: str,
        shard_id: ShardId,
        source_peer_id: PeerId,
        target_peer_id: PeerId,
    ) -> bool:
        """
        Abort an ongoing shard transfer.

        Calls POST /collections/{name}/cluster with an abort_transfer body.

        Raises:
            ValueError: If source and target are the same peer.
            ClusterApiError: On HTTP errors.
        """
        if source_peer_id == target_peer_id:
            raise ValueError(f"Shard transfer source and target are both peer {source_peer_id}")

        body = UpdateCollectionClusterRequest(
            abort_transfer=ShardOperationDescription(
                shard_id=shard_id,
                from_peer_id=source_peer_id,
                to_peer_id=target_peer_id,
            )
        )
        logger.debug(
            "Aborting transfer of shard %d of '%s' from peer %d to peer %d",
            shard_id,
            collection_name,
            source_peer_id,
            target_peer_id,
        )
        return await self._update_cluster(collection_name, body)

    async def _update_cluster(
        self, collection_name: str, body: UpdateCollectionClusterRequest
    ) -> bool:
        params = None
        if self.operation_timeout is not None:
            params = {"timeout": self.operation_timeout}

        raw = await self._request(
            "POST",
            f"/collections/{collection_name}/cluster",
            params=params,
            json=body.to_json(),
        )
        return UpdateCollectionClusterResponse.model_validate(raw).result


def _error_text(response: httpx.Response) -> str | None:
    """Extract the server error message from a failed response, if any."""
    try:
        error = QdrantResponse.model_validate(response.json()).error
    except (ValueError, ValidationError):
        error = None
    if error:
        return error
    return response.text or None
