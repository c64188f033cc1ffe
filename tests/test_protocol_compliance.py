"""
Protocol compliance and wiring tests.

Verifies that ClusterClient and the in-memory test cluster implement
ClusterDirectoryProtocol, and that settings and factories build clients
the way the rest of the package expects.
"""

import httpx
import pytest

from conftest import make_directory
from operator_qdrant.client import ClusterClient
from operator_qdrant.config import ClientSettings
from operator_qdrant.factory import (
    create_cluster_client,
    create_http_client,
    create_named_cluster_clients,
)
from operator_qdrant.protocols import ClusterDirectoryProtocol
from operator_qdrant.types import ShardTransferMethod


class TestClusterDirectoryProtocolCompliance:
    """Tests that directories implement ClusterDirectoryProtocol."""

    @pytest.mark.asyncio
    async def test_cluster_client_is_directory(self):
        """ClusterClient should pass isinstance check for ClusterDirectoryProtocol."""
        async with httpx.AsyncClient(base_url="http://qdrant-0:6333") as http:
            assert isinstance(ClusterClient(http=http), ClusterDirectoryProtocol)

    def test_fake_directory_is_directory(self):
        """The in-memory test cluster should satisfy the protocol too."""
        assert isinstance(make_directory({1: [0]}), ClusterDirectoryProtocol)

    def test_unrelated_object_is_not_directory(self):
        assert not isinstance(object(), ClusterDirectoryProtocol)


class TestClientSettings:
    """Tests for environment configuration."""

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("QDRANT_OPERATOR_URL", raising=False)

        settings = ClientSettings()

        assert settings.url == "http://localhost:6333"
        assert settings.transfer_method is ShardTransferMethod.SNAPSHOT
        assert settings.max_concurrent_transfers == 4

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("QDRANT_OPERATOR_URL", "http://qdrant-1:6333")
        monkeypatch.setenv("QDRANT_OPERATOR_TRANSFER_METHOD", "wal_delta")
        monkeypatch.setenv("QDRANT_OPERATOR_CLUSTERS", '{"eu": "http://qdrant-eu:6333"}')

        settings = ClientSettings()

        assert settings.url == "http://qdrant-1:6333"
        assert settings.transfer_method is ShardTransferMethod.WAL_DELTA
        assert settings.clusters == {"eu": "http://qdrant-eu:6333"}


class TestFactory:
    """Tests for client factories."""

    @pytest.mark.asyncio
    async def test_http_client_sends_api_key(self):
        settings = ClientSettings(url="http://qdrant-0:6333", api_key="secret", http_timeout=5.0)

        http = create_http_client(settings)
        try:
            assert http.headers["api-key"] == "secret"
            assert str(http.base_url) == "http://qdrant-0:6333/"
            assert http.timeout.read == 5.0
        finally:
            await http.aclose()

    @pytest.mark.asyncio
    async def test_no_api_key_header_by_default(self):
        http = create_http_client(ClientSettings(api_key=None))
        try:
            assert "api-key" not in http.headers
        finally:
            await http.aclose()

    @pytest.mark.asyncio
    async def test_cluster_client_uses_operation_timeout(self):
        client = create_cluster_client(ClientSettings(cluster_operation_timeout=60))
        try:
            assert client.operation_timeout == 60
        finally:
            await client.http.aclose()

    @pytest.mark.asyncio
    async def test_named_clients(self):
        settings = ClientSettings(clusters={"eu": "http://qdrant-eu:6333"})

        clients = create_named_cluster_clients(settings)
        try:
            assert list(clients) == ["eu"]
            assert str(clients["eu"].http.base_url) == "http://qdrant-eu:6333/"
        finally:
            for client in clients.values():
                await client.http.aclose()
