"""
Factory functions for creating cluster clients.

This module builds pre-configured httpx clients and ClusterClient
instances from ClientSettings, so callers (the CLI included) do not wire
base URLs, api keys and timeouts by hand.
"""

import httpx

from operator_qdrant.client import ClusterClient
from operator_qdrant.config import ClientSettings


def create_http_client(settings: ClientSettings, url: str | None = None) -> httpx.AsyncClient:
    """
    Create an httpx client for the Qdrant REST API.

    Args:
        settings: Connection settings (api key, timeout).
        url: Base URL of a Qdrant peer. Defaults to settings.url.

    Returns:
        httpx.AsyncClient with base_url, api-key header and timeout set.
    """
    headers = {}
    if settings.api_key:
        headers["api-key"] = settings.api_key
    return httpx.AsyncClient(
        base_url=url or settings.url,
        headers=headers,
        timeout=settings.http_timeout,
    )


def create_cluster_client(
    settings: ClientSettings | None = None,
    url: str | None = None,
    http: httpx.AsyncClient | None = None,
) -> ClusterClient:
    """
    Create a ClusterClient.

    Args:
        settings: Client settings. If None, loaded from the environment.
        url: Base URL of a Qdrant peer. Defaults to settings.url.
        http: Optional pre-configured httpx client. If None, one is created
            with create_http_client().

    Returns:
        ClusterClient ready for use.

    Example:
        client = create_cluster_client(url="http://qdrant-0:6333")
        topology = await client.get_cluster_topology()
    """
    if settings is None:
        settings = ClientSettings()
    if http is None:
        http = create_http_client(settings, url)
    return ClusterClient(http=http, operation_timeout=settings.cluster_operation_timeout)


def create_named_cluster_clients(settings: ClientSettings) -> dict[str, ClusterClient]:
    """Create one ClusterClient per entry of settings.clusters."""
    return {
        name: create_cluster_client(settings, url=url)
        for name, url in settings.clusters.items()
    }
