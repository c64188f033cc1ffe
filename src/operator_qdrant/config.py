"""Environment-based configuration for Qdrant cluster operations."""

from pydantic_settings import BaseSettings

from operator_qdrant.types import ShardTransferMethod


class ClientSettings(BaseSettings):
    """Cluster client and compound operation configuration.

    All settings can be overridden via environment variables with
    QDRANT_OPERATOR_ prefix. For example:
        QDRANT_OPERATOR_URL=http://qdrant-0:6333
        QDRANT_OPERATOR_API_KEY=secret
        QDRANT_OPERATOR_CLUSTERS='{"eu": "http://qdrant-eu:6333"}'
    """

    # Connection
    url: str = "http://localhost:6333"
    api_key: str | None = None
    http_timeout: float = 30.0

    # Shard transfers
    max_concurrent_transfers: int = 4
    transfer_method: ShardTransferMethod = ShardTransferMethod.SNAPSHOT
    cluster_operation_timeout: int | None = None  # server-side wait, seconds

    # Waiting
    polling_interval: float = 1.0
    readiness_timeout: float = 30.0
    transfer_completion_timeout: float = 600.0

    # Named clusters for multi-cluster callers
    clusters: dict[str, str] = {}

    model_config = {"env_prefix": "QDRANT_OPERATOR_"}
