"""Builds Cosmos DB clients pointed at the interception proxy, and exposes the operations driven by scenarios.

Nothing here implements retry or timeout logic: that is the job of the azure-cosmos client under test.
"""

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
import uuid

from azure.core.exceptions import ServiceRequestTimeoutError, ServiceResponseTimeoutError
from azure.cosmos import ConsistencyLevel, ContainerProxy, CosmosClient, DatabaseProxy
from azure.cosmos.documents import ConnectionMode, SSLConfiguration
from azure.cosmos.exceptions import CosmosClientTimeoutError

from harness._logger import logger
from harness._settings import Settings

# errors raised when the client gives up by itself because of its own timeouts
CLIENT_TIMEOUT_ERRORS: tuple[type[BaseException], ...] = (
    CosmosClientTimeoutError,
    ServiceRequestTimeoutError,
    ServiceResponseTimeoutError,
)


@dataclass(frozen=True)
class ClientPolicy:
    endpoint: str
    credential: str
    consistency_level: str = ConsistencyLevel.Session
    retry_max_attempts: int = 3
    retry_max_wait: float = 12.0
    latency_budget: float = 1.0
    content_response_on_write: bool = False
    connection_mode: int = ConnectionMode.Gateway
    endpoint_discovery: bool = False
    ca_cert: str | None = None

    def __post_init__(self) -> None:
        # the client replaces a zero with its own default (9 attempts, 30s)
        if self.retry_max_attempts < 1:
            raise ValueError(f"retry_max_attempts must be at least 1, got {self.retry_max_attempts}")
        if self.retry_max_wait < 1:
            raise ValueError(f"retry_max_wait must be at least 1 second, got {self.retry_max_wait}")
        if self.latency_budget <= 0:
            raise ValueError(f"latency_budget must be positive, got {self.latency_budget}")

    @classmethod
    def for_proxy(
        cls, base_url: str, settings: Settings, ca_cert: str | None = None, **overrides: Any  # noqa: ANN401
    ) -> "ClientPolicy":
        if not settings.cosmos_key:
            raise ValueError("COSMOS_KEY is not set")
        return cls(endpoint=base_url, credential=settings.cosmos_key, ca_cert=ca_cert, **overrides)


def client_kwargs(policy: ClientPolicy) -> dict[str, Any]:
    """Translate a policy into CosmosClient keyword arguments"""

    result: dict[str, Any] = {
        "consistency_level": policy.consistency_level,
        "retry_total": policy.retry_max_attempts,
        "retry_backoff_max": policy.retry_max_wait,
        "timeout": policy.latency_budget,
        "connection_mode": policy.connection_mode,
        "enable_endpoint_discovery": policy.endpoint_discovery,
        "no_response_on_write": not policy.content_response_on_write,
    }

    if policy.ca_cert is not None:
        ssl_config = SSLConfiguration()
        ssl_config.SSLCaCerts = policy.ca_cert
        result["ssl_config"] = ssl_config
        result["connection_verify"] = policy.ca_cert

    return result


def build_client(policy: ClientPolicy) -> CosmosClient:
    logger.info(
        f"Building Cosmos client on {policy.endpoint}: consistency={policy.consistency_level}, "
        f"retries={policy.retry_max_attempts}, max wait={policy.retry_max_wait}s, budget={policy.latency_budget}s"
    )
    return CosmosClient(policy.endpoint, credential=policy.credential, **client_kwargs(policy))


class CosmosTarget:
    """Database and collections a scenario drives operations against

    Queries run without a max degree of parallelism: the Python client has no such option.
    """

    def __init__(
        self,
        client: CosmosClient,
        policy: ClientPolicy,
        database: str,
        default_collection: str,
        non_default_pk_collection: str,
    ) -> None:
        self.client = client
        self.policy = policy
        self.database: DatabaseProxy = client.get_database_client(database)
        self.default_collection: ContainerProxy = self.database.get_container_client(default_collection)
        self.non_default_pk_collection: ContainerProxy = self.database.get_container_client(
            non_default_pk_collection
        )

    @classmethod
    def from_settings(cls, client: CosmosClient, policy: ClientPolicy, settings: Settings) -> "CosmosTarget":
        return cls(
            client,
            policy,
            database=settings.database,
            default_collection=settings.default_collection,
            non_default_pk_collection=settings.non_default_pk_collection,
        )

    def close(self) -> None:
        self.client.__exit__(None, None, None)

    @property
    def _request_options(self) -> dict[str, Any]:
        # also given per operation, as older clients only honor it there
        return {"timeout": self.policy.latency_budget}

    def read_all_containers(self) -> list[dict[str, Any]]:
        return list(self.database.list_containers(**self._request_options))

    def read_database_properties(self) -> str:
        return self.database.read(**self._request_options)["id"]

    def query_by_id(self, item_id: str | None = None) -> list[dict[str, Any]]:
        return list(
            self.non_default_pk_collection.query_items(
                query="SELECT * FROM c WHERE c.id=@id",
                parameters=[{"name": "@id", "value": item_id or str(uuid.uuid4())}],
                enable_cross_partition_query=True,
                **self._request_options,
            )
        )

    def count(self) -> int | None:
        items = self.default_collection.query_items(
            query="SELECT VALUE COUNT(1) FROM c", enable_cross_partition_query=True, **self._request_options
        )
        return next(iter(items), None)

    def read_first(self) -> dict[str, Any] | None:
        items = self.default_collection.query_items(
            query="SELECT * FROM c", enable_cross_partition_query=True, **self._request_options
        )
        return next(iter(items), None)

    def upsert(self, item: dict[str, Any] | None = None) -> dict[str, Any]:
        item = item or {"id": str(uuid.uuid4())}
        return self.default_collection.upsert_item(
            item, no_response=not self.policy.content_response_on_write, **self._request_options
        )

    def bulk_upsert(self, items: list[dict[str, Any]] | None = None) -> list[dict[str, Any]]:
        """Upsert items in a single batch. Items share the partition key of the first one"""

        if not items:
            item_id = str(uuid.uuid4())
            items = [{"id": item_id}]

        partition_key = items[0]["id"]
        operations = [("upsert", (item,)) for item in items]
        return list(
            self.default_collection.execute_item_batch(
                operations, partition_key=partition_key, **self._request_options
            )
        )

    def operations(self) -> dict[str, Callable[[], Any]]:
        return {
            "read_all_containers": self.read_all_containers,
            "properties": self.read_database_properties,
            "read_non_default_partition_key": self.query_by_id,
            "count": self.count,
            "read_all": self.read_first,
            "write_bulk": self.bulk_upsert,
        }
