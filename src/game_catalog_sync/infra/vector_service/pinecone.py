"""Pinecone 互換の外部ベクトルインデックスへ upsert する HTTP クライアント。"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

import httpx
from structlog.stdlib import BoundLogger

from game_catalog_sync.infra.http.errors import RETRIABLE_STATUSES
from game_catalog_sync.infra.http.retry import RetryExecutor
from game_catalog_sync.shared.config import AppSettings
from game_catalog_sync.shared.exceptions import ConfigurationError, ExternalServiceError
from game_catalog_sync.shared.logging import get_logger

__all__ = ["PineconeVectorClient", "VectorServiceError", "vector_id_for"]


class VectorServiceError(ExternalServiceError):
    default_message = "Vector service request failed"

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def _is_retryable(error: Exception) -> bool:
    if isinstance(error, VectorServiceError) and error.status_code is not None:
        return error.status_code in RETRIABLE_STATUSES
    return True


def vector_id_for(game_id: int) -> str:
    return f"game-{game_id}"


def _clean_metadata(metadata: Mapping[str, Any]) -> dict[str, Any]:
    # Pinecone は null 値のメタデータを受け付けない
    cleaned: dict[str, Any] = {}
    for key, value in metadata.items():
        if value is None:
            continue
        if isinstance(value, tuple | set | frozenset):
            value = list(value)
        cleaned[key] = value
    return cleaned


class PineconeVectorClient:
    """`POST {index_host}/vectors/upsert` を 1 ベクトルずつ呼び出す。"""

    def __init__(
        self,
        *,
        index_host: str,
        api_key: str,
        timeout: float = 10.0,
        namespace: str | None = None,
        retry_executor: RetryExecutor | None = None,
        http_client: httpx.Client | None = None,
        logger: BoundLogger | None = None,
    ) -> None:
        self._endpoint = f"{index_host.rstrip('/')}/vectors/upsert"
        self._namespace = namespace
        self._retry_executor = retry_executor or RetryExecutor()
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=timeout)
        self._headers = {"Api-Key": api_key, "Content-Type": "application/json"}
        self._logger = logger or get_logger(__name__, component="vector_service")

    @classmethod
    def from_settings(
        cls, settings: AppSettings, *, retry_executor: RetryExecutor | None = None
    ) -> PineconeVectorClient:
        config = settings.vector_service
        if config.index_host is None or config.api_key is None:
            raise ConfigurationError("Vector service host and API key are required")
        return cls(
            index_host=str(config.index_host),
            api_key=config.api_key.get_secret_value(),
            timeout=config.timeout_seconds,
            retry_executor=retry_executor,
        )

    def upsert(
        self, vector_id: str, values: Sequence[float], metadata: Mapping[str, Any]
    ) -> None:
        body: dict[str, Any] = {
            "vectors": [
                {
                    "id": vector_id,
                    "values": [float(value) for value in values],
                    "metadata": _clean_metadata(metadata),
                }
            ]
        }
        if self._namespace:
            body["namespace"] = self._namespace

        def operation() -> None:
            try:
                response = self._client.post(self._endpoint, json=body, headers=self._headers)
            except httpx.HTTPError as exc:
                raise VectorServiceError(f"Vector upsert failed: {exc}") from exc
            if response.is_error:
                raise VectorServiceError(
                    f"Vector upsert failed with status {response.status_code}",
                    status_code=response.status_code,
                )

        self._retry_executor.run(
            operation, is_retryable=_is_retryable, description="vector_upsert"
        )
        self._logger.debug("vector_upserted", vector_id=vector_id, dimension=len(values))

    def close(self) -> None:
        if self._owns_client:
            self._client.close()
