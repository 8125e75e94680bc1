"""埋め込みサービスの公開ヘルパー。"""

from __future__ import annotations

import os
from collections.abc import Callable

from game_catalog_sync.shared.config import AppSettings, get_settings

from .base import (
    EmbeddingJob,
    EmbeddingServiceError,
    EmbeddingServiceProtocol,
    EmbeddingVector,
    UnknownEmbeddingServiceError,
)

EmbeddingServiceFactory = Callable[[AppSettings | None], EmbeddingServiceProtocol]

_REGISTRY: dict[str, EmbeddingServiceFactory] = {}


def register_embedding_service(name: str, factory: EmbeddingServiceFactory) -> None:
    """埋め込みサービスのファクトリを登録する。"""

    _REGISTRY[name.lower()] = factory


def list_embedding_services() -> list[str]:
    return sorted(_REGISTRY)


def get_embedding_service(
    name: str,
    settings: AppSettings | None = None,
) -> EmbeddingServiceProtocol:
    """指定名の埋め込みサービスを取得する。

    Raises:
        UnknownEmbeddingServiceError: 未登録のプロバイダ名。
    """

    normalized = name.lower()
    if normalized not in _REGISTRY:
        msg = f"Embedding service '{name}' is not registered"
        raise UnknownEmbeddingServiceError(msg)
    return _REGISTRY[normalized](settings or get_settings())


def get_default_embedding_service(settings: AppSettings | None = None) -> EmbeddingServiceProtocol:
    """環境変数 `EMBEDDING_PROVIDER` を参照してサービスを決定。"""

    provider_name = os.getenv("EMBEDDING_PROVIDER", "gemini")
    return get_embedding_service(provider_name, settings)


__all__ = [
    "EmbeddingJob",
    "EmbeddingServiceError",
    "EmbeddingServiceProtocol",
    "EmbeddingServiceFactory",
    "EmbeddingVector",
    "UnknownEmbeddingServiceError",
    "register_embedding_service",
    "get_embedding_service",
    "get_default_embedding_service",
    "list_embedding_services",
]


def _ensure_default_services() -> None:
    from . import gemini  # noqa: F401


_ensure_default_services()
