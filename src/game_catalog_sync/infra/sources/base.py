"""ソースアダプタ共通の処理。"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from structlog.stdlib import BoundLogger

from game_catalog_sync.core.ingest.ports import SourceAdapterProtocol
from game_catalog_sync.infra.http.errors import HTTPStatusError, MalformedResponseError

__all__ = ["SourceAdapterProtocol", "fetch_or_none", "as_mapping"]


def fetch_or_none(
    fetch: Callable[[], Any],
    *,
    logger: BoundLogger,
    source: str,
    key: object,
) -> Any | None:
    """404 と不正な JSON は「データなし」として ``None`` を返す。

    それ以外の失敗 (再試行を使い切った 5xx や通信エラー) はそのまま送出する。
    """

    try:
        return fetch()
    except HTTPStatusError as exc:
        if exc.status_code == 404:
            logger.info("source_record_not_found", source=source, key=key)
            return None
        raise
    except MalformedResponseError as exc:
        logger.warning("source_payload_malformed", source=source, key=key, error=str(exc))
        return None


def as_mapping(payload: Any) -> Mapping[str, Any] | None:
    return payload if isinstance(payload, Mapping) else None
