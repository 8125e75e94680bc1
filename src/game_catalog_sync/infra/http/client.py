"""外部カタログ向けの JSON GET クライアント。"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

import httpx
from structlog.stdlib import BoundLogger

from game_catalog_sync.shared.logging import get_logger

from .errors import (
    HTTPStatusError,
    HTTPTransportError,
    MalformedResponseError,
    is_retryable_http_error,
)
from .rate_limit import TokenBucketRateLimiter
from .retry import RetryExecutor

QueryParams = Mapping[str, str | int | float | None]


class CatalogHttpClient:
    """1 リクエストごとにレートリミッタのトークンを取得し、再試行付きで GET する。

    トークンはリクエスト単位で 1 つ消費し、再試行の間隔はバックオフで空ける。
    """

    def __init__(
        self,
        *,
        source: str,
        rate_limiter: TokenBucketRateLimiter | None = None,
        retry_executor: RetryExecutor | None = None,
        timeout: float = 10.0,
        default_headers: Mapping[str, str] | None = None,
        http_client: httpx.Client | None = None,
        logger: BoundLogger | None = None,
    ) -> None:
        self.source = source
        self._rate_limiter = rate_limiter
        self._retry_executor = retry_executor or RetryExecutor()
        self._owns_client = http_client is None
        self._client = http_client or httpx.Client(timeout=timeout, follow_redirects=True)
        self._timeout = timeout
        self._default_headers = {"Accept": "application/json", **(default_headers or {})}
        self._logger = logger or get_logger(__name__, source=source)

    def get_json(
        self,
        url: str,
        *,
        params: QueryParams | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> Any:
        """GET して JSON をデコードする。

        Raises:
            HTTPStatusError: 再試行後も 2xx 以外だった。
            HTTPTransportError: 再試行後も通信に失敗した。
            MalformedResponseError: ボディが JSON ではない。
        """

        if self._rate_limiter is not None:
            self._rate_limiter.acquire()

        cleaned = {key: value for key, value in (params or {}).items() if value is not None}
        # URL 側に既にあるクエリ (ページ番号など) を残したまま追加する
        request_url = str(httpx.URL(url).copy_merge_params(cleaned)) if cleaned else url
        merged_headers = {**self._default_headers, **(headers or {})}
        return self._retry_executor.run(
            lambda: self._get_once(request_url, merged_headers),
            is_retryable=is_retryable_http_error,
            description=f"{self.source} GET",
        )

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> CatalogHttpClient:
        return self

    def __exit__(self, *_exc: object) -> None:
        self.close()

    def _get_once(self, url: str, headers: dict[str, str]) -> Any:
        self._logger.debug("catalog_request", url=url)
        try:
            response = self._client.get(url, headers=headers, timeout=self._timeout)
        except httpx.TimeoutException as exc:
            msg = f"Request to {url} timed out"
            raise HTTPTransportError(msg) from exc
        except httpx.TransportError as exc:
            msg = f"Request to {url} failed: {exc}"
            raise HTTPTransportError(msg) from exc

        if not response.is_success:
            raise HTTPStatusError(response.status_code, str(response.request.url))

        try:
            return response.json()
        except ValueError as exc:
            raise MalformedResponseError(f"Response from {url} is not valid JSON") from exc


__all__ = ["CatalogHttpClient", "QueryParams"]
