"""カタログ HTTP 呼び出しの例外。"""

from __future__ import annotations

import httpx

from game_catalog_sync.shared.exceptions import ExternalServiceError

RETRIABLE_STATUSES: tuple[int, ...] = (408, 429, 500, 502, 503, 504)


class CatalogHTTPError(ExternalServiceError):
    """カタログ API 呼び出し共通の例外。"""

    default_message = "Catalog HTTP request failed"


class HTTPStatusError(CatalogHTTPError):
    """2xx 以外のステータスを受け取った。"""

    def __init__(self, status_code: int, url: str) -> None:
        super().__init__(f"HTTP {status_code} for {url}")
        self.status_code = status_code
        self.url = url

    @property
    def retryable(self) -> bool:
        return self.status_code in RETRIABLE_STATUSES


class HTTPTransportError(CatalogHTTPError):
    """接続失敗・タイムアウトなどの通信エラー。"""


class MalformedResponseError(CatalogHTTPError):
    """レスポンスボディを JSON として解釈できない。"""

    default_message = "Response body is not valid JSON"


def is_retryable_http_error(error: Exception) -> bool:
    """通信エラーと一時的な HTTP ステータスのみ再試行対象とする。"""

    if isinstance(error, HTTPStatusError):
        return error.retryable
    if isinstance(error, HTTPTransportError | httpx.TransportError):
        return True
    return isinstance(error, TimeoutError | ConnectionError)


__all__ = [
    "CatalogHTTPError",
    "HTTPStatusError",
    "HTTPTransportError",
    "MalformedResponseError",
    "RETRIABLE_STATUSES",
    "is_retryable_http_error",
]
