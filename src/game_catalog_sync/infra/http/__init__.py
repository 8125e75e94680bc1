"""外部カタログ API 呼び出しの共通基盤。"""

from .client import CatalogHttpClient, QueryParams
from .errors import (
    CatalogHTTPError,
    HTTPStatusError,
    HTTPTransportError,
    MalformedResponseError,
    is_retryable_http_error,
)
from .pagination import PaginatedFetcher, build_page_url, default_results_transform
from .rate_limit import RateLimiterRegistry, RateLimiterState, TokenBucketRateLimiter
from .retry import RetryExecutor, RetryPolicy, with_retry

__all__ = [
    "CatalogHTTPError",
    "CatalogHttpClient",
    "HTTPStatusError",
    "HTTPTransportError",
    "MalformedResponseError",
    "PaginatedFetcher",
    "QueryParams",
    "RateLimiterRegistry",
    "RateLimiterState",
    "RetryExecutor",
    "RetryPolicy",
    "TokenBucketRateLimiter",
    "build_page_url",
    "default_results_transform",
    "is_retryable_http_error",
    "with_retry",
]
