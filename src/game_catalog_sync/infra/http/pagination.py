"""ページ番号ベースの一覧 API を走査するフェッチャ。"""

from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from typing import Any

import httpx
from structlog.stdlib import BoundLogger

from game_catalog_sync.shared.logging import get_logger

from .client import CatalogHttpClient, QueryParams

PageTransform = Callable[[Any], Sequence[Any]]


def default_results_transform(payload: Any) -> list[Any]:
    """`results` 配列を取り出す。未知の形なら空として扱う。"""

    if isinstance(payload, Mapping):
        results = payload.get("results")
        if isinstance(results, list):
            return list(results)
    return []


def build_page_url(
    base_url: str,
    *,
    page: int,
    page_size: int,
    page_param: str = "page",
    page_size_param: str = "page_size",
) -> str:
    url = httpx.URL(base_url).copy_merge_params({page_param: page, page_size_param: page_size})
    return str(url)


class PaginatedFetcher:
    """ページを順に取得して結果を連結する。

    `next` があるか、ページが満杯だった間は続行する。最終ページがちょうど
    満杯だと空ページを 1 回余分に要求するが、これは許容している。
    `max_pages` は「常に次がある」と返す API に対する唯一の歯止め。
    """

    def __init__(
        self,
        http: CatalogHttpClient,
        *,
        page_size: int = 40,
        max_pages: int = 25,
        start_page: int = 1,
        page_param: str = "page",
        page_size_param: str = "page_size",
        logger: BoundLogger | None = None,
    ) -> None:
        if max_pages < 1:
            msg = "max_pages must be at least 1"
            raise ValueError(msg)
        if page_size < 1:
            msg = "page_size must be at least 1"
            raise ValueError(msg)
        self._http = http
        self.page_size = page_size
        self.max_pages = max_pages
        self.start_page = start_page
        self._page_param = page_param
        self._page_size_param = page_size_param
        self._logger = logger or get_logger(__name__, source=http.source)

    def fetch_all(
        self,
        base_url: str,
        *,
        transform: PageTransform = default_results_transform,
        params: QueryParams | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> list[Any]:
        items: list[Any] = []
        page = self.start_page
        requested = 0
        while requested < self.max_pages:
            url = build_page_url(
                base_url,
                page=page,
                page_size=self.page_size,
                page_param=self._page_param,
                page_size_param=self._page_size_param,
            )
            payload = self._http.get_json(url, params=params, headers=headers)
            requested += 1
            page_items = list(transform(payload))
            items.extend(page_items)
            if not self._has_more(payload, page_items):
                break
            page += 1
        else:
            self._logger.info("pagination_limit_reached", max_pages=self.max_pages, url=base_url)

        self._logger.debug("pagination_done", pages=requested, items=len(items))
        return items

    def _has_more(self, payload: Any, page_items: Sequence[Any]) -> bool:
        if isinstance(payload, Mapping) and payload.get("next"):
            return True
        return len(page_items) >= self.page_size


__all__ = ["PageTransform", "PaginatedFetcher", "build_page_url", "default_results_transform"]
