"""RAWG のアダプタ。詳細とスクリーンショット一覧を取得する。"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from structlog.stdlib import BoundLogger

from game_catalog_sync.core.ingest.models import SourceName, SourceRecord
from game_catalog_sync.infra.http.client import CatalogHttpClient
from game_catalog_sync.infra.http.pagination import PaginatedFetcher
from game_catalog_sync.shared.logging import get_logger
from game_catalog_sync.shared.types import ExternalKey

from .base import as_mapping, fetch_or_none
from .sanitize import (
    sanitize_date,
    sanitize_int,
    sanitize_number,
    sanitize_string,
    sanitize_string_list,
    validate_required,
)

__all__ = ["RawgAdapter", "SHORT_DESCRIPTION_LENGTH", "map_game_detail", "screenshot_images"]

SHORT_DESCRIPTION_LENGTH = 500

_STORE_LINK_TEMPLATES = {
    "epic-games": ("epic", "https://store.epicgames.com/en-US/p/{slug}"),
    "gog": ("gog", "https://www.gog.com/game/{slug}"),
}
_STORE_KEYS = {"steam": "steam", "epic-games": "epic", "gog": "gog"}


def screenshot_images(payload: Any) -> list[str]:
    body = as_mapping(payload)
    results = body.get("results") if body is not None else None
    if not isinstance(results, list):
        return []
    return sanitize_string_list(
        [item.get("image") for item in results if isinstance(item, Mapping)]
    )


def _names(items: Any, *, nested: str | None = None) -> list[str]:
    if not isinstance(items, list):
        return []
    names: list[Any] = []
    for item in items:
        entry = as_mapping(item)
        if entry is None:
            continue
        if nested is not None:
            entry = as_mapping(entry.get(nested))
            if entry is None:
                continue
        names.append(entry.get("name"))
    return sanitize_string_list(names)


def _store_links(stores: Any, slug: str | None) -> dict[str, str]:
    links: dict[str, str] = {}
    if not isinstance(stores, list):
        return links
    for item in stores:
        entry = as_mapping(item)
        if entry is None:
            continue
        store = as_mapping(entry.get("store")) or {}
        store_slug = sanitize_string(store.get("slug"))
        if store_slug not in _STORE_KEYS:
            continue
        url = sanitize_string(entry.get("url"))
        if url is None and slug and store_slug in _STORE_LINK_TEMPLATES:
            url = _STORE_LINK_TEMPLATES[store_slug][1].format(slug=slug)
        if url is not None:
            links[_STORE_KEYS[store_slug]] = url
    return links


def map_game_detail(body: Mapping[str, Any]) -> dict[str, Any]:
    slug = sanitize_string(body.get("slug"))
    description = sanitize_string(body.get("description_raw"))
    short_description = (
        sanitize_string(description[:SHORT_DESCRIPTION_LENGTH]) if description else None
    )
    return {
        "rawg_id": sanitize_int(body.get("id")),
        "title": sanitize_string(body.get("name")),
        "slug": slug,
        "release_date": sanitize_date(body.get("released")),
        "short_description": short_description,
        "long_description": description,
        "genres": _names(body.get("genres")),
        "platforms": _names(body.get("platforms"), nested="platform"),
        "rating": sanitize_number(body.get("rating")),
        "rating_count": sanitize_int(body.get("ratings_count")),
        "metacritic_score": sanitize_int(body.get("metacritic")),
        "image_url": sanitize_string(body.get("background_image")),
        "store_links": _store_links(body.get("stores"), slug),
    }


class RawgAdapter:
    """RAWG の ``/games/{id}`` と ``/games/{id}/screenshots``。"""

    source = SourceName.RAWG

    def __init__(
        self,
        http: CatalogHttpClient,
        *,
        api_key: str,
        base_url: str = "https://api.rawg.io/api",
        screenshots: PaginatedFetcher | None = None,
        logger: BoundLogger | None = None,
    ) -> None:
        self._http = http
        self._api_key = api_key
        self._base_url = base_url.rstrip("/")
        self._screenshots = screenshots
        self._logger = logger or get_logger(__name__, source=self.source.value)

    def fetch_detail(self, key: ExternalKey) -> SourceRecord | None:
        rawg_id = int(key)
        payload = fetch_or_none(
            lambda: self._http.get_json(
                f"{self._base_url}/games/{rawg_id}", params={"key": self._api_key}
            ),
            logger=self._logger,
            source=self.source.value,
            key=rawg_id,
        )
        if not validate_required(payload, ("id", "name")):
            return None

        fields = map_game_detail(payload)
        if self._screenshots is not None:
            fields["screenshots"] = self._screenshots.fetch_all(
                f"{self._base_url}/games/{rawg_id}/screenshots",
                transform=screenshot_images,
                params={"key": self._api_key},
            )
        return SourceRecord(source=self.source, key=rawg_id, fields=fields, raw=payload)
