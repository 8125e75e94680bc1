"""Steam ストア (appdetails) と SteamSpy のアダプタ。"""

from __future__ import annotations

import re
from collections.abc import Mapping
from typing import Any

from structlog.stdlib import BoundLogger

from game_catalog_sync.core.ingest.models import GameRecord, SourceName, SourceRecord
from game_catalog_sync.infra.http.client import CatalogHttpClient
from game_catalog_sync.shared.logging import get_logger
from game_catalog_sync.shared.types import ExternalKey

from .base import as_mapping, fetch_or_none
from .sanitize import (
    sanitize_int,
    sanitize_number,
    sanitize_string,
    sanitize_string_list,
)

__all__ = [
    "STEAM_APP_URL_PATTERN",
    "SteamSpyAdapter",
    "SteamStoreAdapter",
    "compute_review_score",
    "extract_steam_appid",
    "map_app_details",
    "resolve_steam_appid",
]

STEAM_APP_URL_PATTERN = re.compile(r"/app/(\d+)")

_PLATFORM_LABELS = (("windows", "PC"), ("mac", "Mac"), ("linux", "Linux"))


def extract_steam_appid(store_url: str | None) -> int | None:
    """``https://store.steampowered.com/app/570/...`` 形式の URL から appid を取り出す。"""

    if not store_url:
        return None
    match = STEAM_APP_URL_PATTERN.search(store_url)
    return int(match.group(1)) if match else None


def resolve_steam_appid(record: GameRecord) -> int | None:
    if record.steam_appid is not None:
        return record.steam_appid
    return extract_steam_appid(record.store_links.get("steam"))


def compute_review_score(positive: Any, negative: Any) -> tuple[float, int] | None:
    """肯定率 (0-100) とレビュー総数。レビューが無ければ ``None``。"""

    positive_count = sanitize_number(positive) or 0.0
    negative_count = sanitize_number(negative) or 0.0
    total = positive_count + negative_count
    if total <= 0:
        return None
    return positive_count * 100 / total, int(total)


def _descriptions(items: Any) -> list[str]:
    if not isinstance(items, list):
        return []
    return sanitize_string_list(
        [item.get("description") for item in items if isinstance(item, Mapping)]
    )


def _resolve_price(data: Mapping[str, Any]) -> float | None:
    overview = as_mapping(data.get("price_overview"))
    if overview is not None:
        final = sanitize_number(overview.get("final"))
        if final is not None:
            return round(final / 100, 2)
    if data.get("is_free") is True:
        return 0.0
    return None


def map_app_details(data: Mapping[str, Any], app_id: int) -> dict[str, Any]:
    """appdetails の ``data`` 部分をゲームフィールドへ写像する。"""

    platforms_flags = as_mapping(data.get("platforms")) or {}
    platforms = [label for flag, label in _PLATFORM_LABELS if platforms_flags.get(flag) is True]
    screenshots = data.get("screenshots")
    screenshot_urls = (
        sanitize_string_list(
            [item.get("path_full") for item in screenshots if isinstance(item, Mapping)]
        )
        if isinstance(screenshots, list)
        else []
    )
    return {
        "steam_appid": app_id,
        "title": sanitize_string(data.get("name")),
        "price_usd": _resolve_price(data),
        "platforms": platforms,
        "genres": _descriptions(data.get("genres")),
        "categories": _descriptions(data.get("categories")),
        "short_description": sanitize_string(data.get("short_description")),
        "long_description": sanitize_string(data.get("detailed_description")),
        "image_url": sanitize_string(data.get("header_image")),
        "screenshots": screenshot_urls,
    }


class SteamStoreAdapter:
    """Steam ストアの appdetails API。価格・プラットフォーム・説明文の主ソース。"""

    source = SourceName.STEAM_STORE

    def __init__(
        self,
        http: CatalogHttpClient,
        *,
        base_url: str = "https://store.steampowered.com/api/appdetails",
        country_code: str = "us",
        language: str = "english",
        api_key: str | None = None,
        logger: BoundLogger | None = None,
    ) -> None:
        self._http = http
        self._base_url = base_url
        self._country_code = country_code
        self._language = language
        self._api_key = api_key
        self._logger = logger or get_logger(__name__, source=self.source.value)

    def fetch_detail(self, key: ExternalKey) -> SourceRecord | None:
        app_id = int(key)
        payload = fetch_or_none(
            lambda: self._http.get_json(
                self._base_url,
                params={
                    "appids": app_id,
                    "cc": self._country_code,
                    "l": self._language,
                    "key": self._api_key,
                },
            ),
            logger=self._logger,
            source=self.source.value,
            key=app_id,
        )
        body = as_mapping(payload)
        entry = as_mapping(body.get(str(app_id))) if body is not None else None
        data = as_mapping(entry.get("data")) if entry is not None else None
        if entry is None or entry.get("success") is not True or data is None:
            self._logger.info("steam_app_unavailable", key=app_id)
            return None
        # 同名タイトルの別 app (DLC など) を拾った場合は採用しない
        if data.get("type") not in (None, "game"):
            self._logger.info("steam_app_not_a_game", key=app_id, app_type=data.get("type"))
            return None
        fields = map_app_details(data, app_id)
        fields.pop("title", None)
        return SourceRecord(source=self.source, key=app_id, fields=fields, raw=data)


class SteamSpyAdapter:
    """SteamSpy の appdetails。レビュー集計と価格のフォールバック。"""

    source = SourceName.STEAMSPY

    def __init__(
        self,
        http: CatalogHttpClient,
        *,
        base_url: str = "https://steamspy.com/api.php",
        logger: BoundLogger | None = None,
    ) -> None:
        self._http = http
        self._base_url = base_url
        self._logger = logger or get_logger(__name__, source=self.source.value)

    def fetch_detail(self, key: ExternalKey) -> SourceRecord | None:
        app_id = int(key)
        payload = fetch_or_none(
            lambda: self._http.get_json(
                self._base_url, params={"request": "appdetails", "appid": app_id}
            ),
            logger=self._logger,
            source=self.source.value,
            key=app_id,
        )
        body = as_mapping(payload)
        if body is None or sanitize_int(body.get("appid")) != app_id:
            return None

        fields: dict[str, Any] = {}
        review = compute_review_score(body.get("positive"), body.get("negative"))
        if review is not None:
            fields["steam_score"], fields["steam_review_count"] = review
        # SteamSpy の price はドル表記の文字列として扱う
        price = sanitize_number(body.get("price"))
        if price is not None and price > 0:
            fields["price_usd"] = round(price, 2)

        record = SourceRecord(source=self.source, key=app_id, fields=fields, raw=body)
        return None if record.is_empty else record
