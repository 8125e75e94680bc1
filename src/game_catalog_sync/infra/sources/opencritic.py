"""OpenCritic のアダプタとタイトル照合。"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from structlog.stdlib import BoundLogger

from game_catalog_sync.core.ingest.models import GameRecord, SourceName, SourceRecord
from game_catalog_sync.infra.http.client import CatalogHttpClient
from game_catalog_sync.shared.logging import get_logger
from game_catalog_sync.shared.types import ExternalKey, ValueObject

from .base import as_mapping, fetch_or_none
from .sanitize import sanitize_int, sanitize_number, sanitize_string

__all__ = [
    "CANDIDATE_THRESHOLD",
    "DEFAULT_MIN_CONFIDENCE",
    "SEARCH_RESULT_LIMIT",
    "OpenCriticAdapter",
    "OpenCriticMatch",
    "normalize_title",
    "select_best_match",
    "title_similarity",
]

SEARCH_RESULT_LIMIT = 5
CANDIDATE_THRESHOLD = 0.7
DEFAULT_MIN_CONFIDENCE = 0.8

_NON_WORD = re.compile(r"[^a-z0-9\s]")
_SPACES = re.compile(r"\s+")


@dataclass(slots=True)
class OpenCriticMatch(ValueObject):
    opencritic_id: int
    name: str
    confidence: float


def normalize_title(title: str) -> str:
    lowered = _NON_WORD.sub("", title.lower())
    return _SPACES.sub(" ", lowered).strip()


def title_similarity(left: str, right: str) -> float:
    """正規化したタイトル同士の類似度 (0.0-1.0)。

    完全一致は 1.0、一方が他方を含む場合は 0.8、それ以外は単語集合の Dice 係数。
    """

    first = normalize_title(left)
    second = normalize_title(right)
    if not first or not second:
        return 0.0
    if first == second:
        return 1.0
    if first in second or second in first:
        return 0.8
    words_first = first.split(" ")
    words_second = second.split(" ")
    common = [word for word in words_first if word in words_second]
    if not common:
        return 0.0
    return (len(common) * 2) / (len(words_first) + len(words_second))


def select_best_match(title: str, results: Sequence[Any]) -> OpenCriticMatch | None:
    """検索結果の上位から、閾値を超える最も似たタイトルを選ぶ。"""

    best: OpenCriticMatch | None = None
    for item in list(results)[:SEARCH_RESULT_LIMIT]:
        entry = as_mapping(item)
        if entry is None:
            continue
        opencritic_id = sanitize_int(entry.get("id"))
        name = sanitize_string(entry.get("name"))
        if opencritic_id is None or name is None:
            continue
        confidence = title_similarity(title, name)
        if confidence > CANDIDATE_THRESHOLD and (best is None or confidence > best.confidence):
            best = OpenCriticMatch(opencritic_id=opencritic_id, name=name, confidence=confidence)
    return best


def _positive(value: Any) -> float | None:
    # OpenCritic は未集計を -1 で返す
    number = sanitize_number(value)
    return number if number is not None and number > 0 else None


class OpenCriticAdapter:
    """OpenCritic の批評家スコア。未リンクのゲームはタイトル検索で照合する。"""

    source = SourceName.OPENCRITIC

    def __init__(
        self,
        http: CatalogHttpClient,
        *,
        base_url: str = "https://api.opencritic.com/api",
        api_key: str | None = None,
        min_confidence: float = DEFAULT_MIN_CONFIDENCE,
        logger: BoundLogger | None = None,
    ) -> None:
        self._http = http
        self._base_url = base_url.rstrip("/")
        self._headers = {"Authorization": f"Bearer {api_key}"} if api_key else {}
        self._min_confidence = min_confidence
        self._logger = logger or get_logger(__name__, source=self.source.value)

    def search(self, title: str) -> OpenCriticMatch | None:
        payload = fetch_or_none(
            lambda: self._http.get_json(
                f"{self._base_url}/game/search",
                params={"criteria": title},
                headers=self._headers,
            ),
            logger=self._logger,
            source=self.source.value,
            key=title,
        )
        if not isinstance(payload, list):
            return None
        return select_best_match(title, payload)

    def resolve_key(self, record: GameRecord) -> int | None:
        """キャッシュ済みの ID を優先し、無ければタイトル検索で照合する。"""

        if record.opencritic_id is not None:
            return record.opencritic_id
        if not record.title:
            return None
        match = self.search(record.title)
        if match is None:
            self._logger.info("opencritic_no_match", game_id=record.id, title=record.title)
            return None
        if match.confidence < self._min_confidence:
            self._logger.info(
                "opencritic_low_confidence",
                game_id=record.id,
                title=record.title,
                candidate=match.name,
                confidence=round(match.confidence, 3),
            )
            return None
        return match.opencritic_id

    def fetch_detail(self, key: ExternalKey) -> SourceRecord | None:
        opencritic_id = int(key)
        payload = fetch_or_none(
            lambda: self._http.get_json(
                f"{self._base_url}/game/{opencritic_id}", headers=self._headers
            ),
            logger=self._logger,
            source=self.source.value,
            key=opencritic_id,
        )
        body = as_mapping(payload)
        if body is None:
            return None

        top_score = _positive(body.get("topCriticScore"))
        if top_score is not None:
            score = top_score
            count = _positive(body.get("numTopCriticReviews")) or _positive(body.get("numReviews"))
        else:
            score = _positive(body.get("averageScore"))
            count = _positive(body.get("numReviews"))
        if score is None:
            self._logger.info("opencritic_score_missing", key=opencritic_id)
            return None

        fields: dict[str, Any] = {
            "opencritic_id": opencritic_id,
            "critic_score": score,
            "critic_review_count": int(count) if count is not None else None,
        }
        return SourceRecord(source=self.source, key=opencritic_id, fields=fields, raw=body)
