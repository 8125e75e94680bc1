"""1 回分の同期ジョブを駆動するオーケストレータ。"""

from __future__ import annotations

import contextvars
import threading
import time
from collections.abc import Callable, Iterator, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime

import structlog

from game_catalog_sync.core.ingest.models import (
    CandidateCriteria,
    Checkpoint,
    GameRecord,
    RecordOutcome,
    RunState,
    RunSummary,
    SourceRecord,
)
from game_catalog_sync.core.ingest.ports import (
    CheckpointStoreProtocol,
    GameStoreProtocol,
    SourceAdapterProtocol,
)
from game_catalog_sync.core.ingest.reconciler import Reconciler
from game_catalog_sync.core.ingest.reindexer import ReindexOutcome, Reindexer
from game_catalog_sync.shared.types import ExternalKey, utc_now

__all__ = [
    "IngestionJob",
    "IngestionOrchestrator",
    "JobSource",
    "KeyResolver",
    "RunCounters",
]

KeyResolver = Callable[[GameRecord], ExternalKey | None]


@dataclass(slots=True, frozen=True)
class JobSource:
    """ジョブが参照するソース。``required`` のソースにデータが無ければ残りは呼ばない。"""

    adapter: SourceAdapterProtocol
    required: bool = False


@dataclass(slots=True, frozen=True)
class IngestionJob:
    """候補抽出条件・件数上限・ソース・外部キー解決をまとめたジョブ定義。"""

    name: str
    criteria: CandidateCriteria
    batch_limit: int
    sources: tuple[JobSource, ...]
    key_resolver: KeyResolver

    def __post_init__(self) -> None:
        if self.batch_limit < 1:
            msg = "batch_limit must be at least 1"
            raise ValueError(msg)
        if not self.sources:
            msg = "job requires at least one source"
            raise ValueError(msg)


@dataclass(slots=True)
class RunCounters:
    """ワーカー間で共有する集計値。"""

    processed: int = 0
    errors: int = 0
    updated: int = 0
    skipped: int = 0
    reindexed: int = 0
    last_error: str | None = None
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def record(self, outcome: RecordOutcome, *, reindexed: bool = False) -> int:
        with self._lock:
            self.processed += 1
            if outcome is RecordOutcome.UPDATED:
                self.updated += 1
            else:
                self.skipped += 1
            if reindexed:
                self.reindexed += 1
            return self.processed + self.errors

    def record_error(self, message: str) -> int:
        with self._lock:
            self.errors += 1
            self.last_error = message
            return self.processed + self.errors


class IngestionOrchestrator:
    """候補抽出から各レコードの取得・統合・保存、チェックポイント記録までを行う。

    状態は IDLE → SELECTING → PROCESSING → FINALIZING → IDLE と進む。候補抽出に失敗した
    場合のみ ABORTED となり、チェックポイントは書かない。PROCESSING に入った実行は
    途中で中断・失敗してもチェックポイントを必ず 1 回書く。
    """

    def __init__(
        self,
        job: IngestionJob,
        *,
        game_store: GameStoreProtocol,
        checkpoint_store: CheckpointStoreProtocol,
        reconciler: Reconciler | None = None,
        reindexer: Reindexer | None = None,
        max_workers: int = 1,
        progress_interval: int = 50,
        clock: Callable[[], datetime] = utc_now,
        timer: Callable[[], float] = time.perf_counter,
        logger: structlog.stdlib.BoundLogger | None = None,
    ) -> None:
        if max_workers < 1:
            msg = "max_workers must be at least 1"
            raise ValueError(msg)
        self._job = job
        self._game_store = game_store
        self._checkpoint_store = checkpoint_store
        self._reconciler = reconciler or Reconciler(clock=clock)
        self._reindexer = reindexer
        self._max_workers = max_workers
        self._progress_interval = max(progress_interval, 1)
        self._clock = clock
        self._timer = timer
        self._logger = logger or structlog.get_logger(__name__).bind(source=job.name)
        self._state = RunState.IDLE

    @property
    def state(self) -> RunState:
        return self._state

    def run(self, *, cancel_event: threading.Event | None = None) -> RunSummary:
        cancel = cancel_event or threading.Event()
        started = self._timer()
        self._transition(RunState.SELECTING)
        try:
            candidates = self._game_store.select_stale_candidates(
                self._job.criteria, limit=self._job.batch_limit
            )
        except Exception as exc:  # noqa: BLE001 - 抽出失敗は ABORTED として報告する
            self._transition(RunState.ABORTED)
            self._logger.error("candidate_selection_failed", error=str(exc))
            return RunSummary(
                source=self._job.name,
                state=RunState.ABORTED,
                duration_ms=self._elapsed_ms(started),
                cancelled=cancel.is_set(),
                error=str(exc),
            )

        total = len(candidates)
        self._logger.info("ingestion_started", candidates=total, workers=self._max_workers)
        counters = RunCounters()
        run_error: str | None = None
        self._transition(RunState.PROCESSING)
        try:
            self._process_all(candidates, counters, cancel)
        except Exception as exc:  # noqa: BLE001 - 失敗内容はチェックポイントと結果に残す
            run_error = str(exc)
            counters.record_error(run_error)
            self._logger.error("ingestion_failed", error=run_error)
        finally:
            self._transition(RunState.FINALIZING)
            checkpoint_error = self._write_checkpoint(counters, run_error)
            self._transition(RunState.IDLE)

        error = run_error or checkpoint_error
        summary = RunSummary(
            source=self._job.name,
            state=self._state,
            processed=counters.processed,
            errors=counters.errors,
            updated=counters.updated,
            skipped=counters.skipped,
            reindexed=counters.reindexed,
            candidates=total,
            duration_ms=self._elapsed_ms(started),
            cancelled=cancel.is_set(),
            error=error,
        )
        self._logger.info("ingestion_complete", **summary.to_dict())
        return summary

    def _process_all(
        self,
        candidates: Sequence[GameRecord],
        counters: RunCounters,
        cancel: threading.Event,
    ) -> None:
        total = len(candidates)
        if self._max_workers == 1 or total <= 1:
            for record in candidates:
                if cancel.is_set():
                    break
                self._process_one(record, counters, total)
            self._log_cancelled(cancel, counters, total)
            return

        iterator: Iterator[GameRecord] = iter(candidates)
        iterator_lock = threading.Lock()

        def next_record() -> GameRecord | None:
            with iterator_lock:
                return next(iterator, None)

        def worker() -> None:
            while not cancel.is_set():
                record = next_record()
                if record is None:
                    return
                self._process_one(record, counters, total)

        workers = min(self._max_workers, total)
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ingest") as pool:
            # 実行単位のログコンテキスト (run_id など) をワーカーへ引き継ぐ
            futures = [
                pool.submit(contextvars.copy_context().run, worker) for _ in range(workers)
            ]
            for future in futures:
                future.result()
        self._log_cancelled(cancel, counters, total)

    def _process_one(self, record: GameRecord, counters: RunCounters, total: int) -> None:
        try:
            outcome, reindexed = self._process_record(record)
        except Exception as exc:  # noqa: BLE001 - 1 件の失敗でバッチは止めない
            done = counters.record_error(str(exc))
            self._logger.warning("record_failed", game_id=record.id, error=str(exc))
        else:
            done = counters.record(outcome, reindexed=reindexed)
        if done % self._progress_interval == 0:
            self._logger.info(
                "ingestion_progress",
                done=done,
                total=total,
                processed=counters.processed,
                errors=counters.errors,
            )

    def _process_record(self, record: GameRecord) -> tuple[RecordOutcome, bool]:
        key = self._job.key_resolver(record)
        if key is None:
            self._logger.debug("record_key_missing", game_id=record.id)
            return RecordOutcome.SKIPPED_NO_KEY, False

        source_records: list[SourceRecord] = []
        for job_source in self._job.sources:
            fetched = job_source.adapter.fetch_detail(key)
            if fetched is None:
                if job_source.required:
                    self._logger.debug(
                        "record_source_missing",
                        game_id=record.id,
                        adapter=str(job_source.adapter.source),
                    )
                    return RecordOutcome.SKIPPED_NO_DATA, False
                continue
            source_records.append(fetched)
        if not source_records:
            return RecordOutcome.SKIPPED_NO_DATA, False

        update = self._reconciler.reconcile(record, source_records)
        stored = self._game_store.apply_update(record.id, update)

        reindexed = False
        if update.needs_reindex and self._reindexer is not None:
            reindexed = self._reindexer.reindex(stored) is ReindexOutcome.INDEXED
        return RecordOutcome.UPDATED, reindexed

    def _write_checkpoint(self, counters: RunCounters, run_error: str | None) -> str | None:
        checkpoint = Checkpoint(
            source=self._job.name,
            last_run=self._clock(),
            processed=counters.processed,
            errors=counters.errors,
            last_error=run_error or counters.last_error,
        )
        try:
            self._checkpoint_store.write(checkpoint)
        except Exception as exc:  # noqa: BLE001 - 書き込み失敗は実行失敗として返す
            self._logger.error("checkpoint_write_failed", error=str(exc))
            return f"Failed to write checkpoint: {exc}"
        self._logger.info(
            "checkpoint_written",
            processed=checkpoint.processed,
            errors=checkpoint.errors,
        )
        return None

    def _log_cancelled(self, cancel: threading.Event, counters: RunCounters, total: int) -> None:
        if cancel.is_set():
            attempted = counters.processed + counters.errors
            self._logger.warning("ingestion_cancelled", attempted=attempted, total=total)

    def _transition(self, state: RunState) -> None:
        self._logger.debug("run_state_changed", previous=self._state.value, current=state.value)
        self._state = state

    def _elapsed_ms(self, started: float) -> int:
        return int((self._timer() - started) * 1000)
