"""指数バックオフ付きの再試行実行器。"""

from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TypeVar

from structlog.stdlib import BoundLogger

from game_catalog_sync.shared.logging import get_logger

T = TypeVar("T")

RetryPredicate = Callable[[Exception], bool]


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """再試行ポリシー。状態は持たない。"""

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            msg = "max_attempts must be at least 1"
            raise ValueError(msg)
        if self.base_delay < 0 or self.max_delay < 0:
            msg = "delays must not be negative"
            raise ValueError(msg)

    def delay_for(self, attempt: int) -> float:
        """`attempt` 回目の失敗後、次の試行までに待つ秒数。"""

        return min(self.base_delay * (2 ** (attempt - 1)), self.max_delay)


@dataclass(slots=True)
class RetryExecutor:
    """指定した処理を再試行付きで実行する。

    どの例外も上限回数まで再試行する。再試行可否を絞りたい呼び出し元は
    `is_retryable` を渡す。`should_continue` が False を返した時点で
    以降の試行は行わず、直前の例外をそのまま送出する。
    """

    policy: RetryPolicy = field(default_factory=RetryPolicy)
    sleeper: Callable[[float], None] = time.sleep
    should_continue: Callable[[], bool] | None = None
    logger: BoundLogger = field(default_factory=lambda: get_logger(__name__, component="retry"))

    def run(
        self,
        operation: Callable[[], T],
        *,
        is_retryable: RetryPredicate | None = None,
        description: str = "operation",
    ) -> T:
        max_attempts = self.policy.max_attempts
        for attempt in range(1, max_attempts + 1):
            try:
                return operation()
            except Exception as exc:
                if attempt >= max_attempts:
                    self.logger.warning(
                        "retry_exhausted",
                        operation=description,
                        attempts=attempt,
                        error=str(exc),
                    )
                    raise
                if is_retryable is not None and not is_retryable(exc):
                    raise
                if self.should_continue is not None and not self.should_continue():
                    self.logger.info("retry_abandoned", operation=description, attempt=attempt)
                    raise
                delay = self.policy.delay_for(attempt)
                self.logger.warning(
                    "retry_scheduled",
                    operation=description,
                    attempt=attempt,
                    delay=delay,
                    error=str(exc),
                )
                if delay > 0:
                    self.sleeper(delay)
        raise RuntimeError("retry executor exhausted without running operation")


def with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy | None = None,
    *,
    sleeper: Callable[[float], None] = time.sleep,
    is_retryable: RetryPredicate | None = None,
) -> T:
    """`RetryExecutor` を都度生成して 1 回だけ実行するショートカット。"""

    executor = RetryExecutor(policy=policy or RetryPolicy(), sleeper=sleeper)
    return executor.run(operation, is_retryable=is_retryable)


__all__ = ["RetryExecutor", "RetryPolicy", "RetryPredicate", "with_retry"]
