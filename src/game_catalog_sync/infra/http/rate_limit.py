"""外部ソースごとのトークンバケット型レート制御。"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from game_catalog_sync.shared.logging import get_logger
from game_catalog_sync.shared.types import ValueObject


@dataclass(slots=True)
class RateLimiterState(ValueObject):
    """レートリミッタの内部状態のスナップショット。"""

    rate_per_second: float
    burst: int
    tokens: float
    last_refill: float


@dataclass(slots=True)
class TokenBucketRateLimiter:
    """持続レート `rate_per_second`、上限 `burst` のトークンバケット。

    `acquire()` はロック内でトークンを 1 つ予約し、不足分はロック外で眠って待つ。
    予約順に払い出し時刻が確定するため、並行する呼び出し元も要求順に処理される。
    同一ソースの全ワーカーで 1 インスタンスを共有すること。
    """

    rate_per_second: float
    burst: int
    name: str = "default"
    clock: Callable[[], float] = time.monotonic
    sleeper: Callable[[float], None] = time.sleep
    _tokens: float = field(init=False, default=0.0)
    _last_refill: float = field(init=False, default=0.0)
    _lock: threading.Lock = field(init=False, default_factory=threading.Lock)

    def __post_init__(self) -> None:
        if self.rate_per_second <= 0:
            msg = "rate_per_second must be positive"
            raise ValueError(msg)
        if self.burst < 1:
            msg = "burst must be at least 1"
            raise ValueError(msg)
        self._tokens = float(self.burst)
        self._last_refill = self.clock()

    def acquire(self) -> float:
        """トークンを 1 つ消費する。待機した秒数を返す。"""

        with self._lock:
            self._refill(self.clock())
            self._tokens -= 1.0
            wait = 0.0 if self._tokens >= 0 else -self._tokens / self.rate_per_second

        if wait > 0:
            get_logger(__name__, limiter=self.name).debug("rate_limit_wait", wait=wait)
            self.sleeper(wait)
        return wait

    def snapshot(self) -> RateLimiterState:
        with self._lock:
            self._refill(self.clock())
            return RateLimiterState(
                rate_per_second=self.rate_per_second,
                burst=self.burst,
                tokens=self._tokens,
                last_refill=self._last_refill,
            )

    def _refill(self, now: float) -> None:
        elapsed = max(0.0, now - self._last_refill)
        self._tokens = min(float(self.burst), self._tokens + elapsed * self.rate_per_second)
        self._last_refill = now


class RateLimiterRegistry:
    """ソース名ごとにリミッタを 1 つだけ保持する実行単位のレジストリ。"""

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleeper: Callable[[float], None] = time.sleep,
    ) -> None:
        self._clock = clock
        self._sleeper = sleeper
        self._limiters: dict[str, TokenBucketRateLimiter] = {}
        self._lock = threading.Lock()

    def get(self, source: str, *, rate_per_second: float, burst: int) -> TokenBucketRateLimiter:
        with self._lock:
            limiter = self._limiters.get(source)
            if limiter is None:
                limiter = TokenBucketRateLimiter(
                    rate_per_second=rate_per_second,
                    burst=burst,
                    name=source,
                    clock=self._clock,
                    sleeper=self._sleeper,
                )
                self._limiters[source] = limiter
            return limiter

    def __contains__(self, source: object) -> bool:
        return source in self._limiters


__all__ = ["RateLimiterRegistry", "RateLimiterState", "TokenBucketRateLimiter"]
