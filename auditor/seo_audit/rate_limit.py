"""固定ウィンドウ方式のレート制限.

カウンタはプロセス内メモリのみ（再起動で消えてよい）。
複数プロセスで動かす場合は各プロセスが個別に制限する点に注意。
"""

from __future__ import annotations

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable

from seo_audit.config import RATE_LIMITS
from seo_audit.models import RateLimitConfig, RateLimitResult

logger = logging.getLogger(__name__)


@dataclass
class _Counter:
    count: int
    window_start_ms: int
    window_ms: int


def _now_ms(clock: Callable[[], float]) -> int:
    return int(clock() * 1000)


def _to_datetime(ms: int) -> datetime:
    return datetime.fromtimestamp(ms / 1000, tz=timezone.utc)


class RateLimiter:
    """(subject, operation) キーごとの固定ウィンドウカウンタ.

    Args:
        clock: 現在時刻（UNIX 秒）を返す関数. テストで差し替える.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self._lock = threading.Lock()
        self._counters: dict[str, _Counter] = {}

    def check_rate_limit(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        """カウンタを 1 進めて、呼び出しが許可されるかを返す.

        ウィンドウが経過していればカウンタと開始時刻をリセットしてから評価する。
        呼び出しのたびにカウントするため、拒否された呼び出しも数に入る。
        """
        with self._lock:
            now = _now_ms(self._clock)
            counter = self._counters.get(key)
            if counter is None or now >= counter.window_start_ms + config.window_ms:
                counter = _Counter(count=0, window_start_ms=now, window_ms=config.window_ms)
                self._counters[key] = counter

            allowed = counter.count < config.limit
            counter.count += 1
            remaining = max(0, config.limit - counter.count)
            reset_at = counter.window_start_ms + config.window_ms

        if not allowed:
            logger.warning("レート制限超過: key=%s, limit=%d", key, config.limit)

        return RateLimitResult(
            allowed=allowed,
            limit=config.limit,
            remaining=remaining,
            reset_at=_to_datetime(reset_at),
        )

    def get_status(self, key: str, config: RateLimitConfig) -> RateLimitResult:
        """カウンタを進めずに現在の状態を返す."""
        with self._lock:
            now = _now_ms(self._clock)
            counter = self._counters.get(key)
            if counter is None or now >= counter.window_start_ms + config.window_ms:
                return RateLimitResult(
                    allowed=config.limit > 0,
                    limit=config.limit,
                    remaining=config.limit,
                    reset_at=_to_datetime(now + config.window_ms),
                )
            return RateLimitResult(
                allowed=counter.count < config.limit,
                limit=config.limit,
                remaining=max(0, config.limit - counter.count),
                reset_at=_to_datetime(counter.window_start_ms + config.window_ms),
            )

    def reset(self, key: str) -> None:
        """キーのカウンタを破棄する（管理操作・テスト用）."""
        with self._lock:
            self._counters.pop(key, None)

    def cleanup(self, max_window_ms: int | None = None) -> int:
        """ウィンドウが経過したカウンタを削除し、削除件数を返す.

        Args:
            max_window_ms: 判定に使うウィンドウ長. 省略時は各カウンタ自身のウィンドウ長.
        """
        with self._lock:
            now = _now_ms(self._clock)
            expired = [
                key for key, c in self._counters.items()
                if now >= c.window_start_ms + (max_window_ms or c.window_ms)
            ]
            for key in expired:
                del self._counters[key]
        return len(expired)


def get_rate_limit_config(action: str) -> RateLimitConfig:
    """プリセット名 (例: "AUDIT") から設定を引く."""
    limit, window_ms = RATE_LIMITS[action]
    return RateLimitConfig(limit=limit, window_ms=window_ms)


def build_rate_limit_key(store_id: str, action: str) -> str:
    return f"store:{store_id}:{action}"
