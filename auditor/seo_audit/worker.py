"""監査ジョブのバックグラウンド実行.

AuditService は runner として「関数と引数を受け取って実行する」ものを受け付ける。
同期実行なら run_inline、バックグラウンドなら AuditWorker.submit を渡す。
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
from typing import Any, Callable

from seo_audit.config import WORKER_MAX_WORKERS

logger = logging.getLogger(__name__)


def run_inline(fn: Callable[..., Any], *args: Any) -> None:
    """呼び出し元スレッドでそのまま実行する."""
    fn(*args)


class AuditWorker:
    """スレッドプールで監査ジョブを実行する."""

    def __init__(self, max_workers: int = WORKER_MAX_WORKERS):
        self._executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=max_workers, thread_name_prefix="audit-worker"
        )
        self._closed = False

    def submit(self, fn: Callable[..., Any], *args: Any) -> concurrent.futures.Future:
        if self._closed:
            raise RuntimeError("ワーカーは停止済みです")
        future = self._executor.submit(fn, *args)
        future.add_done_callback(_log_unhandled)
        return future

    def shutdown(self, wait: bool = True) -> None:
        self._closed = True
        self._executor.shutdown(wait=wait)
        logger.info("監査ワーカー停止")


def _log_unhandled(future: concurrent.futures.Future) -> None:
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("監査ジョブで未処理の例外: %r", exc)


_worker: AuditWorker | None = None
_worker_lock = threading.Lock()


def init_worker(max_workers: int = WORKER_MAX_WORKERS) -> AuditWorker:
    """プロセス共有のワーカーを初期化する. 複数回呼んでも 1 つだけ作る."""
    global _worker
    with _worker_lock:
        if _worker is None:
            _worker = AuditWorker(max_workers)
            logger.info("監査ワーカー初期化: max_workers=%d", max_workers)
        else:
            logger.info("監査ワーカーは初期化済みのためスキップ")
        return _worker


def is_worker_initialized() -> bool:
    return _worker is not None


def shutdown_worker(wait: bool = True) -> None:
    global _worker
    with _worker_lock:
        if _worker is not None:
            _worker.shutdown(wait=wait)
            _worker = None
