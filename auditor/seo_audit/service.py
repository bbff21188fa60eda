"""SEO 監査のオーケストレーション.

処理フロー:
  1. ガード（実行中・クールダウン）とレート制限を確認
  2. PENDING の監査レコードを作成し、runner に process_audit を渡す
  3. process_audit: RUNNING へ遷移 → コンテンツ取得 → 7 チェックを並列実行
     → 集計・スコア算出 → ページ・指摘を保存 → COMPLETED
  4. 完了後に AUDIT_COMPLETED を通知してキャッシュを無効化
  途中で回復不能なエラーが出たら FAILED に遷移する（自動リトライはしない）。
"""

from __future__ import annotations

import concurrent.futures
import logging
import threading
import time
from datetime import datetime, timezone
from typing import Any, Callable

from seo_audit.cache import MemoryCache
from seo_audit.checks import run_checks
from seo_audit.config import (
    CACHE_CLEANUP_INTERVAL,
    CHECK_LINK_STATUS,
    CHECK_TIMEOUT,
    FETCH_TIMEOUT,
    PROGRESS_CHECKED,
    PROGRESS_DONE,
    PROGRESS_FETCHED,
    PROGRESS_SAVED,
    PROGRESS_STARTED,
    TierLimits,
)
from seo_audit.db import AuditRepository
from seo_audit.exceptions import (
    AuditAlreadyRunningError,
    AuditNotFoundError,
    AuditTimeoutError,
    InvalidTransitionError,
    PersistenceError,
)
from seo_audit.fetcher import ContentFetcher
from seo_audit.guard import ALREADY_RUNNING_REASON, ConcurrencyGuard
from seo_audit.invalidation import CacheInvalidator, DataChangeEvent
from seo_audit.link_checker import HttpLinkChecker
from seo_audit.models import (
    AuditJobResult,
    AuditStatus,
    CheckResult,
    ContentSnapshot,
    GuardDecision,
    ProgressStage,
    ProgressUpdate,
    RateLimitResult,
    StartAuditResult,
)
from seo_audit.rate_limit import RateLimiter, build_rate_limit_key, get_rate_limit_config
from seo_audit.scoring import calculate_audit_statistics, score_label
from seo_audit.shopify import ContentClient, shopify_client_factory
from seo_audit.state import AuditStateMachine
from seo_audit.worker import run_inline

logger = logging.getLogger(__name__)

ClientFactory = Callable[[str, str], ContentClient]
Runner = Callable[..., Any]
ProgressCallback = Callable[[ProgressUpdate], None]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditService:
    """監査の開始・実行・状態照会の入口.

    Args:
        repository: 監査レコードの永続化先
        cache: Shopify データ等の共有キャッシュ
        rate_limiter: 監査開始・API 呼び出し回数の制限
        client_factory: (store_id, shop_domain) からコンテンツ API クライアントを作る
        runner: process_audit を実行する関数（同期なら run_inline）
        tier_limits: 取得件数の上限（省略時は STORE_TIER の設定）
        check_links: リンク先の HTTP ステータスを確認するか
        cleanup_interval: キャッシュ・レート制限カウンタの失効分を掃除する間隔（秒）
        clock: 現在時刻（UTC）
    """

    def __init__(
        self,
        repository: AuditRepository,
        cache: MemoryCache | None = None,
        rate_limiter: RateLimiter | None = None,
        client_factory: ClientFactory = shopify_client_factory,
        runner: Runner = run_inline,
        tier_limits: TierLimits | None = None,
        check_links: bool | None = None,
        fetch_timeout: float = FETCH_TIMEOUT,
        check_timeout: float = CHECK_TIMEOUT,
        cleanup_interval: float = CACHE_CLEANUP_INTERVAL,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.repository = repository
        self.cache = cache or MemoryCache()
        self.rate_limiter = rate_limiter or RateLimiter()
        self.invalidator = CacheInvalidator(self.cache)
        self.state = AuditStateMachine(repository, clock)
        self.guard = ConcurrencyGuard(repository, clock=clock)
        self.fetcher = ContentFetcher(self.cache, self.rate_limiter, tier_limits)
        self._client_factory = client_factory
        self._runner = runner
        self._check_links = CHECK_LINK_STATUS if check_links is None else check_links
        self._fetch_timeout = fetch_timeout
        self._check_timeout = check_timeout
        self._audit_limit = get_rate_limit_config("AUDIT")
        self._cleanup_interval = cleanup_interval
        self._last_cleanup = time.monotonic()
        self._cleanup_lock = threading.Lock()

    # ------------------------------------------------------------------
    # 開始
    # ------------------------------------------------------------------

    def can_run_audit(self, store_id: str) -> GuardDecision:
        return self.guard.can_run_audit(store_id)

    def start_audit(self, store_id: str, shop_domain: str) -> StartAuditResult:
        """監査を作成して実行を依頼する. 拒否は例外ではなく結果で返す.

        回数制限は事前に残数だけ確認し、監査レコードを作成できたときに消費する。
        """
        self._housekeeping()

        decision = self.guard.can_run_audit(store_id)
        if not decision.allowed:
            return StartAuditResult(
                allowed=False,
                reason=decision.reason,
                next_allowed_time=decision.next_allowed_time,
            )

        limit_key = build_rate_limit_key(store_id, "AUDIT")
        limit = self.rate_limiter.get_status(limit_key, self._audit_limit)
        if not limit.allowed:
            return _limit_reached(limit)

        try:
            audit = self.state.create(store_id)
        except AuditAlreadyRunningError:
            # ガード通過後に別リクエストが先に作成した
            return StartAuditResult(allowed=False, reason=ALREADY_RUNNING_REASON)

        limit = self.rate_limiter.check_rate_limit(limit_key, self._audit_limit)
        if not limit.allowed:
            # 残数確認から作成までの間に別リクエストが使い切った
            self._mark_failed(audit.id, "Daily audit limit reached")
            return _limit_reached(limit)

        try:
            self._runner(self.process_audit, audit.id, shop_domain)
        except Exception as e:
            logger.exception("監査ジョブの投入に失敗: audit=%s", audit.id)
            self._mark_failed(audit.id, f"ジョブ投入に失敗: {e}")
            raise

        logger.info("監査開始: audit=%s, shop=%s", audit.id, shop_domain)
        return StartAuditResult(allowed=True, audit_id=audit.id)

    # ------------------------------------------------------------------
    # 実行
    # ------------------------------------------------------------------

    def process_audit(
        self,
        audit_id: str,
        shop_domain: str,
        on_progress: ProgressCallback | None = None,
    ) -> AuditJobResult:
        """監査 1 件を最後まで実行する. 例外は送出せず結果にまとめて返す."""
        start_time = time.monotonic()
        try:
            audit = self.state.start(audit_id)
        except (AuditNotFoundError, InvalidTransitionError) as e:
            logger.error("監査を開始できません: %s", e)
            return AuditJobResult(audit_id=audit_id, status=AuditStatus.FAILED, error=str(e))
        except Exception as e:
            # PENDING のまま残さない
            logger.exception("RUNNING への遷移に失敗: audit=%s", audit_id)
            message = str(e) or type(e).__name__
            self._mark_failed(audit_id, message)
            return AuditJobResult(audit_id=audit_id, status=AuditStatus.FAILED, error=message)

        store_id = audit.store_id
        try:
            _report(on_progress, ProgressStage.FETCHING,
                    "Fetching products, collections, and pages...", PROGRESS_STARTED)
            snapshot = self._fetch(store_id, shop_domain)
            self.state.record_discovered(audit_id, snapshot.total_urls)
            self.state.update_progress(audit_id, PROGRESS_FETCHED)

            _report(on_progress, ProgressStage.CHECKING, "Running SEO checks...", PROGRESS_FETCHED)
            if self._check_links:
                snapshot.link_checker = HttpLinkChecker()
            results = run_checks(snapshot, timeout=self._check_timeout)
            failed_checks = [r.check_type for r in results if r.failed]
            if failed_checks:
                logger.warning(
                    "一部のチェックが失敗: audit=%s, checks=%s",
                    audit_id, [c.value for c in failed_checks],
                )
            self.state.update_progress(audit_id, PROGRESS_CHECKED)

            _report(on_progress, ProgressStage.SAVING, "Saving audit results...", PROGRESS_CHECKED)
            statistics = calculate_audit_statistics(results)
            self._save_results(audit_id, store_id, results)
            self.state.update_progress(audit_id, PROGRESS_SAVED)
            self.state.complete(audit_id, statistics)
        except Exception as e:
            logger.exception("監査失敗: audit=%s", audit_id)
            message = str(e) or type(e).__name__
            self._mark_failed(audit_id, message)
            return AuditJobResult(audit_id=audit_id, status=AuditStatus.FAILED, error=message)

        _report(on_progress, ProgressStage.COMPLETED, "Audit completed", PROGRESS_DONE)
        self.invalidator.on_data_change(store_id, DataChangeEvent.AUDIT_COMPLETED)

        elapsed = time.monotonic() - start_time
        logger.info(
            "監査完了: audit=%s, score=%d (%s), issues=%d, 所要時間: %.1f 秒",
            audit_id, statistics.overall_score, score_label(statistics.overall_score),
            statistics.total_issues, elapsed,
        )
        return AuditJobResult(
            audit_id=audit_id,
            status=AuditStatus.COMPLETED,
            statistics=statistics,
            failed_checks=failed_checks,
        )

    def _fetch(self, store_id: str, shop_domain: str) -> ContentSnapshot:
        client = self._client_factory(store_id, shop_domain)
        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=1, thread_name_prefix="content-fetch"
        )
        try:
            future = executor.submit(self.fetcher.fetch_content, client, store_id, shop_domain)
            try:
                return future.result(timeout=self._fetch_timeout)
            except concurrent.futures.TimeoutError as e:
                raise AuditTimeoutError(
                    f"コンテンツ取得が {self._fetch_timeout} 秒以内に終わりませんでした"
                ) from e
        finally:
            executor.shutdown(wait=False)

    def _save_results(self, audit_id: str, store_id: str, results: list[CheckResult]) -> None:
        issues = [issue for r in results for issue in r.issues]

        # リソース単位でページを作る。ページの一意キーは (store, url)
        pages: dict[tuple[str, str], dict] = {}
        owners: dict[str, tuple[str, str]] = {}
        for issue in issues:
            resource_key = (issue.resource_type.value, issue.resource_id)
            if resource_key in pages:
                continue
            owner = owners.setdefault(issue.url, resource_key)
            if owner != resource_key:
                logger.warning(
                    "URL が重複するリソースを同じページにまとめます: url=%s, %s / %s",
                    issue.url, owner[1], issue.resource_id,
                )
                continue
            pages[resource_key] = {
                "url": issue.url,
                "title": issue.resource_title,
                "page_type": issue.resource_type.value,
                "shopify_id": issue.resource_id,
            }
        page_ids = self.repository.upsert_pages(store_id, list(pages.values()))

        rows = []
        for issue in issues:
            page_id = page_ids.get(issue.url)
            if page_id is None:
                logger.warning("ページ ID が見つからないため指摘をスキップ: url=%s", issue.url)
                continue
            rows.append({
                "page_id": page_id,
                "audit_id": audit_id,
                "type": issue.check_type.value,
                "severity": issue.severity.value,
                "message": issue.message,
                "suggestion": issue.suggestion,
                "details": issue.details,
                "is_fixed": False,
            })
        self.repository.insert_issues(rows)
        logger.info("指摘を保存: audit=%s, %d 件", audit_id, len(rows))

    def _housekeeping(self) -> None:
        """失効したキャッシュ・レート制限カウンタを cleanup_interval ごとに掃除する."""
        if not self._cleanup_lock.acquire(blocking=False):
            return
        try:
            now = time.monotonic()
            if now - self._last_cleanup < self._cleanup_interval:
                return
            self._last_cleanup = now
            expired = self.cache.cleanup()
            counters = self.rate_limiter.cleanup()
            if expired or counters:
                logger.debug("掃除: cache=%d, rate_limit=%d", expired, counters)
        finally:
            self._cleanup_lock.release()

    def _mark_failed(self, audit_id: str, message: str) -> None:
        try:
            self.state.fail(audit_id, message)
        except InvalidTransitionError:
            logger.warning("既に終端状態のため FAILED にしません: audit=%s", audit_id)
        except (AuditNotFoundError, PersistenceError):
            logger.exception("FAILED への更新に失敗: audit=%s", audit_id)

    # ------------------------------------------------------------------
    # 照会
    # ------------------------------------------------------------------

    def get_audit_status(self, audit_id: str) -> dict[str, Any]:
        """ポーリング用に監査の状態と集計値を返す.

        Raises:
            AuditNotFoundError: 監査が存在しない
        """
        audit = self.repository.get_audit(audit_id)
        if audit is None:
            raise AuditNotFoundError(audit_id)
        status = audit.to_status_dict()
        if audit.overall_score is not None:
            status["score_label"] = score_label(audit.overall_score)
        return status


def _limit_reached(limit: RateLimitResult) -> StartAuditResult:
    return StartAuditResult(
        allowed=False,
        reason=f"Daily audit limit reached ({limit.limit} per day)",
        next_allowed_time=limit.reset_at,
    )


def _report(
    callback: ProgressCallback | None, stage: ProgressStage, message: str, percentage: int
) -> None:
    if callback is None:
        return
    try:
        callback(ProgressUpdate(stage=stage, message=message, percentage=percentage))
    except Exception:
        logger.exception("進捗コールバックでエラー")
