"""SEO 監査のメインエントリーポイント.

処理フロー:
  1. 引数からストア ID・ショップドメインを受け取る
  2. 監査の開始可否（実行中・クールダウン・回数制限）を確認
  3. 同期実行で監査を最後まで回す
  4. 結果のサマリをログに出す

終了コード: 0 = 完了, 1 = 失敗, 2 = 開始拒否
"""

from __future__ import annotations

import argparse
import logging
import sys
import time
from datetime import datetime

from seo_audit.config import LOG_DIR
from seo_audit.db import InMemoryAuditRepository, SupabaseAuditRepository
from seo_audit.models import AuditStatus
from seo_audit.service import AuditService


def setup_logging() -> None:
    """ロギングの初期設定."""
    log_file = LOG_DIR / f"auditor_{datetime.now().strftime('%Y%m%d')}.log"
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="seo-audit", description="Shopify ストアの SEO 監査")
    parser.add_argument("store_id", help="ストア ID")
    parser.add_argument("shop_domain", help="ショップドメイン (例: example.myshopify.com)")
    parser.add_argument(
        "--in-memory",
        action="store_true",
        help="Supabase を使わずプロセス内に結果を保持する",
    )
    return parser.parse_args(argv)


def run(argv: list[str] | None = None) -> int:
    """メイン処理."""
    args = parse_args(argv)
    setup_logging()
    logger = logging.getLogger(__name__)
    logger.info("=== SEO 監査 開始 ===")
    start_time = time.time()

    repository = InMemoryAuditRepository() if args.in_memory else SupabaseAuditRepository()
    results = []
    service = AuditService(
        repository,
        runner=lambda fn, *a: results.append(fn(*a)),
    )

    started = service.start_audit(args.store_id, args.shop_domain)
    if not started.allowed:
        logger.warning("監査を開始できません: %s", started.reason)
        if started.next_allowed_time is not None:
            logger.warning("次回実行可能: %s", started.next_allowed_time.isoformat())
        return 2

    job = results[0]
    elapsed = time.time() - start_time
    if job.status is not AuditStatus.COMPLETED:
        logger.error("=== SEO 監査 失敗 === %s", job.error)
        return 1

    stats = job.statistics
    logger.info("=== SEO 監査 完了 ===")
    logger.info(
        "スコア: %d, critical=%d, high=%d, medium=%d, low=%d, 所要時間: %.1f 秒",
        stats.overall_score, stats.critical_issues, stats.high_issues,
        stats.medium_issues, stats.low_issues, elapsed,
    )
    for check_type, count in sorted(stats.issues_by_type.items(), key=lambda kv: kv[0].value):
        logger.info("  %s: %d 件", check_type.value, count)
    if job.failed_checks:
        logger.warning("失敗したチェック: %s", ", ".join(c.value for c in job.failed_checks))
    return 0


if __name__ == "__main__":
    sys.exit(run())
