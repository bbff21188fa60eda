"""監査レコードの状態遷移.

PENDING → RUNNING → COMPLETED | FAILED
（PENDING から直接 FAILED にも遷移できる）

終端状態（COMPLETED / FAILED）からの遷移はすべて InvalidTransitionError。
更新はリポジトリの compare_and_update で行い、現在状態の確認と書き込みを不可分にする。
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Iterable

from seo_audit.config import PROGRESS_DONE, PROGRESS_STARTED
from seo_audit.db import AuditRepository
from seo_audit.exceptions import AuditNotFoundError, InvalidTransitionError
from seo_audit.models import Audit, AuditStatistics, AuditStatus

logger = logging.getLogger(__name__)

# 完了前に到達できる進捗の上限
_MAX_RUNNING_PROGRESS = PROGRESS_DONE - 1


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditStateMachine:
    """1 件の監査レコードのライフサイクルを管理する."""

    def __init__(
        self,
        repository: AuditRepository,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._repository = repository
        self._clock = clock

    def create(self, store_id: str) -> Audit:
        """PENDING・集計値ゼロの監査を作成する.

        Raises:
            AuditAlreadyRunningError: 同一ストアで実行中の監査がある
        """
        audit = self._repository.create_audit(store_id, self._clock())
        logger.info("監査作成: audit=%s, store=%s", audit.id, store_id)
        return audit

    def start(self, audit_id: str) -> Audit:
        """PENDING → RUNNING."""
        return self._transition(
            audit_id,
            (AuditStatus.PENDING,),
            {
                "status": AuditStatus.RUNNING,
                "progress": PROGRESS_STARTED,
                "started_at": self._clock(),
            },
        )

    def update_progress(self, audit_id: str, progress: int) -> Audit:
        """RUNNING 中の進捗を更新する. 値は単調非減少で、完了までは 99 が上限."""
        audit = self._require(audit_id)
        if audit.status is not AuditStatus.RUNNING:
            raise InvalidTransitionError(
                f"RUNNING 以外の監査の進捗は更新できません: audit={audit_id}, status={audit.status.value}"
            )
        value = max(audit.progress, min(progress, _MAX_RUNNING_PROGRESS))
        if value == audit.progress:
            return audit
        return self._transition(audit_id, (AuditStatus.RUNNING,), {"progress": value})

    def record_discovered(self, audit_id: str, total_urls: int) -> Audit:
        """取得したリソース数を記録する."""
        if total_urls < 0:
            raise ValueError("total_urls は 0 以上である必要があります")
        audit = self._require(audit_id)
        fields: dict[str, Any] = {"total_urls": total_urls}
        if audit.completed > total_urls:
            fields["completed"] = total_urls
        return self._transition(audit_id, (AuditStatus.RUNNING,), fields)

    def complete(self, audit_id: str, statistics: AuditStatistics) -> Audit:
        """RUNNING → COMPLETED. 重要度別件数・スコアを確定する."""
        audit = self._require(audit_id)
        return self._transition(
            audit_id,
            (AuditStatus.RUNNING,),
            {
                "status": AuditStatus.COMPLETED,
                "progress": PROGRESS_DONE,
                "completed": audit.total_urls,
                "critical_issues": statistics.critical_issues,
                "high_issues": statistics.high_issues,
                "medium_issues": statistics.medium_issues,
                "low_issues": statistics.low_issues,
                "overall_score": statistics.overall_score,
                "completed_at": self._clock(),
            },
        )

    def fail(self, audit_id: str, error_message: str) -> Audit:
        """PENDING/RUNNING → FAILED.

        それまでに記録された件数は残し、進捗も 100 にはしない。スコアは設定しない。
        """
        return self._transition(
            audit_id,
            (AuditStatus.PENDING, AuditStatus.RUNNING),
            {
                "status": AuditStatus.FAILED,
                "error_message": error_message,
                "completed_at": self._clock(),
            },
        )

    def _require(self, audit_id: str) -> Audit:
        audit = self._repository.get_audit(audit_id)
        if audit is None:
            raise AuditNotFoundError(audit_id)
        return audit

    def _transition(
        self, audit_id: str, expected: Iterable[AuditStatus], fields: dict[str, Any]
    ) -> Audit:
        expected = tuple(expected)
        updated = self._repository.compare_and_update(audit_id, expected, fields)
        if updated is not None:
            if "status" in fields:
                logger.info("監査 %s → %s", audit_id, fields["status"].value)
            return updated

        current = self._require(audit_id)
        raise InvalidTransitionError(
            f"状態遷移できません: audit={audit_id}, 現在={current.status.value}, "
            f"許可={[s.value for s in expected]}"
        )
