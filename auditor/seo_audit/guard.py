"""ストア単位の同時実行ガードとクールダウン判定.

読み取りのみで副作用はない。最終的な一意性の保証は
AuditRepository.create_audit の原子的な作成に任せる（ここは事前チェック）。
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable

from seo_audit.config import AUDIT_COOLDOWN_SECONDS
from seo_audit.db import AuditRepository
from seo_audit.models import GuardDecision

logger = logging.getLogger(__name__)

ALREADY_RUNNING_REASON = "An audit is already running for this store"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ConcurrencyGuard:
    """監査の開始可否を判定する.

    Args:
        repository: 監査レコードの参照先
        cooldown: 前回の監査終了から次の開始までの最短間隔
        clock: 現在時刻（UTC）を返す関数
    """

    def __init__(
        self,
        repository: AuditRepository,
        cooldown: timedelta = timedelta(seconds=AUDIT_COOLDOWN_SECONDS),
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._repository = repository
        self._cooldown = cooldown
        self._clock = clock

    def can_run_audit(self, store_id: str) -> GuardDecision:
        active = self._repository.find_active_audit(store_id)
        if active is not None:
            logger.info("監査開始拒否（実行中）: store=%s, audit=%s", store_id, active.id)
            return GuardDecision(allowed=False, reason=ALREADY_RUNNING_REASON)

        last = self._repository.find_latest_finished_audit(store_id)
        if last is not None:
            ended_at = last.completed_at or last.created_at
            if ended_at is not None:
                next_allowed = ended_at + self._cooldown
                if self._clock() < next_allowed:
                    logger.info(
                        "監査開始拒否（クールダウン中）: store=%s, next=%s",
                        store_id, next_allowed.isoformat(),
                    )
                    return GuardDecision(
                        allowed=False,
                        reason=f"Please wait {_format_cooldown(self._cooldown)} between audits",
                        next_allowed_time=next_allowed,
                    )

        return GuardDecision(allowed=True)


def _format_cooldown(cooldown: timedelta) -> str:
    minutes = int(cooldown.total_seconds() // 60)
    if minutes % 60 == 0:
        hours = minutes // 60
        return f"{hours} hour" if hours == 1 else f"{hours} hours"
    return f"{minutes} minutes"
