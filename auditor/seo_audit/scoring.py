"""チェック結果の集計とスコア算出.

スコア = 100 - critical×10 - high×5 - medium×2 - low×1 を 0〜100 に丸める。
"""

from __future__ import annotations

from collections import Counter
from typing import Iterable

from seo_audit.models import AuditStatistics, CheckResult, CheckType, Severity

DEFAULT_SCORE_WEIGHTS: dict[Severity, int] = {
    Severity.CRITICAL: 10,
    Severity.HIGH: 5,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
}


def calculate_seo_score(
    critical_issues: int,
    high_issues: int,
    medium_issues: int,
    low_issues: int,
    weights: dict[Severity, int] = DEFAULT_SCORE_WEIGHTS,
) -> int:
    """重要度別件数から 0〜100 のスコアを返す."""
    deductions = (
        critical_issues * weights[Severity.CRITICAL]
        + high_issues * weights[Severity.HIGH]
        + medium_issues * weights[Severity.MEDIUM]
        + low_issues * weights[Severity.LOW]
    )
    return max(0, min(100, 100 - deductions))


def calculate_audit_statistics(results: Iterable[CheckResult]) -> AuditStatistics:
    """全チェック結果を重要度別に合算する. 失敗したチェックは 0 件として扱う."""
    by_severity: Counter[Severity] = Counter()
    by_type: dict[CheckType, int] = {}

    for result in results:
        count = len(result.issues)
        by_severity[result.severity] += count
        by_type[result.check_type] = by_type.get(result.check_type, 0) + count

    critical = by_severity[Severity.CRITICAL]
    high = by_severity[Severity.HIGH]
    medium = by_severity[Severity.MEDIUM]
    low = by_severity[Severity.LOW]

    return AuditStatistics(
        critical_issues=critical,
        high_issues=high,
        medium_issues=medium,
        low_issues=low,
        overall_score=calculate_seo_score(critical, high, medium, low),
        issues_by_type=by_type,
    )


def score_label(score: int) -> str:
    """ダッシュボード表示用の区分."""
    if score < 40:
        return "critical"
    if score < 70:
        return "needs-work"
    if score < 90:
        return "good"
    return "excellent"
