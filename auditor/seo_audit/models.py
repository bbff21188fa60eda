"""データモデル定義."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable


class AuditStatus(str, Enum):
    """監査レコードのライフサイクル状態."""

    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES

    @property
    def is_active(self) -> bool:
        return self in ACTIVE_STATUSES


ACTIVE_STATUSES = frozenset({AuditStatus.PENDING, AuditStatus.RUNNING})
TERMINAL_STATUSES = frozenset({AuditStatus.COMPLETED, AuditStatus.FAILED})


class Severity(str, Enum):
    """チェック種別ごとに固定の重要度."""

    CRITICAL = "CRITICAL"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"


class CheckType(str, Enum):
    """SEO チェックの種別（7 種固定）."""

    MISSING_META_TITLE = "MISSING_META_TITLE"
    DUPLICATE_META_TITLE = "DUPLICATE_META_TITLE"
    MISSING_META_DESCRIPTION = "MISSING_META_DESCRIPTION"
    MISSING_ALT_TEXT = "MISSING_ALT_TEXT"
    BROKEN_LINK = "BROKEN_LINK"
    MIXED_CONTENT = "MIXED_CONTENT"
    NOINDEX_PAGE = "NOINDEX_PAGE"


CHECK_SEVERITY: dict[CheckType, Severity] = {
    CheckType.MISSING_META_TITLE: Severity.CRITICAL,
    CheckType.DUPLICATE_META_TITLE: Severity.HIGH,
    CheckType.MISSING_META_DESCRIPTION: Severity.HIGH,
    CheckType.MISSING_ALT_TEXT: Severity.MEDIUM,
    CheckType.BROKEN_LINK: Severity.HIGH,
    CheckType.MIXED_CONTENT: Severity.MEDIUM,
    CheckType.NOINDEX_PAGE: Severity.LOW,
}


class ResourceType(str, Enum):
    """監査対象リソースの種別."""

    PRODUCT = "PRODUCT"
    COLLECTION = "COLLECTION"
    PAGE = "PAGE"

    @property
    def path(self) -> str:
        """ストアフロント URL のパス区切り (例: products)."""
        return self.value.lower() + "s"

    @property
    def label(self) -> str:
        return self.value.capitalize()


class ProgressStage(str, Enum):
    FETCHING = "FETCHING"
    CHECKING = "CHECKING"
    SAVING = "SAVING"
    COMPLETED = "COMPLETED"


@dataclass(frozen=True)
class Image:
    """商品画像."""

    id: str
    url: str
    alt_text: str | None = None


@dataclass(frozen=True)
class Resource:
    """外部 API から取得した 1 件のコンテンツ（監査中は読み取り専用）."""

    id: str
    resource_type: ResourceType
    title: str
    handle: str
    seo_title: str | None = None
    seo_description: str | None = None
    body_html: str | None = None
    body_summary: str | None = None
    images: tuple[Image, ...] = ()

    @property
    def meta_title(self) -> str:
        """メタタイトル. ページは SEO 項目を持たないためページタイトルを使う."""
        if self.resource_type is ResourceType.PAGE:
            return (self.title or "").strip()
        return (self.seo_title or "").strip()

    @property
    def meta_description(self) -> str:
        """メタディスクリプション. ページは本文サマリーを使う."""
        if self.resource_type is ResourceType.PAGE:
            return (self.body_summary or "").strip()
        return (self.seo_description or "").strip()

    @property
    def display_title(self) -> str:
        return self.title or "Untitled"

    def url(self, shop_domain: str) -> str:
        """公開 URL. ハンドルが空なら ID の末尾で代用する."""
        slug = self.handle or self.id.rsplit("/", 1)[-1]
        return f"https://{shop_domain}/{self.resource_type.path}/{slug}"


@dataclass
class ResourcePage:
    """カーソルページングの 1 ページ分."""

    items: list[Resource]
    end_cursor: str | None = None
    has_next_page: bool = False


@dataclass
class ContentSnapshot:
    """チェックに渡す取得済みコンテンツ一式."""

    shop_domain: str
    store_id: str
    products: list[Resource] = field(default_factory=list)
    collections: list[Resource] = field(default_factory=list)
    pages: list[Resource] = field(default_factory=list)
    # resource_type -> エラーメッセージ（部分取得になった種別）
    fetch_errors: dict[ResourceType, str] = field(default_factory=dict)
    # url -> HTTP ステータス（不明なら None）
    link_checker: Callable[[str], int | None] | None = None

    @property
    def total_urls(self) -> int:
        return len(self.products) + len(self.collections) + len(self.pages)

    def all_resources(self) -> list[Resource]:
        return [*self.products, *self.collections, *self.pages]


@dataclass
class Issue:
    """1 チェックが 1 リソースに対して出した指摘."""

    check_type: CheckType
    severity: Severity
    resource_id: str
    resource_type: ResourceType
    resource_title: str
    resource_handle: str
    url: str
    message: str
    suggestion: str
    details: dict[str, Any] = field(default_factory=dict)


@dataclass
class CheckResult:
    """1 チェックの実行結果. error が入っていれば issues は空."""

    check_type: CheckType
    severity: Severity
    issues: list[Issue] = field(default_factory=list)
    error: str | None = None

    @property
    def failed(self) -> bool:
        return self.error is not None


@dataclass(frozen=True)
class AuditStatistics:
    """重要度別件数とスコア."""

    critical_issues: int
    high_issues: int
    medium_issues: int
    low_issues: int
    overall_score: int
    issues_by_type: dict[CheckType, int] = field(default_factory=dict)

    @property
    def total_issues(self) -> int:
        return self.critical_issues + self.high_issues + self.medium_issues + self.low_issues


@dataclass
class Audit:
    """監査 1 回分のレコード."""

    id: str
    store_id: str
    status: AuditStatus = AuditStatus.PENDING
    progress: int = 0
    created_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    total_urls: int = 0
    completed: int = 0
    critical_issues: int = 0
    high_issues: int = 0
    medium_issues: int = 0
    low_issues: int = 0
    overall_score: int | None = None
    error_message: str | None = None

    def to_status_dict(self) -> dict[str, Any]:
        """ポーリング用の状態表現."""
        return {
            "id": self.id,
            "store_id": self.store_id,
            "status": self.status.value,
            "progress": self.progress,
            "total_urls": self.total_urls,
            "completed": self.completed,
            "critical_issues": self.critical_issues,
            "high_issues": self.high_issues,
            "medium_issues": self.medium_issues,
            "low_issues": self.low_issues,
            "overall_score": self.overall_score,
            "error_message": self.error_message,
            "created_at": _isoformat(self.created_at),
            "started_at": _isoformat(self.started_at),
            "completed_at": _isoformat(self.completed_at),
        }


def _isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass(frozen=True)
class GuardDecision:
    """監査開始可否の判定."""

    allowed: bool
    reason: str | None = None
    next_allowed_time: datetime | None = None


@dataclass(frozen=True)
class RateLimitConfig:
    limit: int
    window_ms: int


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime


@dataclass(frozen=True)
class StartAuditResult:
    """start_audit の戻り値. 拒否時は audit_id が None."""

    allowed: bool
    audit_id: str | None = None
    reason: str | None = None
    next_allowed_time: datetime | None = None


@dataclass
class ProgressUpdate:
    stage: ProgressStage
    message: str
    percentage: int


@dataclass
class AuditJobResult:
    """process_audit の結果サマリ."""

    audit_id: str
    status: AuditStatus
    statistics: AuditStatistics | None = None
    failed_checks: list[CheckType] = field(default_factory=list)
    error: str | None = None
