"""監査レコードの永続化.

全テーブルは seo_audit スキーマに配置。
Supabase client のスキーマ指定は .schema() で行う。

同一ストアで PENDING/RUNNING の監査は 1 件までという制約は、
audits(store_id) の部分ユニークインデックス
(where status in ('PENDING', 'RUNNING')) で保証する。
"""

from __future__ import annotations

import dataclasses
import logging
import threading
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable

from postgrest.exceptions import APIError
from supabase import Client, create_client

from seo_audit.config import SUPABASE_SCHEMA, SUPABASE_SECRET_KEY, SUPABASE_URL
from seo_audit.exceptions import (
    AuditAlreadyRunningError,
    ConfigurationError,
    PersistenceError,
)
from seo_audit.models import ACTIVE_STATUSES, TERMINAL_STATUSES, Audit, AuditStatus

logger = logging.getLogger(__name__)

_UNIQUE_VIOLATION = "23505"

_DATETIME_FIELDS = ("created_at", "started_at", "completed_at")
_EPOCH = datetime.fromtimestamp(0, tz=timezone.utc)


class AuditRepository(ABC):
    """監査・ページ・指摘の永続化インターフェース."""

    @abstractmethod
    def create_audit(self, store_id: str, created_at: datetime) -> Audit:
        """PENDING の監査を作成する.

        Raises:
            AuditAlreadyRunningError: 同一ストアに PENDING/RUNNING の監査がある
        """

    @abstractmethod
    def get_audit(self, audit_id: str) -> Audit | None:
        ...

    @abstractmethod
    def compare_and_update(
        self, audit_id: str, expected: Iterable[AuditStatus], fields: dict[str, Any]
    ) -> Audit | None:
        """現在の status が expected に含まれる場合のみ fields を更新する.

        Returns:
            更新後の監査. 条件不一致・存在しない場合は None.
        """

    @abstractmethod
    def find_active_audit(self, store_id: str) -> Audit | None:
        ...

    @abstractmethod
    def find_latest_finished_audit(self, store_id: str) -> Audit | None:
        """COMPLETED/FAILED のうち最も新しく終了した監査."""

    @abstractmethod
    def upsert_pages(self, store_id: str, pages: list[dict]) -> dict[str, str]:
        """(store_id, url) をキーにページを upsert する.

        Args:
            pages: [{"url", "title", "page_type", "shopify_id"}, ...]

        Returns:
            url -> page_id
        """

    @abstractmethod
    def insert_issues(self, issues: list[dict]) -> None:
        """指摘レコードを一括挿入する.

        Args:
            issues: [{"page_id", "audit_id", "type", "severity", "message",
                      "suggestion", "details", "is_fixed"}, ...]
        """


def _serialize(fields: dict[str, Any]) -> dict[str, Any]:
    out = {}
    for key, value in fields.items():
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, Enum):
            value = value.value
        out[key] = value
    return out


def _parse_datetime(value: Any) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value).replace("Z", "+00:00"))


def row_to_audit(row: dict) -> Audit:
    """audits テーブルの行を Audit に変換する."""
    names = {f.name for f in dataclasses.fields(Audit)}
    data = {k: v for k, v in row.items() if k in names}
    data["status"] = AuditStatus(data.get("status", AuditStatus.PENDING.value))
    for key in _DATETIME_FIELDS:
        data[key] = _parse_datetime(data.get(key))
    return Audit(**data)


class SupabaseAuditRepository(AuditRepository):
    """Supabase (PostgREST) 実装. クライアントは初回アクセス時に生成する."""

    def __init__(self, client: Client | None = None):
        self._client = client

    def _get_client(self) -> Client:
        if self._client is None:
            if not SUPABASE_URL or not SUPABASE_SECRET_KEY:
                raise ConfigurationError("SUPABASE_URL / SUPABASE_SECRET_KEY が未設定です")
            self._client = create_client(SUPABASE_URL, SUPABASE_SECRET_KEY)
        return self._client

    def _table(self, name: str):
        """seo_audit スキーマのテーブルを参照する."""
        return self._get_client().schema(SUPABASE_SCHEMA).table(name)

    def create_audit(self, store_id: str, created_at: datetime) -> Audit:
        row = _serialize({
            "store_id": store_id,
            "status": AuditStatus.PENDING,
            "progress": 0,
            "created_at": created_at,
            "total_urls": 0,
            "completed": 0,
            "critical_issues": 0,
            "high_issues": 0,
            "medium_issues": 0,
            "low_issues": 0,
        })
        try:
            resp = self._table("audits").insert(row).execute()
        except APIError as e:
            if e.code == _UNIQUE_VIOLATION:
                raise AuditAlreadyRunningError(store_id) from e
            raise PersistenceError(f"audits への挿入に失敗: {e}") from e
        logger.info("audits に挿入: store=%s", store_id)
        return row_to_audit(resp.data[0])

    def get_audit(self, audit_id: str) -> Audit | None:
        resp = self._execute(self._table("audits").select("*").eq("id", audit_id).limit(1))
        return row_to_audit(resp.data[0]) if resp.data else None

    def compare_and_update(
        self, audit_id: str, expected: Iterable[AuditStatus], fields: dict[str, Any]
    ) -> Audit | None:
        query = (
            self._table("audits")
            .update(_serialize(fields))
            .eq("id", audit_id)
            .in_("status", [s.value for s in expected])
        )
        resp = self._execute(query)
        return row_to_audit(resp.data[0]) if resp.data else None

    def find_active_audit(self, store_id: str) -> Audit | None:
        resp = self._execute(
            self._table("audits")
            .select("*")
            .eq("store_id", store_id)
            .in_("status", [s.value for s in ACTIVE_STATUSES])
            .limit(1)
        )
        return row_to_audit(resp.data[0]) if resp.data else None

    def find_latest_finished_audit(self, store_id: str) -> Audit | None:
        resp = self._execute(
            self._table("audits")
            .select("*")
            .eq("store_id", store_id)
            .in_("status", [s.value for s in TERMINAL_STATUSES])
            .order("completed_at", desc=True)
            .limit(1)
        )
        return row_to_audit(resp.data[0]) if resp.data else None

    def upsert_pages(self, store_id: str, pages: list[dict]) -> dict[str, str]:
        if not pages:
            return {}
        rows = [{**p, "store_id": store_id} for p in pages]
        resp = self._execute(self._table("pages").upsert(rows, on_conflict="store_id,url"))
        logger.info("pages に %d 件 upsert", len(rows))
        return {row["url"]: row["id"] for row in resp.data}

    def insert_issues(self, issues: list[dict]) -> None:
        if not issues:
            return
        self._execute(self._table("seo_issues").insert(issues))
        logger.info("seo_issues に %d 件挿入", len(issues))

    @staticmethod
    def _execute(query):
        try:
            return query.execute()
        except APIError as e:
            raise PersistenceError(f"Supabase 操作に失敗: {e}") from e


class InMemoryAuditRepository(AuditRepository):
    """プロセス内の辞書で保持する実装（DB なしの同期実行・テスト用）."""

    def __init__(self):
        self._lock = threading.Lock()
        self._audits: dict[str, Audit] = {}
        self._pages: dict[tuple[str, str], dict] = {}
        self.issues: list[dict] = []

    def create_audit(self, store_id: str, created_at: datetime) -> Audit:
        with self._lock:
            if any(
                a.store_id == store_id and a.status in ACTIVE_STATUSES
                for a in self._audits.values()
            ):
                raise AuditAlreadyRunningError(store_id)
            audit = Audit(id=str(uuid.uuid4()), store_id=store_id, created_at=created_at)
            self._audits[audit.id] = audit
            return dataclasses.replace(audit)

    def get_audit(self, audit_id: str) -> Audit | None:
        with self._lock:
            audit = self._audits.get(audit_id)
            return dataclasses.replace(audit) if audit else None

    def compare_and_update(
        self, audit_id: str, expected: Iterable[AuditStatus], fields: dict[str, Any]
    ) -> Audit | None:
        expected = set(expected)
        with self._lock:
            audit = self._audits.get(audit_id)
            if audit is None or audit.status not in expected:
                return None
            updated = dataclasses.replace(audit, **fields)
            self._audits[audit_id] = updated
            return dataclasses.replace(updated)

    def find_active_audit(self, store_id: str) -> Audit | None:
        with self._lock:
            for audit in self._audits.values():
                if audit.store_id == store_id and audit.status in ACTIVE_STATUSES:
                    return dataclasses.replace(audit)
        return None

    def find_latest_finished_audit(self, store_id: str) -> Audit | None:
        with self._lock:
            finished = [
                a for a in self._audits.values()
                if a.store_id == store_id and a.status in TERMINAL_STATUSES
            ]
        if not finished:
            return None
        latest = max(finished, key=lambda a: a.completed_at or a.created_at or _EPOCH)
        return dataclasses.replace(latest)

    def upsert_pages(self, store_id: str, pages: list[dict]) -> dict[str, str]:
        ids = {}
        with self._lock:
            for page in pages:
                key = (store_id, page["url"])
                existing = self._pages.get(key)
                page_id = existing["id"] if existing else str(uuid.uuid4())
                self._pages[key] = {**page, "store_id": store_id, "id": page_id}
                ids[page["url"]] = page_id
        return ids

    def insert_issues(self, issues: list[dict]) -> None:
        with self._lock:
            self.issues.extend(dict(i) for i in issues)

    def pages(self, store_id: str) -> list[dict]:
        with self._lock:
            return [dict(p) for (s, _), p in self._pages.items() if s == store_id]
