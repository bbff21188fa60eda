"""設定モジュール（環境変数・監査の定数定義）."""

import os
from dataclasses import dataclass
from pathlib import Path

from dotenv import load_dotenv

# .env はプロジェクトルートに配置
_PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
load_dotenv(_PROJECT_ROOT / ".env")


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


# --- Supabase ---
SUPABASE_URL: str = os.environ.get("SUPABASE_URL", "")
SUPABASE_SECRET_KEY: str = os.environ.get("SUPABASE_SECRET_KEY", "")
SUPABASE_SCHEMA = "seo_audit"

# --- Shopify Admin API ---
SHOPIFY_ACCESS_TOKEN: str = os.environ.get("SHOPIFY_ACCESS_TOKEN", "")
SHOPIFY_API_VERSION: str = os.environ.get("SHOPIFY_API_VERSION", "2024-01")
GRAPHQL_URL_TEMPLATE = "https://{shop_domain}/admin/api/{version}/graphql.json"
GRAPHQL_PAGE_SIZE = 50
PRODUCT_IMAGES_PER_NODE = 10

USER_AGENT = "seo-audit-pipeline/0.1"

# --- リクエスト設定 ---
REQUEST_TIMEOUT = 15  # 秒
LINK_CHECK_TIMEOUT = 5  # 秒
CHECK_LINK_STATUS: bool = _env_bool("CHECK_LINK_STATUS")

# --- 監査の実行制御 ---
FETCH_TIMEOUT = 300  # 秒
CHECK_TIMEOUT = 120  # 秒
CHECK_MAX_WORKERS = 7
AUDIT_COOLDOWN_SECONDS = 60 * 60  # 1 時間
WORKER_MAX_WORKERS = 4

# 進捗マイルストーン（%）
PROGRESS_STARTED = 5
PROGRESS_FETCHED = 30
PROGRESS_CHECKED = 70
PROGRESS_SAVED = 95
PROGRESS_DONE = 100

# --- キャッシュ ---
_MINUTE_MS = 60 * 1000
_HOUR_MS = 60 * _MINUTE_MS
_DAY_MS = 24 * _HOUR_MS

CACHE_MAX_ENTRIES = 1000
CACHE_DEFAULT_TTL_MS = 5 * _MINUTE_MS
CACHE_CLEANUP_INTERVAL = 5 * 60  # 秒

CACHE_TTL = {
    "SHOPIFY_PRODUCTS": 15 * _MINUTE_MS,
    "SHOPIFY_COLLECTIONS": 15 * _MINUTE_MS,
    "SHOPIFY_PAGES": 30 * _MINUTE_MS,
    "AUDIT_RESULTS": _DAY_MS,
    "HEALTH_SCORE": 5 * _MINUTE_MS,
    "QUICK_WINS": 5 * _MINUTE_MS,
    "ACTIVITY_LOG": 2 * _MINUTE_MS,
}

# --- レート制限 (limit, window_ms) ---
RATE_LIMITS = {
    "GLOBAL": (100, _HOUR_MS),
    "AUDIT": (10, _DAY_MS),
    "META_UPDATE": (50, _DAY_MS),
    "ALT_UPDATE": (100, _DAY_MS),
    "SHOPIFY_API": (500, _DAY_MS),
    "GSC_API": (100, _DAY_MS),
    "SITEMAP_GEN": (5, _DAY_MS),
}


# --- プラン別の取得上限 ---
@dataclass(frozen=True)
class TierLimits:
    """プランごとのリソース種別あたり最大取得件数."""

    max_products: int
    max_collections: int
    max_pages: int


STORE_TIER: str = os.environ.get("STORE_TIER", "free")

TIER_LIMITS = {
    "free": TierLimits(max_products=50, max_collections=20, max_pages=20),
    "pro": TierLimits(max_products=250, max_collections=100, max_pages=100),
    "plus": TierLimits(max_products=1000, max_collections=250, max_pages=250),
}


def get_tier_limits(tier: str | None = None) -> TierLimits:
    """プラン名から取得上限を引く. 未知のプランは free 扱い."""
    key = (tier or STORE_TIER).lower()
    return TIER_LIMITS.get(key, TIER_LIMITS["free"])


# --- ログ ---
LOG_DIR = Path(__file__).resolve().parent.parent / "logs"
LOG_DIR.mkdir(exist_ok=True)
