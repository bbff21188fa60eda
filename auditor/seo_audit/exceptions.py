"""監査パイプラインの例外定義.

ガード・レート制限による拒否は例外ではなく戻り値で表す。
ここに定義するのは監査を FAILED に遷移させる、または呼び出し側に伝播させる異常のみ。
"""


class AuditError(Exception):
    """監査パイプラインの基底例外."""


class ConfigurationError(AuditError):
    """必須設定（アクセストークン等）が欠けている."""


class ContentApiError(AuditError):
    """外部コンテンツ API の 1 リクエストが失敗した."""


class ContentFetchError(AuditError):
    """どのリソース種別も取得できなかった."""


class AuditTimeoutError(AuditError):
    """取得またはチェック実行が制限時間を超えた."""


class AuditNotFoundError(AuditError):
    """指定 ID の監査レコードが存在しない."""

    def __init__(self, audit_id: str):
        super().__init__(f"監査が見つかりません: {audit_id}")
        self.audit_id = audit_id


class InvalidTransitionError(AuditError):
    """許可されていない状態遷移（終端状態からの遷移を含む）."""


class AuditAlreadyRunningError(AuditError):
    """同一ストアで PENDING/RUNNING の監査が既に存在する."""

    def __init__(self, store_id: str):
        super().__init__(f"ストア {store_id} の監査は既に実行中です")
        self.store_id = store_id


class PersistenceError(AuditError):
    """永続化ストアへの書き込み・読み出しに失敗した."""
