"""リンク先の HTTP ステータス確認（CHECK_LINK_STATUS 有効時のみ使用）."""

from __future__ import annotations

import logging
import threading

import requests

from seo_audit.config import LINK_CHECK_TIMEOUT, USER_AGENT

logger = logging.getLogger(__name__)


class HttpLinkChecker:
    """URL の HTTP ステータスを返す. 同一 URL の結果はメモ化する.

    通信エラー時は None（不明）を返し、リンク切れとは扱わない。
    """

    def __init__(
        self,
        session: requests.Session | None = None,
        timeout: float = LINK_CHECK_TIMEOUT,
    ):
        self._session = session or requests.Session()
        self._session.headers.update({"User-Agent": USER_AGENT})
        self._timeout = timeout
        self._results: dict[str, int | None] = {}
        self._lock = threading.Lock()

    def __call__(self, url: str) -> int | None:
        with self._lock:
            if url in self._results:
                return self._results[url]

        status = self._request_status(url)
        with self._lock:
            self._results[url] = status
        return status

    def _request_status(self, url: str) -> int | None:
        try:
            resp = self._session.head(url, allow_redirects=True, timeout=self._timeout)
            # HEAD を受け付けないサーバーは GET で確認し直す
            if resp.status_code in (405, 501):
                resp = self._session.get(
                    url, allow_redirects=True, timeout=self._timeout, stream=True
                )
                resp.close()
            return resp.status_code
        except requests.RequestException as e:
            logger.warning("リンク確認失敗: url=%s, error=%s", url, e)
            return None
