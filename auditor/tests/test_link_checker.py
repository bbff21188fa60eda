"""link_checker モジュールのテスト（HTTP はモック）."""

from unittest.mock import MagicMock

import requests

from seo_audit.link_checker import HttpLinkChecker


def _session(head_status=200, get_status=200, head_error=None) -> MagicMock:
    session = MagicMock()
    session.headers = {}
    if head_error is not None:
        session.head.side_effect = head_error
    else:
        session.head.return_value = MagicMock(status_code=head_status)
    session.get.return_value = MagicMock(status_code=get_status)
    return session


class TestHttpLinkChecker:
    """HttpLinkChecker のテスト."""

    def test_head_status(self):
        checker = HttpLinkChecker(session=_session(head_status=404))
        assert checker("https://example.com/gone") == 404

    def test_get_fallback(self):
        """HEAD 非対応 (405) なら GET で確認し直すこと."""
        session = _session(head_status=405, get_status=200)
        checker = HttpLinkChecker(session=session)

        assert checker("https://example.com/") == 200
        session.get.assert_called_once()
        assert session.get.call_args.kwargs["stream"] is True

    def test_request_error_is_unknown(self):
        """通信エラーはリンク切れではなく None（不明）になること."""
        checker = HttpLinkChecker(session=_session(head_error=requests.Timeout("slow")))
        assert checker("https://example.com/") is None

    def test_memoized(self):
        session = _session(head_status=200)
        checker = HttpLinkChecker(session=session)

        checker("https://example.com/a")
        checker("https://example.com/a")

        assert session.head.call_count == 1
