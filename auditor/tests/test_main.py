"""main モジュールのテスト."""

from unittest.mock import MagicMock, patch

from seo_audit.models import (
    AuditJobResult,
    AuditStatistics,
    AuditStatus,
    StartAuditResult,
)


def _service_mock(started: StartAuditResult, job: AuditJobResult | None = None) -> MagicMock:
    """runner を呼び出して job を結果に積む AuditService の代役."""
    def factory(repository, runner):
        service = MagicMock()

        def start_audit(store_id, shop_domain):
            if started.allowed:
                runner(lambda *args: job, started.audit_id, shop_domain)
            return started

        service.start_audit.side_effect = start_audit
        return service

    return MagicMock(side_effect=factory)


class TestRun:
    """run の終了コードのテスト."""

    @patch("seo_audit.main.setup_logging")
    def test_completed(self, _logging):
        from seo_audit import main

        stats = AuditStatistics(1, 2, 0, 0, 80)
        job = AuditJobResult(audit_id="a1", status=AuditStatus.COMPLETED, statistics=stats)
        with patch("seo_audit.main.AuditService", _service_mock(StartAuditResult(True, "a1"), job)):
            assert main.run(["s1", "example.myshopify.com", "--in-memory"]) == 0

    @patch("seo_audit.main.setup_logging")
    def test_failed(self, _logging):
        from seo_audit import main

        job = AuditJobResult(audit_id="a1", status=AuditStatus.FAILED, error="boom")
        with patch("seo_audit.main.AuditService", _service_mock(StartAuditResult(True, "a1"), job)):
            assert main.run(["s1", "example.myshopify.com", "--in-memory"]) == 1

    @patch("seo_audit.main.setup_logging")
    def test_denied(self, _logging):
        from seo_audit import main

        denied = StartAuditResult(False, reason="Please wait 1 hour between audits")
        with patch("seo_audit.main.AuditService", _service_mock(denied)):
            assert main.run(["s1", "example.myshopify.com", "--in-memory"]) == 2
