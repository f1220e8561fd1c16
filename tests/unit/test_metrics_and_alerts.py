import pytest

from maternal_risk.engines.rule_engine import score
from maternal_risk.services.alert_service import EmergencyAlertService
from maternal_risk.services.metrics_service import MetricsService, render_metrics


def test_health_report_flags_failing_model():
    for _ in range(8):
        MetricsService.record_attempt("gpt-4", "SUCCESS")
    for _ in range(4):
        MetricsService.record_attempt("gpt-4", "PROVIDER_ERROR")
    MetricsService.record_attempt("gemini-2.0-flash", "SUCCESS")

    report = MetricsService.get_health_report()
    assert report["gpt-4"]["status"] == "UNHEALTHY"
    assert report["gpt-4"]["sample_size"] == 12
    assert report["gemini-2.0-flash"]["status"] == "HEALTHY"


def test_metrics_render_in_prometheus_format():
    MetricsService.record_degraded("AI Component Unavailable")
    body, content_type = render_metrics()
    assert b"risk_degraded_reports_total" in body
    assert content_type.startswith("text/plain")


@pytest.mark.asyncio
async def test_alert_only_for_critical(example_patient, critical_patient):
    sent = []
    service = EmergencyAlertService(sent.append)

    assert not await service.trigger_emergency_alert(score(example_patient), "a1")
    assert await service.trigger_emergency_alert(score(critical_patient), "a2")
    assert [a["assessment_id"] for a in sent] == ["a2"]


@pytest.mark.asyncio
async def test_alert_delivery_failure_is_reported(critical_patient):
    def broken(alert):
        raise ConnectionError("pager offline")

    assert not await EmergencyAlertService(broken).trigger_emergency_alert(score(critical_patient), "a3")
