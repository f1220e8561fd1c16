import logging

import pytest
from conftest import ScriptedProvider, model_report

from maternal_risk.config import load_engine_config
from maternal_risk.core.model_registry import ModelSelector, build_registry
from maternal_risk.engines.rule_engine import RiskScorer
from maternal_risk.errors import ProviderError4xx, ProviderNetworkError, ValidationError
from maternal_risk.schemas.internal_models import RiskTier, UseCase
from maternal_risk.services.alert_service import EmergencyAlertService
from maternal_risk.services.assessment_service import RiskAssessmentService, create_assessment_service


class RecordingNotifier:
    def __init__(self):
        self.alerts = []

    async def __call__(self, alert):
        self.alerts.append(alert)


def make_service(provider, clock, notifier=None):
    return create_assessment_service(
        config=load_engine_config({}),
        provider=provider,
        clock=clock,
        alert_service=EmergencyAlertService(notifier)
    )


@pytest.mark.asyncio
async def test_unreachable_provider_still_returns_deterministic_report(clock, example_patient):
    provider = ScriptedProvider(default=ProviderNetworkError("connection refused"))
    service = make_service(provider, clock)

    report = await service.assess(example_patient)

    assert report.risk_score == 45
    assert report.risk_level == RiskTier.HIGH
    assert report.narrative_unavailable
    assert "ResourceExhausted" in report.narrative_error
    assert report.metadata.attempt_count == 4
    assert report.recommendations.short_term


@pytest.mark.asyncio
async def test_successful_narrative(clock, example_patient):
    provider = ScriptedProvider({"gpt-4": [model_report(level="High")]})
    service = make_service(provider, clock)

    report = await service.assess(example_patient)

    assert not report.narrative_unavailable
    assert report.metadata.model_used == "gpt-4"
    assert report.metadata.attempt_count == 1
    assert report.advisory.agrees_with_deterministic_tier is True
    assert "DETERMINISTIC ASSESSMENT" in provider.calls[0]["prompt"]
    assert "Risk level: High" in provider.calls[0]["prompt"]


@pytest.mark.asyncio
async def test_critical_tier_uses_override_model_and_raises_alert(clock, critical_patient):
    provider = ScriptedProvider({"gpt-3.5-turbo": [model_report(level="Low")], "gpt-4": [model_report(level="Low")]})
    notifier = RecordingNotifier()
    service = make_service(provider, clock, notifier)

    report = await service.assess(critical_patient, use_case=UseCase.SYMPTOM_ANALYSIS)

    assert report.risk_level == RiskTier.CRITICAL
    assert report.emergency_workflow_required
    assert provider.calls[0]["model"] == "gpt-4"
    assert provider.calls[0]["temperature"] <= 0.3
    assert len(notifier.alerts) == 1
    assert notifier.alerts[0]["risk"] == "Critical"


@pytest.mark.asyncio
async def test_model_advisory_level_never_raises_alert(clock, example_patient):
    provider = ScriptedProvider({"gpt-4": [model_report(level="Critical", score=95)]})
    notifier = RecordingNotifier()
    service = make_service(provider, clock, notifier)

    report = await service.assess(example_patient)

    assert report.risk_level == RiskTier.HIGH
    assert not report.emergency_workflow_required
    assert notifier.alerts == []


@pytest.mark.asyncio
async def test_unusable_model_output_is_audited_and_degraded(clock, example_patient, caplog):
    provider = ScriptedProvider({"gpt-4": ["Sorry, I am unable to provide medical advice."]})
    service = make_service(provider, clock)

    with caplog.at_level(logging.WARNING, logger="ClinicalAudit"):
        report = await service.assess(example_patient)

    assert report.narrative_unavailable
    assert report.narrative_error.startswith("Model output unusable")
    assert report.metadata.model_used == "gpt-4"
    assert any("llm_format_violation" in r.getMessage() for r in caplog.records)


@pytest.mark.asyncio
async def test_client_error_degrades_without_fallback(clock, example_patient):
    provider = ScriptedProvider({"gpt-4": [ProviderError4xx("invalid api key", status_code=401)]})
    service = make_service(provider, clock)

    report = await service.assess(example_patient)

    assert report.narrative_unavailable
    assert "ProviderError4xx" in report.narrative_error
    assert provider.calls_for("gpt-3.5-turbo") == 0


@pytest.mark.asyncio
async def test_missing_gateway_degrades(example_patient):
    service = RiskAssessmentService(scorer=RiskScorer(), selector=ModelSelector(build_registry()))

    report = await service.assess(example_patient)

    assert report.narrative_unavailable
    assert report.risk_score == 45


@pytest.mark.asyncio
async def test_invalid_input_raises(clock):
    service = make_service(ScriptedProvider(), clock)
    with pytest.raises(ValidationError):
        await service.assess("not a patient")


@pytest.mark.asyncio
async def test_points_policy_from_config(clock):
    service = create_assessment_service(
        config=load_engine_config({"RISK_SCORING_POLICY": "points"}),
        provider=ScriptedProvider(default=ProviderNetworkError("offline")),
        clock=clock
    )
    report = await service.assess({"age": 40, "lifestyle": {"smoker": True}})

    assert report.metadata.scoring_policy == "points"
    assert report.risk_score == 25
    assert report.risk_level == RiskTier.MEDIUM
