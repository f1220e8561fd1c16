import json

import pytest
from conftest import model_report

from maternal_risk.core.result_assembler import FOLLOW_UP_BY_TIER, SEEK_CARE_NOW, ResultAssembler
from maternal_risk.engines.rule_engine import score
from maternal_risk.errors import TransformationError
from maternal_risk.schemas.internal_models import InvocationResult, InvocationStatus, ModelResponse, RiskTier


def success(raw, model="gpt-4"):
    response = ModelResponse(structured=raw) if isinstance(raw, dict) else ModelResponse(text=raw)
    return InvocationResult(status=InvocationStatus.SUCCESS, model_used=model, response=response)


@pytest.fixture
def assembler():
    return ResultAssembler()


@pytest.fixture
def high_score(example_patient):
    return score(example_patient)


def test_strict_report_in_code_fence(assembler, high_score):
    raw = "```json\n" + json.dumps(model_report(level="High", score=48)) + "\n```"
    report = assembler.assemble(high_score, success(raw))

    assert report.risk_score == 45
    assert report.risk_level == RiskTier.HIGH
    assert report.recommendations.immediate == ["Check blood pressure today"]
    assert report.warning_system.red_flags == ["Vaginal bleeding"]
    assert report.follow_up_schedule == ["Review in 7 days"]
    assert report.advisory.model_risk_level == "High"
    assert report.advisory.model_risk_score == 48
    assert report.advisory.agrees_with_deterministic_tier is True
    assert not report.narrative_unavailable
    assert not report.metadata.lenient_extraction
    assert report.metadata.model_used == "gpt-4"


def test_model_level_never_overrides_deterministic_tier(assembler, critical_patient):
    critical = score(critical_patient)
    report = assembler.assemble(critical, success(model_report(level="Low", score=10)))

    assert report.risk_level == RiskTier.CRITICAL
    assert report.risk_score == critical.value
    assert report.advisory.model_risk_level == "Low"
    assert report.advisory.agrees_with_deterministic_tier is False
    assert report.recommendations.immediate[0] == SEEK_CARE_NOW
    assert report.emergency_workflow_required


def test_lenient_extraction_of_nested_recommendations(assembler, high_score):
    raw = {
        "riskAssessment": {"overallRisk": {"score": 70, "level": "Very High"}},
        "recommendations": {
            "medicalManagement": {
                "immediate": [{"action": "Visit the clinic today", "priority": "High"}],
                "shortTerm": [{"action": "Rest on your left side", "timeline": "2 weeks"}]
            }
        },
        "warningSystem": {"redFlags": [{"sign": "Bleeding", "action": "Go to hospital"}]}
    }
    report = assembler.assemble(high_score, success(raw))

    assert report.metadata.lenient_extraction
    assert report.recommendations.immediate == ["Visit the clinic today"]
    assert report.recommendations.short_term == ["Rest on your left side"]
    assert report.warning_system.red_flags == ["Bleeding"]
    assert report.follow_up_schedule == FOLLOW_UP_BY_TIER[RiskTier.HIGH]
    assert report.advisory.agrees_with_deterministic_tier is True


def test_lenient_extraction_from_plain_text(assembler, high_score):
    raw = (
        "RISK LEVEL: Critical\nRISK SCORE: 80\n"
        "RECOMMENDATIONS:\n1. Go to the district hospital\n2. Bring your antenatal card\n"
        "WARNING SIGNS:\n- Bleeding\n- Fits\n"
    )
    report = assembler.assemble(high_score, success(raw))

    assert report.risk_level == RiskTier.HIGH
    assert report.advisory.model_risk_level == "Critical"
    assert report.advisory.model_risk_score == 80
    assert report.advisory.agrees_with_deterministic_tier is False
    assert report.recommendations.immediate == ["Go to the district hospital", "Bring your antenatal card"]
    assert report.warning_system.red_flags == ["Bleeding", "Fits"]


@pytest.mark.parametrize("raw", ["I cannot help with that.", "[1, 2, 3]", "{}"])
def test_unmappable_output_raises_transformation_error(assembler, high_score, raw):
    with pytest.raises(TransformationError) as exc:
        assembler.assemble(high_score, success(raw))
    assert exc.value.raw_payload == raw


def test_degraded_report_keeps_deterministic_score(assembler, high_score):
    report = assembler.degraded(high_score, "AI Component Unavailable: ProviderNetworkError")

    assert report.narrative_unavailable
    assert report.narrative_error.startswith("AI Component Unavailable")
    assert report.risk_score == 45
    assert report.risk_level == RiskTier.HIGH
    assert report.advisory is None
    assert "Monitor blood pressure regularly" in report.recommendations.short_term
    assert "Consult with a nutritionist for weight gain" in report.recommendations.short_term
    assert "Consult with a high-risk pregnancy specialist" in report.recommendations.short_term
    assert report.follow_up_schedule == FOLLOW_UP_BY_TIER[RiskTier.HIGH]


def test_report_serializes_with_camel_case_keys(assembler, high_score):
    payload = assembler.degraded(high_score, "offline").model_dump(by_alias=True)
    for key in ("riskScore", "riskLevel", "contributingFactors", "warningSystem", "followUpSchedule",
                "narrativeUnavailable", "emergencyWorkflowRequired"):
        assert key in payload
    assert payload["recommendations"].keys() == {"immediate", "shortTerm", "longTerm"}
    assert payload["metadata"]["scoringPolicy"] == "weighted"
