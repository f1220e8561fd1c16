"""
Result assembly.

Turns raw model output into the canonical RiskReport. The deterministic
RiskScore always supplies the report's score and tier; whatever level the
model states is carried as an advisory field only.
"""
import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from maternal_risk.core.risk_utils import is_escalation, parse_narrative_level
from maternal_risk.errors import TransformationError
from maternal_risk.schemas.internal_models import InvocationResult, RiskScore, RiskTier
from maternal_risk.schemas.response_schema import (
    AdvisoryAssessment, ModelReport, Recommendations, ReportMetadata, RiskReport, WarningSystem, coerce_text_list
)

logger = logging.getLogger(__name__)

SEEK_CARE_NOW = "Seek immediate medical attention at the nearest facility with emergency obstetric care"

LEVEL_PATTERN = re.compile(r"RISK LEVEL:\s*(Very High|Low|Medium|Moderate|High|Critical|Emergency)", re.IGNORECASE)
SCORE_PATTERN = re.compile(r"RISK SCORE:\s*(\d+(?:\.\d+)?)", re.IGNORECASE)
SECTION_HEADINGS = ("RECOMMENDATIONS", "NEXT STEPS", "WARNING SIGNS", "FOLLOW-UP SCHEDULE", "EMERGENCY CONTACT", "ADDITIONAL TESTS")

FOLLOW_UP_BY_TIER = {
    RiskTier.LOW: ["Routine prenatal visit every 4 weeks"],
    RiskTier.MEDIUM: ["Prenatal visit every 2 weeks", "Repeat vitals check within 7 days"],
    RiskTier.HIGH: ["Weekly prenatal visit", "Specialist review within 7 days"],
    RiskTier.CRITICAL: ["Same-day clinical evaluation", "Daily follow-up until reviewed by a specialist"],
}

FACTOR_GUIDANCE = {
    "high_blood_pressure": ("short_term", "Monitor blood pressure regularly"),
    "underweight": ("short_term", "Consult with a nutritionist for weight gain"),
    "anemia": ("short_term", "Take iron and folic acid supplements as advised by your provider"),
    "gestational_diabetes": ("short_term", "Monitor blood sugar levels regularly"),
    "infection_fever": ("immediate", "See a healthcare provider about the fever within 24 hours"),
    "limited_healthcare_access": ("long_term", "Plan transport to the nearest facility with emergency obstetric care"),
    "symptom_burden": ("immediate", "Report current severe symptoms to a healthcare provider"),
}


@dataclass
class ModelNarrative:
    level: Optional[str] = None
    score: Optional[float] = None
    recommendations: Recommendations = field(default_factory=Recommendations)
    warning_system: WarningSystem = field(default_factory=WarningSystem)
    follow_up_schedule: List[str] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)
    lenient: bool = False


def strip_fences(text: str) -> str:
    cleaned = text.strip()
    if cleaned.startswith("```json"):
        cleaned = cleaned[7:]
    elif cleaned.startswith("```"):
        cleaned = cleaned[3:]
    if cleaned.endswith("```"):
        cleaned = cleaned[:-3]
    return cleaned.strip()


def _safe_list(value: Any) -> List[str]:
    try:
        items = coerce_text_list(value)
    except ValueError:
        return []
    return items if isinstance(items, list) else []


def _dig(data: Dict[str, Any], *path: str) -> Any:
    current: Any = data
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def _as_float(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def baseline_guidance(score: RiskScore):
    """Deterministic recommendations and flags used when no narrative is available."""
    recs = {
        "immediate": [],
        "short_term": ["Attend all scheduled prenatal appointments"],
        "long_term": ["Maintain a healthy diet", "Stay hydrated", "Get adequate rest"],
    }
    red_flags = ["Vaginal bleeding", "Severe abdominal pain", "Reduced fetal movement"]
    yellow_flags = ["Severe headaches", "Blurred vision", "Severe swelling"]

    for factor in score.contributing_factors:
        guidance = FACTOR_GUIDANCE.get(factor.factor_id)
        if guidance:
            recs[guidance[0]].append(guidance[1])
    if any(f.factor_id == "high_blood_pressure" for f in score.contributing_factors):
        red_flags.append("Severe headache with blurred vision or sudden swelling")
    if any(f.factor_id == "infection_fever" for f in score.contributing_factors):
        red_flags.append("Fever above 38°C that does not settle")

    if score.tier == RiskTier.CRITICAL:
        recs["immediate"].insert(0, SEEK_CARE_NOW)
        recs["short_term"].append("Consult with a high-risk pregnancy specialist")
    elif score.tier == RiskTier.HIGH:
        recs["short_term"].extend(["Consider more frequent prenatal visits", "Consult with a high-risk pregnancy specialist"])
    elif score.tier == RiskTier.MEDIUM:
        recs["short_term"].append("Schedule additional monitoring appointments")

    return (
        Recommendations(**recs),
        WarningSystem(red_flags=red_flags, yellow_flags=yellow_flags),
        list(FOLLOW_UP_BY_TIER[score.tier]),
    )


class ResultAssembler:
    def parse(self, raw: Any) -> ModelNarrative:
        data: Optional[Dict[str, Any]] = None
        text: Optional[str] = None

        if isinstance(raw, dict):
            data = raw
        elif isinstance(raw, str):
            text = strip_fences(raw)
            try:
                decoded = json.loads(text)
                data = decoded if isinstance(decoded, dict) else None
            except ValueError:
                data = None
        else:
            raise TransformationError(f"Unsupported model payload type {type(raw).__name__}", raw_payload=raw)

        if data is not None:
            try:
                report = ModelReport.model_validate(data)
                return ModelNarrative(
                    level=report.risk_assessment.overall_risk.level,
                    score=report.risk_assessment.overall_risk.score,
                    recommendations=report.recommendations,
                    warning_system=report.warning_system,
                    follow_up_schedule=report.follow_up_schedule,
                    metadata=report.metadata
                )
            except PydanticValidationError as e:
                logger.warning(f"Model report failed schema validation, trying lenient extraction: {e.error_count()} errors")
            narrative = self._lenient_from_dict(data)
        else:
            narrative = self._lenient_from_text(text or "")

        if narrative is None:
            raise TransformationError("Model output could not be mapped onto the report schema", raw_payload=raw)
        return narrative

    def _lenient_from_dict(self, data: Dict[str, Any]) -> Optional[ModelNarrative]:
        level = _dig(data, "riskAssessment", "overallRisk", "level") or data.get("riskLevel") or data.get("risk_level")
        score = _as_float(_dig(data, "riskAssessment", "overallRisk", "score") or data.get("riskScore"))

        recs_raw = data.get("recommendations")
        if isinstance(recs_raw, dict) and isinstance(recs_raw.get("medicalManagement"), dict):
            recs_raw = recs_raw["medicalManagement"]
        if isinstance(recs_raw, dict):
            recommendations = Recommendations(
                immediate=_safe_list(recs_raw.get("immediate")),
                short_term=_safe_list(recs_raw.get("shortTerm", recs_raw.get("short_term"))),
                long_term=_safe_list(recs_raw.get("longTerm", recs_raw.get("long_term")))
            )
        else:
            recommendations = Recommendations(immediate=_safe_list(recs_raw))

        warnings_raw = data.get("warningSystem")
        if isinstance(warnings_raw, dict):
            warning_system = WarningSystem(
                red_flags=_safe_list(warnings_raw.get("redFlags", warnings_raw.get("red_flags"))),
                yellow_flags=_safe_list(warnings_raw.get("yellowFlags", warnings_raw.get("yellow_flags")))
            )
        else:
            warning_system = WarningSystem(red_flags=_safe_list(data.get("warningSigns")))

        follow_raw = data.get("followUpSchedule")
        if isinstance(follow_raw, dict):
            follow_raw = [f"{k}: {v}" for k, v in follow_raw.items() if isinstance(v, (str, int, float))]
        follow_up = _safe_list(follow_raw)

        has_content = any([
            recommendations.immediate, recommendations.short_term, recommendations.long_term,
            warning_system.red_flags, warning_system.yellow_flags, follow_up
        ])
        if not has_content and not isinstance(level, str):
            return None
        return ModelNarrative(
            level=level if isinstance(level, str) else None,
            score=score,
            recommendations=recommendations,
            warning_system=warning_system,
            follow_up_schedule=follow_up,
            metadata=data.get("metadata") if isinstance(data.get("metadata"), dict) else {},
            lenient=True
        )

    def _lenient_from_text(self, text: str) -> Optional[ModelNarrative]:
        sections = self._sections(text)
        level_match = LEVEL_PATTERN.search(text)
        score_match = SCORE_PATTERN.search(text)
        if not sections and not level_match:
            return None
        return ModelNarrative(
            level=level_match.group(1) if level_match else None,
            score=float(score_match.group(1)) if score_match else None,
            recommendations=Recommendations(
                immediate=sections.get("RECOMMENDATIONS", []),
                short_term=sections.get("NEXT STEPS", [])
            ),
            warning_system=WarningSystem(red_flags=sections.get("WARNING SIGNS", [])),
            follow_up_schedule=sections.get("FOLLOW-UP SCHEDULE", []),
            lenient=True
        )

    @staticmethod
    def _sections(text: str) -> Dict[str, List[str]]:
        headings = "|".join(re.escape(h) for h in SECTION_HEADINGS)
        pattern = re.compile(rf"({headings}):([\s\S]*?)(?=(?:{headings}):|$)", re.IGNORECASE)
        sections = {}
        for heading, body in pattern.findall(text):
            lines = [re.sub(r"^[\s\-\*\d\.\)]+", "", line).strip() for line in body.strip().splitlines()]
            lines = [line for line in lines if line]
            if lines:
                sections[heading.upper()] = lines
        return sections

    def assemble(self, score: RiskScore, result: InvocationResult) -> RiskReport:
        if not result.ok or result.response is None:
            raise ValueError("assemble() requires a successful invocation result")
        narrative = self.parse(result.response.raw)

        model_tier = parse_narrative_level(narrative.level)
        agrees = None if model_tier is None else model_tier == score.tier
        if agrees is False:
            direction = "above" if is_escalation(score.tier, model_tier) else "below"
            logger.warning(
                f"Model narrative level '{narrative.level}' is {direction} deterministic tier "
                f"{score.tier.value}; deterministic tier retained"
            )

        recommendations = narrative.recommendations
        if score.tier == RiskTier.CRITICAL and SEEK_CARE_NOW not in recommendations.immediate:
            recommendations = recommendations.model_copy(update={"immediate": [SEEK_CARE_NOW] + list(recommendations.immediate)})

        return RiskReport(
            risk_score=score.value,
            risk_level=score.tier,
            contributing_factors=list(score.contributing_factors),
            recommendations=recommendations,
            warning_system=narrative.warning_system,
            follow_up_schedule=narrative.follow_up_schedule or list(FOLLOW_UP_BY_TIER[score.tier]),
            advisory=AdvisoryAssessment(
                model_risk_level=narrative.level,
                model_risk_score=narrative.score,
                agrees_with_deterministic_tier=agrees
            ),
            narrative_unavailable=False,
            emergency_workflow_required=score.tier == RiskTier.CRITICAL,
            metadata=ReportMetadata(
                model_used=result.model_used,
                attempt_count=result.attempt_count,
                scoring_policy=score.policy,
                lenient_extraction=narrative.lenient
            )
        )

    def degraded(self, score: RiskScore, reason: str, result: Optional[InvocationResult] = None) -> RiskReport:
        recommendations, warning_system, follow_up = baseline_guidance(score)
        return RiskReport(
            risk_score=score.value,
            risk_level=score.tier,
            contributing_factors=list(score.contributing_factors),
            recommendations=recommendations,
            warning_system=warning_system,
            follow_up_schedule=follow_up,
            narrative_unavailable=True,
            narrative_error=reason,
            emergency_workflow_required=score.tier == RiskTier.CRITICAL,
            metadata=ReportMetadata(
                model_used=result.model_used if result else None,
                attempt_count=result.attempt_count if result else 0,
                scoring_policy=score.policy
            )
        )
