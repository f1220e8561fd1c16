from datetime import datetime, timezone
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Any, Dict, List, Optional
from maternal_risk.schemas.internal_models import ContributingFactor, RiskTier

ITEM_TEXT_KEYS = ("action", "name", "description", "sign", "text")


def _item_text(item: Any) -> Optional[str]:
    if isinstance(item, str):
        return item.strip() or None
    if isinstance(item, dict):
        for key in ITEM_TEXT_KEYS:
            if isinstance(item.get(key), str) and item[key].strip():
                return item[key].strip()
    return None


def coerce_text_list(value: Any) -> Any:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list):
        return value
    items = [_item_text(v) for v in value]
    if any(i is None for i in items):
        raise ValueError("list items must be strings or objects with a text field")
    return items


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, protected_namespaces=())


# Shape expected from the model.

class ModelOverallRisk(_CamelModel):
    score: Optional[float] = None
    level: str


class ModelRiskAssessment(_CamelModel):
    overall_risk: ModelOverallRisk


class Recommendations(_CamelModel):
    immediate: List[str] = Field(default_factory=list)
    short_term: List[str] = Field(default_factory=list)
    long_term: List[str] = Field(default_factory=list)

    @field_validator("immediate", "short_term", "long_term", mode="before")
    @classmethod
    def _coerce_items(cls, value):
        return coerce_text_list(value)


class WarningSystem(_CamelModel):
    red_flags: List[str] = Field(default_factory=list)
    yellow_flags: List[str] = Field(default_factory=list)

    @field_validator("red_flags", "yellow_flags", mode="before")
    @classmethod
    def _coerce_flags(cls, value):
        return coerce_text_list(value)


class ModelRecommendations(Recommendations):
    immediate: List[str]
    short_term: List[str]
    long_term: List[str]


class ModelWarningSystem(WarningSystem):
    red_flags: List[str]
    yellow_flags: List[str]


class ModelReport(_CamelModel):
    risk_assessment: ModelRiskAssessment
    recommendations: ModelRecommendations
    warning_system: ModelWarningSystem
    follow_up_schedule: List[str]
    metadata: Dict[str, Any]

    @field_validator("follow_up_schedule", mode="before")
    @classmethod
    def _coerce_schedule(cls, value):
        return coerce_text_list(value)


# Canonical report returned to callers.

class AdvisoryAssessment(_CamelModel):
    model_risk_level: Optional[str] = None
    model_risk_score: Optional[float] = None
    agrees_with_deterministic_tier: Optional[bool] = None
    note: str = "Advisory only. The deterministic risk tier governs emergency workflows."


class ReportMetadata(_CamelModel):
    model_used: Optional[str] = None
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    attempt_count: int = 0
    scoring_policy: str = "weighted"
    lenient_extraction: bool = False


class RiskReport(_CamelModel):
    risk_score: float
    risk_level: RiskTier
    contributing_factors: List[ContributingFactor] = Field(default_factory=list)
    recommendations: Recommendations = Field(default_factory=Recommendations)
    warning_system: WarningSystem = Field(default_factory=WarningSystem)
    follow_up_schedule: List[str] = Field(default_factory=list)
    advisory: Optional[AdvisoryAssessment] = None
    narrative_unavailable: bool = False
    narrative_error: Optional[str] = None
    emergency_workflow_required: bool = False
    metadata: ReportMetadata = Field(default_factory=ReportMetadata)
    disclaimer: str = (
        "This assessment supports, and does not replace, evaluation by a qualified healthcare provider."
    )
