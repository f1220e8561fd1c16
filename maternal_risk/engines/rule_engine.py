import logging
from typing import Any, Dict, List, Optional, Tuple, Union
from pydantic import ValidationError as PydanticValidationError
from maternal_risk.core.risk_catalog import RiskFactorCatalog, load_default_catalog
from maternal_risk.errors import ValidationError
from maternal_risk.schemas.internal_models import ContributingFactor, FactorCategory, RiskScore
from maternal_risk.schemas.request_schema import PatientAssessmentInput

logger = logging.getLogger(__name__)

# Legacy point heuristic. Points are scaled onto the 0-100 range so its
# historical thresholds (5 moderate, 10 high) land inside Medium and High.
POINT_SCALE = 5.0

AGE_OUTSIDE_RANGE_POINTS = 2

BMI_NORMAL_RANGE = (18.5, 22.9)
SYSTOLIC_NORMAL_RANGE = (90, 140)
FASTING_SUGAR_MAX = 95.0

BINARY_POINTS = {
    "smoker": 3,
    "alcohol": 3,
}

PatientLike = Union[PatientAssessmentInput, Dict[str, Any]]


def coerce_input(patient: Any) -> PatientAssessmentInput:
    if isinstance(patient, PatientAssessmentInput):
        return patient
    if not isinstance(patient, dict):
        raise ValidationError(f"Patient input must be a mapping, got {type(patient).__name__}.")
    try:
        return PatientAssessmentInput.model_validate(patient)
    except PydanticValidationError as e:
        raise ValidationError("Patient input is structurally invalid.", errors=e.errors()) from e


class WeightedFactorPolicy:
    name = "weighted"

    def evaluate(self, patient: PatientAssessmentInput, catalog: RiskFactorCatalog) -> List[ContributingFactor]:
        contributions = []
        for factor in catalog.factors:
            try:
                multiplier = factor.multiplier(patient, catalog.thresholds)
            except (TypeError, ValueError, AttributeError) as e:
                logger.warning(f"Risk factor {factor.id} not evaluable: {e}")
                continue
            if multiplier <= 0:
                continue
            contributions.append(ContributingFactor(
                factor_id=factor.id,
                category=factor.category,
                contribution=factor.weight * multiplier,
                label=factor.label
            ))
        return contributions


class PointBasedPolicy:
    name = "points"

    def evaluate(self, patient: PatientAssessmentInput, catalog: RiskFactorCatalog) -> List[ContributingFactor]:
        breakdown: Dict[str, Tuple[FactorCategory, int]] = {}
        vitals = patient.vitals

        t = catalog.thresholds
        if patient.age is not None and patient.age > 0 and not (t.maternal_age_min <= patient.age <= t.maternal_age_max):
            breakdown["age"] = (FactorCategory.MEDICAL, AGE_OUTSIDE_RANGE_POINTS)

        if vitals.bmi is not None and not (BMI_NORMAL_RANGE[0] <= vitals.bmi <= BMI_NORMAL_RANGE[1]):
            breakdown["bmi"] = (FactorCategory.MEDICAL, 2)

        breakdown["chronic_conditions"] = (FactorCategory.MEDICAL, len(patient.history.conditions))

        for field, points in BINARY_POINTS.items():
            if getattr(patient.lifestyle, field, False):
                breakdown[field] = (FactorCategory.SOCIOECONOMIC, points)

        if (patient.lifestyle.exercise_frequency or "").upper() == "NONE":
            breakdown["no_exercise"] = (FactorCategory.SOCIOECONOMIC, 1)

        if patient.history.previous_pregnancies > 0:
            breakdown["previous_pregnancies"] = (FactorCategory.MEDICAL, 1)
        breakdown["previous_complications"] = (FactorCategory.MEDICAL, len(patient.history.previous_complications))

        reading = vitals.parsed_blood_pressure()
        if reading is not None and not (SYSTOLIC_NORMAL_RANGE[0] <= reading[0] <= SYSTOLIC_NORMAL_RANGE[1]):
            breakdown["blood_pressure"] = (FactorCategory.MEDICAL, 3)

        if vitals.blood_sugar is not None and vitals.blood_sugar > FASTING_SUGAR_MAX:
            breakdown["blood_sugar"] = (FactorCategory.MEDICAL, 3)

        return [
            ContributingFactor(factor_id=key, category=category, contribution=points * POINT_SCALE, label=key.replace("_", " "))
            for key, (category, points) in breakdown.items() if points > 0
        ]


SCORING_POLICIES = {
    WeightedFactorPolicy.name: WeightedFactorPolicy,
    PointBasedPolicy.name: PointBasedPolicy,
}


def get_policy(name: str):
    try:
        return SCORING_POLICIES[name]()
    except KeyError:
        raise ValueError(f"Unknown scoring policy '{name}'. Expected one of {sorted(SCORING_POLICIES)}.")


def score(patient: PatientLike, catalog: Optional[RiskFactorCatalog] = None, policy=None) -> RiskScore:
    catalog = catalog or load_default_catalog()
    policy = policy or WeightedFactorPolicy()
    data = coerce_input(patient)

    factors = policy.evaluate(data, catalog)
    total = round(max(0.0, min(100.0, sum(f.contribution for f in factors))), 2)
    ordered = sorted(factors, key=lambda f: (-f.contribution, f.factor_id))

    return RiskScore(
        value=total,
        tier=catalog.tier_for(total),
        contributing_factors=tuple(ordered),
        policy=policy.name
    )


class RiskScorer:
    def __init__(self, catalog: Optional[RiskFactorCatalog] = None, policy: str = "weighted"):
        self.catalog = catalog or load_default_catalog()
        self.policy = get_policy(policy)

    def score(self, patient: PatientLike) -> RiskScore:
        return score(patient, self.catalog, self.policy)
