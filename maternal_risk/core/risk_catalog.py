"""
Risk factor catalog.

Weighted risk factors, tier boundaries and the validation thresholds the
factors are evaluated against. The catalog is built once at startup and is
immutable for the lifetime of the process.
"""
from dataclasses import dataclass, field
from functools import lru_cache
from pydantic import BaseModel, ConfigDict
from typing import Callable, Optional, Tuple

from maternal_risk.errors import ConfigurationError
from maternal_risk.schemas.internal_models import FactorCategory, RiskTier
from maternal_risk.schemas.request_schema import PatientAssessmentInput

SEVERE_SYMPTOM_GRADES = ("severe", "present")


class ValidationThresholds(BaseModel):
    model_config = ConfigDict(frozen=True)

    systolic_max: int = 140
    diastolic_max: int = 90
    bmi_underweight: float = 18.5
    hemoglobin_anemia: float = 11.0
    fever_temperature: float = 38.0
    maternal_age_min: int = 18
    maternal_age_max: int = 35
    high_risk_locations: Tuple[str, ...] = ("rural",)
    difficult_access: Tuple[str, ...] = ("difficult", "none", "limited")
    high_risk_occupations: Tuple[str, ...] = ("agriculture", "manual labor")
    low_income_levels: Tuple[str, ...] = ("low", "very low")


TriggerCondition = Callable[[PatientAssessmentInput, ValidationThresholds], float]


@dataclass(frozen=True)
class RiskFactorDefinition:
    id: str
    category: FactorCategory
    weight: float
    trigger: TriggerCondition = field(compare=False)
    label: str = ""
    graded: bool = False

    def multiplier(self, patient: PatientAssessmentInput, thresholds: ValidationThresholds) -> float:
        value = float(self.trigger(patient, thresholds) or 0.0)
        if not self.graded:
            return 1.0 if value > 0 else 0.0
        return max(value, 0.0)


@dataclass(frozen=True)
class TierBoundary:
    lower_bound: float
    tier: RiskTier


def _text(value: Optional[str]) -> str:
    return (value or "").strip().lower()


def high_blood_pressure(patient: PatientAssessmentInput, t: ValidationThresholds) -> float:
    reading = patient.vitals.parsed_blood_pressure()
    if reading is None:
        return 0.0
    systolic, diastolic = reading
    return 1.0 if systolic > t.systolic_max or diastolic > t.diastolic_max else 0.0


def underweight(patient: PatientAssessmentInput, t: ValidationThresholds) -> float:
    bmi = patient.vitals.bmi
    return 1.0 if bmi is not None and 0 < bmi < t.bmi_underweight else 0.0


def symptom_burden(patient: PatientAssessmentInput, t: ValidationThresholds) -> float:
    return float(sum(1 for grade in patient.symptoms.values() if grade in SEVERE_SYMPTOM_GRADES))


def anemia(patient: PatientAssessmentInput, t: ValidationThresholds) -> float:
    hb = patient.vitals.hemoglobin
    return 1.0 if hb is not None and 0 < hb < t.hemoglobin_anemia else 0.0


def gestational_diabetes(patient: PatientAssessmentInput, t: ValidationThresholds) -> float:
    conditions = patient.history.conditions + patient.history.previous_complications
    return 1.0 if any("diabetes" in _text(c) for c in conditions) else 0.0


def infection_fever(patient: PatientAssessmentInput, t: ValidationThresholds) -> float:
    temp = patient.vitals.temperature
    return 1.0 if temp is not None and temp >= t.fever_temperature else 0.0


def maternal_age(patient: PatientAssessmentInput, t: ValidationThresholds) -> float:
    age = patient.age
    if age is None or age <= 0:
        return 0.0
    return 1.0 if age < t.maternal_age_min or age > t.maternal_age_max else 0.0


def limited_healthcare_access(patient: PatientAssessmentInput, t: ValidationThresholds) -> float:
    if _text(patient.location) in t.high_risk_locations:
        return 1.0
    return 1.0 if _text(patient.access_to_healthcare) in t.difficult_access else 0.0


def low_income(patient: PatientAssessmentInput, t: ValidationThresholds) -> float:
    return 1.0 if _text(patient.income_level) in t.low_income_levels else 0.0


def occupational_hazard(patient: PatientAssessmentInput, t: ValidationThresholds) -> float:
    occupation = _text(patient.occupation)
    return 1.0 if occupation and any(o in occupation for o in t.high_risk_occupations) else 0.0


DEFAULT_FACTORS = (
    RiskFactorDefinition("high_blood_pressure", FactorCategory.MEDICAL, 20.0, high_blood_pressure, "High blood pressure"),
    RiskFactorDefinition("underweight", FactorCategory.MEDICAL, 15.0, underweight, "Underweight (BMI < 18.5)"),
    RiskFactorDefinition("symptom_burden", FactorCategory.MEDICAL, 10.0, symptom_burden, "Severe symptoms present", graded=True),
    RiskFactorDefinition("anemia", FactorCategory.MEDICAL, 15.0, anemia, "Anemia"),
    RiskFactorDefinition("gestational_diabetes", FactorCategory.MEDICAL, 20.0, gestational_diabetes, "Diabetes history"),
    RiskFactorDefinition("infection_fever", FactorCategory.MEDICAL, 10.0, infection_fever, "Fever / possible infection"),
    RiskFactorDefinition("maternal_age", FactorCategory.MEDICAL, 10.0, maternal_age, "Maternal age outside 18-35"),
    RiskFactorDefinition("limited_healthcare_access", FactorCategory.HEALTHCARE_ACCESS, 10.0, limited_healthcare_access, "Limited healthcare access"),
    RiskFactorDefinition("low_income", FactorCategory.SOCIOECONOMIC, 10.0, low_income, "Low income"),
    RiskFactorDefinition("occupational_hazard", FactorCategory.SOCIOECONOMIC, 5.0, occupational_hazard, "Physically demanding occupation"),
)

DEFAULT_TIER_BOUNDARIES = (
    TierBoundary(0.0, RiskTier.LOW),
    TierBoundary(20.0, RiskTier.MEDIUM),
    TierBoundary(40.0, RiskTier.HIGH),
    TierBoundary(60.0, RiskTier.CRITICAL),
)


@dataclass(frozen=True)
class RiskFactorCatalog:
    factors: Tuple[RiskFactorDefinition, ...] = DEFAULT_FACTORS
    tier_boundaries: Tuple[TierBoundary, ...] = DEFAULT_TIER_BOUNDARIES
    thresholds: ValidationThresholds = field(default_factory=ValidationThresholds)

    def __post_init__(self):
        ids = [f.id for f in self.factors]
        if len(ids) != len(set(ids)):
            raise ConfigurationError("Risk factor ids must be unique.")
        if any(f.weight < 0 for f in self.factors):
            raise ConfigurationError("Risk factor weights must be non-negative.")
        bounds = [b.lower_bound for b in self.tier_boundaries]
        if not bounds or bounds[0] != 0.0:
            raise ConfigurationError("Tier boundaries must start at 0.")
        if any(b >= a for a, b in zip(bounds[1:], bounds)) or bounds[-1] > 100.0:
            raise ConfigurationError("Tier boundaries must be strictly increasing within [0, 100].")
        tiers = [b.tier for b in self.tier_boundaries]
        if len(tiers) != len(set(tiers)):
            raise ConfigurationError("Each tier may appear only once.")

    def tier_for(self, value: float) -> RiskTier:
        # Boundary values belong to the higher tier.
        tier = self.tier_boundaries[0].tier
        for boundary in self.tier_boundaries:
            if value >= boundary.lower_bound:
                tier = boundary.tier
        return tier

    def get(self, factor_id: str) -> RiskFactorDefinition:
        for factor in self.factors:
            if factor.id == factor_id:
                return factor
        raise KeyError(factor_id)


@lru_cache()
def load_default_catalog() -> RiskFactorCatalog:
    return RiskFactorCatalog()
