import logging
import os
from typing import List

from maternal_risk.schemas.internal_models import RiskScore, UseCase
from maternal_risk.schemas.request_schema import PatientAssessmentInput

logger = logging.getLogger(__name__)

BASE_DIR = os.path.dirname(os.path.abspath(__file__))


class PromptBuilder:
    def __init__(self, template_path: str = None):
        self.template_path = template_path or os.path.join(BASE_DIR, "prompt_template.txt")
        self.prompt_template = self._load_prompt()

    def _load_prompt(self) -> str:
        if not os.path.exists(self.template_path):
            logger.warning(f"Prompt template not found at {self.template_path}, using built-in prompt")
            return (
                "Explain the pregnancy risk level {RISK_LEVEL} (score {RISK_SCORE}) for this patient:\n"
                "{PATIENT_PROFILE}\nFactors:\n{CONTRIBUTING_FACTORS}\nReturn JSON."
            )
        with open(self.template_path, "r", encoding="utf-8") as f:
            return f.read()

    def _format_profile(self, patient: PatientAssessmentInput) -> str:
        vitals = patient.vitals
        history = patient.history
        lifestyle = patient.lifestyle
        symptoms = ", ".join(f"{name} ({grade})" for name, grade in patient.symptoms.items() if grade != "absent")
        lines = [
            f"- Age: {_or_missing(patient.age, ' years')}",
            f"- Pregnancy Week: {patient.pregnancy_week if patient.pregnancy_week is not None else 'Not provided'}",
            f"- Blood Pressure: {vitals.blood_pressure or 'Not recorded'}",
            f"- Heart Rate: {_or_missing(vitals.heart_rate, ' bpm')}",
            f"- BMI: {_or_missing(vitals.bmi)}",
            f"- Temperature: {_or_missing(vitals.temperature, ' C')}",
            f"- Hemoglobin: {_or_missing(vitals.hemoglobin, ' g/dL')}",
            f"- Blood Sugar: {_or_missing(vitals.blood_sugar, ' mg/dL')}",
            f"- Symptoms: {symptoms or 'None reported'}",
            f"- Location: {patient.location or 'Not provided'}",
            f"- Access to Healthcare: {patient.access_to_healthcare or 'Not provided'}",
            f"- Chronic Conditions: {', '.join(history.conditions) or 'None'}",
            f"- Previous Complications: {', '.join(history.previous_complications) or 'None'}",
            f"- Previous Pregnancies: {history.previous_pregnancies}",
            f"- Occupation: {patient.occupation or 'Not provided'}",
            f"- Income Level: {patient.income_level or 'Not provided'}",
            f"- Smoker: {'Yes' if lifestyle.smoker else 'No'}",
            f"- Alcohol: {'Yes' if lifestyle.alcohol else 'No'}",
        ]
        return "\n".join(lines)

    @staticmethod
    def _format_factors(score: RiskScore) -> str:
        if not score.contributing_factors:
            return "  - None identified"
        lines: List[str] = [
            f"  - {f.label or f.factor_id} (+{f.contribution:g})" for f in score.contributing_factors
        ]
        return "\n".join(lines)

    def build(self, patient: PatientAssessmentInput, score: RiskScore, use_case: UseCase = UseCase.RISK_PREDICTION) -> str:
        return (
            self.prompt_template
            .replace("{USE_CASE}", UseCase(use_case).value)
            .replace("{PATIENT_PROFILE}", self._format_profile(patient))
            .replace("{RISK_SCORE}", f"{score.value:g}")
            .replace("{RISK_LEVEL}", score.tier.value)
            .replace("{CONTRIBUTING_FACTORS}", self._format_factors(score))
        )


def _or_missing(value, unit: str = "") -> str:
    return "Not recorded" if value is None else f"{value:g}{unit}"
