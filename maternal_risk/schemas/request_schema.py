from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Dict, List, Optional, Tuple
import re

BLOOD_PRESSURE_PATTERN = re.compile(r"^\s*(\d{2,3})\s*/\s*(\d{2,3})\s*$")


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Vitals(_CamelModel):
    blood_pressure: Optional[str] = None
    heart_rate: Optional[float] = None
    bmi: Optional[float] = None
    temperature: Optional[float] = None
    hemoglobin: Optional[float] = None
    blood_sugar: Optional[float] = None

    def parsed_blood_pressure(self) -> Optional[Tuple[int, int]]:
        if not self.blood_pressure:
            return None
        match = BLOOD_PRESSURE_PATTERN.match(self.blood_pressure)
        if not match:
            return None
        return int(match.group(1)), int(match.group(2))


class MedicalHistory(_CamelModel):
    conditions: List[str] = Field(default_factory=list)
    previous_complications: List[str] = Field(default_factory=list)
    previous_pregnancies: int = 0


class Lifestyle(_CamelModel):
    smoker: bool = False
    alcohol: bool = False
    exercise_frequency: Optional[str] = None


class PatientAssessmentInput(_CamelModel):
    age: Optional[float] = None
    vitals: Vitals = Field(default_factory=Vitals)
    symptoms: Dict[str, str] = Field(default_factory=dict)
    location: Optional[str] = None
    access_to_healthcare: Optional[str] = None
    pregnancy_week: Optional[int] = None
    history: MedicalHistory = Field(default_factory=MedicalHistory)
    occupation: Optional[str] = None
    income_level: Optional[str] = None
    lifestyle: Lifestyle = Field(default_factory=Lifestyle)

    @field_validator("symptoms", mode="before")
    @classmethod
    def _normalize_symptoms(cls, value):
        if not isinstance(value, dict):
            return value
        normalized = {}
        for name, severity in value.items():
            if isinstance(severity, bool):
                severity = "present" if severity else "absent"
            normalized[name] = severity.strip().lower() if isinstance(severity, str) else severity
        return normalized

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "age": 29,
                "vitals": {"bloodPressure": "150/95", "heartRate": 88, "bmi": 17.0, "temperature": 36.9},
                "symptoms": {"headache": "severe", "swelling": "mild"},
                "location": "rural",
                "accessToHealthcare": "difficult",
                "pregnancyWeek": 32,
                "history": {"conditions": [], "previousComplications": [], "previousPregnancies": 1},
            }
        },
    )
