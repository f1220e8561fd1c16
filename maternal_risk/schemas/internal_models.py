from datetime import datetime, timezone
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, Optional, Tuple


class RiskTier(str, Enum):
    LOW = "Low"
    MEDIUM = "Medium"
    HIGH = "High"
    CRITICAL = "Critical"


class FactorCategory(str, Enum):
    MEDICAL = "MEDICAL"
    SOCIOECONOMIC = "SOCIOECONOMIC"
    HEALTHCARE_ACCESS = "HEALTHCARE_ACCESS"


class UseCase(str, Enum):
    RISK_PREDICTION = "risk_prediction"
    SYMPTOM_ANALYSIS = "symptom_analysis"
    NUTRITION_ADVICE = "nutrition_advice"
    EXERCISE_RECOMMENDATION = "exercise_recommendation"
    MENTAL_HEALTH = "mental_health"
    EMERGENCY_ASSESSMENT = "emergency_assessment"
    TELEMEDICINE = "telemedicine"


class ContributingFactor(BaseModel):
    model_config = ConfigDict(frozen=True)

    factor_id: str
    category: FactorCategory
    contribution: float
    label: str = ""


class RiskScore(BaseModel):
    model_config = ConfigDict(frozen=True)

    value: float = Field(..., ge=0.0, le=100.0)
    tier: RiskTier
    contributing_factors: Tuple[ContributingFactor, ...] = ()
    policy: str = "weighted"


class ModelProfile(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    provider: str = "openai"
    max_tokens: int = Field(..., gt=0)
    context_window: int = Field(..., gt=0)
    temperature: float = Field(0.7, ge=0.0, le=2.0)
    cost_per_token: float = Field(0.0, ge=0.0)


class UseCaseRoute(BaseModel):
    model_config = ConfigDict(frozen=True)

    primary: str
    fallback: str
    temperature: float = Field(..., ge=0.0, le=2.0)
    context_window: int = Field(..., gt=0)


class Selection(BaseModel):
    model_config = ConfigDict(frozen=True)

    primary: ModelProfile
    fallback: ModelProfile
    temperature: float
    context_window: int
    emergency_override: bool = False


class Priority(str, Enum):
    NORMAL = "normal"
    HIGH = "high"
    EMERGENCY = "emergency"


class InvocationRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    use_case: UseCase
    payload: str
    priority: Priority = Priority.NORMAL
    tier: RiskTier = RiskTier.LOW


class ModelResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    text: Optional[str] = None
    structured: Optional[Dict[str, Any]] = None
    prompt_tokens: int = 0
    completion_tokens: int = 0

    @property
    def raw(self) -> Any:
        return self.structured if self.structured is not None else self.text


class AttemptOutcome(str, Enum):
    SUCCESS = "SUCCESS"
    TIMEOUT = "TIMEOUT"
    PROVIDER_ERROR = "PROVIDER_ERROR"
    CANCELLED = "CANCELLED"


class InvocationStatus(str, Enum):
    SUCCESS = "SUCCESS"
    FATAL_FAILURE = "FATAL_FAILURE"


class InvocationAttempt(BaseModel):
    model_config = ConfigDict(frozen=True)

    attempt_number: int
    model: str
    started_at: float
    outcome: AttemptOutcome
    backoff_seconds: float = 0.0
    is_fallback: bool = False
    error: Optional[str] = None


class InvocationResult(BaseModel):
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True, protected_namespaces=())

    status: InvocationStatus
    model_used: Optional[str] = None
    attempts: Tuple[InvocationAttempt, ...] = ()
    response: Optional[ModelResponse] = None
    error: Optional[BaseException] = None
    completed_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def ok(self) -> bool:
        return self.status == InvocationStatus.SUCCESS

    @property
    def attempt_count(self) -> int:
        return len(self.attempts)
