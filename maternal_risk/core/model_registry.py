"""
Model registry and selection.

The registry maps each use-case onto a primary and a fallback model profile.
Selection is a pure function of (use-case, tier, registry): the only rule
beyond the configured route is the emergency override for Critical scores.
"""
from pydantic import BaseModel, ConfigDict, model_validator
from typing import Dict, Mapping, Optional

from maternal_risk.errors import ConfigurationError
from maternal_risk.schemas.internal_models import ModelProfile, RiskTier, Selection, UseCase, UseCaseRoute

EMERGENCY_TEMPERATURE = 0.2

DEFAULT_PROFILES = {
    "gpt-4": ModelProfile(name="gpt-4", provider="openai", max_tokens=8192, context_window=8000, temperature=0.3, cost_per_token=0.03),
    "gpt-3.5-turbo": ModelProfile(name="gpt-3.5-turbo", provider="openai", max_tokens=4096, context_window=4000, temperature=0.5, cost_per_token=0.002),
    "gemini-2.0-flash": ModelProfile(name="gemini-2.0-flash", provider="gemini", max_tokens=2048, context_window=32000, temperature=0.2, cost_per_token=0.0001),
}

DEFAULT_ROUTES = {
    UseCase.RISK_PREDICTION: UseCaseRoute(primary="gpt-4", fallback="gpt-3.5-turbo", temperature=0.3, context_window=8000),
    UseCase.SYMPTOM_ANALYSIS: UseCaseRoute(primary="gpt-3.5-turbo", fallback="gemini-2.0-flash", temperature=0.5, context_window=4000),
    UseCase.NUTRITION_ADVICE: UseCaseRoute(primary="gpt-4", fallback="gpt-3.5-turbo", temperature=0.6, context_window=4000),
    UseCase.EXERCISE_RECOMMENDATION: UseCaseRoute(primary="gpt-3.5-turbo", fallback="gemini-2.0-flash", temperature=0.5, context_window=4000),
    UseCase.MENTAL_HEALTH: UseCaseRoute(primary="gpt-4", fallback="gpt-3.5-turbo", temperature=0.7, context_window=4000),
    UseCase.EMERGENCY_ASSESSMENT: UseCaseRoute(primary="gpt-4", fallback="gemini-2.0-flash", temperature=0.2, context_window=4000),
    UseCase.TELEMEDICINE: UseCaseRoute(primary="gpt-4", fallback="gpt-3.5-turbo", temperature=0.6, context_window=4000),
}

DEFAULT_EMERGENCY_OVERRIDE_MODEL = "gpt-4"


class ModelRegistry(BaseModel):
    model_config = ConfigDict(frozen=True)

    profiles: Dict[str, ModelProfile]
    routes: Dict[UseCase, UseCaseRoute]
    emergency_override_model: str

    @model_validator(mode="after")
    def _check_references(self):
        missing_routes = [u.value for u in UseCase if u not in self.routes]
        if missing_routes:
            raise ValueError(f"No model route configured for use-cases: {missing_routes}")
        for use_case, route in self.routes.items():
            for name in (route.primary, route.fallback):
                if name not in self.profiles:
                    raise ValueError(f"Use-case {use_case.value} references unknown model '{name}'")
            if route.primary == route.fallback:
                raise ValueError(f"Use-case {use_case.value} must use a fallback distinct from its primary")
        if self.emergency_override_model not in self.profiles:
            raise ValueError(f"Unknown emergency override model '{self.emergency_override_model}'")
        return self

    def profile(self, name: str) -> ModelProfile:
        return self.profiles[name]

    def route(self, use_case: UseCase) -> UseCaseRoute:
        return self.routes[UseCase(use_case)]


def build_registry(
    fallback_overrides: Optional[Mapping[str, str]] = None,
    emergency_override_model: Optional[str] = None,
    profiles: Optional[Mapping[str, ModelProfile]] = None
) -> ModelRegistry:
    routes = dict(DEFAULT_ROUTES)
    for use_case, fallback in (fallback_overrides or {}).items():
        try:
            key = UseCase(use_case)
        except ValueError:
            raise ConfigurationError(f"Unknown use-case '{use_case}' in fallback model overrides")
        routes[key] = routes[key].model_copy(update={"fallback": fallback})
    try:
        return ModelRegistry(
            profiles=dict(profiles or DEFAULT_PROFILES),
            routes=routes,
            emergency_override_model=emergency_override_model or DEFAULT_EMERGENCY_OVERRIDE_MODEL
        )
    except ValueError as e:
        raise ConfigurationError(f"Invalid model registry: {e}") from e


def select(use_case: UseCase, tier: RiskTier, registry: ModelRegistry) -> Selection:
    route = registry.route(use_case)
    primary = registry.profile(route.primary)
    fallback = registry.profile(route.fallback)

    if tier != RiskTier.CRITICAL:
        return Selection(
            primary=primary,
            fallback=fallback,
            temperature=route.temperature,
            context_window=min(route.context_window, primary.context_window)
        )

    override = registry.profile(registry.emergency_override_model)
    if fallback.name == override.name:
        # Keep two distinct models in play.
        fallback = primary
    return Selection(
        primary=override,
        fallback=fallback,
        temperature=min(route.temperature, EMERGENCY_TEMPERATURE),
        context_window=min(route.context_window, override.context_window),
        emergency_override=True
    )


class ModelSelector:
    def __init__(self, registry: ModelRegistry):
        self.registry = registry

    def select(self, use_case: UseCase, tier: RiskTier) -> Selection:
        return select(use_case, tier, self.registry)
