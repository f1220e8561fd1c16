import os
from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, ValidationError as PydanticValidationError
from typing import Dict, Optional

from maternal_risk.core.invocation_gateway import RetryPolicy
from maternal_risk.core.model_registry import DEFAULT_EMERGENCY_OVERRIDE_MODEL, ModelRegistry, build_registry
from maternal_risk.core.rate_limiter import RateLimitConfig
from maternal_risk.engines.rule_engine import SCORING_POLICIES
from maternal_risk.errors import ConfigurationError

load_dotenv()


class Config:
    GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
    OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
    OPENAI_API_URL = os.getenv("OPENAI_API_URL", "https://api.openai.com/v1")
    ENV = os.getenv("ENV", "development")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    VERSION_MANIFEST = {
        "engine": "1.0.0",
        "risk_catalog": "weighted-v1",
        "build_id": os.getenv("BUILD_ID", "DEV")
    }


settings = Config()


class EngineConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    rate_limit: RateLimitConfig
    retry: RetryPolicy
    registry: ModelRegistry
    scoring_policy: str = "weighted"


def _int(env: Dict[str, str], key: str, default: Optional[int]) -> Optional[int]:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got '{raw}'")


def _float(env: Dict[str, str], key: str, default: float) -> float:
    raw = env.get(key, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got '{raw}'")


def parse_fallback_models(raw: str) -> Dict[str, str]:
    """Parses ``use_case=model,use_case=model`` into a mapping."""
    overrides = {}
    for item in raw.split(","):
        item = item.strip()
        if not item:
            continue
        use_case, sep, model = item.partition("=")
        if not sep or not use_case.strip() or not model.strip():
            raise ConfigurationError(f"AI_FALLBACK_MODELS entry '{item}' must look like use_case=model")
        overrides[use_case.strip()] = model.strip()
    return overrides


def load_engine_config(env: Optional[Dict[str, str]] = None) -> EngineConfig:
    """
    Builds the engine configuration from environment variables.
    Raises ConfigurationError on any malformed or inconsistent value.
    """
    env = dict(os.environ if env is None else env)
    defaults_rl = RateLimitConfig()
    defaults_retry = RetryPolicy()

    try:
        rate_limit = RateLimitConfig(
            requests_per_minute=_float(env, "AI_REQUESTS_PER_MINUTE", defaults_rl.requests_per_minute),
            burst_limit=_int(env, "AI_BURST_LIMIT", defaults_rl.burst_limit),
            cooldown_period_ms=_int(env, "AI_COOLDOWN_PERIOD_MS", defaults_rl.cooldown_period_ms)
        )
        retry = RetryPolicy(
            max_retries=_int(env, "AI_MAX_RETRIES", defaults_retry.max_retries),
            initial_delay_ms=_int(env, "AI_INITIAL_DELAY_MS", defaults_retry.initial_delay_ms),
            max_delay_ms=_int(env, "AI_MAX_DELAY_MS", defaults_retry.max_delay_ms),
            attempt_timeout_ms=_int(env, "AI_ATTEMPT_TIMEOUT_MS", defaults_retry.attempt_timeout_ms),
            queue_wait_timeout_ms=_int(env, "AI_QUEUE_WAIT_TIMEOUT_MS", defaults_retry.queue_wait_timeout_ms),
            jitter=_float(env, "AI_BACKOFF_JITTER", defaults_retry.jitter),
            max_concurrent_in_flight=_int(env, "AI_MAX_CONCURRENT_IN_FLIGHT", None)
        )
    except PydanticValidationError as e:
        raise ConfigurationError(f"Invalid AI invocation settings: {e}") from e

    registry = build_registry(
        fallback_overrides=parse_fallback_models(env.get("AI_FALLBACK_MODELS", "")),
        emergency_override_model=env.get("AI_EMERGENCY_OVERRIDE_MODEL", "").strip() or DEFAULT_EMERGENCY_OVERRIDE_MODEL
    )

    scoring_policy = env.get("RISK_SCORING_POLICY", "").strip() or "weighted"
    if scoring_policy not in SCORING_POLICIES:
        raise ConfigurationError(
            f"RISK_SCORING_POLICY must be one of {sorted(SCORING_POLICIES)}, got '{scoring_policy}'"
        )

    return EngineConfig(rate_limit=rate_limit, retry=retry, registry=registry, scoring_policy=scoring_policy)
