import pytest
from pydantic import ValidationError as PydanticValidationError

from maternal_risk.config import load_engine_config, parse_fallback_models
from maternal_risk.errors import ConfigurationError
from maternal_risk.schemas.internal_models import UseCase


def test_defaults_without_environment():
    config = load_engine_config({})
    assert config.rate_limit.requests_per_minute == 60
    assert config.rate_limit.burst_limit == 100
    assert config.rate_limit.cooldown_period_ms == 60000
    assert config.retry.max_retries == 3
    assert config.retry.initial_delay_ms == 1000
    assert config.retry.max_delay_ms == 30000
    assert config.retry.max_concurrent_in_flight is None
    assert config.registry.emergency_override_model == "gpt-4"
    assert config.scoring_policy == "weighted"


def test_environment_overrides():
    config = load_engine_config({
        "AI_REQUESTS_PER_MINUTE": "30",
        "AI_BURST_LIMIT": "5",
        "AI_MAX_RETRIES": "2",
        "AI_BACKOFF_JITTER": "0.25",
        "AI_MAX_CONCURRENT_IN_FLIGHT": "4",
        "AI_FALLBACK_MODELS": "risk_prediction=gemini-2.0-flash, telemedicine=gemini-2.0-flash",
        "AI_EMERGENCY_OVERRIDE_MODEL": "gemini-2.0-flash",
    })
    assert config.rate_limit.burst_limit == 5
    assert config.retry.max_retries == 2
    assert config.retry.jitter == 0.25
    assert config.retry.max_concurrent_in_flight == 4
    assert config.registry.route(UseCase.TELEMEDICINE).fallback == "gemini-2.0-flash"
    assert config.registry.emergency_override_model == "gemini-2.0-flash"


def test_config_is_immutable():
    config = load_engine_config({})
    with pytest.raises(PydanticValidationError):
        config.retry.max_retries = 10


@pytest.mark.parametrize("env", [
    {"AI_BURST_LIMIT": "lots"},
    {"AI_BURST_LIMIT": "0"},
    {"AI_MAX_RETRIES": "0"},
    {"AI_INITIAL_DELAY_MS": "5000", "AI_MAX_DELAY_MS": "1000"},
    {"AI_BACKOFF_JITTER": "2"},
    {"AI_FALLBACK_MODELS": "risk_prediction"},
    {"AI_FALLBACK_MODELS": "risk_prediction=gpt-4"},
    {"AI_EMERGENCY_OVERRIDE_MODEL": "unknown-model"},
    {"RISK_SCORING_POLICY": "vibes"},
])
def test_malformed_values_fail_fast(env):
    with pytest.raises(ConfigurationError):
        load_engine_config(env)


def test_parse_fallback_models_skips_blank_entries():
    assert parse_fallback_models(" a=b ,, c=d ") == {"a": "b", "c": "d"}
