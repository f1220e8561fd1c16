from typing import Any, Optional


class RiskEngineError(Exception):
    """Base class for every error raised by the risk-assessment engine."""


class ConfigurationError(RiskEngineError):
    pass


class ValidationError(RiskEngineError):
    """Patient input is structurally invalid (wrong type, not just a bad value)."""

    def __init__(self, message: str, errors: Optional[list] = None):
        super().__init__(message)
        self.errors = errors or []


class ProviderError(RiskEngineError):
    retryable = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AttemptTimeoutError(ProviderError, TimeoutError):
    retryable = True


class ProviderError4xx(ProviderError):
    """Malformed or rejected request. Never retried."""


class ProviderError5xx(ProviderError):
    retryable = True


class ProviderRateLimited(ProviderError):
    retryable = True


class ProviderNetworkError(ProviderError):
    retryable = True


class ResourceExhausted(RiskEngineError):
    """Retries and fallback failed, or the request ran out of time or capacity."""

    def __init__(self, message: str, last_error: Optional[BaseException] = None):
        super().__init__(message)
        self.last_error = last_error


class RateLimitExceeded(ResourceExhausted):
    def __init__(self, message: str, wait_seconds: float = 0.0):
        super().__init__(message)
        self.wait_seconds = wait_seconds


class InvocationCancelled(RiskEngineError):
    pass


class TransformationError(RiskEngineError):
    def __init__(self, message: str, raw_payload: Any = None):
        super().__init__(message)
        self.raw_payload = raw_payload
