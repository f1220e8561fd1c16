from prometheus_client import Counter, Histogram, generate_latest, CONTENT_TYPE_LATEST
import time
import logging
from typing import Dict, Any, Tuple

logger = logging.getLogger("MetricsService")

ATTEMPT_COUNT = Counter(
    "risk_model_attempts_total",
    "Model invocation attempts",
    ["model", "outcome"]
)

FALLBACK_COUNT = Counter(
    "risk_model_fallbacks_total",
    "Fallback model attempts after primary exhaustion",
    ["use_case"]
)

RATE_LIMIT_REJECTIONS = Counter(
    "risk_rate_limit_rejections_total",
    "Invocations rejected because the rate-limit queue wait was exceeded"
)

LATENCY_HISTOGRAM = Histogram(
    "risk_model_latency_seconds",
    "Latency of successful model calls in seconds",
    ["model"]
)

ERROR_COUNT = Counter(
    "risk_model_errors_total",
    "Model invocation errors",
    ["model", "error_type"]
)

DEGRADED_REPORTS = Counter(
    "risk_degraded_reports_total",
    "Reports returned without an AI narrative",
    ["reason"]
)

ASSESSMENT_COUNT = Counter(
    "risk_assessments_total",
    "Deterministic risk assessments by tier",
    ["tier"]
)


class MetricsService:
    _failure_history = {}
    WINDOW_SECONDS = 600
    UNHEALTHY_RATE = 0.1

    @staticmethod
    def record_latency(model: str, duration: float):
        LATENCY_HISTOGRAM.labels(model=model).observe(duration)

    @staticmethod
    def record_attempt(model: str, outcome: str):
        ATTEMPT_COUNT.labels(model=model, outcome=outcome).inc()
        MetricsService._track_health(model, success=(outcome == "SUCCESS"))

    @staticmethod
    def record_error(model: str, error_type: str):
        ERROR_COUNT.labels(model=model, error_type=error_type).inc()

    @staticmethod
    def record_fallback(use_case: str):
        FALLBACK_COUNT.labels(use_case=use_case).inc()

    @staticmethod
    def record_rate_limit_rejection():
        RATE_LIMIT_REJECTIONS.inc()

    @staticmethod
    def record_degraded(reason: str):
        DEGRADED_REPORTS.labels(reason=reason).inc()

    @staticmethod
    def record_assessment(tier: str):
        ASSESSMENT_COUNT.labels(tier=tier).inc()

    @classmethod
    def _track_health(cls, model: str, success: bool):
        now = time.time()
        if model not in cls._failure_history:
            cls._failure_history[model] = []

        cls._failure_history[model].append((now, success))
        cls._failure_history[model] = [x for x in cls._failure_history[model] if now - x[0] < cls.WINDOW_SECONDS]

        data = cls._failure_history[model]
        if len(data) >= 10:
            failures = len([x for x in data if not x[1]])
            rate = failures / len(data)
            if rate > cls.UNHEALTHY_RATE:
                logger.critical(f"CRITICAL_SYS_ALERT: {model} failure rate is {rate*100:.1f}%!")

    @classmethod
    def get_health_report(cls) -> Dict[str, Any]:
        report = {}
        for model, data in cls._failure_history.items():
            if not data: continue
            failures = len([x for x in data if not x[1]])
            report[model] = {
                "status": "UNHEALTHY" if (failures / len(data)) > cls.UNHEALTHY_RATE else "HEALTHY",
                "error_rate": f"{(failures / len(data)) * 100:.1f}%",
                "sample_size": len(data)
            }
        return report

    @classmethod
    def reset_health(cls):
        cls._failure_history = {}


def render_metrics() -> Tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST
