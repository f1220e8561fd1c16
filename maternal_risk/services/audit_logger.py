import logging
from typing import Any, Optional

from maternal_risk.schemas.internal_models import RiskScore
from maternal_risk.schemas.response_schema import RiskReport

logger = logging.getLogger("ClinicalAudit")

RAW_PAYLOAD_LIMIT = 4000


class AuditLogger:
    @staticmethod
    def log_assessment(assessment_id: str, score: RiskScore, report: RiskReport):
        audit_entry = {
            "event": "RISK_ASSESSMENT",
            "assessment_id": assessment_id,
            "risk_score": score.value,
            "risk_level": score.tier.value,
            "policy": score.policy,
            "factors": [f.factor_id for f in score.contributing_factors],
            "model_used": report.metadata.model_used,
            "attempt_count": report.metadata.attempt_count,
            "narrative_unavailable": report.narrative_unavailable,
            "model_risk_level": report.advisory.model_risk_level if report.advisory else None
        }
        logger.info(f"AUDIT_ASSESSMENT: {audit_entry}")

    @staticmethod
    def log_transformation_failure(assessment_id: str, model_used: Optional[str], error: str, raw_payload: Any):
        raw = str(raw_payload)
        if len(raw) > RAW_PAYLOAD_LIMIT:
            raw = raw[:RAW_PAYLOAD_LIMIT] + "...[truncated]"
        logger.warning(
            f"AUDIT_ACTION: llm_format_violation | Assessment: {assessment_id} | Model: {model_used} "
            f"| Error: {error} | Raw: {raw}"
        )
