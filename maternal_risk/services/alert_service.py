import inspect
import logging
from typing import Any, Callable, Dict, Optional

from maternal_risk.schemas.internal_models import RiskScore, RiskTier

logger = logging.getLogger("AlertService")

AlertNotifier = Callable[[Dict[str, Any]], Any]


class EmergencyAlertService:
    """
    Emergency workflow hook. Only the deterministic tier can trigger it; the
    model's advisory level is never consulted here.
    """

    def __init__(self, notifier: Optional[AlertNotifier] = None):
        self.notifier = notifier

    async def trigger_emergency_alert(self, score: RiskScore, assessment_id: str) -> bool:
        if score.tier != RiskTier.CRITICAL:
            return False

        alert = {
            "type": "CRITICAL_RISK_ALERT",
            "assessment_id": assessment_id,
            "risk": score.tier.value,
            "score": score.value,
            "factors": [f.factor_id for f in score.contributing_factors],
            "status": "pending"
        }
        logger.critical(f"EMERGENCY_ALERT: assessment {assessment_id} scored {score.value} ({score.tier.value})")

        if self.notifier is None:
            return True
        try:
            outcome = self.notifier(alert)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as e:
            logger.error(f"Emergency alert delivery failed for {assessment_id}: {e}")
            return False
        return True
