from typing import Optional
from maternal_risk.schemas.internal_models import RiskTier

SEVERITY_ORDER = {
    RiskTier.LOW: 1,
    RiskTier.MEDIUM: 2,
    RiskTier.HIGH: 3,
    RiskTier.CRITICAL: 4
}

# Narrative labels the model may use, mapped onto the deterministic tiers.
NARRATIVE_LEVELS = {
    "excellent": RiskTier.LOW,
    "very good": RiskTier.LOW,
    "good": RiskTier.LOW,
    "low": RiskTier.LOW,
    "moderate": RiskTier.MEDIUM,
    "medium": RiskTier.MEDIUM,
    "high": RiskTier.HIGH,
    "very high": RiskTier.HIGH,
    "critical": RiskTier.CRITICAL,
    "emergency": RiskTier.CRITICAL
}


def get_severity_score(tier: RiskTier) -> int:
    return SEVERITY_ORDER.get(tier, 0)


def is_escalation(base_tier: RiskTier, target_tier: RiskTier) -> bool:
    return get_severity_score(target_tier) > get_severity_score(base_tier)


def parse_narrative_level(level: Optional[str]) -> Optional[RiskTier]:
    if not level:
        return None
    return NARRATIVE_LEVELS.get(level.strip().lower())
