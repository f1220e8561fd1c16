"""
Assessment pipeline.

score -> select model -> build prompt -> invoke through the gateway -> assemble.

The deterministic score is computed first and is never lost: every failure on
the narrative path degrades to a report with ``narrativeUnavailable`` set.
Only structurally invalid input raises.
"""
import logging
import uuid
from typing import Any, Optional

from maternal_risk.config import EngineConfig, load_engine_config, settings
from maternal_risk.core.clock import Clock, SYSTEM_CLOCK
from maternal_risk.core.invocation_gateway import InvocationGateway
from maternal_risk.core.model_registry import ModelSelector
from maternal_risk.core.rate_limiter import TokenBucketRateLimiter
from maternal_risk.core.result_assembler import ResultAssembler
from maternal_risk.engines.model_provider import ModelProvider, RoutingProvider
from maternal_risk.engines.prompt_builder import PromptBuilder
from maternal_risk.engines.rule_engine import RiskScorer, coerce_input
from maternal_risk.errors import TransformationError
from maternal_risk.schemas.internal_models import InvocationRequest, Priority, RiskScore, RiskTier, UseCase
from maternal_risk.schemas.response_schema import RiskReport
from maternal_risk.services.alert_service import EmergencyAlertService
from maternal_risk.services.audit_logger import AuditLogger
from maternal_risk.services.metrics_service import MetricsService

logger = logging.getLogger("AssessmentService")

PRIORITY_BY_TIER = {
    RiskTier.LOW: Priority.NORMAL,
    RiskTier.MEDIUM: Priority.NORMAL,
    RiskTier.HIGH: Priority.HIGH,
    RiskTier.CRITICAL: Priority.EMERGENCY,
}


class RiskAssessmentService:
    def __init__(
        self,
        scorer: RiskScorer,
        selector: ModelSelector,
        gateway: Optional[InvocationGateway] = None,
        assembler: Optional[ResultAssembler] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        alert_service: Optional[EmergencyAlertService] = None,
        audit_logger: Optional[AuditLogger] = None
    ):
        self.scorer = scorer
        self.selector = selector
        self.gateway = gateway
        self.assembler = assembler or ResultAssembler()
        self.prompt_builder = prompt_builder or PromptBuilder()
        self.alert_service = alert_service or EmergencyAlertService()
        self.audit = audit_logger or AuditLogger()

    async def assess(self, patient: Any, use_case: UseCase = UseCase.RISK_PREDICTION) -> RiskReport:
        data = coerce_input(patient)
        score = self.scorer.score(data)
        assessment_id = uuid.uuid4().hex[:12]
        MetricsService.record_assessment(score.tier.value)
        logger.info(f"[{assessment_id}] Deterministic score {score.value} ({score.tier.value}) via {score.policy}")

        if score.tier == RiskTier.CRITICAL:
            await self.alert_service.trigger_emergency_alert(score, assessment_id)

        report = await self._narrate(assessment_id, data, score, UseCase(use_case))
        self.audit.log_assessment(assessment_id, score, report)
        return report

    async def _narrate(self, assessment_id: str, data, score: RiskScore, use_case: UseCase) -> RiskReport:
        if self.gateway is None:
            return self._degrade(assessment_id, score, "AI Component Unavailable: no model gateway configured")

        try:
            selection = self.selector.select(use_case, score.tier)
            request = InvocationRequest(
                use_case=use_case,
                payload=self.prompt_builder.build(data, score, use_case),
                priority=PRIORITY_BY_TIER[score.tier],
                tier=score.tier
            )
            result = await self.gateway.invoke(request, selection)
        except Exception as e:
            logger.error(f"[{assessment_id}] Narrative invocation failed: {e}")
            return self._degrade(assessment_id, score, f"AI Component Unavailable: {type(e).__name__}: {e}")

        if not result.ok:
            error = result.error
            return self._degrade(assessment_id, score, f"AI Component Unavailable: {type(error).__name__}: {error}", result)

        try:
            return self.assembler.assemble(score, result)
        except TransformationError as e:
            self.audit.log_transformation_failure(assessment_id, result.model_used, str(e), e.raw_payload)
            return self._degrade(assessment_id, score, f"Model output unusable: {e}", result)

    def _degrade(self, assessment_id: str, score: RiskScore, reason: str, result=None) -> RiskReport:
        logger.warning(f"[{assessment_id}] Returning deterministic report without narrative: {reason}")
        MetricsService.record_degraded(reason.split(":", 1)[0])
        return self.assembler.degraded(score, reason, result)


def build_provider() -> Optional[ModelProvider]:
    """Routes each profile to its vendor client. Returns None when no credentials are configured."""
    providers = {}
    if settings.GEMINI_API_KEY:
        from maternal_risk.engines.gemini_engine import GeminiProvider
        providers["gemini"] = GeminiProvider(api_key=settings.GEMINI_API_KEY)
        logger.info("Gemini provider initialized.")
    if settings.OPENAI_API_KEY:
        from maternal_risk.engines.openai_engine import OpenAICompatibleProvider
        providers["openai"] = OpenAICompatibleProvider(api_key=settings.OPENAI_API_KEY, base_url=settings.OPENAI_API_URL)
        logger.info("OpenAI-compatible provider initialized.")
    if not providers:
        logger.warning("No AI provider credentials configured; narratives will be unavailable.")
        return None
    return RoutingProvider(providers)


def create_assessment_service(
    config: Optional[EngineConfig] = None,
    provider: Optional[ModelProvider] = None,
    clock: Clock = SYSTEM_CLOCK,
    alert_service: Optional[EmergencyAlertService] = None
) -> RiskAssessmentService:
    config = config or load_engine_config()
    provider = provider or build_provider()
    gateway = None
    if provider is not None:
        gateway = InvocationGateway(
            provider=provider,
            rate_limiter=TokenBucketRateLimiter(config.rate_limit, clock=clock),
            policy=config.retry,
            clock=clock
        )
    return RiskAssessmentService(
        scorer=RiskScorer(policy=config.scoring_policy),
        selector=ModelSelector(config.registry),
        gateway=gateway,
        alert_service=alert_service
    )
