from typing import Dict, Protocol, runtime_checkable
from maternal_risk.errors import ProviderError4xx
from maternal_risk.schemas.internal_models import ModelProfile, ModelResponse


@runtime_checkable
class ModelProvider(Protocol):
    """Remote model capability. Implementations raise the errors in maternal_risk.errors."""

    async def invoke(self, profile: ModelProfile, prompt: str, max_tokens: int, temperature: float) -> ModelResponse:
        ...


class RoutingProvider:
    def __init__(self, providers: Dict[str, ModelProvider]):
        self.providers = dict(providers)

    async def invoke(self, profile: ModelProfile, prompt: str, max_tokens: int, temperature: float) -> ModelResponse:
        provider = self.providers.get(profile.provider)
        if provider is None:
            raise ProviderError4xx(f"No provider configured for '{profile.provider}' (model {profile.name})")
        return await provider.invoke(profile, prompt, max_tokens, temperature)

