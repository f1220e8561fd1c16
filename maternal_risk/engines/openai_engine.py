import logging
import time
from typing import Optional

import httpx

from maternal_risk.errors import (
    AttemptTimeoutError, ProviderError4xx, ProviderError5xx, ProviderNetworkError, ProviderRateLimited
)
from maternal_risk.schemas.internal_models import ModelProfile, ModelResponse
from maternal_risk.services.metrics_service import MetricsService

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.openai.com/v1"


def classify_status(status_code: int, detail: str):
    if status_code == 429:
        return ProviderRateLimited(f"Provider rate limited: {detail}", status_code=status_code)
    if status_code == 408:
        return AttemptTimeoutError(f"Provider request timeout: {detail}", status_code=status_code)
    if 400 <= status_code < 500:
        return ProviderError4xx(f"Provider rejected request ({status_code}): {detail}", status_code=status_code)
    return ProviderError5xx(f"Provider server error ({status_code}): {detail}", status_code=status_code)


class OpenAICompatibleProvider:
    """Chat-completions client for OpenAI-compatible endpoints."""

    def __init__(self, api_key: str, base_url: str = DEFAULT_BASE_URL, http_client: Optional[httpx.AsyncClient] = None):
        self.api_key = api_key
        self.base_url = (base_url or DEFAULT_BASE_URL).rstrip("/")
        self.http_client = http_client or httpx.AsyncClient(
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            timeout=None
        )

    async def invoke(self, profile: ModelProfile, prompt: str, max_tokens: int, temperature: float) -> ModelResponse:
        body = {
            "model": profile.name,
            "messages": [{"role": "user", "content": prompt}],
            "max_tokens": max_tokens,
            "temperature": temperature,
            "response_format": {"type": "json_object"}
        }
        headers = {"Authorization": f"Bearer {self.api_key}", "Content-Type": "application/json"}
        start = time.time()
        try:
            response = await self.http_client.post(f"{self.base_url}/chat/completions", json=body, headers=headers)
        except httpx.TimeoutException as e:
            raise AttemptTimeoutError(f"Provider request timed out: {e}") from e
        except httpx.TransportError as e:
            raise ProviderNetworkError(f"Provider unreachable: {e}") from e

        if response.status_code >= 400:
            raise classify_status(response.status_code, response.text[:500])

        MetricsService.record_latency(profile.name, time.time() - start)
        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise ProviderError5xx(f"Unexpected provider response body: {e}", status_code=response.status_code) from e

        usage = data.get("usage") or {}
        return ModelResponse(
            text=content,
            prompt_tokens=usage.get("prompt_tokens", 0),
            completion_tokens=usage.get("completion_tokens", 0)
        )

    async def aclose(self) -> None:
        await self.http_client.aclose()
