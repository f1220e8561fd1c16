import logging
import time
from typing import Optional

import httpx
from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from maternal_risk.errors import (
    AttemptTimeoutError, ProviderError4xx, ProviderError5xx, ProviderNetworkError, ProviderRateLimited
)
from maternal_risk.schemas.internal_models import ModelProfile, ModelResponse
from maternal_risk.services.metrics_service import MetricsService

logger = logging.getLogger(__name__)


def classify_api_error(e: genai_errors.APIError):
    code = getattr(e, "code", None) or 0
    if code == 429:
        return ProviderRateLimited(f"Gemini rate limited: {e}", status_code=code)
    if code in (408, 504):
        return AttemptTimeoutError(f"Gemini deadline exceeded: {e}", status_code=code)
    if 400 <= code < 500:
        return ProviderError4xx(f"Gemini rejected request: {e}", status_code=code)
    return ProviderError5xx(f"Gemini server error: {e}", status_code=code or None)


class GeminiProvider:
    def __init__(self, api_key: str, client: Optional["genai.Client"] = None):
        self.api_key = api_key
        self.client = client or genai.Client(api_key=api_key)

    async def invoke(self, profile: ModelProfile, prompt: str, max_tokens: int, temperature: float) -> ModelResponse:
        start = time.time()
        try:
            response = await self.client.aio.models.generate_content(
                model=profile.name,
                contents=prompt,
                config=types.GenerateContentConfig(
                    temperature=temperature,
                    max_output_tokens=max_tokens,
                    response_mime_type="application/json"
                )
            )
        except genai_errors.APIError as e:
            error = classify_api_error(e)
            raise error from e
        except httpx.TimeoutException as e:
            raise AttemptTimeoutError(f"Gemini request timed out: {e}") from e
        except httpx.TransportError as e:
            raise ProviderNetworkError(f"Gemini unreachable: {e}") from e

        MetricsService.record_latency(profile.name, time.time() - start)
        usage = getattr(response, "usage_metadata", None)
        return ModelResponse(
            text=response.text,
            prompt_tokens=getattr(usage, "prompt_token_count", None) or 0,
            completion_tokens=getattr(usage, "candidates_token_count", None) or 0
        )
