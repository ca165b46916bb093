"""Deterministic provider used when no LLM backend is configured."""

from ..models import GenerationRequest
from ..orchestration.fallbacks import build_fallback
from .base import GenerationProvider, ProviderResponse, StagePrompt


class OfflineProvider(GenerationProvider):
    """Answers every stage with template content and no citations."""

    name = "offline"

    async def generate(self, prompt: StagePrompt) -> ProviderResponse:
        request = GenerationRequest(
            product_name=prompt.product_name,
            keywords=prompt.keywords,
            content=prompt.content,
            language=prompt.language,
        )
        return ProviderResponse(data=build_fallback(prompt.stage, request))
