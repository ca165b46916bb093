from ..exceptions import ConfigurationError
from .base import GenerationProvider, ProviderResponse, StagePrompt, classify_exception
from .http import HttpGenerationProvider
from .offline import OfflineProvider

__all__ = [
    "GenerationProvider",
    "ProviderResponse",
    "StagePrompt",
    "classify_exception",
    "HttpGenerationProvider",
    "OfflineProvider",
    "build_provider",
]


def build_provider(settings) -> GenerationProvider:
    """Provider selected by ``LLM_PROVIDER``."""
    if settings.LLM_PROVIDER == "disabled":
        return OfflineProvider()
    if not settings.PROVIDER_BASE_URL:
        raise ConfigurationError("LLM_PROVIDER=http requires PROVIDER_BASE_URL")
    return HttpGenerationProvider(
        base_url=settings.PROVIDER_BASE_URL,
        api_key=settings.PROVIDER_API_KEY,
        model=settings.PROVIDER_MODEL,
        timeout=settings.PROVIDER_TIMEOUT_SEC,
    )
