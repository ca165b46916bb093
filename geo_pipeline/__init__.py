"""
GEO Content Pipeline - grounded multi-section product content generation
"""

__version__ = "2.0.0"
__author__ = "GEO Pipeline Team"

__all__ = [
    "GenerationRequest",
    "GenerationResult",
    "PipelineOrchestrator",
    "PipelineRun",
    "Settings",
    "TieredCache",
    "__version__",
    "__author__",
]


def __getattr__(name: str):
    """Lazy import to avoid import-time side effects."""
    if name == "GenerationRequest":
        from .models import GenerationRequest
        return GenerationRequest
    elif name == "GenerationResult":
        from .models import GenerationResult
        return GenerationResult
    elif name == "PipelineOrchestrator":
        from .orchestration.orchestrator import PipelineOrchestrator
        return PipelineOrchestrator
    elif name == "PipelineRun":
        from .orchestration.orchestrator import PipelineRun
        return PipelineRun
    elif name == "Settings":
        from geo_pipeline.config.settings import Settings
        return Settings
    elif name == "TieredCache":
        from .data.cache import TieredCache
        return TieredCache
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
