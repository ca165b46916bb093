"""
Custom exceptions for the generation pipeline
"""

from typing import Any, Optional


class GeoPipelineError(Exception):
    """Base exception for the generation pipeline"""
    pass


class ConfigurationError(GeoPipelineError):
    """Configuration related errors"""
    pass


class ValidationError(GeoPipelineError):
    """Request validation errors"""
    pass


class StageGraphError(GeoPipelineError):
    """Stage registry declares an unknown dependency or a cycle"""
    pass


class ProviderError(GeoPipelineError):
    """Generation provider errors"""
    def __init__(self, message: str, provider: str = None, status_code: int = None, stage: str = None):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.stage = stage


class TransientProviderError(ProviderError):
    """Timeout, connection reset, network unreachable. Retried with backoff."""
    pass


class NonTransientProviderError(ProviderError):
    """Malformed response or validation failure. Never retried."""
    pass


class CacheError(GeoPipelineError):
    """Durable cache backend failure"""
    def __init__(self, message: str, key: str = None):
        super().__init__(message)
        self.key = key


class PipelineAbortedError(GeoPipelineError):
    """Run-level failure; carries the progress snapshot for diagnostics"""
    def __init__(self, message: str, progress: Optional[Any] = None):
        super().__init__(message)
        self.progress = progress



class PipelineFailedError(PipelineAbortedError):
    """Run stopped by an unexpected internal error rather than bad input"""
    pass
