"""
Generation provider boundary
"""

import asyncio
import errno
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError as PydanticValidationError

from ..exceptions import NonTransientProviderError, ProviderError, TransientProviderError
from ..models import Citation, ConfidenceLevel, StageId

RETRYABLE_STATUSES = {408, 429, 500, 502, 503, 504}
TRANSIENT_ERRNOS = {errno.ENETUNREACH, errno.EHOSTUNREACH, errno.ECONNRESET, errno.ECONNABORTED}


@dataclass
class StagePrompt:
    """Structured request for one stage. Wording is the adapter's business."""
    stage: StageId
    product_name: str
    keywords: List[str]
    language: str = "ko"
    content: str = ""
    existing_description: Optional[str] = None  # reference copy to improve on
    product_category: Optional[str] = None
    context: Dict[str, Dict[str, Any]] = field(default_factory=dict)  # dependency payloads by stage id
    parameters: Dict[str, Any] = field(default_factory=dict)
    confidence: ConfidenceLevel = ConfidenceLevel.MEDIUM
    grounded: bool = False


@dataclass
class ProviderResponse:
    data: Any
    citations: List[Citation] = field(default_factory=list)
    search_queries: List[str] = field(default_factory=list)


class GenerationProvider(ABC):
    name = "provider"

    @abstractmethod
    async def generate(self, prompt: StagePrompt) -> ProviderResponse:
        """Run one stage. Raise on failure; callers classify the error."""

    async def close(self) -> None:
        return None


def classify_exception(exc: BaseException, provider: Optional[str] = None,
                       stage: Optional[str] = None) -> ProviderError:
    """
    Map a raw exception onto the provider error taxonomy.

    Transient: timeouts, network/protocol failures, resets, unreachable
    networks, HTTP 408/429/5xx. Everything else is non-transient.
    """
    if isinstance(exc, ProviderError):
        if exc.stage is None:
            exc.stage = stage
        return exc

    message = str(exc) or exc.__class__.__name__

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return TransientProviderError(f"Timed out: {message}", provider=provider, stage=stage)

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        error_cls = TransientProviderError if status in RETRYABLE_STATUSES or status >= 500 else NonTransientProviderError
        return error_cls(f"HTTP {status} from provider", provider=provider, status_code=status, stage=stage)

    if isinstance(exc, (httpx.NetworkError, httpx.RemoteProtocolError)):
        return TransientProviderError(f"Network error: {message}", provider=provider, stage=stage)

    if isinstance(exc, (ConnectionResetError, ConnectionRefusedError, ConnectionAbortedError)):
        return TransientProviderError(f"Connection error: {message}", provider=provider, stage=stage)

    if isinstance(exc, OSError) and exc.errno in TRANSIENT_ERRNOS:
        return TransientProviderError(f"Network unreachable: {message}", provider=provider, stage=stage)

    if isinstance(exc, (PydanticValidationError, ValueError)):
        return NonTransientProviderError(f"Malformed provider response: {message}", provider=provider, stage=stage)

    return NonTransientProviderError(f"{exc.__class__.__name__}: {message}", provider=provider, stage=stage)
