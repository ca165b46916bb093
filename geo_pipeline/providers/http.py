"""HTTP generation provider (JSON over httpx)."""

import json
import re
from typing import Any, Dict, List, Optional

import httpx
import structlog

from ..exceptions import NonTransientProviderError
from ..models import Citation
from ..quality.fabrication import anti_fabrication_prompt
from .base import GenerationProvider, ProviderResponse, StagePrompt

logger = structlog.get_logger()

_CODE_FENCE = re.compile(r"^```(?:json)?\s*|\s*```$", re.MULTILINE)


def _parse_text(text: str) -> Any:
    """Structured data from free text; tolerates ```json fences."""
    cleaned = _CODE_FENCE.sub("", text.strip()).strip()
    return json.loads(cleaned)


class HttpGenerationProvider(GenerationProvider):
    """
    Posts one request per stage to ``{base_url}/v1/generate``.

    The endpoint answers with ``{"data": {...}}`` or ``{"text": "..."}``,
    plus optional ``citations`` (uri/title pairs) and ``search_queries``.
    """

    name = "http"

    def __init__(self, base_url: str, api_key: Optional[str] = None, model: str = "gemini-2.5-flash",
                 timeout: float = 60.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        headers = {"Content-Type": "application/json", "User-Agent": "geo-content-pipeline/1.0"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self.model = model
        self.client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout, connect=min(10.0, timeout)),
            transport=transport,
        )

    def _body(self, prompt: StagePrompt) -> Dict[str, Any]:
        return {
            "model": self.model,
            "stage": prompt.stage.value,
            "system_instruction": anti_fabrication_prompt(prompt.confidence),
            "grounded": prompt.grounded,
            "input": {
                "product_name": prompt.product_name,
                "keywords": prompt.keywords,
                "language": prompt.language,
                "content": prompt.content,
                "existing_description": prompt.existing_description,
                "product_category": prompt.product_category,
                "context": prompt.context,
                "parameters": prompt.parameters,
            },
        }

    async def generate(self, prompt: StagePrompt) -> ProviderResponse:
        response = await self.client.post("/v1/generate", json=self._body(prompt))
        response.raise_for_status()
        body = response.json()
        if not isinstance(body, dict):
            raise NonTransientProviderError("Provider response is not an object",
                                            provider=self.name, stage=prompt.stage.value)

        if "data" in body:
            data = body["data"]
        elif isinstance(body.get("text"), str):
            data = _parse_text(body["text"])
        else:
            raise NonTransientProviderError("Provider response has neither data nor text",
                                            provider=self.name, stage=prompt.stage.value)

        citations: List[Citation] = []
        for item in body.get("citations") or []:
            if isinstance(item, dict) and item.get("uri"):
                citations.append(Citation(uri=item["uri"], title=item.get("title")))

        queries = [q for q in body.get("search_queries") or [] if isinstance(q, str)]
        logger.debug("provider response", stage=prompt.stage.value, citations=len(citations))
        return ProviderResponse(data=data, citations=citations, search_queries=queries)

    async def close(self) -> None:
        await self.client.aclose()
