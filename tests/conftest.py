"""Shared fixtures and test doubles."""

import asyncio
from typing import Dict, List, Optional

import pytest

from geo_pipeline.config.settings import Settings
from geo_pipeline.data.durable import DurableStore
from geo_pipeline.exceptions import CacheError
from geo_pipeline.models import GenerationRequest, StageId
from geo_pipeline.providers.base import GenerationProvider, ProviderResponse, StagePrompt
from geo_pipeline.providers.offline import OfflineProvider


@pytest.fixture
def settings():
    """Settings isolated from the environment, with zero backoff."""
    return Settings(
        _env_file=None,
        RETRY_BASE_DELAY_SECONDS=0,
        RETRY_MAX_DELAY_SECONDS=0,
        RETRY_JITTER_SECONDS=0,
        PROVIDER_TIMEOUT_SEC=5,
        LLM_PROVIDER="disabled",
        DURABLE_CACHE_BACKEND="none",
    )


@pytest.fixture
def request_en():
    return GenerationRequest(
        product_name="Galaxy S25 Ultra",
        keywords=["AI camera", "battery", "S Pen"],
        language="en",
    )


@pytest.fixture
def noop_sleep():
    async def _sleep(_delay):
        return None
    return _sleep


class ScriptedProvider(GenerationProvider):
    """
    Answers from a per-stage script: queued exceptions first, then a fixed
    response, else the offline template. Yields to the loop on every call.
    """

    name = "scripted"

    def __init__(self, responses: Optional[Dict[StageId, ProviderResponse]] = None,
                 failures: Optional[Dict[StageId, List[BaseException]]] = None):
        self.responses = responses or {}
        self.failures = {stage: list(errors) for stage, errors in (failures or {}).items()}
        self.calls: List[StagePrompt] = []
        self._offline = OfflineProvider()

    def calls_for(self, stage: StageId) -> List[StagePrompt]:
        return [c for c in self.calls if c.stage == stage]

    async def generate(self, prompt: StagePrompt) -> ProviderResponse:
        self.calls.append(prompt)
        await asyncio.sleep(0)
        queued = self.failures.get(prompt.stage)
        if queued:
            raise queued.pop(0)
        if prompt.stage in self.responses:
            return self.responses[prompt.stage]
        return await self._offline.generate(prompt)


class MemoryDurableStore(DurableStore):
    """Dict-backed durable tier with switchable failures."""

    name = "memory"

    def __init__(self):
        self.data: Dict[str, object] = {}
        self.metadata: Dict[str, dict] = {}
        self.fail_reads = False
        self.fail_writes = False

    async def get(self, key):
        if self.fail_reads:
            raise CacheError("read failed", key=key)
        return self.data.get(key)

    async def set(self, key, value, ttl, metadata=None):
        if self.fail_writes:
            raise CacheError("write failed", key=key)
        self.data[key] = value
        self.metadata[key] = metadata or {}

    async def invalidate(self, key):
        return self.data.pop(key, None) is not None

    async def prune(self):
        return 0

    async def stats(self):
        return {"backend": self.name, "entries": len(self.data)}

    async def clear(self):
        removed = len(self.data)
        self.data.clear()
        return removed


@pytest.fixture
def scripted_provider():
    return ScriptedProvider()


@pytest.fixture
def memory_store():
    return MemoryDurableStore()


@pytest.fixture
def make_provider():
    return ScriptedProvider
