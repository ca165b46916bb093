"""
Pipeline orchestrator.

One run: validate the request, consult the cache, run the stage groups in
order (stages within a group concurrently), guard every stage's text,
score grounding, then cache and return the aggregate result.
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterator, List, Optional, Sequence, Tuple

import structlog

from ..config.settings import Settings, get_settings
from ..data.cache import TieredCache, generation_fingerprint
from ..exceptions import PipelineAbortedError, PipelineFailedError, TransientProviderError, ValidationError
from ..models import (
    ConfidenceLevel,
    GenerationRequest,
    GenerationResult,
    GroundingMetadata,
    GroundingQualityScore,
    ProgressState,
    QualityReport,
    SectionCoverage,
    Source,
    StageId,
    StageResult,
    StageStatus,
    StreamEvent,
)
from ..progress import Listener, ProgressTracker
from ..providers.base import GenerationProvider, StagePrompt
from ..quality.confidence import ConfidencePolicy, EvidenceProfile, get_confidence_policy
from ..quality.domain_tiers import tier_for
from ..quality.fabrication import active_rules, check_for_fabrications, passes_quality_gate, sanitize_content
from ..quality.grounding import (
    aggregate_grounding_metadata,
    calculate_grounding_quality_score,
    describe_grounding_quality,
    sources_from_citations,
)
from .fallbacks import build_fallback
from .retry import call_with_retry
from .stages import DEFAULT_STAGE_SPECS, StageSpec, execution_groups

logger = structlog.get_logger()


@dataclass
class PipelineRun:
    result: GenerationResult
    cache_hit: bool
    cache_tier: Optional[str]
    progress: ProgressState
    events: List[StreamEvent] = field(default_factory=list)


@dataclass
class _RunContext:
    request: GenerationRequest
    fingerprint: str
    tracker: ProgressTracker
    log: Any
    results: Dict[StageId, StageResult] = field(default_factory=dict)
    grounding: Optional[GroundingMetadata] = None
    score: Optional[GroundingQualityScore] = None

    @property
    def has_primary_content(self) -> bool:
        return bool(self.request.content.strip())

    def payload(self, stage: StageId) -> Dict[str, Any]:
        result = self.results.get(stage)
        return (result.payload if result else None) or {}

    def sources(self) -> List[Source]:
        seen: Dict[str, Source] = {}
        for result in self.results.values():
            for source in result.sources:
                seen.setdefault(source.uri, source)
        return list(seen.values())


def _strings(value: Any) -> Iterator[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, dict):
        for item in value.values():
            yield from _strings(item)
    elif isinstance(value, list):
        for item in value:
            yield from _strings(item)


class PipelineOrchestrator:
    """Runs generation requests through the stage graph."""

    def __init__(self, provider: GenerationProvider,
                 cache: Optional[TieredCache] = None,
                 settings: Optional[Settings] = None,
                 stage_specs: Sequence[StageSpec] = DEFAULT_STAGE_SPECS,
                 confidence_policy: Optional[ConfidencePolicy] = None,
                 sleep: Callable[[float], Awaitable[None]] = asyncio.sleep):
        self.settings = settings or get_settings()
        self.provider = provider
        self.cache = cache
        self.groups = execution_groups(stage_specs)  # raises StageGraphError
        self.stage_specs = [spec for group in self.groups for spec in group]
        self.confidence_policy = confidence_policy or get_confidence_policy(self.settings.CONFIDENCE_POLICY)
        self.retry_policy = self.settings.retry_policy()
        self.rules = active_rules(self.settings.GUARDRAILS_FILE)
        self.tiers = self.settings.authority_tiers()
        self._sleep = sleep
        self._local_stages: Dict[StageId, Callable[[_RunContext], StageResult]] = {
            StageId.GROUNDING_AGGREGATION: self._aggregate_grounding,
        }

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    async def run(self, request: GenerationRequest, listener: Optional[Listener] = None) -> PipelineRun:
        tracker = ProgressTracker(language=request.language, listener=listener)

        try:
            self._validate(request)
        except ValidationError as e:
            tracker.error(str(e))
            raise PipelineAbortedError(str(e), progress=tracker.snapshot()) from e

        fingerprint = generation_fingerprint(
            request.product_name, request.keywords, request.content,
            request.language, request.stage_parameters,
            existing_description=request.existing_description,
            product_category=request.product_category,
        )
        log = logger.bind(fingerprint=fingerprint, product=request.product_name)

        if self.cache is not None:
            lookup = await self.cache.get(fingerprint)
            if lookup.hit:
                result = GenerationResult.model_validate(lookup.value)
                log.info("cache hit", tier=lookup.tier)
                tracker.complete(data={
                    "fingerprint": fingerprint,
                    "cache_hit": True,
                    "cache_tier": lookup.tier,
                    "result": result.model_dump(mode="json"),
                })
                return PipelineRun(result=result, cache_hit=True, cache_tier=lookup.tier,
                                   progress=tracker.snapshot(), events=list(tracker.events))

        ctx = _RunContext(request=request, fingerprint=fingerprint, tracker=tracker, log=log)
        log.info("pipeline started", groups=[[s.stage.value for s in g] for g in self.groups])

        try:
            tracker.start_stage(StageId.INITIALIZING)
            tracker.complete_stage(StageId.INITIALIZING)

            for group in self.groups:
                for result in await self._run_group(ctx, group):
                    ctx.results[result.stage] = result

            result = self._assemble(ctx)
        except asyncio.CancelledError:
            log.warning("pipeline cancelled", completed=[s.value for s in ctx.results])
            tracker.error("Generation cancelled")
            raise
        except Exception as e:
            log.exception("pipeline failed", completed=[s.value for s in ctx.results])
            message = f"Generation failed: {e}"
            tracker.error(message)
            raise PipelineFailedError(message, progress=tracker.snapshot()) from e

        tracker.result(result.model_dump(mode="json"))

        if self.cache is not None:
            if result.degraded_stages:
                log.info("not caching degraded result", degraded=result.degraded_stages)
            else:
                await self.cache.set(fingerprint, result.model_dump(mode="json"), metadata={
                    "product_name": request.product_name,
                    "keywords": request.keywords,
                })

        tracker.complete(data={"fingerprint": fingerprint, "cache_hit": False, "cache_tier": None})
        log.info(
            "pipeline complete",
            grounding_total=result.grounding_score.total,
            degraded=result.degraded_stages,
            elapsed_ms=tracker.elapsed_ms(),
        )
        return PipelineRun(result=result, cache_hit=False, cache_tier=None,
                           progress=tracker.snapshot(), events=list(tracker.events))

    async def _run_group(self, ctx: _RunContext, group: Sequence[StageSpec]) -> List[StageResult]:
        """Run one execution group concurrently; a crash cancels its siblings."""
        tasks = [asyncio.ensure_future(self._run_stage(ctx, spec)) for spec in group]
        try:
            return await asyncio.gather(*tasks)
        except BaseException:
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

    def _validate(self, request: GenerationRequest) -> None:
        if not request.product_name:
            raise ValidationError("Product name is required")
        if not request.keywords:
            raise ValidationError("At least one keyword is required")

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    def _current_confidence(self, ctx: _RunContext) -> ConfidenceLevel:
        profile = EvidenceProfile.from_sources(ctx.sources(), ctx.has_primary_content)
        return self.confidence_policy.assign(profile)

    def _prompt(self, ctx: _RunContext, spec: StageSpec) -> StagePrompt:
        context = {}
        for dep in spec.depends_on:
            dep_result = ctx.results.get(dep)
            if dep_result is not None and dep_result.payload is not None:
                context[dep.value] = dep_result.payload
        return StagePrompt(
            stage=spec.stage,
            product_name=ctx.request.product_name,
            keywords=list(ctx.request.keywords),
            language=ctx.request.language,
            content=ctx.request.content,
            existing_description=ctx.request.existing_description,
            product_category=ctx.request.product_category,
            context=context,
            parameters=dict(ctx.request.stage_parameters.get(spec.stage.value, {})),
            confidence=self._current_confidence(ctx),
            grounded=spec.grounded,
        )

    async def _run_stage(self, ctx: _RunContext, spec: StageSpec) -> StageResult:
        stage = spec.stage
        ctx.tracker.start_stage(stage)
        started = time.monotonic()

        local = self._local_stages.get(stage)
        if local is not None:
            result = local(ctx)
            ctx.tracker.complete_stage(stage, data=result.payload)
            return result

        prompt = self._prompt(ctx, spec)

        async def _call():
            response = await self.provider.generate(prompt)
            payload = spec.parse(response.data)
            ctx.tracker.update_progress(80, stage=stage)
            return response, payload

        outcome = await call_with_retry(
            _call,
            self.retry_policy,
            stage=stage.value,
            provider=self.provider.name,
            timeout=self.settings.PROVIDER_TIMEOUT_SEC,
            sleep=self._sleep,
        )
        duration_ms = int((time.monotonic() - started) * 1000)

        if outcome.succeeded:
            response, payload = outcome.value
            sources = sources_from_citations(response.citations, stage.value, self.tiers)
            payload, modifications = self._guard(payload)
            if stage == StageId.USP_EXTRACTION:
                payload = self._assign_usp_confidence(ctx, payload)
            if modifications:
                ctx.log.info("stage output sanitized", stage=stage.value, modifications=len(modifications))
            result = StageResult(
                stage=stage,
                status=StageStatus.SUCCEEDED,
                payload=payload,
                sources=sources,
                search_queries=response.search_queries,
                retries=outcome.retries,
                sanitized=modifications,
                duration_ms=duration_ms,
            )
        else:
            error = outcome.error
            error_type = "transient" if isinstance(error, TransientProviderError) else "non_transient"
            if self.settings.STAGE_FALLBACK_ENABLED:
                status, payload = StageStatus.DEGRADED, build_fallback(stage, ctx.request)
            else:
                status, payload = StageStatus.FAILED, None
            ctx.tracker.record_stage_error(stage, str(error), error_type=error_type,
                                           retries=outcome.retries, status=status)
            ctx.log.warning("stage degraded", stage=stage.value, status=status.value,
                            error_type=error_type, retries=outcome.retries, error=str(error))
            result = StageResult(
                stage=stage,
                status=status,
                payload=payload,
                retries=outcome.retries,
                error=str(error),
                duration_ms=duration_ms,
            )

        ctx.tracker.complete_stage(stage, data={"status": result.status.value, "payload": result.payload})
        return result

    def _guard(self, payload: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
        """Sanitize every text field the fabrication check flags."""
        modifications: List[str] = []

        def _walk(value: Any) -> Any:
            if isinstance(value, str):
                if check_for_fabrications(value, self.rules).has_fabrication:
                    cleaned = sanitize_content(value, self.rules)
                    modifications.extend(cleaned.modifications)
                    return cleaned.sanitized
                return value
            if isinstance(value, dict):
                return {k: _walk(v) for k, v in value.items()}
            if isinstance(value, list):
                return [_walk(v) for v in value]
            return value

        return _walk(payload), modifications

    def _assign_usp_confidence(self, ctx: _RunContext, payload: Dict[str, Any]) -> Dict[str, Any]:
        usps = []
        for usp in payload.get("usps", []):
            evidence = [Source(uri=uri, tier=tier_for(uri, self.tiers)) for uri in usp.get("evidence_sources", [])]
            profile = EvidenceProfile.from_sources(evidence, ctx.has_primary_content)
            usps.append({**usp, "confidence": self.confidence_policy.assign(profile).value})
        return {**payload, "usps": usps}

    # ------------------------------------------------------------------
    # Grounding and assembly
    # ------------------------------------------------------------------

    def _aggregate_grounding(self, ctx: _RunContext) -> StageResult:
        content_specs = [s for s in self.stage_specs if s.calls_provider]
        stage_sources = {s.stage.value: ctx.results[s.stage].sources for s in content_specs if s.stage in ctx.results}
        queries = {s.stage.value: ctx.results[s.stage].search_queries for s in content_specs if s.stage in ctx.results}
        metadata = aggregate_grounding_metadata(stage_sources, queries)

        description = ctx.payload(StageId.DESCRIPTION)
        faq = ctx.payload(StageId.FAQ)
        content_length = len(description.get("full", "")) + sum(
            len(item.get("answer", "")) for item in faq.get("faqs", [])
        )
        cited_length = min(content_length, metadata.total_citations * self.settings.CITED_CHARS_PER_CITATION)

        usps = ctx.payload(StageId.USP_EXTRACTION).get("usps", [])
        coverage = SectionCoverage(
            sections_with_grounding=sum(1 for sources in stage_sources.values() if sources),
            total_sections=len(content_specs),
            claims_with_sources=sum(1 for usp in usps if usp.get("evidence_sources")),
            total_claims=len(usps),
        )

        score = calculate_grounding_quality_score(metadata.sources, coverage, content_length, cited_length)
        ctx.grounding, ctx.score = metadata, score
        return StageResult(
            stage=StageId.GROUNDING_AGGREGATION,
            status=StageStatus.SUCCEEDED,
            payload={
                "total": score.total,
                "level": describe_grounding_quality(score)["level"],
                "unique_sources": metadata.unique_sources,
                "total_citations": metadata.total_citations,
            },
        )

    def _assemble(self, ctx: _RunContext) -> GenerationResult:
        if ctx.grounding is None or ctx.score is None:
            self._aggregate_grounding(ctx)

        confidence = self.confidence_policy.assign(
            EvidenceProfile.from_sources(ctx.grounding.sources, ctx.has_primary_content)
        )
        combined = "\n".join(
            text for result in ctx.results.values() if result.payload for text in _strings(result.payload)
        )
        quality = QualityReport(
            confidence=confidence,
            confidence_policy=self.confidence_policy.name,
            passes_quality_gate=passes_quality_gate(combined, confidence, self.rules),
            sanitized_stages={r.stage.value: r.sanitized for r in ctx.results.values() if r.sanitized},
            remaining_violations=check_for_fabrications(combined, self.rules).violations,
        )

        stages = {spec.stage.value: ctx.results[spec.stage] for spec in self.stage_specs if spec.stage in ctx.results}
        return GenerationResult(
            fingerprint=ctx.fingerprint,
            product_name=ctx.request.product_name,
            language=ctx.request.language,
            stages=stages,
            grounding=ctx.grounding,
            grounding_score=ctx.score,
            quality=quality,
            degraded_stages=[name for name, r in stages.items() if r.status != StageStatus.SUCCEEDED],
        )

    async def close(self) -> None:
        await self.provider.close()
        if self.cache is not None:
            await self.cache.close()


def build_orchestrator(settings: Optional[Settings] = None) -> PipelineOrchestrator:
    """Orchestrator wired from settings: provider, cache tiers, policy."""
    from ..data.cache import build_tiered_cache
    from ..providers import build_provider

    settings = settings or get_settings()
    return PipelineOrchestrator(
        provider=build_provider(settings),
        cache=build_tiered_cache(settings),
        settings=settings,
    )
