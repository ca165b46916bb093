import asyncio
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

import structlog
import uvicorn
from fastapi import FastAPI, HTTPException, Request, status
from fastapi.responses import StreamingResponse
from starlette.responses import PlainTextResponse

from ..config.settings import get_settings
from ..exceptions import PipelineAbortedError, PipelineFailedError
from ..logging_setup import configure_logging
from ..models import EventType, GenerationRequest, StreamEvent
from ..orchestration.orchestrator import PipelineOrchestrator, build_orchestrator
from ..streaming import EventChannel

logger = structlog.get_logger()


def create_app(orchestrator: Optional[PipelineOrchestrator] = None) -> FastAPI:
    """
    Build the service. Without an orchestrator, one is wired from settings
    at startup.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.orchestrator is None:
            app.state.orchestrator = build_orchestrator()
        cache = app.state.orchestrator.cache
        if cache is not None:
            cache.start_pruning()
        yield
        try:
            await app.state.orchestrator.close()
        except Exception as e:
            logger.warning("orchestrator shutdown failed", error=str(e))

    app = FastAPI(title="GEO Content Pipeline API", version="v2", lifespan=lifespan)
    app.state.orchestrator = orchestrator

    def _orchestrator(request: Request) -> PipelineOrchestrator:
        current = request.app.state.orchestrator
        if current is None:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Pipeline not ready")
        return current

    # ====== Health ======
    @app.get("/health", response_class=PlainTextResponse)
    def health():
        return "ok"

    # ====== Generation ======
    @app.post("/v2/generate")
    async def generate(request: Request, body: GenerationRequest) -> Dict[str, Any]:
        """Run the pipeline and return the aggregate result"""
        try:
            run = await _orchestrator(request).run(body)
        except PipelineAbortedError as e:
            raise HTTPException(
                status_code=(status.HTTP_500_INTERNAL_SERVER_ERROR if isinstance(e, PipelineFailedError)
                             else status.HTTP_400_BAD_REQUEST),
                detail={
                    "message": str(e),
                    "progress": e.progress.model_dump(mode="json") if e.progress else None,
                },
            )
        return {
            "cache_hit": run.cache_hit,
            "cache_tier": run.cache_tier,
            "result": run.result.model_dump(mode="json"),
            "progress": run.progress.model_dump(mode="json"),
        }

    @app.post("/v2/generate/stream")
    async def generate_stream(request: Request, body: GenerationRequest):
        """Same run, reported as server-sent progress events"""
        orchestrator = _orchestrator(request)
        channel = EventChannel()

        async def _produce():
            try:
                await orchestrator.run(body, listener=channel)
            except PipelineAbortedError:
                pass  # error event already sent
            except Exception as e:
                logger.error("streamed run failed", error=str(e))
                channel.send(StreamEvent(type=EventType.ERROR, progress=channel.last_progress,
                                         message=f"Generation failed: {e}"))
            finally:
                channel.close()

        task = asyncio.create_task(_produce())

        async def _frames():
            try:
                async for frame in channel.sse():
                    yield frame
            finally:
                # client went away: cancel the run and its provider calls
                if not task.done():
                    task.cancel()

        return StreamingResponse(
            _frames(),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache", "Connection": "keep-alive"},
        )

    # ====== Cache ======
    @app.get("/cache/stats")
    async def cache_stats(request: Request) -> Dict[str, Any]:
        cache = _orchestrator(request).cache
        if cache is None:
            return {"enabled": False}
        return {"enabled": True, **(await cache.stats())}

    @app.delete("/cache/{fingerprint}")
    async def cache_invalidate(request: Request, fingerprint: str) -> Dict[str, Any]:
        cache = _orchestrator(request).cache
        invalidated = await cache.invalidate(fingerprint) if cache is not None else False
        return {"fingerprint": fingerprint, "invalidated": invalidated}

    @app.post("/cache/prune")
    async def cache_prune(request: Request) -> Dict[str, Any]:
        cache = _orchestrator(request).cache
        if cache is None:
            return {"fast_pruned": 0, "durable_pruned": 0}
        return await cache.prune()

    return app


app = create_app()


def serve() -> None:
    """Run the API with uvicorn on the configured host and port."""
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    uvicorn.run(app, host=settings.API_HOST, port=settings.API_PORT, log_level=settings.LOG_LEVEL.lower())
