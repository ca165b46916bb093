import argparse
import asyncio
import json
import sys
from pathlib import Path
from typing import List, Optional

import structlog

from geo_pipeline.config.settings import get_settings
from geo_pipeline.exceptions import GeoPipelineError, PipelineAbortedError
from geo_pipeline.logging_setup import configure_logging
from geo_pipeline.models import GenerationRequest, StreamEvent
from geo_pipeline.orchestration.orchestrator import build_orchestrator
from geo_pipeline.progress import render_progress
from geo_pipeline.quality.grounding import format_grounding_score

logger = structlog.get_logger()


def _parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="geo-pipeline", description="Generate grounded product content")
    p.add_argument("--product", required=True, help="Product name (required)")
    p.add_argument("--keyword", action="append", dest="keywords", required=True,
                   help="Selected keyword; repeat for several")
    p.add_argument("--content-file", type=Path, default=None, help="Source transcript to ground the copy in")
    p.add_argument("--language", choices=["ko", "en"], default="ko")
    p.add_argument("--output", type=Path, default=None, help="Write the JSON result here instead of stdout")
    p.add_argument("--quiet", action="store_true", help="No progress output")
    return p


async def _run(args: argparse.Namespace) -> int:
    settings = get_settings()
    content = args.content_file.read_text(encoding="utf-8") if args.content_file else ""
    request = GenerationRequest(
        product_name=args.product,
        keywords=args.keywords,
        content=content,
        language=args.language,
    )

    orchestrator = build_orchestrator(settings)

    def _show(event: StreamEvent) -> None:
        if not args.quiet:
            tracker_line = f"{event.progress:3d}% {event.type.value:<14} {event.message}"
            print(tracker_line, file=sys.stderr)

    try:
        run = await orchestrator.run(request, listener=_show)
    except PipelineAbortedError as e:
        print(f"Generation aborted: {e}", file=sys.stderr)
        if e.progress is not None:
            print(render_progress(e.progress), file=sys.stderr)
        return 1
    finally:
        if orchestrator.cache is not None:
            await orchestrator.cache.drain()
        await orchestrator.close()

    if not args.quiet:
        print(render_progress(run.progress), file=sys.stderr)
        print(format_grounding_score(run.result.grounding_score), file=sys.stderr)
        if run.cache_hit:
            print(f"Served from {run.cache_tier} cache", file=sys.stderr)

    output = json.dumps(run.result.model_dump(mode="json"), ensure_ascii=False, indent=2)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(output, encoding="utf-8")
        print(f"Result written to {args.output}", file=sys.stderr)
    else:
        print(output)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = _parser().parse_args(argv)
    settings = get_settings()
    configure_logging(settings.LOG_LEVEL, settings.LOG_JSON)
    try:
        return asyncio.run(_run(args))
    except GeoPipelineError as e:
        logger.error("generation failed", error=str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
