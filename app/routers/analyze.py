import asyncio
import logging
from typing import AsyncIterator, Optional

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse
from slowapi import Limiter
from slowapi.util import get_remote_address

from app.models.analysis_request import AnalysisRequest
from app.models.analysis_response import AnalysisResponse, ProgressEvent
from app.services.analyzer import start_analysis
from app.services.fetcher import validate_start_url

logger = logging.getLogger(__name__)

limiter = Limiter(key_func=get_remote_address)
router = APIRouter()


@router.post(
    "/analyze",
    response_model=AnalysisResponse,
    summary="Audit the internal linking of a site",
    description=(
        "Resolves the sitemap (given or discovered), crawls up to `max_pages` pages "
        "from `start_url` and returns the link graph with context classification, "
        "PageRank / JuiceLinkScore, orphaned pages, metrics and recommendations."
    ),
)
@limiter.limit("5/minute")
async def analyze(request: Request, body: AnalysisRequest) -> AnalysisResponse:
    url = str(body.start_url)
    logger.info("Analysis request received", extra={"url": url, "max_pages": body.max_pages})
    _check_start_url(url)

    response = await start_analysis(body)
    if not response.success:
        logger.error("Analysis of %s failed: %s", url, response.message)
        raise HTTPException(status_code=502, detail=response.message)
    return response


@router.post(
    "/analyze/stream",
    summary="Audit the internal linking of a site with live progress",
    description=(
        "Same analysis as `POST /analyze`, streamed as newline-delimited JSON "
        "progress events.  The last event is either `complete` (carrying the "
        "results) or `error`."
    ),
)
@limiter.limit("5/minute")
async def analyze_stream(request: Request, body: AnalysisRequest) -> StreamingResponse:
    url = str(body.start_url)
    logger.info("Streaming analysis request received", extra={"url": url, "max_pages": body.max_pages})
    _check_start_url(url)
    return StreamingResponse(_progress_stream(body), media_type="application/x-ndjson")


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _check_start_url(url: str) -> None:
    try:
        validate_start_url(url)
    except ValueError as exc:
        logger.warning("Invalid or blocked URL: %s – %s", url, exc)
        raise HTTPException(status_code=400, detail=str(exc))


async def _progress_stream(body: AnalysisRequest) -> AsyncIterator[str]:
    """Yield the run's progress events as NDJSON lines.

    The callback only enqueues, so a slow client never blocks the crawl.
    """
    queue: "asyncio.Queue[Optional[ProgressEvent]]" = asyncio.Queue()
    task = asyncio.create_task(start_analysis(body, queue.put_nowait))
    task.add_done_callback(lambda _: queue.put_nowait(None))
    try:
        while True:
            event = await queue.get()
            if event is None:
                break
            yield event.model_dump_json(exclude_none=True) + "\n"

        if not task.cancelled() and task.exception() is not None:
            logger.error("Streaming analysis of %s crashed", body.start_url, exc_info=task.exception())
            error = ProgressEvent(step="error", message="An unexpected error occurred.")
            yield error.model_dump_json(exclude_none=True) + "\n"
    finally:
        if not task.done():
            task.cancel()
