import logging
import random
import re
import time
import uuid
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded

from forum_sitemap.config import LOG_REQUEST_SAMPLE_RATE, LOG_SLOW_REQUEST_MS, get_sitemap_settings
from forum_sitemap.deps import get_feed_generator
from forum_sitemap.logging_config import configure_logging
from forum_sitemap.rate_limit import limiter, sitemap_rate_limit
from forum_sitemap.sitemap import (
    FeatureDisabledError,
    FeedDocument,
    FeedGenerator,
    InvalidConfigurationError,
    InvalidPageError,
    StorageUnavailableError,
    validate_sitemap_settings,
)

logger = logging.getLogger("api")

_PAGE_PATTERN = re.compile(r"[1-9][0-9]*")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    configure_logging()
    validate_sitemap_settings(get_sitemap_settings())
    yield


app = FastAPI(title="Forum Sitemap API", lifespan=lifespan)
app.state.limiter = limiter


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": {"code": code, "message": message}})


@app.exception_handler(FeatureDisabledError)
@app.exception_handler(InvalidPageError)
async def _not_found(_request: Request, exc: LookupError) -> JSONResponse:
    return _error_response(404, "NOT_FOUND", str(exc) or "Not Found")


@app.exception_handler(StorageUnavailableError)
@app.exception_handler(InvalidConfigurationError)
async def _internal_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("sitemap_failed", exc_info=exc, extra={"path": request.url.path})
    return _error_response(500, "INTERNAL_ERROR", "Internal Server Error")


@app.exception_handler(RateLimitExceeded)
async def _rate_limited(_request: Request, exc: RateLimitExceeded) -> JSONResponse:
    return _error_response(429, "RATE_LIMITED", f"Rate limit exceeded: {exc.detail}")


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
    start = time.perf_counter()
    response = await call_next(request)
    duration_ms = (time.perf_counter() - start) * 1000
    slow = duration_ms >= LOG_SLOW_REQUEST_MS
    sampled = random.random() < LOG_REQUEST_SAMPLE_RATE
    if slow or sampled:
        logger.info(
            "request",
            extra={
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round(duration_ms, 2),
                "request_id": request_id,
                "client": request.client.host if request.client else None,
                "slow": slow,
                "sampled": sampled,
            },
        )
    response.headers["x-request-id"] = request_id
    return response


def _xml(document: FeedDocument) -> Response:
    return Response(content=document.body, media_type=document.content_type)


@app.get("/health")
def health():
    return {"status": "ok"}


@app.get("/sitemap.xml")
@limiter.limit(sitemap_rate_limit)
def sitemap_index(request: Request, generator: FeedGenerator = Depends(get_feed_generator)):
    return _xml(generator.index())


@app.get("/sitemap_recent.xml")
@limiter.limit(sitemap_rate_limit)
def sitemap_recent(request: Request, generator: FeedGenerator = Depends(get_feed_generator)):
    return _xml(generator.recent())


@app.get("/sitemap_{page}.xml")
@limiter.limit(sitemap_rate_limit)
def sitemap_page(request: Request, page: str, generator: FeedGenerator = Depends(get_feed_generator)):
    if not _PAGE_PATTERN.fullmatch(page):
        raise HTTPException(status_code=404, detail="Not Found")
    return _xml(generator.page(int(page)))


@app.get("/news.xml")
@limiter.limit(sitemap_rate_limit)
def news(request: Request, generator: FeedGenerator = Depends(get_feed_generator)):
    return _xml(generator.news())
