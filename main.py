"""
Meta Tag Analyzer - FastAPI Application

Fetches a web page and reports its SEO metadata (meta tags, Open Graph,
Twitter Card, headings, schema.org, canonical/hreflang/favicon) through
a cached, rate-limited API with JSON/CSV export.

Environment Variables:
    See config.py for complete list and descriptions.
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from config import Settings, settings, get_feature_status
from models.enums import AnalysisStage, ExportFormat
from models.errors import AnalyzerError, InternalError, InvalidExportRequest, RateLimitError
from models.records import RateDecision
from models.schemas import (
    AnalysisResponse,
    AnalyzeRequest,
    ErrorResponse,
    HealthResponse,
    HistoryItem,
    HistoryResponse,
    RateLimitStatus,
)
from services import AnalysisFailure, AnalysisOptions, Components, build_components
from utils.export import (
    default_export_filename,
    strip_extension,
    to_csv,
    to_json,
    validate_export_filename,
)
from utils.url_validator import extract_domain

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    handlers=[logging.StreamHandler(sys.stdout)],
)
logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again."
NO_CACHE_HEADERS = {
    "Cache-Control": "no-cache, no-store, must-revalidate",
    "Pragma": "no-cache",
    "Expires": "0",
}


def get_components(request: Request) -> Components:
    """
    Dependency returning the analyzer components stored on app.state.

    Built on first use when the lifespan did not run (e.g. a TestClient
    used without a ``with`` block).
    """
    components = getattr(request.app.state, "components", None)
    if components is None:
        components = build_components(settings)
        request.app.state.components = components
    return components


def _settings_for(request: Request) -> Settings:
    components = getattr(request.app.state, "components", None)
    return components.settings if components is not None else settings


def client_identity(request: Request, config: Settings) -> str:
    """Socket peer address, or the first X-Forwarded-For hop when trusted."""
    if config.trust_forwarded_for:
        forwarded = request.headers.get("X-Forwarded-For", "")
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    return request.client.host if request.client else "unknown"


def rate_limit_headers(decision: RateDecision) -> Dict[str, str]:
    return {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": str(int(decision.reset_at.timestamp())),
    }


def error_response(
    error: AnalyzerError,
    config: Settings,
    stage: Optional[AnalysisStage] = None,
    decision: Optional[RateDecision] = None,
) -> JSONResponse:
    """Render an analyzer error as an ErrorResponse."""
    message = error.message
    details = error.details or None
    if isinstance(error, InternalError) and not config.is_dev:
        message = GENERIC_ERROR_MESSAGE
        details = None

    decision = decision or getattr(error, "decision", None)
    rate_limit = RateLimitStatus.from_decision(decision) if decision is not None else None

    headers: Dict[str, str] = {}
    if decision is not None:
        headers.update(rate_limit_headers(decision))
    if error.status_code == 429 and rate_limit is not None:
        headers["Retry-After"] = str(max(1, rate_limit.time_until_reset_seconds))

    return JSONResponse(
        status_code=error.status_code,
        content=ErrorResponse(
            error_code=error.kind,
            message=message,
            details=details,
            stage=stage.value if stage else None,
            rate_limit=rate_limit,
        ).model_dump(),
        headers=headers,
    )


async def _periodic_cleanup(components: Components, interval: int) -> None:
    """Sweep expired cache entries and old request records."""
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(components.cache.cleanup)
            await asyncio.to_thread(components.rate_limiter.cleanup)
        except Exception as e:
            logger.error(f"Periodic cleanup failed: {e}")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    components = getattr(app.state, "components", None)
    if components is None:
        components = build_components(settings)
        app.state.components = components

    logger.info(f"Starting {settings.app_name} v{settings.app_version} ({settings.app_env})")
    logger.info(f"Features: {get_feature_status(components.settings)}")

    cleanup_task = asyncio.create_task(
        _periodic_cleanup(components, components.settings.cleanup_interval_seconds)
    )
    yield
    logger.info("Shutting down...")
    cleanup_task.cancel()
    try:
        await cleanup_task
    except asyncio.CancelledError:
        pass
    components.close()


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Meta Tag Analyzer API - SEO metadata extraction with caching and rate limiting",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Error handlers
@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Handle request validation errors."""
    return JSONResponse(
        status_code=400,
        content=ErrorResponse(
            error_code="VALIDATION_ERROR",
            message="Invalid input data",
            details={"errors": jsonable_encoder(exc.errors())},
        ).model_dump(),
    )


@app.exception_handler(AnalyzerError)
async def analyzer_error_handler(request: Request, exc: AnalyzerError):
    """Handle analyzer errors raised outside the analysis pipeline."""
    return error_response(exc, _settings_for(request))


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Handle HTTP exceptions."""
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(
            error_code=f"HTTP_{exc.status_code}",
            message=str(exc.detail),
        ).model_dump(),
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle unexpected errors."""
    logger.exception(f"Unexpected error: {exc}")
    config = _settings_for(request)
    return JSONResponse(
        status_code=500,
        content=ErrorResponse(
            error_code="INTERNAL_ERROR",
            message=str(exc) if config.is_dev else GENERIC_ERROR_MESSAGE,
        ).model_dump(),
    )


async def _run_analysis(
    request: Request,
    components: Components,
    url: str,
    bypass_cache: bool,
    include_raw_html: bool,
):
    identity = client_identity(request, components.settings)
    outcome = await components.coordinator.analyze(
        url,
        identity,
        AnalysisOptions(bypass_cache=bypass_cache, include_raw=include_raw_html),
        user_agent=request.headers.get("User-Agent"),
    )

    if isinstance(outcome, AnalysisFailure):
        return error_response(
            outcome.error,
            components.settings,
            stage=outcome.stage,
            decision=outcome.rate_decision,
        )

    response = outcome.to_response(components.settings.app_version)
    return JSONResponse(
        content=response.model_dump(mode="json"),
        headers=rate_limit_headers(outcome.rate_decision),
    )


@app.get(
    "/api/analyze",
    response_model=AnalysisResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Invalid URL or unsupported content"},
        403: {"model": ErrorResponse, "description": "Target address not allowed"},
        429: {"model": ErrorResponse, "description": "Rate limit exceeded"},
        502: {"model": ErrorResponse, "description": "Target site could not be fetched"},
    },
    tags=["Analyzer"],
    summary="Analyze the meta tags of a web page",
)
async def analyze_get(
    request: Request,
    url: str = Query(..., min_length=1, max_length=4096, description="Page URL to analyze"),
    bypass_cache: bool = Query(False, description="Skip the cache and fetch fresh"),
    include_raw_html: bool = Query(False, description="Include the minimised HTML"),
    components: Components = Depends(get_components),
):
    """
    Analyze a web page and return its SEO metadata.

    Results are cached per normalized URL (default 6 hours). Each client
    may make ``RATE_LIMIT_PER_HOUR`` requests per rolling hour.
    """
    return await _run_analysis(request, components, url, bypass_cache, include_raw_html)


@app.post(
    "/api/analyze",
    response_model=AnalysisResponse,
    responses={
        400: {"model": ErrorResponse},
        403: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
        502: {"model": ErrorResponse},
    },
    tags=["Analyzer"],
    summary="Analyze the meta tags of a web page",
)
async def analyze_post(
    body: AnalyzeRequest,
    request: Request,
    components: Components = Depends(get_components),
):
    """Same as GET /api/analyze with the options in a JSON body."""
    return await _run_analysis(request, components, body.url, body.bypass_cache, body.include_raw_html)


@app.get(
    "/api/export",
    responses={
        400: {"model": ErrorResponse, "description": "Invalid URL, format or filename"},
        404: {"model": ErrorResponse, "description": "URL has not been analyzed"},
        429: {"model": ErrorResponse, "description": "Rate limit exceeded"},
    },
    tags=["Analyzer"],
    summary="Download a cached analysis as JSON or CSV",
)
async def export_analysis(
    request: Request,
    url: str = Query(..., min_length=1, max_length=4096),
    format: str = Query("json", description="json or csv"),
    filename: Optional[str] = Query(None, description="Download name without extension"),
    components: Components = Depends(get_components),
):
    """
    Export a previously analyzed URL.

    Only cached analyses can be exported; analyze the URL first.
    """
    identity = client_identity(request, components.settings)
    decision = await asyncio.to_thread(components.rate_limiter.check_limit, identity)
    if not decision.allowed:
        return error_response(
            RateLimitError("Rate limit exceeded. Please try again later.", decision),
            components.settings,
            decision=decision,
        )

    try:
        export_format = ExportFormat(format.strip().lower())
    except ValueError:
        raise InvalidExportRequest(
            "Invalid export format. Allowed: json, csv",
            {"format": format},
        )

    if filename:
        filename_errors = validate_export_filename(filename)
        if filename_errors:
            raise InvalidExportRequest(
                "Invalid filename: " + ", ".join(filename_errors),
                {"filename": filename},
            )
        filename = strip_extension(filename)

    normalized_url, entry = await asyncio.to_thread(components.coordinator.load_cached, url)
    if not filename:
        filename = default_export_filename(extract_domain(normalized_url))

    await asyncio.to_thread(
        components.rate_limiter.record_request,
        identity,
        request.url.path,
        request.headers.get("User-Agent"),
    )

    document = {
        "metadata": {
            "url": normalized_url,
            "final_url": entry.final_url,
            "exported_at": datetime.now(timezone.utc).isoformat(),
            "cache_created_at": entry.created_at.isoformat(),
            "http_status": entry.http_status,
            "content_type": entry.content_type,
        },
        "analysis": entry.metadata,
    }

    if export_format == ExportFormat.CSV:
        content = to_csv(document)
        media_type = "text/csv; charset=utf-8"
    else:
        content = to_json(document)
        media_type = "application/json; charset=utf-8"

    headers = dict(NO_CACHE_HEADERS)
    headers["Content-Disposition"] = f'attachment; filename="{filename}.{export_format.value}"'
    logger.info(f"Exported {normalized_url} as {export_format.value} [client={identity}]")
    return Response(content=content, media_type=media_type, headers=headers)


@app.get(
    "/api/history",
    response_model=HistoryResponse,
    responses={404: {"model": ErrorResponse, "description": "History is disabled"}},
    tags=["Analyzer"],
    summary="Recent analyses of the calling client",
)
async def analysis_history(
    request: Request,
    limit: int = Query(20, ge=1, le=100),
    components: Components = Depends(get_components),
) -> HistoryResponse:
    """List the caller's recent analyses, newest first."""
    if not components.settings.enable_analysis_history:
        raise HTTPException(status_code=404, detail="Analysis history is disabled")

    identity = client_identity(request, components.settings)
    records = await asyncio.to_thread(components.coordinator.list_history, identity, limit)
    return HistoryResponse(
        items=[
            HistoryItem(
                url=record.url,
                final_url=record.final_url,
                http_status=record.http_status,
                title=record.title,
                description=record.description,
                og_title=record.og_title,
                og_description=record.og_description,
                cache_hit=record.cache_hit,
                duration_ms=record.duration_ms,
                created_at=record.created_at,
            )
            for record in records
        ]
    )


# Health endpoint
@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="Health check endpoint",
)
async def health_check(components: Components = Depends(get_components)) -> HealthResponse:
    """
    Check API health and configuration.

    Returns version, environment, storage backend and feature flags.
    """
    config = components.settings
    return HealthResponse(
        status="healthy",
        version=config.app_version,
        environment=config.app_env,
        storage_backend=config.storage_backend,
        features=get_feature_status(config),
    )


# Root redirect
@app.get("/", include_in_schema=False)
async def root():
    """Root endpoint."""
    return {"message": "Meta Tag Analyzer API", "docs": "/docs", "health": "/health"}


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.debug,
    )
