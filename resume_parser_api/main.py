"""FastAPI application entrypoint for the Resume Parser API."""

import json
import logging
import os
import platform
import secrets
import time
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime, timezone
from typing import AsyncIterator

import structlog
from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.datastructures import UploadFile
from starlette.exceptions import HTTPException as StarletteHTTPException

from resume_parser_api import __version__
from resume_parser_api.ai_parser import (
    AIConfigurationError,
    AIParser,
    AIParsingError,
    AIProviderAuthError,
    AIProviderQuotaError,
    AIProviderRateLimitError,
)
from resume_parser_api.config import get_settings
from resume_parser_api.document_processor import (
    FILE_TYPE_DESCRIPTIONS,
    DocumentExtractionError,
)
from resume_parser_api.models import (
    ApiResponse,
    ConnectionTestData,
    CurrentProvider,
    FieldsData,
    FormatsData,
    HealthResponse,
    ProbeResponse,
    ProviderInfoData,
    QuotaExceededResponse,
    QuotaStatsData,
    QuotaStatusData,
    StatsData,
    StructureData,
    StructureValidationData,
    ValidateStructureRequest,
)
from resume_parser_api.observability import generate_trace_id, set_trace_id
from resume_parser_api.providers import (
    PROVIDER_CAPABILITIES,
    SUPPORTED_PROVIDERS,
    create_ai_parser,
)
from resume_parser_api.quota import (
    DailyQuotaCounter,
    QuotaDecision,
    local_now,
    next_midnight,
    resolve_quota_identity,
)
from resume_parser_api.redis_store import (
    check_redis_health,
    close_redis_client,
    create_redis_client,
    mask_redis_url,
)
from resume_parser_api.resume_parser import (
    EmptyDocumentError,
    ResumeParserService,
)
from resume_parser_api.structure import (
    DEFAULT_STRUCTURE,
    EXAMPLE_STRUCTURES,
    FIELD_CATEGORIES,
    FIELD_PATHS,
    validate_structure,
)

settings = get_settings()

logging.basicConfig(format="%(message)s", level=settings.log_level)

# Configure structlog
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
        structlog.processors.JSONRenderer(),
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

logger = structlog.get_logger()

# Per-minute limiter, keyed by client address
limiter = Limiter(key_func=get_remote_address)

START_TIME = time.time()

DAILY_LIMIT_MESSAGE = "You have exceeded your daily limit of API calls. Please try again tomorrow."


class DailyQuotaExceeded(Exception):
    """Raised when an identity has used up its daily quota."""

    def __init__(self, decision: QuotaDecision, limit: int):
        super().__init__(DAILY_LIMIT_MESSAGE)
        self.decision = decision
        self.limit = limit


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan handler for startup/shutdown."""
    settings = get_settings()
    logger.info("Starting Resume Parser API", version=__version__, provider=settings.ai_provider)

    app.state.redis = create_redis_client(settings)
    app.state.quota_counter = DailyQuotaCounter(app.state.redis)

    redis_health = await check_redis_health(app.state.redis)
    if not redis_health.connected:
        logger.warning(
            "Redis unavailable at startup, daily quota will fail open",
            error=redis_health.error,
        )

    try:
        app.state.ai_parser = create_ai_parser(settings)
        await app.state.ai_parser.connect()
    except AIConfigurationError as e:
        # Unknown provider tags are a deployment mistake: refuse to start
        if settings.ai_provider.strip().lower() not in SUPPORTED_PROVIDERS:
            raise
        logger.error("AI provider not configured", provider=settings.ai_provider, error=str(e))
        app.state.ai_parser = None

    yield

    logger.info("Shutting down Resume Parser API")
    if app.state.ai_parser is not None:
        await app.state.ai_parser.close()
    await close_redis_client(app.state.redis)


# Create FastAPI app
app = FastAPI(
    title="Resume Parser API",
    description="Parse resume documents into structured JSON using pluggable AI providers",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# Trace ID middleware for request correlation
@app.middleware("http")
async def trace_id_middleware(request: Request, call_next):
    """Add trace ID to every request for log correlation."""
    trace_id = request.headers.get("X-Trace-ID", generate_trace_id())
    set_trace_id(trace_id)

    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(trace_id=trace_id)

    response = await call_next(request)

    response.headers["X-Trace-ID"] = trace_id
    return response


# =============================================================================
# Exception Handlers
# =============================================================================


def _error_response(
    status_code: int, message: str, headers: dict[str, str] | None = None
) -> JSONResponse:
    body = ApiResponse(success=False, message=message, errors=[message])
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Render HTTP errors in the response envelope."""
    message = exc.detail if isinstance(exc.detail, str) else json.dumps(exc.detail)
    if exc.status_code == 404 and message == "Not Found":
        message = "Route not found"
    return _error_response(exc.status_code, message, headers=getattr(exc, "headers", None))


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Per-minute limit exceeded."""
    logger.warning(
        "Per-minute rate limit exceeded",
        client=get_remote_address(request),
        limit=str(exc.detail),
    )
    return _error_response(429, "Too many requests from this IP, please try again later.")


@app.exception_handler(DailyQuotaExceeded)
async def daily_quota_exceeded_handler(request: Request, exc: DailyQuotaExceeded) -> JSONResponse:
    """Daily quota exhausted."""
    body = QuotaExceededResponse(
        message=DAILY_LIMIT_MESSAGE,
        reset_time=exc.decision.reset_time.isoformat(),
        limit=exc.limit,
        remaining=exc.decision.remaining,
    )
    return JSONResponse(
        status_code=429,
        content=body.model_dump(),
        headers=_quota_headers(exc.decision, exc.limit),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Log unexpected errors and hide their details from clients."""
    logger.error(
        "Unhandled error",
        path=request.url.path,
        method=request.method,
        error=str(exc),
        exc_info=exc,
    )
    return _error_response(500, "Internal server error")


app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# Add Prometheus metrics
Instrumentator().instrument(app).expose(app)


# =============================================================================
# Dependencies
# =============================================================================


def get_ai_parser(request: Request) -> AIParser:
    """AI parser created at startup, or 503 when the provider is unusable."""
    parser = getattr(request.app.state, "ai_parser", None)
    if parser is None:
        raise HTTPException(
            status_code=503,
            detail=(
                f"AI provider '{get_settings().ai_provider}' is not configured. "
                "Please check your API key."
            ),
        )
    return parser


def get_resume_parser_service(ai_parser: AIParser = Depends(get_ai_parser)) -> ResumeParserService:
    return ResumeParserService(
        ai_parser, apply_default_structure=get_settings().apply_default_structure
    )


def get_quota_counter(request: Request) -> DailyQuotaCounter:
    counter = getattr(request.app.state, "quota_counter", None)
    if counter is None:
        # No store wired up: every decision fails open
        counter = DailyQuotaCounter(None)
    return counter


def require_admin(request: Request) -> None:
    """Guard administrative endpoints with X-Admin-Key when ADMIN_API_KEY is set."""
    admin_key = get_settings().admin_api_key
    if not admin_key:
        return
    provided = request.headers.get("X-Admin-Key", "")
    if not secrets.compare_digest(provided, admin_key):
        raise HTTPException(status_code=403, detail="Admin key required")


def _quota_headers(decision: QuotaDecision, limit: int) -> dict[str, str]:
    return {
        "X-RateLimit-Limit": str(limit),
        "X-RateLimit-Remaining": str(decision.remaining),
        "X-RateLimit-Reset": decision.reset_time.isoformat(),
        "X-RateLimit-Reset-After": str(decision.seconds_until_reset()),
    }


async def enforce_daily_quota(
    request: Request, response: Response, quota_counter: DailyQuotaCounter
) -> QuotaDecision:
    """Consume one unit of the caller's daily quota and set the X-RateLimit headers."""
    settings = get_settings()
    identity = resolve_quota_identity(request, settings.daily_rate_limit_key)
    decision = await quota_counter.check_and_increment(identity, settings.daily_rate_limit)

    if not decision.allowed:
        raise DailyQuotaExceeded(decision, settings.daily_rate_limit)

    response.headers.update(_quota_headers(decision, settings.daily_rate_limit))
    return decision


def format_uptime(seconds: float) -> str:
    """Render an uptime as ``1d 2h 3m``, ``2h 3m`` or ``3m``."""
    seconds = int(seconds)
    days, remainder = divmod(seconds, 86400)
    hours, remainder = divmod(remainder, 3600)
    minutes = remainder // 60

    if days > 0:
        return f"{days}d {hours}h {minutes}m"
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# Health Endpoints
# =============================================================================


@app.get("/health", response_model=ApiResponse)
async def health_check(request: Request) -> ApiResponse:
    """Check the health of the API and its dependencies.

    Always healthy while serving: the daily quota fails open without Redis.
    """
    redis_health = await check_redis_health(getattr(request.app.state, "redis", None))

    return ApiResponse(
        success=True,
        data=HealthResponse(
            status="healthy",
            timestamp=_now_iso(),
            services={
                "api": "operational",
                "redis": "operational" if redis_health.connected else "degraded",
            },
            version=__version__,
        ),
        message="Service is healthy",
    )


@app.get("/health/ready", response_model=ApiResponse)
async def readiness_probe() -> ApiResponse:
    """Readiness probe."""
    return ApiResponse(
        success=True,
        data=ProbeResponse(status="ready", timestamp=_now_iso()),
        message="Service is ready",
    )


@app.get("/health/live", response_model=ApiResponse)
async def liveness_probe() -> ApiResponse:
    """Liveness probe."""
    return ApiResponse(
        success=True,
        data=ProbeResponse(status="alive", timestamp=_now_iso()),
        message="Service is alive",
    )


@app.get("/health/status", response_model=ApiResponse)
async def detailed_status(request: Request) -> ApiResponse:
    """Detailed system status: application, Redis and rate limiting."""
    settings = get_settings()
    redis_health = await check_redis_health(getattr(request.app.state, "redis", None))
    uptime = time.time() - START_TIME

    status = {
        "application": {
            "name": "Resume Parser API",
            "version": __version__,
            "environment": settings.environment,
            "uptime_seconds": int(uptime),
            "uptime": format_uptime(uptime),
            "pid": os.getpid(),
            "python_version": platform.python_version(),
        },
        "services": {
            "api": {"status": "operational", "port": settings.port},
            "redis": {
                "status": "operational" if redis_health.connected else "disconnected",
                "connected": redis_health.connected,
                "latency": f"{redis_health.latency_ms}ms"
                if redis_health.latency_ms is not None
                else "N/A",
                "url": mask_redis_url(settings.redis_connection_url),
                "error": redis_health.error,
            },
        },
        "rate_limiting": {
            "daily_limit": settings.daily_rate_limit,
            "per_minute_limit": settings.rate_limit_per_minute,
            "key_strategy": settings.daily_rate_limit_key,
            "provider": "redis" if redis_health.connected else "fallback (allow all)",
        },
        "timestamp": _now_iso(),
    }

    return ApiResponse(success=True, data=status, message="System status retrieved successfully")


# =============================================================================
# Resume Endpoints
# =============================================================================


async def _read_upload(request: Request) -> tuple[UploadFile, bytes, object | None]:
    """Read the single uploaded file and the optional customStructure field.

    Raises:
        HTTPException: 400 for any upload validation failure.
    """
    settings = get_settings()
    form = await request.form()

    files = [value for _, value in form.multi_items() if isinstance(value, UploadFile)]
    if not files:
        raise HTTPException(status_code=400, detail="No file uploaded. Please provide a resume file.")
    if len(files) > 1:
        raise HTTPException(status_code=400, detail="Only one file is allowed")

    upload = files[0]
    mime_type = upload.content_type or ""
    allowed = settings.allowed_file_type_list
    if mime_type not in allowed:
        raise HTTPException(
            status_code=400,
            detail=f"File type {mime_type or 'unknown'} is not supported. Allowed types: {', '.join(allowed)}",
        )

    content = await upload.read()
    if len(content) > settings.max_file_size:
        raise HTTPException(
            status_code=400,
            detail=f"File size exceeds limit of {settings.max_file_size / 1024 / 1024:g}MB",
        )
    if not content:
        raise HTTPException(status_code=400, detail="File appears to be empty or corrupted.")

    template = None
    raw_structure = form.get("customStructure")
    if isinstance(raw_structure, str) and raw_structure.strip():
        try:
            template = json.loads(raw_structure)
        except json.JSONDecodeError as e:
            raise HTTPException(
                status_code=400, detail="Invalid JSON format in customStructure field"
            ) from e

    return upload, content, template


@app.post("/api/v1/resume/parse", response_model=ApiResponse)
@limiter.limit(f"{settings.rate_limit_per_minute}/minute")
async def parse_resume(
    request: Request,
    response: Response,
    service: ResumeParserService = Depends(get_resume_parser_service),
    quota_counter: DailyQuotaCounter = Depends(get_quota_counter),
) -> ApiResponse:
    """
    Parse an uploaded resume into structured JSON.

    Multipart form:
    - **any single file field**: PDF, DOCX or plain-text resume
    - **customStructure** (optional): JSON template the output must follow
    """
    await enforce_daily_quota(request, response, quota_counter)
    upload, content, template = await _read_upload(request)

    start = time.time()
    logger.info(
        "Starting resume parsing",
        filename=upload.filename,
        mime_type=upload.content_type,
        size=len(content),
        has_template=template is not None,
    )

    try:
        result = await service.parse_resume(content, upload.content_type or "", template)
    except AIConfigurationError as e:
        logger.error("AI provider not configured", error=str(e))
        raise HTTPException(status_code=503, detail=str(e)) from e
    except (AIProviderAuthError, AIProviderQuotaError, AIProviderRateLimitError) as e:
        logger.error("AI provider unavailable", error=str(e), error_type=type(e).__name__)
        raise HTTPException(status_code=503, detail=str(e)) from e
    except AIParsingError as e:
        logger.error("AI parsing failed", error=str(e), error_type=type(e).__name__)
        raise HTTPException(status_code=502, detail=str(e)) from e
    except (EmptyDocumentError, DocumentExtractionError) as e:
        logger.warning("Document rejected", error=str(e), filename=upload.filename)
        raise HTTPException(status_code=400, detail=str(e)) from e

    logger.info(
        "Resume parsing completed",
        filename=upload.filename,
        processing_time_ms=int((time.time() - start) * 1000),
    )

    return ApiResponse(
        success=True,
        data=result,
        message=(
            "Resume parsed successfully with custom structure"
            if template is not None
            else "Resume parsed successfully with default structure"
        ),
    )


@app.get("/api/v1/resume/formats", response_model=ApiResponse)
async def get_supported_formats() -> ApiResponse:
    """Supported upload MIME types."""
    formats = get_settings().allowed_file_type_list
    descriptions = {mime: FILE_TYPE_DESCRIPTIONS.get(mime, mime) for mime in formats}
    return ApiResponse(
        success=True,
        data=FormatsData(formats=formats, descriptions=descriptions),
        message="Supported formats retrieved successfully",
    )


@app.get("/api/v1/resume/fields", response_model=ApiResponse)
async def get_parsing_fields() -> ApiResponse:
    """Field catalogue of the default structure."""
    return ApiResponse(
        success=True,
        data=FieldsData(fields=FIELD_PATHS, categories=FIELD_CATEGORIES, total=len(FIELD_PATHS)),
        message="Parsing fields retrieved successfully",
    )


@app.get("/api/v1/resume/structure", response_model=ApiResponse)
async def get_default_structure() -> ApiResponse:
    """Default template plus examples for common use cases."""
    return ApiResponse(
        success=True,
        data=StructureData(structure=DEFAULT_STRUCTURE, examples=EXAMPLE_STRUCTURES),
        message="Default parsing structure retrieved successfully",
    )


@app.post("/api/v1/resume/validate-structure", response_model=ApiResponse)
async def validate_custom_structure(body: ValidateStructureRequest) -> ApiResponse:
    """Validate a template before using it as customStructure."""
    if body.structure is None:
        raise HTTPException(status_code=400, detail="No structure provided in request body")

    validation = validate_structure(body.structure)
    return ApiResponse(
        success=True,
        data=StructureValidationData(**asdict(validation)),
        message=(
            "Structure is valid and ready to use"
            if validation.valid
            else "Structure has validation issues"
        ),
    )


@app.get("/api/v1/resume/test", response_model=ApiResponse)
async def test_ai_connection(
    service: ResumeParserService = Depends(get_resume_parser_service),
) -> ApiResponse:
    """Round-trip connectivity test against the configured AI provider."""
    start = time.time()
    connected = await service.test_ai_connection()
    provider = service.get_ai_provider_info()
    response_time_ms = int((time.time() - start) * 1000)

    logger.info(
        "AI connection test completed",
        connected=connected,
        provider=provider["name"],
        response_time_ms=response_time_ms,
    )

    return ApiResponse(
        success=True,
        data=ConnectionTestData(
            connected=connected,
            message=(
                f"AI service ({provider['name']}) is working correctly"
                if connected
                else f"AI service ({provider['name']}) connection failed"
            ),
            provider=provider["name"],
            response_time_ms=response_time_ms,
            details={"configured": provider["configured"], "model": provider["model"]},
        ),
        message="AI connection test successful" if connected else "AI connection test failed",
    )


@app.get("/api/v1/resume/provider", response_model=ApiResponse)
async def get_provider_info(
    service: ResumeParserService = Depends(get_resume_parser_service),
) -> ApiResponse:
    """Current provider, supported providers and their capabilities."""
    info = service.get_ai_provider_info()
    return ApiResponse(
        success=True,
        data=ProviderInfoData(
            current=CurrentProvider(
                provider=get_settings().ai_provider.lower(),
                name=info["name"],
                model=info["model"],
                configured=info["configured"],
            ),
            supported=SUPPORTED_PROVIDERS,
            capabilities=PROVIDER_CAPABILITIES,
        ),
        message="AI provider information retrieved successfully",
    )


@app.get("/api/v1/resume/stats", response_model=ApiResponse)
async def get_stats(request: Request) -> ApiResponse:
    """Uptime, version and system information."""
    settings = get_settings()
    parser = getattr(request.app.state, "ai_parser", None)
    uptime = time.time() - START_TIME

    return ApiResponse(
        success=True,
        data=StatsData(
            uptime_seconds=int(uptime),
            uptime=format_uptime(uptime),
            version=__version__,
            supported_formats=len(settings.allowed_file_type_list),
            available_fields=len(FIELD_PATHS),
            ai_provider=parser.get_provider_name() if parser else settings.ai_provider,
            system_info={
                "python_version": platform.python_version(),
                "platform": platform.system().lower(),
                "arch": platform.machine(),
                "pid": os.getpid(),
            },
        ),
        message="System statistics retrieved successfully",
    )


# =============================================================================
# Rate Limit Endpoints
# =============================================================================


@app.get("/api/v1/rate-limit/status/{key}", response_model=ApiResponse)
async def get_rate_limit_status(
    key: str, quota_counter: DailyQuotaCounter = Depends(get_quota_counter)
) -> ApiResponse:
    """Daily quota usage for one identity."""
    max_requests = get_settings().daily_rate_limit
    current = await quota_counter.get_current_count(key)

    return ApiResponse(
        success=True,
        data=QuotaStatusData(
            key=key,
            current_count=current,
            max_requests=max_requests,
            remaining=max(0, max_requests - current),
            reset_time=next_midnight(local_now()).isoformat(),
        ),
        message="Rate limit status retrieved successfully",
    )


@app.delete(
    "/api/v1/rate-limit/reset/{key}",
    response_model=ApiResponse,
    dependencies=[Depends(require_admin)],
)
async def reset_rate_limit(
    key: str, quota_counter: DailyQuotaCounter = Depends(get_quota_counter)
) -> ApiResponse:
    """Administrative reset of one identity's daily quota."""
    if not await quota_counter.reset_limit(key):
        raise HTTPException(status_code=503, detail="Rate limit store unavailable")
    return ApiResponse(success=True, message=f"Rate limit reset for key: {key}")


@app.get(
    "/api/v1/rate-limit/stats",
    response_model=ApiResponse,
    dependencies=[Depends(require_admin)],
)
async def get_rate_limit_stats(
    quota_counter: DailyQuotaCounter = Depends(get_quota_counter),
) -> ApiResponse:
    """Identities with a quota counter today."""
    stats = await quota_counter.get_stats()
    return ApiResponse(
        success=True,
        data=QuotaStatsData(
            total_active_users=stats["total_keys"],
            active_users=stats["active_users"],
            date=stats["date"],
        ),
        message="Rate limit statistics retrieved successfully",
    )
