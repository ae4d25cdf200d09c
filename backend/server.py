"""
Invoicing Core API

Entry point: uvicorn server:app
"""

import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path

from dotenv import load_dotenv
from fastapi import APIRouter, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware

load_dotenv(Path(__file__).parent / ".env")

from config import get_cors_config, get_settings, validate_environment
from database import get_engine, init_db, ping
from logging_config import clear_request_context, get_logger, set_request_context, setup_logging
from routers import domains_router, invoices_router
from sentry_integration import capture_exception, init_sentry

settings = get_settings()

setup_logging(level=settings.LOG_LEVEL, json_format=settings.is_production, service_name="invoicing-core")
logger = get_logger(__name__)

if settings.SENTRY_DSN:
    init_sentry(
        dsn=settings.SENTRY_DSN,
        environment=settings.ENVIRONMENT,
        release=settings.API_VERSION,
        traces_sample_rate=0.1 if settings.is_production else 0.0,
    )

DESCRIPTION = """
Invoice lifecycle and outbound email API.

### Email Domains (/api/domains)
- Register a custom sending domain and publish its DNS records
- Verify signing and return-path records
- Reply-to and email template settings

### Invoices (/api/invoices)
- Email finalized invoices with PDF/XML attachments
- Manual status changes (sent, reminded, paid, cancelled)
- Prefilled email preview from the organization's templates
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(f"Starting {settings.API_TITLE} {settings.API_VERSION} ({settings.ENVIRONMENT}, debug={settings.debug_enabled})")

    report = validate_environment()
    for error in report["errors"]:
        logger.error(f"Configuration error: {error}")
    for warning in report["warnings"]:
        logger.warning(f"Configuration warning: {warning}")
    if not report["valid"] and settings.is_production:
        raise RuntimeError("Refusing to start with an invalid production configuration")

    await init_db()

    yield

    logger.info("Shutting down")
    await get_engine().dispose()


app = FastAPI(
    title=settings.API_TITLE,
    description=DESCRIPTION,
    version=settings.API_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs" if settings.debug_enabled else None,
    redoc_url="/api/redoc" if settings.debug_enabled else None,
)

api_router = APIRouter(prefix="/api")


@api_router.get("/", tags=["Health"])
async def root():
    return {"service": settings.API_TITLE, "version": settings.API_VERSION, "environment": settings.ENVIRONMENT}


@api_router.get("/health", tags=["Health"])
async def health_check():
    """
    Database and configuration status.

    503 when the database cannot be reached.
    """
    report = validate_environment()
    checks = {
        "configuration": {
            "status": "valid" if report["valid"] else "invalid",
            "errors": len(report["errors"]),
            "warnings": len(report["warnings"]),
        }
    }

    healthy = True
    try:
        await ping()
        checks["database"] = {"status": "connected"}
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = {"status": "disconnected", "error": str(e)}
        healthy = False

    body = {
        "status": "healthy" if healthy else "unhealthy",
        "timestamp": _now(),
        "version": settings.API_VERSION,
        "checks": checks,
    }
    if not healthy:
        raise HTTPException(status_code=503, detail=body)
    return body


@api_router.get("/health/ready", tags=["Health"])
async def readiness_check():
    try:
        await ping()
    except Exception as e:
        raise HTTPException(status_code=503, detail={"status": "not_ready", "error": str(e)})
    return {"status": "ready", "timestamp": _now()}


@api_router.get("/health/live", tags=["Health"])
async def liveness_check():
    return {"status": "alive", "timestamp": _now()}


api_router.include_router(domains_router)
api_router.include_router(invoices_router)
app.include_router(api_router)

app.add_middleware(CORSMiddleware, **get_cors_config())


@app.middleware("http")
async def request_context(request: Request, call_next):
    """Bind a request id for log correlation and report the handling time."""
    request_id = request.headers.get("X-Request-ID") or f"req-{uuid.uuid4().hex[:12]}"
    set_request_context(request_id=request_id)
    started = time.perf_counter()

    try:
        response = await call_next(request)
        elapsed_ms = (time.perf_counter() - started) * 1000
        response.headers["X-Request-ID"] = request_id
        response.headers["X-Process-Time"] = f"{elapsed_ms:.2f}"

        if response.status_code >= 400 or settings.debug_enabled:
            logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.0f}ms)")
        return response
    finally:
        clear_request_context()


@app.exception_handler(Exception)
async def unhandled_exception(request: Request, exc: Exception):
    logger.exception(f"Unhandled exception on {request.method} {request.url.path}")
    capture_exception(exc, path=request.url.path)

    content = {"detail": "Internal server error"}
    if not settings.is_production:
        content.update(detail=str(exc), type=type(exc).__name__)
    return JSONResponse(status_code=500, content=content)
