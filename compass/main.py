import logging
import time
import traceback
import uuid

import sentry_sdk
from fastapi import APIRouter, Depends, FastAPI, HTTPException, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from sqlalchemy import text
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse

from compass.config import get_settings

settings = get_settings()
if settings.sentry_dsn:
    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        traces_sample_rate=0.1,
        environment=settings.environment or "production",
    )

from compass.database import get_db  # noqa: E402
from compass.dependencies import limiter  # noqa: E402

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


class TrailingSlashMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore[override]
        if request.url.path != "/" and request.url.path.endswith("/"):
            scope = request.scope
            scope["path"] = scope["path"].rstrip("/")
            if "raw_path" in scope and isinstance(scope["raw_path"], (bytes, bytearray)):
                scope["raw_path"] = scope["raw_path"].rstrip(b"/")
        return await call_next(request)


app = FastAPI(
    title="Compass API",
    description="""
## Compass API Overview

Compass is a company workspace with AI market research. This API provides:

- **Authentication**: registration, login and bearer tokens
- **Companies**: the companies you track, with their tasks, notes and documents
- **Market Research**: background AI research runs with live progress

All endpoints under `/api/v1` require Bearer token authentication unless otherwise noted.
""",
    version="1.0.0",
    redirect_slashes=False,
    docs_url="/docs",
    redoc_url="/redoc",
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

_cors_origins = list(
    dict.fromkeys(o for o in [settings.frontend_url, "http://localhost:3000", "http://localhost:5173"] if o)
)
app.add_middleware(TrailingSlashMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_security_headers(request: Request, call_next):
    response = await call_next(request)
    response.headers["X-Content-Type-Options"] = "nosniff"
    response.headers["X-Frame-Options"] = "DENY"
    response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
    return response


@app.middleware("http")
async def log_requests(request: Request, call_next):
    request_id = str(uuid.uuid4())[:8]
    start_time = time.time()

    logger.info("[%s] %s %s", request_id, request.method, request.url.path)

    response = await call_next(request)

    duration = time.time() - start_time
    logger.info("[%s] %d (%.2fs)", request_id, response.status_code, duration)

    response.headers["X-Request-ID"] = request_id
    return response


from .routers import (  # noqa: E402
    auth,
    companies,
    documents,
    market_research,
    notes,
    tasks,
)

api_v1 = APIRouter(prefix="/api/v1")

api_v1.include_router(auth.router, prefix="/auth", tags=["Authentication"])
api_v1.include_router(companies.router, prefix="/companies", tags=["Companies"])
api_v1.include_router(tasks.router, prefix="/companies/{company_id}/tasks", tags=["Tasks"])
api_v1.include_router(notes.router, prefix="/companies/{company_id}/notes", tags=["Notes"])
api_v1.include_router(documents.router, prefix="/companies/{company_id}/documents", tags=["Documents"])
api_v1.include_router(
    market_research.router,
    prefix="/companies/{company_id}/market-research",
    tags=["Market Research"],
)

app.include_router(api_v1)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Return validation errors with a user-friendly message for the first error."""
    errors = exc.errors()
    message = "Validation failed"
    if errors:
        first = errors[0]
        msg = first.get("msg", "Invalid input")
        loc = first.get("loc", ())
        if len(loc) >= 2:
            message = f"{loc[-1]}: {msg}"
        else:
            message = msg
    logger.warning(
        "Request validation error: path=%s errors=%s",
        request.url.path,
        errors,
    )
    return JSONResponse(
        status_code=422,
        content={"detail": jsonable_encoder(errors), "message": message},
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    if isinstance(exc, HTTPException):
        raise exc
    logger.exception("Unhandled exception: %s (path=%s)", exc, request.url.path)
    if settings.debug:
        return JSONResponse(
            status_code=500,
            content={"detail": str(exc), "traceback": traceback.format_exc()},
        )
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/health", status_code=200)
async def health_check(db=Depends(get_db)):
    """
    Deep health check with database connectivity.

    **Response:** {status: "ok"|"degraded", checks: {database: "ok"|"error: ..."}}
    """
    health: dict = {"status": "ok", "checks": {}}

    try:
        await db.execute(text("SELECT 1"))
        health["checks"]["database"] = "ok"
    except Exception as e:
        health["checks"]["database"] = f"error: {e}"
        health["status"] = "degraded"

    return health
