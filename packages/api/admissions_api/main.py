# This project was developed with assistance from AI tools.
"""FastAPI application entry point."""

import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from .core.config import settings
from .routes import auth, files, health, progress
from .schemas.error import ErrorResponse
from .services.salesforce import RecordStoreError, close_record_store, init_record_store

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_app: FastAPI):
    """Application startup/shutdown lifecycle."""
    init_record_store(settings)
    yield
    await close_record_store()


app = FastAPI(
    title=settings.APP_NAME,
    description="Applicant progress, documents and payments backed by Salesforce",
    version="0.1.0",
    debug=settings.DEBUG,
    lifespan=lifespan,
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_HOSTS,
    allow_credentials=True,
    allow_methods=["GET", "PATCH", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type"],
)

_ERROR_CODES: dict[int, str] = {
    400: "invalid_payload",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    500: "internal_error",
    502: "record_store_error",
    503: "service_unavailable",
}


def _request_id(request: Request) -> str:
    return request.headers.get("x-request-id", str(uuid.uuid4()))


def _error(status_code: int, detail: str, request_id: str, error: str | None = None, headers=None) -> JSONResponse:
    body = ErrorResponse(
        error=error or _ERROR_CODES.get(status_code, "error"),
        detail=detail,
        request_id=request_id,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump(), headers=headers)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Convert HTTPException to the ``{ok: false, error}`` body."""
    return _error(exc.status_code, str(exc.detail), _request_id(request), headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Malformed request bodies and parameters are a 400 ``invalid_payload``."""
    detail = "; ".join(
        f"{'.'.join(str(part) for part in err.get('loc', ()))}: {err.get('msg', '')}" for err in exc.errors()
    )
    return _error(400, detail, _request_id(request))


@app.exception_handler(RecordStoreError)
async def record_store_exception_handler(request: Request, exc: RecordStoreError):
    """Salesforce failures: log the full message, return only the Salesforce error code."""
    request_id = _request_id(request)
    logger.error("Record store failure (request_id=%s, code=%s): %s", request_id, exc.error_code, exc)
    return _error(500, exc.error_code, request_id, error="record_store_error")


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    """Catch-all for unhandled exceptions -- log and return 500."""
    request_id = _request_id(request)
    logger.exception("Unhandled exception (request_id=%s)", request_id)
    return _error(500, "An unexpected error occurred.", request_id)


# Include routers
app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(auth.router, prefix="/api/auth", tags=["auth"])
app.include_router(progress.router, prefix="/api", tags=["progress"])
app.include_router(files.router, prefix="/api/files", tags=["files"])


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint"""
    return {"message": "Welcome to the Admissions Portal API"}
