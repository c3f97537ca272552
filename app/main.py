"""
main.py — Fleet Procurement API

Application factory: logging, session middleware, request ids, error
rendering and router mounts. Business logic lives in services/.

Business Rules:
- Every response carries X-Request-ID (uuid4()[:8]) and security headers
- Domain errors render as ErrorResponse with their public message only;
  the internal detail is logged with the request id
- Unhandled exceptions are logged with traceback and reported as 500
- Shutdown cancels background tasks and pending thread-link retries
  before closing the shared HTTP client

Called by: uvicorn (app.main:app)
Depends on: routers, logging_config, http_client, services/background
"""

import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException
from starlette.middleware.sessions import SessionMiddleware

from .config import settings
from .errors import ProcurementError
from .http_client import close_clients
from .logging_config import setup_logging
from .routers import conversations, orders, quote_requests, webhooks
from .schemas.errors import ErrorResponse
from .services import thread_linker
from .services.background import cancel_pending


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("Fleet procurement API starting")
    yield
    retries = thread_linker.cancel_all()
    await cancel_pending()
    await close_clients()
    logger.info("Shutdown complete ({} thread-link schedule(s) cancelled)", retries)


app = FastAPI(title="Fleet Procurement", version="1.0.0", lifespan=lifespan)
app.add_middleware(SessionMiddleware, secret_key=settings.secret_key)


# ── Request id / headers ──────────────────────────────────────────────

_SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "X-API-Version": "v1",
}


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = uuid.uuid4().hex[:8]
    request.state.request_id = request_id
    with logger.contextualize(request_id=request_id):
        response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    for name, value in _SECURITY_HEADERS.items():
        response.headers[name] = value
    return response


def _error(request: Request, status_code: int, error: str, detail: list | None = None) -> JSONResponse:
    body = ErrorResponse(
        error=error,
        status_code=status_code,
        request_id=getattr(request.state, "request_id", ""),
        detail=detail,
    )
    return JSONResponse(status_code=status_code, content=body.model_dump())


# ── Error handlers ────────────────────────────────────────────────────


@app.exception_handler(ProcurementError)
async def procurement_error_handler(request: Request, exc: ProcurementError):
    log = logger.error if exc.status_code >= 500 else logger.warning
    log("{} {} → {} {}: {}", request.method, request.url.path, exc.status_code,
        type(exc).__name__, exc.detail or exc.public_message)
    return _error(request, exc.status_code, exc.public_message)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    return _error(request, exc.status_code, str(exc.detail))


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg", ""), "type": e.get("type", "")}
        for e in exc.errors()
    ]
    logger.warning("{} {} → 422 validation: {}", request.method, request.url.path, errors)
    return _error(request, 422, "Invalid request", errors)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.opt(exception=exc).error("Unhandled error on {} {}", request.method, request.url.path)
    return _error(request, 500, "Internal server error")


# ── Routes ────────────────────────────────────────────────────────────

app.include_router(quote_requests.router)
app.include_router(orders.router)
app.include_router(webhooks.router)
app.include_router(conversations.router)


@app.get("/health")
async def health():
    return {"status": "ok", "version": app.version}
