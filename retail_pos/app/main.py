from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from .routers.pos import router as pos_router
from .config import settings
from .deps import get_pos_session, reset_pos_session
from .errors import PosError
from .logs import json_log

STARTED_AT_UTC = datetime.now(timezone.utc)


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    # Restore the terminal (and its persisted cart) before the first request.
    session = get_pos_session()
    if not settings.store_url:
        json_log("warning", "startup.store_not_configured", env=settings.env, version=settings.api_version)
    else:
        json_log(
            "info",
            "startup.ready",
            env=settings.env,
            version=settings.api_version,
            branch_id=session.branch_id,
            cart_lines=len(session.cart.lines),
        )
    yield
    reset_pos_session()


app = FastAPI(title="Retail POS API", version=settings.api_version, lifespan=_lifespan)


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or ""


@app.exception_handler(RequestValidationError)
def _request_validation_error(_req: Request, exc: Exception):
    content = {"detail": "validation failed"}
    if settings.env in {"local", "dev"} and hasattr(exc, "errors"):
        content["errors"] = exc.errors()
    return JSONResponse(status_code=422, content=content)


# Engine errors that escape a route (they normally come back as Outcome values).
@app.exception_handler(PosError)
def _pos_error(req: Request, exc: PosError):
    status = {"validation": 400, "remote": 409, "transport": 503}.get(exc.kind, 500)
    json_log(
        "warning",
        "http.request.pos_error",
        request_id=_current_request_id(req),
        path=req.url.path,
        kind=exc.kind,
        error=exc.message,
    )
    return JSONResponse(status_code=status, content={"detail": exc.message})


@app.exception_handler(Exception)
def _unhandled_exception(req: Request, exc: Exception):
    rid = _current_request_id(req)
    json_log(
        "error",
        "http.request.unhandled",
        request_id=rid,
        method=req.method,
        path=req.url.path,
        error=str(exc),
    )
    content = {"detail": "internal error", "request_id": rid}
    if settings.env in {"local", "dev"}:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)

# Correlation id + basic structured request logging.
@app.middleware("http")
async def _request_logging(request: Request, call_next):
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.time()
    path = request.url.path
    method = request.method
    client_ip = (request.client.host if request.client else None)

    try:
        response = await call_next(request)
    except Exception as exc:
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "error",
            "http.request.error",
            request_id=rid,
            method=method,
            path=path,
            client_ip=client_ip,
            duration_ms=dur_ms,
            error=str(exc),
        )
        raise

    response.headers["X-Request-Id"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    if path != "/health":
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "info",
            "http.request",
            request_id=rid,
            method=method,
            path=path,
            status_code=response.status_code,
            client_ip=client_ip,
            duration_ms=dur_ms,
        )
    return response

# The till UI is served from a different origin during development.
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(pos_router)



@app.get("/health")
def health(req: Request):
    return {
        "status": "ok",
        "env": settings.env,
        "store": "configured" if settings.store_url else "missing",
        "service": "retail-pos",
        "version": settings.api_version,
        "started_at": STARTED_AT_UTC.isoformat(),
        "request_id": _current_request_id(req),
    }


@app.get("/meta")
def meta():
    return {
        "service": "retail-pos",
        "version": settings.api_version,
        "env": settings.env,
        "uptime_seconds": int((datetime.now(timezone.utc) - STARTED_AT_UTC).total_seconds()),
        "started_at": STARTED_AT_UTC.isoformat(),
    }
