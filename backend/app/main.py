from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
import json
import sys
import time
import uuid
from datetime import datetime, timezone
from .routers.parties import router as parties_router
from .routers.products import router as products_router
from .routers.warehouses import router as warehouses_router
from .routers.purchases import router as purchases_router
from .routers.sales import router as sales_router
from .routers.inventory import router as inventory_router
from .routers.finance import router as finance_router
from .routers.reports import router as reports_router
from .config import settings
from .db import get_conn, close_pools
from .errors import DomainError, PersistenceError
from .events import notifications
from ..workers.reporting_worker import ReportingWorker

app = FastAPI(title="Distribution ERP API", version=settings.api_version)
STARTED_AT_UTC = datetime.now(timezone.utc)
reporting_worker = ReportingWorker(notifications, get_conn)


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


def _json_log(level: str, event: str, **fields):
    rec = {"ts": datetime.now(timezone.utc).isoformat(), "level": level, "event": event, **fields}
    print(json.dumps(rec, default=str), file=sys.stderr)


@app.exception_handler(DomainError)
def _domain_error(req: Request, exc: DomainError):
    rid = _current_request_id(req)
    level = "error" if exc.status_code >= 500 else "info"
    _json_log(
        level,
        "http.request.domain_error",
        request_id=rid,
        method=req.method,
        path=req.url.path,
        error_code=exc.error_code,
        status_code=exc.status_code,
        error=exc.detail,
    )
    content = {"detail": exc.detail, "error_code": exc.error_code, "request_id": rid}
    if isinstance(exc, PersistenceError):
        content["retryable"] = exc.retryable
        if not settings.expose_errors:
            # Driver messages can carry SQL and values.
            content["detail"] = "conflict" if exc.status_code == 409 else "database error"
    return JSONResponse(status_code=exc.status_code, content=content)


@app.exception_handler(RequestValidationError)
def _request_validation_error(_req: Request, exc: Exception):
    content = {"detail": "validation failed"}
    if settings.expose_errors and hasattr(exc, "errors"):
        content["errors"] = exc.errors()
    return JSONResponse(status_code=422, content=json.loads(json.dumps(content, default=str)))


@app.exception_handler(Exception)
def _unhandled_exception(req: Request, exc: Exception):
    rid = _current_request_id(req)
    _json_log(
        "error",
        "http.request.unhandled",
        request_id=rid,
        method=req.method,
        path=req.url.path,
        error=str(exc),
    )
    content = {"detail": "internal error", "request_id": rid}
    if settings.expose_errors:
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
        _json_log(
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
    if not path.startswith("/health"):
        dur_ms = int((time.time() - started) * 1000)
        _json_log(
            "info",
            "http.request",
            request_id=rid,
            method=method,
            path=path,
            status_code=response.status_code,
            client_ip=client_ip,
            actor=request.headers.get("X-Actor-Id"),
            duration_ms=dur_ms,
        )
    return response

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(parties_router)
app.include_router(products_router)
app.include_router(warehouses_router)
app.include_router(purchases_router)
app.include_router(sales_router)
app.include_router(inventory_router)
app.include_router(finance_router)
app.include_router(reports_router)

@app.on_event("startup")
def _startup():
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                cur.fetchone()
        _json_log("info", "startup.db_connected", env=settings.env, version=settings.api_version)
    except Exception as exc:
        _json_log("warning", "startup.db_probe_failed", env=settings.env, error=str(exc))
    if settings.reporting_worker_enabled:
        reporting_worker.start()

@app.on_event("shutdown")
def _shutdown():
    if settings.reporting_worker_enabled:
        reporting_worker.stop()
    notifications.close()
    close_pools()


def _db_health():
    try:
        with get_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                cur.fetchone()
        return True, None
    except Exception as exc:
        return False, str(exc)


@app.get("/health")
def health(req: Request):
    request_id = _current_request_id(req)
    ok, err = _db_health()
    content = {
        "status": "ok" if ok else "degraded",
        "env": settings.env,
        "db": "ok" if ok else "down",
        "service": "distribution-erp",
        "version": settings.api_version,
        "started_at": STARTED_AT_UTC.isoformat(),
        "notifications_pending": notifications.pending(),
        "notifications_dropped": notifications.dropped,
        "request_id": request_id,
    }
    if not ok:
        if settings.expose_errors:
            content["error"] = err
        return JSONResponse(status_code=503, content=content)
    return content


@app.get("/health/live")
def health_live(req: Request):
    return {
        "status": "ok",
        "env": settings.env,
        "service": "distribution-erp",
        "request_id": _current_request_id(req),
    }


@app.get("/meta")
def meta():
    return {
        "service": "distribution-erp",
        "version": settings.api_version,
        "env": settings.env,
        "uptime_seconds": int((datetime.now(timezone.utc) - STARTED_AT_UTC).total_seconds()),
        "started_at": STARTED_AT_UTC.isoformat(),
    }
