from __future__ import annotations

import uuid
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from formledger.core import settings
from formledger.core.cache import SchemaCache
from formledger.core.db import db_health, get_database_url, init_db
from formledger.core.errors import DomainError
from formledger.core.observability import emit, last_error_summary
from formledger.modules.form_schemas.registry import SchemaRegistry
from formledger.modules.form_schemas.router import router as schemas_router
from formledger.modules.form_schemas.service import SchemaActivationService
from formledger.modules.orders.router import router as orders_router
from formledger.modules.orders.service import OrderVersionService
from formledger.modules.orders.store import VersionStore
from formledger.modules.purge.router import router as purge_router
from formledger.modules.purge.scheduler import PurgeScheduler
from formledger.modules.purge.service import WipPurgeEngine
from formledger.modules.purge.store import PurgeAuditStore


# === OBSERVABILITY FOUNDATIONS ===
# Contract locks:
# - /health keys: status, version, db, scheduler, last_error_summary
# - X-Request-Id in/out (missing -> generated; always echoed back; also on errors)
# - Error envelope keys: error, message, request_id, details
def _err_envelope(error: str, message: str, request_id: Optional[str], details: Any, status_code: int):
    headers = {}
    if request_id:
        headers["X-Request-Id"] = request_id
    return JSONResponse(
        status_code=status_code,
        content={
            "error": error,
            "message": message,
            "request_id": request_id,
            "details": details,
        },
        headers=headers,
    )


def _install_observability(app: FastAPI) -> None:
    @app.middleware("http")
    async def _request_id_mw(request: Request, call_next):
        rid = request.headers.get("X-Request-Id") or uuid.uuid4().hex.upper()
        request.state.request_id = rid
        emit("info", "http.request.start", f"{request.method} {request.url.path}", rid, __name__)
        try:
            resp = await call_next(request)
        except Exception as e:
            emit("error", "http.request.exception", str(e), rid, __name__)
            raise
        resp.headers["X-Request-Id"] = rid
        emit("info", "http.request.end", f"{request.method} {request.url.path} -> {getattr(resp, 'status_code', None)}", rid, __name__)
        return resp

    @app.exception_handler(DomainError)
    async def _domain_exc_handler(request: Request, exc: DomainError):
        rid = getattr(request.state, "request_id", None)
        return _err_envelope(exc.error, exc.message, rid, exc.details, exc.status_code)

    @app.exception_handler(StarletteHTTPException)
    async def _http_exc_handler(request: Request, exc: StarletteHTTPException):
        rid = getattr(request.state, "request_id", None)
        return _err_envelope("http_error", str(exc.detail), rid, {"status_code": exc.status_code}, exc.status_code)

    @app.exception_handler(RequestValidationError)
    async def _validation_exc_handler(request: Request, exc: RequestValidationError):
        rid = getattr(request.state, "request_id", None)
        return _err_envelope("validation_error", "request validation failed", rid, exc.errors(), 422)

    @app.exception_handler(Exception)
    async def _unhandled_exc_handler(request: Request, exc: Exception):
        rid = getattr(request.state, "request_id", None)
        emit("error", "http.unhandled", str(exc), rid, __name__, error=type(exc).__name__)
        return _err_envelope("internal_error", "internal server error", rid, {"type": type(exc).__name__}, 500)
# === END OBSERVABILITY FOUNDATIONS ===


def create_app(database_url: Optional[str] = None, purge_enabled: Optional[bool] = None) -> FastAPI:
    url = database_url or get_database_url()
    enabled = settings.PURGE_ENABLED if purge_enabled is None else purge_enabled

    registry = SchemaRegistry(url)
    store = VersionStore(url)
    audit = PurgeAuditStore(url)
    engine = WipPurgeEngine(store, audit, lock_ttl_seconds=settings.PURGE_LOCK_TTL_SECONDS)
    scheduler = PurgeScheduler(engine, run_at=settings.PURGE_RUN_AT, interval_seconds=settings.PURGE_INTERVAL_SECONDS)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        init_db(url)
        if enabled:
            scheduler.start()
        try:
            yield
        finally:
            if enabled:
                scheduler.stop()

    app = FastAPI(title="Form Ledger API", version=settings.APP_VERSION, lifespan=lifespan)
    app.state.database_url = url
    app.state.schema_service = SchemaActivationService(registry, SchemaCache(settings.SCHEMA_CACHE_TTL_SECONDS))
    app.state.order_service = OrderVersionService(store, registry)
    app.state.purge_engine = engine
    app.state.purge_audit = audit
    app.state.purge_scheduler = scheduler

    _install_observability(app)
    app.include_router(orders_router)
    app.include_router(schemas_router)
    app.include_router(purge_router)

    @app.get("/health")
    def health():
        return {
            "status": "ok",
            "version": settings.APP_VERSION,
            "db": db_health(url),
            "scheduler": scheduler.health(),
            "last_error_summary": last_error_summary(),
        }

    return app


app = create_app()
