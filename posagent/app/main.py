import time
import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as SchemaError

from .config import Settings
from .config import settings as default_settings
from .errors import NetworkError, NotFound, RemoteRejected, StorageUnavailable, ValidationError
from .logs import json_log
from .routers.cart import router as cart_router
from .routers.catalog import router as catalog_router
from .routers.held_sales import router as held_sales_router
from .routers.sales import router as sales_router
from .routers.settings import router as settings_router
from .routers.status import router as status_router
from .service import SyncService


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


def create_app(service: Optional[SyncService] = None, settings: Optional[Settings] = None, run_loop: bool = True) -> FastAPI:
    """
    Build the local HTTP API the cashier UI talks to.

    Tests pass a prebuilt `service` (with a fake upstream) and `run_loop=False` so no
    background task is left running between test cases.
    """
    settings = settings or (service.settings if service is not None else default_settings)
    app = FastAPI(title="POS Offline Agent", version=settings.api_version)
    app.state.service = service
    started_at = datetime.now(timezone.utc)

    def _debug(content: dict, exc: Exception) -> dict:
        if settings.env in {"local", "dev"}:
            content["error"] = str(exc)
        return content

    @app.exception_handler(ValidationError)
    def _validation_error(_req: Request, exc: ValidationError):
        content = {"detail": exc.message}
        if exc.field:
            content["field"] = exc.field
        return JSONResponse(status_code=400, content=content)

    @app.exception_handler(SchemaError)
    def _schema_error(_req: Request, exc: SchemaError):
        content = {"detail": "invalid value"}
        return JSONResponse(status_code=400, content=_debug(content, exc))

    @app.exception_handler(NotFound)
    def _not_found(_req: Request, exc: NotFound):
        return JSONResponse(status_code=404, content={"detail": str(exc) or "not found"})

    @app.exception_handler(StorageUnavailable)
    def _storage_unavailable(req: Request, exc: StorageUnavailable):
        json_log("error", "http.storage_unavailable", request_id=_current_request_id(req), error=str(exc))
        return JSONResponse(status_code=503, content=_debug({"detail": "local store unavailable"}, exc))

    @app.exception_handler(RemoteRejected)
    def _remote_rejected(_req: Request, exc: RemoteRejected):
        content = {"detail": "upstream rejected the request", "upstream_status": exc.status_code}
        return JSONResponse(status_code=502, content=_debug(content, exc))

    @app.exception_handler(NetworkError)
    def _network_error(_req: Request, exc: NetworkError):
        return JSONResponse(status_code=502, content=_debug({"detail": "upstream unreachable"}, exc))

    @app.exception_handler(RequestValidationError)
    def _request_validation_error(_req: Request, exc: Exception):
        content = {"detail": "validation failed"}
        if settings.env in {"local", "dev"} and hasattr(exc, "errors"):
            content["errors"] = exc.errors()
        return JSONResponse(status_code=422, content=content)

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
        return JSONResponse(status_code=500, content=_debug({"detail": "internal error", "request_id": rid}, exc))

    # Correlation id + basic structured request logging.
    @app.middleware("http")
    async def _request_logging(request: Request, call_next):
        rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
        request.state.request_id = rid
        started = time.time()
        path = request.url.path
        method = request.method
        try:
            response = await call_next(request)
        except Exception as exc:
            json_log(
                "error",
                "http.request.error",
                request_id=rid,
                method=method,
                path=path,
                duration_ms=int((time.time() - started) * 1000),
                error=str(exc),
            )
            raise
        response.headers["X-Request-Id"] = rid
        response.headers["X-Content-Type-Options"] = "nosniff"
        if path != "/health":
            json_log(
                "info",
                "http.request",
                request_id=rid,
                method=method,
                path=path,
                status_code=response.status_code,
                duration_ms=int((time.time() - started) * 1000),
            )
        return response

    # The cashier UI is served from its own dev server / webview origin.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.include_router(status_router)
    app.include_router(catalog_router)
    app.include_router(cart_router)
    app.include_router(sales_router)
    app.include_router(held_sales_router)
    app.include_router(settings_router)

    @app.on_event("startup")
    async def _startup():
        if app.state.service is None:
            app.state.service = SyncService(settings)
        await app.state.service.start(run_loop=run_loop)
        json_log("info", "startup.ready", env=settings.env, version=settings.api_version)

    @app.on_event("shutdown")
    async def _shutdown():
        if app.state.service is not None:
            await app.state.service.stop()

    @app.get("/health")
    def health(request: Request):
        service = request.app.state.service
        out = {
            "ok": True,
            "env": settings.env,
            "version": settings.api_version,
            "started_at": started_at.isoformat(),
            "uptime_s": int((datetime.now(timezone.utc) - started_at).total_seconds()),
        }
        if service is not None:
            snap = service.monitor.get_snapshot()
            out.update(storage_mode=service.storage_mode, is_online=snap.is_online)
        return out

    return app
