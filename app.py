from __future__ import annotations

import contextlib
import json
import logging
import time

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from dotenv import load_dotenv

from alphabase import AlphaBase, AsyncAlphaBase
from alphabase.errors import (
    AlphaBaseError,
    CollectionNotFound,
    DocumentNotFound,
    ImportFormatError,
    InvalidKeyType,
    InvalidTtl,
    InvalidValue,
    NoTransactionOpen,
    SchemaViolation,
    StorageIOError,
    TransactionAlreadyOpen,
    UnknownBatchOp,
    UnsupportedCipher,
)
from audit import JsonlAuditSink
from settings import Settings, get_settings

logger = logging.getLogger(__name__)

ERROR_STATUS: dict[type[AlphaBaseError], int] = {
    InvalidKeyType: 400,
    InvalidTtl: 400,
    InvalidValue: 400,
    ImportFormatError: 400,
    UnknownBatchOp: 400,
    UnsupportedCipher: 400,
    SchemaViolation: 422,
    CollectionNotFound: 404,
    DocumentNotFound: 404,
    TransactionAlreadyOpen: 409,
    NoTransactionOpen: 409,
    StorageIOError: 503,
}


def status_for(exc: AlphaBaseError) -> int:
    for cls in type(exc).__mro__:
        if cls in ERROR_STATUS:
            return ERROR_STATUS[cls]
    return 500


def open_configured_store(settings: Settings) -> AlphaBase:
    schema = None
    if settings.schema_file is not None:
        schema = json.loads(settings.schema_file.read_text(encoding="utf-8"))
    return AlphaBase(
        settings.db_file,
        passphrase=settings.password,
        cipher=settings.cipher,
        schema=schema,
        backup_dir=settings.backup_dir,
        batch_write=settings.batch_write,
        deferred_write_timeout_ms=settings.deferred_write_ms,
        cleanup_interval_ms=settings.cleanup_interval_ms or None,
        auto_backup_interval_ms=settings.auto_backup_interval_ms or None,
    )


@contextlib.asynccontextmanager
async def lifespan(app: FastAPI):
    try:
        yield
    finally:
        await app.state.store.close()
        if app.state.audit is not None:
            app.state.audit.close()


def create_app(settings: Settings | None = None) -> FastAPI:
    load_dotenv("local.env")
    settings = settings or get_settings()

    from endpoints.auth_endpoints import router as auth_router
    from endpoints.kv_endpoints import router as kv_router

    store = open_configured_store(settings)
    audit = JsonlAuditSink(settings.audit_file) if settings.audit_file is not None else None
    if audit is not None:
        store.subscribe(audit.expiry_listener)

    app = FastAPI(title="AlphaBase", lifespan=lifespan)
    app.state.settings = settings
    app.state.store = AsyncAlphaBase(store)
    app.state.audit = audit

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    if settings.debug_log_requests:

        @app.middleware("http")
        async def log_requests(request: Request, call_next):
            started = time.perf_counter()
            response = await call_next(request)
            logger.info(
                "REQUEST: %s %s -> %s (%.1f ms)",
                request.method,
                request.url.path,
                response.status_code,
                (time.perf_counter() - started) * 1000,
            )
            return response

    @app.exception_handler(AlphaBaseError)
    async def alphabase_error_handler(request: Request, exc: AlphaBaseError):
        status = status_for(exc)
        if status >= 500:
            logger.error("STORE ERROR on %s %s: %s", request.method, request.url.path, exc)
        return JSONResponse({"error": type(exc).__name__, "detail": str(exc)}, status_code=status)

    @app.get("/health")
    async def health():
        return {"status": "ok", "timestamp": int(time.time() * 1000)}

    app.include_router(auth_router)
    app.include_router(kv_router)

    return app
