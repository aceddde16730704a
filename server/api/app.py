# api/app.py
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.sessions import SessionMiddleware

from auth.oidc import OidcClient
from backend.storage.base import Storage
from backend.storage.database import DatabaseStorage
from backend.storage.memory import MemoryStorage
from cfg import (
    BYBIT_PARTNER_CODE,
    CREATE_TABLES_ON_STARTUP,
    DATABASE_URL,
    ISSUER_URL,
    OIDC_CLIENT_ID,
    OIDC_CLIENT_SECRET,
    PRODUCTION,
    SESSION_MAX_AGE,
    SESSION_SECRET,
)
from .routers import (
    auth_router,
    dashboard_router,
    master_copier_router,
    referrals_router,
    trading_accounts_router,
)

logger = logging.getLogger(__name__)


def build_storage(database_url: str = DATABASE_URL) -> Storage:
    """Relational storage when a database is configured, in-memory otherwise."""
    if database_url:
        return DatabaseStorage(
            database_url,
            create_tables=CREATE_TABLES_ON_STARTUP,
            bybit_partner_code=BYBIT_PARTNER_CODE,
        )
    return MemoryStorage(bybit_partner_code=BYBIT_PARTNER_CODE)


def build_oidc() -> OidcClient:
    return OidcClient(ISSUER_URL, OIDC_CLIENT_ID, OIDC_CLIENT_SECRET)


@asynccontextmanager
async def lifespan(app: FastAPI):
    storage: Storage = app.state.storage
    await storage.setup()
    logger.info("Storage ready.", extra={"backend": type(storage).__name__})
    try:
        yield
    finally:
        await storage.close()
        await app.state.oidc.close()
        logger.info("Storage closed.")


def create_app(
    storage: Optional[Storage] = None,
    oidc: Optional[OidcClient] = None,
    session_secret: str = SESSION_SECRET,
) -> FastAPI:
    app = FastAPI(lifespan=lifespan)
    app.state.storage = storage or build_storage()
    app.state.oidc = oidc or build_oidc()

    app.add_middleware(
        SessionMiddleware,
        secret_key=session_secret,
        session_cookie="session",
        same_site="strict" if PRODUCTION else "lax",
        https_only=PRODUCTION,   # only over HTTPS if prod
        max_age=SESSION_MAX_AGE,
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(f"Incoming {request.method} {request.url.path}")
        response = await call_next(request)
        logger.info(f"Response status: {response.status_code}")
        return response

    # ---- Every error is a JSON object with a `message` ----
    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse({"message": exc.detail}, status_code=exc.status_code, headers=exc.headers)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        error = "; ".join(
            f"{'.'.join(str(p) for p in err['loc'] if p != 'body')}: {err['msg']}"
            for err in exc.errors()
        )
        return JSONResponse(
            {"message": "Invalid request data", "error": error},
            status_code=status.HTTP_400_BAD_REQUEST,
        )

    @app.exception_handler(Exception)
    async def server_error_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error.", extra={"path": request.url.path, "error_type": type(exc).__name__})
        return JSONResponse(
            {"message": "Internal server error"},
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    for module in (
        auth_router,
        dashboard_router,
        trading_accounts_router,
        master_copier_router,
        referrals_router,
    ):
        app.include_router(module.router, prefix="/api")

    return app


__all__ = ["create_app", "build_storage", "build_oidc"]
