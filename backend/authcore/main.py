from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from authcore.core.config import settings
from authcore.core.deps import get_key_provider
from authcore.core.exceptions import AuthCoreException
from authcore.core.logging import setup_logging
from authcore.routers import auth
from authcore.services.token_purge import start_refresh_token_purge, stop_refresh_token_purge


def create_app() -> FastAPI:
    setup_logging(settings.LOG_LEVEL, audit_level=settings.AUDIT_LOG_LEVEL)
    # Resolve the signing key now so a missing production key fails startup, not the first login.
    get_key_provider()

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await start_refresh_token_purge()
        try:
            yield
        finally:
            await stop_refresh_token_purge()

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(auth.router, prefix="/api/auth", tags=["auth"])

    @app.exception_handler(AuthCoreException)
    async def handle_authcore_exception(_: Request, exc: AuthCoreException) -> JSONResponse:
        headers = exc.headers if getattr(exc, "headers", None) else None
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    return app


app = create_app()
