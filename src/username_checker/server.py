"""HTTP surface of the username checker service."""

from __future__ import annotations

import os
import signal
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Callable, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .audit_logger import AuditLogger
from .checker import AvailabilityChecker
from .config import SystemConfig
from .enums import CheckFailureKind
from .exceptions import SessionFatalError, UsernameCheckerError
from .models import CheckFailure
from .self_test import SelfTest, format_self_test_result
from .store import KeyValueStore

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator


def terminate_process() -> None:
    """Ask the server to shut down; the supervisor restarts it."""
    os.kill(os.getpid(), signal.SIGTERM)


def _failure_response(username: str, failure: CheckFailure) -> JSONResponse:
    if failure.kind is CheckFailureKind.RATE_LIMITED:
        return JSONResponse(
            status_code=429,
            content={
                "error": "Too many requests",
                "retryAfter": failure.retry_after_seconds,
            },
            headers={"Retry-After": str(failure.retry_after_seconds)},
        )
    if failure.kind is CheckFailureKind.ORIGIN_ERROR:
        return JSONResponse(
            status_code=502,
            content={
                "error": "Upstream error",
                "username": username,
                "status": failure.status_code,
            },
        )
    return JSONResponse(
        status_code=503,
        content={"error": "Service unavailable", "username": username},
    )


def create_app(
    config: SystemConfig,
    checker: Optional[AvailabilityChecker] = None,
    logger: Optional[AuditLogger] = None,
    on_fatal: Callable[[], None] = terminate_process,
) -> FastAPI:
    """
    Create the FastAPI application.

    When no checker is given, the lifespan connects to the store, wires a
    checker and logs in once before serving. A failed startup login aborts
    startup.
    """
    if logger is None:
        logger = AuditLogger.from_config(config.logging.level, config.logging.output_format)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        if getattr(app.state, "checker", None) is not None:
            yield
            return

        store = KeyValueStore.from_config(config.store)
        owned_checker = AvailabilityChecker.from_config(config, store, logger=logger)
        try:
            result = await SelfTest(config, store, owned_checker.session_manager, logger).run()
            if not result.success:
                raise UsernameCheckerError(
                    code="self_test_failed",
                    message="Startup self-test failed:\n" + format_self_test_result(result),
                )
            app.state.checker = owned_checker
            yield
        finally:
            app.state.checker = None
            await owned_checker.close()
            await store.close()

    app = FastAPI(title="Username Checker", lifespan=lifespan)
    app.state.checker = checker
    app.state.shutdown_requested = False

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.cors_origins,
        allow_methods=["GET"],
        allow_headers=["*"],
    )

    @app.exception_handler(SessionFatalError)
    async def session_fatal_handler(request: Request, exc: SessionFatalError) -> JSONResponse:
        logger.log_error(
            "Server",
            "Session cannot be renewed, shutting down",
            error=exc,
            request_url=str(request.url),
        )
        # Concurrent failures share one shutdown request.
        if not app.state.shutdown_requested:
            app.state.shutdown_requested = True
            on_fatal()
        return JSONResponse(
            status_code=503,
            content={"error": "Session unavailable", "code": exc.code},
        )

    @app.get("/")
    async def index() -> dict:
        return {
            "message": "Username Checker API",
            "endpoints": {
                "GET /check/{username}": "Check if a username is available",
                "GET /status": "Get session status",
            },
        }

    @app.get("/check/{username}")
    async def check(username: str, request: Request):
        identity = request.client.host if request.client else None
        result = await request.app.state.checker.check_username(username, identity)
        if isinstance(result, CheckFailure):
            return _failure_response(username, result)
        return {
            "username": username,
            "available": result.available,
            "cached": result.from_cache,
        }

    @app.get("/status")
    async def status(request: Request) -> dict:
        return request.app.state.checker.get_status().to_dict()

    return app


def run(config: SystemConfig) -> None:
    """Serve the application with uvicorn until it is stopped."""
    import uvicorn

    uvicorn.run(
        create_app(config),
        host=config.server.host,
        port=config.server.port,
    )
