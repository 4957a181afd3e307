from __future__ import annotations

import asyncio
import contextlib
from contextlib import asynccontextmanager

from fastapi import FastAPI

from todos import __version__
from todos.api.error_handling import error_response, register_exception_handlers
from todos.api.routes import router
from todos.logging import get_logger, set_correlation_id
from todos.service.cleanup import run_token_cleanup
from todos.service.runtime import get_runtime

logger = get_logger(__name__)

_cleanup_task: asyncio.Task | None = None

# Paths that still answer while the server is draining
_ALWAYS_AVAILABLE = {"/status"}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    global _cleanup_task
    # Startup
    runtime = get_runtime()
    runtime.set_health(True)
    if runtime.settings.token_cleanup:
        _cleanup_task = asyncio.create_task(
            run_token_cleanup(
                runtime.tokens, runtime.settings.token_cleanup_interval_seconds
            )
        )
        logger.info(
            "token_cleanup_scheduled",
            interval_seconds=runtime.settings.token_cleanup_interval_seconds,
        )

    yield

    # Shutdown
    runtime.set_health(False)
    try:
        if _cleanup_task:
            _cleanup_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await _cleanup_task
            _cleanup_task = None
        runtime.close()
        logger.info("runtime_cleanup_complete")
    except Exception as exc:
        logger.error("shutdown_failed", error=str(exc))


app = FastAPI(title="Todos", version=__version__, lifespan=lifespan)


@app.middleware("http")
async def reject_when_unavailable(request, call_next):
    """Answer 503 for everything but the status check while unhealthy."""
    if request.url.path not in _ALWAYS_AVAILABLE and not get_runtime().healthy:
        return error_response(503, "service unavailable")
    return await call_next(request)


@app.middleware("http")
async def add_correlation_id(request, call_next):
    """Tag each request with a correlation ID for tracing.

    The ID is taken from the X-Request-ID header when the client sends one
    and generated otherwise. It is bound into the logging context and echoed
    back in the X-Request-ID response header.
    """
    client_request_id = request.headers.get("X-Request-ID")
    correlation_id = set_correlation_id(client_request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = correlation_id
    return response


register_exception_handlers(app)
app.include_router(router)


def create_app() -> FastAPI:
    return app
