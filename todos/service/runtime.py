from __future__ import annotations

import threading
from typing import Optional, Union
from urllib.parse import urlparse, urlunparse

from todos.config import Dialect, Settings, get_settings, reset_settings_cache
from todos.logging import get_logger
from todos.service.auth import AuthService
from todos.service.passwords import DerivedKeyParams
from todos.service.tokens import TokenConfig, TokenService
from todos.storage.memory import MemoryStore
from todos.storage.postgres import PostgresStore

logger = get_logger(__name__)


def _mask_url_password(url: Optional[str]) -> Optional[str]:
    """Mask the password in a database URL for safe logging.

    Example: postgresql://todos:hunter2@db/todos -> postgresql://todos:***@db/todos
    """
    if not url:
        return url
    try:
        parsed = urlparse(url)
        if parsed.password:
            netloc = parsed.hostname or ""
            if parsed.port:
                netloc = f"{netloc}:{parsed.port}"
            if parsed.username:
                netloc = f"{parsed.username}:***@{netloc}"
            else:
                netloc = f":***@{netloc}"
            return urlunparse((
                parsed.scheme,
                netloc,
                parsed.path,
                parsed.params,
                parsed.query,
                parsed.fragment,
            ))
        return url
    except ValueError:
        return "***url_parse_error***"


def build_store(settings: Settings) -> Union[MemoryStore, PostgresStore]:
    dialect = settings.db_dialect()
    if dialect == Dialect.POSTGRES:
        return PostgresStore(settings.database_url)
    return MemoryStore()


def derived_key_params(settings: Settings) -> DerivedKeyParams:
    return DerivedKeyParams(
        time_cost=settings.dk_time_cost,
        memory_cost=settings.dk_memory_cost,
        parallelism=settings.dk_parallelism,
    )


class Runtime:
    """Holds singleton service instances for the FastAPI app."""

    def __init__(self, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        logger.info(
            "runtime_init_started",
            mode=self.settings.mode.value,
            dialect=self.settings.db_dialect().value,
            database_url=_mask_url_password(self.settings.database_url),
        )
        try:
            self.store = build_store(self.settings)
        except Exception as exc:
            logger.error(
                "runtime_store_init_failed",
                error=str(exc),
                database_url=_mask_url_password(self.settings.database_url),
            )
            raise
        self.tokens = TokenService(self.store, TokenConfig.from_settings(self.settings))
        self.auth = AuthService(
            self.store, self.tokens, params=derived_key_params(self.settings)
        )
        self._healthy = True
        self._health_lock = threading.Lock()
        logger.info("runtime_init_complete")

    @property
    def healthy(self) -> bool:
        with self._health_lock:
            return self._healthy

    def set_health(self, healthy: bool) -> None:
        with self._health_lock:
            self._healthy = healthy
        logger.info("runtime_health_changed", healthy=healthy)

    def close(self) -> None:
        self.store.close()


runtime: Runtime | None = None
_runtime_lock = threading.Lock()


def get_runtime() -> Runtime:
    """Get or create the Runtime singleton in a thread-safe manner.

    Uses double-checked locking: a lock-free fast path for an existing
    runtime and a locked second check before creating one.
    """
    global runtime
    if runtime is not None:
        return runtime
    with _runtime_lock:
        if runtime is None:
            runtime = Runtime()
        return runtime


def reset_runtime_for_tests() -> Runtime:
    """Reinitialize the runtime singleton for isolated test runs."""
    global runtime

    with _runtime_lock:
        if runtime is not None:
            runtime.close()
        reset_settings_cache()
        runtime = Runtime()
        return runtime
