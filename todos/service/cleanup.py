from __future__ import annotations

import asyncio

from todos.logging import get_logger
from todos.service.tokens import TokenService

logger = get_logger(__name__)

DEFAULT_CLEANUP_INTERVAL_SECONDS = 3600


def cleanup_once(tokens: TokenService) -> int:
    """Delete unrefreshable token records, logging the outcome."""
    count = tokens.cleanup_expired()
    logger.info("token_cleanup_complete", count=count)
    return count


async def run_token_cleanup(
    tokens: TokenService, interval_seconds: int = DEFAULT_CLEANUP_INTERVAL_SECONDS
) -> None:
    """Background loop that sweeps expired token records until cancelled.

    A failed sweep is logged and retried on the next tick.
    """

    interval = max(interval_seconds, 1)
    try:
        while True:
            try:
                await asyncio.to_thread(cleanup_once, tokens)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("token_cleanup_failed", error=str(exc))
            await asyncio.sleep(interval)
    except asyncio.CancelledError:
        logger.info("token_cleanup_task_cancelled")
