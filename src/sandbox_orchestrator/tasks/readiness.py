"""Bounded readiness polling."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


async def wait_until_ready(
    probe: Callable[[], Awaitable[bool]],
    *,
    max_attempts: int = 30,
    interval_s: float = 1.0,
    label: str = "agent",
) -> bool:
    """Call ``probe`` up to ``max_attempts`` times; True on the first success."""
    for attempt in range(1, max_attempts + 1):
        logger.debug("readiness event=probe target=%s attempt=%d/%d", label, attempt, max_attempts)
        if await probe():
            logger.info("readiness event=ready target=%s attempts=%d", label, attempt)
            return True
        if attempt < max_attempts:
            await asyncio.sleep(interval_s)

    logger.warning("readiness event=timeout target=%s attempts=%d", label, max_attempts)
    return False
