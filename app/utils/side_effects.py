import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


async def best_effort(description: str, effect: Callable[[], Awaitable[Any]]) -> Optional[Any]:
    """
    Run a non-critical side effect after the main operation has succeeded.

    Failures are logged and swallowed so they can never change the outcome of
    the operation that triggered them. Returns the effect's result, or None if
    it failed.
    """
    try:
        return await effect()
    except Exception as e:
        logger.error(f"Side effect failed ({description}): {e}")
        return None
