import logging
from typing import Any, Awaitable, Optional

logger = logging.getLogger("storefront.side_effects")


async def best_effort(what: str, awaitable: Awaitable[Any]) -> Optional[Any]:
    """
    Awaits a side effect (email, notification) whose failure must not undo or
    fail the state change that triggered it. Failures are logged and None is returned.
    """
    try:
        return await awaitable
    except Exception:
        logger.exception("%s failed", what)
        return None
