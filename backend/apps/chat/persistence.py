"""
Best-effort persistence.

Saving chat history must never cost the user their answer. Writes that
are allowed to fail go through best_effort, which logs the failure and
returns None instead of raising.
"""
import logging
from typing import Awaitable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')


async def best_effort(operation: str, awaitable: Awaitable[T]) -> Optional[T]:
    """
    Await a persistence call, logging and discarding any failure.

    Args:
        operation: Short description for the log line
        awaitable: The store call to attempt

    Returns:
        The call's result, or None if it failed
    """
    try:
        return await awaitable
    except Exception:
        logger.exception(f"Best-effort persistence failed: {operation}")
        return None
