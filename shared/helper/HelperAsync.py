"""Deadline helper for calls into external collaborators."""

import asyncio
import time
from typing import Awaitable, TypeVar

from shared.exceptions.errors import ProviderTimeoutError

T = TypeVar("T")


async def with_timeout(awaitable: Awaitable[T], timeout_seconds: float, operation: str) -> T:
    """Await a call under a deadline.

    Args:
        awaitable (Awaitable[T]): The pending call.
        timeout_seconds (float): Deadline in seconds; values <= 0 disable it.
        operation (str): Name used in the raised error (e.g. "embed").

    Returns:
        T: Whatever the call returned.

    Raises:
        ProviderTimeoutError: If the deadline expires first.
    """
    if timeout_seconds <= 0:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        raise ProviderTimeoutError(operation, timeout_seconds) from exc


def now_ms() -> int:
    """Current wall clock time in epoch milliseconds."""
    return int(time.time() * 1000)
