from __future__ import annotations

import asyncio
import functools
from typing import Any, Callable, TypeVar

from gatehouse.logging import get_logger
from gatehouse.service.errors import ServerError

logger = get_logger(__name__)

T = TypeVar("T")


async def run_blocking(
    fn: Callable[..., T], *args: Any, timeout: float, op: str, **kwargs: Any
) -> T:
    """Run a blocking store or crypto call in a worker thread with a deadline.

    A missed deadline surfaces as ``ServerError``; the worker thread itself
    cannot be interrupted and finishes in the background.
    """
    call = functools.partial(fn, *args, **kwargs)
    try:
        return await asyncio.wait_for(asyncio.to_thread(call), timeout=timeout)
    except asyncio.TimeoutError:
        logger.error("blocking_call_timeout", op=op, timeout=timeout)
        raise ServerError("Internal server error", detail={"op": op})
