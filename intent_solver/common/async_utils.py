from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Awaitable, Callable, Iterable, TypeVar

from .logging import log_event

T = TypeVar("T")


async def guarded_call(
    action: Callable[[], Awaitable[T] | T],
    *,
    logger: logging.Logger,
    event: str,
    message: str,
    level: str = "warning",
    default: T | None = None,
    reraise: bool = False,
    **fields: Any,
) -> T | None:
    try:
        result = action()
        if inspect.isawaitable(result):
            return await result
        return result
    except asyncio.CancelledError:
        raise
    except Exception as error:
        log_event(
            logger,
            level=level,
            event=event,
            message=message,
            error=str(error),
            error_type=type(error).__name__,
            **fields,
        )
        if reraise:
            raise
        return default


async def wait_for_tasks(
    tasks: Iterable[asyncio.Task[Any]],
    *,
    timeout_seconds: float,
    logger: logging.Logger,
    label: str,
) -> int:
    """Wait for background tasks to finish, cancelling stragglers after the timeout.

    Returns the number of tasks that had to be cancelled.
    """
    pending = [task for task in tasks if not task.done()]
    if not pending:
        return 0

    _, still_pending = await asyncio.wait(pending, timeout=max(0.0, timeout_seconds))
    for task in still_pending:
        task.cancel()
    if still_pending:
        await asyncio.gather(*still_pending, return_exceptions=True)
        log_event(
            logger,
            level="warning",
            event="background_tasks_cancelled",
            message="Background tasks did not finish before the shutdown grace period",
            label=label,
            cancelled=len(still_pending),
        )
    return len(still_pending)
