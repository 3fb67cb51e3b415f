"""
Last-resort handling for asyncio failures nobody awaited.

A failed background task must never take the process down: it is logged as
an UnobservedAsyncFailure and the loop keeps serving other conversations.
"""
import asyncio
import logging
from typing import Any, Coroutine, Dict, Optional

from bot_core.errors import UnobservedAsyncFailure

log = logging.getLogger(__name__)


def handle_unobserved_failure(loop: asyncio.AbstractEventLoop, context: Dict[str, Any]) -> UnobservedAsyncFailure:
    """Loop exception handler. Logs and returns the failure, never re-raises."""
    error = context.get("exception")
    task = context.get("task") or context.get("future")
    task_name = task.get_name() if isinstance(task, asyncio.Task) else None
    message = context.get("message") or "Unhandled exception in event loop"

    failure = UnobservedAsyncFailure(message, error=error, task_name=task_name)
    exc_info = (type(error), error, error.__traceback__) if error is not None else None
    log.error(
        f"Unobserved async failure{f' in task {task_name!r}' if task_name else ''}: {message}"
        f"{f' ({error!r})' if error is not None else ''}. Process continues.",
        exc_info=exc_info,
    )
    return failure


def install_unobserved_failure_handler(loop: Optional[asyncio.AbstractEventLoop] = None) -> asyncio.AbstractEventLoop:
    loop = loop or asyncio.get_running_loop()
    loop.set_exception_handler(handle_unobserved_failure)
    log.info("Unobserved async failure handler installed.")
    return loop


def _observe_task(task: asyncio.Task) -> None:
    if task.cancelled():
        log.debug(f"Supervised task {task.get_name()!r} was cancelled.")
        return
    error = task.exception()
    if error is not None:
        handle_unobserved_failure(
            task.get_loop(),
            {"message": "Supervised background task failed", "exception": error, "task": task},
        )


def spawn_supervised(coro: Coroutine, name: Optional[str] = None) -> asyncio.Task:
    """Starts a background task whose failure is logged instead of lost."""
    task = asyncio.ensure_future(coro)
    if name:
        task.set_name(name)
    task.add_done_callback(_observe_task)
    return task
