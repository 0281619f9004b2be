"""Structured error logging for item tasks and the process boundary.

Item tasks bind the status and media they work on with ``bind_item``.
Every later log entry written through this module from such a task carries
those ids, including entries produced by the event loop's exception handler for a
task that failed without being awaited.
"""

from __future__ import annotations

import contextvars
import logging
import sys
import threading
from typing import TYPE_CHECKING, Any

from altwatch.core.exceptions import AltwatchError

if TYPE_CHECKING:
    import asyncio
    from collections.abc import Mapping
    from types import TracebackType

PROCESS_LOGGER = logging.getLogger("altwatch")

# Errors a task body may absorb after logging. Anything else is a bug in
# the process itself and is left to the loop handler and the process hooks.
RECOVERABLE_ERRORS: tuple[type[BaseException], ...] = (
    AltwatchError,
    AttributeError,
    LookupError,
    OSError,
    RuntimeError,
    TimeoutError,
    TypeError,
    ValueError,
)

_item_context: contextvars.ContextVar[Mapping[str, object] | None] = (
    contextvars.ContextVar("altwatch_item_context", default=None)
)


def bind_item(**ids: object) -> None:
    """Attach ids (``status_id``, ``media_id``...) to later logs of this task.

    Every asyncio task runs in its own copy of the context, so the ids stay
    with the task that bound them.
    """
    _item_context.set({**(_item_context.get() or {}), **ids})


def current_item() -> dict[str, object]:
    """Return the ids bound in the current context."""
    return dict(_item_context.get() or {})


def _render(message: str, context: Mapping[str, object]) -> str:
    if not context:
        return message
    fields = ", ".join(f"{key}={context[key]!r}" for key in sorted(context))
    return f"{message} | {fields}"


def log_exception(
    *,
    logger: logging.Logger,
    message: str,
    error: BaseException,
    context: Mapping[str, object] | None = None,
) -> None:
    """Log ``error`` with its traceback and the bound item ids."""
    merged = {**current_item(), **(context or {})}
    logger.error("%s", _render(message, merged), exc_info=error)


def log_outcome(
    *,
    logger: logging.Logger,
    level: int,
    message: str,
    context: Mapping[str, object],
) -> None:
    """Log an expected outcome (skip, race, quota...) without a traceback."""
    merged = {**current_item(), **context}
    logger.log(level, "%s", _render(message, merged))


def _task_details(loop_context: Mapping[str, Any]) -> dict[str, object]:
    """Pull the task name and its bound item ids out of a loop error context."""
    task = loop_context.get("task") or loop_context.get("future")
    if task is None:
        return {}
    details: dict[str, object] = {}
    get_name = getattr(task, "get_name", None)
    if get_name is not None:
        details["task"] = get_name()
    # Task.get_context() exists from Python 3.12.
    get_context = getattr(task, "get_context", None)
    if get_context is not None:
        details.update(get_context().get(_item_context) or {})
    return details


def register_asyncio_exception_handler(
    loop: asyncio.AbstractEventLoop,
    *,
    logger: logging.Logger | None = None,
) -> None:
    """Route errors the event loop cannot deliver to anyone into our log."""
    target = logger or PROCESS_LOGGER

    def _handle(
        _loop: asyncio.AbstractEventLoop,
        loop_context: dict[str, Any],
    ) -> None:
        message = str(loop_context.get("message") or "Unhandled error in event loop")
        details = _task_details(loop_context)
        error = loop_context.get("exception")
        if isinstance(error, BaseException):
            target.error("%s", _render(message, details), exc_info=error)
            return
        target.error("%s", _render(message, details))

    loop.set_exception_handler(_handle)


def install_global_exception_hooks(*, logger: logging.Logger | None = None) -> None:
    """Log uncaught exceptions in the main thread and worker threads.

    ``KeyboardInterrupt`` keeps its default handling.
    """
    target = logger or PROCESS_LOGGER
    previous_excepthook = sys.excepthook
    previous_thread_hook = threading.excepthook

    def _sys_excepthook(
        exc_type: type[BaseException],
        exc_value: BaseException,
        exc_traceback: TracebackType | None,
    ) -> None:
        if issubclass(exc_type, KeyboardInterrupt):
            previous_excepthook(exc_type, exc_value, exc_traceback)
            return
        target.critical(
            "altwatch stopped on an uncaught %s",
            exc_type.__name__,
            exc_info=(exc_type, exc_value, exc_traceback),
        )

    def _thread_excepthook(args: threading.ExceptHookArgs) -> None:
        if issubclass(args.exc_type, KeyboardInterrupt):
            previous_thread_hook(args)
            return
        # Media transforms run in worker threads via asyncio.to_thread.
        thread_name = args.thread.name if args.thread else "unknown"
        exc_info = (
            (args.exc_type, args.exc_value, args.exc_traceback)
            if isinstance(args.exc_value, BaseException)
            else None
        )
        target.error(
            "%s",
            _render("Uncaught error in worker thread", {"thread": thread_name}),
            exc_info=exc_info,
        )

    sys.excepthook = _sys_excepthook
    threading.excepthook = _thread_excepthook
