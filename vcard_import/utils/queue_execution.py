"""
Execution queues for background work and callback dispatch.

An execution queue is any object with a ``submit(fn, *args)`` method, such as
a concurrent.futures executor. The importer runs on a serial queue of its
own and hands results to queues chosen by the caller.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Executor, ThreadPoolExecutor
from concurrent.futures import Future as ConcurrentFuture
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class Queue(Protocol):
    """Anything that can run a callable asynchronously or in order."""

    def submit(self, fn: Callable[..., Any], /, *args: Any, **kwargs: Any) -> Any: ...


class ImmediateQueue(Executor):
    """
    Executor that runs submitted callables in the submitting thread.

    Useful for callers that have no event loop of their own, and for tests.
    """

    def submit(self, fn, /, *args, **kwargs):  # type: ignore[override]
        future: ConcurrentFuture = ConcurrentFuture()
        try:
            result = fn(*args, **kwargs)
        except Exception as e:
            logger.exception("Callback failed on immediate queue")
            future.set_exception(e)
        else:
            future.set_result(result)
        return future


def make_serial_queue(name: str) -> ThreadPoolExecutor:
    """Create a queue that runs submitted work one at a time, in order."""
    return ThreadPoolExecutor(max_workers=1, thread_name_prefix=name)


_main_queue: ThreadPoolExecutor | None = None
_main_queue_lock = threading.Lock()


def main_queue() -> ThreadPoolExecutor:
    """
    Return the shared queue for user-facing progress updates.

    Progress callbacks always arrive on this queue, in order, regardless of
    the queue a caller chooses for result callbacks.
    """
    global _main_queue
    with _main_queue_lock:
        if _main_queue is None:
            _main_queue = make_serial_queue("vcard-import-main")
        return _main_queue


def async_dispatch(queue: Queue, fn: Callable[..., Any], *args: Any) -> None:
    """Submit fn(*args) to the queue, logging failures of the callback itself."""

    def run() -> None:
        try:
            fn(*args)
        except Exception:
            logger.exception("Callback dispatched to queue failed")

    queue.submit(run)
