"""
Single-assignment deferred results.

A Future is completed exactly once, either with a value or with an exception.
Steps are chained with map() and flat_map() so that a pipeline such as
probe -> download -> parse reads linearly instead of as nested callbacks.
The first failing step short-circuits the rest of the chain.

Usage:
    future = (
        Future.run_async(executor, probe)
        .flat_map(lambda response: download(response))
        .map(parse_records)
    )
    future.on_complete(lambda _: cleanup())
    records = future.get()  # blocks; re-raises the failure, if any
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from concurrent.futures import Executor
from typing import Any, Generic, TypeVar

T = TypeVar("T")
U = TypeVar("U")

logger = logging.getLogger(__name__)


class FutureAlreadyCompletedError(RuntimeError):
    """Raised when completing a Future that already holds a result."""

    pass


class Future(Generic[T]):
    """
    A deferred result that is observed by blocking or by completion hooks.

    Completion hooks run in the thread that completes the Future (or
    immediately, if registered after completion). They all run before
    blocked get() callers are released, so cleanup registered with
    on_complete() has happened by the time get() returns.
    """

    def __init__(self) -> None:
        self._condition = threading.Condition()
        self._is_set = False
        self._is_done = False
        self._value: Any = None
        self._error: BaseException | None = None
        self._callbacks: list[Callable[[Future[T]], None]] = []

    # -------------------------------------------------------------------------
    # Construction
    # -------------------------------------------------------------------------

    @classmethod
    def succeeded(cls, value: T) -> Future[T]:
        future: Future[T] = cls()
        future.set_result(value)
        return future

    @classmethod
    def failed(cls, error: BaseException) -> Future[T]:
        future: Future[T] = cls()
        future.set_exception(error)
        return future

    @classmethod
    def run_async(cls, executor: Executor, fn: Callable[[], T]) -> Future[T]:
        """Run fn on the executor and complete the returned Future with its outcome."""
        future: Future[T] = cls()

        def run() -> None:
            try:
                value = fn()
            except Exception as e:
                future.set_exception(e)
            else:
                future.set_result(value)

        executor.submit(run)
        return future

    # -------------------------------------------------------------------------
    # Completion
    # -------------------------------------------------------------------------

    def set_result(self, value: T) -> None:
        self._complete(value, None)

    def set_exception(self, error: BaseException) -> None:
        self._complete(None, error)

    def _complete(self, value: Any, error: BaseException | None) -> None:
        with self._condition:
            if self._is_set:
                raise FutureAlreadyCompletedError("Future is already completed")
            self._is_set = True
            self._value = value
            self._error = error
            callbacks = self._callbacks
            self._callbacks = []

        for callback in callbacks:
            self._run_callback(callback)

        with self._condition:
            self._is_done = True
            self._condition.notify_all()

    def _run_callback(self, callback: Callable[[Future[T]], None]) -> None:
        try:
            callback(self)
        except Exception:
            logger.exception("Future completion callback failed")

    # -------------------------------------------------------------------------
    # Observation
    # -------------------------------------------------------------------------

    @property
    def is_completed(self) -> bool:
        with self._condition:
            return self._is_done

    def get(self, timeout: float | None = None) -> T:
        """
        Block until the Future completes.

        Returns:
            The value of a successful Future

        Raises:
            The exception of a failed Future
            TimeoutError: If timeout elapses before completion
        """
        with self._condition:
            if not self._condition.wait_for(lambda: self._is_done, timeout):
                raise TimeoutError("Future did not complete in time")
            if self._error is not None:
                raise self._error
            return self._value

    def exception(self) -> BaseException | None:
        """Return the failure of a completed Future, or None on success."""
        with self._condition:
            return self._error

    def on_complete(self, callback: Callable[[Future[T]], None]) -> Future[T]:
        """
        Register a hook that runs once the Future completes, whatever the outcome.

        Returns:
            This Future, to allow chaining
        """
        with self._condition:
            if not self._is_set:
                self._callbacks.append(callback)
                return self
        self._run_callback(callback)
        return self

    # -------------------------------------------------------------------------
    # Composition
    # -------------------------------------------------------------------------

    def map(self, fn: Callable[[T], U]) -> Future[U]:
        """Transform the value of a successful Future; failures pass through."""
        mapped: Future[U] = Future()

        def complete(source: Future[T]) -> None:
            error = source.exception()
            if error is not None:
                mapped.set_exception(error)
                return
            try:
                value = fn(source._value)
            except Exception as e:
                mapped.set_exception(e)
            else:
                mapped.set_result(value)

        self.on_complete(complete)
        return mapped

    def flat_map(self, fn: Callable[[T], Future[U]]) -> Future[U]:
        """Chain a step that itself returns a Future; failures pass through."""
        chained: Future[U] = Future()

        def forward(inner: Future[U]) -> None:
            error = inner.exception()
            if error is not None:
                chained.set_exception(error)
            else:
                chained.set_result(inner._value)

        def complete(source: Future[T]) -> None:
            error = source.exception()
            if error is not None:
                chained.set_exception(error)
                return
            try:
                inner = fn(source._value)
            except Exception as e:
                chained.set_exception(e)
            else:
                inner.on_complete(forward)

        self.on_complete(complete)
        return chained

    def __repr__(self) -> str:
        with self._condition:
            if not self._is_set:
                state = "pending"
            elif self._error is not None:
                state = f"failed: {self._error!r}"
            else:
                state = f"succeeded: {self._value!r}"
        return f"Future({state})"
