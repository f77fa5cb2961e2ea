"""Promises - single-assignment results with chained continuations.

A ``Promise`` starts *pending* and settles exactly once, either
*resolved* with a value or *rejected* with an error::

    PENDING  ->  RESOLVED
    PENDING  ->  REJECTED

Continuations registered with ``then`` / ``catch`` run when the promise
settles, or immediately if it already has.  Each registration returns a
new promise settled by the continuation's outcome, so chains read left
to right::

    async_(fetch).then(parse).catch(report)

Nothing runs on its own.  A promise may carry a *producer*, a function
called with the promise's ``resolve`` and ``reject``; ``wait()`` calls
it at most once.  The combinators below build producers that run
routines on a private ``ProcessLoop``:

- ``async_(source)``: run one routine; its return value resolves the
  promise, an exception (raised, or yielded at the top level) rejects it.
- ``join(*sources)``: run several routines side by side; resolve with
  their results in the order given.
- ``await_`` / ``all_``: wait and return the value, or raise the error.

Rejections with no error handler are re-raised, so failures are loud by
default.  Promises created with ``defer`` are also collected for
``run_deferred()``, which the interpreter calls at exit.
"""

from __future__ import annotations

import atexit
from collections.abc import Iterable
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, TypeAlias

from py_coop.loop import ProcessLoop
from py_coop.process.coroutine import is_routine
from py_coop.process.pcb import parent_of
from py_coop.syscalls import spawn

if TYPE_CHECKING:
    from collections.abc import Callable, Generator

Producer: TypeAlias = "Callable[[Callable[[Any], None], Callable[[Any], None]], Any]"


class PromiseState(StrEnum):
    """Represent the settlement state of a promise."""

    PENDING = "pending"
    RESOLVED = "resolved"
    REJECTED = "rejected"


class RejectionError(Exception):
    """Raise a rejection reason that is not itself an exception."""

    def __init__(self, reason: object) -> None:
        """Wrap *reason*."""
        super().__init__(str(reason))
        self.reason = reason


def _noop(_value: object) -> None:
    return None


def _raise(error: object) -> None:
    if isinstance(error, BaseException):
        raise error
    raise RejectionError(error)


@dataclass(frozen=True)
class _Handler:
    on_fulfilled: Callable[[Any], Any]
    on_error: Callable[[Any], Any]
    promise: Promise


_deferred: list[Promise] = []
_exit_hook_registered = False


def _register_deferred(promise: Promise) -> None:
    global _exit_hook_registered  # noqa: PLW0603
    _deferred.append(promise)
    if not _exit_hook_registered:
        atexit.register(run_deferred)
        _exit_hook_registered = True


class Promise:
    """A single-assignment result with chained continuations."""

    def __init__(self, wait_fn: Producer | None = None, *, shutdown: bool = False) -> None:
        """Create a pending promise.

        Args:
            wait_fn: Producer called by ``wait()`` as
                ``wait_fn(resolve, reject)``.
            shutdown: Also run the producer from ``run_deferred()``.

        """
        self._wait_fn = wait_fn
        self._state = PromiseState.PENDING
        self._value: Any = None
        self._error: Any = None
        self._handlers: list[_Handler] = []
        self._waited = False
        if shutdown:
            _register_deferred(self)

    @property
    def state(self) -> PromiseState:
        """Return the settlement state."""
        return self._state

    @property
    def settled(self) -> bool:
        """Return True once the promise is resolved or rejected."""
        return self._state is not PromiseState.PENDING

    def then(
        self,
        on_fulfilled: Callable[[Any], Any],
        on_error: Callable[[Any], Any] | None = None,
    ) -> Promise:
        """Register continuations and return the promise they settle.

        Args:
            on_fulfilled: Called with the value if this promise resolves.
            on_error: Called with the error if it rejects; without one
                the error is re-raised.

        Returns:
            A promise resolved with the continuation's return value, or
            rejected with whatever the continuation raises.  A returned
            promise is followed instead of being used as the value.

        """
        if self.settled:
            downstream = Promise()
            self._process(_Handler(on_fulfilled, on_error or _raise, downstream))
        else:
            downstream = Promise(self._wait_upstream)
            self._handlers.append(_Handler(on_fulfilled, on_error or _raise, downstream))
        return downstream

    def catch(self, on_error: Callable[[Any], Any]) -> Promise:
        """Register an error continuation only."""
        return self.then(_noop, on_error)

    def resolve(self, value: Any = None) -> None:
        """Settle with *value*; does nothing if already settled."""
        if self.settled:
            return
        self._state = PromiseState.RESOLVED
        self._value = value
        self._drain()

    def reject(self, error: Any = None) -> None:
        """Settle with *error*; does nothing if already settled.

        Raises:
            Exception: *error* itself (or a ``RejectionError`` around it)
                when no continuation is registered to handle it.

        """
        if self.settled:
            return
        self._state = PromiseState.REJECTED
        self._error = error
        if self._handlers:
            self._drain()
        else:
            _raise(error)

    def wait(self) -> None:
        """Run the producer, once, unless the promise is already settled."""
        if self._waited or self.settled or self._wait_fn is None:
            return
        self._waited = True
        self._wait_fn(self.resolve, self.reject)

    def _wait_upstream(self, _resolve: Any, _reject: Any) -> None:
        self.wait()

    def _drain(self) -> None:
        handlers, self._handlers = self._handlers, []
        first_error: Exception | None = None
        for handler in handlers:
            try:
                self._process(handler)
            except Exception as e:  # noqa: BLE001
                if first_error is None:
                    first_error = e
        if first_error is not None:
            raise first_error

    def _process(self, handler: _Handler) -> None:
        resolved = self._state is PromiseState.RESOLVED
        callback = handler.on_fulfilled if resolved else handler.on_error
        argument = self._value if resolved else self._error
        failure: Exception | None = None
        try:
            result = callback(argument)
        except Exception as e:  # noqa: BLE001
            failure = e
        if failure is not None:
            handler.promise.reject(failure)
        elif isinstance(result, Promise):
            result.then(handler.promise.resolve, handler.promise.reject)
            result.wait()
        else:
            handler.promise.resolve(result)

    @classmethod
    def from_error(cls, error: Any) -> Promise:
        """Build a promise already rejected with *error*, without raising."""
        settled = cls()
        settled._state = PromiseState.REJECTED
        settled._error = error
        return settled

    def __repr__(self) -> str:
        """Return a debug-friendly representation."""
        if self._state is PromiseState.RESOLVED:
            return f"Promise(resolved, {self._value!r})"
        if self._state is PromiseState.REJECTED:
            return f"Promise(rejected, {self._error!r})"
        return "Promise(pending)"


# -- Factories ---------------------------------------------------------------


def promise(wait_fn: Producer | None = None, *, shutdown: bool = False) -> Promise:
    """Create a pending promise around *wait_fn*."""
    return Promise(wait_fn, shutdown=shutdown)


def fulfilled(value: Any) -> Promise:
    """Return a promise already resolved with *value*."""
    settled = Promise()
    settled.resolve(value)
    return settled


def rejected(error: Any) -> Promise:
    """Return a promise already rejected with *error*.

    Unlike ``reject()`` on a pending promise, building one does not
    raise; the error surfaces when a continuation is attached.
    """
    return Promise.from_error(error)


def defer(wait_fn: Producer) -> Promise:
    """Create a promise whose producer also runs from ``run_deferred()``."""
    return Promise(wait_fn, shutdown=True)


def run_deferred() -> None:
    """Wait on every promise created by ``defer`` that has not run yet.

    Registered with ``atexit`` the first time a deferred promise is
    created; calling it earlier is safe, since ``wait()`` runs each
    producer at most once.
    """
    pending = list(_deferred)
    _deferred.clear()
    for deferred in pending:
        deferred.wait()


# -- Routine combinators -----------------------------------------------------


def async_(source: Any) -> Promise:
    """Run *source* on a private loop when the promise is waited on.

    Args:
        source: A callable factory or a generator instance.

    Returns:
        A promise resolved with the routine's result, or rejected with
        the exception it raised or yielded at the top level.  If the
        routine never finishes (it was killed, or the loop was closed
        from inside) the promise stays pending.

    """

    def run(resolve: Callable[[Any], None], reject: Callable[[Any], None]) -> None:
        loop = ProcessLoop(reactor=True)
        outcome: list[Any] = []
        failure: Exception | None = None
        try:
            job = loop.add(source)

            def on_complete(pid: str, result: Any) -> None:
                if pid != job:
                    return
                outcome.append(result)
                loop.stop()

            loop.start(on_complete)
        except Exception as e:  # noqa: BLE001
            failure = e

        if failure is not None:
            reject(failure)
        elif outcome:
            if isinstance(outcome[0], BaseException):
                reject(outcome[0])
            else:
                resolve(outcome[0])

    return Promise(run)


def join(*sources: Any) -> Promise:
    """Run every source side by side on one private loop.

    Each source becomes a child of a single parent routine, so their
    steps interleave.  Only direct children of that parent count; a
    child's own spawns are ignored.

    Returns:
        A promise resolved with the list of results in the order the
        sources were given, or rejected by the first child failure.

    """

    def run(resolve: Callable[[Any], None], reject: Callable[[Any], None]) -> None:
        if not sources:
            resolve([])
            return

        loop = ProcessLoop(reactor=True)
        order: list[str] = []
        results: dict[str, Any] = {}
        failure: BaseException | None = None

        def parent() -> Generator[Any, Any, None]:
            for source in sources:
                order.append((yield spawn(source)))

        parent_pid = loop.add(parent)

        def done() -> bool:
            return len(order) == len(sources) and all(pid in results for pid in order)

        def on_complete(pid: str, result: Any) -> None:
            nonlocal failure
            if parent_of(pid) == parent_pid:
                if isinstance(result, BaseException):
                    failure = result
                    loop.stop()
                    return
                results[pid] = result
            elif pid != parent_pid:
                return
            if done():
                loop.stop()

        try:
            loop.start(on_complete)
        except Exception as e:  # noqa: BLE001
            failure = e

        if failure is not None:
            reject(failure)
        elif done():
            resolve([results[pid] for pid in order])

    return Promise(run)


def _settle_now(awaitable: Promise) -> Any:
    value: Any = None
    error: Any = None
    failed = False

    def capture_value(v: Any) -> None:
        nonlocal value
        value = v

    def capture_error(e: Any) -> None:
        nonlocal error, failed
        error, failed = e, True

    awaitable.then(capture_value, capture_error)
    awaitable.wait()
    if failed:
        _raise(error)
    return value


def await_(awaitable: Any) -> Any:
    """Wait for *awaitable* and return its value.

    Args:
        awaitable: A ``Promise``, or a source to run with ``async_``.

    Raises:
        Exception: The rejection error (a ``RejectionError`` if it was
            not an exception).

    """
    target = awaitable if isinstance(awaitable, Promise) else async_(awaitable)
    return _settle_now(target)


def all_(sources: Any) -> list[Any]:
    """Wait for several routines and return their results in order.

    *sources* may be a ``Promise`` (typically from ``join``), a single
    source, or an iterable of sources.
    """
    if isinstance(sources, Promise):
        target = sources
    elif is_routine(sources) or callable(sources):
        target = join(sources)
    elif isinstance(sources, Iterable):
        target = join(*sources)
    else:
        target = join(sources)
    return _settle_now(target)
