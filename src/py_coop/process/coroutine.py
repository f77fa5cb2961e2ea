"""Coroutine trampoline - one resumable step sequence from nested routines.

A *routine* is a Python generator.  Application code suspends it by
yielding, and the loop resumes it by sending a value (or throwing an
exception) back in.  Routines compose: yielding another generator is a
sub-routine *call*.  The caller continues once the callee finishes, with
the value the callee passed to ``return_value``, or None if it simply ran
off its end::

    def read_header(sock):
        data = yield sock.read(16)        # nested routine
        yield return_value(data.strip())  # explicit early return

    def handler(sock):
        header = yield read_header(sock)  # header is the stripped data
        ...

The loop must not see any of this nesting.  The ``Trampoline`` keeps an
explicit stack of suspended parent routines and only lets *ordinary*
values (syscalls, bare ``yield``) out to whoever steps it.  Exceptions
unwind that explicit stack exactly like a native call stack would: a
failure in a callee is thrown into its caller at the ``yield`` that
called it.

Special values a routine may yield:

- another generator: descend into it (push the caller).
- ``ReturnValue``: finish the current routine with the wrapped value.
  This is the only way a callee hands a result to its caller; a plain
  ``return`` only sets the result of the outermost routine.
- an exception *object* at the outermost level: finish the whole
  trampoline with that object as the result, without raising it.
- anything else: suspend and hand the value to the stepper.
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class ReturnValue:
    """Marker that finishes the yielding routine with ``value``.

    ``yield return_value(x)`` works from any depth and ends the routine
    immediately, even if it has statements left after the yield.
    """

    __slots__ = ("_value",)

    def __init__(self, value: Any = None) -> None:
        """Wrap *value* as the routine's result."""
        self._value = value

    @property
    def value(self) -> Any:
        """Return the wrapped result."""
        return self._value

    def __repr__(self) -> str:
        """Return a debug-friendly representation."""
        return f"ReturnValue({self._value!r})"


def return_value(value: Any = None) -> ReturnValue:
    """Build a ``ReturnValue`` marker for ``yield return_value(value)``."""
    return ReturnValue(value)


def is_routine(value: object) -> bool:
    """Return True if *value* can be driven as a routine (a generator)."""
    return isinstance(value, Generator)


class SourceKind(StrEnum):
    """How a process body was supplied.

    - CALLABLE: a factory; calling it again yields a fresh routine.
    - INSTANCE: an already-created generator; it can only run once.
    """

    CALLABLE = "callable"
    INSTANCE = "instance"


@dataclass(frozen=True)
class CoroutineSource:
    """A process body, tagged by whether it can be re-instantiated.

    Only CALLABLE sources can be forked, because a running generator
    cannot be copied.
    """

    kind: SourceKind
    body: Any

    @classmethod
    def of(cls, value: Any) -> CoroutineSource:
        """Classify *value* as a callable factory or a generator instance.

        Raises:
            TypeError: If *value* is neither callable nor a generator.

        """
        if isinstance(value, CoroutineSource):
            return value
        if is_routine(value):
            return cls(kind=SourceKind.INSTANCE, body=value)
        if callable(value):
            return cls(kind=SourceKind.CALLABLE, body=value)
        msg = f"Expected a callable or a generator, got {type(value).__name__}"
        raise TypeError(msg)

    @property
    def regenerable(self) -> bool:
        """Return True if a fresh routine can be built from this source."""
        return self.kind is SourceKind.CALLABLE

    def instantiate(self) -> Any:
        """Return the generator instance, or whatever the factory returns."""
        if self.kind is SourceKind.CALLABLE:
            return self.body()
        return self.body


def _constant(value: Any) -> Generator[None, Any, Any]:
    """Routine that suspends once, then finishes with *value*."""
    yield None
    return value


class Frame:
    """Resumable view over one generator with a peekable current value.

    Python generators only report a yielded value as the result of
    advancing them.  The trampoline needs to *look* at that value
    several times before deciding what to do, so ``Frame`` stores it.
    The generator is started lazily, on the first inspection.
    """

    __slots__ = ("_current", "_generator", "_key", "_result", "_started", "_valid")

    def __init__(self, generator: Generator[Any, Any, Any]) -> None:
        """Wrap *generator* without starting it."""
        self._generator = generator
        self._started = False
        self._valid = True
        self._current: Any = None
        self._result: Any = None
        self._key = -1

    def _advance(self, step: Callable[[], Any]) -> None:
        try:
            self._current = step()
            self._key += 1
        except StopIteration as stop:
            self._finish(stop.value)
        except BaseException:
            self._finish(None)
            raise

    def _finish(self, result: Any) -> None:
        self._valid = False
        self._current = None
        self._result = result

    def _ensure_started(self) -> None:
        if not self._started:
            self._started = True
            self._advance(lambda: next(self._generator))

    def current(self) -> Any:
        """Return the value the generator is suspended on (None once done)."""
        self._ensure_started()
        return self._current

    def valid(self) -> bool:
        """Return True while the generator has not finished."""
        self._ensure_started()
        return self._valid

    @property
    def key(self) -> int:
        """Return the zero-based index of the current suspension point."""
        return self._key

    def send(self, value: Any) -> Any:
        """Resume the generator with *value* and return the next current value."""
        if not self._started:
            self._ensure_started()
        if self._valid:
            self._advance(lambda: self._generator.send(value))
        return self._current

    def throw(self, exception: BaseException) -> Any:
        """Raise *exception* at the suspension point and return the next value.

        Raises:
            BaseException: *exception* itself when the generator has
                already finished, or whatever the generator raises.

        """
        if not self._valid:
            raise exception
        self._started = True
        self._advance(lambda: self._generator.throw(exception))
        return self._current

    def close(self) -> None:
        """Finish the generator early, keeping the recorded result."""
        self._generator.close()
        self._valid = False

    def get_return(self) -> Any:
        """Return the generator's ``return`` value (None until it finishes)."""
        return self._result


class Trampoline:
    """Drive a routine and its nested sub-routines as one step sequence.

    The trampoline exposes the same protocol as ``Frame`` (``current``,
    ``valid``, ``send``, ``throw``, ``get_return``) so a process can step
    it without knowing how deep the call stack currently is.
    """

    def __init__(self, source: CoroutineSource) -> None:
        """Prepare a trampoline for *source*; nothing runs until stepped."""
        self._source = source
        self._key = -1
        self._depth = 0
        self._driver = Frame(self._drive())

    @property
    def key(self) -> int:
        """Return the key of the suspension point last handed out."""
        return self._key

    @property
    def depth(self) -> int:
        """Return how many parent routines are suspended below the current one."""
        return self._depth

    def current(self) -> Any:
        """Return the value the routine is suspended on."""
        return self._driver.current()

    def valid(self) -> bool:
        """Return True until the outermost routine has finished."""
        return self._driver.valid()

    def send(self, value: Any) -> Any:
        """Resume with *value*; return the next ordinary suspension value."""
        return self._driver.send(value)

    def throw(self, exception: BaseException) -> Any:
        """Raise *exception* in the innermost routine; return the next value."""
        return self._driver.throw(exception)

    def get_return(self) -> Any:
        """Return the final result once ``valid()`` is False."""
        return self._driver.get_return()

    def _drive(self) -> Generator[Any, Any, Any]:
        stack: list[Frame] = []
        pending: BaseException | None = None

        try:
            body = self._source.instantiate()
        except Exception as e:  # noqa: BLE001
            body, pending = None, e
        frame = Frame(body if is_routine(body) else _constant(body))

        while True:
            self._depth = len(stack)
            try:
                if pending is not None:
                    exception, pending = pending, None
                    frame.throw(exception)
                    continue

                value = frame.current()
                if isinstance(value, BaseException) and not stack:
                    frame.close()
                    return value

                if is_routine(value):
                    stack.append(frame)
                    frame = Frame(value)
                    continue

                explicit = isinstance(value, ReturnValue)
                if explicit or not frame.valid():
                    if explicit:
                        frame.close()
                    if not stack:
                        return value.value if explicit else frame.get_return()
                    # A callee that runs off its end hands its caller None.
                    frame = stack.pop()
                    frame.send(value.value if explicit else None)
                    continue

                self._key = frame.key
                try:
                    inbound = yield value
                except Exception as e:  # noqa: BLE001
                    pending = e
                    continue
                frame.send(inbound)
            except Exception as e:
                if not stack:
                    raise
                frame = stack.pop()
                pending = e
