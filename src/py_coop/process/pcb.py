"""Process - one schedulable unit of cooperative execution.

A process wraps a single ``Trampoline`` and adds what the loop needs to
drive it: an identity, an inbound value slot, an inbound exception
slot, and the original factory so the process can be forked.

Process ids are strings.  Root processes get ``"<n>"`` from the loop's
counter; children get ``"<parent>_<n>"``.  The parent of any id is the
text before its *last* separator, which is the single lineage rule used
by both ``fork`` (to re-parent a clone) and ``join`` (to recognise its
own children).
"""

from __future__ import annotations

from typing import Any

from py_coop.process.coroutine import CoroutineSource, Trampoline

ID_SEPARATOR = "_"


class ProcessError(Exception):
    """Raise when a process cannot satisfy a request."""


def child_pid(parent: str | None, number: int) -> str:
    """Format the id of process *number*, optionally under *parent*."""
    if parent is None:
        return str(number)
    return f"{parent}{ID_SEPARATOR}{number}"


def parent_of(pid: str) -> str | None:
    """Return the parent part of *pid*, or None for a root id."""
    head, separator, _ = pid.rpartition(ID_SEPARATOR)
    return head if separator else None


class Process:
    """A process: identity plus one trampoline-driven routine.

    The loop steps a process with ``run()``.  The very first step only
    starts the routine; every later step first delivers a pending
    exception (set by ``throw``) or, failing that, the value stored by
    ``send``.  Stored values are consumed by the step that delivers
    them.
    """

    def __init__(self, pid: str, source: Any) -> None:
        """Create a process around *source*.

        Args:
            pid: The id assigned by the loop.
            source: A callable factory or a generator instance.

        """
        self._pid = pid
        self._source = CoroutineSource.of(source)
        self._trampoline = Trampoline(self._source)
        self._started = False
        self._value: Any = None
        self._exception: BaseException | None = None

    @property
    def pid(self) -> str:
        """Return the process id."""
        return self._pid

    @property
    def parent_pid(self) -> str | None:
        """Return the id this process was spawned under, if any."""
        return parent_of(self._pid)

    @property
    def started(self) -> bool:
        """Return True once the first step has run."""
        return self._started

    @property
    def completed(self) -> bool:
        """Return True once the routine has finished."""
        return not self._trampoline.valid()

    @property
    def source(self) -> CoroutineSource:
        """Return the tagged source this process was built from."""
        return self._source

    def send(self, value: Any) -> None:
        """Store *value* to be delivered on the next step."""
        self._value = value

    def throw(self, exception: BaseException) -> None:
        """Store *exception* to be raised inside the routine on the next step."""
        self._exception = exception

    def run(self) -> Any:
        """Advance the routine by one step.

        Returns:
            The value the routine is now suspended on (a syscall, or any
            ordinary value), or None once it has completed.

        """
        if not self._started:
            self._started = True
            return self._trampoline.current()
        if self._exception is not None:
            exception, self._exception = self._exception, None
            return self._trampoline.throw(exception)
        value, self._value = self._value, None
        return self._trampoline.send(value)

    def get_return(self) -> Any:
        """Return the routine's result.

        Raises:
            ProcessError: If the process has not completed yet.

        """
        if not self.completed:
            msg = f"Process {self._pid} has not completed"
            raise ProcessError(msg)
        return self._trampoline.get_return()

    def get_coroutine(self) -> Any:
        """Return the factory used to build fresh copies of this process.

        Raises:
            ProcessError: If the process wraps a generator instance, which
                cannot be re-created.

        """
        if not self._source.regenerable:
            msg = f"Process {self._pid} was built from a generator instance and cannot be cloned"
            raise ProcessError(msg)
        return self._source.body

    def __repr__(self) -> str:
        """Return a debug-friendly representation."""
        state = "completed" if self._started and self.completed else "active"
        return f"Process(pid={self._pid!r}, source={self._source.kind}, state={state})"
