"""System calls - how a routine asks the loop to act on its behalf.

A routine cannot reach the loop that runs it; it only sees the values
sent back into its ``yield`` expressions.  To spawn a child, learn its
own id, or wait for a socket, it yields a ``Syscall``.  The loop
recognises the request, hands it the calling process together with the
loop and reactor, and the handler decides what the caller receives and
*when* the caller runs again::

    def parent():
        me = yield process_id()
        child = yield spawn(worker)
        yield kill(child)

Each handler is responsible for rescheduling the caller.  Handlers that
never reschedule it (``close``, or the I/O waits until the reactor
wakes the process) simply leave it parked.

Failures are reported as ``SyscallError``.  The loop throws that error
into the calling process, which can catch it at the ``yield``.
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Any

from py_coop.process.pcb import ProcessError

if TYPE_CHECKING:
    from collections.abc import Callable

    from py_coop.io.reactor import Reactor
    from py_coop.loop import ProcessLoop
    from py_coop.process.pcb import Process


class SyscallKind(StrEnum):
    """Enumerate every request a routine can make."""

    PROCESS_ID = "process_id"
    SPAWN = "spawn"
    FORK = "fork"
    KILL = "kill"
    SUSPEND = "suspend"
    RESUME = "resume"
    CLOSE = "close"
    WAIT_FOR_READ = "wait_for_read"
    WAIT_FOR_WRITE = "wait_for_write"


class SyscallError(Exception):
    """Raised when a system call fails.

    This is the only exception a routine should ever see from a
    syscall.  Internal errors are caught and wrapped.
    """


class Syscall:
    """A request yielded by a routine, carrying its operands."""

    __slots__ = ("_kind", "_operands")

    def __init__(self, kind: SyscallKind, **operands: Any) -> None:
        """Create a request of *kind* with keyword *operands*."""
        self._kind = kind
        self._operands = operands

    @property
    def kind(self) -> SyscallKind:
        """Return the request kind."""
        return self._kind

    @property
    def operands(self) -> dict[str, Any]:
        """Return a copy of the request operands."""
        return dict(self._operands)

    def __call__(self, process: Process, loop: ProcessLoop, reactor: Reactor | None = None) -> None:
        """Carry out the request for *process*."""
        dispatch_syscall(self, process, loop, reactor)

    def __repr__(self) -> str:
        """Return a debug-friendly representation."""
        args = ", ".join(f"{k}={v!r}" for k, v in self._operands.items())
        return f"Syscall({self._kind}{', ' if args else ''}{args})"


def dispatch_syscall(
    request: Syscall,
    process: Process,
    loop: ProcessLoop,
    reactor: Reactor | None = None,
) -> None:
    """Route *request* to its handler.

    Args:
        request: The syscall yielded by the routine.
        process: The process that yielded it.
        loop: The loop running the process.
        reactor: The loop's reactor, if it has one.

    Raises:
        SyscallError: If the syscall fails or its kind is unknown.

    """
    handlers: dict[SyscallKind, Callable[..., None]] = {
        SyscallKind.PROCESS_ID: _sys_process_id,
        SyscallKind.SPAWN: _sys_spawn,
        SyscallKind.FORK: _sys_fork,
        SyscallKind.KILL: _sys_kill,
        SyscallKind.SUSPEND: _sys_suspend,
        SyscallKind.RESUME: _sys_resume,
        SyscallKind.CLOSE: _sys_close,
        SyscallKind.WAIT_FOR_READ: _sys_wait_for_read,
        SyscallKind.WAIT_FOR_WRITE: _sys_wait_for_write,
    }

    handler = handlers.get(request.kind)
    if handler is None:
        msg = f"Unknown syscall: {request.kind}"
        raise SyscallError(msg)

    handler(process, loop, reactor, **request.operands)


# -- Process syscall handlers ------------------------------------------------


def _sys_process_id(process: Process, loop: ProcessLoop, _reactor: Reactor | None) -> None:
    """Resume the caller with its own id."""
    process.send(process.pid)
    loop.schedule(process)


def _sys_spawn(
    process: Process, loop: ProcessLoop, _reactor: Reactor | None, *, source: Any
) -> None:
    """Start *source* as a child of the caller."""
    try:
        pid = loop.add(source, parent=process.pid)
    except TypeError as e:
        raise SyscallError(str(e)) from e
    process.send(pid)
    loop.schedule(process)


def _sys_fork(process: Process, loop: ProcessLoop, _reactor: Reactor | None, *, pid: str) -> None:
    """Clone process *pid* and resume the caller with the clone's id."""
    try:
        fork_pid = loop.fork(pid)
    except ProcessError as e:
        raise SyscallError(str(e)) from e
    if fork_pid is None:
        msg = f"Unable to fork process id: {pid}"
        raise SyscallError(msg)
    process.send(fork_pid)
    loop.schedule(process)


def _sys_kill(process: Process, loop: ProcessLoop, _reactor: Reactor | None, *, pid: str) -> None:
    """Remove process *pid* from the loop."""
    if not loop.kill(pid):
        msg = f"Invalid process id: {pid}"
        raise SyscallError(msg)
    loop.schedule(process)


# -- Loop control handlers ---------------------------------------------------


def _sys_suspend(process: Process, loop: ProcessLoop, _reactor: Reactor | None) -> None:
    """Pause the loop; the caller continues once it is resumed."""
    loop.pause()
    loop.schedule(process)


def _sys_resume(process: Process, loop: ProcessLoop, _reactor: Reactor | None) -> None:
    """Resume a paused loop."""
    loop.resume()
    loop.schedule(process)


def _sys_close(_process: Process, loop: ProcessLoop, _reactor: Reactor | None) -> None:
    """Stop the loop; the caller is dropped with the rest of the queue."""
    loop.stop()


# -- I/O handlers ------------------------------------------------------------


def _require_reactor(reactor: Reactor | None, kind: SyscallKind) -> Reactor:
    if reactor is None:
        msg = f"{kind} needs a loop with a reactor"
        raise SyscallError(msg)
    return reactor


def _sys_wait_for_read(
    process: Process, _loop: ProcessLoop, reactor: Reactor | None, *, sock: Any
) -> None:
    """Park the caller until *sock* is readable."""
    _require_reactor(reactor, SyscallKind.WAIT_FOR_READ).add_reader(sock, process)


def _sys_wait_for_write(
    process: Process, _loop: ProcessLoop, reactor: Reactor | None, *, sock: Any
) -> None:
    """Park the caller until *sock* is writable."""
    _require_reactor(reactor, SyscallKind.WAIT_FOR_WRITE).add_writer(sock, process)


# -- Request builders --------------------------------------------------------


def process_id() -> Syscall:
    """Ask for the caller's own process id."""
    return Syscall(SyscallKind.PROCESS_ID)


def spawn(source: Any) -> Syscall:
    """Start *source* as a child process; the caller receives the child id."""
    return Syscall(SyscallKind.SPAWN, source=source)


def fork(pid: str) -> Syscall:
    """Clone process *pid*.

    Only processes built from a callable can be forked; a process built
    from a generator instance makes the caller receive ``SyscallError``.
    """
    return Syscall(SyscallKind.FORK, pid=str(pid))


def kill(pid: str) -> Syscall:
    """Remove process *pid* from the loop without running any cleanup."""
    return Syscall(SyscallKind.KILL, pid=str(pid))


def suspend() -> Syscall:
    """Pause the whole loop."""
    return Syscall(SyscallKind.SUSPEND)


def resume() -> Syscall:
    """Resume a paused loop."""
    return Syscall(SyscallKind.RESUME)


def close() -> Syscall:
    """Stop the loop and discard every queued process."""
    return Syscall(SyscallKind.CLOSE)


def wait_for_read(sock: Any) -> Syscall:
    """Suspend the caller until *sock* has data to read."""
    return Syscall(SyscallKind.WAIT_FOR_READ, sock=sock)


def wait_for_write(sock: Any) -> Syscall:
    """Suspend the caller until *sock* accepts writes."""
    return Syscall(SyscallKind.WAIT_FOR_WRITE, sock=sock)
