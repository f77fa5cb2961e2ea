"""I/O reactor - wake processes when their sockets are ready.

A process that wants to read from a socket must not block the whole
loop waiting for data.  Instead it yields ``wait_for_read(sock)``: the
syscall parks the process here, in the reactor's registration tables,
and the process leaves the ready queue.  The reactor runs as an
ordinary background process inside the loop.  On each tick it asks the
multiplexer (``select.select`` by default) which registered sockets are
ready, drops those registrations, and puts every waiting process back
on the ready queue.

Two tables are kept, one per interest type::

    socket key -> (socket, [waiting process, ...])

Several processes may wait on the same socket; all of them are woken
together.  A registration disappears the moment its socket is reported
ready, so a process is never woken twice for one readiness event.

Timeout policy for each tick:
    - another process is runnable: poll (timeout 0), so ready work is
      never held up by the reactor.
    - nothing else is runnable: block (timeout None) until a socket is
      ready, instead of spinning.
    - nothing is runnable and nothing is registered: the routine ends,
      and the loop drains.
"""

from __future__ import annotations

import select
from enum import IntEnum
from typing import TYPE_CHECKING, Any

from py_coop.logging import Logger, LogLevel

if TYPE_CHECKING:
    from collections.abc import Callable, Generator

    from py_coop.loop import ProcessLoop
    from py_coop.process.pcb import Process

BLOCKING = None
POLL = 0


class SocketType(IntEnum):
    """Interest types a process can register for."""

    READ = 4
    WRITE = 2

    @classmethod
    def valid(cls, value: object) -> bool:
        """Return True if *value* names a supported interest type."""
        return value in {member.value for member in cls}


def socket_key(sock: Any) -> int:
    """Return the identity used to index *sock* in the tables."""
    if isinstance(sock, int):
        return sock
    return sock.fileno()


class Reactor:
    """Socket-readiness multiplexer for one loop."""

    def __init__(
        self,
        *,
        poller: Callable[..., tuple[list[Any], list[Any], list[Any]]] = select.select,
        logger: Logger | None = None,
    ) -> None:
        """Create an inactive reactor with empty tables.

        Args:
            poller: A ``select.select``-compatible function.
            logger: Where to record wake-ups; a private logger if None.

        """
        self._poller = poller
        self._logger = logger if logger is not None else Logger()
        self._readers: dict[int, tuple[Any, list[Process]]] = {}
        self._writers: dict[int, tuple[Any, list[Process]]] = {}
        self._active = False
        self._generation = 0

    @property
    def active(self) -> bool:
        """Return True while the background routine should keep running."""
        return self._active

    @property
    def logger(self) -> Logger:
        """Return the reactor's logger."""
        return self._logger

    @property
    def registrations(self) -> int:
        """Return the number of sockets with at least one waiter."""
        return len(self._readers) + len(self._writers)

    def waiting(self, sock: Any, socket_type: SocketType) -> list[Process]:
        """Return the processes waiting on *sock* for *socket_type*."""
        table = self._table(socket_type)
        entry = table.get(socket_key(sock))
        return list(entry[1]) if entry is not None else []

    def _table(self, socket_type: object) -> dict[int, tuple[Any, list[Process]]]:
        if not SocketType.valid(socket_type):
            supported = ", ".join(f"{t.name}={t.value}" for t in SocketType)
            msg = f"Unsupported socket type {socket_type!r}, supported socket types are {supported}"
            raise ValueError(msg)
        if SocketType(socket_type) is SocketType.READ:
            return self._readers
        return self._writers

    def add_socket(self, sock: Any, process: Process, socket_type: SocketType) -> None:
        """Register *process* as waiting on *sock* for *socket_type*.

        Raises:
            ValueError: If *socket_type* is not a supported interest type.

        """
        table = self._table(socket_type)
        key = socket_key(sock)
        entry = table.get(key)
        if entry is None:
            table[key] = (sock, [process])
        else:
            entry[1].append(process)

    def add_reader(self, sock: Any, process: Process) -> None:
        """Register *process* to be woken when *sock* is readable."""
        self.add_socket(sock, process, SocketType.READ)

    def add_writer(self, sock: Any, process: Process) -> None:
        """Register *process* to be woken when *sock* is writable."""
        self.add_socket(sock, process, SocketType.WRITE)

    def select(self, loop: ProcessLoop, timeout: float | None = BLOCKING) -> None:
        """Wake every process whose socket is ready.

        Args:
            loop: The loop to reschedule woken processes on.
            timeout: Seconds to wait; None blocks, 0 only polls.

        """
        if not self._readers and not self._writers:
            return

        readable, writable, _ = self._poller(
            [sock for sock, _ in self._readers.values()],
            [sock for sock, _ in self._writers.values()],
            [],
            timeout,
        )

        for table, ready in ((self._readers, readable), (self._writers, writable)):
            for sock in ready:
                entry = table.pop(socket_key(sock), None)
                if entry is None:
                    continue
                for process in entry[1]:
                    self._logger.log(
                        LogLevel.DEBUG, f"socket {socket_key(sock)} ready", source="reactor", pid=process.pid
                    )
                    loop.schedule(process)

    def start(self, loop: ProcessLoop) -> Generator[None, Any, None]:
        """Activate the reactor and return its background routine.

        The routine selects once per tick and yields, until ``stop()``
        is called or the reactor is started again.
        """
        self._active = True
        self._generation += 1
        self._logger.log(LogLevel.INFO, "reactor started", source="reactor")
        return self._run(loop, self._generation)

    def _run(self, loop: ProcessLoop, generation: int) -> Generator[None, Any, None]:
        while self._active and generation == self._generation:
            if not self.registrations and not loop.has_processes():
                # Nothing can ever become runnable again.
                self._active = False
                self._logger.log(LogLevel.INFO, "reactor idle, exiting", source="reactor")
                return
            self.select(loop, POLL if loop.has_processes() else BLOCKING)
            yield

    def clear(self) -> None:
        """Abandon every registration; parked processes are never woken."""
        self._readers.clear()
        self._writers.clear()

    def stop(self) -> None:
        """Mark the reactor inactive; registrations are kept but no longer polled."""
        if self._active:
            self._logger.log(LogLevel.INFO, "reactor stopped", source="reactor")
        self._active = False
