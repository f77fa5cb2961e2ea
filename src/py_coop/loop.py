"""The process loop - cooperative round-robin scheduler.

The loop owns a ``TaskQueue`` of processes and repeatedly takes the
front one, advances it by exactly one step, and decides where it goes
next::

    step yields a Syscall   ->  the syscall decides (reschedule, park, drop)
    step yields anything    ->  back to the tail of the queue
    routine finished        ->  completion callback, then dropped

Because every runnable process goes to the tail after one step, each
process that is ready at the start of a pass gets exactly one step
before any of them gets a second one.  Nothing is preempted: a step
runs until the routine yields.

Lifecycle::

    IDLE  ->  RUNNING  ->  PAUSED  ->  RUNNING  ->  ...  ->  STOPPED

``pause()`` keeps the queue so ``resume()`` can carry on where it
left off.  ``stop()`` is terminal: the queue and any socket waits are
discarded, and no per-process cleanup runs.

A loop built with a reactor adds the reactor's background routine as
an ordinary process when it starts, so socket waits and plain yields
share the same queue.
"""

from __future__ import annotations

import itertools
from enum import StrEnum
from typing import TYPE_CHECKING, Any, NamedTuple, TypeAlias

from py_coop.io.reactor import Reactor
from py_coop.logging import Logger, LogLevel
from py_coop.process.pcb import Process, child_pid, parent_of
from py_coop.process.queue import TaskQueue
from py_coop.syscalls import Syscall

if TYPE_CHECKING:
    from collections.abc import Callable

CompletionCallback: TypeAlias = "Callable[[str, Any], Any]"


class LoopState(StrEnum):
    """Represent the lifecycle phases of a process loop."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    STOPPED = "stopped"


class ProcessLoop:
    """Run processes one step at a time, in round-robin order."""

    def __init__(
        self,
        *,
        reactor: Reactor | bool | None = None,
        logger: Logger | None = None,
    ) -> None:
        """Create an idle loop with an empty queue.

        Args:
            reactor: ``True`` to create a default reactor, a ``Reactor``
                to use that one, or None/False for a loop without I/O.
            logger: The event log; a fresh ``Logger`` if None.

        """
        self._logger = logger if logger is not None else Logger()
        if reactor is True:
            self._reactor: Reactor | None = Reactor(logger=self._logger)
        elif isinstance(reactor, Reactor):
            self._reactor = reactor
        else:
            self._reactor = None
        self._queue: TaskQueue[Process] = TaskQueue()
        self._counter = itertools.count(1)
        self._state = LoopState.IDLE
        self._on_complete: CompletionCallback | None = None

    # -- Accessors -----------------------------------------------------------

    @property
    def state(self) -> LoopState:
        """Return the current lifecycle state."""
        return self._state

    @property
    def reactor(self) -> Reactor | None:
        """Return the loop's reactor, if it has one."""
        return self._reactor

    @property
    def logger(self) -> Logger:
        """Return the loop's event log."""
        return self._logger

    @property
    def processes(self) -> list[str]:
        """Return the ids of the queued processes, front first."""
        return [process.pid for process in self._queue]

    def has_processes(self) -> bool:
        """Return True if at least one process is waiting to run."""
        return not self._queue.is_empty()

    # -- Process management --------------------------------------------------

    def add(self, source: Any, parent: str | None = None) -> str:
        """Wrap *source* in a new process and queue it.

        Args:
            source: A callable factory or a generator instance.
            parent: Id of the spawning process; the new id is prefixed
                with it.

        Returns:
            The new process id.

        Raises:
            TypeError: If *source* is neither callable nor a generator.

        """
        pid = child_pid(parent, next(self._counter))
        process = Process(pid, source)
        self._queue.enqueue(process)
        self._logger.log(LogLevel.DEBUG, f"added ({process.source.kind})", source="loop", pid=pid)
        return pid

    def schedule(self, process: Process) -> None:
        """Put *process* back at the tail of the queue."""
        self._queue.enqueue(process)

    def fork(self, pid: str) -> str | None:
        """Start a fresh copy of queued process *pid* alongside it.

        The copy is built from the original factory and gets the same
        parent as the target.

        Returns:
            The id of the copy, or None if no queued process has *pid*.

        Raises:
            ProcessError: If the target was built from a generator instance.

        """
        target = self._queue.find(lambda p: p.pid == pid)
        if target is None:
            return None
        factory = target.get_coroutine()
        fork_pid = self.add(factory, parent=parent_of(target.pid))
        self._logger.log(LogLevel.INFO, f"forked from {pid}", source="loop", pid=fork_pid)
        return fork_pid

    def kill(self, pid: str) -> bool:
        """Remove queued process *pid* without running any cleanup.

        Returns:
            True if a process was removed, False if none had that id.

        """
        index = self._queue.find_index(lambda p: p.pid == pid)
        if index == -1:
            return False
        self._queue.remove(index)
        self._logger.log(LogLevel.INFO, "killed", source="loop", pid=pid)
        return True

    # -- Lifecycle -----------------------------------------------------------

    def start(self, on_complete: CompletionCallback | None = None) -> None:
        """Run queued processes until the queue drains or the loop is paused or stopped.

        Args:
            on_complete: Called as ``on_complete(pid, result)`` for every
                process that finishes.  It is remembered, so a later
                ``resume()`` reports completions to the same callback.

        Raises:
            Exception: Whatever a routine raises without handling it;
                the failing process is dropped from the queue.

        """
        if self._state is LoopState.STOPPED:
            self._logger.log(LogLevel.WARNING, "start refused: loop is stopped", source="loop")
            return
        if on_complete is not None:
            self._on_complete = on_complete
        if self._state is LoopState.PAUSED:
            return

        self._state = LoopState.RUNNING
        if self._reactor is not None and not self._reactor.active:
            self.add(self._reactor.start(self))

        try:
            while self._state is LoopState.RUNNING and not self._queue.is_empty():
                process = self._queue.dequeue()
                if process is None:
                    break
                self._step(process)
        except Exception:
            if self._reactor is not None:
                self._reactor.stop()
            raise
        finally:
            if self._state is LoopState.RUNNING:
                self._state = LoopState.IDLE

    def _step(self, process: Process) -> None:
        try:
            value = process.run()
        except Exception as e:
            self._logger.log(LogLevel.ERROR, f"failed: {e!r}", source="loop", pid=process.pid)
            raise

        if isinstance(value, Syscall):
            try:
                value(process, self, self._reactor)
            except Exception as e:  # noqa: BLE001
                self._logger.log(
                    LogLevel.WARNING, f"{value.kind} failed: {e}", source="syscall", pid=process.pid
                )
                process.throw(e)
                self.schedule(process)
            return

        if not process.completed:
            self.schedule(process)
            return

        self._logger.log(LogLevel.DEBUG, "completed", source="loop", pid=process.pid)
        if self._on_complete is not None:
            self._on_complete(process.pid, process.get_return())

    def pause(self) -> None:
        """Stop running steps but keep the queue for ``resume()``."""
        if self._state is LoopState.STOPPED:
            return
        self._state = LoopState.PAUSED
        if self._reactor is not None:
            self._reactor.stop()
        self._logger.log(LogLevel.INFO, "paused", source="loop")

    def resume(self) -> None:
        """Continue a paused loop; does nothing in any other state."""
        if self._state is not LoopState.PAUSED:
            return
        self._logger.log(LogLevel.INFO, "resumed", source="loop")
        self._state = LoopState.IDLE
        self.start()

    def stop(self) -> None:
        """Stop the loop for good, discarding queued processes and socket waits."""
        self._state = LoopState.STOPPED
        if self._reactor is not None:
            self._reactor.stop()
            self._reactor.clear()
        self._queue.clear()
        self._logger.log(LogLevel.INFO, "stopped", source="loop")


class LoopHandles(NamedTuple):
    """Bound controls of one loop, for callers that only need these four."""

    start: Callable[..., None]
    stop: Callable[[], None]
    add: Callable[..., str]
    resume: Callable[[], None]


def scheduler(*, logger: Logger | None = None) -> LoopHandles:
    """Create a reactor-enabled loop and return its controls."""
    loop = ProcessLoop(reactor=True, logger=logger)
    return LoopHandles(start=loop.start, stop=loop.stop, add=loop.add, resume=loop.resume)
