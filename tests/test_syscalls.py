"""Tests for the syscall protocol.

Routines yield syscalls to ask the loop for something; each handler
decides what the caller receives and when it runs again.
"""

import socket
from collections.abc import Generator
from typing import Any

import pytest

from py_coop.io.reactor import Reactor, SocketType
from py_coop.loop import LoopState, ProcessLoop
from py_coop.process.pcb import Process
from py_coop.syscalls import (
    Syscall,
    SyscallError,
    SyscallKind,
    close,
    dispatch_syscall,
    fork,
    kill,
    process_id,
    spawn,
    suspend,
    wait_for_read,
)


def _run(task: Any, *, reactor: Reactor | bool | None = None) -> dict[str, Any]:
    """Run *task* on a fresh loop and collect every completion result."""
    loop = ProcessLoop(reactor=reactor)
    results: dict[str, Any] = {}
    loop.add(task)
    loop.start(lambda pid, result: results.__setitem__(pid, result))
    return results


def _idle() -> Generator[None, Any, None]:
    yield
    yield


class TestBuilders:
    """Verify request construction."""

    def test_kind_and_operands(self) -> None:
        """Builders record their kind and operands."""
        request = spawn(_idle)
        assert request.kind is SyscallKind.SPAWN
        assert request.operands == {"source": _idle}

    def test_ids_are_stringified(self) -> None:
        """Fork and kill accept numeric ids."""
        assert kill(3).operands == {"pid": "3"}  # type: ignore[arg-type]
        assert fork(3).operands == {"pid": "3"}  # type: ignore[arg-type]

    def test_repr(self) -> None:
        """The representation names the kind and operands."""
        assert repr(kill("2")) == "Syscall(kill, pid='2')"
        assert repr(process_id()) == "Syscall(process_id)"

    def test_unknown_kind(self) -> None:
        """A request the dispatcher does not know is rejected."""
        loop = ProcessLoop()
        process = Process("1", _idle)
        with pytest.raises(SyscallError, match="Unknown syscall"):
            dispatch_syscall(Syscall("bogus"), process, loop)  # type: ignore[arg-type]


class TestProcessSyscalls:
    """Verify process-management syscalls."""

    def test_process_id(self) -> None:
        """The caller receives its own id."""

        def task() -> Generator[Any, Any, str]:
            me = yield process_id()
            return me

        assert _run(task) == {"1": "1"}

    def test_spawn_returns_child_id(self) -> None:
        """Spawned processes are children of the caller."""

        def task() -> Generator[Any, Any, str]:
            child = yield spawn(_idle)
            return child

        results = _run(task)
        assert results["1"] == "1_2"
        assert "1_2" in results

    def test_spawn_rejects_bad_source(self) -> None:
        """A non-routine source is reported to the caller."""

        def task() -> Generator[Any, Any, str]:
            try:
                yield spawn(42)
            except SyscallError as e:
                return str(e)
            return "spawned"

        assert "Expected a callable or a generator" in _run(task)["1"]

    def test_kill_removes_target(self) -> None:
        """A killed process never completes."""

        def task() -> Generator[Any, Any, str]:
            child = yield spawn(_idle)
            yield kill(child)
            return "killed"

        assert _run(task) == {"1": "killed"}

    def test_kill_unknown_id(self) -> None:
        """Killing a missing process raises at the caller's yield."""

        def task() -> Generator[Any, Any, str]:
            try:
                yield kill("99")
            except SyscallError as e:
                return str(e)
            return "missed"

        assert _run(task) == {"1": "Invalid process id: 99"}

    def test_fork_callable_process(self) -> None:
        """A fork shares the target's parent and gets a fresh id."""

        def task() -> Generator[Any, Any, str]:
            child = yield spawn(_idle)
            clone = yield fork(child)
            return clone

        results = _run(task)
        assert results["1"] == "1_3"
        assert "1_3" in results

    def test_fork_generator_instance_fails(self) -> None:
        """A process built from a generator instance cannot be forked."""

        def task() -> Generator[Any, Any, str]:
            child = yield spawn(_idle())
            try:
                yield fork(child)
            except SyscallError as e:
                return str(e)
            return "forked"

        assert "cannot be cloned" in _run(task)["1"]

    def test_fork_unknown_id(self) -> None:
        """Forking a missing process is reported to the caller."""

        def task() -> Generator[Any, Any, str]:
            try:
                yield fork("42")
            except SyscallError as e:
                return str(e)
            return "forked"

        assert _run(task) == {"1": "Unable to fork process id: 42"}


class TestLoopControlSyscalls:
    """Verify suspend, resume, and close."""

    def test_suspend_pauses_loop(self) -> None:
        """The loop stops stepping until it is resumed."""
        trail = []

        def task() -> Generator[Any, Any, None]:
            trail.append("before")
            yield suspend()
            trail.append("after")

        loop = ProcessLoop()
        loop.add(task)
        loop.start()
        assert loop.state is LoopState.PAUSED
        assert trail == ["before"]
        loop.resume()
        assert trail == ["before", "after"]

    def test_close_drops_everything(self) -> None:
        """Close stops the loop; queued processes never finish."""

        def closer() -> Generator[Any, Any, None]:
            yield close()

        loop = ProcessLoop()
        results: dict[str, Any] = {}
        loop.add(_idle)
        loop.add(closer)
        loop.start(lambda pid, result: results.__setitem__(pid, result))
        assert loop.state is LoopState.STOPPED
        assert results == {}
        assert not loop.has_processes()


class TestIoSyscalls:
    """Verify the socket waits."""

    def test_wait_needs_reactor(self) -> None:
        """Waiting on a loop without a reactor is reported to the caller."""
        left, right = socket.socketpair()

        def task() -> Generator[Any, Any, str]:
            try:
                yield wait_for_read(left)
            except SyscallError as e:
                return str(e)
            return "waited"

        try:
            assert _run(task) == {"1": "wait_for_read needs a loop with a reactor"}
        finally:
            left.close()
            right.close()

    def test_wait_parks_caller_on_reactor(self) -> None:
        """The caller leaves the queue and waits in the reactor."""
        reactor = Reactor()
        loop = ProcessLoop(reactor=reactor)
        process = Process("1", _idle)
        wait_for_read(5)(process, loop, reactor)
        assert reactor.waiting(5, SocketType.READ) == [process]
        assert not loop.has_processes()
