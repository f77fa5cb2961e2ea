"""Tests for the I/O reactor.

A fake poller stands in for ``select.select`` where the test needs to
control readiness; a real socket pair covers the default poller.
"""

import socket
from collections.abc import Generator
from typing import Any

import pytest

from py_coop.io.reactor import BLOCKING, POLL, Reactor, SocketType, socket_key
from py_coop.loop import ProcessLoop
from py_coop.process.pcb import Process
from py_coop.syscalls import wait_for_read


class FakePoller:
    """Record select calls and report a fixed set of ready sockets."""

    def __init__(self, readable: list[Any] | None = None, writable: list[Any] | None = None) -> None:
        """Create a poller that reports the given sockets as ready."""
        self.readable = readable or []
        self.writable = writable or []
        self.calls: list[tuple[list[Any], list[Any], float | None]] = []

    def __call__(
        self, rlist: list[Any], wlist: list[Any], xlist: list[Any], timeout: float | None
    ) -> tuple[list[Any], list[Any], list[Any]]:
        """Return the configured ready sockets that were asked about."""
        self.calls.append((list(rlist), list(wlist), timeout))
        return (
            [s for s in rlist if s in self.readable],
            [s for s in wlist if s in self.writable],
            [],
        )


def _waiter() -> Generator[None, Any, None]:
    yield


@pytest.fixture
def pair() -> Generator[tuple[socket.socket, socket.socket], Any, None]:
    """Provide a connected socket pair, closed afterwards."""
    left, right = socket.socketpair()
    yield left, right
    left.close()
    right.close()


class TestRegistration:
    """Verify the waiter tables."""

    def test_waiters_accumulate_per_socket(self) -> None:
        """Several processes can wait on the same socket."""
        reactor = Reactor(poller=FakePoller())
        first, second = Process("1", _waiter), Process("2", _waiter)
        reactor.add_reader(7, first)
        reactor.add_reader(7, second)
        assert reactor.waiting(7, SocketType.READ) == [first, second]
        assert reactor.registrations == 1

    def test_read_and_write_tables_are_separate(self) -> None:
        """Interest types do not share entries."""
        reactor = Reactor(poller=FakePoller())
        process = Process("1", _waiter)
        reactor.add_reader(7, process)
        reactor.add_writer(7, process)
        expected = 2
        assert reactor.registrations == expected
        assert reactor.waiting(7, SocketType.WRITE) == [process]

    def test_rejects_unsupported_type(self) -> None:
        """Only READ and WRITE interest is accepted."""
        reactor = Reactor(poller=FakePoller())
        with pytest.raises(ValueError, match="Unsupported socket type"):
            reactor.add_socket(7, Process("1", _waiter), 1)  # type: ignore[arg-type]

    def test_socket_key(self, pair: tuple[socket.socket, socket.socket]) -> None:
        """Sockets are keyed by descriptor; ints are their own key."""
        left, _ = pair
        assert socket_key(left) == left.fileno()
        assert socket_key(9) == 9  # noqa: PLR2004


class TestSelect:
    """Verify readiness handling."""

    def test_select_without_registrations_is_noop(self) -> None:
        """Nothing registered means the poller is never called."""
        poller = FakePoller()
        Reactor(poller=poller).select(ProcessLoop(), BLOCKING)
        assert poller.calls == []

    def test_ready_socket_wakes_every_waiter(self) -> None:
        """Both waiters are rescheduled and the registration is cleared."""
        poller = FakePoller(readable=[7])
        reactor = Reactor(poller=poller)
        loop = ProcessLoop(reactor=reactor)
        reactor.add_reader(7, Process("1", _waiter))
        reactor.add_reader(7, Process("2", _waiter))

        reactor.select(loop, POLL)
        assert loop.processes == ["1", "2"]
        assert reactor.registrations == 0

        reactor.select(loop, POLL)
        assert len(poller.calls) == 1

    def test_unready_socket_stays_registered(self) -> None:
        """Waiters on sockets that are not ready keep waiting."""
        reactor = Reactor(poller=FakePoller(readable=[]))
        loop = ProcessLoop(reactor=reactor)
        reactor.add_reader(7, Process("1", _waiter))
        reactor.select(loop, POLL)
        assert not loop.has_processes()
        assert reactor.registrations == 1

    def test_timeout_is_passed_through(self) -> None:
        """The poller receives the requested timeout."""
        poller = FakePoller()
        reactor = Reactor(poller=poller)
        reactor.add_writer(3, Process("1", _waiter))
        reactor.select(ProcessLoop(reactor=reactor), POLL)
        assert poller.calls == [([], [3], POLL)]


class TestBackgroundRoutine:
    """Verify the reactor routine inside a loop."""

    def test_polls_while_other_work_is_ready(self) -> None:
        """With other processes runnable the reactor never blocks."""
        poller = FakePoller()
        reactor = Reactor(poller=poller)
        loop = ProcessLoop(reactor=reactor)
        reactor.add_reader(7, Process("9", _waiter))

        def busy() -> Generator[None, Any, None]:
            yield
            yield
            reactor.stop()

        loop.add(busy)
        loop.start()
        assert poller.calls
        assert all(timeout == POLL for _, _, timeout in poller.calls)

    def test_blocks_when_only_waiters_remain(self, pair: tuple[socket.socket, socket.socket]) -> None:
        """A process parked on a socket is woken by real readiness."""
        left, right = pair
        received: list[bytes] = []

        def reader() -> Generator[Any, Any, None]:
            yield wait_for_read(left)
            received.append(left.recv(16))

        def writer() -> Generator[None, Any, None]:
            yield
            right.sendall(b"ping")

        loop = ProcessLoop(reactor=True)
        loop.add(reader)
        loop.add(writer)
        loop.start()
        assert received == [b"ping"]
        assert loop.reactor is not None
        assert loop.reactor.registrations == 0

    def test_restart_retires_old_routine(self) -> None:
        """Only the newest background routine keeps running."""
        reactor = Reactor(poller=FakePoller())
        loop = ProcessLoop(reactor=reactor)
        reactor.add_reader(7, Process("9", _waiter))
        loop.add(_waiter)
        old = reactor.start(loop)
        new = reactor.start(loop)
        assert next(new, "finished") is None
        assert next(old, "finished") == "finished"


class TestShutdown:
    """Verify what happens to parked processes when the loop ends."""

    def test_stop_abandons_registrations(self) -> None:
        """Stopping the loop drops every socket wait."""
        reactor = Reactor(poller=FakePoller(readable=[7]))
        loop = ProcessLoop(reactor=reactor)
        reactor.add_reader(7, Process("1", _waiter))
        reactor.add_writer(8, Process("2", _waiter))
        loop.stop()
        assert reactor.registrations == 0
        assert not reactor.active

    def test_pause_keeps_registrations(self) -> None:
        """A paused loop still owns its parked processes."""
        reactor = Reactor(poller=FakePoller())
        loop = ProcessLoop(reactor=reactor)
        reactor.add_reader(7, Process("1", _waiter))
        loop.pause()
        assert reactor.registrations == 1
        assert [p.pid for p in reactor.waiting(7, SocketType.READ)] == ["1"]

    def test_shared_reactor_does_not_wake_stopped_waiters(self) -> None:
        """A new loop on the same reactor never receives the old loop's waiters."""
        reactor = Reactor(poller=FakePoller(readable=[7]))
        old_loop = ProcessLoop(reactor=reactor)
        reactor.add_reader(7, Process("1", _waiter))
        old_loop.stop()

        new_loop = ProcessLoop(reactor=reactor)
        reactor.select(new_loop, POLL)
        assert new_loop.processes == []
