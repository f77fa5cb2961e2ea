"""Cooperative sockets - byte I/O expressed as routines.

A ``CoSocket`` wraps an ordinary non-blocking socket.  Each operation
is a routine that first parks the caller on the reactor until the
socket is ready, then performs the raw call, then finishes with its
result::

    def echo(conn):
        data = yield conn.read(1024)
        if data:
            yield conn.write(data)
        yield conn.close()

Because the wait happens *before* the raw call, a read never blocks the
loop: by the time ``recv`` runs the reactor has seen the socket become
readable.  These routines need a loop that owns a reactor.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from py_coop.process.coroutine import return_value
from py_coop.syscalls import wait_for_read, wait_for_write

if TYPE_CHECKING:
    import socket
    from collections.abc import Generator


class CoSocket:
    """A socket whose reads and writes suspend the caller instead of blocking."""

    def __init__(self, sock: socket.socket) -> None:
        """Wrap *sock* and switch it to non-blocking mode."""
        sock.setblocking(False)  # noqa: FBT003
        self._sock = sock
        self._eof = False

    @property
    def sock(self) -> socket.socket:
        """Return the wrapped socket."""
        return self._sock

    def fileno(self) -> int:
        """Return the descriptor, so a ``CoSocket`` can be polled directly."""
        return self._sock.fileno()

    def eof(self) -> bool:
        """Return True once a read has seen the peer close its side."""
        return self._eof

    def read(self, length: int) -> Generator[Any, Any, None]:
        """Read up to *length* bytes; ``b""`` means end of stream."""
        yield wait_for_read(self._sock)
        data = self._sock.recv(length)
        if not data:
            self._eof = True
        yield return_value(data)

    def write(self, data: bytes) -> Generator[Any, Any, None]:
        """Write *data*; the result is the number of bytes sent."""
        yield wait_for_write(self._sock)
        yield return_value(self._sock.send(data))

    def close(self) -> Generator[Any, Any, None]:
        """Close the socket; the result is True."""
        self._sock.close()
        yield return_value(True)  # noqa: FBT003

    def __repr__(self) -> str:
        """Return a debug-friendly representation."""
        return f"CoSocket(fd={self._sock.fileno()}, eof={self._eof})"


def create_socket(sock: socket.socket) -> CoSocket:
    """Wrap *sock* for use inside routines."""
    return CoSocket(sock)


def accept(listener: socket.socket) -> Generator[Any, Any, None]:
    """Wait for a connection on *listener*; the result is a ``CoSocket``."""
    yield wait_for_read(listener)
    conn, _ = listener.accept()
    yield return_value(create_socket(conn))
