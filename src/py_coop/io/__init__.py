"""I/O subsystem - socket readiness reactor and cooperative sockets."""

from py_coop.io.reactor import BLOCKING, POLL, Reactor, SocketType, socket_key
from py_coop.io.sockets import CoSocket, accept, create_socket

__all__ = [
    "BLOCKING",
    "POLL",
    "CoSocket",
    "Reactor",
    "SocketType",
    "accept",
    "create_socket",
    "socket_key",
]
