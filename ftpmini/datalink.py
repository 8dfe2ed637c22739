"""Client side of the control and data connections."""

from __future__ import annotations

import socket
from typing import Optional

__all__ = [
    "BUFFER_SIZE",
    "DataListener",
    "read_reply",
    "format_port_command",
    "needs_data_connection",
    "setup_data_connection",
]

BUFFER_SIZE = 4096

_DATA_COMMANDS = ("LIST", "RETR", "STOR")


def read_reply(sock: socket.socket) -> str:
    """Read one reply from the control connection.

    A single read of at most ``BUFFER_SIZE - 1`` bytes is made. Raises
    ``ConnectionError`` when the server has closed the connection and
    ``OSError`` when the read fails.
    """
    data = sock.recv(BUFFER_SIZE - 1)
    if not data:
        raise ConnectionError("Server closed connection.")
    return data.decode("utf-8", errors="replace")


def format_port_command(ip: str, port: int) -> str:
    """Build ``PORT h1,h2,h3,h4,p1,p2`` for ``ip`` and ``port``, CRLF included."""
    return f"PORT {ip.replace('.', ',')},{port >> 8},{port & 0xFF}\r\n"


def needs_data_connection(command: str) -> bool:
    """True if ``command`` starts with LIST, RETR or STOR, in any case."""
    return command[:4].upper() in _DATA_COMMANDS


class DataListener:
    """A listening socket waiting for the server's data connection.

    ``port_command`` is the PORT line announcing this socket to the server.
    """

    def __init__(self, sock: socket.socket, port_command: str) -> None:
        self._sock: Optional[socket.socket] = sock
        self.port_command = port_command
        self.port: int = sock.getsockname()[1]

    @property
    def closed(self) -> bool:
        """True once the listening socket has been closed."""
        return self._sock is None

    def accept(self) -> socket.socket:
        """Wait for the server to connect, close the listener, return the connection.

        Raises ``OSError`` if the listener is closed or accepting fails.
        """
        if self._sock is None:
            raise OSError("data listener is closed")
        try:
            conn, _ = self._sock.accept()
        finally:
            self.close()
        return conn

    def close(self) -> None:
        """Close the listening socket; closing twice does nothing."""
        if self._sock is not None:
            self._sock.close()
            self._sock = None

    def __enter__(self) -> "DataListener":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def setup_data_connection(control: socket.socket) -> DataListener:
    """Open a listener on a system-chosen port for an active-mode transfer.

    The PORT command carries the local address of ``control`` and the
    listener's port. Raises ``OSError`` if the socket cannot be set up.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.bind(("", 0))
        sock.listen(1)
        local_ip = control.getsockname()[0]
        port = sock.getsockname()[1]
        listener = DataListener(sock, format_port_command(local_ip, port))
    except OSError:
        sock.close()
        raise
    return listener