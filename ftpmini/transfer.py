"""Data-connection transfers: directory listings, downloads and uploads."""

from __future__ import annotations

import enum
import logging
import os
import socket
import subprocess
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import Optional

__all__ = [
    "BUFFER_SIZE",
    "DATA_PORT",
    "TransferKind",
    "DataTarget",
    "TransferJob",
    "open_data_connection",
    "list_directory",
]

log = logging.getLogger(__name__)

BUFFER_SIZE = 1024
DATA_PORT = 20


class TransferKind(enum.Enum):
    """The commands that move data over a separate connection."""

    LIST = "LIST"
    RETR = "RETR"
    STOR = "STOR"


@dataclass(frozen=True)
class DataTarget:
    """The address a client announced with PORT."""

    ip: str
    port: int


def open_data_connection(target: DataTarget, bind_port: Optional[int]) -> socket.socket:
    """Connect to ``target``, binding the local end to ``bind_port`` if given.

    Raises ``OSError`` when the socket cannot be bound or connected.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        if bind_port is not None:
            sock.bind(("", bind_port))
        sock.connect((target.ip, target.port))
    except OSError:
        sock.close()
        raise
    return sock


def list_directory(directory: "str | os.PathLike[str]") -> bytes:
    """Return the output of ``ls`` run in ``directory``.

    Raises ``OSError`` if the directory or the program is missing and
    ``subprocess.CalledProcessError`` if ``ls`` fails.
    """
    completed = subprocess.run(
        ["ls"], cwd=directory, stdout=subprocess.PIPE, check=True
    )
    return completed.stdout


@dataclass
class TransferJob:
    """One transfer over a data connection, run to completion by ``run``.

    ``path`` is the file to send for RETR and the final name for STOR;
    ``temp_path`` is where STOR collects the data before renaming it.
    """

    kind: TransferKind
    target: DataTarget
    directory: Path
    path: Optional[Path] = None
    temp_path: Optional[Path] = None
    bind_port: Optional[int] = DATA_PORT

    def __post_init__(self) -> None:
        if self.kind is not TransferKind.LIST and self.path is None:
            raise ValueError(f"{self.kind.value} transfer needs a file path")
        if self.kind is TransferKind.STOR and self.temp_path is None:
            raise ValueError("STOR transfer needs a temporary file path")

    def run(self) -> bool:
        """Carry out the transfer; return True when it completed."""
        try:
            conn = open_data_connection(self.target, self.bind_port)
        except OSError as exc:
            log.error("Data connection to %s:%d failed: %s",
                      self.target.ip, self.target.port, exc)
            self._discard_temp()
            return False

        with conn:
            try:
                if self.kind is TransferKind.LIST:
                    conn.sendall(list_directory(self.directory))
                elif self.kind is TransferKind.RETR:
                    self._send_file(conn)
                else:
                    self._receive_file(conn)
            except (OSError, subprocess.SubprocessError) as exc:
                log.error("%s transfer failed: %s", self.kind.value, exc)
                self._discard_temp()
                return False

        if self.kind is TransferKind.STOR:
            try:
                os.replace(self.temp_path, self.path)
            except OSError as exc:
                log.error("Renaming uploaded file failed: %s", exc)
                self._discard_temp()
                return False
        return True

    def _send_file(self, conn: socket.socket) -> None:
        with open(self.path, "rb") as source:
            for chunk in iter(partial(source.read, BUFFER_SIZE), b""):
                conn.sendall(chunk)

    def _receive_file(self, conn: socket.socket) -> None:
        with open(self.temp_path, "wb") as sink:
            while chunk := conn.recv(BUFFER_SIZE):
                sink.write(chunk)

    def _discard_temp(self) -> None:
        if self.kind is TransferKind.STOR and self.temp_path is not None:
            try:
                os.remove(self.temp_path)
            except FileNotFoundError:
                pass
            except OSError as exc:
                log.error("Removing temporary file failed: %s", exc)