"""Multi-client control-connection server."""

from __future__ import annotations

import argparse
import logging
import os
import queue
import selectors
import socket
import threading
from pathlib import Path
from typing import Optional, Sequence

from ftpmini.session import ClientSession
from ftpmini.transfer import DATA_PORT, TransferJob, TransferKind
from ftpmini.users import UserTable, load_users

__all__ = ["LISTEN_PORT", "BACKLOG", "FTPServer", "main"]

log = logging.getLogger(__name__)

LISTEN_PORT = 21
BACKLOG = 10
BUFFER_SIZE = 1024

_WELCOME = "220 Service ready for new user.\r\n"
_TOO_MANY = "421 Service not available, closing control connection.\r\n"


class FTPServer:
    """Accept clients on one listening socket and serve their commands.

    Directory listings run while the server waits; downloads and uploads
    run in background threads and are reported when they finish.
    """

    MAX_CLIENTS = 1024

    def __init__(
        self,
        root: "str | os.PathLike[str]",
        users: UserTable,
        host: str = "",
        port: int = LISTEN_PORT,
        data_port: Optional[int] = DATA_PORT,
    ) -> None:
        self.root = Path(root)
        self.users = users
        self.data_port = data_port
        self._listener = socket.create_server((host, port), backlog=BACKLOG)
        self._address = self._listener.getsockname()[:2]
        self._wake_r, self._wake_w = socket.socketpair()
        self._wake_r.setblocking(False)
        self._selector = selectors.DefaultSelector()
        self._selector.register(self._listener, selectors.EVENT_READ)
        self._selector.register(self._wake_r, selectors.EVENT_READ)
        self._sessions: dict[socket.socket, ClientSession] = {}
        self._finished: "queue.SimpleQueue[tuple[ClientSession, socket.socket, bool]]" = (
            queue.SimpleQueue()
        )
        self._stop = threading.Event()

    def address(self) -> tuple[str, int]:
        """The host and port the server listens on."""
        return self._address

    def serve_forever(self) -> None:
        """Serve clients until ``shutdown`` is called, then close every socket."""
        try:
            while not self._stop.is_set():
                for key, _ in self._selector.select(timeout=1.0):
                    if self._stop.is_set():
                        break
                    sock = key.fileobj
                    if sock is self._listener:
                        self._accept()
                    elif sock is self._wake_r:
                        self._drain_wake()
                    else:
                        self._serve_client(sock)
                self._report_finished()
        finally:
            self._close_all()

    def shutdown(self) -> None:
        """Ask ``serve_forever`` to stop."""
        self._stop.set()
        self._wake()

    # -- connections ----------------------------------------------------

    def _accept(self) -> None:
        try:
            conn, addr = self._listener.accept()
        except OSError as exc:
            log.error("accept failed: %s", exc)
            return
        log.info("Connection established with user %d", conn.fileno())
        log.info("Their port: %d", addr[1])
        if len(self._sessions) >= self.MAX_CLIENTS:
            log.error("Too many clients connected.")
            self._send(conn, _TOO_MANY)
            conn.close()
            return
        self._sessions[conn] = ClientSession(self.users, self.root, self.data_port)
        self._selector.register(conn, selectors.EVENT_READ)
        self._send(conn, _WELCOME)

    def _serve_client(self, conn: socket.socket) -> None:
        session = self._sessions.get(conn)
        if session is None:
            return
        try:
            data = conn.recv(BUFFER_SIZE - 1)
        except OSError as exc:
            log.error("Error reading from client [%d]: %s. Closing connection.",
                      conn.fileno(), exc)
            self._drop(conn)
            return
        if not data:
            log.info("Client [%d] disconnected.", conn.fileno())
            self._drop(conn)
            return

        result = session.handle(data.decode("utf-8", errors="replace"))
        if result.reply is not None:
            self._send(conn, result.reply)
        if result.close:
            log.info("Client [%d] requested QUIT.", conn.fileno())
            self._drop(conn)
            return
        if result.job is not None:
            self._start_job(session, conn, result.job)

    def _start_job(self, session: ClientSession, conn: socket.socket, job: TransferJob) -> None:
        if job.kind is TransferKind.LIST:
            success = job.run()
            self._send(conn, session.finish_transfer(success))
            return

        def work() -> None:
            success = job.run()
            self._finished.put((session, conn, success))
            self._wake()

        threading.Thread(target=work, daemon=True).start()

    def _report_finished(self) -> None:
        while True:
            try:
                session, conn, success = self._finished.get_nowait()
            except queue.Empty:
                return
            reply = session.finish_transfer(success)
            if self._sessions.get(conn) is session:
                self._send(conn, reply)

    def _drop(self, conn: socket.socket) -> None:
        session = self._sessions.pop(conn, None)
        if session is not None and session.busy:
            log.info("Client disconnected during data transfer.")
        try:
            self._selector.unregister(conn)
        except (KeyError, ValueError):
            pass
        conn.close()

    @staticmethod
    def _send(conn: socket.socket, message: str) -> None:
        try:
            conn.sendall(message.encode("utf-8"))
        except OSError as exc:
            log.error("send failed: %s", exc)

    # -- wake-up channel ------------------------------------------------

    def _wake(self) -> None:
        try:
            self._wake_w.send(b"\0")
        except OSError:
            pass

    def _drain_wake(self) -> None:
        try:
            while self._wake_r.recv(4096):
                pass
        except (BlockingIOError, InterruptedError):
            pass
        except OSError as exc:
            log.error("wake channel failed: %s", exc)

    def _close_all(self) -> None:
        for conn in list(self._sessions):
            self._drop(conn)
        self._selector.close()
        self._listener.close()
        self._wake_r.close()
        self._wake_w.close()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Start the server from the command line and return an exit status."""
    parser = argparse.ArgumentParser(prog="ftpmini-server", description="Run the FTP server.")
    parser.add_argument("--root", default=os.getcwd(), help="server root directory")
    parser.add_argument("--users", default=None, help="credentials file (default: ROOT/users.csv)")
    parser.add_argument("--host", default="", help="address to listen on")
    parser.add_argument("--port", type=int, default=LISTEN_PORT, help="control port")
    parser.add_argument("--data-port", type=int, default=DATA_PORT,
                        help="local port for data connections")
    args = parser.parse_args(argv)

    logging.basicConfig(level=logging.INFO, format="%(message)s")

    root = Path(args.root)
    users_path = Path(args.users) if args.users else root / "users.csv"
    try:
        users = load_users(users_path)
    except OSError as exc:
        log.error("FATAL: Failed to load users from %s: %s", users_path, exc)
        return 1
    if len(users) == 0:
        log.warning("WARNING: No users loaded. Authentication will fail.")

    try:
        server = FTPServer(root, users, args.host, args.port, args.data_port)
    except OSError as exc:
        log.error("Cannot listen on port %d: %s", args.port, exc)
        return 1

    try:
        server.serve_forever()
    except KeyboardInterrupt:
        pass
    log.info("FTP Server Shutting Down...")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())