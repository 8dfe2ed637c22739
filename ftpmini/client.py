"""Interactive command-line client for the FTP server."""

from __future__ import annotations

import argparse
import codecs
import os
import socket
import subprocess
import sys
from functools import partial
from typing import Optional, Sequence, TextIO

from ftpmini.datalink import (
    BUFFER_SIZE,
    DataListener,
    needs_data_connection,
    read_reply,
    setup_data_connection,
)

__all__ = ["SERVER_PORT", "DEFAULT_HOST", "FTPClient", "usage_text", "run_local_command", "main"]

SERVER_PORT = 21
DEFAULT_HOST = "127.0.0.1"


def usage_text() -> str:
    """The instructions shown after connecting."""
    return (
        "Hello!! Please Authenticate to run server commands\n"
        "1. type \"USER\" followed by a space and your username\n"
        "2. type \"PASS\" followed by a space and your password\n\n"
        "\"QUIT\" to close connection at any moment\n"
        "Once Authenticated\n"
        "this is the list of commands :\n"
        "\"STOR\" + space + filename |to send a file to the server\n"
        "\"RETR\" + space + filename |to download a file from the server\n"
        "\"LIST\" |to  to list all the files under the current server directory\n"
        "\"CWD\" + space + directory |to change the current server directory\n"
        "\"PWD\" to display the current server directory\n"
        "Add \"!\" before the last three commands to apply them locally\n\n"
    )


def run_local_command(line: str, out: TextIO) -> None:
    """Run a ``!PWD``, ``!CWD <dir>`` or ``!LIST`` line on the local machine.

    Output goes to ``out``. Unknown commands and failures are ignored.
    Raises ``ValueError`` if ``line`` does not start with ``!``.
    """
    if not line.startswith("!"):
        raise ValueError("local commands start with '!'")
    command, _, argument = line[1:].partition(" ")
    verb = command.upper()
    if verb == "PWD":
        try:
            out.write(f"{os.getcwd()}\n")
        except OSError as exc:
            print(f"Local getcwd failed: {exc}", file=sys.stderr)
    elif verb == "CWD":
        if not argument:
            return
        try:
            os.chdir(argument)
        except OSError:
            return
        out.write(f"Changing directory to: {argument}\n")
    elif verb == "LIST":
        try:
            completed = subprocess.run(["ls", "-1"], stdout=subprocess.PIPE)
        except OSError:
            return
        out.write(completed.stdout.decode("utf-8", errors="replace"))
    out.flush()


class FTPClient:
    """Read commands from ``stdin``, talk to the server and report on ``stdout``."""

    def __init__(
        self,
        host: str = DEFAULT_HOST,
        port: int = SERVER_PORT,
        stdin: Optional[TextIO] = None,
        stdout: Optional[TextIO] = None,
    ) -> None:
        self.host = host
        self.port = port
        self._in = stdin if stdin is not None else sys.stdin
        self._out = stdout if stdout is not None else sys.stdout
        self._err = sys.stderr

    def run(self) -> None:
        """Connect, greet, and serve commands until QUIT, EOF or disconnect.

        Raises ``OSError`` if ``host`` is not an IPv4 address or the
        connection fails, and ``ConnectionError`` if the server does not
        send a 220 welcome.
        """
        socket.inet_pton(socket.AF_INET, self.host)
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as control:
            control.connect((self.host, self.port))
            welcome = self._read(control)
            if welcome is None:
                raise ConnectionError("no welcome message from server")
            self._write(welcome)
            if not welcome.startswith("220"):
                raise ConnectionError("server not ready")
            self._write(usage_text())
            self._loop(control)
        self._write("Connection closed.\n")

    # -- command loop ---------------------------------------------------

    def _loop(self, control: socket.socket) -> None:
        while True:
            raw = self._in.readline()
            if raw == "":
                self._write("\nExiting (EOF detected).\n")
                try:
                    control.sendall(b"QUIT\r\n")
                except OSError as exc:
                    print(f"send failed: {exc}", file=self._err)
                reply = self._read(control)
                self._write(f"SERVER: {reply or ''}")
                return
            line = raw.split("\n", 1)[0]
            if not line:
                continue
            if line.startswith("!"):
                run_local_command(line, self._out)
                continue
            if not self._command(control, line):
                return
            if line.upper() == "QUIT":
                self._write("Closed!\n")
                return

    def _command(self, control: socket.socket, line: str) -> bool:
        """Send one command; return False when the session should end."""
        name, _, argument = line.partition(" ")
        listener: Optional[DataListener] = None
        try:
            if needs_data_connection(line):
                try:
                    listener = setup_data_connection(control)
                    control.sendall(listener.port_command.encode("utf-8"))
                except OSError:
                    return True
                reply = self._read(control)
                if reply is None:
                    return False
                self._write(reply)
                if not reply.startswith("200"):
                    return True

            try:
                control.sendall(f"{line}\r\n".encode("utf-8"))
            except OSError as exc:
                print(f"send failed: {exc}", file=self._err)
                return False

            reply = self._read(control)
            if reply is None:
                print("Server disconnected or error reading reply.", file=self._err)
                return False

            if listener is None or not reply.startswith("150"):
                self._write(reply)
                return True

            head, newline, rest = reply.partition("\n")
            self._write(head + newline)
            try:
                conn = listener.accept()
            except OSError as exc:
                print(f"accept (data connection) failed: {exc}", file=self._err)
                return True
            with conn:
                self._transfer(conn, name.upper(), argument)

            final = rest or self._read(control)
            if final is None:
                print("Server disconnected or error reading final reply.", file=self._err)
                return False
            self._write(final)
            return True
        finally:
            if listener is not None:
                listener.close()

    # -- data transfers -------------------------------------------------

    def _transfer(self, conn: socket.socket, verb: str, argument: str) -> None:
        if verb == "LIST":
            self._receive_listing(conn)
        elif verb == "RETR":
            self._retrieve(conn, argument)
        elif verb == "STOR":
            self._store(conn, argument)

    def _receive_listing(self, conn: socket.socket) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        try:
            while chunk := conn.recv(BUFFER_SIZE - 1):
                self._write(decoder.decode(chunk))
        except OSError as exc:
            print(f"read (LIST data) failed: {exc}", file=self._err)
        self._write(decoder.decode(b"", final=True))

    def _retrieve(self, conn: socket.socket, filename: str) -> None:
        if not filename:
            print("Error: Filename missing for RETR.", file=self._err)
            return
        try:
            sink = open(filename, "wb")
        except OSError as exc:
            print(f"open (local file for RETR) failed: {exc}", file=self._err)
            print(
                f"Error opening local file {filename}. Data transfer will be skipped.",
                file=self._err,
            )
            return
        with sink:
            try:
                while chunk := conn.recv(BUFFER_SIZE):
                    sink.write(chunk)
            except OSError as exc:
                print(f"RETR transfer failed: {exc}", file=self._err)

    def _store(self, conn: socket.socket, filename: str) -> None:
        if not filename:
            print("Error: Filename missing for STOR.", file=self._err)
            return
        try:
            source = open(filename, "rb")
        except OSError as exc:
            print(f"open (local file for STOR) failed: {exc}", file=self._err)
            print(f"Error opening local file {filename}. Aborting STOR.", file=self._err)
            return
        with source:
            try:
                for chunk in iter(partial(source.read, BUFFER_SIZE), b""):
                    conn.sendall(chunk)
            except OSError as exc:
                print(f"send (STOR data) failed: {exc}", file=self._err)

    # -- helpers --------------------------------------------------------

    def _read(self, control: socket.socket) -> Optional[str]:
        try:
            return read_reply(control)
        except ConnectionError:
            self._write("read_reply: Server closed connection.\n")
        except OSError as exc:
            print(f"read_reply failed: {exc}", file=self._err)
        return None

    def _write(self, text: str) -> None:
        self._out.write(text)
        self._out.flush()


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Start the interactive client and return an exit status."""
    parser = argparse.ArgumentParser(prog="ftpmini-client", description="Connect to the FTP server.")
    parser.add_argument("host", nargs="?", default=DEFAULT_HOST, help="server IPv4 address")
    parser.add_argument("--port", type=int, default=SERVER_PORT, help="server control port")
    parser.add_argument("--local-dir", default="client", help="local directory to start in")
    args = parser.parse_args(argv)

    try:
        os.chdir(args.local_dir)
    except OSError as exc:
        print(f"Failed to change to client directory: {exc}", file=sys.stderr)
        print("Warning: Could not change to client directory", file=sys.stderr)

    try:
        FTPClient(args.host, args.port).run()
    except OSError:
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())