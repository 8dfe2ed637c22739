"""Per-client command handling on the control connection."""

from __future__ import annotations

import errno
import logging
import os
import stat
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from ftpmini.protocol import PortSyntaxError, parse_port_argument, split_command
from ftpmini.transfer import DATA_PORT, DataTarget, TransferJob, TransferKind
from ftpmini.users import UserTable

__all__ = ["CommandResult", "ClientSession"]

log = logging.getLogger(__name__)

_OPENING = "150 File status okay; about to open data connection.\r\n"
_COMPLETE = "226 Transfer complete.\r\n"
_ABORTED = "451 Requested action aborted: local error in processing.\r\n"
_NOT_FOUND = "550 File not found or access denied.\r\n"


def _syntax_error(reason: str) -> str:
    return f"501 Syntax error in parameters or arguments ({reason}).\r\n"


def _bad_sequence(reason: str) -> str:
    return f"503 Bad sequence of commands ({reason}).\r\n"


@dataclass(frozen=True)
class CommandResult:
    """What the server should do after one command.

    ``reply`` is sent on the control connection if not None, ``job`` is a
    transfer to run, and ``close`` asks for the connection to be closed.
    """

    reply: Optional[str] = None
    job: Optional[TransferJob] = None
    close: bool = False


class ClientSession:
    """Authentication state, working directory and PORT target of one client."""

    def __init__(
        self,
        users: UserTable,
        server_root: "str | os.PathLike[str]",
        data_port: Optional[int] = DATA_PORT,
    ) -> None:
        self.users = users
        self.server_root = Path(server_root)
        self.data_port = data_port
        self.authenticated = False
        self.username = ""
        self.working_directory: Optional[Path] = None
        self.data_target: Optional[DataTarget] = None
        self._busy = False

    @property
    def busy(self) -> bool:
        """True while a transfer started by this session is running."""
        return self._busy

    def handle(self, line: str) -> CommandResult:
        """Carry out one command line and describe the response."""
        if self._busy:
            log.info("Command received while data transfer active. Ignored.")
            return CommandResult()

        command, argument = split_command(line)
        verb = command.upper()

        if verb == "USER":
            return CommandResult(self._user(argument))
        if verb == "PASS":
            return CommandResult(self._pass(argument))
        if verb == "QUIT":
            return CommandResult("221 Service closing control connection.\r\n", close=True)
        if not self.authenticated:
            return CommandResult("530 Not logged in.\r\n")
        if verb == "PORT":
            return CommandResult(self._port(argument))
        if verb == "LIST":
            return self._list()
        if verb == "PWD":
            return CommandResult(self._pwd())
        if verb == "CWD":
            return CommandResult(self._cwd(argument))
        if verb == "RETR":
            return self._retr(argument)
        if verb == "STOR":
            return self._stor(argument)
        if verb == "!CWD":
            self._local_cwd(argument)
            return CommandResult()
        if verb == "!PWD":
            print(f"Local current directory: {os.getcwd()}")
            return CommandResult()
        if verb == "!LIST":
            self._local_list()
            return CommandResult()
        return CommandResult("502 Command not implemented.\r\n")

    def finish_transfer(self, success: bool) -> str:
        """Mark the running transfer as done and return the reply to send."""
        self._busy = False
        return _COMPLETE if success else _ABORTED

    # -- authentication -------------------------------------------------

    def _user(self, name: str) -> str:
        if self.authenticated:
            return "530 Already logged in.\r\n"
        if not name:
            return _syntax_error("Missing username")
        if name in self.users:
            self.username = name
            log.info("Successful username verification")
            return "331 Username OK, need password.\r\n"
        self.username = ""
        return "530 Not logged in (Unknown user).\r\n"

    def _pass(self, secret: str) -> str:
        if self.authenticated:
            return "202 Command not implemented, superfluous at this site (already logged in).\r\n"
        if not self.username:
            return _bad_sequence("USER first")
        if not secret:
            return _syntax_error("Missing password")
        if not self.users.check_password(self.username, secret):
            log.info("Incorrect password attempt for user [%s]", self.username)
            self.username = ""
            return "530 Not logged in (Password incorrect or User invalid).\r\n"

        server_dir = self.server_root / "server"
        user_dir = server_dir / self.username
        for directory, reply in (
            (self.server_root, "530 Server root directory not found.\r\n"),
            (server_dir, "530 Server directory not found.\r\n"),
            (user_dir, "530 User directory not found.\r\n"),
        ):
            if not directory.is_dir():
                log.error("Login directory missing: %s", directory)
                self.username = ""
                return reply
        self.working_directory = user_dir.resolve()
        self.authenticated = True
        log.info("Successful login")
        return "230 User logged in, proceed.\r\n"

    # -- navigation -----------------------------------------------------

    def _port(self, argument: str) -> str:
        try:
            ip, port = parse_port_argument(argument)
        except PortSyntaxError as exc:
            return _syntax_error(exc.reason)
        self.data_target = DataTarget(ip, port)
        log.info("Port received: %s:%d", ip, port)
        return "200 PORT command successful.\r\n"

    def _pwd(self) -> str:
        where = str(self.working_directory)
        start = where.find(self.username)
        shown = where[start:] if start >= 0 else self.username
        return f"257 {shown}/ \r\n"

    def _cwd(self, argument: str) -> str:
        if not argument:
            return _syntax_error("Missing directory")
        target = self.working_directory / argument
        try:
            info = os.stat(target)
        except OSError as exc:
            return f"550 {argument}: {exc.strerror}.\r\n"
        if not stat.S_ISDIR(info.st_mode):
            return f"550 {argument}: {os.strerror(errno.ENOTDIR)}.\r\n"
        if not os.access(target, os.X_OK):
            return f"550 {argument}: {os.strerror(errno.EACCES)}.\r\n"
        self.working_directory = target.resolve()
        log.info("Changing directory to: %s", argument)
        return "200 Directory changed successfully.\r\n"

    # -- transfers ------------------------------------------------------

    def _start(self, kind: TransferKind, **paths: Path) -> CommandResult:
        job = TransferJob(
            kind,
            self.data_target,
            self.working_directory,
            bind_port=self.data_port,
            **paths,
        )
        self.data_target = None
        self._busy = True
        return CommandResult(_OPENING, job=job)

    def _list(self) -> CommandResult:
        if self.data_target is None:
            return CommandResult(_bad_sequence("PORT required before LIST"))
        return self._start(TransferKind.LIST)

    def _retr(self, filename: str) -> CommandResult:
        if self.data_target is None:
            return CommandResult(_bad_sequence("PORT required before RETR"))
        if not filename:
            return CommandResult(_syntax_error("Missing filename"))
        path = self.working_directory / filename
        try:
            info = os.stat(path)
        except OSError:
            self.data_target = None
            return CommandResult(_NOT_FOUND)
        if not stat.S_ISREG(info.st_mode):
            self.data_target = None
            return CommandResult("550 Requested action not taken (Not a regular file).\r\n")
        try:
            with open(path, "rb"):
                pass
        except OSError:
            self.data_target = None
            return CommandResult(_NOT_FOUND)
        return self._start(TransferKind.RETR, path=path)

    def _stor(self, filename: str) -> CommandResult:
        if self.data_target is None:
            return CommandResult(_bad_sequence("PORT required before STOR"))
        if not filename:
            return CommandResult(_syntax_error("Missing filename"))
        path = self.working_directory / filename
        temp_path = self.working_directory / f"{filename}.tmp"
        try:
            with open(temp_path, "xb"):
                pass
        except FileExistsError:
            self.data_target = None
            return CommandResult(
                "451 Requested action aborted: Temporary file exists "
                "(transfer already in progress?).\r\n"
            )
        except OSError:
            self.data_target = None
            return CommandResult(
                "553 Requested action not taken (Cannot create temporary file).\r\n"
            )
        return self._start(TransferKind.STOR, path=path, temp_path=temp_path)

    # -- commands acting on the server's own process --------------------

    @staticmethod
    def _local_cwd(argument: str) -> None:
        try:
            os.chdir(argument)
        except OSError as exc:
            log.error("Local CWD failed: %s", exc)
        else:
            print(f"Changed local directory to {argument}")

    @staticmethod
    def _local_list() -> None:
        try:
            completed = subprocess.run(["ls"])
        except OSError as exc:
            log.error("Running ls failed: %s", exc)
            return
        if completed.returncode != 0:
            print("Local list command failed")