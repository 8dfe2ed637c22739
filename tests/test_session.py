import errno
import os
from pathlib import Path

import pytest

from ftpmini.session import ClientSession
from ftpmini.transfer import DataTarget, TransferKind
from ftpmini.users import User, UserTable


@pytest.fixture
def root(tmp_path):
    (tmp_path / "server" / "alice" / "sub").mkdir(parents=True)
    (tmp_path / "server" / "alice" / "notes.txt").write_text("hello")
    return tmp_path


@pytest.fixture
def users():
    return UserTable([User("alice", "password"), User("bob", "secret")])


@pytest.fixture
def session(root, users):
    return ClientSession(users, root, None)


@pytest.fixture
def logged_in(session):
    session.handle("USER alice")
    session.handle("PASS password")
    return session


def test_user_unknown(session):
    assert session.handle("USER mallory").reply == "530 Not logged in (Unknown user).\r\n"
    assert session.username == ""


def test_user_missing_name(session):
    reply = session.handle("USER").reply
    assert reply == "501 Syntax error in parameters or arguments (Missing username).\r\n"


def test_commands_are_case_insensitive(session):
    assert session.handle("user alice\r\n").reply == "331 Username OK, need password.\r\n"


def test_pass_before_user(session):
    reply = session.handle("PASS password").reply
    assert reply == "503 Bad sequence of commands (USER first).\r\n"


def test_pass_missing(session):
    session.handle("USER alice")
    reply = session.handle("PASS").reply
    assert reply == "501 Syntax error in parameters or arguments (Missing password).\r\n"


def test_successful_login(session, root):
    session.handle("USER alice")
    assert session.handle("PASS password").reply == "230 User logged in, proceed.\r\n"
    assert session.authenticated is True
    assert session.working_directory == (root / "server" / "alice").resolve()


def test_wrong_password_clears_username(session):
    session.handle("USER alice")
    reply = session.handle("PASS secret").reply
    assert reply == "530 Not logged in (Password incorrect or User invalid).\r\n"
    assert session.authenticated is False
    assert session.handle("PASS password").reply.startswith("503")


def test_missing_user_directory(session):
    session.handle("USER bob")
    assert session.handle("PASS secret").reply == "530 User directory not found.\r\n"
    assert session.username == ""


def test_missing_server_directory(tmp_path, users):
    session = ClientSession(users, tmp_path, None)
    session.handle("USER alice")
    assert session.handle("PASS password").reply == "530 Server directory not found.\r\n"


def test_already_logged_in(logged_in):
    assert logged_in.handle("USER bob").reply == "530 Already logged in.\r\n"
    assert logged_in.handle("PASS password").reply.startswith("202 ")


def test_requires_login(session):
    assert session.handle("LIST").reply == "530 Not logged in.\r\n"
    assert session.handle("PWD").reply == "530 Not logged in.\r\n"


def test_quit_closes(session):
    result = session.handle("QUIT")
    assert result.close is True
    assert result.reply == "221 Service closing control connection.\r\n"


def test_pwd_and_cwd(logged_in):
    assert logged_in.handle("PWD").reply == "257 alice/ \r\n"
    assert logged_in.handle("CWD sub").reply == "200 Directory changed successfully.\r\n"
    assert logged_in.handle("PWD").reply == "257 alice/sub/ \r\n"
    logged_in.handle("CWD ..")
    assert logged_in.handle("PWD").reply == "257 alice/ \r\n"


def test_cwd_missing_directory(logged_in):
    before = logged_in.working_directory
    reply = logged_in.handle("CWD nope").reply
    assert reply == f"550 nope: {os.strerror(errno.ENOENT)}.\r\n"
    assert logged_in.working_directory == before


def test_cwd_to_file(logged_in):
    reply = logged_in.handle("CWD notes.txt").reply
    assert reply == f"550 notes.txt: {os.strerror(errno.ENOTDIR)}.\r\n"


def test_cwd_without_argument(logged_in):
    assert logged_in.handle("CWD").reply.startswith("501 ")


def test_port_example_from_protocol(logged_in):
    assert logged_in.handle("PORT 127,0,0,1,23,45").reply == "200 PORT command successful.\r\n"
    assert logged_in.data_target == DataTarget("127.0.0.1", 5933)


def test_port_out_of_range(logged_in):
    reply = logged_in.handle("PORT 300,0,0,1,1,1").reply
    assert reply == "501 Syntax error in parameters or arguments (Invalid host/port format).\r\n"
    assert logged_in.data_target is None


def test_list_requires_port(logged_in):
    reply = logged_in.handle("LIST").reply
    assert reply == "503 Bad sequence of commands (PORT required before LIST).\r\n"


def test_list_starts_job_and_finishes(logged_in):
    logged_in.handle("PORT 127,0,0,1,4,0")
    result = logged_in.handle("LIST")
    assert result.reply == "150 File status okay; about to open data connection.\r\n"
    assert result.job.kind is TransferKind.LIST
    assert result.job.directory == logged_in.working_directory
    assert logged_in.busy is True
    assert logged_in.data_target is None
    assert logged_in.handle("PWD").reply is None
    assert logged_in.finish_transfer(True) == "226 Transfer complete.\r\n"
    assert logged_in.busy is False
    assert logged_in.handle("LIST").reply.startswith("503 ")


def test_failed_transfer_reply(logged_in):
    logged_in.handle("PORT 127,0,0,1,4,0")
    logged_in.handle("LIST")
    reply = logged_in.finish_transfer(False)
    assert reply == "451 Requested action aborted: local error in processing.\r\n"


def test_retr_missing_file_consumes_port(logged_in):
    logged_in.handle("PORT 127,0,0,1,4,0")
    assert logged_in.handle("RETR absent").reply == "550 File not found or access denied.\r\n"
    assert logged_in.handle("RETR notes.txt").reply.startswith("503 ")


def test_retr_directory(logged_in):
    logged_in.handle("PORT 127,0,0,1,4,0")
    reply = logged_in.handle("RETR sub").reply
    assert reply == "550 Requested action not taken (Not a regular file).\r\n"


def test_retr_starts_job(logged_in):
    logged_in.handle("PORT 127,0,0,1,4,0")
    result = logged_in.handle("RETR notes.txt")
    assert result.job.kind is TransferKind.RETR
    assert result.job.path.read_text() == "hello"
    assert result.job.target == DataTarget("127.0.0.1", 1024)


def test_stor_creates_temp_and_rejects_second(logged_in):
    logged_in.handle("PORT 127,0,0,1,4,0")
    result = logged_in.handle("STOR up.txt")
    assert result.job.kind is TransferKind.STOR
    assert result.job.temp_path == logged_in.working_directory / "up.txt.tmp"
    assert result.job.temp_path.exists()
    logged_in.finish_transfer(False)
    logged_in.handle("PORT 127,0,0,1,4,0")
    second = logged_in.handle("STOR up.txt")
    assert second.job is None
    assert second.reply.startswith("451 ")
    assert logged_in.data_target is None


def test_stor_missing_filename(logged_in):
    logged_in.handle("PORT 127,0,0,1,4,0")
    reply = logged_in.handle("STOR").reply
    assert reply == "501 Syntax error in parameters or arguments (Missing filename).\r\n"


def test_unknown_command(logged_in):
    assert logged_in.handle("DELE notes.txt").reply == "502 Command not implemented.\r\n"


def test_local_pwd_prints_cwd(logged_in, tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    assert logged_in.handle("!pwd").reply is None
    assert str(Path.cwd()) in capsys.readouterr().out


def test_local_cwd_changes_process_directory(logged_in, root, monkeypatch):
    monkeypatch.chdir(root)
    assert logged_in.handle("!CWD server").reply is None
    assert Path.cwd() == (root / "server").resolve()