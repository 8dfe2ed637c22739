import io
import os
import socket
import threading

import pytest

from ftpmini.client import FTPClient, main, run_local_command, usage_text
from ftpmini.server import FTPServer
from ftpmini.users import User, UserTable

LOGIN = "USER alice\nPASS password\n"


@pytest.fixture
def server(tmp_path):
    root = tmp_path / "root"
    user_dir = root / "server" / "alice"
    user_dir.mkdir(parents=True)
    users = UserTable([User("alice", "password")])
    srv = FTPServer(root, users, "127.0.0.1", 0, data_port=None)
    thread = threading.Thread(target=srv.serve_forever, daemon=True)
    thread.start()
    yield srv, user_dir
    srv.shutdown()
    thread.join(5)


@pytest.fixture
def local_dir(tmp_path, monkeypatch):
    directory = tmp_path / "local"
    directory.mkdir()
    monkeypatch.chdir(directory)
    return directory


def run_client(srv, script):
    host, port = srv.address()
    out = io.StringIO()
    FTPClient(host, port, io.StringIO(script), out).run()
    return out.getvalue()


def test_login_pwd_quit(server, local_dir):
    srv, _ = server
    out = run_client(srv, LOGIN + "PWD\nQUIT\n")
    assert out.startswith("220 Service ready for new user.\r\n")
    assert "331 Username OK, need password.\r\n" in out
    assert "230 User logged in, proceed.\r\n" in out
    assert "257 alice/ \r\n" in out
    assert out.endswith("Closed!\nConnection closed.\n")


def test_usage_shown_after_welcome(server, local_dir):
    srv, _ = server
    out = run_client(srv, "QUIT\n")
    assert usage_text() in out
    assert out.index("220") < out.index(usage_text())


def test_stor_uploads_file(server, local_dir):
    srv, user_dir = server
    data = b"hello upload\n" * 500
    (local_dir / "up.txt").write_bytes(data)
    out = run_client(srv, LOGIN + "STOR up.txt\nQUIT\n")
    assert "200 PORT command successful.\r\n" in out
    assert "226 Transfer complete.\r\n" in out
    assert (user_dir / "up.txt").read_bytes() == data
    assert not (user_dir / "up.txt.tmp").exists()


def test_retr_downloads_file(server, local_dir):
    srv, user_dir = server
    data = bytes(range(256)) * 20
    (user_dir / "down.bin").write_bytes(data)
    out = run_client(srv, LOGIN + "RETR down.bin\nQUIT\n")
    assert "226 Transfer complete.\r\n" in out
    assert (local_dir / "down.bin").read_bytes() == data


def test_list_prints_remote_names(server, local_dir):
    srv, user_dir = server
    (user_dir / "a.txt").write_text("a")
    (user_dir / "b.txt").write_text("b")
    out = run_client(srv, LOGIN + "LIST\nQUIT\n")
    assert "a.txt\n" in out
    assert "b.txt\n" in out
    assert out.index("a.txt") < out.index("226 Transfer complete.")


def test_data_command_without_login_is_refused(server, local_dir):
    srv, _ = server
    out = run_client(srv, "LIST\nQUIT\n")
    assert "530 Not logged in.\r\n" in out
    assert "221 Service closing control connection.\r\n" in out


def test_eof_sends_quit(server, local_dir):
    srv, _ = server
    out = run_client(srv, "")
    assert "\nExiting (EOF detected).\n" in out
    assert "SERVER: 221 Service closing control connection.\r\n" in out
    assert out.endswith("Connection closed.\n")


def test_local_command_in_session_is_not_sent(server, local_dir):
    srv, _ = server
    out = run_client(srv, "!PWD\nQUIT\n")
    assert f"{os.getcwd()}\n" in out
    assert "502" not in out


def test_bad_welcome_raises():
    listener = socket.create_server(("127.0.0.1", 0))
    port = listener.getsockname()[1]

    def serve():
        conn, _ = listener.accept()
        conn.sendall(b"421 busy\r\n")
        conn.close()

    thread = threading.Thread(target=serve, daemon=True)
    thread.start()
    try:
        with pytest.raises(ConnectionError):
            FTPClient("127.0.0.1", port, io.StringIO(""), io.StringIO()).run()
    finally:
        thread.join(5)
        listener.close()


def test_non_ipv4_host_raises():
    with pytest.raises(OSError):
        FTPClient("not-an-ip", 21, io.StringIO(""), io.StringIO()).run()


def test_main_reports_failure(tmp_path):
    assert main(["not-an-ip", "--local-dir", str(tmp_path)]) == 1


def test_local_pwd(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    out = io.StringIO()
    run_local_command("!pwd", out)
    assert out.getvalue() == f"{os.getcwd()}\n"


def test_local_cwd(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "sub").mkdir()
    out = io.StringIO()
    run_local_command("!CWD sub", out)
    assert out.getvalue() == "Changing directory to: sub\n"
    assert os.path.samefile(os.getcwd(), tmp_path / "sub")


def test_local_cwd_missing_directory_is_silent(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    out = io.StringIO()
    run_local_command("!CWD nowhere", out)
    run_local_command("!CWD", out)
    assert out.getvalue() == ""
    assert os.path.samefile(os.getcwd(), tmp_path)


def test_local_list(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    (tmp_path / "one.txt").write_text("1")
    (tmp_path / "two.txt").write_text("2")
    out = io.StringIO()
    run_local_command("!LIST", out)
    assert out.getvalue().splitlines() == ["one.txt", "two.txt"]


def test_local_command_requires_bang():
    with pytest.raises(ValueError):
        run_local_command("PWD", io.StringIO())


def test_usage_text_lists_commands():
    text = usage_text()
    assert text.startswith("Hello!! Please Authenticate to run server commands\n")
    for command in ("STOR", "RETR", "LIST", "CWD", "PWD", "QUIT"):
        assert f'"{command}"' in text