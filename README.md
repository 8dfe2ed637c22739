# ftpmini

A small FTP server and interactive client that speak a subset of the FTP
protocol in active mode. The client opens a listening socket and announces
it with `PORT`. The server then connects back to that socket for every data
transfer.

The server accepts these commands: `USER`, `PASS`, `PORT`, `LIST`, `RETR`,
`STOR`, `CWD`, `PWD` and `QUIT`. Any other command gets
`502 Command not implemented.`

## Installation

```
pip install .
```

This installs two commands, `ftpmini-server` and `ftpmini-client`.

## Running the server

The server root directory holds two things:

- `users.csv`, with one account per line as `username,password` and no
  spaces around the comma. The server skips lines without a comma, lines with
  an empty name or password, and lines where either field is 100 characters
  or longer. It loads at most 50 accounts.
- `server/<username>/`, with one directory per account. After a successful
  login the client works inside its own directory.

For example:

```
users.csv
server/alice/
server/bob/
```

where `users.csv` contains:

```
alice,password
bob,password
```

Then start the server:

```
ftpmini-server [--root DIR] [--users FILE] [--host ADDR] [--port N] [--data-port N]
```

- `--root` sets the server root. The default is the current directory.
- `--users` sets the credentials file. The default is `ROOT/users.csv`. If
  the file cannot be read, the server exits with status 1.
- `--host` sets the address to listen on. The default is all interfaces.
- `--port` sets the control port. The default is 21.
- `--data-port` sets the local port that data connections are opened from.
  The default is 20.

The default ports are the standard FTP ports, so the server usually needs
privileges to bind them. Press Ctrl-C to stop the server.

How the server behaves:

- Commands other than `USER`, `PASS` and `QUIT` are answered with
  `530 Not logged in.` until the client has logged in.
- `LIST`, `RETR` and `STOR` need a `PORT` command first. Each `PORT` is
  used for one transfer only.
- Directory listings run while the server waits. Downloads and uploads run
  in background threads. When a transfer finishes, the server replies
  `226 Transfer complete.`, or `451 ...` if the transfer failed.
- While a client's transfer is running, the server ignores further commands
  from that client.
- `STOR` writes to `<name>.tmp` first and renames it to the final name only
  when the transfer completes. An interrupted upload therefore never replaces
  an existing file. If `<name>.tmp` already exists, the upload is refused
  with `451`.
- `PWD` replies with the part of the working directory path that starts at
  the user name, for example `257 alice/`.
- `!CWD`, `!PWD` and `!LIST` sent by a logged-in client act on the server
  process itself. They change or print the server's own working directory,
  or run `ls` there. They send no reply.

## Running the client

```
ftpmini-client [SERVER_IP] [--port N] [--local-dir DIR]
```

- `SERVER_IP` must be an IPv4 address. The default is `127.0.0.1`.
- `--port` sets the server's control port. The default is 21.
- `--local-dir` sets the directory the client changes into on start. The
  default is `client`. If that directory does not exist, the client prints a
  warning and stays where it is.

Downloaded files are written to the local working directory, and uploads
are read from it.

A typical session:

```
USER alice
PASS password
PWD
LIST
STOR notes.txt
RETR notes.txt
CWD subdir
QUIT
```

The client sends `PORT` automatically before `LIST`, `RETR` and `STOR`.

To run a command on the local side instead of the server, prefix it with
`!`:

- `!PWD` prints the local working directory.
- `!CWD <directory>` changes the local working directory.
- `!LIST` lists local files, one per line (`ls -1`).

End of input (Ctrl-D) sends `QUIT` and ends the session.

## Using the package from Python

- `ftpmini.users.load_users(path)` reads a credentials file into a
  `UserTable`. You can call `len(table)` on it and test `"alice" in table`.
  `table.check_password(username, password)` checks a password.
- `ftpmini.protocol.split_command(line)` splits a line into a trimmed
  command and argument.
- `ftpmini.protocol.parse_port_argument(argument)` turns `h1,h2,h3,h4,p1,p2`
  into `(ip, port)`. A malformed argument raises `PortSyntaxError`.
- `ftpmini.transfer.TransferJob` describes one `LIST`, `RETR` or `STOR`
  transfer to a `DataTarget`. `run()` returns whether the transfer
  succeeded.
- `ftpmini.session.ClientSession` holds one client's login, directory and
  `PORT` state. `handle(line)` turns each command line into a
  `CommandResult`, which carries a reply, an optional job and a close flag.
- `ftpmini.server.FTPServer(root, users, host, port, data_port)` serves many
  clients on one socket:
  - `address()` gives the bound host and port.
  - `serve_forever()` runs the server.
  - `shutdown()` stops it.
- `ftpmini.datalink` has the client's helpers: `read_reply`,
  `format_port_command`, `needs_data_connection` and
  `setup_data_connection`. The last one returns a `DataListener`.
- `ftpmini.client.FTPClient(host, port, stdin, stdout)` runs the interactive
  client over any text streams.

## What it does not do

- It has active mode only. There is no passive mode (`PASV`).
- It has no transfer types or modes (`TYPE`, `MODE`) and no encryption.
- It cannot delete, rename or create files or directories on the server.
- It has no anonymous login.
- Passwords are stored and compared as plain text.

## Tests

```
pip install .[test]
pytest
```