"""User credential table loaded from a ``username,password`` file."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from os import PathLike
from typing import Iterable, Iterator, Union

__all__ = [
    "MAX_USERS",
    "MAX_USER_LEN",
    "MAX_PASS_LEN",
    "User",
    "UserTable",
    "load_users",
]

log = logging.getLogger(__name__)

MAX_USERS = 50
MAX_USER_LEN = 100
MAX_PASS_LEN = 100

_LINE_END = re.compile(r"[\r\n]")


@dataclass(frozen=True)
class User:
    """A single account: a user name and its password."""

    username: str
    password: str


class UserTable:
    """The accounts a server accepts, in the order they were loaded."""

    def __init__(self, users: Iterable[User]) -> None:
        self._users = list(users)

    def __len__(self) -> int:
        return len(self._users)

    def __iter__(self) -> Iterator[User]:
        return iter(self._users)

    def __contains__(self, username: object) -> bool:
        return any(user.username == username for user in self._users)

    def check_password(self, username: str, password: str) -> bool:
        """Return True if the first account named ``username`` has ``password``."""
        for user in self._users:
            if user.username == username:
                return user.password == password
        return False


def load_users(path: Union[str, "PathLike[str]"]) -> UserTable:
    """Read credentials from ``path``, one ``username,password`` per line.

    Lines without a comma, with an empty user name or password, or with
    a field that is too long are skipped. At most ``MAX_USERS`` accounts
    are loaded. Raises ``OSError`` if the file cannot be opened.
    """
    users: list[User] = []
    with open(path, encoding="utf-8", newline="") as handle:
        for raw in handle:
            if len(users) >= MAX_USERS:
                break
            line = _LINE_END.split(raw, maxsplit=1)[0]
            name, comma, phrase = line.partition(",")
            if not comma or not name or not phrase:
                log.warning(
                    "Skipping malformed line in user file (no comma or empty field): %s",
                    line,
                )
                continue
            if len(name) >= MAX_USER_LEN or len(phrase) >= MAX_PASS_LEN:
                log.warning("Skipping line due to length exceeded: %s,...", name)
                continue
            users.append(User(name, phrase))

    if len(users) >= MAX_USERS:
        log.warning(
            "Maximum number of users (%d) reached. Some users may not have been loaded.",
            MAX_USERS,
        )
    return UserTable(users)