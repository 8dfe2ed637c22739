"""Parsing of control-connection command lines."""

from __future__ import annotations

import re

__all__ = ["PortSyntaxError", "split_command", "parse_port_argument"]

# The whitespace set recognised by the C locale.
_WHITESPACE = " \t\n\v\f\r"

_NUMBER = r"\s*([+-]?\d+)"
_PORT_PATTERN = re.compile(",".join([_NUMBER] * 6))


class PortSyntaxError(ValueError):
    """A PORT argument could not be accepted.

    ``reason`` is the short explanation carried in the 501 reply.
    """

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


def split_command(line: str) -> tuple[str, str]:
    """Split a command line at its first space into trimmed command and argument."""
    command, _, argument = line.partition(" ")
    return command.strip(_WHITESPACE), argument.strip(_WHITESPACE)


def parse_port_argument(argument: str) -> tuple[str, int]:
    """Parse ``h1,h2,h3,h4,p1,p2`` into a dotted address and a port number.

    Text after the sixth number is ignored. Raises ``PortSyntaxError``
    when the numbers cannot be read or any of them lies outside 0-255.
    """
    match = _PORT_PATTERN.match(argument)
    if match is None:
        raise PortSyntaxError("Cannot parse PORT arguments")
    values = [int(group) for group in match.groups()]
    if any(not 0 <= value <= 255 for value in values):
        raise PortSyntaxError("Invalid host/port format")
    h1, h2, h3, h4, p1, p2 = values
    return f"{h1}.{h2}.{h3}.{h4}", p1 * 256 + p2