"""A small active-mode FTP server, interactive client and their building blocks."""

__version__ = "0.1.0"