"""Error types raised by the session pool and execution engine."""

from typing import Optional


class TerminalError(Exception):
    """Base class for failures surfaced to the tool layer."""


class CredentialError(TerminalError):
    """Private key missing, unreadable, or in a format that cannot be loaded.

    Never retried: another attempt would read the same file.
    """

    def __init__(self, path: str, message: str):
        self.path = path
        super().__init__(f"SSH key file ({path}): {message}")


class ConnectError(TerminalError):
    """Connection or authentication failed after the retry budget ran out."""

    def __init__(self, alias: str, message: str):
        self.alias = alias
        super().__init__(f"SSH connection to {alias} failed: {message}")


class ConfigParseError(TerminalError):
    """SSH client configuration could not be read or is malformed."""

    def __init__(self, path: Optional[str], message: str):
        self.path = path
        where = path or "<string>"
        super().__init__(f"Cannot parse SSH config {where}: {message}")


class ExecError(TerminalError):
    """Command channel could not be opened or a stream failed mid-run."""


__all__ = [
    "TerminalError",
    "CredentialError",
    "ConnectError",
    "ConfigParseError",
    "ExecError",
]
