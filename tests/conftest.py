"""Pytest configuration and fixtures for terminal-mcp tests."""

import os
from types import SimpleNamespace
from typing import List, Optional
from unittest.mock import MagicMock, patch

import pytest

# Set test environment variables before importing modules
os.environ.setdefault("TERMINAL_LOG_LEVEL", "DEBUG")
os.environ.setdefault("TERMINAL_SSH_RETRY_DELAY", "0.01")


class FakeReader:
    """Stands in for an asyncssh SSHReader."""

    def __init__(self, chunks: List[str]):
        self._chunks = list(chunks)

    async def read(self, n: int = -1) -> str:
        if self._chunks:
            return self._chunks.pop(0)
        return ""


class FakeWriter:
    def __init__(self):
        self.eof = False

    def write_eof(self) -> None:
        self.eof = True


class FakeProcess:
    """Stands in for an asyncssh SSHClientProcess."""

    def __init__(self, stdout: List[str], stderr: List[str], exit_status: Optional[int]):
        self.stdin = FakeWriter()
        self.stdout = FakeReader(stdout)
        self.stderr = FakeReader(stderr)
        self.exit_status = exit_status

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def wait(self, check: bool = False):
        return SimpleNamespace(exit_status=self.exit_status)


class FakeConnection:
    """In-memory asyncssh SSHClientConnection."""

    def __init__(
        self,
        stdout: Optional[List[str]] = None,
        stderr: Optional[List[str]] = None,
        exit_status: Optional[int] = 0,
        probe_output: str = "ping\n",
        open_error: Optional[Exception] = None,
    ):
        self.stdout = stdout if stdout is not None else ["output\n"]
        self.stderr = stderr or []
        self.exit_status = exit_status
        self.probe_output = probe_output
        self.open_error = open_error
        self.commands: List[str] = []
        self.probes = 0
        self.closed = False

    async def run(self, command: str, check: bool = False):
        self.probes += 1
        if self.closed:
            raise OSError("connection closed")
        return SimpleNamespace(stdout=self.probe_output, stderr="", exit_status=0)

    def create_process(self, command: str, **kwargs):
        if self.open_error is not None:
            raise self.open_error
        self.commands.append(command)
        return FakeProcess(self.stdout, self.stderr, self.exit_status)

    def close(self) -> None:
        self.closed = True

    async def wait_closed(self) -> None:
        return None


@pytest.fixture
def fake_connection_cls():
    """The FakeConnection class, for tests that build their own."""
    return FakeConnection


@pytest.fixture
def test_config(tmp_path):
    """Config with short delays and paths inside tmp_path."""
    from terminal_mcp.config import TerminalConfig

    return TerminalConfig(
        session_timeout=60.0,
        max_retries=3,
        retry_delay=0.01,
        connect_timeout=2.0,
        keepalive_interval=30.0,
        probe_timeout=1.0,
        default_user="root",
        ssh_config_path=str(tmp_path / "ssh_config"),
        default_identity_file=str(tmp_path / "id_rsa"),
        default_dir=None,
        login_shell="/bin/bash",
    )


@pytest.fixture
def pool(test_config):
    from terminal_mcp.sessions import SessionPool

    return SessionPool(test_config)


@pytest.fixture
def mock_private_key():
    """Skip reading key material from disk."""
    with patch("terminal_mcp.connector.load_private_key", return_value=MagicMock(name="ssh-key")) as mock_load:
        yield mock_load


@pytest.fixture
def fake_ssh(mock_private_key):
    """Replace the network connect with FakeConnections.

    ``fake_ssh.connections`` lists every connection opened; assign
    ``fake_ssh.factory`` to control what the next connect returns or raises.
    """
    from terminal_mcp.connector import Connector

    state = SimpleNamespace(connections=[], calls=[], factory=FakeConnection)

    async def _open(self, handle, address, port, username, private_key):
        state.calls.append(SimpleNamespace(address=address, port=port, username=username))
        conn = state.factory()
        state.connections.append(conn)
        return conn

    with patch.object(Connector, "_open", new=_open):
        yield state


@pytest.fixture
def executor(pool, test_config):
    from terminal_mcp.executor import CommandExecutor

    return CommandExecutor(pool, config=test_config)


@pytest.fixture
def write_ssh_config(test_config):
    """Write text to the config file the test_config points at."""
    def _write(text: str) -> str:
        with open(test_config.ssh_config_path, "w", encoding="utf-8") as handle:
            handle.write(text)
        return test_config.ssh_config_path
    return _write
