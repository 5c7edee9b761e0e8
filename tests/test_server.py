"""Tests for terminal_mcp.server module."""

import json
import pytest
from unittest.mock import patch, MagicMock, AsyncMock


def get_fn(tool):
    """Extract the underlying function from a FastMCP tool."""
    if hasattr(tool, 'fn'):
        return tool.fn
    if hasattr(tool, '__wrapped__'):
        return tool.__wrapped__
    return tool


@pytest.fixture
def server(test_config):
    """Fresh TerminalServer installed as the process-wide instance."""
    import terminal_mcp.server as server_module

    server = server_module.TerminalServer(test_config)
    server_module._server = server
    yield server
    server_module._server = None


class TestTerminalServer:
    """Tests for TerminalServer class."""

    def test_server_lazy_init(self, server):
        """Test executor is created on first use."""
        assert server._executor is None

        _ = server.executor
        assert server._executor is not None
        assert server.executor is server._executor

    def test_get_server_singleton(self):
        import terminal_mcp.server as server_module

        server_module._server = None
        try:
            assert server_module.get_server() is server_module.get_server()
        finally:
            server_module._server = None

    @pytest.mark.asyncio
    async def test_execute_local_success(self, server):
        result = await server.execute_command("echo hello")

        assert result["success"] is True
        assert result["host"] == "local"
        assert result["stdout"] == "hello\n"
        assert result["exit_status"] == 0

    @pytest.mark.asyncio
    async def test_execute_empty_command(self, server):
        result = await server.execute_command("")

        assert result["success"] is False
        assert "required" in result["error"]
        assert server._executor is None

    @pytest.mark.asyncio
    async def test_execute_bad_env(self, server):
        result = await server.execute_command("true", env={"BAD NAME": "1"})

        assert result["success"] is False
        assert "BAD NAME" in result["error"]

    @pytest.mark.asyncio
    async def test_execute_typed_error(self, server):
        from terminal_mcp.errors import ConnectError

        server._executor = MagicMock()
        server._executor.execute = AsyncMock(side_effect=ConnectError("web1", "Connection refused"))

        result = await server.execute_command("uptime", host="web1")

        assert result["success"] is False
        assert result["host"] == "web1"
        assert result["error_type"] == "ConnectError"
        assert "Connection refused" in result["error"]

    @pytest.mark.asyncio
    async def test_execute_remote_passes_arguments(self, server):
        from terminal_mcp.executor import CommandResult

        server._executor = MagicMock()
        server._executor.execute = AsyncMock(return_value=CommandResult("up\n", "", 0))

        result = await server.execute_command("uptime", host="web1", env={"A": "1"})

        server._executor.execute.assert_awaited_once_with("uptime", host="web1", env={"A": "1"})
        assert result == {"success": True, "host": "web1", "stdout": "up\n", "stderr": "", "exit_status": 0}

    def test_list_hosts(self, server, write_ssh_config):
        write_ssh_config("Host web1\n  HostName 10.0.0.5\nHost db *.internal\n")

        result = server.list_hosts()

        assert result["hosts"] == ["web1", "db"]

    def test_session_status_before_use(self, server):
        assert server.session_status() == {"sessions": []}

    @pytest.mark.asyncio
    async def test_session_status_after_local_command(self, server):
        await server.execute_command("true", env={"A": "1"})

        sessions = server.session_status()["sessions"]

        assert len(sessions) == 1
        assert sessions[0]["host"] == "local"
        assert sessions[0]["env"] == ["A"]

    @pytest.mark.asyncio
    async def test_shutdown(self, server):
        await server.execute_command("true")
        await server.shutdown()

        assert server.session_status() == {"sessions": []}

    @pytest.mark.asyncio
    async def test_command_after_shutdown_uses_fresh_pool(self, server):
        await server.execute_command("true", env={"A": "1"})
        await server.shutdown()

        result = await server.execute_command("echo \"[$A]\"")

        assert result["success"] is True
        assert result["stdout"] == "[]\n"


class TestMCPTools:
    """Tests for MCP tool functions."""

    @pytest.mark.asyncio
    async def test_execute_command_tool(self, server):
        from terminal_mcp.server import execute_command

        fn = get_fn(execute_command)
        result = json.loads(await fn(command="echo tool"))

        assert result["success"] is True
        assert result["stdout"] == "tool\n"

    @pytest.mark.asyncio
    async def test_execute_command_tool_empty(self, server):
        from terminal_mcp.server import execute_command

        fn = get_fn(execute_command)
        result = json.loads(await fn(command=""))

        assert result["success"] is False

    @pytest.mark.asyncio
    async def test_list_hosts_tool(self, server, write_ssh_config):
        from terminal_mcp.server import list_hosts

        write_ssh_config("Host alpha\nHost beta\n")

        fn = get_fn(list_hosts)
        result = json.loads(await fn())

        assert result["hosts"] == ["alpha", "beta"]

    @pytest.mark.asyncio
    async def test_session_status_tool(self, server):
        from terminal_mcp.server import session_status

        fn = get_fn(session_status)
        result = json.loads(await fn())

        assert "sessions" in result

    @pytest.mark.asyncio
    async def test_lifespan_shuts_down_server(self, server):
        from terminal_mcp.server import lifespan

        with patch.object(server, "shutdown", new=AsyncMock()) as mock_shutdown:
            async with lifespan(MagicMock()):
                pass

        mock_shutdown.assert_awaited_once()
