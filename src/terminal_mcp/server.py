#!/usr/bin/env python3
"""
Terminal MCP Server

Executes commands on remote hosts over pooled SSH sessions, or locally.

Tools:
- execute_command: Run a command on an SSH host alias or the local machine
- list_hosts: Host aliases available from the SSH client config
- session_status: Currently pooled sessions and their idle timers
"""

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from mcp.server.fastmcp import FastMCP

from .config import TerminalConfig, config, logger, validate_command, validate_env
from .errors import TerminalError
from .executor import CommandExecutor
from .sessions import SessionPool
from .ssh_config import list_host_aliases


# =============================================================================
# Server Class
# =============================================================================

class TerminalServer:
    """Owns the session pool and execution engine for the MCP tools."""

    def __init__(self, config: Optional[TerminalConfig] = None):
        self.config = config
        self._executor: Optional[CommandExecutor] = None

    @property
    def executor(self) -> CommandExecutor:
        """Lazy initialization of the session pool and executor."""
        if self._executor is None:
            self._executor = CommandExecutor(SessionPool(self.config))
        return self._executor

    async def execute_command(
        self,
        command: str,
        host: Optional[str] = None,
        env: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        """Validate input, run the command and shape the tool response."""
        valid, error = validate_command(command)
        if not valid:
            return {"success": False, "error": error}

        valid, error = validate_env(env)
        if not valid:
            return {"success": False, "error": error}

        target = host or "local"
        try:
            result = await self.executor.execute(command, host=host or None, env=env)
        except TerminalError as e:
            logger.error(f"Command on {target} failed: {e}")
            return {
                "success": False,
                "host": target,
                "error": str(e),
                "error_type": type(e).__name__,
            }

        return {"success": True, "host": target, **result.to_dict()}

    def list_hosts(self) -> Dict[str, Any]:
        path = (self.config or config).ssh_config_path
        return {"config_path": path, "hosts": list_host_aliases(path)}

    def session_status(self) -> Dict[str, Any]:
        if self._executor is None:
            return {"sessions": []}
        return {"sessions": self._executor.pool.snapshot()}

    async def shutdown(self) -> None:
        """Close every session. The next command starts a fresh pool."""
        executor, self._executor = self._executor, None
        if executor is not None:
            await executor.shutdown()


# Global server instance
_server: Optional[TerminalServer] = None


def get_server() -> TerminalServer:
    """Get or create server instance."""
    global _server
    if _server is None:
        _server = TerminalServer()
    return _server


@asynccontextmanager
async def lifespan(app: FastMCP) -> AsyncIterator[None]:
    """Close every pooled session when the MCP server stops."""
    try:
        yield
    finally:
        logger.info("Shutting down server...")
        await get_server().shutdown()


# =============================================================================
# MCP Server Setup
# =============================================================================

mcp = FastMCP("terminal-mcp-server", lifespan=lifespan)


# =============================================================================
# MCP Tools
# =============================================================================

@mcp.tool()
async def execute_command(
    command: str,
    host: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
) -> str:
    """
    Execute commands on remote hosts or locally.

    This tool can be used for both remote hosts and the current machine.
    Before running commands, it's best to determine the system type
    (Mac, Linux, etc.).

    Parameters:
    - command (required): Command to execute
    - host (optional): SSH host alias from ~/.ssh/config. If omitted the
      command runs locally. Use list_hosts to see available aliases.
    - env (optional): Environment variables. Remote commands get them
      exported for this call; local variables persist for later calls.

    SSH connections are reused between calls and closed after 20 minutes
    without use. Remote commands run in a login shell.

    Returns JSON with stdout, stderr and exit_status.
    """
    server = get_server()
    result = await server.execute_command(command=command, host=host, env=env)
    return json.dumps(result, indent=2)


@mcp.tool()
async def list_hosts() -> str:
    """
    List host aliases defined in the SSH client config.

    Any of these can be passed as the host argument of execute_command.
    """
    server = get_server()
    return json.dumps(server.list_hosts(), indent=2)


@mcp.tool()
async def session_status() -> str:
    """
    Show pooled sessions.

    Lists each open SSH session (and the local session) with its state,
    seconds idle and seconds until idle eviction.
    """
    server = get_server()
    return json.dumps(server.session_status(), indent=2)


# =============================================================================
# Entry Point
# =============================================================================

def main():
    """Run the MCP server."""
    logger.info("Starting Terminal MCP Server")
    mcp.run()


if __name__ == "__main__":
    main()
