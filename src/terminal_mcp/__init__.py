"""
Terminal MCP Server

Provides command execution on SSH hosts and the local machine over pooled,
reusable sessions.
"""

from .config import (
    config,
    TerminalConfig,
    LOCAL_SESSION_KEY,
    session_key,
    validate_command,
    validate_env,
)
from .errors import (
    TerminalError,
    CredentialError,
    ConnectError,
    ConfigParseError,
    ExecError,
)
from .ssh_config import (
    HostConfig,
    parse_ssh_config,
    resolve_host,
    list_host_aliases,
)
from .sessions import (
    SessionPool,
    SessionState,
    TransportHandle,
)
from .connector import (
    Connector,
    LivenessProber,
)
from .executor import (
    CommandExecutor,
    CommandResult,
    build_remote_command,
)
from .server import (
    TerminalServer,
    execute_command,
    list_hosts,
    session_status,
    main,
)

__version__ = "0.1.0"
__all__ = [
    # Config
    "config",
    "TerminalConfig",
    "LOCAL_SESSION_KEY",
    "session_key",
    "validate_command",
    "validate_env",
    # Errors
    "TerminalError",
    "CredentialError",
    "ConnectError",
    "ConfigParseError",
    "ExecError",
    # SSH config
    "HostConfig",
    "parse_ssh_config",
    "resolve_host",
    "list_host_aliases",
    # Sessions
    "SessionPool",
    "SessionState",
    "TransportHandle",
    "Connector",
    "LivenessProber",
    # Execution
    "CommandExecutor",
    "CommandResult",
    "build_remote_command",
    # Server
    "TerminalServer",
    "execute_command",
    "list_hosts",
    "session_status",
    "main",
]
