#!/usr/bin/env python3
"""
Configuration module for the Terminal MCP Server.

Centralizes environment variables, logging, session keying and input
validation for local and SSH command execution.
"""
import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional


# =============================================================================
# Logging Setup
# =============================================================================

LOG_LEVEL = os.getenv("TERMINAL_LOG_LEVEL", "INFO")
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# basicConfig writes to stderr; stdout belongs to the MCP stdio transport
logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
logger = logging.getLogger("terminal-mcp")


def _default_ssh_path(name: str) -> str:
    return str(Path.home() / ".ssh" / name)


# =============================================================================
# Environment Configuration
# =============================================================================

@dataclass(frozen=True)
class TerminalConfig:
    """Centralized session and execution configuration from environment variables."""

    # Session pool
    session_timeout: float = field(
        default_factory=lambda: float(os.getenv("TERMINAL_SESSION_TIMEOUT", "1200"))
    )

    # SSH connection
    max_retries: int = field(default_factory=lambda: int(os.getenv("TERMINAL_SSH_RETRIES", "3")))
    retry_delay: float = field(default_factory=lambda: float(os.getenv("TERMINAL_SSH_RETRY_DELAY", "2")))
    connect_timeout: float = field(
        default_factory=lambda: float(os.getenv("TERMINAL_SSH_CONNECT_TIMEOUT", "10"))
    )
    keepalive_interval: float = field(
        default_factory=lambda: float(os.getenv("TERMINAL_SSH_KEEPALIVE", "60"))
    )
    probe_timeout: float = field(default_factory=lambda: float(os.getenv("TERMINAL_PROBE_TIMEOUT", "10")))
    default_user: str = field(default_factory=lambda: os.getenv("TERMINAL_SSH_DEFAULT_USER", "root"))

    # Paths
    ssh_config_path: str = field(
        default_factory=lambda: os.getenv("TERMINAL_SSH_CONFIG", _default_ssh_path("config"))
    )
    default_identity_file: str = field(
        default_factory=lambda: os.getenv("TERMINAL_SSH_IDENTITY", _default_ssh_path("id_rsa"))
    )

    # Execution
    default_dir: Optional[str] = field(default_factory=lambda: os.getenv("DEFAULT_DIR") or None)
    login_shell: str = field(default_factory=lambda: os.getenv("TERMINAL_LOGIN_SHELL", "/bin/bash"))


# Global config instance
config = TerminalConfig()


# =============================================================================
# Session Keys
# =============================================================================

LOCAL_SESSION_KEY = "local"
REMOTE_KEY_PREFIX = "ssh://"


def session_key(host: Optional[str]) -> str:
    """Map a target host to its session key.

    Local execution uses a fixed sentinel. Remote keys carry a prefix so an
    SSH alias literally named ``local`` gets its own session.
    """
    if not host:
        return LOCAL_SESSION_KEY
    return f"{REMOTE_KEY_PREFIX}{host}"


# =============================================================================
# Validation Functions
# =============================================================================

ENV_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_command(command: Any) -> tuple[bool, Optional[str]]:
    """Basic command validation."""
    if not isinstance(command, str) or not command.strip():
        return False, "Command is required"
    return True, None


def validate_env(env: Any) -> tuple[bool, Optional[str]]:
    """Check that env is a mapping of shell-safe variable names."""
    if env is None:
        return True, None
    if not isinstance(env, dict):
        return False, "env must be an object mapping variable names to values"

    for name in env:
        if not isinstance(name, str) or not ENV_NAME_PATTERN.match(name):
            return False, f"Invalid environment variable name: {name!r}"

    return True, None


# =============================================================================
# Export All
# =============================================================================

__all__ = [
    "config",
    "TerminalConfig",
    "logger",
    "LOCAL_SESSION_KEY",
    "REMOTE_KEY_PREFIX",
    "session_key",
    "ENV_NAME_PATTERN",
    "validate_command",
    "validate_env",
]
