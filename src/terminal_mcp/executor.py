#!/usr/bin/env python3
"""
Command execution over pooled sessions.

Remote commands run over a reused SSH connection inside a login shell, with
the call's environment exported first. Local commands run as child
processes; their session accumulates environment variables across calls.
"""

import asyncio
import os
import shlex
from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Mapping, Optional

import asyncssh

from .config import (
    ENV_NAME_PATTERN,
    LOCAL_SESSION_KEY,
    TerminalConfig,
    logger,
    session_key,
)
from .connector import Connector, LivenessProber
from .errors import ExecError
from .sessions import SessionPool, SessionState, TransportHandle


READ_CHUNK_SIZE = 4096


@dataclass
class CommandResult:
    """Output of one command. A non-zero exit_status is data, not an error."""
    stdout: str
    stderr: str
    exit_status: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def build_remote_command(
    command: str,
    env: Optional[Mapping[str, Any]] = None,
    shell: str = "/bin/bash",
) -> str:
    """Prefix env exports and wrap everything in a login shell invocation.

    Values are single-quoted with shlex, so quotes, ``$`` and backticks reach
    the command verbatim.
    """
    exports = []
    for name, value in (env or {}).items():
        if not ENV_NAME_PATTERN.match(name):
            raise ValueError(f"Invalid environment variable name: {name!r}")
        exports.append(f"export {name}={shlex.quote(str(value))}")

    full_command = " && ".join(exports + [command]) if exports else command
    return f"{shell} --login -c {shlex.quote(full_command)}"


class CommandExecutor:
    """Runs commands against pooled remote sessions or the local session."""

    def __init__(
        self,
        pool: SessionPool,
        connector: Optional[Connector] = None,
        prober: Optional[LivenessProber] = None,
        config: Optional[TerminalConfig] = None,
    ):
        self.pool = pool
        self.config = config or pool.config
        self.connector = connector or Connector(pool, self.config)
        self.prober = prober or LivenessProber(self.config)

    async def execute(
        self,
        command: str,
        host: Optional[str] = None,
        env: Optional[Mapping[str, Any]] = None,
    ) -> CommandResult:
        """Run a command remotely when host is given, otherwise locally.

        Raises CredentialError/ConnectError when no session can be opened and
        ExecError when a remote command cannot be started, its streams fail,
        or the pool has been shut down. A local command that cannot be
        spawned comes back as a result with no exit status and stderr set.
        """
        if self.pool.closed:
            raise ExecError("Session pool is shut down")
        env = {name: str(value) for name, value in (env or {}).items()}
        if host:
            return await self._execute_remote(command, host, env)
        return await self._execute_local(command, env)

    # -------------------------------------------------------------------------
    # Remote
    # -------------------------------------------------------------------------

    async def acquire_remote(self, host: str) -> TransportHandle:
        """Reuse a live session for host or open a new one.

        Serialized per key so concurrent callers share one connection. The
        lock is released before the command runs.
        """
        key = session_key(host)
        async with self.pool.lock(key):
            handle = self.pool.get(key)
            if handle is not None and handle.host == host and await self.prober.is_alive(handle):
                logger.info(f"Reusing existing session for command execution: {key}")
            else:
                if handle is not None:
                    logger.info(f"Existing session {key} is not active or host changed. Need new connection.")
                    await self.pool.close_session(key)
                logger.info(f"Creating new connection for command execution: {key}")
                handle = await self.connector.establish(host)

            self.pool.reset_idle_timer(key)
            return handle

    async def _execute_remote(self, command: str, host: str, env: Dict[str, str]) -> CommandResult:
        full_command = build_remote_command(command, env, self.config.login_shell)
        handle = await self.acquire_remote(host)
        if handle.transport is None or handle.state is not SessionState.CONNECTED:
            raise ExecError(f"SSH session to {host} closed before the command could start")

        logger.info(f"Executing command on {host}: {command}")
        stdout: List[str] = []
        stderr: List[str] = []
        try:
            async with handle.transport.create_process(
                full_command, encoding="utf-8", errors="replace"
            ) as process:
                process.stdin.write_eof()
                await asyncio.gather(
                    self._drain(process.stdout, stdout, handle.key),
                    self._drain(process.stderr, stderr, handle.key),
                )
                completed = await process.wait(check=False)
        except asyncssh.ChannelOpenError as e:
            raise ExecError(f"Cannot open command channel on {host}: {e}") from e
        except (asyncssh.Error, OSError) as e:
            raise ExecError(f"Command stream on {host} failed: {str(e) or type(e).__name__}") from e

        self.pool.reset_idle_timer(handle.key)
        return CommandResult("".join(stdout), "".join(stderr), completed.exit_status)

    async def _drain(self, reader: Any, sink: List[str], key: str) -> None:
        while True:
            chunk = await reader.read(READ_CHUNK_SIZE)
            if not chunk:
                return
            sink.append(chunk)
            # Output keeps long-running commands from hitting the idle timeout
            self.pool.reset_idle_timer(key)

    # -------------------------------------------------------------------------
    # Local
    # -------------------------------------------------------------------------

    async def _local_environment(self, env: Dict[str, str]) -> Dict[str, str]:
        async with self.pool.lock(LOCAL_SESSION_KEY):
            handle = self.pool.get(LOCAL_SESSION_KEY)
            if handle is None:
                handle = TransportHandle(key=LOCAL_SESSION_KEY, env=dict(env))
                handle.mark_connected()
                self.pool.put(LOCAL_SESSION_KEY, handle)
                logger.info(f"Creating new local session: {LOCAL_SESSION_KEY}")
            else:
                logger.info(f"Reusing existing local session: {LOCAL_SESSION_KEY}")
                handle.env.update(env)

            self.pool.reset_idle_timer(LOCAL_SESSION_KEY)
            return {**os.environ, **handle.env}

    async def _execute_local(self, command: str, env: Dict[str, str]) -> CommandResult:
        process_env = await self._local_environment(env)
        cwd = self.config.default_dir

        logger.info(f"Executing local command: {command}" + (f" in directory: {cwd}" if cwd else ""))
        try:
            proc = await asyncio.create_subprocess_shell(
                command,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=process_env,
                cwd=cwd,
            )
            out, err = await proc.communicate()
        except OSError as e:
            logger.error(f"Cannot start local command: {e}")
            return CommandResult("", f"Command failed: {command}: {e}", None)

        stdout = out.decode("utf-8", errors="replace")
        stderr = err.decode("utf-8", errors="replace")
        if proc.returncode != 0 and not stderr:
            stderr = f"Command failed: {command} (exit status {proc.returncode})"

        return CommandResult(stdout, stderr, proc.returncode)

    async def shutdown(self) -> None:
        await self.pool.shutdown()


__all__ = ["CommandExecutor", "CommandResult", "build_remote_command"]
