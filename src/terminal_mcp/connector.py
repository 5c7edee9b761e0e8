"""SSH connection establishment with retries, and liveness checks for reuse."""

import asyncio
from typing import Optional

import asyncssh

from .config import TerminalConfig, config as default_config, logger, session_key
from .errors import ConfigParseError, ConnectError, CredentialError
from .sessions import SessionPool, SessionState, TransportHandle
from .ssh_config import HostConfig, resolve_host


DEFAULT_SSH_PORT = 22
PROBE_COMMAND = 'echo "ping"'
PROBE_EXPECTED = "ping"


class _SessionClient(asyncssh.SSHClient):
    """Keeps the handle's state in step with the underlying connection."""

    def __init__(self, handle: TransportHandle, pool: SessionPool):
        self._handle = handle
        self._pool = pool

    def connection_lost(self, exc: Optional[Exception]) -> None:
        handle = self._handle
        handle.mark_closed()
        if self._pool.remove(handle.key, handle) is not None:
            reason = f": {exc}" if exc else ""
            logger.info(f"Session {handle.key} connection lost{reason}")


def load_private_key(path: str, passphrase: Optional[str] = None) -> asyncssh.SSHKey:
    """Read a private key, mapping every failure to CredentialError."""
    try:
        key = asyncssh.read_private_key(path, passphrase)
    except FileNotFoundError:
        raise CredentialError(
            path,
            "does not exist. Please ensure SSH key-based authentication is set up.",
        ) from None
    except (asyncssh.KeyImportError, asyncssh.KeyEncryptionError) as e:
        raise CredentialError(
            path,
            f"unsupported key format: {e}. If the key is encrypted, set Passphrase "
            "in the SSH config for this host.",
        ) from e
    except OSError as e:
        raise CredentialError(path, f"cannot be read: {e}") from e
    logger.info(f"Successfully read private key from: {path}")
    return key


class Connector:
    """Opens new SSH sessions and installs them into the pool."""

    def __init__(self, pool: SessionPool, config: Optional[TerminalConfig] = None):
        self.pool = pool
        self.config = config or pool.config

    def _resolve(self, alias: str) -> HostConfig:
        try:
            return resolve_host(alias, self.config.ssh_config_path)
        except ConfigParseError as e:
            logger.warning(f"{e}; continuing with defaults")
            return HostConfig()

    async def establish(self, alias: str) -> TransportHandle:
        """Connect to an alias, retrying transient failures.

        Raises CredentialError (never retried) or ConnectError once the retry
        budget is spent. Nothing is stored in the pool on failure.
        """
        key = session_key(alias)
        record = self._resolve(alias)

        address = record.hostname or alias
        port = record.port or DEFAULT_SSH_PORT
        username = record.user
        if not username:
            logger.warning(
                f'Username not found in SSH config for alias "{alias}". '
                f'Defaulting to "{self.config.default_user}".'
            )
            username = self.config.default_user
        key_path = record.identity_file or self.config.default_identity_file

        attempts = max(1, self.config.max_retries)
        last_error: Optional[BaseException] = None

        for attempt in range(1, attempts + 1):
            # Re-read every attempt so a key fixed between attempts is picked up
            private_key = await asyncio.to_thread(load_private_key, key_path, record.passphrase)

            handle = TransportHandle(key=key, host=alias, address=address)
            logger.info(
                f"Attempting SSH connection to {address}:{port} as {username} "
                f"(attempt {attempt}/{attempts}, key={key_path}, "
                f"passphrase={'[PRESENT]' if record.passphrase else '[ABSENT]'})"
            )
            try:
                handle.transport = await asyncio.wait_for(
                    self._open(handle, address, port, username, private_key),
                    timeout=self.config.connect_timeout,
                )
            except (asyncssh.Error, OSError, asyncio.TimeoutError) as e:
                last_error = e
                message = str(e) or type(e).__name__
                logger.warning(f"Connection attempt {attempt}/{attempts} failed for {key}: {message}")
                if attempt < attempts:
                    await asyncio.sleep(self.config.retry_delay)
                continue

            if self.pool.closed:
                logger.info(f"Session pool shut down while connecting {key}, closing new connection")
                await handle.close()
                raise ConnectError(alias, "session pool is shut down")

            handle.mark_connected()
            logger.info(f"Session {key} connected to {address}")
            self.pool.put(key, handle)
            self.pool.reset_idle_timer(key)
            return handle

        message = str(last_error) or type(last_error).__name__
        raise ConnectError(alias, message) from last_error

    async def _open(
        self,
        handle: TransportHandle,
        address: str,
        port: int,
        username: str,
        private_key: asyncssh.SSHKey,
    ) -> asyncssh.SSHClientConnection:
        conn, _ = await asyncssh.create_connection(
            lambda: _SessionClient(handle, self.pool),
            host=address,
            port=port,
            username=username,
            client_keys=[private_key],
            known_hosts=None,
            config=None,
            connect_timeout=self.config.connect_timeout,
            keepalive_interval=self.config.keepalive_interval,
        )
        return conn


class LivenessProber:
    """Round-trip check that a pooled connection still runs commands."""

    def __init__(self, config: Optional[TerminalConfig] = None):
        self.config = config or default_config

    async def is_alive(self, handle: TransportHandle) -> bool:
        """Never raises; any failure reads as not alive."""
        if handle.transport is None or handle.state is not SessionState.CONNECTED:
            return False

        try:
            result = await asyncio.wait_for(
                handle.transport.run(PROBE_COMMAND, check=False),
                timeout=self.config.probe_timeout,
            )
        except (asyncssh.Error, OSError, asyncio.TimeoutError) as e:
            logger.info(f"Connection check failed for {handle.key}: {str(e) or type(e).__name__}")
            return False

        stdout = result.stdout or ""
        if isinstance(stdout, bytes):
            stdout = stdout.decode("utf-8", errors="replace")
        return stdout.strip() == PROBE_EXPECTED


__all__ = [
    "Connector",
    "LivenessProber",
    "load_private_key",
    "DEFAULT_SSH_PORT",
    "PROBE_COMMAND",
]
