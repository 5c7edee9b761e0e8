"""
SSH client configuration lookup.

Resolves a host alias to connection parameters from an OpenSSH-style
config file (``Host`` blocks with ``HostName``, ``User``, ``IdentityFile``,
``Passphrase`` and ``Port`` directives). The file is read on every lookup
so edits take effect on the next connection attempt.
"""

import fnmatch
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from .config import config, logger
from .errors import ConfigParseError


# Directive keyword (lowercase) -> HostConfig field
DIRECTIVES: Dict[str, str] = {
    "hostname": "hostname",
    "user": "user",
    "identityfile": "identity_file",
    "passphrase": "passphrase",
    "port": "port",
}

_LINE_RE = re.compile(r"^(?P<key>[^\s=]+)(?:\s*=\s*|\s+)?(?P<value>.*)$")


@dataclass(frozen=True)
class HostConfig:
    """Connection parameters resolved for one alias. Every field is optional."""

    hostname: Optional[str] = None
    user: Optional[str] = None
    identity_file: Optional[str] = None
    passphrase: Optional[str] = None
    port: Optional[int] = None

    @property
    def is_empty(self) -> bool:
        return not any(
            value is not None
            for value in (self.hostname, self.user, self.identity_file, self.passphrase, self.port)
        )

    def describe(self) -> str:
        """Loggable summary; never includes the passphrase itself."""
        return (
            f"Hostname={self.hostname}, User={self.user}, IdentityFile={self.identity_file}, "
            f"Passphrase={'[PRESENT]' if self.passphrase else '[ABSENT]'}, Port={self.port}"
        )


@dataclass
class _Block:
    # None means directives that appear before the first Host line
    patterns: Optional[List[str]]
    options: List[Tuple[str, str]] = field(default_factory=list)

    def matches(self, alias: str) -> bool:
        if self.patterns is None:
            return True
        return host_matches(alias, self.patterns)


def host_matches(alias: str, patterns: List[str]) -> bool:
    """OpenSSH host matching: wildcards, and any matching negation excludes."""
    name = alias.lower()
    matched = False
    for pattern in patterns:
        negated = pattern.startswith("!")
        if negated:
            pattern = pattern[1:]
        if fnmatch.fnmatchcase(name, pattern.lower()):
            if negated:
                return False
            matched = True
    return matched


def _unquote(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] == '"':
        return value[1:-1]
    return value


class SSHConfig:
    """Parsed SSH client configuration."""

    def __init__(self, blocks: List[_Block]):
        self._blocks = blocks

    @property
    def aliases(self) -> List[str]:
        """Concrete (non-wildcard, non-negated) host aliases in file order."""
        seen: List[str] = []
        for block in self._blocks:
            for pattern in block.patterns or []:
                if any(c in pattern for c in "*?!"):
                    continue
                if pattern not in seen:
                    seen.append(pattern)
        return seen

    def lookup(self, alias: str) -> HostConfig:
        """Collect directives from every matching block; first value wins."""
        values: Dict[str, object] = {}
        for block in self._blocks:
            if not block.matches(alias):
                continue
            for key, value in block.options:
                values.setdefault(DIRECTIVES[key], value)

        if "identity_file" in values:
            values["identity_file"] = os.path.expanduser(str(values["identity_file"]))
        if "port" in values:
            values["port"] = int(str(values["port"]))
        return HostConfig(**values)  # type: ignore[arg-type]


def parse_ssh_config(text: str, source: Optional[str] = None) -> SSHConfig:
    """Parse config text, raising ConfigParseError on malformed directives."""
    blocks: List[_Block] = [_Block(patterns=None)]

    for lineno, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue

        match = _LINE_RE.match(line)
        if not match:
            raise ConfigParseError(source, f"line {lineno}: cannot parse {line!r}")

        key = match.group("key").lower()
        value = match.group("value").strip()

        if key == "host":
            patterns = [_unquote(p) for p in value.split()]
            if not patterns:
                raise ConfigParseError(source, f"line {lineno}: Host without a pattern")
            blocks.append(_Block(patterns=patterns))
            continue

        if key not in DIRECTIVES:
            # Other OpenSSH directives are irrelevant to connection lookup
            continue

        value = _unquote(value)
        if not value:
            raise ConfigParseError(source, f"line {lineno}: {match.group('key')} requires a value")

        if key == "port":
            try:
                port = int(value)
            except ValueError:
                raise ConfigParseError(source, f"line {lineno}: invalid Port {value!r}") from None
            if not 0 < port < 65536:
                raise ConfigParseError(source, f"line {lineno}: Port {port} out of range")

        blocks[-1].options.append((key, value))

    return SSHConfig(blocks)


def load_ssh_config(path: Optional[str] = None) -> SSHConfig:
    """Read and parse the config file. A missing file is an empty config."""
    path = path or config.ssh_config_path
    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        logger.debug(f"SSH config {path} does not exist")
        return SSHConfig([])
    except (OSError, UnicodeDecodeError) as e:
        raise ConfigParseError(path, str(e)) from e
    return parse_ssh_config(text, source=path)


def resolve_host(alias: str, path: Optional[str] = None) -> HostConfig:
    """Resolve an alias; an empty HostConfig means no entry matched.

    Raises ConfigParseError when the file exists but cannot be read or parsed.
    """
    record = load_ssh_config(path).lookup(alias)
    if record.is_empty:
        logger.info(f'No matching host config found for alias "{alias}"')
    else:
        logger.info(f'Parsed SSH config for alias "{alias}": {record.describe()}')
    return record


def list_host_aliases(path: Optional[str] = None) -> List[str]:
    """Aliases callers may target; problems with the file yield an empty list."""
    try:
        return load_ssh_config(path).aliases
    except ConfigParseError as e:
        logger.warning(str(e))
        return []


__all__ = [
    "HostConfig",
    "SSHConfig",
    "host_matches",
    "parse_ssh_config",
    "load_ssh_config",
    "resolve_host",
    "list_host_aliases",
]
