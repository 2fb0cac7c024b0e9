"""
Environment-file discovery, parsing and secret generation.

Resolution is deliberately simple: ``.env.<environment>`` if it exists in
the project directory, else ``.env``. There is no cascade; the compose CLI
reads the same file through ``--env-file``, so what this module parses is
exactly what the containers will see.

All parsing is pure-Python (no ``python-dotenv`` dependency).

Handles:
    * blank/comment lines
    * ``export VAR=value``
    * quoted values (single or double)
    * inline ``# comments`` outside of quotes

Related Modules:
    - :mod:`stackdeploy.deploy.config` builds ``DeployConfig`` from the
      parsed mapping
    - :mod:`stackdeploy.cli.stack` exposes ``env-setup``

Tags:
    configuration, env-files, secrets, pure-python
"""

from __future__ import annotations

import re
import secrets
import shutil
from pathlib import Path

from stackdeploy.core.logging import get_logger

logger = get_logger(__name__)

_VAR_RE = re.compile(
    r"""
    ^                         # start of line
    \s*                       # optional leading whitespace
    (?:export\s+)?            # optional "export " prefix
    (?P<key>[A-Za-z_]\w*)     # variable name
    \s*=\s*                   # equals with optional whitespace
    (?P<value>.*)             # everything after =
    $                         # end of line
    """,
    re.VERBOSE,
)

# A quoted value, optionally followed by an inline comment
_QUOTED_RE = re.compile(r"""^(?P<quote>['"])(?P<body>.*?)(?P=quote)\s*(?:#.*)?$""")

# Secret name -> number of random bytes (rendered as hex, two chars per byte)
SECRET_SIZES: dict[str, int] = {
    "SECRET_KEY": 32,
    "POSTGRES_PASSWORD": 16,
    "REDIS_PASSWORD": 16,
    "GRAFANA_PASSWORD": 16,
}


def resolve_env_file(project_dir: Path, environment: str) -> Path | None:
    """Return ``.env.<environment>`` if present, else ``.env``, else None."""
    specific = project_dir / f".env.{environment}"
    if specific.is_file():
        return specific
    default = project_dir / ".env"
    if default.is_file():
        return default
    return None


def _parse_value(raw: str) -> str:
    value = raw.strip()
    quoted = _QUOTED_RE.match(value)
    if quoted is not None:
        return quoted.group("body")
    if " #" in value:
        value = value[: value.index(" #")].rstrip()
    return value


def parse_env_text(text: str) -> dict[str, str]:
    """Parse ``.env`` content into a ``{key: value}`` mapping.

    Later assignments of the same key win. Lines that are not assignments
    are ignored.
    """
    result: dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        match = _VAR_RE.match(line)
        if match is None:
            continue
        result[match.group("key")] = _parse_value(match.group("value"))
    return result


def load_env_file(path: Path) -> dict[str, str]:
    """Parse a single ``.env`` file."""
    return parse_env_text(path.read_text(encoding="utf-8"))


def generate_secrets(sizes: dict[str, int] | None = None) -> dict[str, str]:
    """Generate fresh hex secrets for every key in *sizes*."""
    sizes = SECRET_SIZES if sizes is None else sizes
    return {key: secrets.token_hex(nbytes) for key, nbytes in sizes.items()}


def ensure_env_file(project_dir: Path) -> tuple[Path, bool]:
    """Create ``.env`` from ``.env.example`` when it does not exist yet.

    Returns ``(path, created)``. When neither file exists an empty ``.env``
    is created.
    """
    target = project_dir / ".env"
    if target.exists():
        return target, False

    example = project_dir / ".env.example"
    if example.is_file():
        shutil.copyfile(example, target)
        logger.info("envfile.created_from_example", path=str(target))
    else:
        target.write_text("", encoding="utf-8")
        logger.info("envfile.created_empty", path=str(target))
    return target, True


def write_env_values(path: Path, values: dict[str, str]) -> list[str]:
    """Fill blank keys of an env file with *values*.

    Keys that already hold a non-empty value are left untouched. Keys that
    are missing entirely are appended. Comments and ordering are preserved.

    Returns the list of keys that were written.
    """
    lines = path.read_text(encoding="utf-8").splitlines() if path.exists() else []
    pending = dict(values)
    written: list[str] = []
    out: list[str] = []

    for line in lines:
        stripped = line.strip()
        match = None if stripped.startswith("#") else _VAR_RE.match(stripped)
        if match is not None:
            key = match.group("key")
            if key in pending:
                value = pending.pop(key)
                if not _parse_value(match.group("value")):
                    prefix = "export " if stripped.startswith("export") else ""
                    out.append(f"{prefix}{key}={value}")
                    written.append(key)
                    continue
        out.append(line)

    for key, value in pending.items():
        out.append(f"{key}={value}")
        written.append(key)

    path.write_text("\n".join(out) + "\n", encoding="utf-8")
    logger.info("envfile.values_written", path=str(path), keys=written)
    return written


__all__ = [
    "SECRET_SIZES",
    "resolve_env_file",
    "parse_env_text",
    "load_env_file",
    "generate_secrets",
    "ensure_env_file",
    "write_env_values",
]
