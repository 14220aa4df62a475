"""Reading the wizard's .env file into the process environment."""

import logging
import os
import re
from pathlib import Path

from itr_wizard.config import DEFAULT_CONFIG_DIR, ENV_CONFIG_DIR

logger = logging.getLogger(__name__)

_ASSIGNMENT = re.compile(
    r"""
    ^(?:export\s+)?
    (?P<key>[A-Za-z_][A-Za-z0-9_]*)
    \s*=\s*
    (?:
        "(?P<double>(?:[^"\\]|\\.)*)"
      | '(?P<single>[^']*)'
      | (?P<bare>[^#]*?)
    )
    \s*(?:\#.*)?$
    """,
    re.VERBOSE,
)

_ESCAPES = {"n": "\n", "t": "\t", '"': '"', "\\": "\\"}


def get_env_path() -> Path:
    """Where the .env file lives: next to config.json."""
    override = os.environ.get(ENV_CONFIG_DIR)
    return (Path(override) if override else DEFAULT_CONFIG_DIR) / ".env"


def _unescape(value: str) -> str:
    return re.sub(r"\\(.)", lambda m: _ESCAPES.get(m.group(1), m.group(0)), value)


def parse_env(text: str) -> dict[str, str]:
    """
    Parse .env text into a mapping of names to values.

    Accepts ``KEY=value`` lines with an optional ``export`` prefix. Double
    quoted values understand backslash escapes, single quoted values are
    taken literally, and a ``#`` after an unquoted value starts a comment.
    Blank lines, comment lines and lines that are not assignments are
    skipped. A later assignment to the same name wins.
    """
    values: dict[str, str] = {}
    for number, raw in enumerate(text.splitlines(), start=1):
        line = raw.strip()
        if not line or line.startswith("#"):
            continue
        match = _ASSIGNMENT.match(line)
        if match is None:
            logger.warning(f"Ignoring malformed .env line {number}")
            continue
        if match.group("double") is not None:
            value = _unescape(match.group("double"))
        elif match.group("single") is not None:
            value = match.group("single")
        else:
            value = match.group("bare")
        values[match.group("key")] = value
    return values


def load_env(env_path: Path | None = None) -> list[str]:
    """
    Export .env entries that the environment does not already define.

    Args:
        env_path: File to read; defaults to get_env_path()

    Returns:
        Names of the variables that were set
    """
    path = env_path or get_env_path()
    if not path.is_file():
        return []

    applied = []
    for key, value in parse_env(path.read_text(encoding="utf-8")).items():
        if key in os.environ:
            continue
        os.environ[key] = value
        applied.append(key)
    if applied:
        logger.debug(f"Loaded {len(applied)} variables from {path}")
    return applied
