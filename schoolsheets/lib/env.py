"""Environment helpers: ``.env`` loading, ``${VAR}`` expansion and flags.

YAML settings files may reference the environment:

    spreadsheet_id: ${SPREADSHEET_ID}
    snapshot_path: ${DATA_DIR:-data}/snapshot.json
"""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Union

from dotenv import find_dotenv, load_dotenv

__all__ = ["expand_env_vars", "expand_options", "load_env_file", "parse_bool"]

# ${NAME}, ${NAME:-fallback} or $NAME
ENV_VAR_PATTERN = re.compile(
    r"\$\{(?P<braced>[A-Za-z_][A-Za-z0-9_]*)(?::-(?P<fallback>[^}]*))?\}"
    r"|\$(?P<bare>[A-Za-z_][A-Za-z0-9_]*)"
)

_TRUTHY = frozenset({"1", "true", "yes", "on"})
_FALSY = frozenset({"0", "false", "no", "off", ""})


def load_env_file(
    path: Optional[Union[str, Path]] = None,
    *,
    override: bool = False,
) -> bool:
    """Load a ``.env`` file into ``os.environ``.

    Without ``path`` the nearest ``.env`` at or above the working directory
    is used. Variables already set in the process win unless ``override``.

    Returns:
        True if a file was found and loaded.
    """
    dotenv_path = str(path) if path is not None else find_dotenv(usecwd=True)
    if not dotenv_path:
        return False
    return load_dotenv(dotenv_path=dotenv_path, override=override)


def expand_env_vars(
    value: str,
    *,
    strict: bool = False,
    environ: Optional[Mapping[str, str]] = None,
) -> str:
    """Replace ``${VAR}``, ``${VAR:-fallback}`` and ``$VAR`` references.

    Unset variables without a fallback are left as written, or raise
    KeyError when ``strict``.

    Example:
        >>> expand_env_vars("${SHEET:-School Profile}!A:ZZ", environ={})
        'School Profile!A:ZZ'
    """
    env = os.environ if environ is None else environ

    def replace(match: re.Match[str]) -> str:
        name = match.group("braced") or match.group("bare")
        if name in env:
            return env[name]
        fallback = match.group("fallback")
        if fallback is not None:
            return fallback
        if strict:
            raise KeyError(f"Environment variable not set: {name}")
        return match.group(0)

    return ENV_VAR_PATTERN.sub(replace, value)


def expand_options(options: Mapping[str, Any], *, strict: bool = False) -> Dict[str, Any]:
    """Expand references in every string of a parsed YAML mapping."""
    return {key: _expand_value(value, strict) for key, value in options.items()}


def _expand_value(value: Any, strict: bool) -> Any:
    if isinstance(value, str):
        return expand_env_vars(value, strict=strict)
    if isinstance(value, Mapping):
        return expand_options(value, strict=strict)
    if isinstance(value, list):
        return [_expand_value(item, strict) for item in value]
    return value


def parse_bool(value: Any, default: bool = False) -> bool:
    """Parse 'true'/'1'/'yes' style flags case-insensitively.

    Unrecognised strings fall back to ``default``.
    """
    if isinstance(value, bool):
        return value
    if value is None:
        return default
    text = str(value).strip().lower()
    if text in _TRUTHY:
        return True
    if text in _FALSY:
        return False
    return default
