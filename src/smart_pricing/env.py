"""
Environment helpers: ``.env`` loading and typed lookups of pricing variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, Optional

TRUTHY = {"1", "true", "yes", "on"}


def parse_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in TRUTHY


def read_env_file(dotenv_path: str | Path) -> Dict[str, str]:
    """Parse ``KEY=value`` lines, ignoring blanks, comments and ``export`` prefixes."""

    path = Path(dotenv_path)
    if not path.exists():
        return {}

    values: Dict[str, str] = {}
    for raw_line in path.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if line.startswith("export "):
            line = line[len("export "):].lstrip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = (part.strip() for part in line.split("=", 1))
        if not key:
            continue
        if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
            value = value[1:-1]
        values[key] = value
    return values


def load_env_file(dotenv_path: str | Path = ".env") -> None:
    """Copy values from ``dotenv_path`` into ``os.environ`` without overriding exports."""

    for key, value in read_env_file(dotenv_path).items():
        os.environ.setdefault(key, value)


def env_flag(name: str) -> Optional[bool]:
    """Boolean value of ``name``, or ``None`` when it is unset."""

    raw = os.getenv(name)
    if raw is None:
        return None
    return parse_bool(raw)


__all__ = ["env_flag", "load_env_file", "parse_bool", "read_env_file"]
