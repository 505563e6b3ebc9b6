from __future__ import annotations

import os
from pathlib import Path

PRIMARY_PREFIX = "MICRODOSE_"
LEGACY_PREFIX = "KREP_"


def get_env(name: str, default: str | None = None) -> str | None:
    """
    Look up ``MICRODOSE_<name>``, then the older ``KREP_<name>``.

    Blank values count as unset.
    """
    for prefix in (PRIMARY_PREFIX, LEGACY_PREFIX):
        value = os.getenv(f"{prefix}{name}")
        if value is not None and value.strip():
            return value.strip()
    return default


def get_env_path(name: str) -> Path | None:
    value = get_env(name)
    return Path(value).expanduser() if value else None
