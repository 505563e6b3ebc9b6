from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

from .env import get_env_path

try:  # pragma: no cover - Python 3.11+
    import tomllib  # type: ignore[attr-defined]
except ModuleNotFoundError:  # pragma: no cover - Python <3.11
    try:
        import tomli as tomllib  # type: ignore
    except ModuleNotFoundError:
        tomllib = None  # type: ignore

DEFAULT_EQUIPMENT: tuple[str, ...] = ("kettlebell", "pullup_bar", "bands")
DEFAULT_HISTORY_DAYS = 7
DEFAULT_CONFIG_PATH = Path("~/.config/microdose/config.toml")
DEFAULT_DATA_DIR = Path("~/.local/share/microdose")


@dataclass(frozen=True)
class ProgressionConfig:
    staged_ceiling: int = 10
    linear_max: int = 15


@dataclass(frozen=True)
class AppConfig:
    data_dir: Path = DEFAULT_DATA_DIR
    equipment: tuple[str, ...] = DEFAULT_EQUIPMENT
    history_days: int = DEFAULT_HISTORY_DAYS
    progression: ProgressionConfig = ProgressionConfig()

    @property
    def resolved_data_dir(self) -> Path:
        return get_env_path("DATA_DIR") or self.data_dir.expanduser()


def _config_path() -> Path | None:
    """``MICRODOSE_CONFIG`` wins outright, even when it points nowhere."""
    candidate = get_env_path("CONFIG") or DEFAULT_CONFIG_PATH.expanduser()
    return candidate if candidate.is_file() else None


def _load_toml(path: Path) -> Mapping[str, Any]:
    if tomllib is None:
        raise RuntimeError("TOML configuration requires Python 3.11+ or the 'tomli' package.")
    with path.open("rb") as handle:
        return tomllib.load(handle)


def _coerce_equipment(raw: Any) -> tuple[str, ...]:
    """Accept a list or a comma-separated string; names become lower_snake_case, duplicates drop."""
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, (list, tuple)):
        return DEFAULT_EQUIPMENT
    names: dict[str, None] = {}
    for item in raw:
        name = "_".join(str(item).lower().split())
        if name:
            names.setdefault(name)
    return tuple(names) or DEFAULT_EQUIPMENT


def _coerce_positive_int(raw: Any, default: int) -> int:
    if raw is None or isinstance(raw, bool):
        return default
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return value if value > 0 else default


def _coerce_progression(raw: Mapping[str, Any] | None) -> ProgressionConfig:
    base = ProgressionConfig()
    if not raw:
        return base
    return ProgressionConfig(
        staged_ceiling=_coerce_positive_int(raw.get("staged_ceiling"), base.staged_ceiling),
        linear_max=_coerce_positive_int(raw.get("linear_max"), base.linear_max),
    )


def _build_config(raw: Mapping[str, Any]) -> AppConfig:
    data_dir_raw = raw.get("data_dir")
    data_dir = Path(str(data_dir_raw)) if data_dir_raw else DEFAULT_DATA_DIR
    progression_section = raw.get("progression")
    progression = _coerce_progression(
        progression_section if isinstance(progression_section, Mapping) else None
    )
    return AppConfig(
        data_dir=data_dir,
        equipment=_coerce_equipment(raw.get("equipment")),
        history_days=_coerce_positive_int(raw.get("history_days"), DEFAULT_HISTORY_DAYS),
        progression=progression,
    )


def load_config(path: Path) -> AppConfig:
    """Read a specific TOML file into an ``AppConfig``."""
    return _build_config(_load_toml(path))


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Load configuration once, falling back to built-in defaults."""
    path = _config_path()
    if not path:
        return AppConfig()
    return load_config(path)


def as_dict() -> dict[str, Any]:
    """Return the effective configuration for debug/CLI display."""
    config = get_config()
    return {
        "data_dir": str(config.resolved_data_dir),
        "equipment": list(config.equipment),
        "history_days": config.history_days,
        "progression": {
            "staged_ceiling": config.progression.staged_ceiling,
            "linear_max": config.progression.linear_max,
        },
        "source": str(_config_path() or "defaults"),
    }
