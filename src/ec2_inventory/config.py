from __future__ import annotations

from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import yaml

from .aws_cli import DEFAULT_TIMEOUT_SECONDS, DEFAULT_TOOL
from .history import DEFAULT_HISTORY_DB_PATH
from .table import DEFAULT_DETAIL_WIDTH

DEFAULT_CONFIG_PATH = Path("ec2-inventory.yaml")


@dataclass(slots=True, frozen=True)
class AppConfig:
    tool: str = DEFAULT_TOOL
    profile: str | None = None
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    detail_width: int = DEFAULT_DETAIL_WIDTH
    history_file: Path = DEFAULT_HISTORY_DB_PATH

    def with_overrides(self, **overrides: Any) -> AppConfig:
        changes = {key: value for key, value in overrides.items() if value is not None}
        if "history_file" in changes:
            changes["history_file"] = Path(changes["history_file"]).expanduser()
        return replace(self, **changes)


DEFAULT_APP_CONFIG = AppConfig()


def load_app_config(config_path: str | Path | None = None) -> AppConfig:
    path = Path(config_path).expanduser() if config_path else DEFAULT_CONFIG_PATH
    if not path.is_file():
        return DEFAULT_APP_CONFIG

    with path.open("r", encoding="utf-8") as handle:
        loaded = yaml.safe_load(handle) or {}

    tool = _coerce_text(_safe_mapping_get(loaded, "tool")) or DEFAULT_APP_CONFIG.tool
    history_file = _coerce_text(_safe_mapping_get(loaded, "history_file"))
    return AppConfig(
        tool=tool,
        profile=_coerce_text(_safe_mapping_get(loaded, "profile")),
        timeout_seconds=_coerce_positive(
            _safe_mapping_get(loaded, "timeout_seconds"),
            fallback=DEFAULT_APP_CONFIG.timeout_seconds,
            cast=float,
        ),
        detail_width=int(
            _coerce_positive(
                _safe_mapping_get(loaded, "detail_width"),
                fallback=DEFAULT_APP_CONFIG.detail_width,
                cast=int,
            )
        ),
        history_file=Path(history_file).expanduser() if history_file else DEFAULT_APP_CONFIG.history_file,
    )


def _coerce_text(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _coerce_positive(value: Any, fallback: float, cast: type = float) -> float:
    try:
        number = cast(value)
    except (TypeError, ValueError):
        return fallback
    if number > 0:
        return number
    return fallback


def _safe_mapping_get(mapping: Any, key: str, fallback: Any = None) -> Any:
    try:
        return mapping[key]
    except (KeyError, TypeError):
        return fallback
