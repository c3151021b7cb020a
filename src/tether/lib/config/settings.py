"""Operational config loader for process supervision defaults."""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass, fields
from pathlib import Path
from typing import cast

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "TETHER_CONFIG"


@dataclass(frozen=True, slots=True)
class TetherConfig:
    """Resolved operational configuration for tether."""

    kill_grace_seconds: float = 2.0
    poll_interval_seconds: float = 0.05
    timeout_seconds: float | None = None
    shell: str = "/bin/sh"
    locale_value: str = "C"


_SECTION_KEY_MAP: dict[str, dict[str, str]] = {
    "timeouts": {
        "kill_grace_seconds": "kill_grace_seconds",
        "grace_seconds": "kill_grace_seconds",
        "poll_interval_seconds": "poll_interval_seconds",
        "timeout_seconds": "timeout_seconds",
    },
    "exec": {
        "shell": "shell",
        "locale": "locale_value",
        "locale_value": "locale_value",
    },
}

_TOP_LEVEL_KEY_MAP: dict[str, str] = {
    "kill_grace_seconds": "kill_grace_seconds",
    "poll_interval_seconds": "poll_interval_seconds",
    "timeout_seconds": "timeout_seconds",
    "shell": "shell",
    "locale_value": "locale_value",
}

_ENV_OVERRIDE_MAP: dict[str, str] = {
    "TETHER_KILL_GRACE_SECONDS": "kill_grace_seconds",
    "TETHER_POLL_INTERVAL_SECONDS": "poll_interval_seconds",
    "TETHER_TIMEOUT_SECONDS": "timeout_seconds",
    "TETHER_SHELL": "shell",
    "TETHER_LOCALE": "locale_value",
}

_FLOAT_FIELDS = frozenset({"kill_grace_seconds", "poll_interval_seconds", "timeout_seconds"})
_POSITIVE_FIELDS = frozenset({"poll_interval_seconds", "timeout_seconds"})


def _coerce_file_value(*, field_name: str, raw_value: object, source: str) -> object:
    if field_name in _FLOAT_FIELDS:
        if isinstance(raw_value, bool) or not isinstance(raw_value, int | float):
            raise ValueError(
                f"Invalid value for '{source}': expected float, got "
                f"{type(raw_value).__name__} ({raw_value!r})."
            )
        return float(raw_value)

    if not isinstance(raw_value, str):
        raise ValueError(
            f"Invalid value for '{source}': expected str, got "
            f"{type(raw_value).__name__} ({raw_value!r})."
        )
    normalized = raw_value.strip()
    if not normalized:
        raise ValueError(f"Invalid value for '{source}': expected non-empty string.")
    return normalized


def _coerce_env_value(*, field_name: str, raw_value: str, env_name: str) -> object:
    if field_name in _FLOAT_FIELDS:
        try:
            return float(raw_value.strip())
        except ValueError as error:
            raise ValueError(
                f"Invalid environment override '{env_name}': expected float, got {raw_value!r}."
            ) from error

    normalized = raw_value.strip()
    if not normalized:
        raise ValueError(
            f"Invalid environment override '{env_name}': expected non-empty string."
        )
    return normalized


def _default_values() -> dict[str, object]:
    defaults = TetherConfig()
    return {field.name: getattr(defaults, field.name) for field in fields(TetherConfig)}


def _apply_toml_payload(
    *,
    values: dict[str, object],
    payload: dict[str, object],
    path: Path,
) -> None:
    for key, raw_value in payload.items():
        section_map = _SECTION_KEY_MAP.get(key)
        if section_map is not None:
            if not isinstance(raw_value, dict):
                raise ValueError(f"Invalid value for '{key}' in '{path}': expected table.")
            for section_key, section_value in cast("dict[str, object]", raw_value).items():
                field_name = section_map.get(section_key)
                if field_name is None:
                    logger.warning(
                        "Ignoring unknown tether config key '%s.%s'.",
                        key,
                        section_key,
                    )
                    continue
                values[field_name] = _coerce_file_value(
                    field_name=field_name,
                    raw_value=section_value,
                    source=f"{key}.{section_key}",
                )
            continue

        field_name = _TOP_LEVEL_KEY_MAP.get(key)
        if field_name is None:
            logger.warning("Ignoring unknown tether config key '%s'.", key)
            continue
        values[field_name] = _coerce_file_value(
            field_name=field_name,
            raw_value=raw_value,
            source=key,
        )


def _apply_env_overrides(values: dict[str, object]) -> None:
    for env_name, field_name in _ENV_OVERRIDE_MAP.items():
        raw_value = os.getenv(env_name)
        if raw_value is None:
            continue
        values[field_name] = _coerce_env_value(
            field_name=field_name,
            raw_value=raw_value,
            env_name=env_name,
        )


def _build_config(values: dict[str, object]) -> TetherConfig:
    config = TetherConfig(
        kill_grace_seconds=cast("float", values["kill_grace_seconds"]),
        poll_interval_seconds=cast("float", values["poll_interval_seconds"]),
        timeout_seconds=cast("float | None", values["timeout_seconds"]),
        shell=cast("str", values["shell"]),
        locale_value=cast("str", values["locale_value"]),
    )
    if config.kill_grace_seconds < 0:
        raise ValueError("Invalid kill_grace_seconds: expected a value >= 0.")
    for field_name in _POSITIVE_FIELDS:
        value = cast("float | None", getattr(config, field_name))
        if value is not None and value <= 0:
            raise ValueError(f"Invalid {field_name}: expected a value > 0.")
    return config


def resolve_config_path(path: Path | None = None) -> Path | None:
    if path is not None:
        return path
    env_path = os.getenv(CONFIG_PATH_ENV)
    if env_path is None or not env_path.strip():
        return None
    return Path(env_path.strip()).expanduser()


def load_config(path: Path | None = None) -> TetherConfig:
    """Load a tether TOML config file and apply environment overrides."""

    values = _default_values()
    config_path = resolve_config_path(path)
    if config_path is not None and config_path.is_file():
        payload_obj = tomllib.loads(config_path.read_text(encoding="utf-8"))
        payload = cast("dict[str, object]", payload_obj)
        _apply_toml_payload(values=values, payload=payload, path=config_path)

    _apply_env_overrides(values)
    return _build_config(values)
