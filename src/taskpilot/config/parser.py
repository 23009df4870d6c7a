"""Load and validate taskpilot.yaml configuration."""

from __future__ import annotations

import difflib
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, ValidationError

from taskpilot.config.models import PilotConfig

DEFAULT_CONFIG_NAME = "taskpilot.yaml"


class ConfigError(Exception):
    """User-facing configuration error."""


def load_config(path: Path | None = None) -> PilotConfig:
    """Load and validate a taskpilot.yaml file.

    Args:
        path: Explicit config file path.  If None, ``taskpilot.yaml`` in the
              current directory is used when present, otherwise defaults.

    Returns:
        A validated PilotConfig instance.

    Raises:
        ConfigError: On missing file, bad YAML, or validation failure.
    """
    config_path = _resolve_path(path)
    if config_path is None:
        return PilotConfig()
    raw = _read_yaml(config_path)
    _load_env(config_path.parent)
    return _validate(raw)


def _resolve_path(path: Path | None) -> Path | None:
    if path is not None:
        resolved = Path(path)
        if not resolved.is_file():
            msg = f"Config file not found: {resolved}"
            raise ConfigError(msg)
        return resolved

    default = Path.cwd() / DEFAULT_CONFIG_NAME
    return default if default.is_file() else None


def _read_yaml(path: Path) -> dict[str, Any]:
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as exc:
        msg = f"Cannot read config file: {exc}"
        raise ConfigError(msg) from exc

    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        detail = ""
        mark = getattr(exc, "problem_mark", None)
        if mark is not None:
            detail = f" (line {mark.line + 1}, column {mark.column + 1})"
        msg = f"Invalid YAML in {path.name}{detail}"
        raise ConfigError(msg) from exc

    if data is None:
        return {}
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping in {path.name}, got {type(data).__name__}"
        raise ConfigError(msg)
    return data


def _load_env(config_dir: Path) -> None:
    env_path = config_dir / ".env"
    if env_path.is_file():
        load_dotenv(env_path)


def _validate(raw: dict[str, Any]) -> PilotConfig:
    try:
        return PilotConfig.model_validate(raw)
    except ValidationError as exc:
        lines = [f"  {_format_loc(err['loc'])}: {_describe_error(err)}" for err in exc.errors()]
        joined = "\n".join(lines)
        msg = f"Config validation failed:\n{joined}"
        raise ConfigError(msg) from exc


def _format_loc(loc: tuple[int | str, ...]) -> str:
    return " → ".join(str(s) for s in loc) or "(root)"


def _describe_error(err: Mapping[str, Any]) -> str:
    match err["type"]:
        case "missing":
            return "This field is required"
        case "extra_forbidden":
            *parents, name = err["loc"]
            known = _settings_at(tuple(parents))
            close = difflib.get_close_matches(str(name), known, n=1)
            return f"Unknown setting (did you mean '{close[0]}'?)" if close else "Unknown setting"
        case _:
            return err["msg"]


def _settings_at(loc: tuple[int | str, ...]) -> list[str]:
    """Names accepted by the config section at *loc* (empty if not a section)."""
    model: type[BaseModel] = PilotConfig
    for segment in loc:
        field = model.model_fields.get(str(segment))
        annotation = field.annotation if field is not None else None
        if not (isinstance(annotation, type) and issubclass(annotation, BaseModel)):
            return []
        model = annotation
    return list(model.model_fields)
