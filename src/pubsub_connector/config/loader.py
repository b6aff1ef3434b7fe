"""YAML + environment variable config loader."""

from __future__ import annotations

import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import Any, cast

import yaml
from pydantic import ValidationError

from pubsub_connector.config.defaults import load_defaults, merge_configs
from pubsub_connector.config.models import ConnectorConfig
from pubsub_connector.errors import ConfigurationError

# Matches ${VAR} or ${VAR:-default}
_ENV_PATTERN = re.compile(r"\$\{([^}:]+)(?::-((?:[^}\\]|\\.)*))?}")


def _resolve_env_str(value: str) -> str:
    """Replace all ${VAR} / ${VAR:-default} references in a string."""

    def _replace(match: re.Match[str]) -> str:
        var_name = match.group(1)
        default = match.group(2)
        env_val = os.environ.get(var_name)
        if env_val is not None:
            return env_val
        if default is not None:
            return default.replace("\\}", "}")
        msg = f"Environment variable '{var_name}' is not set and no default provided"
        raise ConfigurationError(msg)

    return _ENV_PATTERN.sub(_replace, value)


def resolve_env_vars(data: Any) -> Any:
    """Recursively resolve ${VAR} and ${VAR:-default} in parsed YAML data."""
    if isinstance(data, str):
        return _resolve_env_str(data)
    if isinstance(data, dict):
        return {k: resolve_env_vars(v) for k, v in data.items()}
    if isinstance(data, list):
        return [resolve_env_vars(item) for item in data]
    return data


def load_yaml(path: str | Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict."""
    p = Path(path)
    if not p.exists():
        msg = f"Config file not found: {p}"
        raise ConfigurationError(msg)
    try:
        with p.open() as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        msg = f"Failed to parse YAML in {p}"
        if hasattr(exc, "problem_mark") and exc.problem_mark is not None:
            mark = exc.problem_mark
            msg += f" at line {mark.line + 1}, column {mark.column + 1}"
        msg += f": {exc}"
        raise ConfigurationError(msg) from exc
    if not isinstance(data, dict):
        msg = f"Expected a YAML mapping at top level in {p}, got {type(data).__name__}"
        raise ConfigurationError(msg)
    return cast(dict[str, Any], resolve_env_vars(data))


def build_connector_config(
    options: Mapping[str, Any] | ConnectorConfig,
    *,
    source: str = "options",
) -> ConnectorConfig:
    """Validate raw connector options merged over the built-in defaults."""
    if isinstance(options, ConnectorConfig):
        return options
    merged = merge_configs(load_defaults("connector"), dict(options))
    try:
        return ConnectorConfig.model_validate(merged)
    except ValidationError as exc:
        msg = f"Invalid connector config ({source}):\n{exc}"
        raise ConfigurationError(msg) from exc


def load_connector_config(path: str | Path) -> ConnectorConfig:
    """Load a connector config YAML and merge it with the built-in defaults."""
    return build_connector_config(load_yaml(path), source=str(path))
