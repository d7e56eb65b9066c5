"""Loads and checks the `.teedeploy.yml` defaults file."""

from pathlib import Path
from typing import Any, Callable, Dict, Optional

import yaml

from teedeploy.errors import ConfigError
from teedeploy.models import LogVisibility
from teedeploy.services.environment import ENVIRONMENTS


def _text(key: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ConfigError(f"'{key}' must be a non-empty string, got {value!r}.")
    return value.strip()


def _path(key: str, value: Any) -> str:
    return str(Path(_text(key, value)).expanduser())


def _environment(key: str, value: Any) -> str:
    name = _text(key, value)
    if name not in ENVIRONMENTS:
        raise ConfigError(f"'{key}' must be one of: {', '.join(sorted(ENVIRONMENTS))}. Got '{name}'.")
    return name


def _log_visibility(key: str, value: Any) -> str:
    # YAML 1.1 reads a bare `off` as false.
    if value is False:
        return LogVisibility.OFF.value
    choices = [item.value for item in LogVisibility]
    if value not in choices:
        raise ConfigError(f"'{key}' must be one of: {', '.join(choices)}. Got {value!r}.")
    return value


def _seconds(key: str, value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)) or value <= 0:
        raise ConfigError(f"'{key}' must be a positive number of seconds, got {value!r}.")
    return float(value)


def _flag(key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"'{key}' must be true or false, got {value!r}.")
    return value


class ConfigLoader:
    """Reads CLI defaults from YAML and normalizes each value to the type the CLI expects."""

    FIELDS: Dict[str, Callable[[str, Any], Any]] = {
        "environment": _environment,
        "rpc_url": _text,
        "kms_public_key_file": _path,
        "instance_type": _text,
        "log_visibility": _log_visibility,
        "env_file": _path,
        "poll_interval_seconds": _seconds,
        "api_timeout": _seconds,
        "receipt_timeout": _seconds,
        "verbose": _flag,
        "log_file": _path,
        "assume_yes": _flag,
    }
    SUPPORTED_KEYS = frozenset(FIELDS)

    def load(self, config_path: Optional[str]) -> Dict[str, Any]:
        if not config_path:
            return {}

        path = Path(config_path).expanduser()
        if not path.is_file():
            raise ConfigError(f"Config file not found: {config_path}")

        try:
            parsed = yaml.safe_load(path.read_text(encoding="utf-8"))
        except (yaml.YAMLError, OSError) as exc:
            raise ConfigError(f"Invalid config file '{config_path}': {exc}") from exc

        if parsed is None:
            return {}
        if not isinstance(parsed, dict):
            raise ConfigError("Config file must contain a YAML mapping at the root.")
        return self.validate(parsed)

    def validate(self, raw: Dict[Any, Any]) -> Dict[str, Any]:
        """Returns the config with every value checked and normalized.

        Raises ``ConfigError`` naming the first offending key.
        """
        non_string = [key for key in raw if not isinstance(key, str)]
        if non_string:
            hint = ""
            if any(key is True for key in non_string):
                hint = " A bare 'yes' key reads as true in YAML; use 'assume_yes: true'."
            keys = ", ".join(repr(key) for key in non_string)
            raise ConfigError(f"Configuration keys must be strings, got {keys}.{hint}")

        unknown = sorted(set(raw) - self.SUPPORTED_KEYS)
        if unknown:
            raise ConfigError(f"Unknown configuration keys: {', '.join(unknown)}")

        return {key: self.FIELDS[key](key, value) for key, value in raw.items()}
