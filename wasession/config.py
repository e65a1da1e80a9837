from __future__ import annotations
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from wasession.errors import ConfigError
from wasession.shared.log import get_logger

logger = get_logger(__name__)

DEFAULT_CONFIG_FILE = Path("wasession.yaml")
ENV_PREFIX = "WASESSION_"


@dataclass(frozen=True)
class SessionConfig:
    session_dir: Path = Path("wa_session")
    db_name: str = "wa_session.db"
    gateway_url: str = "ws://localhost:8765"
    connect_timeout: float = 20.0
    request_timeout: float = 30.0
    pairing_timeout: float = 160.0
    # No provisioning-complete signal exists after pairing; see PairingCoordinator
    grace_period: float = 30.0
    log_level: str = "INFO"


_FLOAT_FIELDS = {"connect_timeout", "request_timeout", "pairing_timeout", "grace_period"}


def _coerce(name: str, value: Any) -> Any:
    if name == "session_dir":
        return Path(str(value)).expanduser()
    if name in _FLOAT_FIELDS:
        try:
            number = float(value)
        except (TypeError, ValueError):
            raise ConfigError(f"{name} must be a number, got {value!r}")
        if number < 0:
            raise ConfigError(f"{name} must not be negative")
        return number
    if not isinstance(value, str) or not value:
        raise ConfigError(f"{name} must be a non-empty string")
    return value


def _apply(config: SessionConfig, values: Dict[str, Any], source: str) -> SessionConfig:
    known = {f.name for f in fields(SessionConfig)}
    updates = {}
    for key, value in values.items():
        if key not in known:
            logger.warning(f"Ignoring unknown setting '{key}' from {source}")
            continue
        if value is None:
            continue
        updates[key] = _coerce(key, value)
    return replace(config, **updates)


def _read_yaml(path: Path) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ConfigError(f"cannot read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")
    return data


def _env_values() -> Dict[str, Any]:
    values = {}
    for f in fields(SessionConfig):
        raw = os.getenv(ENV_PREFIX + f.name.upper())
        if raw:
            values[f.name] = raw
    return values


def load_config(path: Optional[Path] = None, **overrides: Any) -> SessionConfig:
    """
    Build the effective configuration.

    Precedence (lowest first): defaults, YAML file, WASESSION_* environment
    variables, explicit overrides (command-line flags). ``path`` must exist
    when given; otherwise ./wasession.yaml is read if present.
    """
    config = SessionConfig()

    if path is not None:
        if not Path(path).exists():
            raise ConfigError(f"config file {path} not found")
        config = _apply(config, _read_yaml(Path(path)), str(path))
    elif DEFAULT_CONFIG_FILE.exists():
        config = _apply(config, _read_yaml(DEFAULT_CONFIG_FILE), str(DEFAULT_CONFIG_FILE))

    config = _apply(config, _env_values(), "environment")
    config = _apply(config, overrides, "command line")
    logger.debug(f"Effective config: {config}")
    return config
