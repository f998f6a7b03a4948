"""User configuration (~/.xcpilot/config.json)."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any


logger = logging.getLogger("xcpilot.config")

CONFIG_DIR = Path.home() / ".xcpilot"
USER_CONFIG_FILE = CONFIG_DIR / "config.json"


@dataclass
class PipelineConfig:
    """Tunables for the build-and-run pipeline."""

    # Seconds to wait after foregrounding Simulator when no concrete device is targeted
    settle_delay: float = 5.0
    # Upper bound on polling simctl for a freshly booted device
    boot_timeout: float = 30.0
    poll_interval: float = 1.0
    use_xcbeautify: bool = True
    simulator_app: str = "Simulator"


def read_user_config() -> dict:
    """Read user config from ~/.xcpilot/config.json. Returns {} if missing or invalid."""
    if not USER_CONFIG_FILE.exists():
        return {}
    try:
        data = json.loads(USER_CONFIG_FILE.read_text())
    except (OSError, json.JSONDecodeError) as e:
        logger.warning("Failed to read config file %s: %s", USER_CONFIG_FILE, e)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config file %s: expected a JSON object", USER_CONFIG_FILE)
        return {}
    return data


def _coerce(name: str, value: Any) -> Any:
    """Convert a raw config value to the type of the matching PipelineConfig field."""
    default = getattr(PipelineConfig, name)
    if isinstance(default, bool):
        if isinstance(value, str):
            if value.lower() in ("1", "true", "yes", "on"):
                return True
            if value.lower() in ("0", "false", "no", "off"):
                return False
            raise ValueError(f"{name} must be true or false, got {value!r}")
        return bool(value)
    if isinstance(default, float):
        number = float(value)
        if number < 0:
            raise ValueError(f"{name} must not be negative, got {value!r}")
        return number
    return str(value)


def load_config() -> PipelineConfig:
    """Build a PipelineConfig from defaults overlaid with the user config file.

    Unknown keys and invalid values are ignored with a warning.
    """
    raw = read_user_config()
    known = {f.name for f in fields(PipelineConfig)}
    values: dict[str, Any] = {}
    for key, value in raw.items():
        if key not in known:
            logger.debug("Ignoring unknown config key %s", key)
            continue
        try:
            values[key] = _coerce(key, value)
        except (TypeError, ValueError) as e:
            logger.warning("Ignoring config value for %s: %s", key, e)
    return PipelineConfig(**values)


def set_config_value(key: str, value: str) -> PipelineConfig:
    """Validate and persist one key in ~/.xcpilot/config.json.

    Raises KeyError for unknown keys and ValueError for invalid values.
    """
    known = {f.name for f in fields(PipelineConfig)}
    if key not in known:
        raise KeyError(key)
    coerced = _coerce(key, value)
    CONFIG_DIR.mkdir(parents=True, exist_ok=True)
    config = read_user_config()
    config[key] = coerced
    USER_CONFIG_FILE.write_text(json.dumps(config, indent=2) + "\n")
    return load_config()


def config_as_dict(config: PipelineConfig) -> dict:
    return asdict(config)
