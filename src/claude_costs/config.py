"""Configuration loader: reads optional YAML config and merges with defaults.

The loaded CostsConfig is built once at startup and passed to every
component that needs it.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass
from pathlib import Path

import yaml

from claude_costs.alerts import AlertThresholds
from claude_costs.cost import PricingTable

logger = logging.getLogger(__name__)

CONFIG_PATH = Path("~/.config/claude-costs/config.yaml")

DEFAULTS = {
    "log_dir": "~/.claude/projects",
    "max_file_size_mb": 100,
    "workers": 8,
    "alerts": {
        "enabled": True,
        "daily_cost_threshold": 10.0,
        "session_cost_threshold": 2.0,
        "token_burn_rate_threshold": 10000,  # tokens per minute
    },
    "monitoring": {
        "refresh_interval": 300,  # seconds
        "tail_lines": 50,
        "recent_activity_limit": 100,
        "burn_rate_history_limit": 20,
    },
    "filters": {
        "default_days": 30,
    },
    # model id -> {input, output, cache_write, cache_read}, merged over built-in pricing
    "pricing": {},
}

_SECTIONS = ("alerts", "monitoring", "filters")


class ConfigError(ValueError):
    """Raised when a config file cannot be merged with the defaults."""


@dataclass
class MonitoringConfig:
    refresh_interval: float
    tail_lines: int
    recent_activity_limit: int
    burn_rate_history_limit: int


@dataclass
class CostsConfig:
    log_dir: Path
    max_file_size_mb: int
    workers: int
    alerts: AlertThresholds
    monitoring: MonitoringConfig
    default_days: int
    pricing: PricingTable

    @property
    def max_file_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024


def load_config(config_path: Path | None = None) -> CostsConfig:
    """Load config from ~/.config/claude-costs/config.yaml, merged with defaults.

    If no config file exists, return defaults (don't error). If the file
    exists but cannot be merged (bad YAML, wrong types), the whole
    configuration falls back to defaults; no partial merge is kept.
    """
    if config_path is None:
        config_path = CONFIG_PATH

    config_path = config_path.expanduser()

    if not config_path.is_file():
        return _build(DEFAULTS)

    try:
        with open(config_path) as f:
            user_config = yaml.safe_load(f)
        return _build(_merge(DEFAULTS, user_config))
    except (OSError, yaml.YAMLError, ConfigError, TypeError, ValueError, KeyError) as e:
        logger.warning("Invalid config file %s, using defaults: %s", config_path.name, e)
        return _build(DEFAULTS)


def default_config() -> CostsConfig:
    return _build(DEFAULTS)


def _merge(defaults: dict, user_config) -> dict:
    """Merge known keys of ``user_config`` over ``defaults``; unknown keys are ignored."""
    merged = copy.deepcopy(defaults)
    if user_config is None:
        return merged
    if not isinstance(user_config, dict):
        raise ConfigError("top level must be a mapping")

    for key in ("log_dir", "max_file_size_mb", "workers"):
        if key in user_config:
            merged[key] = user_config[key]

    for section in _SECTIONS:
        if section not in user_config:
            continue
        values = user_config[section]
        if not isinstance(values, dict):
            raise ConfigError(f"'{section}' must be a mapping")
        for key in defaults[section]:
            if key in values:
                merged[section][key] = values[key]

    pricing = user_config.get("pricing")
    if pricing is not None:
        if not isinstance(pricing, dict):
            raise ConfigError("'pricing' must be a mapping")
        merged["pricing"] = pricing

    return merged


def _build(values: dict) -> CostsConfig:
    alerts = values["alerts"]
    monitoring = values["monitoring"]

    refresh_interval = float(monitoring["refresh_interval"])
    if refresh_interval <= 0:
        raise ConfigError("monitoring.refresh_interval must be positive")

    return CostsConfig(
        log_dir=Path(str(values["log_dir"])).expanduser(),
        max_file_size_mb=int(values["max_file_size_mb"]),
        workers=max(int(values["workers"]), 1),
        alerts=AlertThresholds(
            enabled=bool(alerts["enabled"]),
            daily_cost_threshold=float(alerts["daily_cost_threshold"]),
            session_cost_threshold=float(alerts["session_cost_threshold"]),
            token_burn_rate_threshold=float(alerts["token_burn_rate_threshold"]),
        ),
        monitoring=MonitoringConfig(
            refresh_interval=refresh_interval,
            tail_lines=max(int(monitoring["tail_lines"]), 1),
            recent_activity_limit=max(int(monitoring["recent_activity_limit"]), 1),
            burn_rate_history_limit=max(int(monitoring["burn_rate_history_limit"]), 1),
        ),
        default_days=int(values["filters"]["default_days"]),
        pricing=PricingTable().with_overrides(values["pricing"]),
    )
