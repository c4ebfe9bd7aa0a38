"""
Configuration management and loading.

Handles tracker settings read from YAML. Secrets (the encryption key)
are read from the environment instead, see `security.vault`.
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

DEFAULT_BASE_URL = "https://api.siliconflow.cn/v1"


@dataclass(frozen=True)
class UpstreamConfig:
    """Where and how to reach the balance endpoint."""
    base_url: str = DEFAULT_BASE_URL
    timeout_seconds: float = 30.0

    def __post_init__(self):
        """Validate upstream settings."""
        if not self.base_url:
            raise ValueError("base_url cannot be empty")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be > 0")


@dataclass(frozen=True)
class SchedulerConfig:
    """Adaptive sampling cadence."""
    changing_interval_minutes: float = 1.0
    stable_interval_minutes: float = 5.0
    change_window_minutes: float = 6.0
    recent_sample_limit: int = 15
    change_epsilon: float = 0.0
    throttle_seconds: float = 0.5

    def __post_init__(self):
        """Validate scheduler settings."""
        if self.changing_interval_minutes <= 0:
            raise ValueError("changing_interval_minutes must be > 0")
        if self.stable_interval_minutes < self.changing_interval_minutes:
            raise ValueError("stable_interval_minutes must be >= changing_interval_minutes")
        if self.change_window_minutes <= 0:
            raise ValueError("change_window_minutes must be > 0")
        if self.recent_sample_limit < 2:
            raise ValueError("recent_sample_limit must be >= 2")
        if self.change_epsilon < 0:
            raise ValueError("change_epsilon cannot be negative")
        if self.throttle_seconds < 0:
            raise ValueError("throttle_seconds cannot be negative")


@dataclass(frozen=True)
class EstimationConfig:
    """Burn-rate window and classification thresholds."""
    burn_window_minutes: float = 30.0
    very_fast_percent_per_hour: float = 2.0
    fast_percent_per_hour: float = 0.5
    safe_horizon_days: float = 90.0

    def __post_init__(self):
        """Validate estimation settings."""
        if self.burn_window_minutes <= 0:
            raise ValueError("burn_window_minutes must be > 0")
        if self.fast_percent_per_hour < 0:
            raise ValueError("fast_percent_per_hour cannot be negative")
        if self.very_fast_percent_per_hour <= self.fast_percent_per_hour:
            raise ValueError("very_fast_percent_per_hour must be > fast_percent_per_hour")
        if self.safe_horizon_days <= 0:
            raise ValueError("safe_horizon_days must be > 0")


@dataclass(frozen=True)
class StorageConfig:
    db_path: str = "balance_tracker.db"

    def __post_init__(self):
        if not self.db_path:
            raise ValueError("db_path cannot be empty")


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"
    log_dir: Optional[str] = None

    def __post_init__(self):
        if not isinstance(logging.getLevelName(self.level.upper()), int):
            raise ValueError(f"Unknown log level: {self.level}")


@dataclass(frozen=True)
class TrackerConfig:
    """Complete tracker configuration."""
    upstream: UpstreamConfig = field(default_factory=UpstreamConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    estimation: EstimationConfig = field(default_factory=EstimationConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


# Allowed keys and their expected types, per section
_SECTION_SCHEMAS: Dict[str, Dict[str, tuple]] = {
    "upstream": {
        "base_url": (str,),
        "timeout_seconds": (int, float),
    },
    "scheduler": {
        "changing_interval_minutes": (int, float),
        "stable_interval_minutes": (int, float),
        "change_window_minutes": (int, float),
        "recent_sample_limit": (int,),
        "change_epsilon": (int, float),
        "throttle_seconds": (int, float),
    },
    "estimation": {
        "burn_window_minutes": (int, float),
        "very_fast_percent_per_hour": (int, float),
        "fast_percent_per_hour": (int, float),
        "safe_horizon_days": (int, float),
    },
    "storage": {
        "db_path": (str,),
    },
    "logging": {
        "level": (str,),
        "log_dir": (str,),
    },
}

_SECTION_TYPES = {
    "upstream": UpstreamConfig,
    "scheduler": SchedulerConfig,
    "estimation": EstimationConfig,
    "storage": StorageConfig,
    "logging": LoggingConfig,
}


def load_tracker_config(path: Optional[str] = None) -> TrackerConfig:
    """Load and validate tracker configuration from a YAML file.

    Strict validation ensures no silent misconfigurations: a typo in a
    cadence key would otherwise fall back to a default without notice.
    Every section and every key is optional.

    Args:
        path: Path to YAML configuration file, or None for defaults

    Returns:
        Validated TrackerConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if path is None:
        return TrackerConfig()

    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Tracker config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if raw_config is None:
        return TrackerConfig()
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration root must be a dictionary")

    unknown_keys = set(raw_config.keys()) - set(_SECTION_SCHEMAS)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    sections = {
        name: _parse_section(name, raw_config[name])
        for name in _SECTION_SCHEMAS
        if name in raw_config
    }
    return TrackerConfig(**sections)


def _parse_section(name: str, data: Any):
    """Parse and validate one configuration section.

    Args:
        name: Section name, also used in error messages
        data: Raw section data

    Returns:
        The section's config dataclass

    Raises:
        ValueError: If the section is invalid
    """
    if data is None:
        return _SECTION_TYPES[name]()
    if not isinstance(data, dict):
        raise ValueError(f"'{name}' must be a dictionary")

    schema = _SECTION_SCHEMAS[name]
    unknown_keys = set(data.keys()) - set(schema)
    if unknown_keys:
        raise ValueError(f"Unknown keys in {name}: {unknown_keys}")

    values = {}
    for key, value in data.items():
        allowed_types = schema[key]
        # bool is an int subclass, reject it explicitly
        if isinstance(value, bool) or not isinstance(value, allowed_types):
            type_names = " or ".join(t.__name__ for t in allowed_types)
            raise ValueError(f"'{key}' in {name} must be {type_names}")
        if float in allowed_types:
            value = float(value)
        values[key] = value

    return _SECTION_TYPES[name](**values)
