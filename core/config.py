"""
Configuration
=============

YAML configuration for the scenario engine.

Features:
- Defaults for every setting (an empty file is a valid config)
- Schema-based type and range validation at load time
- Strict mode raising ConfigValidationError
- SCENARIO_LAB_CONFIG environment variable naming the config file
"""

from __future__ import annotations

import copy
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable

import yaml

from core.exceptions import ConfigValidationError

logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "SCENARIO_LAB_CONFIG"


DEFAULT_CONFIG: dict[str, Any] = {
    "logging": {
        "level": "INFO",
        "format": "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        "module_levels": {},
    },
    "simulation": {
        "seed": None,
        "steps_per_day": 24,
        "annual_drift": 0.05,
        "min_price": 0.01,
        "volume_jitter": 0.10,  # +/-10%
        "volatility_jitter": 0.05,  # +/-5%
        "days_per_year": 365,
    },
    "risk": {
        "risk_free_rate_annual": 0.02,
        "days_per_year": 365,
    },
    "stress": {
        "base_price": 100.0,
        "base_volatility": 0.2,
        "drift": -0.1,
        "time_horizon": 30.0,
        "steps": 720,
        "history_limit": 1000,
        "templates_file": None,
    },
    "alerts": {
        "file_path": None,
        "webhook_url": None,
        "webhook_timeout_seconds": 5.0,
        "history_limit": 1000,
    },
    "persistence": {
        "backend": "memory",
        "state_dir": "state",
    },
    "server": {
        "host": "127.0.0.1",
        "port": 8000,
    },
}


@dataclass
class FieldSchema:
    """Schema for a single config field."""
    path: str
    field_type: type | tuple[type, ...]
    nullable: bool = False
    min_value: float | None = None
    max_value: float | None = None
    allowed_values: list | None = None
    validator: Callable[[Any], bool] | None = None
    description: str = ""


NUMBER = (int, float)

SCHEMAS: list[FieldSchema] = [
    FieldSchema("logging.level", str,
                allowed_values=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]),
    FieldSchema("logging.format", str),
    FieldSchema("logging.module_levels", dict),
    FieldSchema("simulation.seed", int, nullable=True, min_value=0),
    FieldSchema("simulation.steps_per_day", int, min_value=1),
    FieldSchema("simulation.annual_drift", NUMBER),
    FieldSchema("simulation.min_price", NUMBER, min_value=0.0),
    FieldSchema("simulation.volume_jitter", NUMBER, min_value=0.0, max_value=1.0),
    FieldSchema("simulation.volatility_jitter", NUMBER, min_value=0.0, max_value=1.0),
    FieldSchema("simulation.days_per_year", int, min_value=1),
    FieldSchema("risk.risk_free_rate_annual", NUMBER, min_value=-1.0, max_value=1.0),
    FieldSchema("risk.days_per_year", int, min_value=1),
    FieldSchema("stress.base_price", NUMBER, min_value=0.0,
                validator=lambda v: v > 0, description="must be positive"),
    FieldSchema("stress.base_volatility", NUMBER, min_value=0.0),
    FieldSchema("stress.drift", NUMBER),
    FieldSchema("stress.time_horizon", NUMBER,
                validator=lambda v: v > 0, description="must be positive"),
    FieldSchema("stress.steps", int, min_value=1),
    FieldSchema("stress.history_limit", int, min_value=1),
    FieldSchema("stress.templates_file", str, nullable=True),
    FieldSchema("alerts.file_path", str, nullable=True),
    FieldSchema("alerts.webhook_url", str, nullable=True,
                validator=lambda v: v.startswith(("http://", "https://")),
                description="must be an http(s) URL"),
    FieldSchema("alerts.webhook_timeout_seconds", NUMBER,
                validator=lambda v: v > 0, description="must be positive"),
    FieldSchema("alerts.history_limit", int, min_value=1),
    FieldSchema("persistence.backend", str, allowed_values=["memory", "json"]),
    FieldSchema("persistence.state_dir", str),
    FieldSchema("server.host", str),
    FieldSchema("server.port", int, min_value=1, max_value=65535),
]


def _get_path(config: dict[str, Any], path: str) -> Any:
    value: Any = config
    for part in path.split("."):
        if not isinstance(value, dict):
            return None
        value = value.get(part)
    return value


def validate_config(config: dict[str, Any], schemas: list[FieldSchema] | None = None) -> list[str]:
    """Return a list of human-readable problems (empty when valid)."""
    problems = []

    for schema in schemas or SCHEMAS:
        value = _get_path(config, schema.path)

        if value is None:
            if not schema.nullable:
                problems.append(f"{schema.path}: required")
            continue

        # bool is an int subclass; reject it for numeric fields
        if isinstance(value, bool) or not isinstance(value, schema.field_type):
            expected = schema.field_type.__name__ if isinstance(schema.field_type, type) else "number"
            problems.append(f"{schema.path}: expected {expected}, got {type(value).__name__}")
            continue

        if schema.min_value is not None and value < schema.min_value:
            problems.append(f"{schema.path}: {value} below minimum {schema.min_value}")
        if schema.max_value is not None and value > schema.max_value:
            problems.append(f"{schema.path}: {value} above maximum {schema.max_value}")
        if schema.allowed_values is not None and value not in schema.allowed_values:
            problems.append(f"{schema.path}: {value!r} not in {schema.allowed_values}")
        if schema.validator is not None and not schema.validator(value):
            problems.append(f"{schema.path}: {schema.description or 'invalid value'}")

    return problems


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


@dataclass
class EngineConfig:
    """Validated engine configuration."""
    raw: dict[str, Any] = field(default_factory=lambda: copy.deepcopy(DEFAULT_CONFIG))
    source: str | None = None

    def section(self, name: str) -> dict[str, Any]:
        return dict(self.raw.get(name, {}))

    @property
    def logging(self) -> dict[str, Any]:
        return self.section("logging")

    @property
    def simulation(self) -> dict[str, Any]:
        return self.section("simulation")

    @property
    def risk(self) -> dict[str, Any]:
        return self.section("risk")

    @property
    def stress(self) -> dict[str, Any]:
        return self.section("stress")

    @property
    def alerts(self) -> dict[str, Any]:
        return self.section("alerts")

    @property
    def persistence(self) -> dict[str, Any]:
        return self.section("persistence")

    @property
    def server(self) -> dict[str, Any]:
        return self.section("server")

    @classmethod
    def from_dict(cls, overrides: dict[str, Any] | None = None, strict: bool = True,
                  source: str | None = None) -> EngineConfig:
        """
        Merge overrides over defaults and validate.

        Args:
            overrides: Partial configuration
            strict: Raise ConfigValidationError on problems (otherwise log them)
            source: Where the overrides came from, for error messages
        """
        raw = _deep_merge(DEFAULT_CONFIG, overrides or {})
        problems = validate_config(raw)
        if problems:
            where = f" in {source}" if source else ""
            message = f"Invalid configuration{where}: {'; '.join(problems)}"
            if strict:
                raise ConfigValidationError(message, problems)
            for problem in problems:
                logger.warning(f"Config problem{where}: {problem}")
        return cls(raw=raw, source=source)


def load_config(path: str | Path | None = None, strict: bool = True) -> EngineConfig:
    """
    Load configuration from a YAML file.

    Resolution order: explicit path, then $SCENARIO_LAB_CONFIG, then defaults.
    """
    if path is None:
        path = os.environ.get(CONFIG_ENV_VAR)
    if path is None:
        return EngineConfig.from_dict({}, strict=strict)

    config_path = Path(path)
    if not config_path.exists():
        raise ConfigValidationError(f"Config file not found: {config_path}")

    with open(config_path, "r") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ConfigValidationError(f"Config root must be a mapping: {config_path}")

    config = EngineConfig.from_dict(data, strict=strict, source=str(config_path))
    logger.info(f"Loaded configuration from {config_path}")
    return config
