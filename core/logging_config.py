"""
Logging Configuration Module
============================

Centralized logging for the scenario engine.

Features:
- Consistent verbosity levels across modules
- Module-specific log level overrides (from the YAML config)
- Performance logging with timing
- Scenario context injection
"""

from __future__ import annotations

import functools
import logging
import threading
import time
from collections import defaultdict
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable


# Module-specific log level defaults
MODULE_LOG_LEVELS = {
    "core.market_simulator": logging.INFO,
    "core.strategy_evaluator": logging.INFO,
    "core.risk_assessment": logging.INFO,
    "core.stress_tester": logging.INFO,
    "core.scenario_modeling": logging.INFO,
    "core.alerting": logging.INFO,
    "core.notifications": logging.INFO,
    "core.persistence": logging.INFO,
    "core.visualization": logging.INFO,
    "api.server": logging.INFO,
}


@dataclass
class LoggingConfig:
    """
    Centralized logging configuration.

    Provides consistent verbosity across the engine.
    """
    root_level: int = logging.INFO
    format_string: str = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    module_levels: dict[str, int] = field(default_factory=lambda: MODULE_LOG_LEVELS.copy())

    def apply(self) -> None:
        """Apply logging configuration to the root logger."""
        root_logger = logging.getLogger()
        root_logger.setLevel(self.root_level)

        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)

        handler = logging.StreamHandler()
        handler.setLevel(self.root_level)
        handler.setFormatter(logging.Formatter(self.format_string, self.date_format))
        root_logger.addHandler(handler)

        for module_name, level in self.module_levels.items():
            logging.getLogger(module_name).setLevel(level)

    @classmethod
    def from_settings(cls, settings: dict[str, Any]) -> LoggingConfig:
        """Build from the ``logging`` section of the engine config."""
        config = cls(root_level=_level(settings.get("level", "INFO")))
        if settings.get("format"):
            config.format_string = settings["format"]
        for module_name, level in (settings.get("module_levels") or {}).items():
            config.module_levels[module_name] = _level(level)
        return config


def _level(value: str | int) -> int:
    if isinstance(value, int):
        return value
    return logging.getLevelName(str(value).upper())


class PerformanceLogger:
    """
    Logs performance metrics for operations.

    Useful for spotting large-step simulations and long stress tests.
    """

    def __init__(self, logger: logging.Logger, slow_threshold_ms: float = 1000.0):
        self.logger = logger
        self.slow_threshold_ms = slow_threshold_ms
        self._stats: dict[str, list[float]] = defaultdict(list)
        self._lock = threading.Lock()

    @contextmanager
    def measure(self, operation_name: str):
        """
        Context manager to measure operation duration.

        Example:
            with perf_logger.measure("market_simulation"):
                conditions = simulator.simulate_market_conditions(...)
        """
        start = time.perf_counter()
        try:
            yield
        finally:
            duration_ms = (time.perf_counter() - start) * 1000

            with self._lock:
                self._stats[operation_name].append(duration_ms)

            if duration_ms > self.slow_threshold_ms:
                self.logger.warning(
                    f"Slow operation: {operation_name} took {duration_ms:.2f}ms "
                    f"(threshold: {self.slow_threshold_ms}ms)"
                )

    def get_stats(self, operation_name: str) -> dict[str, float]:
        """Get performance statistics for an operation."""
        with self._lock:
            times = list(self._stats.get(operation_name, []))

        if not times:
            return {}

        return {
            "count": len(times),
            "mean_ms": sum(times) / len(times),
            "min_ms": min(times),
            "max_ms": max(times),
        }


def timed(
    logger: logging.Logger | None = None,
    threshold_ms: float = 1000.0,
    operation_name: str | None = None,
):
    """
    Decorator to time function execution.

    Example:
        @timed(threshold_ms=500.0)
        def run_stress_test(...):
            ...
    """
    def decorator(func: Callable) -> Callable:
        log = logger or logging.getLogger(func.__module__)
        name = operation_name or func.__qualname__

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start = time.perf_counter()
            try:
                return func(*args, **kwargs)
            finally:
                duration_ms = (time.perf_counter() - start) * 1000
                if duration_ms > threshold_ms:
                    log.warning(f"Slow operation: {name} took {duration_ms:.2f}ms")
                else:
                    log.debug(f"{name} completed in {duration_ms:.2f}ms")

        return wrapper
    return decorator


class ContextLogger:
    """
    Logger with automatic context injection.

    Adds consistent context (scenario id, user id) to all messages.
    """

    def __init__(self, logger: logging.Logger, context: dict[str, Any] | None = None):
        self.logger = logger
        self.context = context or {}

    def _format_message(self, message: str) -> str:
        if not self.context:
            return message
        context_str = " | ".join(f"{k}={v}" for k, v in self.context.items())
        return f"[{context_str}] {message}"

    def info(self, message: str, *args, **kwargs):
        self.logger.info(self._format_message(message), *args, **kwargs)

    def warning(self, message: str, *args, **kwargs):
        self.logger.warning(self._format_message(message), *args, **kwargs)

    def error(self, message: str, *args, **kwargs):
        self.logger.error(self._format_message(message), *args, **kwargs)


def configure_logging(config: LoggingConfig | None = None) -> LoggingConfig:
    """Configure logging for the engine and return the applied configuration."""
    if config is None:
        config = LoggingConfig()

    config.apply()
    return config


def get_performance_logger(name: str, slow_threshold_ms: float = 1000.0) -> PerformanceLogger:
    return PerformanceLogger(logging.getLogger(name), slow_threshold_ms=slow_threshold_ms)


def get_context_logger(name: str, **context) -> ContextLogger:
    return ContextLogger(logging.getLogger(name), context)
