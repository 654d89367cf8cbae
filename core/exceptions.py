"""
Error Taxonomy
==============

Exceptions raised by the scenario engine.

- Validation errors fail fast before any simulation runs.
- Not-found errors surface immediately to the caller.
- Persistence errors come from the storage boundary.
"""

from __future__ import annotations

from typing import Any


class ScenarioLabError(Exception):
    """Base class for all engine errors."""


class ValidationError(ScenarioLabError, ValueError):
    """Malformed input (scenario parameters, alert configuration, simulation request).

    Inherits from ValueError so callers that expect ValueError on bad input
    keep working.
    """

    def __init__(self, message: str, problems: list[str] | None = None):
        super().__init__(message)
        self.problems = problems or [message]


class NotFoundError(ScenarioLabError, LookupError):
    """Operation referenced an unknown scenario, alert or snapshot."""

    def __init__(self, kind: str, identifier: str):
        super().__init__(f"{kind} not found: {identifier}")
        self.kind = kind
        self.identifier = identifier


class ScenarioConflictError(ScenarioLabError):
    """Scenario is in a state that forbids the requested operation."""


class PersistenceError(ScenarioLabError):
    """Storage boundary failed.

    When raised after a successful computation, ``result`` carries the
    computed value so it is not lost.
    """

    def __init__(self, message: str, result: Any = None):
        super().__init__(message)
        self.result = result


class ConfigValidationError(ValidationError):
    """Configuration file failed validation in strict mode."""
