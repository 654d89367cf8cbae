"""
Scenario Persistence
====================

Storage boundary for scenarios and risk-assessment snapshots.

Backends:
- InMemoryScenarioRepository: process-local dicts (default)
- JsonFileScenarioRepository: one JSON document per scenario under a
  state directory, written atomically (temp file + rename)

Every backend hands out copies, so callers must save after mutating.
Storage failures surface as PersistenceError; unknown ids as NotFoundError.
"""

from __future__ import annotations

import copy
import json
import logging
import os
import re
import threading
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any

from core.exceptions import NotFoundError, PersistenceError
from core.models import RiskAssessment, Scenario

logger = logging.getLogger(__name__)


_SAFE_ID = re.compile(r"^[A-Za-z0-9_.-]+$")


class ScenarioRepository(ABC):
    """Abstract scenario and snapshot store."""

    @abstractmethod
    def save(self, scenario: Scenario) -> None:
        """Insert or replace a scenario."""

    @abstractmethod
    def get(self, scenario_id: str) -> Scenario:
        """Fetch a scenario; raises NotFoundError when absent."""

    @abstractmethod
    def list(self) -> list[Scenario]:
        """All scenarios, oldest first."""

    @abstractmethod
    def delete(self, scenario_id: str) -> None:
        """Remove a scenario and its snapshot; raises NotFoundError when absent."""

    @abstractmethod
    def save_risk_assessment(self, assessment: RiskAssessment) -> None:
        """Replace the snapshot for ``assessment.scenario_id``."""

    @abstractmethod
    def get_risk_assessment(self, scenario_id: str) -> RiskAssessment:
        """Latest snapshot; raises NotFoundError when absent."""

    @abstractmethod
    def delete_risk_assessment(self, scenario_id: str) -> None:
        """Drop the snapshot for a scenario, if any."""

    def exists(self, scenario_id: str) -> bool:
        try:
            self.get(scenario_id)
        except NotFoundError:
            return False
        return True


class InMemoryScenarioRepository(ScenarioRepository):
    """Thread-safe in-process store."""

    def __init__(self):
        self._scenarios: dict[str, Scenario] = {}
        self._assessments: dict[str, RiskAssessment] = {}
        self._lock = threading.Lock()

    def save(self, scenario: Scenario) -> None:
        with self._lock:
            self._scenarios[scenario.id] = copy.deepcopy(scenario)

    def get(self, scenario_id: str) -> Scenario:
        with self._lock:
            scenario = self._scenarios.get(scenario_id)
        if scenario is None:
            raise NotFoundError("Scenario", scenario_id)
        return copy.deepcopy(scenario)

    def list(self) -> list[Scenario]:
        with self._lock:
            scenarios = [copy.deepcopy(s) for s in self._scenarios.values()]
        return sorted(scenarios, key=lambda s: s.created_at)

    def delete(self, scenario_id: str) -> None:
        with self._lock:
            if scenario_id not in self._scenarios:
                raise NotFoundError("Scenario", scenario_id)
            del self._scenarios[scenario_id]
            self._assessments.pop(scenario_id, None)

    def save_risk_assessment(self, assessment: RiskAssessment) -> None:
        with self._lock:
            self._assessments[assessment.scenario_id] = copy.deepcopy(assessment)

    def get_risk_assessment(self, scenario_id: str) -> RiskAssessment:
        with self._lock:
            assessment = self._assessments.get(scenario_id)
        if assessment is None:
            raise NotFoundError("Risk assessment", scenario_id)
        return copy.deepcopy(assessment)

    def delete_risk_assessment(self, scenario_id: str) -> None:
        with self._lock:
            self._assessments.pop(scenario_id, None)


class JsonFileScenarioRepository(ScenarioRepository):
    """
    File-backed store.

    Layout::

        <state_dir>/scenarios/<id>.json
        <state_dir>/risk_assessments/<id>.json
    """

    def __init__(self, state_dir: str | Path = "state"):
        self._state_dir = Path(state_dir)
        self._scenario_dir = self._state_dir / "scenarios"
        self._assessment_dir = self._state_dir / "risk_assessments"
        self._lock = threading.RLock()

        try:
            self._scenario_dir.mkdir(parents=True, exist_ok=True)
            self._assessment_dir.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise PersistenceError(f"Cannot create state directory {self._state_dir}: {e}") from e

        logger.info(f"JsonFileScenarioRepository initialized at {self._state_dir}")

    @staticmethod
    def _filename(identifier: str) -> str:
        if not _SAFE_ID.match(identifier) or identifier in (".", ".."):
            raise NotFoundError("Scenario", identifier)
        return f"{identifier}.json"

    def _write_atomic(self, path: Path, payload: dict[str, Any]) -> None:
        temp_path = path.with_suffix(".tmp")
        with self._lock:
            try:
                json_data = json.dumps(payload, indent=2, default=str)
                with open(temp_path, "w", encoding="utf-8") as f:
                    f.write(json_data)
                    f.flush()
                    os.fsync(f.fileno())
                temp_path.replace(path)
            except (OSError, TypeError, ValueError) as e:
                if temp_path.exists():
                    temp_path.unlink(missing_ok=True)
                raise PersistenceError(f"Failed to write {path}: {e}") from e

    def _read(self, path: Path) -> dict[str, Any] | None:
        if not path.exists():
            return None
        try:
            with open(path, "r", encoding="utf-8") as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise PersistenceError(f"Failed to read {path}: {e}") from e

    def save(self, scenario: Scenario) -> None:
        try:
            path = self._scenario_dir / self._filename(scenario.id)
        except NotFoundError as e:
            raise PersistenceError(f"Invalid scenario id for file storage: {scenario.id!r}") from e
        self._write_atomic(path, scenario.to_dict())
        logger.debug(f"Scenario {scenario.id} saved to {path}")

    def get(self, scenario_id: str) -> Scenario:
        data = self._read(self._scenario_dir / self._filename(scenario_id))
        if data is None:
            raise NotFoundError("Scenario", scenario_id)
        return Scenario.from_dict(data)

    def list(self) -> list[Scenario]:
        scenarios = []
        for path in sorted(self._scenario_dir.glob("*.json")):
            data = self._read(path)
            if data is not None:
                scenarios.append(Scenario.from_dict(data))
        return sorted(scenarios, key=lambda s: s.created_at)

    def delete(self, scenario_id: str) -> None:
        filename = self._filename(scenario_id)
        path = self._scenario_dir / filename
        with self._lock:
            if not path.exists():
                raise NotFoundError("Scenario", scenario_id)
            try:
                path.unlink()
                (self._assessment_dir / filename).unlink(missing_ok=True)
            except OSError as e:
                raise PersistenceError(f"Failed to delete scenario {scenario_id}: {e}") from e
        logger.debug(f"Scenario {scenario_id} deleted from {self._state_dir}")

    def save_risk_assessment(self, assessment: RiskAssessment) -> None:
        try:
            path = self._assessment_dir / self._filename(assessment.scenario_id)
        except NotFoundError as e:
            raise PersistenceError(
                f"Invalid scenario id for file storage: {assessment.scenario_id!r}"
            ) from e
        self._write_atomic(path, assessment.to_dict())

    def get_risk_assessment(self, scenario_id: str) -> RiskAssessment:
        data = self._read(self._assessment_dir / self._filename(scenario_id))
        if data is None:
            raise NotFoundError("Risk assessment", scenario_id)
        return RiskAssessment.from_dict(data)

    def delete_risk_assessment(self, scenario_id: str) -> None:
        path = self._assessment_dir / self._filename(scenario_id)
        with self._lock:
            try:
                path.unlink(missing_ok=True)
            except OSError as e:
                raise PersistenceError(f"Failed to delete risk assessment {scenario_id}: {e}") from e


def create_repository(settings: dict[str, Any] | None = None) -> ScenarioRepository:
    """Build the repository named by the ``persistence`` config section."""
    settings = settings or {}
    backend = settings.get("backend", "memory")
    if backend == "json":
        return JsonFileScenarioRepository(settings.get("state_dir", "state"))
    return InMemoryScenarioRepository()
