"""
Scenario Modeling
=================

Orchestrates a scenario run: simulate -> evaluate -> assess -> persist.

Lifecycle:
    pending -> running -> completed | failed

A completed or failed scenario may be re-run; a status never reverts to
pending. At most one run per scenario is in flight at a time.
"""

from __future__ import annotations

import logging
import threading
import uuid
from datetime import datetime, timezone
from typing import Any

from core.exceptions import PersistenceError, ScenarioConflictError
from core.logging_config import get_context_logger, get_performance_logger, timed
from core.market_simulator import MarketSimulator
from core.models import (
    MarketSimulationRequest,
    Scenario,
    ScenarioParameters,
    ScenarioResult,
    ScenarioStatus,
)
from core.persistence import InMemoryScenarioRepository, ScenarioRepository
from core.risk_assessment import RiskAssessmentService
from core.strategy_evaluator import StrategyEvaluator

logger = logging.getLogger(__name__)


class ScenarioModelingService:
    """
    Scenario orchestrator.

    Owns scenario lifecycle state and results. Distinct scenarios may run
    concurrently; a second run of the same scenario is rejected with
    ScenarioConflictError while the first is in flight.
    """

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        repository: ScenarioRepository | None = None,
        simulator: MarketSimulator | None = None,
        evaluator: StrategyEvaluator | None = None,
        risk_service: RiskAssessmentService | None = None,
    ):
        """
        Args:
            config: Engine config mapping (``simulation`` and ``risk`` sections are read)
            repository: Scenario store (default: in-memory)
            simulator: Market simulator (default: built from ``simulation`` config)
            evaluator: Strategy evaluator
            risk_service: Risk assessment service (default: shares the repository)
        """
        self._config = config or {}
        self._repository = repository or InMemoryScenarioRepository()
        self._simulator = simulator or MarketSimulator(config=self._config.get("simulation"))
        self._evaluator = evaluator or StrategyEvaluator()
        self._risk_service = risk_service or RiskAssessmentService(
            self._config.get("risk"), repository=self._repository
        )

        # Per-scenario run locks, guarded by the registry lock
        self._registry_lock = threading.Lock()
        self._run_locks: dict[str, threading.Lock] = {}

        # numpy generators are not thread-safe; serialize draws
        self._simulation_lock = threading.Lock()

        self._perf = get_performance_logger(__name__, slow_threshold_ms=5000.0)

        logger.info(f"ScenarioModelingService initialized with {type(self._repository).__name__}")

    @property
    def repository(self) -> ScenarioRepository:
        return self._repository

    @property
    def risk_service(self) -> RiskAssessmentService:
        return self._risk_service

    def _run_lock(self, scenario_id: str) -> threading.Lock:
        with self._registry_lock:
            lock = self._run_locks.get(scenario_id)
            if lock is None:
                lock = threading.Lock()
                self._run_locks[scenario_id] = lock
            return lock

    # =========================================================================
    # CRUD
    # =========================================================================

    def create_scenario(self, parameters: ScenarioParameters | dict[str, Any]) -> Scenario:
        """
        Validate parameters and store a new pending scenario.

        Raises:
            ValidationError: Parameters are malformed or inconsistent
        """
        if isinstance(parameters, dict):
            parameters = ScenarioParameters.from_dict(parameters)
        parameters.validate()

        scenario = Scenario(
            id=str(uuid.uuid4()),
            name=parameters.name,
            description=parameters.description,
            duration=parameters.duration,
            parameters=parameters,
        )
        self._repository.save(scenario)

        logger.info(f"Created scenario: {scenario.name} ({scenario.id})")
        return scenario

    def get_scenario(self, scenario_id: str) -> Scenario:
        return self._repository.get(scenario_id)

    def get_all_scenarios(self) -> list[Scenario]:
        return self._repository.list()

    def delete_scenario(self, scenario_id: str) -> None:
        """
        Delete a scenario and its risk-assessment snapshot.

        Raises:
            NotFoundError: Unknown scenario
            ScenarioConflictError: Scenario is currently running
        """
        lock = self._run_lock(scenario_id)
        if not lock.acquire(blocking=False):
            raise ScenarioConflictError(f"Scenario {scenario_id} is running and cannot be deleted")
        try:
            self._repository.delete(scenario_id)
        finally:
            lock.release()
            with self._registry_lock:
                self._run_locks.pop(scenario_id, None)

        logger.info(f"Deleted scenario: {scenario_id}")

    # =========================================================================
    # RUN
    # =========================================================================

    @timed(threshold_ms=5000.0, operation_name="run_scenario")
    def run_scenario(self, scenario_id: str) -> ScenarioResult:
        """
        Run a scenario end to end.

        Raises:
            NotFoundError: Unknown scenario
            ScenarioConflictError: A run of this scenario is already in flight
            PersistenceError: Storing the result failed (``result`` attribute
                carries the computed result; the scenario is marked failed)
        """
        scenario = self._repository.get(scenario_id)

        lock = self._run_lock(scenario_id)
        if not lock.acquire(blocking=False):
            raise ScenarioConflictError(f"Scenario {scenario_id} is already running")

        try:
            # Re-read under the lock so a concurrent delete is observed
            scenario = self._repository.get(scenario_id)
            return self._execute(scenario)
        finally:
            lock.release()

    def _execute(self, scenario: Scenario) -> ScenarioResult:
        log = get_context_logger(__name__, scenario=scenario.id)

        if scenario.status == ScenarioStatus.RUNNING:
            log.warning("Scenario was left in running state by an earlier run; restarting")

        self._transition(scenario, ScenarioStatus.RUNNING)
        scenario.error = None
        self._repository.save(scenario)
        log.info(f"Scenario running: {scenario.name}")

        try:
            result = self._compute(scenario)
        except Exception as e:
            self._mark_failed(scenario, str(e), log)
            raise

        try:
            self._risk_service.save_risk_assessment(scenario.id, result.risk_metrics)
            scenario.results = result
            self._transition(scenario, ScenarioStatus.COMPLETED)
            self._repository.save(scenario)
        except PersistenceError as e:
            self._mark_failed(scenario, f"Failed to persist result: {e}", log)
            raise PersistenceError(f"Failed to persist result of scenario {scenario.id}: {e}",
                                   result=result) from e

        log.info(
            f"Scenario completed: total_return={result.total_return:.4f}, "
            f"sharpe={result.sharpe_ratio:.3f}, var95={result.risk_metrics.var_95:.4f}"
        )
        return result

    def _compute(self, scenario: Scenario) -> ScenarioResult:
        params = scenario.parameters

        with self._perf.measure("simulate_market_conditions"):
            with self._simulation_lock:
                conditions = self._simulator.simulate_market_conditions(
                    params.market_conditions, params.duration
                )

        with self._perf.measure("evaluate_strategies"):
            evaluation = self._evaluator.evaluate(
                params.strategies, params.market_conditions, conditions
            )

        with self._perf.measure("calculate_risk_metrics"):
            metrics = self._risk_service.calculate_risk_metrics(
                evaluation.path_returns, evaluation.benchmark_returns
            )

        return ScenarioResult(
            scenario_id=scenario.id,
            total_return=evaluation.total_return,
            max_drawdown=evaluation.max_drawdown,
            sharpe_ratio=evaluation.sharpe_ratio,
            volatility=evaluation.volatility,
            win_rate=evaluation.win_rate,
            profit_factor=evaluation.profit_factor,
            risk_metrics=metrics,
            equity_curve=evaluation.equity_curve,
        )

    def _transition(self, scenario: Scenario, status: ScenarioStatus) -> None:
        logger.debug(f"Scenario {scenario.id}: {scenario.status.value} -> {status.value}")
        scenario.status = status
        scenario.updated_at = datetime.now(timezone.utc)

    def _mark_failed(self, scenario: Scenario, error: str, log) -> None:
        self._transition(scenario, ScenarioStatus.FAILED)
        scenario.error = error
        scenario.results = None
        log.error(f"Scenario failed: {error}")
        try:
            self._repository.save(scenario)
        except PersistenceError as e:
            log.error(f"Could not record failed status: {e}")
        try:
            self._risk_service.discard_risk_assessment(scenario.id)
        except PersistenceError as e:
            log.error(f"Could not drop stale risk assessment: {e}")

    # =========================================================================
    # DIRECT SIMULATION
    # =========================================================================

    def run_market_simulation(self, request: MarketSimulationRequest | dict[str, Any]) -> dict[str, Any]:
        """
        Direct price-path simulation.

        Returns:
            ``{"symbol", "prices", "parameters"}``
        """
        if isinstance(request, dict):
            request = MarketSimulationRequest.from_dict(request)

        with self._simulation_lock:
            prices = self._simulator.simulate(
                request.model,
                request.initial_price,
                request.drift,
                request.volatility,
                request.time_horizon,
                request.steps,
                jump_intensity=request.jump_intensity,
                jump_mean=request.jump_mean,
                jump_std=request.jump_std,
            )

        logger.info(
            f"Market simulation for {request.symbol or '<unnamed>'}: "
            f"model={request.model}, steps={request.steps}"
        )
        return {
            "symbol": request.symbol,
            "prices": prices,
            "parameters": request.to_dict(),
        }

    def get_status(self) -> dict[str, Any]:
        scenarios = self._repository.list()
        by_status: dict[str, int] = {}
        for s in scenarios:
            by_status[s.status.value] = by_status.get(s.status.value, 0) + 1
        return {
            "scenarios": len(scenarios),
            "by_status": by_status,
            "repository": type(self._repository).__name__,
        }
