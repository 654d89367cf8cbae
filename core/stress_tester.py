"""
Stress Testing Module
=====================

Tail-behaviour analysis under shocked market regimes.

A stress scenario shocks a reference price/volatility pair according to its
type and severity, simulates a GBM path with negative drift from the
shocked state, and scores the resulting return series.

Supported shocks:
- market_crash: price down, volatility up
- volatility_spike: volatility up
- interest_rate_change: price down through a simplified rate sensitivity
- liquidity_crisis: volatility up

Additional shock functions can be registered per type.
"""

from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Callable

import numpy as np
import yaml

from core.exceptions import ValidationError
from core.logging_config import timed
from core.market_simulator import MarketSimulator
from core.models import (
    RiskMetrics,
    StressSeverity,
    StressTestResult,
    StressTestScenario,
    StressType,
)
from core.risk_assessment import RiskAssessmentService

logger = logging.getLogger(__name__)


# (price, volatility, severity multiplier, scenario parameters) -> (price, volatility)
ShockFunction = Callable[[float, float, float, dict[str, float]], tuple[float, float]]


def _market_crash(price: float, volatility: float, m: float, params: dict[str, float]) -> tuple[float, float]:
    return price * (1 - m * 0.3), volatility * (1 + m)


def _volatility_spike(price: float, volatility: float, m: float, params: dict[str, float]) -> tuple[float, float]:
    return price, volatility * (1 + m * 2)


def _interest_rate_change(price: float, volatility: float, m: float, params: dict[str, float]) -> tuple[float, float]:
    rate_change = m * 0.02
    # Simplified duration-style sensitivity of 10
    return price * (1 - rate_change * 10), volatility


def _liquidity_crisis(price: float, volatility: float, m: float, params: dict[str, float]) -> tuple[float, float]:
    return price, volatility * (1 + m * 1.5)


BUILTIN_SHOCKS: dict[StressType, ShockFunction] = {
    StressType.MARKET_CRASH: _market_crash,
    StressType.VOLATILITY_SPIKE: _volatility_spike,
    StressType.INTEREST_RATE_CHANGE: _interest_rate_change,
    StressType.LIQUIDITY_CRISIS: _liquidity_crisis,
}


# =============================================================================
# TEMPLATE CATALOGUE
# =============================================================================

STRESS_TEST_TEMPLATES: list[StressTestScenario] = [
    StressTestScenario(
        name="2008 Financial Crisis",
        type=StressType.MARKET_CRASH,
        severity=StressSeverity.SEVERE,
        parameters={"marketDrop": 0.4, "volatilityIncrease": 2.0, "duration": 180},
    ),
    StressTestScenario(
        name="COVID-19 Market Crash",
        type=StressType.MARKET_CRASH,
        severity=StressSeverity.SEVERE,
        parameters={"marketDrop": 0.35, "volatilityIncrease": 3.0, "duration": 60},
    ),
    StressTestScenario(
        name="Interest Rate Shock",
        type=StressType.INTEREST_RATE_CHANGE,
        severity=StressSeverity.MODERATE,
        parameters={"rateChange": 0.03, "duration": 365},
    ),
    StressTestScenario(
        name="Flash Crash",
        type=StressType.LIQUIDITY_CRISIS,
        severity=StressSeverity.SEVERE,
        parameters={"liquidityDrop": 0.8, "duration": 1},
    ),
    StressTestScenario(
        name="Volatility Spike",
        type=StressType.VOLATILITY_SPIKE,
        severity=StressSeverity.MODERATE,
        parameters={"volatilityMultiplier": 2.5, "duration": 30},
    ),
]


def calculate_recovery_time(returns: list[float]) -> int:
    """
    Steps until the cumulative return is back at or above zero after a dip.

    Trough tracking restarts on every new minimum. Returns ``len(returns)``
    when the series never dips or never recovers.
    """
    cumulative = 0.0
    minimum = 0.0
    for i, r in enumerate(returns):
        cumulative += r
        if cumulative < minimum:
            minimum = cumulative
        elif minimum < 0 and cumulative >= 0:
            return i
    return len(returns)


def calculate_stress_impact_score(total_return: float, max_loss: float, metrics: RiskMetrics) -> float:
    """Composite 0-100 style score; lower means a harsher impact."""
    return_component = max(0.0, 50 + total_return * 100)
    loss_component = max(0.0, 50 + max_loss * 100)
    var_component = max(0.0, 50 - metrics.var_95 * 100)
    return (return_component + loss_component + var_component) / 3


class StressTester:
    """
    Stress testing engine.

    Features:
    - Built-in shocks for the four stress types
    - Pluggable extra shock functions per type
    - Template catalogue (built-in and file-loaded)
    - Bounded result history and result callbacks
    """

    def __init__(
        self,
        config: dict[str, Any] | None = None,
        simulator: MarketSimulator | None = None,
        risk_service: RiskAssessmentService | None = None,
        repository: Any = None,
    ):
        """
        Initialize stress tester.

        Args:
            config: ``stress`` section of the engine config:
                - base_price: Reference price before the shock (default: 100)
                - base_volatility: Reference volatility (default: 0.2)
                - drift: GBM drift during stress (default: -0.1)
                - time_horizon: Simulated horizon (default: 30)
                - steps: Path steps (default: 720)
                - history_limit: Results kept in memory (default: 1000)
                - templates_file: Extra templates loaded at startup
            simulator: Path generator (seeded for reproducible tests)
            risk_service: Risk metric calculator
            repository: ScenarioRepository; when given, unknown scenario ids are rejected
        """
        self._config = config or {}
        self._base_price = self._config.get("base_price", 100.0)
        self._base_volatility = self._config.get("base_volatility", 0.2)
        self._drift = self._config.get("drift", -0.1)
        self._time_horizon = self._config.get("time_horizon", 30.0)
        self._steps = self._config.get("steps", 720)
        self._history_limit = self._config.get("history_limit", 1000)

        self._simulator = simulator or MarketSimulator()
        self._risk_service = risk_service or RiskAssessmentService()
        self._repository = repository

        self._extra_shocks: dict[StressType, list[ShockFunction]] = {}
        self._custom_templates: list[StressTestScenario] = []

        self._results_history: list[StressTestResult] = []
        self._result_callbacks: list[Callable[[StressTestResult], None]] = []
        self._lock = threading.Lock()

        templates_file = self._config.get("templates_file")
        if templates_file:
            self.load_templates_from_file(templates_file)

        logger.info(
            f"StressTester initialized (base_price={self._base_price}, "
            f"base_volatility={self._base_volatility}, steps={self._steps})"
        )

    def register_shock(self, stress_type: StressType | str, shock: ShockFunction) -> None:
        """Register an additional shock applied after the built-in one."""
        stress_type = StressType(stress_type)
        self._extra_shocks.setdefault(stress_type, []).append(shock)
        logger.info(f"Registered extra shock for {stress_type.value}")

    def register_callback(self, callback: Callable[[StressTestResult], None]) -> None:
        """Register callback for stress test results."""
        self._result_callbacks.append(callback)

    def apply_shock(self, stress_scenario: StressTestScenario) -> tuple[float, float]:
        """Shocked (price, volatility) for a stress scenario."""
        multiplier = stress_scenario.severity.multiplier
        params = stress_scenario.parameters

        price, volatility = BUILTIN_SHOCKS[stress_scenario.type](
            self._base_price, self._base_volatility, multiplier, params
        )
        for shock in self._extra_shocks.get(stress_scenario.type, []):
            price, volatility = shock(price, volatility, multiplier, params)

        if not price > 0:
            raise ValidationError(
                f"Stress shock for '{stress_scenario.name}' produced non-positive price {price}"
            )
        return price, max(0.0, volatility)

    @timed(threshold_ms=2000.0, operation_name="run_stress_test")
    def run_stress_test(
        self,
        scenario_id: str,
        stress_scenario: StressTestScenario | dict[str, Any],
    ) -> StressTestResult:
        """
        Run one stress scenario.

        Args:
            scenario_id: Scenario the test is recorded against
            stress_scenario: Scenario definition (dataclass or wire dict)

        Returns:
            StressTestResult

        Raises:
            NotFoundError: Repository configured and scenario unknown
            ValidationError: Malformed stress scenario
        """
        if isinstance(stress_scenario, dict):
            stress_scenario = StressTestScenario.from_dict(stress_scenario)

        if self._repository is not None:
            self._repository.get(scenario_id)

        logger.info(f"Running stress test: {stress_scenario.name} for scenario: {scenario_id}")

        price, volatility = self.apply_shock(stress_scenario)
        prices = np.asarray(self._simulator.simulate_geometric_brownian_motion(
            price, self._drift, volatility, self._time_horizon, self._steps
        ))

        returns = [float(r) for r in prices[1:] / prices[:-1] - 1.0]
        cumulative = np.cumsum(returns)
        total_return = float(cumulative[-1])
        max_loss = float(np.min(cumulative))

        metrics = self._risk_service.calculate_risk_metrics(returns, returns)

        result = StressTestResult(
            scenario_id=scenario_id,
            stress_scenario=stress_scenario,
            total_return=total_return,
            max_loss=max_loss,
            risk_metrics=metrics,
            recovery_time=calculate_recovery_time(returns),
            stress_impact_score=calculate_stress_impact_score(total_return, max_loss, metrics),
        )

        with self._lock:
            self._results_history.append(result)
            if len(self._results_history) > self._history_limit:
                self._results_history = self._results_history[-self._history_limit:]

        for callback in self._result_callbacks:
            try:
                callback(result)
            except Exception as e:
                logger.error(f"Stress test callback error: {e}")

        logger.info(
            f"Stress test '{stress_scenario.name}' ({stress_scenario.severity.value}): "
            f"total_return={total_return:.4f}, max_loss={max_loss:.4f}, "
            f"impact_score={result.stress_impact_score:.1f}"
        )
        return result

    def run_templates(self, scenario_id: str) -> list[StressTestResult]:
        """Run every known template, built-in and loaded, against a scenario."""
        return [self.run_stress_test(scenario_id, t) for t in self.get_all_templates()]

    def get_stress_test_templates(self) -> list[StressTestScenario]:
        """The fixed built-in catalogue of five named templates."""
        return list(STRESS_TEST_TEMPLATES)

    def get_custom_templates(self) -> list[StressTestScenario]:
        """Templates loaded from files, in load order."""
        return list(self._custom_templates)

    def get_all_templates(self) -> list[StressTestScenario]:
        return self.get_stress_test_templates() + self.get_custom_templates()

    def load_templates_from_file(self, filepath: str | Path) -> int:
        """
        Load additional templates from a YAML or JSON file.

        The file holds either a list of templates or a mapping with a
        ``templates`` list.

        Returns:
            Number of templates loaded
        """
        path = Path(filepath)
        if not path.exists():
            logger.error(f"Templates file not found: {filepath}")
            return 0

        try:
            with open(path, "r") as f:
                if path.suffix in (".yaml", ".yml"):
                    data = yaml.safe_load(f)
                else:
                    data = json.load(f)
        except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
            logger.error(f"Failed to load templates from {filepath}: {e}")
            return 0

        if isinstance(data, dict):
            entries = data.get("templates", [])
        elif isinstance(data, list):
            entries = data
        else:
            entries = []

        loaded = 0
        for entry in entries:
            try:
                template = StressTestScenario.from_dict(entry)
            except (ValidationError, AttributeError, TypeError, ValueError) as e:
                logger.error(f"Failed to parse stress template: {e}")
                continue
            self._custom_templates.append(template)
            loaded += 1

        logger.info(f"Loaded {loaded} stress templates from {filepath}")
        return loaded

    def get_recent_results(self, scenario_id: str | None = None, limit: int = 100) -> list[StressTestResult]:
        with self._lock:
            results = list(self._results_history)
        if scenario_id:
            results = [r for r in results if r.scenario_id == scenario_id]
        return results[-limit:]

    def get_worst_result(self, scenario_id: str | None = None) -> StressTestResult | None:
        """Result with the most negative max_loss."""
        results = self.get_recent_results(scenario_id, limit=self._history_limit)
        if not results:
            return None
        return min(results, key=lambda r: r.max_loss)

    def get_status(self) -> dict[str, Any]:
        """Get tester status for monitoring."""
        return {
            "templates_available": len(self.get_all_templates()),
            "builtin_templates": len(STRESS_TEST_TEMPLATES),
            "custom_templates": len(self._custom_templates),
            "results_in_history": len(self._results_history),
            "extra_shocks": {t.value: len(s) for t, s in self._extra_shocks.items()},
        }
