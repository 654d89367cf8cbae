"""
Scenario Lab - Core Module
==========================

Scenario modeling and risk-assessment engine for hypothetical trading
strategies under simulated market conditions.
"""

from core.models import (
    MarketCondition,
    TradingStrategy,
    ScenarioParameters,
    Scenario,
    ScenarioResult,
    ScenarioStatus,
    RiskMetrics,
    RiskMetric,
    StressTestScenario,
    StressTestResult,
    AlertConfiguration,
    TriggeredAlert,
)
from core.exceptions import (
    ScenarioLabError,
    ValidationError,
    NotFoundError,
    ScenarioConflictError,
    PersistenceError,
    ConfigValidationError,
)
from core.random_source import RandomSource, NumpyRandomSource, SequenceRandomSource
from core.market_simulator import MarketSimulator
from core.strategy_evaluator import StrategyEvaluator
from core.risk_assessment import RiskAssessmentService, calculate_risk_metrics
from core.stress_tester import StressTester
from core.scenario_modeling import ScenarioModelingService
from core.alerting import AlertService, InMemoryAlertRepository
from core.notifications import NotificationManager

__all__ = [
    # Models
    "MarketCondition",
    "TradingStrategy",
    "ScenarioParameters",
    "Scenario",
    "ScenarioResult",
    "ScenarioStatus",
    "RiskMetrics",
    "RiskMetric",
    "StressTestScenario",
    "StressTestResult",
    "AlertConfiguration",
    "TriggeredAlert",
    # Errors
    "ScenarioLabError",
    "ValidationError",
    "NotFoundError",
    "ScenarioConflictError",
    "PersistenceError",
    "ConfigValidationError",
    # Components
    "RandomSource",
    "NumpyRandomSource",
    "SequenceRandomSource",
    "MarketSimulator",
    "StrategyEvaluator",
    "RiskAssessmentService",
    "calculate_risk_metrics",
    "StressTester",
    "ScenarioModelingService",
    "AlertService",
    "InMemoryAlertRepository",
    "NotificationManager",
]
