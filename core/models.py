"""
Data Contracts
==============

Dataclasses exchanged between the simulator, strategy evaluator, risk
assessment, stress tester, orchestrator and alert evaluator.

``to_dict()`` emits the camelCase wire names used by the HTTP surface;
``from_dict()`` accepts either camelCase or snake_case keys.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from core.exceptions import ValidationError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _pick(data: dict[str, Any], camel: str, snake: str, default: Any = None) -> Any:
    """Read a key in either naming convention."""
    if camel in data:
        return data[camel]
    return data.get(snake, default)


def _parse_timestamp(value: Any) -> datetime:
    if value is None:
        return _utcnow()
    if isinstance(value, datetime):
        return value
    return datetime.fromisoformat(str(value))


def encode_float(value: float) -> float | str:
    """JSON-safe float: infinities become "Infinity" / "-Infinity"."""
    if math.isinf(value):
        return "Infinity" if value > 0 else "-Infinity"
    return value


def decode_float(value: Any) -> float:
    if isinstance(value, str):
        return float(value.replace("Infinity", "inf"))
    return float(value)


class StrategyType(str, Enum):
    """Direction of a declared position."""
    LONG = "long"
    SHORT = "short"
    NEUTRAL = "neutral"


class ScenarioStatus(str, Enum):
    """Scenario lifecycle states."""
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class StressType(str, Enum):
    """Kind of stress shock."""
    MARKET_CRASH = "market_crash"
    VOLATILITY_SPIKE = "volatility_spike"
    INTEREST_RATE_CHANGE = "interest_rate_change"
    LIQUIDITY_CRISIS = "liquidity_crisis"


class StressSeverity(str, Enum):
    """Stress severity with its shock multiplier."""
    MILD = "mild"
    MODERATE = "moderate"
    SEVERE = "severe"

    @property
    def multiplier(self) -> float:
        return {
            StressSeverity.MILD: 0.5,
            StressSeverity.MODERATE: 1.0,
            StressSeverity.SEVERE: 2.0,
        }[self]


class AlertCondition(str, Enum):
    """Threshold comparison direction."""
    ABOVE = "above"
    BELOW = "below"


class AlertSeverity(str, Enum):
    """Severity of a triggered alert."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RiskMetric(str, Enum):
    """Risk metric names an alert can watch (wire names)."""
    VAR_95 = "var95"
    VAR_99 = "var99"
    EXPECTED_SHORTFALL = "expectedShortfall"
    MAX_DRAWDOWN = "maxDrawdown"
    BETA = "beta"
    ALPHA = "alpha"

    @property
    def attribute(self) -> str:
        """Attribute name on RiskMetrics."""
        return {
            RiskMetric.VAR_95: "var_95",
            RiskMetric.VAR_99: "var_99",
            RiskMetric.EXPECTED_SHORTFALL: "expected_shortfall",
            RiskMetric.MAX_DRAWDOWN: "max_drawdown",
            RiskMetric.BETA: "beta",
            RiskMetric.ALPHA: "alpha",
        }[self]

    @classmethod
    def parse(cls, name: str | RiskMetric) -> RiskMetric:
        """Accept a wire name, a RiskMetrics attribute name, or a member."""
        if isinstance(name, RiskMetric):
            return name
        for member in cls:
            if name in (member.value, member.attribute):
                return member
        raise ValidationError(f"Unknown risk metric: {name}")


def _parse_bool(value: Any, label: str) -> bool:
    if not isinstance(value, bool):
        raise ValidationError(f"{label} must be a boolean")
    return value


def _parse_enum(enum_cls: type[Enum], value: Any, label: str) -> Any:
    try:
        return enum_cls(value)
    except ValueError as e:
        allowed = ", ".join(m.value for m in enum_cls)
        raise ValidationError(f"Invalid {label} '{value}' (expected one of: {allowed})") from e


# =============================================================================
# MARKET / STRATEGY INPUTS
# =============================================================================

@dataclass
class MarketCondition:
    """Point-in-time description of one tradable symbol."""
    symbol: str
    price: float
    volatility: float  # annualised
    volume: int
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "price": self.price,
            "volatility": self.volatility,
            "volume": self.volume,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MarketCondition:
        return cls(
            symbol=str(data["symbol"]),
            price=float(data["price"]),
            volatility=float(data.get("volatility", 0.0)),
            volume=int(data.get("volume", 0)),
            timestamp=_parse_timestamp(data.get("timestamp")),
        )


@dataclass
class TradingStrategy:
    """Declared position evaluated against a simulated path."""
    id: str
    name: str
    type: StrategyType
    symbol: str
    entry_price: float
    quantity: float
    exit_price: float | None = None
    stop_loss: float | None = None
    take_profit: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "symbol": self.symbol,
            "entryPrice": self.entry_price,
            "exitPrice": self.exit_price,
            "quantity": self.quantity,
            "stopLoss": self.stop_loss,
            "takeProfit": self.take_profit,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> TradingStrategy:
        exit_price = _pick(data, "exitPrice", "exit_price")
        stop_loss = _pick(data, "stopLoss", "stop_loss")
        take_profit = _pick(data, "takeProfit", "take_profit")
        try:
            return cls(
                id=str(data.get("id") or data.get("name", "")),
                name=str(data.get("name", "")),
                type=_parse_enum(StrategyType, data.get("type", "long"), "strategy type"),
                symbol=str(data.get("symbol", "")),
                entry_price=float(_pick(data, "entryPrice", "entry_price")),
                quantity=float(data["quantity"]),
                exit_price=float(exit_price) if exit_price is not None else None,
                stop_loss=float(stop_loss) if stop_loss is not None else None,
                take_profit=float(take_profit) if take_profit is not None else None,
            )
        except ValidationError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed strategy definition: {e}") from e


@dataclass
class ScenarioParameters:
    """Input bundle for a scenario run."""
    name: str
    description: str
    duration: int  # days
    market_conditions: list[MarketCondition] = field(default_factory=list)
    strategies: list[TradingStrategy] = field(default_factory=list)

    def validation_problems(self) -> list[str]:
        """Collect every validation problem instead of stopping at the first."""
        problems = []

        if not isinstance(self.duration, int) or isinstance(self.duration, bool) or self.duration <= 0:
            problems.append(f"duration must be a positive integer number of days, got {self.duration!r}")

        if not self.market_conditions:
            problems.append("at least one market condition is required")

        symbols = set()
        for condition in self.market_conditions:
            if not condition.symbol:
                problems.append("market condition without symbol")
            if condition.symbol in symbols:
                problems.append(f"duplicate market condition for symbol {condition.symbol}")
            symbols.add(condition.symbol)
            if not condition.price > 0:
                problems.append(f"{condition.symbol}: price must be positive")
            if condition.volatility < 0:
                problems.append(f"{condition.symbol}: volatility must be non-negative")
            if condition.volume < 0:
                problems.append(f"{condition.symbol}: volume must be non-negative")

        for strategy in self.strategies:
            label = strategy.id or strategy.name
            if strategy.symbol not in symbols:
                problems.append(
                    f"strategy {label} references symbol '{strategy.symbol}' "
                    f"absent from market conditions"
                )
            if not strategy.entry_price > 0:
                problems.append(f"strategy {label}: entry price must be positive")
            if not strategy.quantity > 0:
                problems.append(f"strategy {label}: quantity must be positive")
            if strategy.exit_price is not None and strategy.exit_price < 0:
                problems.append(f"strategy {label}: exit price must be non-negative")

        return problems

    def validate(self) -> None:
        problems = self.validation_problems()
        if problems:
            raise ValidationError(
                f"Invalid scenario parameters: {'; '.join(problems)}", problems
            )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "duration": self.duration,
            "marketConditions": [c.to_dict() for c in self.market_conditions],
            "strategies": [s.to_dict() for s in self.strategies],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScenarioParameters:
        try:
            duration = data["duration"]
            if isinstance(duration, float) and duration.is_integer():
                duration = int(duration)
            return cls(
                name=str(data["name"]),
                description=str(data.get("description", "")),
                duration=duration,
                market_conditions=[
                    MarketCondition.from_dict(c)
                    for c in _pick(data, "marketConditions", "market_conditions", [])
                ],
                strategies=[TradingStrategy.from_dict(s) for s in data.get("strategies", [])],
            )
        except (KeyError, TypeError, ValueError) as e:
            if isinstance(e, ValidationError):
                raise
            raise ValidationError(f"Malformed scenario parameters: {e}") from e


@dataclass
class MarketSimulationRequest:
    """Direct single-symbol price-path request."""
    symbol: str
    initial_price: float
    drift: float
    volatility: float
    time_horizon: float
    steps: int
    model: str = "gbm"
    jump_intensity: float | None = None
    jump_mean: float | None = None
    jump_std: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "symbol": self.symbol,
            "initialPrice": self.initial_price,
            "drift": self.drift,
            "volatility": self.volatility,
            "timeHorizon": self.time_horizon,
            "steps": self.steps,
            "model": self.model,
            "jumpIntensity": self.jump_intensity,
            "jumpMean": self.jump_mean,
            "jumpStd": self.jump_std,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> MarketSimulationRequest:
        def optional(camel: str, snake: str) -> float | None:
            value = _pick(data, camel, snake)
            return float(value) if value is not None else None

        try:
            steps = data["steps"]
            if isinstance(steps, float) and steps.is_integer():
                steps = int(steps)
            return cls(
                symbol=str(data.get("symbol", "")),
                initial_price=float(_pick(data, "initialPrice", "initial_price")),
                drift=float(data.get("drift", 0.0)),
                volatility=float(data["volatility"]),
                time_horizon=float(_pick(data, "timeHorizon", "time_horizon")),
                steps=steps,
                model=str(data.get("model") or "gbm"),
                jump_intensity=optional("jumpIntensity", "jump_intensity"),
                jump_mean=optional("jumpMean", "jump_mean"),
                jump_std=optional("jumpStd", "jump_std"),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed market simulation request: {e}") from e


# =============================================================================
# OUTPUTS
# =============================================================================

@dataclass
class RiskMetrics:
    """Risk metrics of a return series. Loss figures are positive magnitudes."""
    var_95: float
    var_99: float
    expected_shortfall: float
    max_drawdown: float
    beta: float
    alpha: float

    def get(self, metric: RiskMetric | str) -> float:
        return getattr(self, RiskMetric.parse(metric).attribute)

    def to_dict(self) -> dict[str, Any]:
        return {metric.value: self.get(metric) for metric in RiskMetric}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RiskMetrics:
        return cls(**{
            metric.attribute: float(_pick(data, metric.value, metric.attribute, 0.0))
            for metric in RiskMetric
        })

    @classmethod
    def zero(cls) -> RiskMetrics:
        return cls(0.0, 0.0, 0.0, 0.0, 0.0, 0.0)


@dataclass
class ScenarioResult:
    """Outcome of one successful scenario run."""
    scenario_id: str
    total_return: float
    max_drawdown: float
    sharpe_ratio: float
    volatility: float
    win_rate: float
    profit_factor: float  # inf when no strategy lost
    risk_metrics: RiskMetrics
    equity_curve: list[float] = field(default_factory=list)
    completed_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scenarioId": self.scenario_id,
            "totalReturn": self.total_return,
            "maxDrawdown": self.max_drawdown,
            "sharpeRatio": self.sharpe_ratio,
            "volatility": self.volatility,
            "winRate": self.win_rate,
            "profitFactor": encode_float(self.profit_factor),
            "riskMetrics": self.risk_metrics.to_dict(),
            "equityCurve": list(self.equity_curve),
            "completedAt": self.completed_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScenarioResult:
        return cls(
            scenario_id=str(_pick(data, "scenarioId", "scenario_id")),
            total_return=float(_pick(data, "totalReturn", "total_return")),
            max_drawdown=float(_pick(data, "maxDrawdown", "max_drawdown")),
            sharpe_ratio=float(_pick(data, "sharpeRatio", "sharpe_ratio")),
            volatility=float(data["volatility"]),
            win_rate=float(_pick(data, "winRate", "win_rate")),
            profit_factor=decode_float(_pick(data, "profitFactor", "profit_factor")),
            risk_metrics=RiskMetrics.from_dict(_pick(data, "riskMetrics", "risk_metrics")),
            equity_curve=[float(v) for v in _pick(data, "equityCurve", "equity_curve", [])],
            completed_at=_parse_timestamp(_pick(data, "completedAt", "completed_at")),
        )


@dataclass
class Scenario:
    """Persisted scenario record owned by the orchestrator."""
    id: str
    name: str
    description: str
    duration: int
    parameters: ScenarioParameters
    status: ScenarioStatus = ScenarioStatus.PENDING
    results: ScenarioResult | None = None
    error: str | None = None
    created_at: datetime = field(default_factory=_utcnow)
    updated_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "duration": self.duration,
            "parameters": self.parameters.to_dict(),
            "status": self.status.value,
            "results": self.results.to_dict() if self.results else None,
            "error": self.error,
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Scenario:
        results = data.get("results")
        return cls(
            id=str(data["id"]),
            name=str(data["name"]),
            description=str(data.get("description", "")),
            duration=int(data["duration"]),
            parameters=ScenarioParameters.from_dict(data["parameters"]),
            status=ScenarioStatus(data.get("status", "pending")),
            results=ScenarioResult.from_dict(results) if results else None,
            error=data.get("error"),
            created_at=_parse_timestamp(_pick(data, "createdAt", "created_at")),
            updated_at=_parse_timestamp(_pick(data, "updatedAt", "updated_at")),
        )


@dataclass
class RiskAssessment:
    """Risk-metrics snapshot keyed by scenario id."""
    scenario_id: str
    metrics: RiskMetrics
    calculated_at: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scenarioId": self.scenario_id,
            **self.metrics.to_dict(),
            "calculatedAt": self.calculated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RiskAssessment:
        return cls(
            scenario_id=str(_pick(data, "scenarioId", "scenario_id")),
            metrics=RiskMetrics.from_dict(data),
            calculated_at=_parse_timestamp(_pick(data, "calculatedAt", "calculated_at")),
        )


# =============================================================================
# STRESS TESTING
# =============================================================================

@dataclass
class StressTestScenario:
    """Definition of a stress shock."""
    name: str
    type: StressType
    severity: StressSeverity
    parameters: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "type": self.type.value,
            "severity": self.severity.value,
            "parameters": dict(self.parameters),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StressTestScenario:
        try:
            return cls(
                name=str(data.get("name", "Custom Stress Test")),
                type=_parse_enum(StressType, data.get("type"), "stress type"),
                severity=_parse_enum(StressSeverity, data.get("severity", "moderate"), "severity"),
                parameters={k: float(v) for k, v in (data.get("parameters") or {}).items()},
            )
        except ValidationError:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise ValidationError(f"Malformed stress scenario: {e}") from e


@dataclass
class StressTestResult:
    """Tail impact of one stress scenario."""
    scenario_id: str
    stress_scenario: StressTestScenario
    total_return: float
    max_loss: float
    risk_metrics: RiskMetrics
    recovery_time: int
    stress_impact_score: float
    timestamp: datetime = field(default_factory=_utcnow)

    def to_dict(self) -> dict[str, Any]:
        return {
            "scenarioId": self.scenario_id,
            "stressScenario": self.stress_scenario.to_dict(),
            "results": {
                "totalReturn": self.total_return,
                "maxLoss": self.max_loss,
                "riskMetrics": self.risk_metrics.to_dict(),
                "recoveryTime": self.recovery_time,
                "stressImpactScore": self.stress_impact_score,
            },
            "timestamp": self.timestamp.isoformat(),
        }


# =============================================================================
# ALERTS
# =============================================================================

@dataclass
class AlertConfiguration:
    """User-defined threshold on one risk metric."""
    id: str
    name: str
    risk_metric: RiskMetric
    threshold: float
    condition: AlertCondition
    enabled: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "riskMetric": self.risk_metric.value,
            "threshold": self.threshold,
            "condition": self.condition.value,
            "enabled": self.enabled,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AlertConfiguration:
        try:
            return cls(
                id=str(data["id"]),
                name=str(data.get("name", data["id"])),
                risk_metric=RiskMetric.parse(_pick(data, "riskMetric", "risk_metric")),
                threshold=float(data["threshold"]),
                condition=_parse_enum(AlertCondition, data.get("condition"), "alert condition"),
                enabled=_parse_bool(data.get("enabled", True), "enabled"),
            )
        except ValidationError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed alert configuration: {e}") from e


@dataclass
class TriggeredAlert:
    """Record emitted when an alert threshold is breached."""
    alert_id: str
    alert_name: str
    user_id: str
    risk_metric: RiskMetric
    current_value: float
    threshold: float
    condition: AlertCondition
    severity: AlertSeverity
    triggered_at: datetime = field(default_factory=_utcnow)

    @property
    def message(self) -> str:
        return (
            f"{self.alert_name} - {self.risk_metric.value}: {self.current_value:.6g} "
            f"{self.condition.value} {self.threshold:.6g}"
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "alertId": self.alert_id,
            "alertName": self.alert_name,
            "userId": self.user_id,
            "riskMetric": self.risk_metric.value,
            "currentValue": self.current_value,
            "threshold": self.threshold,
            "condition": self.condition.value,
            "severity": self.severity.value,
            "triggeredAt": self.triggered_at.isoformat(),
        }
