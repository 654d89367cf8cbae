"""
Visualization Payloads
======================

Read-only chart data derived from a completed ScenarioResult:
- Time series: portfolio value (from the equity curve) and drawdown %
- Normal return-density curve
- Headline performance metrics with benchmarks
- Chart configuration (line charts for portfolio, drawdown, distribution)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

import numpy as np
from scipy import stats

from core.models import ScenarioResult

logger = logging.getLogger(__name__)


DEFAULT_PORTFOLIO_VALUE = 100_000.0
DISTRIBUTION_MEAN = 0.001
DISTRIBUTION_STD = 0.02  # used when the result reports zero volatility
DISTRIBUTION_GRID = np.round(np.arange(-100, 101) * 0.001, 3)  # -10% .. +10%


@dataclass
class TimeSeriesPoint:
    timestamp: datetime
    value: float
    metric: str

    def to_dict(self) -> dict[str, Any]:
        return {"timestamp": self.timestamp.isoformat(), "value": self.value, "metric": self.metric}


@dataclass
class DistributionPoint:
    value: float
    probability: float

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "probability": self.probability}


@dataclass
class PerformanceMetric:
    name: str
    value: float
    benchmark: float | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"name": self.name, "value": self.value}
        if self.benchmark is not None:
            data["benchmark"] = self.benchmark
        return data


@dataclass
class VisualizationData:
    scenario_id: str
    time_series: list[TimeSeriesPoint] = field(default_factory=list)
    risk_distribution: list[DistributionPoint] = field(default_factory=list)
    performance_metrics: list[PerformanceMetric] = field(default_factory=list)

    def series(self, metric: str) -> list[TimeSeriesPoint]:
        return [p for p in self.time_series if p.metric == metric]

    def to_dict(self) -> dict[str, Any]:
        return {
            "scenarioId": self.scenario_id,
            "timeSeries": [p.to_dict() for p in self.time_series],
            "riskDistribution": [p.to_dict() for p in self.risk_distribution],
            "performanceMetrics": [m.to_dict() for m in self.performance_metrics],
        }


class VisualizationService:
    """Builds chart payloads; never mutates the result."""

    def __init__(self, initial_value: float = DEFAULT_PORTFOLIO_VALUE):
        self._initial_value = initial_value

    def generate_visualization_data(
        self,
        scenario_id: str,
        result: ScenarioResult,
        start_time: datetime | None = None,
    ) -> VisualizationData:
        logger.info(f"Generating visualization data for scenario: {scenario_id}")
        return VisualizationData(
            scenario_id=scenario_id,
            time_series=self.generate_time_series(result, start_time),
            risk_distribution=self.generate_risk_distribution(result),
            performance_metrics=self.generate_performance_metrics(result),
        )

    def generate_time_series(
        self,
        result: ScenarioResult,
        start_time: datetime | None = None,
    ) -> list[TimeSeriesPoint]:
        """
        Hourly portfolio value and drawdown %.

        Portfolio value is ``initial_value * (1 + cumulative return)``; the
        drawdown peak starts at the initial value.
        """
        curve = result.equity_curve
        start = start_time or (result.completed_at - timedelta(hours=len(curve)))

        values = [self._initial_value * (1 + r) for r in curve]
        timestamps = [start + timedelta(hours=i + 1) for i in range(len(curve))]

        series = [
            TimeSeriesPoint(ts, float(v), "portfolio_value")
            for ts, v in zip(timestamps, values)
        ]

        peak = self._initial_value
        for ts, v in zip(timestamps, values):
            peak = max(peak, v)
            drawdown = (peak - v) / peak * 100 if peak > 0 else 0.0
            series.append(TimeSeriesPoint(ts, float(drawdown), "drawdown"))

        return series

    def generate_risk_distribution(self, result: ScenarioResult) -> list[DistributionPoint]:
        """Normal density over returns -10%..+10% in 0.1% steps."""
        std = result.volatility if result.volatility > 0 else DISTRIBUTION_STD
        density = stats.norm.pdf(DISTRIBUTION_GRID, loc=DISTRIBUTION_MEAN, scale=std)
        return [
            DistributionPoint(float(x), float(p))
            for x, p in zip(DISTRIBUTION_GRID, density)
        ]

    def generate_performance_metrics(self, result: ScenarioResult) -> list[PerformanceMetric]:
        return [
            PerformanceMetric("Total Return", result.total_return * 100, 8.0),
            PerformanceMetric("Sharpe Ratio", result.sharpe_ratio, 1.0),
            PerformanceMetric("Max Drawdown", result.max_drawdown * 100, 10.0),
            PerformanceMetric("Win Rate", result.win_rate * 100, 55.0),
            PerformanceMetric("Volatility", result.volatility * 100, 15.0),
            PerformanceMetric("VaR 95%", result.risk_metrics.var_95 * 100),
            PerformanceMetric("Beta", result.risk_metrics.beta, 1.0),
        ]

    def generate_chart_config(self, data: VisualizationData) -> dict[str, Any]:
        portfolio = data.series("portfolio_value")
        drawdown = data.series("drawdown")

        return {
            "portfolioChart": {
                "type": "line",
                "data": {
                    "labels": [p.timestamp.isoformat() for p in portfolio],
                    "datasets": [{
                        "label": "Portfolio Value",
                        "data": [p.value for p in portfolio],
                        "borderColor": "rgb(75, 192, 192)",
                        "tension": 0.1,
                    }],
                },
                "options": {
                    "responsive": True,
                    "scales": {
                        "y": {"beginAtZero": False, "title": {"display": True, "text": "Portfolio Value ($)"}},
                        "x": {"title": {"display": True, "text": "Time"}},
                    },
                },
            },
            "drawdownChart": {
                "type": "line",
                "data": {
                    "labels": [p.timestamp.isoformat() for p in drawdown],
                    "datasets": [{
                        "label": "Drawdown %",
                        # plotted below the axis
                        "data": [-p.value for p in drawdown],
                        "borderColor": "rgb(255, 99, 132)",
                        "backgroundColor": "rgba(255, 99, 132, 0.2)",
                        "fill": True,
                    }],
                },
                "options": {
                    "responsive": True,
                    "scales": {"y": {"title": {"display": True, "text": "Drawdown (%)"}}},
                },
            },
            "riskDistribution": {
                "type": "line",
                "data": {
                    "labels": [f"{p.value * 100:.1f}" for p in data.risk_distribution],
                    "datasets": [{
                        "label": "Return Distribution",
                        "data": [p.probability for p in data.risk_distribution],
                        "borderColor": "rgb(153, 102, 255)",
                        "backgroundColor": "rgba(153, 102, 255, 0.2)",
                        "fill": True,
                    }],
                },
                "options": {
                    "responsive": True,
                    "scales": {
                        "x": {"title": {"display": True, "text": "Return (%)"}},
                        "y": {"title": {"display": True, "text": "Probability Density"}},
                    },
                },
            },
        }
