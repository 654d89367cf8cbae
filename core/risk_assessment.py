"""
Risk Assessment
===============

Historical-simulation risk metrics over a supplied return series:
- Value at Risk (95% / 99%)
- Expected Shortfall (95%)
- Maximum Drawdown (absolute, over the cumulative sum of returns)
- Beta / Alpha against a benchmark return series

The calculations are pure: the caller supplies both the return series and
the benchmark. Degenerate inputs resolve to documented sentinels instead of
NaN/Infinity:
- empty series -> all-zero metrics
- empty ES tail -> ES equals VaR95
- fewer than two overlapping points or flat benchmark -> beta = 0
"""

from __future__ import annotations

import logging
import math
from typing import Any, Sequence

import numpy as np

from core.exceptions import NotFoundError
from core.models import RiskAssessment, RiskMetrics

logger = logging.getLogger(__name__)


DEFAULT_RISK_FREE_RATE_ANNUAL = 0.02
DEFAULT_DAYS_PER_YEAR = 365


def _cutoff_index(n: int, confidence_level: float) -> int:
    # round() guards against 0.05 * n landing a hair below an integer
    return min(int(math.floor(round((1 - confidence_level) * n, 9))), n - 1)


def calculate_var(returns: Sequence[float], confidence_level: float) -> float:
    """
    Historical VaR as a positive loss magnitude.

    Sorts returns ascending and takes ``-sorted[floor((1-c) * n)]``, clipped
    at zero when even the cutoff return is a gain.
    """
    if len(returns) == 0:
        return 0.0
    sorted_returns = np.sort(np.asarray(returns, dtype=float))
    index = _cutoff_index(len(sorted_returns), confidence_level)
    return max(0.0, -float(sorted_returns[index]))


def calculate_expected_shortfall(returns: Sequence[float], confidence_level: float = 0.95) -> float:
    """
    Expected Shortfall: negated mean of the ``k`` worst returns.

    ``k`` is the VaR cutoff index for the same confidence. When ``k`` is 0
    the tail is the cutoff observation itself, so ES equals VaR. The tail
    mean is never above the cutoff return, so ES >= VaR by construction.
    """
    if len(returns) == 0:
        return 0.0
    sorted_returns = np.sort(np.asarray(returns, dtype=float))
    k = _cutoff_index(len(sorted_returns), confidence_level)
    var = calculate_var(returns, confidence_level)
    if k == 0:
        return var
    return max(var, -float(np.mean(sorted_returns[:k])))


def calculate_max_drawdown(returns: Sequence[float]) -> float:
    """
    Largest peak-to-trough decline of the cumulative sum of returns.

    Absolute, not divided by the peak: the running peak starts at 0 and a
    fraction of a zero peak is undefined. Strategy-level drawdown uses the
    same convention.
    """
    if len(returns) == 0:
        return 0.0
    cumulative = np.cumsum(np.asarray(returns, dtype=float))
    peak = np.maximum.accumulate(np.concatenate(([0.0], cumulative)))[1:]
    return float(max(0.0, np.max(peak - cumulative)))


def calculate_beta(returns: Sequence[float], market_returns: Sequence[float]) -> float:
    """Sample covariance over sample market variance on the overlapping prefix."""
    n = min(len(returns), len(market_returns))
    if n < 2:
        return 0.0

    r = np.asarray(returns[:n], dtype=float)
    m = np.asarray(market_returns[:n], dtype=float)
    market_variance = float(np.var(m, ddof=1))
    if market_variance == 0.0:
        return 0.0

    covariance = float(np.cov(r, m, ddof=1)[0, 1])
    return covariance / market_variance


def calculate_alpha(
    returns: Sequence[float],
    market_returns: Sequence[float],
    beta: float,
    risk_free_rate: float,
) -> float:
    """Daily excess return: mean(r) - rf - beta * (mean(m) - rf)."""
    if len(returns) == 0:
        return 0.0
    portfolio_mean = float(np.mean(returns))
    market_mean = float(np.mean(market_returns)) if len(market_returns) > 0 else 0.0
    return portfolio_mean - risk_free_rate - beta * (market_mean - risk_free_rate)


def calculate_risk_metrics(
    returns: Sequence[float],
    market_returns: Sequence[float],
    risk_free_rate: float = DEFAULT_RISK_FREE_RATE_ANNUAL / DEFAULT_DAYS_PER_YEAR,
) -> RiskMetrics:
    """
    Compute the full RiskMetrics bundle.

    Args:
        returns: Return series to assess
        market_returns: Benchmark return series for beta/alpha
        risk_free_rate: Per-period risk-free rate (default 2% annual / 365)
    """
    if len(returns) == 0:
        logger.warning("Empty return series; reporting zero risk metrics")
        return RiskMetrics.zero()

    beta = calculate_beta(returns, market_returns)
    return RiskMetrics(
        var_95=calculate_var(returns, 0.95),
        var_99=calculate_var(returns, 0.99),
        expected_shortfall=calculate_expected_shortfall(returns, 0.95),
        max_drawdown=calculate_max_drawdown(returns),
        beta=beta,
        alpha=calculate_alpha(returns, market_returns, beta, risk_free_rate),
    )


class RiskAssessmentService:
    """
    Risk metric calculation plus risk-assessment snapshots.

    Snapshots go through the persistence boundary when a repository is
    supplied.
    """

    def __init__(self, config: dict[str, Any] | None = None, repository: Any = None):
        """
        Args:
            config: ``risk`` section of the engine config:
                - risk_free_rate_annual: Annual risk-free rate (default: 0.02)
                - days_per_year: Divisor for the daily rate (default: 365)
            repository: ScenarioRepository storing snapshots
        """
        self._config = config or {}
        annual = self._config.get("risk_free_rate_annual", DEFAULT_RISK_FREE_RATE_ANNUAL)
        days = self._config.get("days_per_year", DEFAULT_DAYS_PER_YEAR)
        self.risk_free_rate = annual / days
        self._repository = repository

    def calculate_risk_metrics(
        self,
        returns: Sequence[float],
        market_returns: Sequence[float],
    ) -> RiskMetrics:
        metrics = calculate_risk_metrics(returns, market_returns, self.risk_free_rate)
        logger.debug(
            f"Risk metrics over {len(returns)} returns: "
            f"VaR95={metrics.var_95:.4f}, ES={metrics.expected_shortfall:.4f}, "
            f"beta={metrics.beta:.3f}"
        )
        return metrics

    def save_risk_assessment(self, scenario_id: str, metrics: RiskMetrics) -> RiskAssessment:
        assessment = RiskAssessment(scenario_id=scenario_id, metrics=metrics)
        if self._repository is not None:
            self._repository.save_risk_assessment(assessment)
        return assessment

    def get_risk_assessment(self, scenario_id: str) -> RiskAssessment:
        """Latest snapshot for a scenario; raises NotFoundError when absent."""
        if self._repository is None:
            raise NotFoundError("Risk assessment", scenario_id)
        return self._repository.get_risk_assessment(scenario_id)

    def discard_risk_assessment(self, scenario_id: str) -> None:
        if self._repository is not None:
            self._repository.delete_risk_assessment(scenario_id)
