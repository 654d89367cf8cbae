"""
Strategy Evaluator
==================

Scores declared positions against simulated price paths.

Per strategy:
- long:    (exit - entry) / entry * quantity
- short:   (entry - exit) / entry * quantity
- neutral: 0

The exit price defaults to the last simulated price of the strategy's
symbol. Besides the per-strategy aggregates the evaluator produces the
hourly mark-to-market return series of the whole book and an
equal-weighted market benchmark, which feed risk assessment.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any

import numpy as np

from core.exceptions import ValidationError
from core.market_simulator import group_by_symbol
from core.models import MarketCondition, StrategyType, TradingStrategy
from core.risk_assessment import calculate_max_drawdown

logger = logging.getLogger(__name__)


DIRECTION = {
    StrategyType.LONG: 1.0,
    StrategyType.SHORT: -1.0,
    StrategyType.NEUTRAL: 0.0,
}


@dataclass
class StrategyEvaluation:
    """Aggregated outcome of a set of strategies over one simulated path set."""
    strategy_returns: list[float]
    total_return: float
    win_rate: float
    volatility: float
    sharpe_ratio: float
    profit_factor: float
    max_drawdown: float
    path_returns: list[float] = field(default_factory=list)
    benchmark_returns: list[float] = field(default_factory=list)
    equity_curve: list[float] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "strategy_returns": list(self.strategy_returns),
            "total_return": self.total_return,
            "win_rate": self.win_rate,
            "volatility": self.volatility,
            "sharpe_ratio": self.sharpe_ratio,
            "profit_factor": self.profit_factor,
            "max_drawdown": self.max_drawdown,
        }


def strategy_return(strategy: TradingStrategy, exit_price: float) -> float:
    """Return of one position given its exit price."""
    if strategy.type == StrategyType.LONG:
        return (exit_price - strategy.entry_price) / strategy.entry_price * strategy.quantity
    if strategy.type == StrategyType.SHORT:
        return (strategy.entry_price - exit_price) / strategy.entry_price * strategy.quantity
    return 0.0


def profit_factor(returns: list[float]) -> float:
    """Gross profit over absolute gross loss; inf when nothing lost."""
    gross_profit = sum(r for r in returns if r > 0)
    gross_loss = sum(r for r in returns if r < 0)
    if gross_loss == 0:
        return math.inf
    return gross_profit / abs(gross_loss)


class StrategyEvaluator:
    """Evaluates strategies against per-symbol simulated paths."""

    def evaluate(
        self,
        strategies: list[TradingStrategy],
        initial_conditions: list[MarketCondition],
        simulated_conditions: list[MarketCondition],
    ) -> StrategyEvaluation:
        """
        Evaluate every strategy and build the book-level return series.

        Args:
            strategies: Declared positions, in declaration order
            initial_conditions: Starting market state (one per symbol)
            simulated_conditions: Output of MarketSimulator.simulate_market_conditions

        Raises:
            ValidationError: A strategy references a symbol with no simulated path
        """
        initial_prices = {c.symbol: float(c.price) for c in initial_conditions}
        paths = {
            symbol: [c.price for c in conditions]
            for symbol, conditions in group_by_symbol(simulated_conditions).items()
        }

        returns = []
        for strategy in strategies:
            path = paths.get(strategy.symbol)
            if not path:
                raise ValidationError(
                    f"No simulated path for symbol '{strategy.symbol}' "
                    f"(strategy {strategy.id})"
                )
            exit_price = strategy.exit_price if strategy.exit_price is not None else path[-1]
            returns.append(strategy_return(strategy, exit_price))

        total_return = float(sum(returns))
        if returns:
            win_rate = sum(1 for r in returns if r > 0) / len(returns)
            volatility = float(np.std(returns))
            mean_return = float(np.mean(returns))
        else:
            win_rate = 0.0
            volatility = 0.0
            mean_return = 0.0
        sharpe_ratio = mean_return / volatility if volatility > 0 else 0.0

        path_returns = self.path_returns(strategies, initial_prices, paths)
        evaluation = StrategyEvaluation(
            strategy_returns=returns,
            total_return=total_return,
            win_rate=win_rate,
            volatility=volatility,
            sharpe_ratio=sharpe_ratio,
            profit_factor=profit_factor(returns),
            max_drawdown=calculate_max_drawdown(returns),
            path_returns=path_returns,
            benchmark_returns=self.benchmark_returns(initial_prices, paths),
            equity_curve=[float(v) for v in np.cumsum(path_returns)] if path_returns else [],
        )

        logger.debug(
            f"Evaluated {len(strategies)} strategies: total_return={total_return:.4f}, "
            f"win_rate={win_rate:.2f}, sharpe={sharpe_ratio:.3f}"
        )
        return evaluation

    @staticmethod
    def path_returns(
        strategies: list[TradingStrategy],
        initial_prices: dict[str, float],
        paths: dict[str, list[float]],
    ) -> list[float]:
        """
        Hourly mark-to-market return of the book.

        ``r[t] = sum_s dir_s * qty_s * (p_s[t] - p_s[t-1]) / entry_s`` with
        ``p_s[-1]`` the symbol's initial price.

        This is the risk input, not the realized P&L: it starts from the
        initial market price rather than the entry price and ignores a declared
        exit price, so its sum only matches ``total_return`` when the entry
        equals the initial price and no exit is declared.
        """
        if not paths:
            return []
        steps = max(len(path) for path in paths.values())
        book = np.zeros(steps)

        for strategy in strategies:
            direction = DIRECTION[strategy.type]
            if direction == 0.0:
                continue
            path = paths.get(strategy.symbol)
            if not path:
                continue
            prices = np.asarray([initial_prices.get(strategy.symbol, path[0])] + list(path))
            book[:len(path)] += direction * strategy.quantity * np.diff(prices) / strategy.entry_price

        return [float(v) for v in book]

    @staticmethod
    def benchmark_returns(
        initial_prices: dict[str, float],
        paths: dict[str, list[float]],
    ) -> list[float]:
        """Equal-weighted mean of per-symbol hourly simple returns."""
        series = []
        for symbol, path in paths.items():
            if not path:
                continue
            prices = np.asarray([initial_prices.get(symbol, path[0])] + list(path))
            series.append(prices[1:] / prices[:-1] - 1.0)

        if not series:
            return []
        steps = min(len(s) for s in series)
        return [float(v) for v in np.mean([s[:steps] for s in series], axis=0)]
