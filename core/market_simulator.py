"""
Market Simulator
================

Synthetic price paths for scenario analysis.

Models:
- Geometric Brownian Motion (exact log-normal stepping)
- Jump-Diffusion (GBM plus Bernoulli-timed normal log-price jumps)
- Hourly multi-asset market-condition walk

The simulator holds no state beyond its random source; every call returns
a freshly computed path.
"""

from __future__ import annotations

import logging
import math
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any

from core.exceptions import ValidationError
from core.models import MarketCondition
from core.random_source import RandomSource, make_random_source

logger = logging.getLogger(__name__)


class SimulationModel(str, Enum):
    """Price model for direct market simulation."""
    GBM = "gbm"
    JUMP_DIFFUSION = "jump_diffusion"


# Jump parameters used when a jump-diffusion request does not supply them
DEFAULT_JUMP_INTENSITY = 0.1
DEFAULT_JUMP_MEAN = -0.05
DEFAULT_JUMP_STD = 0.1


def _check_path_inputs(initial_price: float, volatility: float, time_horizon: float, steps: int) -> None:
    problems = []
    if isinstance(steps, bool) or not isinstance(steps, int) or steps <= 0:
        problems.append(f"steps must be a positive integer, got {steps!r}")
    if not time_horizon > 0:
        problems.append(f"time_horizon must be positive, got {time_horizon!r}")
    if not initial_price > 0:
        problems.append(f"initial_price must be positive, got {initial_price!r}")
    if volatility < 0:
        problems.append(f"volatility must be non-negative, got {volatility!r}")
    if problems:
        raise ValidationError(f"Invalid simulation inputs: {'; '.join(problems)}", problems)


class MarketSimulator:
    """
    Stochastic price-path generator.

    All draws come from the injected RandomSource; pass a seeded
    NumpyRandomSource for reproducible paths.
    """

    def __init__(
        self,
        random_source: RandomSource | None = None,
        config: dict[str, Any] | None = None,
    ):
        """
        Args:
            random_source: Source of uniform/normal draws
            config: ``simulation`` section of the engine config:
                - steps_per_day: Steps per simulated day (default: 24)
                - annual_drift: Drift of the market-condition walk (default: 0.05)
                - min_price: Price floor (default: 0.01)
                - volume_jitter: Uniform volume perturbation (default: 0.10)
                - volatility_jitter: Uniform volatility perturbation (default: 0.05)
                - days_per_year: Year length used for dt (default: 365)
                - seed: Seed when no random source is injected
        """
        self._config = config or {}
        self._rng = random_source or make_random_source(self._config.get("seed"))
        self._steps_per_day = self._config.get("steps_per_day", 24)
        self._annual_drift = self._config.get("annual_drift", 0.05)
        self._min_price = self._config.get("min_price", 0.01)
        self._volume_jitter = self._config.get("volume_jitter", 0.10)
        self._volatility_jitter = self._config.get("volatility_jitter", 0.05)
        self._days_per_year = self._config.get("days_per_year", 365)

    @property
    def random_source(self) -> RandomSource:
        return self._rng

    def _gbm_step(self, price: float, drift: float, volatility: float, dt: float) -> float:
        log_return = (
            (drift - 0.5 * volatility * volatility) * dt
            + volatility * math.sqrt(dt) * self._rng.standard_normal()
        )
        return price * math.exp(log_return)

    def simulate_geometric_brownian_motion(
        self,
        initial_price: float,
        drift: float,
        volatility: float,
        time_horizon: float,
        steps: int,
    ) -> list[float]:
        """
        Simulate a GBM path.

        Args:
            initial_price: Starting price (> 0)
            drift: Annualised drift
            volatility: Annualised volatility (>= 0)
            time_horizon: Horizon in the drift's time unit (> 0)
            steps: Number of steps (> 0)

        Returns:
            ``steps + 1`` prices, the first being ``initial_price``
        """
        _check_path_inputs(initial_price, volatility, time_horizon, steps)

        dt = time_horizon / steps
        prices = [float(initial_price)]
        for _ in range(steps):
            prices.append(self._gbm_step(prices[-1], drift, volatility, dt))

        return prices

    def simulate_jump_diffusion(
        self,
        initial_price: float,
        drift: float,
        volatility: float,
        jump_intensity: float,
        jump_mean: float,
        jump_std: float,
        time_horizon: float,
        steps: int,
    ) -> list[float]:
        """
        Simulate a jump-diffusion path.

        Each step is a GBM step; with probability ``jump_intensity * dt`` an
        extra log-return drawn from Normal(jump_mean, jump_std) is added.
        Jumps are sampled per step (discrete-time approximation), not as a
        continuous-time compound Poisson process.
        """
        _check_path_inputs(initial_price, volatility, time_horizon, steps)
        if jump_intensity < 0 or jump_std < 0:
            raise ValidationError("jump_intensity and jump_std must be non-negative")

        dt = time_horizon / steps
        jump_probability = jump_intensity * dt
        prices = [float(initial_price)]
        jumps = 0

        for _ in range(steps):
            log_return = (
                (drift - 0.5 * volatility * volatility) * dt
                + volatility * math.sqrt(dt) * self._rng.standard_normal()
            )
            if self._rng.uniform() < jump_probability:
                log_return += self._rng.normal(jump_mean, jump_std)
                jumps += 1
            prices.append(prices[-1] * math.exp(log_return))

        logger.debug(f"Jump-diffusion path: {steps} steps, {jumps} jumps")
        return prices

    def simulate_market_conditions(
        self,
        initial_conditions: list[MarketCondition],
        duration_days: int,
        start_time: datetime | None = None,
    ) -> list[MarketCondition]:
        """
        Walk every symbol forward hourly for ``duration_days``.

        Price follows the GBM recursion with the configured annual drift and
        the symbol's initial volatility. Reported volume and volatility are
        jittered uniformly around their initial values. Output is
        symbol-major, time-ascending within each symbol.
        """
        if isinstance(duration_days, bool) or not isinstance(duration_days, int) or duration_days <= 0:
            raise ValidationError(f"duration_days must be a positive integer, got {duration_days!r}")
        if not initial_conditions:
            raise ValidationError("at least one initial market condition is required")

        start = start_time or datetime.now(timezone.utc)
        total_steps = duration_days * self._steps_per_day
        dt = 1.0 / (self._steps_per_day * self._days_per_year)

        logger.info(
            f"Simulating market conditions: {len(initial_conditions)} symbols, "
            f"{total_steps} steps"
        )

        simulated: list[MarketCondition] = []
        for condition in initial_conditions:
            if not condition.price > 0:
                raise ValidationError(f"{condition.symbol}: initial price must be positive")
            if condition.volatility < 0:
                raise ValidationError(f"{condition.symbol}: volatility must be non-negative")

            price = float(condition.price)
            for i in range(total_steps):
                price = self._gbm_step(price, self._annual_drift, condition.volatility, dt)
                price = max(price, self._min_price)

                volume_change = 1 + (self._rng.uniform() - 0.5) * 2 * self._volume_jitter
                volatility_change = 1 + (self._rng.uniform() - 0.5) * 2 * self._volatility_jitter

                simulated.append(MarketCondition(
                    symbol=condition.symbol,
                    price=price,
                    volatility=condition.volatility * volatility_change,
                    volume=int(math.floor(condition.volume * volume_change)),
                    timestamp=start + timedelta(hours=(i + 1) * 24 / self._steps_per_day),
                ))

        return simulated

    def simulate(
        self,
        model: SimulationModel | str,
        initial_price: float,
        drift: float,
        volatility: float,
        time_horizon: float,
        steps: int,
        jump_intensity: float | None = None,
        jump_mean: float | None = None,
        jump_std: float | None = None,
    ) -> list[float]:
        """Dispatch a direct simulation request to the chosen model."""
        try:
            model = SimulationModel(model)
        except ValueError as e:
            raise ValidationError(f"Unknown simulation model: {model}") from e

        if model == SimulationModel.JUMP_DIFFUSION:
            return self.simulate_jump_diffusion(
                initial_price,
                drift,
                volatility,
                DEFAULT_JUMP_INTENSITY if jump_intensity is None else jump_intensity,
                DEFAULT_JUMP_MEAN if jump_mean is None else jump_mean,
                DEFAULT_JUMP_STD if jump_std is None else jump_std,
                time_horizon,
                steps,
            )

        return self.simulate_geometric_brownian_motion(
            initial_price, drift, volatility, time_horizon, steps
        )


def group_by_symbol(conditions: list[MarketCondition]) -> dict[str, list[MarketCondition]]:
    """Split a symbol-major condition list into per-symbol paths (order preserved)."""
    grouped: dict[str, list[MarketCondition]] = {}
    for condition in conditions:
        grouped.setdefault(condition.symbol, []).append(condition)
    return grouped
