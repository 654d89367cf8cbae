"""
Random Number Sources
=====================

Every stochastic draw in the engine goes through a RandomSource so that
simulations are reproducible when a seed is supplied.

Normal draws use the Box-Muller transform on two uniforms, retrying while
either uniform is exactly zero to avoid log(0).
"""

from __future__ import annotations

import math
from abc import ABC, abstractmethod
from typing import Iterable

import numpy as np


class RandomSource(ABC):
    """Abstract uniform random source with Box-Muller normal draws."""

    @abstractmethod
    def uniform(self) -> float:
        """Uniform draw in [0, 1)."""

    def standard_normal(self) -> float:
        """Standard-normal draw via Box-Muller."""
        u = 0.0
        while u == 0.0:
            u = self.uniform()
        v = 0.0
        while v == 0.0:
            v = self.uniform()
        return math.sqrt(-2.0 * math.log(u)) * math.cos(2.0 * math.pi * v)

    def normal(self, mean: float, std: float) -> float:
        return mean + std * self.standard_normal()


class NumpyRandomSource(RandomSource):
    """RandomSource backed by numpy's default Generator (PCG64)."""

    def __init__(self, seed: int | None = None):
        self.seed = seed
        self._rng = np.random.default_rng(seed)

    def uniform(self) -> float:
        return float(self._rng.random())


class SequenceRandomSource(RandomSource):
    """Replays a fixed sequence of uniforms, cycling when exhausted."""

    def __init__(self, values: Iterable[float]):
        self._values = [float(v) for v in values]
        if not any(0.0 < v < 1.0 for v in self._values):
            raise ValueError("SequenceRandomSource needs at least one value in (0, 1)")
        self._index = 0

    def uniform(self) -> float:
        value = self._values[self._index % len(self._values)]
        self._index += 1
        return value


def make_random_source(seed: int | None = None) -> RandomSource:
    """Default source used when the caller does not inject one."""
    return NumpyRandomSource(seed)
