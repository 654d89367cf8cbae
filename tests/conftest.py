"""
Pytest Configuration
====================

Shared fixtures for testing.
"""

from __future__ import annotations

import pytest

from core.alerting import AlertService, InMemoryAlertRepository
from core.market_simulator import MarketSimulator
from core.models import MarketCondition, ScenarioParameters, TradingStrategy, StrategyType
from core.notifications import NotificationManager
from core.persistence import InMemoryScenarioRepository
from core.random_source import NumpyRandomSource
from core.scenario_modeling import ScenarioModelingService
from core.stress_tester import StressTester


@pytest.fixture
def test_config():
    """Minimal engine configuration."""
    return {
        "simulation": {
            "seed": 42,
            "steps_per_day": 24,
            "annual_drift": 0.05,
            "min_price": 0.01,
            "volume_jitter": 0.10,
            "volatility_jitter": 0.05,
            "days_per_year": 365,
        },
        "risk": {
            "risk_free_rate_annual": 0.02,
            "days_per_year": 365,
        },
        "stress": {
            "base_price": 100.0,
            "base_volatility": 0.2,
            "drift": -0.1,
            "time_horizon": 30.0,
            "steps": 720,
        },
    }


@pytest.fixture
def seeded_simulator():
    """Simulator with a fixed seed."""
    return MarketSimulator(NumpyRandomSource(seed=42))


@pytest.fixture
def market_conditions():
    return [
        MarketCondition(symbol="AAPL", price=150.0, volatility=0.25, volume=1_000_000),
        MarketCondition(symbol="MSFT", price=300.0, volatility=0.20, volume=800_000),
    ]


@pytest.fixture
def strategies():
    return [
        TradingStrategy(
            id="aapl-long", name="AAPL long", type=StrategyType.LONG,
            symbol="AAPL", entry_price=150.0, quantity=1.0,
        ),
        TradingStrategy(
            id="msft-short", name="MSFT short", type=StrategyType.SHORT,
            symbol="MSFT", entry_price=300.0, quantity=0.5,
        ),
    ]


@pytest.fixture
def scenario_parameters(market_conditions, strategies):
    return ScenarioParameters(
        name="Test scenario",
        description="Two-symbol long/short",
        duration=5,
        market_conditions=market_conditions,
        strategies=strategies,
    )


@pytest.fixture
def scenario_payload():
    """Wire-format scenario body (camelCase)."""
    return {
        "name": "API scenario",
        "description": "Single long position",
        "duration": 2,
        "marketConditions": [
            {"symbol": "SPY", "price": 450.0, "volatility": 0.18, "volume": 5_000_000},
        ],
        "strategies": [
            {"id": "spy-long", "name": "SPY long", "type": "long", "symbol": "SPY",
             "entryPrice": 450.0, "quantity": 1},
        ],
    }


@pytest.fixture
def repository():
    return InMemoryScenarioRepository()


@pytest.fixture
def scenario_service(test_config, repository):
    return ScenarioModelingService(
        test_config,
        repository=repository,
        simulator=MarketSimulator(NumpyRandomSource(seed=7), test_config["simulation"]),
    )


@pytest.fixture
def stress_tester(test_config):
    return StressTester(
        test_config["stress"],
        simulator=MarketSimulator(NumpyRandomSource(seed=11)),
    )


@pytest.fixture
def notifier():
    return NotificationManager(channels=[])


@pytest.fixture
def alert_service(notifier):
    return AlertService(InMemoryAlertRepository(), notifier)


@pytest.fixture
def temp_logs_dir(tmp_path):
    """Create temporary logs directory."""
    logs_dir = tmp_path / "logs"
    logs_dir.mkdir()
    return logs_dir
