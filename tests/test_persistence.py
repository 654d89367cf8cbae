"""
Tests for Scenario Persistence
==============================

In-memory and JSON-file repositories.
"""

import json
import math

import pytest

from core.exceptions import NotFoundError, PersistenceError
from core.models import (
    RiskAssessment,
    RiskMetrics,
    Scenario,
    ScenarioResult,
    ScenarioStatus,
)
from core.persistence import (
    InMemoryScenarioRepository,
    JsonFileScenarioRepository,
    create_repository,
)


@pytest.fixture
def scenario(scenario_parameters):
    return Scenario(
        id="scn-1",
        name=scenario_parameters.name,
        description=scenario_parameters.description,
        duration=scenario_parameters.duration,
        parameters=scenario_parameters,
    )


@pytest.fixture
def completed_scenario(scenario):
    scenario.status = ScenarioStatus.COMPLETED
    scenario.results = ScenarioResult(
        scenario_id=scenario.id,
        total_return=0.04,
        max_drawdown=0.01,
        sharpe_ratio=1.2,
        volatility=0.03,
        win_rate=1.0,
        profit_factor=math.inf,
        risk_metrics=RiskMetrics(0.01, 0.02, 0.015, 0.01, -0.8, 0.0002),
        equity_curve=[0.01, 0.02, 0.04],
    )
    return scenario


@pytest.fixture(params=["memory", "json"])
def repo(request, tmp_path):
    if request.param == "memory":
        return InMemoryScenarioRepository()
    return JsonFileScenarioRepository(tmp_path / "state")


class TestRepositoryContract:
    """Behaviour shared by every backend."""

    def test_save_and_get(self, repo, scenario):
        repo.save(scenario)

        loaded = repo.get("scn-1")

        assert loaded.name == scenario.name
        assert loaded.status == ScenarioStatus.PENDING
        assert loaded.parameters.strategies[1].symbol == "MSFT"

    def test_get_returns_copy(self, repo, scenario):
        repo.save(scenario)

        loaded = repo.get("scn-1")
        loaded.status = ScenarioStatus.FAILED

        assert repo.get("scn-1").status == ScenarioStatus.PENDING

    def test_results_round_trip_infinite_profit_factor(self, repo, completed_scenario):
        repo.save(completed_scenario)

        results = repo.get("scn-1").results

        assert math.isinf(results.profit_factor)
        assert results.risk_metrics.beta == -0.8
        assert results.equity_curve == [0.01, 0.02, 0.04]

    def test_missing(self, repo):
        with pytest.raises(NotFoundError):
            repo.get("absent")
        assert not repo.exists("absent")

    def test_list_and_delete(self, repo, scenario):
        repo.save(scenario)
        repo.save_risk_assessment(RiskAssessment("scn-1", RiskMetrics.zero()))

        assert [s.id for s in repo.list()] == ["scn-1"]

        repo.delete("scn-1")

        assert repo.list() == []
        with pytest.raises(NotFoundError):
            repo.get_risk_assessment("scn-1")
        with pytest.raises(NotFoundError):
            repo.delete("scn-1")

    def test_risk_assessment_snapshot(self, repo):
        metrics = RiskMetrics(0.01, 0.02, 0.03, 0.04, 1.0, 0.0)
        repo.save_risk_assessment(RiskAssessment("scn-1", metrics))

        assert repo.get_risk_assessment("scn-1").metrics == metrics

    def test_delete_risk_assessment(self, repo):
        repo.save_risk_assessment(RiskAssessment("scn-1", RiskMetrics.zero()))

        repo.delete_risk_assessment("scn-1")
        repo.delete_risk_assessment("scn-1")

        with pytest.raises(NotFoundError):
            repo.get_risk_assessment("scn-1")


class TestJsonFileRepository:
    """File-backend specifics."""

    def test_layout(self, tmp_path, scenario):
        repo = JsonFileScenarioRepository(tmp_path)
        repo.save(scenario)
        repo.save_risk_assessment(RiskAssessment("scn-1", RiskMetrics.zero()))

        document = json.loads((tmp_path / "scenarios" / "scn-1.json").read_text())
        assert document["id"] == "scn-1"
        assert document["parameters"]["marketConditions"][0]["symbol"] == "AAPL"
        assert (tmp_path / "risk_assessments" / "scn-1.json").exists()
        assert not list(tmp_path.rglob("*.tmp"))

    def test_infinity_encoded_as_string(self, tmp_path, completed_scenario):
        repo = JsonFileScenarioRepository(tmp_path)
        repo.save(completed_scenario)

        document = json.loads((tmp_path / "scenarios" / "scn-1.json").read_text())
        assert document["results"]["profitFactor"] == "Infinity"

    def test_survives_reopen(self, tmp_path, scenario):
        JsonFileScenarioRepository(tmp_path).save(scenario)

        assert JsonFileScenarioRepository(tmp_path).get("scn-1").name == scenario.name

    def test_unsafe_id_on_read(self, tmp_path):
        repo = JsonFileScenarioRepository(tmp_path)
        with pytest.raises(NotFoundError):
            repo.get("../etc/passwd")

    def test_unsafe_id_on_save(self, tmp_path, scenario):
        repo = JsonFileScenarioRepository(tmp_path)
        scenario.id = "../escape"
        with pytest.raises(PersistenceError):
            repo.save(scenario)

    def test_corrupt_file(self, tmp_path):
        repo = JsonFileScenarioRepository(tmp_path)
        (tmp_path / "scenarios" / "broken.json").write_text("{not json")

        with pytest.raises(PersistenceError):
            repo.get("broken")

    def test_unwritable_state_dir(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("")

        with pytest.raises(PersistenceError):
            JsonFileScenarioRepository(blocker / "state")


class TestCreateRepository:
    """Tests for backend selection."""

    def test_default_memory(self):
        assert isinstance(create_repository({}), InMemoryScenarioRepository)

    def test_json(self, tmp_path):
        repo = create_repository({"backend": "json", "state_dir": str(tmp_path / "s")})
        assert isinstance(repo, JsonFileScenarioRepository)
