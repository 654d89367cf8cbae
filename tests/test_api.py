"""
Tests for the HTTP API
======================

End-to-end requests through the FastAPI app with TestClient.
"""

import threading

import pytest
from fastapi.testclient import TestClient

from api.server import ScenarioLabServer
from core.config import EngineConfig
from core.exceptions import PersistenceError
from core.persistence import InMemoryScenarioRepository
from core.scenario_modeling import ScenarioModelingService
from core.strategy_evaluator import StrategyEvaluator
from core.stress_tester import StressTester


class BlockingEvaluator(StrategyEvaluator):
    def __init__(self):
        self.entered = threading.Event()
        self.release = threading.Event()

    def evaluate(self, strategies, initial_conditions, simulated_conditions):
        self.entered.set()
        self.release.wait(timeout=10)
        return super().evaluate(strategies, initial_conditions, simulated_conditions)


class ExplodingEvaluator(StrategyEvaluator):
    def evaluate(self, strategies, initial_conditions, simulated_conditions):
        raise RuntimeError("unexpected")


class SnapshotFailingRepository(InMemoryScenarioRepository):
    def save_risk_assessment(self, assessment):
        raise PersistenceError("disk full")


def build_server(scenario_service, alert_service):
    stress = StressTester(
        {"steps": 48},
        risk_service=scenario_service.risk_service,
        repository=scenario_service.repository,
    )
    return ScenarioLabServer(
        scenario_service=scenario_service,
        stress_tester=stress,
        alert_service=alert_service,
    )


@pytest.fixture
def client(scenario_service, alert_service):
    server = build_server(scenario_service, alert_service)
    with TestClient(server.app) as test_client:
        yield test_client


@pytest.fixture
def scenario_id(client, scenario_payload):
    response = client.post("/scenarios", json=scenario_payload)
    return response.json()["data"]["id"]


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "healthy"
        assert body["stress"]["builtin_templates"] == 5


class TestScenarioRoutes:
    """Tests for scenario CRUD and runs."""

    def test_create(self, client, scenario_payload):
        response = client.post("/scenarios", json=scenario_payload)

        assert response.status_code == 201
        body = response.json()
        assert body["statusCode"] == 201
        assert body["message"] == "Scenario created successfully"
        assert body["data"]["status"] == "pending"
        assert body["data"]["parameters"]["strategies"][0]["entryPrice"] == 450.0

    def test_create_invalid(self, client, scenario_payload):
        scenario_payload["duration"] = 0
        scenario_payload["strategies"][0]["symbol"] = "QQQ"

        response = client.post("/scenarios", json=scenario_payload)

        assert response.status_code == 400
        body = response.json()
        assert body["statusCode"] == 400
        assert len(body["problems"]) == 2

    def test_create_non_object_body(self, client):
        response = client.post("/scenarios", json=[1, 2, 3])
        assert response.status_code == 400

    def test_create_missing_fields(self, client):
        response = client.post("/scenarios", json={"description": "no name"})
        assert response.status_code == 400

    def test_list(self, client, scenario_id):
        response = client.get("/scenarios")

        assert response.status_code == 200
        assert [s["id"] for s in response.json()["data"]] == [scenario_id]

    def test_get_unknown(self, client):
        response = client.get("/scenarios/does-not-exist")

        assert response.status_code == 404
        assert response.json()["statusCode"] == 404
        assert "does-not-exist" in response.json()["message"]

    def test_run_and_read_back(self, client, scenario_id):
        response = client.post(f"/scenarios/{scenario_id}/run")

        assert response.status_code == 200
        result = response.json()["data"]
        assert result["scenarioId"] == scenario_id
        assert set(result["riskMetrics"]) == {
            "var95", "var99", "expectedShortfall", "maxDrawdown", "beta", "alpha",
        }
        assert len(result["equityCurve"]) == 2 * 24

        scenario = client.get(f"/scenarios/{scenario_id}").json()["data"]
        assert scenario["status"] == "completed"
        assert scenario["results"]["totalReturn"] == result["totalReturn"]

    def test_profit_factor_infinity_encoded(self, client, scenario_payload):
        # single long position that cannot lose: exit fixed above entry
        scenario_payload["strategies"][0]["exitPrice"] = 500.0
        scenario_id = client.post("/scenarios", json=scenario_payload).json()["data"]["id"]

        result = client.post(f"/scenarios/{scenario_id}/run").json()["data"]

        assert result["profitFactor"] == "Infinity"

    def test_run_unknown(self, client):
        assert client.post("/scenarios/nope/run").status_code == 404

    def test_risk_assessment(self, client, scenario_id):
        assert client.get(f"/scenarios/{scenario_id}/risk-assessment").status_code == 404

        run = client.post(f"/scenarios/{scenario_id}/run").json()["data"]
        response = client.get(f"/scenarios/{scenario_id}/risk-assessment")

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["scenarioId"] == scenario_id
        assert data["var95"] == run["riskMetrics"]["var95"]

    def test_visualization(self, client, scenario_id):
        assert client.get(f"/scenarios/{scenario_id}/visualization").status_code == 404

        client.post(f"/scenarios/{scenario_id}/run")
        response = client.get(f"/scenarios/{scenario_id}/visualization")

        assert response.status_code == 200
        data = response.json()["data"]
        assert len(data["visualizationData"]["timeSeries"]) == 2 * 2 * 24
        assert set(data["chartConfig"]) == {"portfolioChart", "drawdownChart", "riskDistribution"}

    def test_delete(self, client, scenario_id):
        response = client.delete(f"/scenarios/{scenario_id}")

        assert response.status_code == 200
        assert response.json()["message"] == "Scenario deleted successfully"
        assert client.get(f"/scenarios/{scenario_id}").status_code == 404
        assert client.delete(f"/scenarios/{scenario_id}").status_code == 404


class TestRunErrors:
    """Tests for error mapping of scenario runs."""

    def test_conflict_while_running(self, test_config, scenario_payload, alert_service):
        evaluator = BlockingEvaluator()
        service = ScenarioModelingService(test_config, evaluator=evaluator)
        scenario = service.create_scenario(scenario_payload)
        worker = threading.Thread(target=service.run_scenario, args=(scenario.id,))

        with TestClient(build_server(service, alert_service).app) as client:
            worker.start()
            try:
                assert evaluator.entered.wait(timeout=10)
                run = client.post(f"/scenarios/{scenario.id}/run")
                delete = client.delete(f"/scenarios/{scenario.id}")
            finally:
                evaluator.release.set()
                worker.join(timeout=10)

        assert run.status_code == 409
        assert run.json()["statusCode"] == 409
        assert delete.status_code == 409

    def test_persistence_failure_returns_result(self, test_config, scenario_payload, alert_service):
        service = ScenarioModelingService(test_config, repository=SnapshotFailingRepository())
        scenario = service.create_scenario(scenario_payload)

        with TestClient(build_server(service, alert_service).app) as client:
            response = client.post(f"/scenarios/{scenario.id}/run")

        assert response.status_code == 500
        body = response.json()
        assert body["statusCode"] == 500
        assert body["data"]["scenarioId"] == scenario.id

    def test_unexpected_error_is_500(self, test_config, scenario_payload, alert_service):
        service = ScenarioModelingService(test_config, evaluator=ExplodingEvaluator())
        scenario = service.create_scenario(scenario_payload)

        with TestClient(build_server(service, alert_service).app, raise_server_exceptions=False) as client:
            response = client.post(f"/scenarios/{scenario.id}/run")

        assert response.status_code == 500
        assert response.json()["message"] == "Internal server error"
        assert service.get_scenario(scenario.id).status.value == "failed"


class TestSimulationRoutes:
    """Tests for market simulation and stress tests."""

    def test_market_simulation(self, client):
        response = client.post("/market-simulation", json={
            "symbol": "TEST", "initialPrice": 100, "drift": 0.05,
            "volatility": 0.2, "timeHorizon": 1, "steps": 100,
        })

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["symbol"] == "TEST"
        assert len(data["prices"]) == 101

    def test_market_simulation_invalid(self, client):
        response = client.post("/market-simulation", json={
            "initialPrice": -5, "volatility": 0.2, "timeHorizon": 1, "steps": 10,
        })
        assert response.status_code == 400

    def test_stress_test(self, client, scenario_id):
        response = client.post("/stress-tests", json={
            "scenarioId": scenario_id, "name": "Crash", "type": "market_crash", "severity": "severe",
        })

        assert response.status_code == 200
        data = response.json()["data"]
        assert data["scenarioId"] == scenario_id
        assert data["stressScenario"]["severity"] == "severe"

    def test_stress_test_unknown_scenario(self, client):
        response = client.post("/stress-tests", json={
            "scenarioId": "nope", "type": "market_crash", "severity": "mild",
        })
        assert response.status_code == 404

    def test_stress_test_requires_scenario_id(self, client):
        response = client.post("/stress-tests", json={"type": "market_crash", "severity": "mild"})
        assert response.status_code == 400

    def test_stress_test_bad_type(self, client, scenario_id):
        response = client.post("/stress-tests", json={
            "scenarioId": scenario_id, "type": "meteor", "severity": "mild",
        })
        assert response.status_code == 400

    def test_stress_test_non_numeric_parameter(self, client, scenario_id):
        response = client.post("/stress-tests", json={
            "scenarioId": scenario_id, "type": "market_crash", "severity": "mild",
            "parameters": {"drop": "abc"},
        })

        assert response.status_code == 400
        assert response.json()["statusCode"] == 400

    def test_stress_templates(self, client):
        response = client.get("/stress-tests/templates")

        assert response.status_code == 200
        assert len(response.json()["data"]) == 5


class TestAlertRoutes:
    """Tests for alert configuration and evaluation."""

    @pytest.fixture
    def alert_payload(self):
        return {
            "id": "var-alert", "name": "High VaR", "riskMetric": "var95",
            "threshold": 0.05, "condition": "above",
        }

    def test_user_id_required(self, client, alert_payload):
        response = client.post("/alerts", json=alert_payload)

        assert response.status_code == 400
        assert response.json()["statusCode"] == 400

    def test_crud(self, client, alert_payload):
        created = client.post("/alerts", params={"userId": "alice"}, json=alert_payload)
        assert created.status_code == 201
        assert created.json()["data"]["riskMetric"] == "var95"

        duplicate = client.post("/alerts", params={"userId": "alice"}, json=alert_payload)
        assert duplicate.status_code == 400

        listed = client.get("/alerts", params={"userId": "alice"}).json()["data"]
        assert [a["id"] for a in listed] == ["var-alert"]

        updated = client.put("/alerts/var-alert", params={"userId": "alice"}, json={"threshold": 0.1})
        assert updated.status_code == 200
        assert updated.json()["data"]["threshold"] == 0.1

        assert client.put("/alerts/var-alert", params={"userId": "alice"},
                          json={"bogus": 1}).status_code == 400
        assert client.put("/alerts/missing", params={"userId": "alice"},
                          json={"threshold": 1}).status_code == 404

        assert client.delete("/alerts/var-alert", params={"userId": "alice"}).status_code == 200
        assert client.delete("/alerts/var-alert", params={"userId": "alice"}).status_code == 404

    def test_invalid_alert(self, client, alert_payload):
        alert_payload["condition"] = "sideways"
        response = client.post("/alerts", params={"userId": "alice"}, json=alert_payload)
        assert response.status_code == 400

    def test_templates(self, client):
        response = client.get("/alerts/templates")

        assert response.status_code == 200
        assert len(response.json()["data"]) == 4

    def test_check_inline_metrics(self, client, alert_payload):
        client.post("/alerts", params={"userId": "alice"}, json=alert_payload)

        response = client.post("/alerts/check", params={"userId": "alice"}, json={
            "riskMetrics": {"var95": 0.08, "var99": 0.1, "expectedShortfall": 0.09,
                            "maxDrawdown": 0.02, "beta": 1.0, "alpha": 0.0},
        })

        assert response.status_code == 200
        triggered = response.json()["data"]
        assert len(triggered) == 1
        assert triggered[0]["severity"] == "high"
        assert triggered[0]["currentValue"] == 0.08

    def test_check_from_scenario_snapshot(self, client, scenario_id):
        client.post("/alerts", params={"userId": "bob"}, json={
            "id": "beta-watch", "riskMetric": "beta", "threshold": 100.0, "condition": "below",
        })
        client.post(f"/scenarios/{scenario_id}/run")

        response = client.post("/alerts/check", params={"userId": "bob"}, json={"scenarioId": scenario_id})

        assert response.status_code == 200
        assert [a["alertId"] for a in response.json()["data"]] == ["beta-watch"]

    def test_check_without_metrics_source(self, client):
        response = client.post("/alerts/check", params={"userId": "alice"}, json={})
        assert response.status_code == 400

    def test_check_unknown_snapshot(self, client):
        response = client.post("/alerts/check", params={"userId": "alice"}, json={"scenarioId": "nope"})
        assert response.status_code == 404


class TestConfiguredServer:
    """Tests for a server wired from engine configuration."""

    def stress_results(self, scenario_payload):
        server = ScenarioLabServer(EngineConfig.from_dict({
            "simulation": {"seed": 7},
            "stress": {"steps": 24},
        }))
        with TestClient(server.app) as client:
            scenario_id = client.post("/scenarios", json=scenario_payload).json()["data"]["id"]
            response = client.post("/stress-tests", json={
                "scenarioId": scenario_id, "type": "volatility_spike", "severity": "severe",
            })
        assert response.status_code == 200
        return response.json()["data"]["results"]

    def test_stress_tests_use_configured_seed(self, scenario_payload):
        assert self.stress_results(scenario_payload) == self.stress_results(scenario_payload)
