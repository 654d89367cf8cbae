"""
Scenario Lab Server
===================

FastAPI HTTP surface for scenario modeling, stress testing and alerting.

Responses use the envelope ``{"statusCode", "message", "data"}``. Engine
errors map to HTTP status codes:
- ValidationError -> 400
- NotFoundError -> 404
- ScenarioConflictError -> 409
- anything else -> 500

CPU-bound work (scenario runs, simulations, stress tests) is offloaded with
``asyncio.to_thread`` so distinct scenarios can run concurrently.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import Body, FastAPI, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from core.alerting import AlertService
from core.config import EngineConfig
from core.exceptions import (
    NotFoundError,
    PersistenceError,
    ScenarioConflictError,
    ScenarioLabError,
    ValidationError,
)
from core.market_simulator import MarketSimulator
from core.models import RiskMetrics
from core.notifications import create_notification_manager
from core.persistence import create_repository
from core.scenario_modeling import ScenarioModelingService
from core.stress_tester import StressTester
from core.visualization import VisualizationService

logger = logging.getLogger(__name__)


def _envelope(status_code: int, message: str, data: Any = None) -> JSONResponse:
    content: dict[str, Any] = {"statusCode": status_code, "message": message}
    if data is not None:
        content["data"] = data
    return JSONResponse(content, status_code=status_code)


def _error_status(exc: Exception) -> int:
    if isinstance(exc, ValidationError):
        return 400
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ScenarioConflictError):
        return 409
    return 500


def _require_mapping(body: Any) -> dict[str, Any]:
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


class ScenarioLabServer:
    """
    HTTP server for the scenario engine.

    Provides:
    - Scenario CRUD and runs
    - Direct market simulation
    - Stress tests and templates
    - Risk-assessment snapshots and visualization payloads
    - Alert configuration CRUD and evaluation
    """

    def __init__(
        self,
        config: EngineConfig | None = None,
        scenario_service: ScenarioModelingService | None = None,
        stress_tester: StressTester | None = None,
        alert_service: AlertService | None = None,
        visualization: VisualizationService | None = None,
    ):
        self._config = config or EngineConfig()
        self._host = self._config.server.get("host", "127.0.0.1")
        self._port = self._config.server.get("port", 8000)

        if scenario_service is None:
            repository = create_repository(self._config.persistence)
            scenario_service = ScenarioModelingService(self._config.raw, repository=repository)
        self._scenarios = scenario_service

        self._stress = stress_tester or StressTester(
            self._config.stress,
            simulator=MarketSimulator(config=self._config.simulation),
            risk_service=self._scenarios.risk_service,
            repository=self._scenarios.repository,
        )
        self._alerts = alert_service or AlertService(
            notifier=create_notification_manager(self._config.alerts)
        )
        self._visualization = visualization or VisualizationService()

        self._app = self._create_app()

    @property
    def app(self) -> FastAPI:
        """Get the FastAPI application instance."""
        return self._app

    def _create_app(self) -> FastAPI:
        """Create and configure the FastAPI application."""
        app = FastAPI(
            title="Scenario Lab",
            description="Scenario modeling and risk assessment for trading strategies",
            version="1.0.0",
        )

        app.add_middleware(
            CORSMiddleware,
            allow_origins=["*"],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

        @app.exception_handler(ScenarioLabError)
        async def engine_error_handler(request: Request, exc: ScenarioLabError):
            status = _error_status(exc)
            if status >= 500:
                logger.error(f"{request.method} {request.url.path} failed: {exc}")
            content: dict[str, Any] = {"statusCode": status, "message": str(exc)}
            if isinstance(exc, ValidationError):
                content["problems"] = exc.problems
            if isinstance(exc, PersistenceError) and exc.result is not None:
                content["data"] = exc.result.to_dict()
            return JSONResponse(content, status_code=status)

        @app.exception_handler(RequestValidationError)
        async def request_validation_handler(request: Request, exc: RequestValidationError):
            problems = [f"{'.'.join(str(p) for p in e.get('loc', ()))}: {e.get('msg')}" for e in exc.errors()]
            return JSONResponse(
                {"statusCode": 400, "message": "Invalid request", "problems": problems},
                status_code=400,
            )

        @app.exception_handler(Exception)
        async def unexpected_error_handler(request: Request, exc: Exception):
            logger.exception(f"Unhandled error on {request.method} {request.url.path}: {exc}")
            return JSONResponse({"statusCode": 500, "message": "Internal server error"}, status_code=500)

        self._register_routes(app)
        return app

    def _register_routes(self, app: FastAPI) -> None:
        """Register all API routes."""

        # =================================================================
        # Health
        # =================================================================

        @app.get("/health")
        async def health_check():
            """Health check endpoint."""
            return JSONResponse({
                "status": "healthy",
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "scenarios": self._scenarios.get_status(),
                "stress": self._stress.get_status(),
            })

        # =================================================================
        # Scenarios
        # =================================================================

        @app.post("/scenarios")
        async def create_scenario(body: Any = Body(...)):
            scenario = self._scenarios.create_scenario(_require_mapping(body))
            return _envelope(201, "Scenario created successfully", scenario.to_dict())

        @app.get("/scenarios")
        async def get_all_scenarios():
            scenarios = self._scenarios.get_all_scenarios()
            return _envelope(200, "Scenarios retrieved successfully", [s.to_dict() for s in scenarios])

        @app.get("/scenarios/{scenario_id}")
        async def get_scenario(scenario_id: str):
            scenario = self._scenarios.get_scenario(scenario_id)
            return _envelope(200, "Scenario retrieved successfully", scenario.to_dict())

        @app.delete("/scenarios/{scenario_id}")
        async def delete_scenario(scenario_id: str):
            self._scenarios.delete_scenario(scenario_id)
            return _envelope(200, "Scenario deleted successfully")

        @app.post("/scenarios/{scenario_id}/run")
        async def run_scenario(scenario_id: str):
            result = await asyncio.to_thread(self._scenarios.run_scenario, scenario_id)
            return _envelope(200, "Scenario analysis completed", result.to_dict())

        @app.get("/scenarios/{scenario_id}/risk-assessment")
        async def get_risk_assessment(scenario_id: str):
            assessment = self._scenarios.risk_service.get_risk_assessment(scenario_id)
            return _envelope(200, "Risk assessment retrieved", assessment.to_dict())

        @app.get("/scenarios/{scenario_id}/visualization")
        async def get_visualization(scenario_id: str):
            scenario = self._scenarios.get_scenario(scenario_id)
            if scenario.results is None:
                raise NotFoundError("Scenario results", scenario_id)
            data = self._visualization.generate_visualization_data(scenario_id, scenario.results)
            return _envelope(200, "Visualization data retrieved", {
                "visualizationData": data.to_dict(),
                "chartConfig": self._visualization.generate_chart_config(data),
            })

        # =================================================================
        # Simulation / stress
        # =================================================================

        @app.post("/market-simulation")
        async def run_market_simulation(body: Any = Body(...)):
            result = await asyncio.to_thread(
                self._scenarios.run_market_simulation, _require_mapping(body)
            )
            return _envelope(200, "Market simulation completed", result)

        @app.post("/stress-tests")
        async def run_stress_test(body: Any = Body(...)):
            body = _require_mapping(body)
            scenario_id = body.get("scenarioId") or body.get("scenario_id")
            if not scenario_id:
                raise ValidationError("scenarioId is required")
            result = await asyncio.to_thread(self._stress.run_stress_test, str(scenario_id), body)
            return _envelope(200, "Stress test completed", result.to_dict())

        @app.get("/stress-tests/templates")
        async def get_stress_test_templates():
            templates = self._stress.get_stress_test_templates()
            return _envelope(200, "Stress test templates retrieved", [t.to_dict() for t in templates])

        # =================================================================
        # Alerts
        # =================================================================

        @app.post("/alerts")
        async def create_alert(body: Any = Body(...), user_id: str = Query(..., alias="userId")):
            alert = self._alerts.create_alert(user_id, _require_mapping(body))
            return _envelope(201, "Alert created successfully", alert.to_dict())

        @app.get("/alerts/templates")
        async def get_alert_templates():
            templates = self._alerts.get_default_alert_templates()
            return _envelope(200, "Alert templates retrieved", [t.to_dict() for t in templates])

        @app.get("/alerts")
        async def get_user_alerts(user_id: str = Query(..., alias="userId")):
            alerts = self._alerts.get_user_alerts(user_id)
            return _envelope(200, "User alerts retrieved", [a.to_dict() for a in alerts])

        @app.put("/alerts/{alert_id}")
        async def update_alert(alert_id: str, body: Any = Body(...),
                               user_id: str = Query(..., alias="userId")):
            alert = self._alerts.update_alert(user_id, alert_id, _require_mapping(body))
            return _envelope(200, "Alert updated successfully", alert.to_dict())

        @app.delete("/alerts/{alert_id}")
        async def delete_alert(alert_id: str, user_id: str = Query(..., alias="userId")):
            self._alerts.delete_alert(user_id, alert_id)
            return _envelope(200, "Alert deleted successfully")

        @app.post("/alerts/check")
        async def check_alerts(body: Any = Body(...), user_id: str = Query(..., alias="userId")):
            """
            Evaluate a user's alerts against either inline ``riskMetrics`` or
            the stored risk-assessment snapshot of ``scenarioId``.
            """
            body = _require_mapping(body)
            if body.get("riskMetrics") is not None:
                metrics_data = _require_mapping(body["riskMetrics"])
                try:
                    metrics = RiskMetrics.from_dict(metrics_data)
                except (TypeError, ValueError) as e:
                    raise ValidationError(f"Malformed risk metrics: {e}") from e
            elif body.get("scenarioId"):
                metrics = self._scenarios.risk_service.get_risk_assessment(str(body["scenarioId"])).metrics
            else:
                raise ValidationError("Either riskMetrics or scenarioId is required")

            triggered = self._alerts.check_alerts(user_id, metrics)
            return _envelope(200, f"{len(triggered)} alerts triggered", [a.to_dict() for a in triggered])

    def run(self) -> None:
        """Serve with uvicorn (blocking)."""
        import uvicorn

        logger.info(f"Scenario Lab server starting on {self._host}:{self._port}")
        uvicorn.run(self._app, host=self._host, port=self._port)


def create_server(config: EngineConfig | None = None) -> ScenarioLabServer:
    """
    Create a server instance.

    Example:
        server = create_server(load_config("config.yaml"))
        server.run()
    """
    return ScenarioLabServer(config)
