#!/usr/bin/env python3
"""
Scenario Lab - Command Line Entry Point
=======================================

Commands:
    simulate   Direct GBM / jump-diffusion price path
    run        Create and run a scenario from a YAML or JSON file
    stress     Run one stress test (or a named template)
    templates  List stress-test and alert templates
    serve      Start the HTTP API

Examples:
    python main.py simulate --price 100 --drift 0.05 --volatility 0.2 --horizon 1 --steps 252
    python main.py run scenarios/example.yaml --stress
    python main.py stress --template "Flash Crash"
    python main.py --config config.yaml serve
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

import yaml

from core.alerting import AlertService
from core.config import EngineConfig, load_config
from core.exceptions import ScenarioLabError, ValidationError
from core.logging_config import LoggingConfig, configure_logging
from core.market_simulator import MarketSimulator
from core.models import StressTestScenario
from core.notifications import create_notification_manager
from core.scenario_modeling import ScenarioModelingService
from core.stress_tester import StressTester

logger = logging.getLogger(__name__)


def _load_document(path: str) -> dict[str, Any]:
    file_path = Path(path)
    if not file_path.exists():
        raise ValidationError(f"File not found: {path}")
    with open(file_path, "r") as f:
        if file_path.suffix in (".yaml", ".yml"):
            data = yaml.safe_load(f)
        else:
            data = json.load(f)
    if not isinstance(data, dict):
        raise ValidationError(f"{path} must contain a mapping")
    return data


def _print(data: Any) -> None:
    print(json.dumps(data, indent=2, default=str))


def _build_services(config: EngineConfig, seed: int | None) -> tuple[ScenarioModelingService, StressTester]:
    simulation = config.simulation
    if seed is not None:
        simulation["seed"] = seed
    scenarios = ScenarioModelingService(config.raw, simulator=MarketSimulator(config=simulation))
    stress = StressTester(
        config.stress,
        simulator=MarketSimulator(config=simulation),
        risk_service=scenarios.risk_service,
        repository=scenarios.repository,
    )
    return scenarios, stress


def cmd_simulate(args: argparse.Namespace, config: EngineConfig) -> int:
    scenarios, _ = _build_services(config, args.seed)
    result = scenarios.run_market_simulation({
        "symbol": args.symbol,
        "initialPrice": args.price,
        "drift": args.drift,
        "volatility": args.volatility,
        "timeHorizon": args.horizon,
        "steps": args.steps,
        "model": args.model,
    })
    _print(result)
    return 0


def cmd_run(args: argparse.Namespace, config: EngineConfig) -> int:
    scenarios, stress = _build_services(config, args.seed)
    document = _load_document(args.file)

    scenario = scenarios.create_scenario(document.get("scenario", document))
    result = scenarios.run_scenario(scenario.id)
    output: dict[str, Any] = {"scenario": scenario.id, "result": result.to_dict()}

    if args.stress:
        output["stressTests"] = [r.to_dict() for r in stress.run_templates(scenario.id)]

    alerts = document.get("alerts")
    if alerts:
        service = AlertService(notifier=create_notification_manager(config.alerts))
        for alert in alerts:
            service.create_alert("cli", alert)
        output["triggeredAlerts"] = [
            a.to_dict() for a in service.check_alerts("cli", result.risk_metrics)
        ]

    if not args.include_curve:
        output["result"].pop("equityCurve", None)
    _print(output)
    return 0


def cmd_stress(args: argparse.Namespace, config: EngineConfig) -> int:
    simulation = config.simulation
    if args.seed is not None:
        simulation["seed"] = args.seed
    # standalone stress tests are not tied to a stored scenario
    stress = StressTester(config.stress, simulator=MarketSimulator(config=simulation))

    if args.template:
        matches = [t for t in stress.get_all_templates() if t.name == args.template]
        if not matches:
            raise ValidationError(f"Unknown stress template: {args.template}")
        scenario = matches[0]
    else:
        if not args.type:
            raise ValidationError("--type or --template is required")
        scenario = StressTestScenario.from_dict({
            "name": args.name,
            "type": args.type,
            "severity": args.severity,
        })

    result = stress.run_stress_test(args.scenario_id, scenario)
    _print(result.to_dict())
    return 0


def cmd_templates(args: argparse.Namespace, config: EngineConfig) -> int:
    stress = StressTester(config.stress)
    _print({
        "stressTests": [t.to_dict() for t in stress.get_stress_test_templates()],
        "customStressTests": [t.to_dict() for t in stress.get_custom_templates()],
        "alerts": [a.to_dict() for a in AlertService().get_default_alert_templates()],
    })
    return 0


def cmd_serve(args: argparse.Namespace, config: EngineConfig) -> int:
    from api.server import create_server

    if args.host:
        config.raw["server"]["host"] = args.host
    if args.port:
        config.raw["server"]["port"] = args.port
    create_server(config).run()
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Scenario modeling and risk assessment for trading strategies",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--config", "-c", help="YAML config file (default: $SCENARIO_LAB_CONFIG)")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    sub = parser.add_subparsers(dest="command", required=True)

    simulate = sub.add_parser("simulate", help="Simulate a single price path")
    simulate.add_argument("--symbol", default="SIM")
    simulate.add_argument("--price", type=float, default=100.0)
    simulate.add_argument("--drift", type=float, default=0.05)
    simulate.add_argument("--volatility", type=float, default=0.2)
    simulate.add_argument("--horizon", type=float, default=1.0)
    simulate.add_argument("--steps", type=int, default=252)
    simulate.add_argument("--model", choices=["gbm", "jump_diffusion"], default="gbm")
    simulate.add_argument("--seed", type=int)
    simulate.set_defaults(handler=cmd_simulate)

    run = sub.add_parser("run", help="Run a scenario from a YAML/JSON file")
    run.add_argument("file")
    run.add_argument("--stress", action="store_true", help="Also run every stress template")
    run.add_argument("--include-curve", action="store_true", help="Keep the equity curve in the output")
    run.add_argument("--seed", type=int)
    run.set_defaults(handler=cmd_run)

    stress = sub.add_parser("stress", help="Run a stress test")
    stress.add_argument("--template", help="Name of a stress template")
    stress.add_argument("--type", choices=["market_crash", "volatility_spike",
                                           "interest_rate_change", "liquidity_crisis"])
    stress.add_argument("--severity", choices=["mild", "moderate", "severe"], default="moderate")
    stress.add_argument("--name", default="Custom Stress Test")
    stress.add_argument("--scenario-id", default="standalone")
    stress.add_argument("--seed", type=int)
    stress.set_defaults(handler=cmd_stress)

    templates = sub.add_parser("templates", help="List stress and alert templates")
    templates.set_defaults(handler=cmd_templates)

    serve = sub.add_parser("serve", help="Start the HTTP API")
    serve.add_argument("--host")
    serve.add_argument("--port", type=int)
    serve.set_defaults(handler=cmd_serve)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    try:
        config = load_config(args.config)
    except ScenarioLabError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 2

    logging_config = LoggingConfig.from_settings(config.logging)
    if args.verbose:
        logging_config.root_level = logging.DEBUG
        for module_name in logging_config.module_levels:
            logging_config.module_levels[module_name] = logging.DEBUG
    configure_logging(logging_config)

    try:
        return args.handler(args, config)
    except ScenarioLabError as e:
        logger.error(f"{args.command} failed: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
