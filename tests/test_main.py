"""
Tests for the Command Line
==========================

Each subcommand through main(argv), output parsed from stdout.
"""

import json
import logging
from pathlib import Path

import pytest
import yaml

from core.config import CONFIG_ENV_VAR
from main import main


EXAMPLE = Path(__file__).resolve().parent.parent / "scenarios" / "example.yaml"


@pytest.fixture(autouse=True)
def isolate_logging(monkeypatch):
    """main() reconfigures the root logger; restore it afterwards."""
    monkeypatch.delenv(CONFIG_ENV_VAR, raising=False)
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def run_cli(capsys, *argv):
    code = main(list(argv))
    out = capsys.readouterr().out
    return code, out


class TestSimulateCommand:
    def test_gbm(self, capsys):
        code, out = run_cli(capsys, "simulate", "--steps", "10", "--seed", "1")

        assert code == 0
        data = json.loads(out)
        assert data["symbol"] == "SIM"
        assert len(data["prices"]) == 11

    def test_seed_reproducible(self, capsys):
        _, first = run_cli(capsys, "simulate", "--model", "jump_diffusion", "--seed", "5")
        _, second = run_cli(capsys, "simulate", "--model", "jump_diffusion", "--seed", "5")

        assert json.loads(first)["prices"] == json.loads(second)["prices"]

    def test_invalid_inputs(self, capsys):
        code, _ = run_cli(capsys, "simulate", "--price", "-1")
        assert code == 1


class TestRunCommand:
    def test_example_file(self, capsys):
        code, out = run_cli(capsys, "run", str(EXAMPLE), "--seed", "3")

        assert code == 0
        data = json.loads(out)
        assert data["result"]["scenarioId"] == data["scenario"]
        assert "equityCurve" not in data["result"]
        assert isinstance(data["triggeredAlerts"], list)
        assert "stressTests" not in data

    def test_include_curve_and_stress(self, capsys):
        code, out = run_cli(capsys, "run", str(EXAMPLE), "--seed", "3", "--include-curve", "--stress")

        assert code == 0
        data = json.loads(out)
        assert len(data["result"]["equityCurve"]) == 14 * 24
        assert len(data["stressTests"]) == 5

    def test_bare_scenario_json(self, capsys, tmp_path):
        path = tmp_path / "scenario.json"
        path.write_text(json.dumps({
            "name": "bare",
            "duration": 1,
            "marketConditions": [{"symbol": "X", "price": 10, "volatility": 0.1, "volume": 100}],
            "strategies": [{"id": "x", "type": "long", "symbol": "X", "entryPrice": 10, "quantity": 1}],
        }))

        code, out = run_cli(capsys, "run", str(path))

        assert code == 0
        assert "triggeredAlerts" not in json.loads(out)

    def test_invalid_scenario(self, capsys, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text(yaml.safe_dump({"name": "bad", "duration": 0, "marketConditions": []}))

        code, out = run_cli(capsys, "run", str(path))

        assert code == 1
        assert out == ""

    def test_missing_file(self, capsys, tmp_path):
        code, _ = run_cli(capsys, "run", str(tmp_path / "absent.yaml"))
        assert code == 1


class TestStressCommand:
    def test_template(self, capsys):
        code, out = run_cli(capsys, "stress", "--template", "Flash Crash", "--seed", "2")

        assert code == 0
        data = json.loads(out)
        assert data["stressScenario"]["name"] == "Flash Crash"
        assert data["scenarioId"] == "standalone"

    def test_custom_type(self, capsys):
        code, out = run_cli(capsys, "stress", "--type", "volatility_spike", "--severity", "mild")

        assert code == 0
        assert json.loads(out)["stressScenario"]["severity"] == "mild"

    def test_unknown_template(self, capsys):
        code, _ = run_cli(capsys, "stress", "--template", "Alien Invasion")
        assert code == 1

    def test_type_or_template_required(self, capsys):
        code, _ = run_cli(capsys, "stress")
        assert code == 1


class TestTemplatesCommand:
    def test_lists_both_catalogues(self, capsys):
        code, out = run_cli(capsys, "templates")

        assert code == 0
        data = json.loads(out)
        assert len(data["stressTests"]) == 5
        assert len(data["alerts"]) == 4
        assert data["customStressTests"] == []


class TestConfigOption:
    def test_invalid_config(self, capsys, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"server": {"port": 0}}))

        assert main(["--config", str(path), "templates"]) == 2
        assert "Configuration error" in capsys.readouterr().err

    def test_stress_section_applied(self, capsys, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"stress": {"steps": 24}, "logging": {"level": "ERROR"}}))

        code = main(["--config", str(path), "stress", "--type", "market_crash", "--seed", "1"])

        assert code == 0
        assert json.loads(capsys.readouterr().out)["results"]["recoveryTime"] <= 24
