import pytest

import main
import settings
from guest_harness.models import ScenarioResult
from implementations.runner import ScenarioRunner


@pytest.fixture
def ran(monkeypatch):
    """Replace ScenarioRunner.run; scenarios named in `failing` fail."""
    state = {"names": [], "failing": set()}

    def fake_run(self, scenario):
        state["names"].append(scenario.name)
        if scenario.name in state["failing"]:
            return ScenarioResult(scenario.name, False, "boot", "died")
        return ScenarioResult(scenario.name, True)

    monkeypatch.setattr(ScenarioRunner, "run", fake_run)
    return state


def test_list(capsys, ran):
    assert main.main(["--list"]) == 0
    out = capsys.readouterr().out
    assert "simple_launch" in out and "serial_file" in out
    assert ran["names"] == []


def test_all_pass(ran):
    assert main.main(["--scenario", "simple_launch", "--scenario", "multi_cpu"]) == 0
    assert ran["names"] == ["simple_launch", "multi_cpu"]


def test_failure_is_isolated(ran, capsys):
    ran["failing"] = {"simple_launch"}
    assert main.main(["--scenario", "simple_launch", "--scenario", "multi_cpu"]) == 1
    assert ran["names"] == ["simple_launch", "multi_cpu"]
    out = capsys.readouterr().out
    assert "FAILED [boot] simple_launch: died" in out
    assert "PASSED multi_cpu" in out


def test_fail_fast_stops(ran):
    ran["failing"] = {"simple_launch"}
    rc = main.main(
        ["--fail-fast", "--scenario", "simple_launch", "--scenario", "multi_cpu"]
    )
    assert rc == 1
    assert ran["names"] == ["simple_launch"]


def test_unknown_scenario_exits_nonzero(ran, capsys):
    assert main.main(["--scenario", "nope"]) == 1
    assert "Error [configuration]" in capsys.readouterr().err
    assert ran["names"] == []


def test_bad_override_exits_nonzero(ran, capsys):
    assert main.main(["--set", "cpus=0"]) == 1
    assert "Error [configuration]" in capsys.readouterr().err


def test_workloads_override(ran, monkeypatch, tmp_path):
    monkeypatch.setattr(settings, "WORKLOADS_DIR", settings.WORKLOADS_DIR)
    assert main.main(["--workloads", str(tmp_path), "--scenario", "pci_msi"]) == 0
    assert settings.WORKLOADS_DIR == str(tmp_path)
