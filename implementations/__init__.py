from .runner import ScenarioRunner
from .scenarios import Scenario, ScenarioContext, default_scenarios

__all__ = [
    "ScenarioRunner",
    "Scenario",
    "ScenarioContext",
    "default_scenarios",
]
