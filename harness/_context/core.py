"""singleton exposing all about test context"""

from typing import Any

from harness._context._scenarios.core import Scenario


class _Context:
    """Context is an helper class that exposes scenario properties
    Those properties may be used in tests and fixtures, and thus, should always exists, even if the current
    scenario does not define them.
    """

    scenario: Scenario  # will be set by pytest_configure

    def _get_scenario_property(self, name: str, default: Any) -> Any:  # noqa:ANN401
        if hasattr(self.scenario, name):
            return getattr(self.scenario, name)

        return default

    @property
    def delay(self) -> float:
        return self._get_scenario_property("delay", 0.0)

    @property
    def budget(self) -> float | None:
        return self._get_scenario_property("budget", None)

    @property
    def ceiling(self) -> float | None:
        return self._get_scenario_property("ceiling", None)

    def serialize(self) -> dict[str, Any]:
        return {
            "scenario": self.scenario.name,
            "delay": self.delay,
            "budget": self.budget,
            "ceiling": self.ceiling,
        }


context = _Context()
