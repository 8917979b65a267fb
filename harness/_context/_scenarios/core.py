from logging import FileHandler
from pathlib import Path
import shutil

import pytest
from harness._logger import logger, get_log_formatter


class ScenarioGroup:
    scenarios: list["Scenario"]
    name: str = ""

    def __init__(self) -> None:
        self.scenarios = []

    def __call__(self, test_object):  # noqa: ANN001 (tes_object can be a class or a class method)
        """Handles @scenario_groups.scenario_group_name"""

        for scenario in self.scenarios:
            scenario(test_object)

        return test_object


class _ScenarioGroups:
    all = ScenarioGroup()
    cosmos_latency = ScenarioGroup()
    essentials = ScenarioGroup()

    def __getitem__(self, key: str) -> ScenarioGroup:
        key = key.replace("-", "_").lower()

        if not hasattr(self, key):
            names: list[str] = [name for name in dir(self) if not name.startswith("_")]
            names.sort()
            separator = "\n* "
            raise ValueError(f"Scenario group `{key}` does not exist. Valid values are:\n* {separator.join(names)}")

        return getattr(self, key)


# populate names
for name, group in _ScenarioGroups.__dict__.items():
    if isinstance(group, ScenarioGroup):
        group.name = name

scenario_groups = _ScenarioGroups()

# safeguard to ensure that names are set
assert scenario_groups.all.name == "all", "Scenario group 'all' should be named 'all'"


class Scenario:
    def __init__(self, name: str, doc: str, scenario_groups: list[ScenarioGroup] | None = None) -> None:
        self.name = name
        self.doc = doc
        self.scenario_groups = scenario_groups or []

        self.scenario_groups = list(set(self.scenario_groups))  # removes duplicates

        for group in self.scenario_groups:
            assert isinstance(group, ScenarioGroup), f"Invalid scenario group {group} for {self.name}"
            group.scenarios.append(self)

    def __repr__(self) -> str:
        return f"Scenario {self.name!r}"

    def _reset_log_folder(self):
        shutil.rmtree(self.host_log_folder, ignore_errors=True)
        Path(self.host_log_folder).mkdir(parents=True, exist_ok=True)

    def __call__(self, test_object):  # noqa: ANN001 (tes_object can be a class or a class method)
        """Handles @scenarios.scenario_name"""

        pytest.mark.scenario(self.name)(test_object)

        return test_object

    def pytest_configure(self, config: pytest.Config):
        self._reset_log_folder()

        handler = FileHandler(f"{self.host_log_folder}/tests.log", encoding="utf-8")
        handler.setFormatter(get_log_formatter())

        logger.addHandler(handler)

        self.configure(config)

    def configure(self, config: pytest.Config): ...

    def pytest_sessionstart(self, session: pytest.Session):  # noqa: ARG002
        """Called at the very begining of the process"""

        logger.terminal.write_sep("=", "test context", bold=True)

        for warmup in self.get_warmups():
            logger.info(f"Executing warmup {warmup}")
            warmup()

    def get_warmups(self):
        return [
            lambda: logger.stdout(f"Scenario: {self.name}"),
            lambda: logger.stdout(f"Logs folder: ./{self.host_log_folder}"),
        ]

    def pytest_sessionfinish(self, session: pytest.Session, exitstatus: int):
        """Called at the end of the process"""

    @property
    def host_log_folder(self):
        return "logs" if self.name == "DEFAULT" else f"logs_{self.name.lower()}"
