# Unless explicitly stated otherwise all files in this repository are licensed under the the Apache License Version 2.0.
# This product includes software developed at Datadog (https://www.datadoghq.com/).
# Copyright 2021 Datadog, Inc.

from collections.abc import Callable
import json
import os

import pytest

from harness import context
from harness._context._scenarios import scenarios, Scenario
from harness._context._scenarios.cosmos_latency import CosmosLatencyScenario
from harness._logger import logger
from harness._runner import ScenarioOutcome, ScenarioRunner
from harness.cosmos import CosmosTarget

# outcomes of every operation run during the session, dumped at the end
_outcomes: list[dict] = []


def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--scenario", "-S", type=str, action="store", default="DEFAULT", help="Unique identifier of scenario"
    )
    parser.addoption(
        "--delay", type=float, action="store", default=None, help="Override the delay injected by the proxy, seconds"
    )
    parser.addoption(
        "--ceiling",
        type=float,
        action="store",
        default=None,
        help="External wall-clock bound of one operation, seconds",
    )
    parser.addoption("--cosmos-endpoint", type=str, action="store", default=None, help="Real Cosmos account URL")


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "scenario(name): scenario(s) in which the test is executed")

    # handle options that can be filled by environ
    if not config.option.cosmos_endpoint and "COSMOS_ENDPOINT" in os.environ:
        config.option.cosmos_endpoint = os.environ["COSMOS_ENDPOINT"]

    # First of all, we must get the current scenario

    current_scenario: Scenario | None = None

    for name in dir(scenarios):
        if name.upper() == config.option.scenario.upper():
            current_scenario = getattr(scenarios, name)
            break

    if current_scenario is not None:
        current_scenario.pytest_configure(config)
        context.scenario = current_scenario
    else:
        pytest.exit(f"Scenario {config.option.scenario} does not exist", 1)


# Called at the very begening
def pytest_sessionstart(session: pytest.Session) -> None:
    # get the terminal to allow logging directly in stdout
    logger.terminal = session.config.pluginmanager.get_plugin("terminalreporter")

    # if only collect tests, do not start the scenario
    if not session.config.option.collectonly:
        context.scenario.pytest_sessionstart(session)


def pytest_collection_modifyitems(session: pytest.Session, config: pytest.Config, items: list[pytest.Item]) -> None:  # noqa: ARG001
    """Unselect items that are not included in the current scenario"""

    logger.debug("pytest_collection_modifyitems")

    selected = []
    deselected = []

    for item in items:
        # if the item has explicit scenario markers, we use them
        # otherwise we use markers declared on its parents
        own_markers = [marker for marker in item.own_markers if marker.name == "scenario"]
        scenario_markers = own_markers if len(own_markers) != 0 else list(item.iter_markers("scenario"))
        if len(scenario_markers) == 0:
            declared_scenarios = ["DEFAULT"]
        else:
            declared_scenarios = [marker.args[0] for marker in scenario_markers]

        if context.scenario.name in declared_scenarios:
            logger.info(f"{item.nodeid} is included in {context.scenario}")
            selected.append(item)
        else:
            logger.debug(f"{item.nodeid} is not included in {context.scenario}")
            deselected.append(item)

    items[:] = selected
    config.hook.pytest_deselected(items=deselected)


@pytest.fixture
def cosmos_runner() -> ScenarioRunner[CosmosTarget]:
    scenario = context.scenario
    assert isinstance(scenario, CosmosLatencyScenario), f"{scenario} is not a Cosmos latency scenario"

    if scenario.skip_reason is not None:
        pytest.skip(scenario.skip_reason)

    return scenario.get_runner()


@pytest.fixture
def record_outcome(request: pytest.FixtureRequest) -> Callable[[ScenarioOutcome], ScenarioOutcome]:
    def record(outcome: ScenarioOutcome) -> ScenarioOutcome:
        _outcomes.append(
            {
                "nodeid": request.node.nodeid,
                "operation": outcome.operation,
                "elapsed": round(outcome.elapsed, 3),
                "result": str(outcome.result),
                "finding": str(outcome.finding),
                "exchanges": outcome.exchanges,
                "error": repr(outcome.error) if outcome.error is not None else None,
            }
        )
        return outcome

    return record


def pytest_sessionfinish(session: pytest.Session, exitstatus: int) -> None:
    if session.config.option.collectonly:
        return

    context.scenario.pytest_sessionfinish(session, exitstatus)

    if _outcomes:
        with open(f"{context.scenario.host_log_folder}/outcomes.json", "w", encoding="utf-8") as f:
            json.dump({"context": context.serialize(), "outcomes": _outcomes}, f, indent=2)
