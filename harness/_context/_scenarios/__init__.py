import json

from harness._settings import update_environ_with_local_env

from .core import Scenario, scenario_groups
from .cosmos_latency import CosmosLatencyScenario

update_environ_with_local_env()


class _Scenarios:
    default = Scenario(
        "DEFAULT",
        doc="Harness self checks: proxy, rewriter, delay and runner, against local fake backends",
        scenario_groups=[scenario_groups.essentials],
    )

    cosmos_delay_2s = CosmosLatencyScenario(
        "COSMOS_DELAY_2S",
        doc=(
            "Responses are delayed by 2 seconds, twice the client end-to-end latency budget. "
            "Point reads are expected to fail fast; queries and bulk writes were seen retrying past the budget"
        ),
        delay=2.0,
    )

    cosmos_delay_10s = CosmosLatencyScenario(
        "COSMOS_DELAY_10S",
        doc=(
            "Responses are delayed by 10 seconds. Queries were seen looping after their 3 retries, "
            "the external ceiling reports them as hangs"
        ),
        delay=10.0,
    )


scenarios = _Scenarios()


def get_all_scenarios() -> list[Scenario]:
    result = []
    for name in dir(scenarios):
        if not name.startswith("_"):
            scenario: Scenario = getattr(scenarios, name)
            if issubclass(scenario.__class__, Scenario):
                result.append(scenario)

    return result


def _main():
    data = {
        scenario.name: {
            "name": scenario.name,
            "doc": scenario.doc,
            "scenario_groups": [group.name for group in scenario.scenario_groups],
        }
        for scenario in get_all_scenarios()
    }

    print(json.dumps(data, indent=2))  # noqa: T201


if __name__ == "__main__":
    _main()
