"""Cosmos latency scenarios.

The client is configured with an end-to-end latency budget shorter than the delay
injected by the proxy. A client honoring its budget fails fast, near the budget. The
anomaly under study is a client that keeps retrying well past it.
"""

import dataclasses

from azure.cosmos import ConsistencyLevel
import pytest

from harness._logger import logger
from harness._runner import ScenarioRunner
from harness._settings import Settings
from harness.cosmos import CLIENT_TIMEOUT_ERRORS, ClientPolicy, CosmosTarget, build_client
from harness.proxy import DelayController, InterceptionProxy

from .core import Scenario, scenario_groups


class CosmosLatencyScenario(Scenario):
    """Drives Cosmos operations through the interception proxy with a fixed delay

    Args:
        delay: seconds the proxy waits before returning each response
        budget: end-to-end latency budget given to the client
        retry_max_attempts: client retry attempt cap
        retry_max_wait: client cumulated retry wait cap, in seconds
        ceiling: external wall-clock bound of one operation, independent of the client
    """

    def __init__(
        self,
        name: str,
        doc: str,
        *,
        delay: float,
        budget: float = 1.0,
        retry_max_attempts: int = 3,
        retry_max_wait: float = 12.0,
        ceiling: float = 60.0,
        consistency_level: str = ConsistencyLevel.Session,
    ) -> None:
        super().__init__(name, doc=doc, scenario_groups=[scenario_groups.all, scenario_groups.cosmos_latency])

        self.delay = delay
        self.budget = budget
        self.retry_max_attempts = retry_max_attempts
        self.retry_max_wait = retry_max_wait
        self.ceiling = ceiling
        self.consistency_level = consistency_level

        self.settings = Settings()
        self.delay_controller = DelayController()

    def configure(self, config: pytest.Config):
        self.settings = Settings.from_environ()

        if config.option.cosmos_endpoint:
            self.settings = dataclasses.replace(self.settings, cosmos_endpoint=config.option.cosmos_endpoint)

        if config.option.delay is not None:
            self.delay = config.option.delay
        elif self.settings.delay_override is not None:
            self.delay = self.settings.delay_override

        if config.option.ceiling is not None:
            self.ceiling = config.option.ceiling
        elif self.settings.ceiling is not None:
            self.ceiling = self.settings.ceiling

    def get_warmups(self):
        warmups = super().get_warmups()
        warmups.append(
            lambda: logger.stdout(
                f"Delay: {self.delay}s, client budget: {self.budget}s, retries: {self.retry_max_attempts} "
                f"(max wait {self.retry_max_wait}s), ceiling: {self.ceiling}s"
            )
        )
        warmups.append(lambda: logger.stdout(f"Backend: {self.settings.cosmos_endpoint or 'not configured'}"))
        return warmups

    @property
    def skip_reason(self) -> str | None:
        if not self.settings.has_credentials:
            return "COSMOS_ENDPOINT and COSMOS_KEY must be set to run Cosmos scenarios"
        return None

    def _get_policy(self, proxy: InterceptionProxy) -> ClientPolicy:
        return ClientPolicy.for_proxy(
            proxy.base_url,
            self.settings,
            ca_cert=proxy.ca_cert_path,
            consistency_level=self.consistency_level,
            retry_max_attempts=self.retry_max_attempts,
            retry_max_wait=self.retry_max_wait,
            latency_budget=self.budget,
        )

    def _build_target(self, proxy: InterceptionProxy) -> CosmosTarget:
        policy = self._get_policy(proxy)
        return CosmosTarget.from_settings(build_client(policy), policy, self.settings)

    def get_runner(self) -> ScenarioRunner[CosmosTarget]:
        assert self.settings.cosmos_endpoint is not None

        return ScenarioRunner(
            self.settings.cosmos_endpoint,
            self._build_target,
            delay_seconds=self.delay,
            budget=self.budget,
            ceiling=self.ceiling,
            tolerance=self.settings.budget_tolerance,
            timeout_errors=CLIENT_TIMEOUT_ERRORS,
            delay=self.delay_controller,
            proxy_options={"certificate": self.settings.proxy_cert, "log_folder": self.host_log_folder},
        )
