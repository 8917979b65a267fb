# Unless explicitly stated otherwise all files in this repository are licensed under the the Apache License Version 2.0.
# This product includes software developed at Datadog (https://www.datadoghq.com/).
# Copyright 2021 Datadog, Inc.

# singletons
from harness._context.core import context
from harness._context._scenarios import scenarios, scenario_groups
from harness._errors import HarnessError, ProxyStartupError, ProxyStateError
from harness._logger import logger
from harness._runner import Finding, OperationResult, ScenarioOutcome, ScenarioRunner, run_with_ceiling, scenario_session
from harness.proxy import DelayController, InterceptionProxy

__all__ = [
    "DelayController",
    "Finding",
    "HarnessError",
    "InterceptionProxy",
    "OperationResult",
    "ProxyStartupError",
    "ProxyStateError",
    "ScenarioOutcome",
    "ScenarioRunner",
    "context",
    "logger",
    "run_with_ceiling",
    "scenario_groups",
    "scenario_session",
    "scenarios",
]
