# Unless explicitly stated otherwise all files in this repository are licensed under the the Apache License Version 2.0.
# This product includes software developed at Datadog (https://www.datadoghq.com/).
# Copyright 2021 Datadog, Inc.

"""Runs one operation of the client under test behind the interception proxy, and
classifies how long it took compared with the client budget and an external ceiling.
"""

from collections.abc import Callable, Iterator
from contextlib import AbstractContextManager, ExitStack, contextmanager
from dataclasses import dataclass, field
from enum import StrEnum
import threading
import time
from typing import Any, Generic, TypeVar

from harness._logger import logger
from harness.proxy import DelayController, InterceptionProxy

T = TypeVar("T")


class OperationResult(StrEnum):
    SUCCESS = "success"
    CLIENT_TIMEOUT = "client_timeout"
    ERROR = "error"
    HANG = "hang"


class Finding(StrEnum):
    BOUNDED = "bounded"
    """The operation ended (whatever the result) within the client budget"""

    OVER_BUDGET = "over_budget"
    """The operation ended, but after the client budget"""

    HANG = "hang"
    """The operation did not end before the external ceiling"""


@dataclass
class ScenarioOutcome:
    operation: str
    elapsed: float
    result: OperationResult
    budget: float
    ceiling: float
    tolerance: float = 0.5
    error: BaseException | None = None
    value: Any = None
    exchanges: int = 0

    @property
    def finding(self) -> Finding:
        if self.result == OperationResult.HANG:
            return Finding.HANG

        if self.elapsed <= self.budget + self.tolerance:
            return Finding.BOUNDED

        return Finding.OVER_BUDGET

    def exceeded(self, bound: float) -> bool:
        return self.elapsed > bound

    def __str__(self) -> str:
        result = f"{self.operation}: {self.result} after {self.elapsed:.2f}s => {self.finding}"
        result += f" (budget {self.budget}s, ceiling {self.ceiling}s, {self.exchanges} proxied request(s))"
        if self.error is not None:
            result += f", error: {self.error!r}"[:500]
        return result


def run_with_ceiling(
    operation: Callable[[], Any],
    *,
    name: str,
    budget: float,
    ceiling: float,
    tolerance: float = 0.5,
    timeout_errors: tuple[type[BaseException], ...] = (),
) -> ScenarioOutcome:
    """Run operation in a daemon thread, and give up waiting for it after ceiling seconds.

    A thread can't be killed: on hang, the operation keeps running until the caller
    releases the resources it uses (client and proxy).
    """

    box: dict[str, Any] = {}
    done = threading.Event()

    def target() -> None:
        try:
            box["value"] = operation()
        except Exception as e:
            box["error"] = e
        finally:
            done.set()

    logger.info(f"Run {name} (budget {budget}s, ceiling {ceiling}s)")

    start = time.monotonic()
    thread = threading.Thread(target=target, name=f"operation-{name}", daemon=True)
    thread.start()
    finished = done.wait(ceiling)
    elapsed = time.monotonic() - start

    error: BaseException | None = box.get("error")

    if not finished:
        logger.error(f"{name} is still running after {ceiling}s, giving up")
        result = OperationResult.HANG
    elif error is None:
        result = OperationResult.SUCCESS
    elif isinstance(error, timeout_errors):
        result = OperationResult.CLIENT_TIMEOUT
    else:
        result = OperationResult.ERROR

    return ScenarioOutcome(
        operation=name,
        elapsed=elapsed,
        result=result,
        budget=budget,
        ceiling=ceiling,
        tolerance=tolerance,
        error=error,
        value=box.get("value"),
    )


@dataclass
class Session(Generic[T]):
    proxy: InterceptionProxy
    client: T
    delay: DelayController = field(repr=False)


def _release(name: str, release: Callable[[], Any]) -> None:
    try:
        release()
    except Exception:
        logger.exception(f"Failed to release {name}, carrying on")


def _get_closer(client: Any) -> Callable[[], Any] | None:  # noqa: ANN401
    if hasattr(client, "close"):
        return client.close

    if hasattr(client, "__exit__"):
        return lambda: client.__exit__(None, None, None)

    return None


@contextmanager
def scenario_session(
    backend_origin: str,
    client_factory: Callable[[InterceptionProxy], T],
    delay: DelayController,
    **proxy_options: Any,  # noqa: ANN401
) -> Iterator[Session[T]]:
    """Start a proxy, then a client pointed at it. Both are released on every exit path.

    A proxy startup failure is raised. Release failures are only logged, so that the next
    scenario can still start.
    """

    with ExitStack() as stack:
        proxy = InterceptionProxy(backend_origin, delay, **proxy_options)
        proxy.start()
        stack.callback(_release, "proxy configuration folder", proxy.remove_confdir)
        stack.callback(_release, "proxy", proxy.stop)

        client = client_factory(proxy)
        if (closer := _get_closer(client)) is not None:
            stack.callback(_release, "client", closer)

        yield Session(proxy=proxy, client=client, delay=delay)


class ScenarioRunner(Generic[T]):
    """Runs operations, each one in a fresh proxy + client session"""

    def __init__(
        self,
        backend_origin: str,
        client_factory: Callable[[InterceptionProxy], T],
        *,
        delay_seconds: float,
        budget: float,
        ceiling: float = 60.0,
        tolerance: float = 0.5,
        timeout_errors: tuple[type[BaseException], ...] = (),
        delay: DelayController | None = None,
        proxy_options: dict[str, Any] | None = None,
    ) -> None:
        if ceiling <= budget:
            raise ValueError(f"The ceiling ({ceiling}s) must be greater than the client budget ({budget}s)")

        self.backend_origin = backend_origin
        self.client_factory = client_factory
        self.delay_seconds = delay_seconds
        self.budget = budget
        self.ceiling = ceiling
        self.tolerance = tolerance
        self.timeout_errors = timeout_errors
        self.delay = delay if delay is not None else DelayController()
        self.proxy_options = proxy_options or {}

    def session(self) -> AbstractContextManager[Session[T]]:
        return scenario_session(self.backend_origin, self.client_factory, self.delay, **self.proxy_options)

    def run(self, name: str, operation: Callable[[T], Any]) -> ScenarioOutcome:
        # the client is built without delay, as the delay is only set once the client is ready
        self.delay.set_delay(0)

        with self.session() as session, self.delay.delayed(self.delay_seconds):
            first_exchange = len(session.proxy.journal)

            outcome = run_with_ceiling(
                lambda: operation(session.client),
                name=name,
                budget=self.budget,
                ceiling=self.ceiling,
                tolerance=self.tolerance,
                timeout_errors=self.timeout_errors,
            )
            outcome.exchanges = len(session.proxy.journal) - first_exchange

        logger.stdout(str(outcome))
        return outcome
