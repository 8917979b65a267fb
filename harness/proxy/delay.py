from collections.abc import Iterator
from contextlib import contextmanager
import threading


class DelayController:
    """Holds the artificial delay, in seconds, applied to every proxied response.

    The value is written by the scenario runner and read by the proxy event loop,
    just before each response is delayed. A change is visible to every response
    that has not yet started its delay, including requests already in flight.
    """

    def __init__(self, seconds: float = 0.0) -> None:
        self._lock = threading.Lock()
        self._seconds = 0.0
        self.set_delay(seconds)

    def set_delay(self, seconds: float) -> None:
        seconds = float(seconds)
        if seconds < 0:
            raise ValueError(f"Delay must be positive or zero, got {seconds}")

        with self._lock:
            self._seconds = seconds

    def current_delay(self) -> float:
        with self._lock:
            return self._seconds

    @contextmanager
    def delayed(self, seconds: float) -> Iterator["DelayController"]:
        previous = self.current_delay()
        self.set_delay(seconds)
        try:
            yield self
        finally:
            self.set_delay(previous)

    def __repr__(self) -> str:
        return f"DelayController({self.current_delay()}s)"
