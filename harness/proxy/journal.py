from dataclasses import dataclass, field, asdict
from datetime import datetime, UTC
import json
import os
from pathlib import Path
import threading
from typing import Any

from harness._logger import logger
from harness.proxy.scrubber import scrub_headers


class ObjectDumpEncoder(json.JSONEncoder):
    def default(self, o: Any) -> Any:  # noqa: ANN401
        if isinstance(o, bytes):
            return str(o)
        return json.JSONEncoder.default(self, o)


@dataclass
class Exchange:
    """One request/response pair that went through the proxy"""

    method: str
    path: str
    query: str
    status_code: int | None
    timestamp_start: float
    backend_duration: float
    delay: float
    rewritten: bool = False
    error: str | None = None
    request_headers: list[tuple[str, str]] = field(default_factory=list)
    response_headers: list[tuple[str, str]] = field(default_factory=list)
    request_length: int = 0
    response_length: int = 0

    @property
    def is_error(self) -> bool:
        return self.error is not None

    def serialize(self) -> dict[str, Any]:
        data = asdict(self)
        data["timestamp_start"] = datetime.fromtimestamp(self.timestamp_start, tz=UTC).isoformat()
        data["request_headers"] = scrub_headers(self.request_headers)
        data["response_headers"] = scrub_headers(self.response_headers)
        return data


class Journal:
    """Thread safe record of exchanges, optionally dumped in <log_folder>/interfaces/proxy"""

    def __init__(self, log_folder: str | None = None) -> None:
        self._lock = threading.Lock()
        self._exchanges: list[Exchange] = []
        self._folder: Path | None = None

        if log_folder is not None:
            self._folder = Path(log_folder) / "interfaces" / "proxy"
            self._folder.mkdir(parents=True, exist_ok=True)

    def append(self, exchange: Exchange) -> None:
        with self._lock:
            self._exchanges.append(exchange)
            count = len(self._exchanges)

        if self._folder is not None:
            self._dump(count, exchange)

    def _dump(self, count: int, exchange: Exchange) -> None:
        assert self._folder is not None
        log_filename = self._folder / f"{count:05d}_{exchange.path.replace('/', '_')[:100]}.json"
        data = exchange.serialize()
        data["log_filename"] = str(log_filename)

        logger.debug(f"    => Saving {exchange.method} {exchange.path} as {log_filename}")

        with open(log_filename, "w", encoding="utf-8", opener=lambda path, flags: os.open(path, flags, 0o666)) as f:
            json.dump(data, f, indent=2, cls=ObjectDumpEncoder)

    @property
    def exchanges(self) -> list[Exchange]:
        with self._lock:
            return list(self._exchanges)

    def __len__(self) -> int:
        with self._lock:
            return len(self._exchanges)

    def since(self, index: int) -> list[Exchange]:
        with self._lock:
            return self._exchanges[index:]

    def clear(self) -> None:
        with self._lock:
            self._exchanges.clear()
