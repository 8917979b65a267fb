# Unless explicitly stated otherwise all files in this repository are licensed under the the Apache License Version 2.0.
# This product includes software developed at Datadog (https://www.datadoghq.com/).
# Copyright 2021 Datadog, Inc.

"""Latency injecting reverse proxy, built on mitmproxy.

The proxy terminates TLS, forwards every request to one backend, waits for the
configured delay once the backend response is fully received, rewrites backend URLs
in the response body, and returns it.
"""

import asyncio
from dataclasses import dataclass
from enum import StrEnum
from pathlib import Path
import shutil
import socket
import tempfile
import threading
import time
from types import TracebackType
from urllib.parse import urlsplit

from mitmproxy import master, options
from mitmproxy.addons import default_addons
from mitmproxy.http import HTTPFlow

from harness._errors import ProxyStartupError, ProxyStateError
from harness._logger import logger
from harness.proxy.delay import DelayController
from harness.proxy.journal import Exchange, Journal
from harness.proxy.ports import get_free_port, is_port_free
from harness.proxy.rewriter import rewrite_body, rewrite_urls

MITMPROXY_CA_CERT = "mitmproxy-ca-cert.pem"


class ProxyState(StrEnum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"


@dataclass(frozen=True)
class ProxyEndpoint:
    listen_host: str
    port: int
    base_url: str
    backend_origin: str
    certificate: str | None


def normalize_origin(url: str) -> str:
    """https://host:443/some/path -> https://host:443"""

    parts = urlsplit(url)
    if parts.scheme not in ("http", "https") or not parts.hostname:
        raise ValueError(f"Backend origin must be an absolute http(s) URL, got {url!r}")

    return f"{parts.scheme}://{parts.netloc}"


class _InterceptionAddon:
    """mitmproxy addon: delays and rewrites every response, and journals exchanges"""

    def __init__(self, backend_origin: str, base_url: str, delay: DelayController, journal: Journal) -> None:
        self.backend_origin = backend_origin
        self.base_url = base_url
        self.delay = delay
        self.journal = journal

        self.running_event = threading.Event()
        self._in_flight: set[str] = set()

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    def running(self) -> None:
        self.running_event.set()

    def request(self, flow: HTTPFlow) -> None:
        self._in_flight.add(flow.id)
        logger.info(f"{flow.request.method} {flow.request.pretty_url}")

    async def response(self, flow: HTTPFlow) -> None:
        assert flow.response is not None

        backend_duration = (flow.response.timestamp_end or time.time()) - flow.request.timestamp_start

        # read as late as possible, a change made while the backend was answering must apply
        delay = self.delay.current_delay()
        logger.info(
            f"    => {flow.request.pretty_url} Response {flow.response.status_code} "
            f"after {backend_duration:.3f}s, delaying {delay}s"
        )
        if delay > 0:
            await asyncio.sleep(delay)

        rewritten = self._rewrite(flow)

        self._record(flow, backend_duration=backend_duration, delay=delay, rewritten=rewritten)
        self._in_flight.discard(flow.id)

    def error(self, flow: HTTPFlow) -> None:
        # connection failures towards the backend: mitmproxy answers 502 by itself
        logger.error(f"    => {flow.request.pretty_url} failed: {flow.error}")

        if flow.id in self._in_flight:
            self._record(flow, backend_duration=time.time() - flow.request.timestamp_start, delay=0.0)
            self._in_flight.discard(flow.id)

    def _rewrite(self, flow: HTTPFlow) -> bool:
        assert flow.response is not None

        if location := flow.response.headers.get("location"):
            flow.response.headers["location"] = rewrite_urls(location, self.backend_origin, self.base_url)

        try:
            content = flow.response.get_content(strict=True)
        except ValueError:
            logger.debug(f"    => can't decode {flow.response.headers.get('content-encoding')} body, no URL rewrite")
            return False

        if not content:
            return False

        rewritten = rewrite_body(content, self.backend_origin, self.base_url)
        if rewritten is content:
            return False

        # the setter re-encodes the body and fixes content-length
        flow.response.content = rewritten
        logger.debug(f"    => Rewrote backend URLs in {flow.request.path} response")
        return True

    def _record(self, flow: HTTPFlow, *, backend_duration: float, delay: float, rewritten: bool = False) -> None:
        if "?" in flow.request.path:
            path, query = flow.request.path.split("?", 1)
        else:
            path, query = flow.request.path, ""

        response = flow.response

        self.journal.append(
            Exchange(
                method=flow.request.method,
                path=path,
                query=query,
                status_code=response.status_code if response else None,
                timestamp_start=flow.request.timestamp_start,
                backend_duration=backend_duration,
                delay=delay,
                rewritten=rewritten,
                error=str(flow.error) if flow.error else None,
                request_headers=list(flow.request.headers.items()),
                response_headers=list(response.headers.items()) if response else [],
                request_length=len(flow.request.raw_content or b""),
                response_length=len(response.raw_content or b"") if response else 0,
            )
        )


class InterceptionProxy:
    """Reverse proxy between the client under test and the real backend.

    The mitmproxy master runs on its own event loop, in a dedicated thread. Use it as a
    context manager, or call start() and stop().

    Args:
        backend_origin: URL of the real service, only scheme, host and port are used
        delay: shared delay holder, owned by the caller
        port: port to listen on. If None, a free port is picked, and startup is retried
            on a fresh port up to start_attempts times
        certificate: PEM file holding the certificate (and its private key) presented to
            the client. If None, mitmproxy signs a certificate with its own CA
        ssl_insecure: do not verify the backend certificate
        log_folder: if set, exchanges are dumped in <log_folder>/interfaces/proxy
    """

    def __init__(
        self,
        backend_origin: str,
        delay: DelayController | None = None,
        *,
        port: int | None = None,
        listen_host: str = "127.0.0.1",
        public_host: str = "localhost",
        certificate: str | None = None,
        ssl_insecure: bool = False,
        upstream_ca: str | None = None,
        log_folder: str | None = None,
        startup_timeout: float = 10.0,
        drain_timeout: float = 2.0,
        start_attempts: int = 3,
    ) -> None:
        self.backend_origin = normalize_origin(backend_origin)
        self.delay = delay if delay is not None else DelayController()
        self.journal = Journal(log_folder)

        self.listen_host = listen_host
        self.public_host = public_host
        self.certificate = certificate
        self.ssl_insecure = ssl_insecure
        self.upstream_ca = upstream_ca

        self.startup_timeout = startup_timeout
        self.drain_timeout = drain_timeout
        self.start_attempts = 1 if port is not None else max(1, start_attempts)

        self._requested_port = port
        self._port: int | None = None
        self._confdir: str | None = None

        self.state = ProxyState.STOPPED

        self._addon: _InterceptionAddon | None = None
        self._master: master.Master | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._thread: threading.Thread | None = None
        self._failure: BaseException | None = None

    def __repr__(self) -> str:
        return f"InterceptionProxy({self.backend_origin}, port={self._port}, {self.state})"

    @property
    def port(self) -> int:
        if self._port is None:
            raise ProxyStateError(f"{self} has no port, it has never been started")
        return self._port

    @property
    def base_url(self) -> str:
        return f"https://{self.public_host}:{self.port}/"

    @property
    def endpoint(self) -> ProxyEndpoint:
        return ProxyEndpoint(
            listen_host=self.listen_host,
            port=self.port,
            base_url=self.base_url,
            backend_origin=self.backend_origin,
            certificate=self.certificate,
        )

    @property
    def ca_cert_path(self) -> str:
        """PEM file the client must trust to accept the proxy certificate"""

        if self.certificate is not None:
            return self.certificate

        if self._confdir is None:
            raise ProxyStateError(f"{self} has not generated its CA yet")

        return str(Path(self._confdir) / MITMPROXY_CA_CERT)

    @property
    def in_flight(self) -> int:
        return self._addon.in_flight if self._addon else 0

    def start(self) -> "InterceptionProxy":
        if self.state != ProxyState.STOPPED:
            raise ProxyStateError(f"Can't start {self}")

        if self.certificate is not None and not Path(self.certificate).is_file():
            raise ProxyStartupError(f"TLS identity {self.certificate} does not exist")

        last_error: ProxyStartupError | None = None

        for attempt in range(1, self.start_attempts + 1):
            port = self._requested_port if self._requested_port is not None else get_free_port(self.listen_host)

            try:
                self._start_on(port)
            except ProxyStartupError as e:
                logger.warning(f"Proxy startup attempt {attempt}/{self.start_attempts} failed: {e}")
                last_error = e
            else:
                return self

        assert last_error is not None
        raise last_error

    def _start_on(self, port: int) -> None:
        self.state = ProxyState.STARTING
        self._port = port
        self._failure = None

        if not is_port_free(port, self.listen_host):
            self.state = ProxyState.STOPPED
            raise ProxyStartupError(f"Port {port} is already bound", port=port)

        if self._confdir is None:
            self._confdir = tempfile.mkdtemp(prefix="harness-proxy-")

        self._addon = _InterceptionAddon(self.backend_origin, self.base_url, self.delay, self.journal)

        logger.info(f"Starting proxy on {self.listen_host}:{port} => {self.backend_origin}")

        self._thread = threading.Thread(target=self._serve, name=f"proxy-{port}", daemon=True)
        self._thread.start()

        deadline = time.monotonic() + self.startup_timeout
        while time.monotonic() < deadline:
            if self._failure is not None or not self._thread.is_alive():
                self._cleanup()
                raise ProxyStartupError(f"Proxy failed to start on port {port}: {self._failure!r}", port=port)

            if self._addon.running_event.is_set() and self._is_listening():
                self.state = ProxyState.RUNNING
                logger.info(f"Proxy running at {self.base_url}")
                return

            time.sleep(0.05)

        self._shutdown_master()
        self._cleanup()
        raise ProxyStartupError(f"Proxy did not listen on port {port} after {self.startup_timeout}s", port=port)

    def _is_listening(self) -> bool:
        try:
            with socket.create_connection((self.listen_host, self.port), timeout=0.5):
                return True
        except OSError:
            return False

    def _serve(self) -> None:
        try:
            asyncio.run(self._run_master())
        except Exception as e:
            logger.exception("Proxy event loop crashed")
            self._failure = e

    def _get_options(self) -> options.Options:
        opts = options.Options(
            mode=[f"reverse:{self.backend_origin}@{self.port}"],
            listen_host=self.listen_host,
            confdir=self._confdir,
            ssl_insecure=self.ssl_insecure,
            connection_strategy="lazy",
        )

        if self.certificate is not None:
            opts.update(certs=[f"*={self.certificate}"])

        if self.upstream_ca is not None:
            opts.update(ssl_verify_upstream_trusted_ca=self.upstream_ca)

        return opts

    async def _run_master(self) -> None:
        self._loop = asyncio.get_running_loop()

        self._master = master.Master(self._get_options())
        self._master.addons.add(*default_addons())
        self._master.addons.add(self._addon)

        await self._master.run()

    def stop(self) -> None:
        if self.state == ProxyState.STOPPED:
            return

        if self.state != ProxyState.RUNNING:
            raise ProxyStateError(f"Can't stop {self}")

        self.state = ProxyState.STOPPING

        deadline = time.monotonic() + self.drain_timeout
        while self.in_flight > 0 and time.monotonic() < deadline:
            time.sleep(0.05)

        if self.in_flight > 0:
            logger.warning(f"Stopping proxy with {self.in_flight} request(s) still in flight")

        self._shutdown_master()
        self._cleanup()

        logger.info(f"Proxy on port {self._port} stopped")

    def _shutdown_master(self) -> None:
        if self._loop is not None and self._master is not None and not self._loop.is_closed():
            try:
                self._loop.call_soon_threadsafe(self._master.shutdown)
            except RuntimeError:
                # loop closed between the check and the call
                pass

        if self._thread is not None:
            self._thread.join(timeout=self.startup_timeout)
            if self._thread.is_alive():
                logger.error(f"Proxy thread {self._thread.name} did not terminate")

        if self._port is not None:
            deadline = time.monotonic() + self.startup_timeout
            while not is_port_free(self._port, self.listen_host) and time.monotonic() < deadline:
                time.sleep(0.05)

    def _cleanup(self) -> None:
        # the confdir is kept: clients built against this proxy still reference its CA file
        self._master = None
        self._loop = None
        self._thread = None
        self.state = ProxyState.STOPPED

    def __enter__(self) -> "InterceptionProxy":
        return self.start()

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.stop()

    def remove_confdir(self) -> None:
        if self.state != ProxyState.STOPPED:
            raise ProxyStateError(f"Can't remove the configuration folder of {self}")

        if self._confdir is not None:
            shutil.rmtree(self._confdir, ignore_errors=True)
            self._confdir = None
