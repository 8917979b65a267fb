"""Rewrites absolute backend URLs found in response bodies, so that the client
keeps talking to the proxy when it follows them (account endpoints, continuation links ...)
"""

from functools import lru_cache
import re
from urllib.parse import urlsplit

from harness._logger import logger


def _backend_host(backend_origin: str) -> str:
    host = urlsplit(backend_origin).hostname if "://" in backend_origin else backend_origin.split(":")[0]
    if not host:
        raise ValueError(f"Can't get a host from backend origin {backend_origin!r}")

    return host


@lru_cache(maxsize=32)
def _get_pattern(host: str) -> re.Pattern[str]:
    return re.compile(rf"https?://{re.escape(host)}(?::\d+)?/", re.IGNORECASE)


def rewrite_urls(text: str, backend_origin: str, proxy_base_url: str) -> str:
    """Replace every <scheme>://<backend host>[:<port>]/ by the proxy base URL.

    Path and query following the origin are kept. The match is textual, hosts are not resolved.
    """

    pattern = _get_pattern(_backend_host(backend_origin).lower())
    replacement = proxy_base_url.rstrip("/") + "/"

    # a plain string as replacement would interpret backslashes
    return pattern.sub(lambda _: replacement, text)


def rewrite_body(body: bytes, backend_origin: str, proxy_base_url: str) -> bytes:
    """Same as rewrite_urls() on an UTF-8 body. Non text bodies are returned untouched"""

    if not body:
        return body

    try:
        text = body.decode("utf-8")
    except UnicodeDecodeError:
        logger.debug("    => binary body, no URL rewrite")
        return body

    rewritten = rewrite_urls(text, backend_origin, proxy_base_url)

    if rewritten == text:
        return body

    return rewritten.encode("utf-8")
