import re


_header_filter = re.compile(
    r"^(authorization|proxy-authorization|cookie|set-cookie|x-ms-(.*-)?key(-.*)?)$", re.IGNORECASE
)

REDACTED = "--redacted--"


def scrub_headers(headers: list[tuple[str, str]]) -> list[tuple[str, str]]:
    """Cosmos requests carry a signed master key token, it must never land in log files"""

    return [(name, REDACTED if _header_filter.match(name) else value) for name, value in headers]
