class HarnessError(Exception):
    """Base class of all errors raised by the harness itself"""


class ProxyStartupError(HarnessError):
    """The interception proxy could not bind its port or load its TLS identity"""

    def __init__(self, *args: object, port: int | None = None) -> None:
        super().__init__(*args)
        self.port = port


class ProxyStateError(HarnessError):
    """An operation was requested in a proxy state that does not allow it"""
