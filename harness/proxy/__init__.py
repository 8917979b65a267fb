from harness.proxy.core import InterceptionProxy, ProxyEndpoint, ProxyState
from harness.proxy.delay import DelayController
from harness.proxy.journal import Exchange, Journal
from harness.proxy.rewriter import rewrite_body, rewrite_urls

__all__ = [
    "DelayController",
    "Exchange",
    "InterceptionProxy",
    "Journal",
    "ProxyEndpoint",
    "ProxyState",
    "rewrite_body",
    "rewrite_urls",
]
