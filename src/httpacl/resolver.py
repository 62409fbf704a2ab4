"""aiohttp integration - enforces the policy on every outbound request.

Two hooks cover the SSRF path:

- AclResolver sits where aiohttp resolves hostnames, so every resolved
  address (including ones only reachable through DNS) is checked before
  the socket is opened. There is no gap between resolution and the check.
- acl_trace_config checks each request (and each redirect hop) before it
  is sent: scheme, host, port, method, and IP-literal hosts, which aiohttp
  connects to without calling the resolver. aiohttp has already moved any
  URL credentials into an Authorization header by then, so callers that
  accept URLs from users should run EgressEnforcer.check_request on the
  raw URL first.

Both raise RequestDenied.

Example:
    enforcer = EgressEnforcer.from_config(load_config("policy.yml"))
    async with create_session(enforcer) as session:
        async with session.get("https://example.com/feed.rss") as resp:
            ...
"""

import logging
import socket

import aiohttp
from aiohttp.abc import AbstractResolver

from .errors import RequestDenied
from .policy.enforcer import EgressEnforcer

logger = logging.getLogger("httpacl")


class AclResolver(AbstractResolver):
    """Resolver that refuses hosts or addresses the policy denies.

    Wraps another resolver (aiohttp's default unless given) and checks the
    host plus every address it returns. One denied address rejects the
    whole resolution, so a name with a mix of public and private records
    can't be used to reach the private one.
    """

    def __init__(self, enforcer: EgressEnforcer, resolver: AbstractResolver | None = None):
        self.enforcer = enforcer
        self._resolver = resolver or aiohttp.DefaultResolver()

    async def resolve(
        self,
        host: str,
        port: int = 0,
        family: socket.AddressFamily = socket.AF_INET,
    ) -> list:
        results = await self._resolver.resolve(host, port, family)
        ips = [result["host"] for result in results]

        verdict = self.enforcer.check_connection(host, ips)
        if verdict.blocked:
            raise RequestDenied(verdict)

        logger.debug("Resolved %s -> %s", host, ", ".join(ips))
        return results

    async def close(self) -> None:
        await self._resolver.close()


def acl_trace_config(enforcer: EgressEnforcer) -> aiohttp.TraceConfig:
    """TraceConfig whose request-start hook runs the request checks."""

    async def on_request_start(session, trace_config_ctx, params):
        verdict = enforcer.check_request(str(params.url), params.method)
        if verdict.blocked:
            raise RequestDenied(verdict)

    trace_config = aiohttp.TraceConfig()
    trace_config.on_request_start.append(on_request_start)
    return trace_config


def create_session(
    enforcer: EgressEnforcer,
    resolver: AbstractResolver | None = None,
    **kwargs,
) -> aiohttp.ClientSession:
    """Create a ClientSession with both policy hooks installed.

    Extra keyword arguments go to ClientSession. ``connector`` can't be
    passed, since the resolver hook lives on it.
    """
    if "connector" in kwargs:
        raise TypeError("create_session builds its own connector")

    connector = aiohttp.TCPConnector(resolver=AclResolver(enforcer, resolver))
    trace_configs = list(kwargs.pop("trace_configs", None) or [])
    trace_configs.append(acl_trace_config(enforcer))
    return aiohttp.ClientSession(
        connector=connector, trace_configs=trace_configs, **kwargs
    )
