"""Policy model: the immutable ACL configuration and its fluent builder."""

from dataclasses import dataclass, fields
from typing import Iterable

from .ranges import canonical_ip
from .types import coerce_method

# Ports allowed out of the box (port default is deny)
DEFAULT_ALLOWED_PORTS = frozenset({80, 443, 8080})


def normalize_host(host: str) -> str:
    """Lower-case a hostname and drop one trailing root dot."""
    host = host.lower()
    return host[:-1] if host.endswith(".") else host


def _as_values(values) -> Iterable:
    # A lone str or int is one entry, not a sequence of characters
    if isinstance(values, (str, int)):
        return (values,)
    return values


def _methods(values: Iterable) -> frozenset:
    return frozenset(coerce_method(m) for m in _as_values(values))


def _ports(values: Iterable) -> frozenset[int]:
    return frozenset(int(p) for p in _as_values(values))


def _hosts(values: Iterable[str]) -> frozenset[str]:
    return frozenset(normalize_host(h) for h in _as_values(values))


def _ips(values: Iterable[str]) -> frozenset[str]:
    return frozenset(canonical_ip(ip) for ip in _as_values(values))


# Normalizer for each list field, applied at construction
_NORMALIZERS = {
    "allowed_methods": _methods,
    "denied_methods": _methods,
    "allowed_ips": _ips,
    "denied_ips": _ips,
    "allowed_ports": _ports,
    "denied_ports": _ports,
    "allowed_hosts": _hosts,
    "denied_hosts": _hosts,
}


@dataclass(frozen=True)
class Policy:
    """Allow/deny lists and default flags for each request dimension.

    A Policy is read-only once constructed, so it can be shared across
    threads. Deny lists win over allow lists for every dimension that has
    both; each ``*_default_allow`` flag is only consulted when neither list
    matches. Overlapping allow/deny entries are legal and resolved at
    classification time.

    ``Policy()`` is the out-of-box posture: https only, private ranges
    denied, ports 80/443/8080 allowed and every other port denied, hosts,
    methods and public IPs allowed by default.
    """

    allow_http: bool = False
    allow_https: bool = True

    allowed_methods: frozenset = frozenset()
    # Denied methods have higher priority to prevent fail-open on overlap
    denied_methods: frozenset = frozenset()
    method_default_allow: bool = True

    allowed_ips: frozenset[str] = frozenset()
    denied_ips: frozenset[str] = frozenset()
    allow_private_ranges: bool = False
    ip_default_allow: bool = True

    allowed_ports: frozenset[int] = DEFAULT_ALLOWED_PORTS
    denied_ports: frozenset[int] = frozenset()
    port_default_allow: bool = False

    allowed_hosts: frozenset[str] = frozenset()
    denied_hosts: frozenset[str] = frozenset()
    host_default_allow: bool = True

    allow_username_in_url: bool = False

    def __post_init__(self):
        for name, normalize in _NORMALIZERS.items():
            object.__setattr__(self, name, normalize(getattr(self, name)))

    @classmethod
    def builder(cls) -> "PolicyBuilder":
        return PolicyBuilder()

    def to_dict(self) -> dict:
        """Convert to a JSON-ready dict with sorted lists."""
        result = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if isinstance(value, frozenset):
                value = sorted(str(v) if isinstance(v, str) else v for v in value)
            result[f.name] = value
        return result


class PolicyBuilder:
    """Accumulates policy settings through chained setters.

    Each setter replaces exactly one field and returns the builder. The
    ``allow_*``/``deny_*`` helpers extend a list instead of replacing it.
    ``build()`` snapshots the current values into a new frozen Policy, so
    later builder calls never touch a policy that was already built.

    Example:
        policy = (
            PolicyBuilder()
            .http(False)
            .https(True)
            .allowed_hosts(["example.com"])
            .host_default_allow(False)
            .build()
        )
    """

    def __init__(self, base: Policy | None = None):
        base = base if base is not None else Policy()
        self._values = {f.name: getattr(base, f.name) for f in fields(Policy)}

    def _set(self, name: str, value) -> "PolicyBuilder":
        self._values[name] = value
        return self

    def _extend(self, name: str, values: Iterable) -> "PolicyBuilder":
        normalize = _NORMALIZERS[name]
        self._values[name] = self._values[name] | normalize(values)
        return self

    # Scheme flags

    def http(self, allow: bool) -> "PolicyBuilder":
        return self._set("allow_http", allow)

    def https(self, allow: bool) -> "PolicyBuilder":
        return self._set("allow_https", allow)

    # Methods

    def allowed_methods(self, methods: Iterable) -> "PolicyBuilder":
        return self._set("allowed_methods", _methods(methods))

    def denied_methods(self, methods: Iterable) -> "PolicyBuilder":
        return self._set("denied_methods", _methods(methods))

    def method_default_allow(self, allow: bool) -> "PolicyBuilder":
        return self._set("method_default_allow", allow)

    def allow_methods(self, methods: Iterable) -> "PolicyBuilder":
        return self._extend("allowed_methods", methods)

    def deny_methods(self, methods: Iterable) -> "PolicyBuilder":
        return self._extend("denied_methods", methods)

    # IPs

    def allowed_ips(self, ips: Iterable[str]) -> "PolicyBuilder":
        return self._set("allowed_ips", _ips(ips))

    def denied_ips(self, ips: Iterable[str]) -> "PolicyBuilder":
        return self._set("denied_ips", _ips(ips))

    def allow_private_ranges(self, allow: bool) -> "PolicyBuilder":
        return self._set("allow_private_ranges", allow)

    def ip_default_allow(self, allow: bool) -> "PolicyBuilder":
        return self._set("ip_default_allow", allow)

    def allow_ips(self, ips: Iterable[str]) -> "PolicyBuilder":
        return self._extend("allowed_ips", ips)

    def deny_ips(self, ips: Iterable[str]) -> "PolicyBuilder":
        return self._extend("denied_ips", ips)

    # Ports

    def allowed_ports(self, ports: Iterable[int]) -> "PolicyBuilder":
        return self._set("allowed_ports", _ports(ports))

    def denied_ports(self, ports: Iterable[int]) -> "PolicyBuilder":
        return self._set("denied_ports", _ports(ports))

    def port_default_allow(self, allow: bool) -> "PolicyBuilder":
        return self._set("port_default_allow", allow)

    def allow_ports(self, ports: Iterable[int]) -> "PolicyBuilder":
        return self._extend("allowed_ports", ports)

    def deny_ports(self, ports: Iterable[int]) -> "PolicyBuilder":
        return self._extend("denied_ports", ports)

    # Hosts

    def allowed_hosts(self, hosts: Iterable[str]) -> "PolicyBuilder":
        return self._set("allowed_hosts", _hosts(hosts))

    def denied_hosts(self, hosts: Iterable[str]) -> "PolicyBuilder":
        return self._set("denied_hosts", _hosts(hosts))

    def host_default_allow(self, allow: bool) -> "PolicyBuilder":
        return self._set("host_default_allow", allow)

    def allow_hosts(self, hosts: Iterable[str]) -> "PolicyBuilder":
        return self._extend("allowed_hosts", hosts)

    def deny_hosts(self, hosts: Iterable[str]) -> "PolicyBuilder":
        return self._extend("denied_hosts", hosts)

    # URL

    def allow_username_in_url(self, allow: bool) -> "PolicyBuilder":
        return self._set("allow_username_in_url", allow)

    def build(self) -> Policy:
        return Policy(**self._values)
