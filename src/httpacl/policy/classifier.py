"""Classification engine - decides each request dimension against a Policy.

Every function here is pure: it reads only the (frozen) Policy and its
inputs, never raises for policy reasons, and always returns a Decision.
The Classifier class binds a Policy and a private-range predicate so
callers on the connection path don't have to pass them around.
"""

from dataclasses import dataclass
from urllib.parse import urlsplit

from ..errors import InvalidUrlError
from .acl import Policy, normalize_host
from . import ranges
from .ranges import PrivatePredicate, canonical_ip
from .types import Classification, Decision, HttpMethod, coerce_method

DENIED_PRIORITY_DETAILS = "Denied user acl has high priority"
USERNAME_DETAILS = "Username on the url is not allowed"

DEFAULT_PORTS = {"http": 80, "https": 443}


@dataclass(frozen=True)
class ParsedUrl:
    """The URL components the composite check consumes."""

    scheme: str
    host: str
    port: int
    username: str = ""


def parse_url(url: str) -> ParsedUrl:
    """Split a URL into scheme, host, port and username.

    Scheme and host come back lower-cased. A missing port falls back to
    the scheme's default (80/443); other schemes without a port get 0,
    which no sane policy allows.

    Raises:
        InvalidUrlError: if the URL has no host or an invalid port.
    """
    try:
        parts = urlsplit(url)
        port = parts.port
    except ValueError as e:
        raise InvalidUrlError(url, str(e)) from e

    host = parts.hostname
    if not host:
        raise InvalidUrlError(url, "no host")

    scheme = parts.scheme.lower()
    if port is None:
        port = DEFAULT_PORTS.get(scheme, 0)

    return ParsedUrl(
        scheme=scheme,
        host=host,
        port=port,
        username=parts.username or "",
    )


def _acl_decision(
    value,
    allowed: frozenset,
    denied: frozenset,
    default_allow: bool,
    denied_details: str | None = None,
) -> Decision:
    """Deny list, then allow list, then the dimension's default flag."""
    if value in denied:
        return Decision(Classification.DENIED_USER_ACL, denied_details)
    if value in allowed:
        return Decision(Classification.ALLOWED_USER_ACL)
    if default_allow:
        return Decision(Classification.ALLOWED_DEFAULT)
    return Decision(Classification.DENIED_DEFAULT)


def is_scheme_allowed(policy: Policy, scheme: str) -> Decision:
    """Check a URL scheme. Only http/https can ever be allowed; there is no default tier.

    Comparison is exact: callers lower-case the scheme (URL parsers do).
    """
    if (scheme == "http" and policy.allow_http) or (
        scheme == "https" and policy.allow_https
    ):
        return Decision(Classification.ALLOWED_USER_ACL)
    return Decision(Classification.DENIED_USER_ACL)


def is_method_allowed(policy: Policy, method: HttpMethod | str) -> Decision:
    """Check an HTTP method. A method on both lists is denied."""
    return _acl_decision(
        coerce_method(method),
        policy.allowed_methods,
        policy.denied_methods,
        policy.method_default_allow,
        denied_details=DENIED_PRIORITY_DETAILS,
    )


def is_ip_allowed(
    policy: Policy,
    ip: str,
    is_private: PrivatePredicate = ranges.is_private,
) -> Decision:
    """Check a resolved IP address (IPv4 or IPv6).

    Explicit allow/deny entries override the private-range guard, so an
    operator can allow one internal address; the guard only applies to
    unlisted addresses. As everywhere else, an address on both lists is
    denied.

    This must run on every resolved address before the socket connects.
    """
    ip = canonical_ip(ip)

    if ip in policy.denied_ips:
        return Decision(Classification.DENIED_USER_ACL)

    if ip in policy.allowed_ips:
        return Decision(Classification.ALLOWED_USER_ACL)

    if not policy.allow_private_ranges and is_private(ip):
        return Decision(Classification.DENIED_PRIVATE_RANGE)

    if policy.ip_default_allow:
        return Decision(Classification.ALLOWED_DEFAULT)

    return Decision(Classification.DENIED_DEFAULT)


def is_port_allowed(policy: Policy, port: int) -> Decision:
    """Check a destination port. No range validation is done here."""
    return _acl_decision(
        port, policy.allowed_ports, policy.denied_ports, policy.port_default_allow
    )


def is_host_allowed(policy: Policy, host: str) -> Decision:
    """Check a hostname by literal (case-insensitive) equality; no wildcards.

    A single trailing root dot is ignored, so ``a.example.`` matches ``a.example``.
    """
    return _acl_decision(
        normalize_host(host),
        policy.allowed_hosts,
        policy.denied_hosts,
        policy.host_default_allow,
    )


def is_url_allowed(policy: Policy, url: str | ParsedUrl) -> Decision:
    """Check a URL's host, port and scheme together, plus embedded credentials.

    All three of host/port/scheme allowed -> AllowedUserAcl. Otherwise a
    URL carrying a username (when not permitted) is DeniedUserAcl with
    details, and anything else is DeniedDefault.

    The resolved IP is not checked here; run is_ip_allowed at connect time.

    Raises:
        InvalidUrlError: if ``url`` is a string that cannot be parsed.
    """
    parsed = url if isinstance(url, ParsedUrl) else parse_url(url)

    host_ok = is_host_allowed(policy, parsed.host)
    port_ok = is_port_allowed(policy, parsed.port)
    scheme_ok = is_scheme_allowed(policy, parsed.scheme)

    # Decisions are truthy only when allowed
    if host_ok and port_ok and scheme_ok:
        return Decision(Classification.ALLOWED_USER_ACL)

    if parsed.username and not policy.allow_username_in_url:
        return Decision(Classification.DENIED_USER_ACL, USERNAME_DETAILS)

    return Decision(Classification.DENIED_DEFAULT)


class Classifier:
    """Classifies request dimensions against one Policy.

    Example:
        classifier = Classifier(PolicyBuilder().http(False).build())

        classifier.is_url_allowed("https://example.com/feed.rss").allowed  # True
        classifier.is_ip_allowed("192.168.1.1").classification
        # Classification.DENIED_PRIVATE_RANGE
    """

    def __init__(self, policy: Policy, is_private: PrivatePredicate | None = None):
        """Initialize the classifier.

        Args:
            policy: The frozen policy to classify against
            is_private: Private-range predicate (defaults to ranges.is_private)
        """
        self.policy = policy
        self.is_private = is_private or ranges.is_private

    def is_scheme_allowed(self, scheme: str) -> Decision:
        return is_scheme_allowed(self.policy, scheme)

    def is_method_allowed(self, method: HttpMethod | str) -> Decision:
        return is_method_allowed(self.policy, method)

    def is_ip_allowed(self, ip: str) -> Decision:
        return is_ip_allowed(self.policy, ip, is_private=self.is_private)

    def is_port_allowed(self, port: int) -> Decision:
        return is_port_allowed(self.policy, port)

    def is_host_allowed(self, host: str) -> Decision:
        return is_host_allowed(self.policy, host)

    def is_url_allowed(self, url: str | ParsedUrl) -> Decision:
        return is_url_allowed(self.policy, url)

    def classify_url(
        self, url: str | ParsedUrl, method: HttpMethod | str | None = None
    ) -> dict[str, Decision]:
        """Per-dimension breakdown for a URL (and method, when given).

        Keys: scheme, host, port, url, and method if ``method`` is set.
        """
        parsed = url if isinstance(url, ParsedUrl) else parse_url(url)
        decisions = {
            "scheme": self.is_scheme_allowed(parsed.scheme),
            "host": self.is_host_allowed(parsed.host),
            "port": self.is_port_allowed(parsed.port),
            "url": self.is_url_allowed(parsed),
        }
        if method is not None:
            decisions["method"] = self.is_method_allowed(method)
        return decisions
