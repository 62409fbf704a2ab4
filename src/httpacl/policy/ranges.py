"""Private/reserved address predicate.

The classifier treats "is this IP private?" as an injected capability.
``is_private`` is the default; ``PrivateRanges`` extends it with operator
networks (cloud metadata endpoints and the like). Any ``Callable[[str], bool]``
can stand in for either.
"""

import ipaddress
import logging
from typing import Callable, Iterable

logger = logging.getLogger("httpacl")

PrivatePredicate = Callable[[str], bool]

IPAddress = ipaddress.IPv4Address | ipaddress.IPv6Address
IPNetwork = ipaddress.IPv4Network | ipaddress.IPv6Network


def parse_ip(ip: str) -> IPAddress | None:
    """Parse an IP literal, unwrapping IPv4-mapped IPv6 (::ffff:a.b.c.d).

    Returns None if the literal does not parse. Zone IDs (fe80::1%eth0) are
    accepted by ipaddress and kept.
    """
    try:
        addr = ipaddress.ip_address(ip.strip())
    except ValueError:
        return None
    if isinstance(addr, ipaddress.IPv6Address) and addr.ipv4_mapped is not None:
        return addr.ipv4_mapped
    return addr


def canonical_ip(ip: str) -> str:
    """Canonical text form of an IP literal, or the input unchanged if it doesn't parse."""
    addr = parse_ip(ip)
    return str(addr) if addr is not None else ip


def _is_private_addr(addr: IPAddress) -> bool:
    return (
        addr.is_private
        or addr.is_loopback
        or addr.is_link_local
        or addr.is_unspecified
        or addr.is_multicast
        or addr.is_reserved
        or not addr.is_global
    )


def is_private(ip: str) -> bool:
    """Check if an IP literal falls in a private or reserved range.

    Covers RFC1918, loopback, link-local, unique-local IPv6 (fc00::/7),
    unspecified, multicast and reserved addresses, shared address space
    (100.64.0.0/10) and anything else ipaddress does not consider global.
    A literal that does not parse is reported private so it fails closed.
    """
    addr = parse_ip(ip)
    if addr is None:
        logger.debug("Unparseable IP literal %r treated as private", ip)
        return True
    return _is_private_addr(addr)


class PrivateRanges:
    """Private-range predicate with operator-supplied extra networks.

    Example:
        ranges = PrivateRanges(["34.120.0.0/16"])
        ranges("34.120.5.7")       # True
        ranges("10.0.0.1")         # True (built-in ranges still apply)
        ranges("1.1.1.1")          # False
    """

    def __init__(self, extra_networks: Iterable[str] = ()):
        self.extra_networks: tuple[IPNetwork, ...] = tuple(
            ipaddress.ip_network(net, strict=False) for net in extra_networks
        )

    def __call__(self, ip: str) -> bool:
        addr = parse_ip(ip)
        if addr is None:
            logger.debug("Unparseable IP literal %r treated as private", ip)
            return True
        if _is_private_addr(addr):
            return True
        return any(
            addr.version == net.version and addr in net for net in self.extra_networks
        )

    def __repr__(self) -> str:
        nets = ", ".join(str(net) for net in self.extra_networks)
        return f"PrivateRanges([{nets}])"
