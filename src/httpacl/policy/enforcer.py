"""Policy enforcer - makes allow/block verdicts for outbound requests.

The classifiers answer one dimension at a time; the enforcer combines them
the way an HTTP client hook needs them:

- before a request is sent: check_request (scheme/host/port/credentials,
  method, and the address itself when the URL host is an IP literal)
- after DNS resolution, before connecting: check_connection (host, then
  every resolved address)

Each verdict is logged, and in audit mode denials are logged but allowed.
"""

import logging
from dataclasses import dataclass, field

from .. import logging as acl_logging
from .classifier import Classifier, parse_url
from .config import PolicyConfig
from .ranges import parse_ip
from .types import Decision, HttpMethod, coerce_method

logger = logging.getLogger("httpacl")


@dataclass
class Verdict:
    """Combined result of checking a request or connection.

    Attributes:
        allowed: Whether to proceed (accounts for audit mode)
        reason: Human-readable explanation
        decisions: Per-dimension decisions, keyed "url", "method", "host", "ip:<addr>", ...
        denied_by: Key of the first denying decision, if any (set even in audit mode)
    """

    allowed: bool
    reason: str
    decisions: dict[str, Decision] = field(default_factory=dict)
    denied_by: str | None = None

    @property
    def blocked(self) -> bool:
        return not self.allowed

    def to_dict(self) -> dict:
        return {
            "allowed": self.allowed,
            "reason": self.reason,
            "denied_by": self.denied_by,
            "decisions": {k: d.to_dict() for k, d in self.decisions.items()},
        }


def _first_denied(decisions: dict[str, Decision]) -> str | None:
    for key, decision in decisions.items():
        if not decision.allowed:
            return key
    return None


def _describe(key: str, decision: Decision) -> str:
    text = f"{key} {decision.classification.value}"
    if decision.details:
        text += f" ({decision.details})"
    return text


class EgressEnforcer:
    """Makes policy verdicts for outbound HTTP requests.

    Example:
        enforcer = EgressEnforcer(Classifier(policy))

        verdict = enforcer.check_request("https://example.com/feed.rss", "GET")
        if verdict.blocked:
            ...

        # After resolving example.com, before connecting
        verdict = enforcer.check_connection("example.com", ["93.184.216.34"])
    """

    def __init__(self, classifier: Classifier, audit_mode: bool = False):
        """Initialize the enforcer.

        Args:
            classifier: Classifier bound to the policy to enforce
            audit_mode: If True, log but don't block (always allow)
        """
        self.classifier = classifier
        self.audit_mode = audit_mode

    def _make_verdict(
        self,
        kind: str,
        target: str,
        decisions: dict[str, Decision],
        reason: str | None = None,
        block: bool = False,
    ) -> Verdict:
        """Create a verdict, respecting audit mode, and log it.

        ``block`` forces a denial that no single decision accounts for.
        """
        denied_by = _first_denied(decisions)
        if reason is None:
            if denied_by is None:
                reason = f"Allowed {target}"
            else:
                reason = f"Denied {target}: {_describe(denied_by, decisions[denied_by])}"
        allowed = denied_by is None and not block

        if self.audit_mode and not allowed:
            verdict = Verdict(
                allowed=True,
                reason=f"[AUDIT] Would block: {reason}",
                decisions=decisions,
                denied_by=denied_by,
            )
        else:
            verdict = Verdict(
                allowed=allowed,
                reason=reason,
                decisions=decisions,
                denied_by=denied_by,
            )

        if allowed:
            logger.debug(verdict.reason)
        else:
            logger.info(verdict.reason)
        acl_logging.log_decision(
            type=kind,
            target=target,
            allowed=verdict.allowed,
            denied_by=denied_by,
            decisions={k: d.to_dict() for k, d in decisions.items()},
        )
        return verdict

    def check_request(self, url: str, method: HttpMethod | str = "GET") -> Verdict:
        """Check a request before it is sent.

        URLs whose host is an IP literal also get an IP check here, since
        clients connect to those without resolving and the connection hook
        never sees them.

        Raises:
            InvalidUrlError: if the URL cannot be parsed.
        """
        parsed = parse_url(url)
        method_name = str(coerce_method(method))
        decisions = {
            "url": self.classifier.is_url_allowed(parsed),
            "method": self.classifier.is_method_allowed(method),
        }
        if parse_ip(parsed.host) is not None:
            decisions[f"ip:{parsed.host}"] = self.classifier.is_ip_allowed(parsed.host)

        return self._make_verdict("request", f"{method_name} {url}", decisions)

    def check_connection(
        self, host: str, ips: list[str], port: int | None = None
    ) -> Verdict:
        """Check a resolved connection target before the socket is opened.

        Every resolved address must be allowed; one denied address blocks
        the whole connection.

        Args:
            host: The hostname that was resolved
            ips: Every address the resolver returned
            port: Destination port, checked too when given
        """
        target = host if port is None else f"{host}:{port}"
        decisions = {"host": self.classifier.is_host_allowed(host)}
        if port is not None:
            decisions["port"] = self.classifier.is_port_allowed(port)

        if not ips:
            return self._make_verdict(
                "connection",
                target,
                decisions,
                reason=f"no addresses resolved for {host}",
                block=True,
            )

        for ip in ips:
            decisions[f"ip:{ip}"] = self.classifier.is_ip_allowed(ip)

        return self._make_verdict("connection", target, decisions)

    def check_ip(self, ip: str) -> Verdict:
        """Check a single address, e.g. a connect() to an IP literal."""
        return self._make_verdict("ip", ip, {f"ip:{ip}": self.classifier.is_ip_allowed(ip)})

    @classmethod
    def from_config(cls, config: PolicyConfig) -> "EgressEnforcer":
        """Create an enforcer from a loaded policy config."""
        classifier = Classifier(config.build_policy(), is_private=config.private_ranges())
        return cls(classifier, audit_mode=config.audit_mode)
