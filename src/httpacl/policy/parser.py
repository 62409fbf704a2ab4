"""Policy parser - converts policy text to a Policy using a PEG grammar.

Uses parsimonious for PEG parsing. The grammar is the source of truth for
what syntax is valid - validation happens at parse time, not after.

Example policy:

    # https only, no credentials in URLs
    deny scheme http
    deny username-in-url

    allow host api.example.com|cdn.example.com
    default host deny

    allow port 8443
    deny method PUT|DELETE
"""

import logging

from parsimonious.exceptions import ParseError
from parsimonious.grammar import Grammar
from parsimonious.nodes import Node, NodeVisitor

from .acl import Policy, PolicyBuilder
from .ranges import parse_ip
from .types import Directive

logger = logging.getLogger(__name__)

# =============================================================================
# PEG Grammar (source of truth for syntax)
# =============================================================================

GRAMMAR = Grammar(r"""
line            = directive / comment_only / blank
blank           = ws*
comment_only    = ws* comment
comment         = "#" ~"[^\n]*"
inline_comment  = ws+ comment
ws              = " " / "\t"

directive       = ws* (default_rule / acl_rule) inline_comment? ws*

acl_rule        = action ws+ acl_target
acl_target      = scheme_target / host_target / ip_target / port_target / method_target / toggle_target
scheme_target   = "scheme" ws+ scheme ("|" scheme)*
host_target     = "host" ws+ host ("|" host)*
ip_target       = "ip" ws+ ip ("|" ip)*
port_target     = "port" ws+ port ("|" port)*
method_target   = "method" ws+ method ("|" method)*
toggle_target   = "private-ranges" / "username-in-url"

default_rule    = "default" ws+ dimension ws+ action
dimension       = "host" / "ip" / "port" / "method"
action          = "allow" / "deny"

scheme          = "https" / "http"
host            = ~"[a-zA-Z0-9_]([a-zA-Z0-9_.-]*[a-zA-Z0-9_])?"
ip              = ~"[0-9a-fA-F:.]+"
port            = ~"[0-9]+"
method          = "GET" / "CONNECT" / "DELETE" / "HEAD" / "OPTIONS" / "PATCH" / "POST" / "PUT" / "TRACE"
""")

MAX_PORT = 65535

# =============================================================================
# Helpers to extract values from parse tree
# =============================================================================


def _is_empty(visited):
    """Check if visited children represent an empty/optional match."""
    assert visited is not None, "unexpected None in parse tree"
    if isinstance(visited, Node):
        return visited.text == ""
    if isinstance(visited, list):
        return len(visited) == 0 or all(_is_empty(x) for x in visited)
    return False


def _flatten(lst):
    """Flatten nested lists, filtering out empty nodes."""
    result = []
    for item in lst:
        assert item is not None, "unexpected None in parse tree"
        if isinstance(item, list):
            result.extend(_flatten(item))
        elif not _is_empty(item):
            result.append(item)
    return result


def _values(visited_children, kind):
    """Collect visited values of one Python type, skipping keyword/separator nodes."""
    return [x for x in _flatten(visited_children) if isinstance(x, kind)]


# =============================================================================
# AST Visitor - transforms parse tree to Directive objects
# =============================================================================


class PolicyVisitor(NodeVisitor):
    """Visits parse tree and extracts directives."""

    def __init__(self):
        self.directives: list[Directive] = []
        self.warnings: list[str] = []

    def visit_line(self, node, visited_children):
        return visited_children[0] if visited_children else None

    def visit_directive(self, node, visited_children):
        # ws* (default_rule / acl_rule) inline_comment? ws*
        _, rule_data, _, _ = visited_children
        for item in _flatten([rule_data]):
            if isinstance(item, Directive):
                self._check(item)
                self.directives.append(item)
                return item
        return None

    def visit_acl_rule(self, node, visited_children):
        # action ws+ acl_target
        action, _, target = visited_children
        kind, values = target
        return Directive(kind=kind, allow=action == "allow", values=values)

    def visit_acl_target(self, node, visited_children):
        return visited_children[0]

    def visit_scheme_target(self, node, visited_children):
        return "scheme", _values(visited_children, str)

    def visit_host_target(self, node, visited_children):
        return "host", _values(visited_children, str)

    def visit_ip_target(self, node, visited_children):
        return "ip", _values(visited_children, str)

    def visit_port_target(self, node, visited_children):
        return "port", _values(visited_children, int)

    def visit_method_target(self, node, visited_children):
        return "method", _values(visited_children, str)

    def visit_toggle_target(self, node, visited_children):
        return node.text, []

    def visit_default_rule(self, node, visited_children):
        # "default" ws+ dimension ws+ action
        _, _, dimension, _, action = visited_children
        return Directive(kind="default", allow=action == "allow", values=[dimension])

    def visit_dimension(self, node, visited_children):
        return node.text

    def visit_action(self, node, visited_children):
        return node.text

    def visit_scheme(self, node, visited_children):
        return node.text

    def visit_host(self, node, visited_children):
        return node.text.lower()

    def visit_ip(self, node, visited_children):
        return node.text

    def visit_port(self, node, visited_children):
        return int(node.text)

    def visit_method(self, node, visited_children):
        return node.text

    def generic_visit(self, node, visited_children):
        return visited_children or node

    def _check(self, directive: Directive) -> None:
        """Record warnings for values the grammar accepts but the ACL can't use."""
        if directive.kind == "port":
            for port in directive.values:
                if port > MAX_PORT:
                    self.warnings.append(f"port {port} is out of range (0-{MAX_PORT})")
        elif directive.kind == "ip":
            for ip in directive.values:
                if parse_ip(ip) is None:
                    self.warnings.append(f"{ip!r} is not a valid IP address")


# =============================================================================
# Applying directives
# =============================================================================

_LIST_SETTERS = {
    # kind: (allow helper, deny helper)
    "host": ("allow_hosts", "deny_hosts"),
    "ip": ("allow_ips", "deny_ips"),
    "port": ("allow_ports", "deny_ports"),
    "method": ("allow_methods", "deny_methods"),
}

_DEFAULT_SETTERS = {
    "host": "host_default_allow",
    "ip": "ip_default_allow",
    "port": "port_default_allow",
    "method": "method_default_allow",
}


def apply_directive(builder: PolicyBuilder, directive: Directive) -> PolicyBuilder:
    """Apply one directive to a builder.

    List directives extend the current allow/deny list rather than
    replacing it, so ``allow port 9000`` keeps the pre-seeded ports.
    """
    kind = directive.kind

    if kind == "scheme":
        for scheme in directive.values:
            if scheme == "http":
                builder.http(directive.allow)
            else:
                builder.https(directive.allow)
    elif kind in _LIST_SETTERS:
        allow_name, deny_name = _LIST_SETTERS[kind]
        setter = getattr(builder, allow_name if directive.allow else deny_name)
        setter(directive.values)
    elif kind == "default":
        getattr(builder, _DEFAULT_SETTERS[directive.values[0]])(directive.allow)
    elif kind == "private-ranges":
        builder.allow_private_ranges(directive.allow)
    elif kind == "username-in-url":
        builder.allow_username_in_url(directive.allow)
    else:
        raise ValueError(f"Unknown directive kind: {kind!r}")

    return builder


# =============================================================================
# Public API
# =============================================================================


def parse_directives(policy_text: str) -> list[Directive]:
    """Parse policy text into directives, in order.

    Invalid lines are skipped (lenient parsing); use validate_policy to
    report them.
    """
    visitor = PolicyVisitor()
    directives: list[Directive] = []

    for line in policy_text.splitlines():
        try:
            tree = GRAMMAR.parse(line)
            visitor.directives = []
            visitor.visit(tree)
            directives.extend(visitor.directives)
        except ParseError:
            logger.debug("Skipping invalid policy line: %r", line)

    return directives


def parse_policy(policy_text: str, base: Policy | None = None) -> Policy:
    """Parse policy text into a frozen Policy.

    Directives are applied in order on top of ``base`` (the out-of-box
    Policy() when omitted).

    Args:
        policy_text: The policy text to parse.
        base: Policy whose values the directives start from.
    """
    builder = PolicyBuilder(base)
    for directive in parse_directives(policy_text):
        apply_directive(builder, directive)
    return builder.build()


def find_overlaps(policy: Policy) -> list[str]:
    """Describe values that sit on both the allow and deny list of a dimension.

    These are legal (deny wins) but usually a mistake worth flagging.
    """
    overlaps = []
    for dimension, allowed, denied in (
        ("host", policy.allowed_hosts, policy.denied_hosts),
        ("ip", policy.allowed_ips, policy.denied_ips),
        ("port", policy.allowed_ports, policy.denied_ports),
        ("method", policy.allowed_methods, policy.denied_methods),
    ):
        for value in sorted(str(v) for v in allowed & denied):
            overlaps.append(f"{dimension} {value} is both allowed and denied (deny wins)")
    return overlaps


def validate_policy(
    policy_text: str, base: Policy | None = None
) -> list[tuple[int, str, str]]:
    """Validate a policy and return list of errors for invalid lines.

    Args:
        policy_text: The policy text to validate.
        base: Policy the text is applied on, for the overlap check.

    Returns:
        List of (line_num, line_text, error_message) tuples. Syntax errors
        and per-line warnings carry their line number; allow/deny overlaps
        across the whole policy are reported with line number 0.
        Empty list if the policy is clean.
    """
    errors = []
    visitor = PolicyVisitor()
    builder = PolicyBuilder(base)

    for line_num, line in enumerate(policy_text.splitlines(), start=1):
        line_stripped = line.strip()

        try:
            tree = GRAMMAR.parse(line)
            visitor.directives = []
            visitor.warnings = []
            visitor.visit(tree)
            for directive in visitor.directives:
                apply_directive(builder, directive)
            for warning in visitor.warnings:
                errors.append((line_num, line_stripped, warning))
        except ParseError as e:
            errors.append((line_num, line_stripped, str(e)))

    for overlap in find_overlaps(builder.build()):
        errors.append((0, "", overlap))

    return errors
