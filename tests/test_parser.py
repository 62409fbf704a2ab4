"""Tests for the policy text grammar, parser and validator."""

import sys
from pathlib import Path

import pytest
from parsimonious.exceptions import ParseError

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from httpacl.policy import (
    Directive,
    HttpMethod,
    Policy,
    PolicyBuilder,
    apply_directive,
    parse_directives,
    parse_policy,
    validate_policy,
)
from httpacl.policy.parser import GRAMMAR, find_overlaps


class TestGrammar:
    """Which lines the PEG grammar accepts."""

    @pytest.mark.parametrize(
        "line",
        [
            "",
            "   ",
            "# a comment",
            "  # indented comment",
            "allow scheme https",
            "deny scheme http|https",
            "allow host example.com",
            "deny host a.example.com|b.example.com",
            "allow ip 10.0.0.5",
            "deny ip 169.254.169.254|fd00:ec2::254",
            "allow port 8443",
            "deny port 22|25",
            "allow method GET|HEAD|OPTIONS",
            "deny method PUT",
            "allow private-ranges",
            "deny username-in-url",
            "default host deny",
            "default ip allow",
            "default port allow",
            "default method deny",
            "allow host example.com  # trailing comment",
            "\tdeny port 25\t",
        ],
    )
    def test_valid(self, line):
        GRAMMAR.parse(line)

    @pytest.mark.parametrize(
        "line",
        [
            "allow",
            "allow host",
            "permit host example.com",
            "allow scheme ftp",
            "allow method get",
            "allow method PROPFIND",
            "allow port https",
            "default scheme deny",
            "default host maybe",
            "allow host example.com|",
            "allow host -example.com",
            "allow host example.com extra",
            "allow private-ranges now",
        ],
    )
    def test_invalid(self, line):
        with pytest.raises(ParseError):
            GRAMMAR.parse(line)


class TestParseDirectives:
    """Policy text to Directive objects."""

    def test_acl_directive(self):
        directives = parse_directives("deny host A.example.com|b.example.com")
        assert directives == [
            Directive(kind="host", allow=False, values=["a.example.com", "b.example.com"])
        ]

    def test_port_values_are_ints(self):
        (directive,) = parse_directives("allow port 8443|9000")
        assert directive.values == [8443, 9000]

    def test_default_directive(self):
        (directive,) = parse_directives("default method deny")
        assert directive == Directive(kind="default", allow=False, values=["method"])

    def test_toggle_directive(self):
        (directive,) = parse_directives("allow private-ranges")
        assert directive == Directive(kind="private-ranges", allow=True, values=[])

    def test_order_preserved(self):
        text = "allow host a.example\ndeny host b.example\ndefault host deny"
        kinds = [(d.kind, d.allow) for d in parse_directives(text)]
        assert kinds == [("host", True), ("host", False), ("default", False)]

    def test_invalid_lines_skipped(self):
        text = "allow host a.example\nthis is not a rule\ndeny port 22"
        directives = parse_directives(text)
        assert [d.kind for d in directives] == ["host", "port"]

    def test_comments_and_blanks(self):
        text = "\n# hosts\n\nallow host a.example # primary\n"
        assert len(parse_directives(text)) == 1


class TestParsePolicy:
    """Policy text to a frozen Policy."""

    def test_empty_is_out_of_box(self):
        assert parse_policy("") == Policy()

    def test_schemes(self):
        policy = parse_policy("allow scheme http\ndeny scheme https")
        assert policy.allow_http is True
        assert policy.allow_https is False

    def test_lists_extend(self):
        policy = parse_policy("allow host a.example\nallow host b.example")
        assert policy.allowed_hosts == frozenset({"a.example", "b.example"})

    def test_ports_extend_preseeded(self):
        policy = parse_policy("allow port 9000")
        assert policy.allowed_ports == frozenset({80, 443, 8080, 9000})

    def test_methods(self):
        policy = parse_policy("allow method GET|HEAD\ndeny method PUT\ndefault method deny")
        assert policy.allowed_methods == frozenset({HttpMethod.GET, HttpMethod.HEAD})
        assert policy.denied_methods == frozenset({HttpMethod.PUT})
        assert policy.method_default_allow is False

    def test_ips_canonical(self):
        policy = parse_policy("deny ip 2001:DB8:0:0::1")
        assert policy.denied_ips == frozenset({"2001:db8::1"})

    def test_toggles(self):
        policy = parse_policy("allow private-ranges\nallow username-in-url")
        assert policy.allow_private_ranges is True
        assert policy.allow_username_in_url is True

    def test_defaults(self):
        policy = parse_policy(
            "default host deny\ndefault ip deny\ndefault port allow\ndefault method deny"
        )
        assert policy.host_default_allow is False
        assert policy.ip_default_allow is False
        assert policy.port_default_allow is True
        assert policy.method_default_allow is False

    def test_later_toggle_wins(self):
        policy = parse_policy("allow private-ranges\ndeny private-ranges")
        assert policy.allow_private_ranges is False

    def test_base(self):
        base = PolicyBuilder().http(True).allowed_hosts(["a.example"]).build()
        policy = parse_policy("deny host b.example", base=base)
        assert policy.allow_http is True
        assert policy.allowed_hosts == frozenset({"a.example"})
        assert policy.denied_hosts == frozenset({"b.example"})
        # base is untouched
        assert base.denied_hosts == frozenset()


class TestApplyDirective:
    """Single directives on a builder."""

    def test_returns_builder(self):
        builder = PolicyBuilder()
        assert apply_directive(builder, Directive("port", True, [9000])) is builder

    def test_unknown_kind(self):
        with pytest.raises(ValueError, match="Unknown directive kind"):
            apply_directive(PolicyBuilder(), Directive("bogus", True, []))


class TestValidatePolicy:
    """Line-numbered errors and warnings."""

    def test_clean(self):
        assert validate_policy("allow host a.example\ndefault host deny") == []

    def test_syntax_error_line_number(self):
        errors = validate_policy("allow host a.example\nallow hostt b.example\n")
        assert len(errors) == 1
        line_num, line, _ = errors[0]
        assert line_num == 2
        assert line == "allow hostt b.example"

    def test_port_out_of_range(self):
        errors = validate_policy("allow port 70000")
        assert errors == [(1, "allow port 70000", "port 70000 is out of range (0-65535)")]

    def test_invalid_ip(self):
        errors = validate_policy("deny ip 999.1.1.1")
        assert errors == [(1, "deny ip 999.1.1.1", "'999.1.1.1' is not a valid IP address")]

    def test_overlap_reported(self):
        errors = validate_policy("allow host a.example\ndeny host a.example")
        assert errors == [(0, "", "host a.example is both allowed and denied (deny wins)")]

    def test_overlap_with_preseeded_port(self):
        errors = validate_policy("deny port 443")
        assert errors == [(0, "", "port 443 is both allowed and denied (deny wins)")]

    def test_overlap_with_base(self):
        base = PolicyBuilder().allowed_methods(["PATCH"]).build()
        errors = validate_policy("deny method PATCH", base=base)
        assert errors == [(0, "", "method PATCH is both allowed and denied (deny wins)")]

    def test_lowercase_method_rejected(self):
        errors = validate_policy("allow method get")
        assert len(errors) == 1
        assert errors[0][0] == 1


class TestFindOverlaps:
    """Allow/deny overlaps on a built policy."""

    def test_none(self):
        assert find_overlaps(Policy()) == []

    def test_ip_overlap(self):
        policy = PolicyBuilder().allowed_ips(["10.0.0.5"]).denied_ips(["10.0.0.5"]).build()
        assert find_overlaps(policy) == ["ip 10.0.0.5 is both allowed and denied (deny wins)"]
