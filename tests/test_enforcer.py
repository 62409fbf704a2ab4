"""Tests for EgressEnforcer verdicts, audit mode and decision logging."""

import logging
import sys
from pathlib import Path

import pytest

sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from httpacl.errors import InvalidUrlError
from httpacl.policy import (
    Classification,
    Classifier,
    EgressEnforcer,
    Policy,
    PolicyBuilder,
    config_from_dict,
)


def make_enforcer(policy: Policy | None = None, audit_mode: bool = False) -> EgressEnforcer:
    return EgressEnforcer(Classifier(policy or Policy()), audit_mode=audit_mode)


class TestCheckRequest:
    """Checks made before a request is sent."""

    def test_allowed(self):
        verdict = make_enforcer().check_request("https://example.com/feed.rss")
        assert verdict.allowed
        assert not verdict.blocked
        assert verdict.reason == "Allowed GET https://example.com/feed.rss"
        assert verdict.denied_by is None
        assert set(verdict.decisions) == {"url", "method"}

    def test_denied_url(self):
        verdict = make_enforcer().check_request("http://example.com/")
        assert verdict.blocked
        assert verdict.denied_by == "url"
        assert verdict.reason == "Denied GET http://example.com/: url DeniedDefault"

    def test_denied_method(self):
        policy = PolicyBuilder().denied_methods(["DELETE"]).build()
        verdict = make_enforcer(policy).check_request("https://example.com/", "delete")
        assert verdict.blocked
        assert verdict.denied_by == "method"
        assert verdict.reason == (
            "Denied DELETE https://example.com/: "
            "method DeniedUserAcl (Denied user acl has high priority)"
        )

    def test_username_details_in_reason(self):
        verdict = make_enforcer().check_request("http://admin:pw@example.com:9012/")
        assert verdict.blocked
        assert "(Username on the url is not allowed)" in verdict.reason

    def test_ip_literal_host_checked(self):
        """IP-literal URLs never hit the resolver, so the request check covers them."""
        verdict = make_enforcer().check_request("https://169.254.169.254/latest/meta-data/")
        assert verdict.blocked
        assert verdict.denied_by == "ip:169.254.169.254"
        assert verdict.decisions["url"].allowed

    def test_ipv6_literal_host_checked(self):
        verdict = make_enforcer().check_request("https://[::1]/")
        assert verdict.blocked
        assert verdict.decisions["ip:::1"].classification == Classification.DENIED_PRIVATE_RANGE

    def test_public_ip_literal_allowed(self):
        verdict = make_enforcer().check_request("https://93.184.216.34/")
        assert verdict.allowed
        assert "ip:93.184.216.34" in verdict.decisions

    def test_invalid_url_raises(self):
        with pytest.raises(InvalidUrlError):
            make_enforcer().check_request("not a url")

    def test_to_dict(self):
        verdict = make_enforcer().check_request("http://example.com/")
        result = verdict.to_dict()
        assert result["allowed"] is False
        assert result["denied_by"] == "url"
        assert result["decisions"]["url"] == {
            "classification": "DeniedDefault",
            "allowed": False,
            "details": None,
        }


class TestCheckConnection:
    """Checks made after resolution, before connecting."""

    def test_allowed(self):
        verdict = make_enforcer().check_connection("example.com", ["93.184.216.34"])
        assert verdict.allowed
        assert list(verdict.decisions) == ["host", "ip:93.184.216.34"]

    def test_one_private_address_blocks(self):
        verdict = make_enforcer().check_connection(
            "rebind.example", ["93.184.216.34", "127.0.0.1"]
        )
        assert verdict.blocked
        assert verdict.denied_by == "ip:127.0.0.1"
        assert verdict.reason == (
            "Denied rebind.example: ip:127.0.0.1 DeniedPrivateRange"
        )

    def test_denied_host(self):
        policy = PolicyBuilder().denied_hosts(["evil.example"]).build()
        verdict = make_enforcer(policy).check_connection("evil.example", ["93.184.216.34"])
        assert verdict.blocked
        assert verdict.denied_by == "host"

    def test_port_checked_when_given(self):
        verdict = make_enforcer().check_connection("example.com", ["93.184.216.34"], port=22)
        assert verdict.blocked
        assert verdict.denied_by == "port"
        assert verdict.reason.startswith("Denied example.com:22:")

    def test_no_addresses_blocks(self):
        verdict = make_enforcer().check_connection("example.com", [])
        assert verdict.blocked
        assert verdict.reason == "no addresses resolved for example.com"
        assert verdict.denied_by is None

    def test_explicit_allow_for_internal_address(self):
        policy = PolicyBuilder().allowed_ips(["10.0.0.5"]).build()
        verdict = make_enforcer(policy).check_connection("internal.example", ["10.0.0.5"])
        assert verdict.allowed


class TestCheckIp:
    """Single-address checks."""

    def test_private(self):
        verdict = make_enforcer().check_ip("10.0.0.1")
        assert verdict.blocked
        assert verdict.denied_by == "ip:10.0.0.1"

    def test_public(self):
        assert make_enforcer().check_ip("1.1.1.1").allowed


class TestAuditMode:
    """Audit mode records denials without blocking."""

    def test_denial_allowed_with_prefix(self):
        verdict = make_enforcer(audit_mode=True).check_request("http://example.com/")
        assert verdict.allowed
        assert verdict.reason == "[AUDIT] Would block: Denied GET http://example.com/: url DeniedDefault"
        assert verdict.denied_by == "url"

    def test_allowed_unchanged(self):
        verdict = make_enforcer(audit_mode=True).check_request("https://example.com/")
        assert verdict.reason == "Allowed GET https://example.com/"

    def test_no_addresses(self):
        verdict = make_enforcer(audit_mode=True).check_connection("example.com", [])
        assert verdict.allowed
        assert verdict.reason == "[AUDIT] Would block: no addresses resolved for example.com"


class TestFromConfig:
    """Building an enforcer from a config."""

    def test_uses_policy_and_audit_mode(self):
        config = config_from_dict(
            {"policy": "allow scheme http", "audit_mode": True}
        )
        enforcer = EgressEnforcer.from_config(config)
        assert enforcer.audit_mode is True
        assert enforcer.classifier.policy.allow_http is True

    def test_uses_private_networks(self):
        config = config_from_dict({"private_networks": ["34.120.0.0/16"]})
        enforcer = EgressEnforcer.from_config(config)
        decision = enforcer.classifier.is_ip_allowed("34.120.5.7")
        assert decision.classification == Classification.DENIED_PRIVATE_RANGE


class TestDecisionLog:
    """Verdicts are written to the JSONL decisions file."""

    def test_request_event(self, decisions_log):
        make_enforcer().check_request("http://example.com/", "POST")
        (event,) = decisions_log()
        assert event["type"] == "request"
        assert event["target"] == "POST http://example.com/"
        assert event["allowed"] is False
        assert event["denied_by"] == "url"
        assert event["decisions"]["method"]["classification"] == "AllowedDefault"
        assert "ts" in event
        # decisions breakdown is written last
        assert list(event)[-1] == "decisions"

    def test_audit_event_records_allowed(self, decisions_log):
        make_enforcer(audit_mode=True).check_ip("10.0.0.1")
        (event,) = decisions_log()
        assert event["type"] == "ip"
        assert event["allowed"] is True
        assert event["denied_by"] == "ip:10.0.0.1"

    def test_no_file_no_error(self):
        """Without init_logging, verdicts are not written anywhere."""
        assert make_enforcer().check_ip("1.1.1.1").allowed


class TestLogging:
    """Operational log lines."""

    def test_denial_logged_at_info(self, caplog, monkeypatch):
        monkeypatch.setattr(logging.getLogger("httpacl"), "propagate", True)
        with caplog.at_level(logging.INFO, logger="httpacl"):
            make_enforcer().check_ip("10.0.0.1")
        assert "Denied 10.0.0.1: ip:10.0.0.1 DeniedPrivateRange" in caplog.text

    def test_allow_not_logged_at_info(self, caplog, monkeypatch):
        monkeypatch.setattr(logging.getLogger("httpacl"), "propagate", True)
        with caplog.at_level(logging.INFO, logger="httpacl"):
            make_enforcer().check_ip("1.1.1.1")
        assert caplog.text == ""
