"""Policy model, parsing and classification engine."""

from .acl import DEFAULT_ALLOWED_PORTS, Policy, PolicyBuilder
from .classifier import (
    Classifier,
    ParsedUrl,
    is_host_allowed,
    is_ip_allowed,
    is_method_allowed,
    is_port_allowed,
    is_scheme_allowed,
    is_url_allowed,
    parse_url,
)
from .config import PolicyConfig, config_from_dict, load_config
from .defaults import PRESETS, get_defaults, get_preset
from .enforcer import EgressEnforcer, Verdict
from .parser import (
    apply_directive,
    parse_directives,
    parse_policy,
    validate_policy,
)
from .ranges import PrivateRanges, is_private
from .types import Classification, Decision, Directive, HttpMethod

__all__ = [
    # Types
    "Classification",
    "Decision",
    "Directive",
    "HttpMethod",
    # Policy
    "Policy",
    "PolicyBuilder",
    "DEFAULT_ALLOWED_PORTS",
    # Classifier
    "Classifier",
    "ParsedUrl",
    "parse_url",
    "is_scheme_allowed",
    "is_method_allowed",
    "is_ip_allowed",
    "is_port_allowed",
    "is_host_allowed",
    "is_url_allowed",
    # Private ranges
    "is_private",
    "PrivateRanges",
    # Parser
    "parse_policy",
    "parse_directives",
    "apply_directive",
    "validate_policy",
    # Presets and config
    "PRESETS",
    "get_preset",
    "get_defaults",
    "PolicyConfig",
    "load_config",
    "config_from_dict",
    # Enforcer
    "EgressEnforcer",
    "Verdict",
]
