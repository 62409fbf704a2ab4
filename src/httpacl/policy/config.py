"""Policy config files.

A config file is a YAML mapping:

    presets: [cloud-metadata]
    policy: |
      allow host api.example.com
      default host deny
    private_networks:
      - 34.120.0.0/16
    audit_mode: false

All keys are optional. Presets are applied first, in order, then the
policy text, all on top of the out-of-box Policy().
"""

import ipaddress
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from ..errors import PolicyConfigError
from .acl import Policy
from .defaults import PRESETS
from .parser import parse_policy
from .ranges import PrivateRanges

KNOWN_KEYS = {"presets", "policy", "private_networks", "audit_mode"}


@dataclass
class PolicyConfig:
    """Parsed contents of a policy config file."""

    policy_text: str = ""
    presets: list[str] = field(default_factory=list)
    private_networks: list[str] = field(default_factory=list)
    audit_mode: bool = False

    def base_policy(self) -> Policy:
        """The out-of-box Policy with this config's presets applied."""
        return parse_policy("\n".join(PRESETS[name] for name in self.presets))

    def build_policy(self) -> Policy:
        return parse_policy(self.policy_text, base=self.base_policy())

    def private_ranges(self) -> PrivateRanges:
        return PrivateRanges(self.private_networks)


def _as_str_list(data: dict, key: str) -> list[str]:
    value = data.get(key) or []
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise PolicyConfigError(f"'{key}' must be a list of strings")
    return value


def config_from_dict(data: dict) -> PolicyConfig:
    """Build a PolicyConfig from an already-loaded mapping.

    Raises:
        PolicyConfigError: on unknown keys, unknown presets or invalid networks.
    """
    unknown = set(data) - KNOWN_KEYS
    if unknown:
        raise PolicyConfigError(f"Unknown config key(s): {', '.join(sorted(unknown))}")

    presets = _as_str_list(data, "presets")
    for name in presets:
        if name not in PRESETS:
            raise PolicyConfigError(
                f"Unknown preset {name!r}. Available: {', '.join(PRESETS)}"
            )

    networks = _as_str_list(data, "private_networks")
    for net in networks:
        try:
            ipaddress.ip_network(net, strict=False)
        except ValueError as e:
            raise PolicyConfigError(f"Invalid private network {net!r}: {e}") from e

    policy_text = data.get("policy") or ""
    if not isinstance(policy_text, str):
        raise PolicyConfigError("'policy' must be a string of policy directives")

    audit_mode = data.get("audit_mode", False)
    if not isinstance(audit_mode, bool):
        raise PolicyConfigError("'audit_mode' must be true or false")

    return PolicyConfig(
        policy_text=policy_text,
        presets=presets,
        private_networks=networks,
        audit_mode=audit_mode,
    )


def load_config(path: Path | str) -> PolicyConfig:
    """Load a policy config file.

    Raises:
        PolicyConfigError: if the file is missing, is not valid YAML, is not
            a mapping, or its contents are invalid.
    """
    path = Path(path)
    if not path.exists():
        raise PolicyConfigError(f"File not found: {path}")

    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise PolicyConfigError(f"Invalid YAML: {e}") from e

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise PolicyConfigError(f"{path} is not a valid YAML mapping")

    return config_from_dict(data)
