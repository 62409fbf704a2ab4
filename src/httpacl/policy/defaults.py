"""Preset policies.

Presets are policy text, applied in order before a config's own policy
text. They can be combined, e.g. ``presets: [strict, cloud-metadata]``.
"""

# The recommended posture for general-purpose clients
DEFAULT_POLICY = """
# Plain http and https allowed, internal networks and PUT denied
allow scheme http|https
deny private-ranges
deny method PUT
"""

STRICT_POLICY = """
# https only, read-only methods, no internal networks, no credentials in URLs
deny scheme http
allow scheme https
allow method GET|HEAD|OPTIONS
default method deny
deny private-ranges
deny username-in-url
"""

# Instance metadata services are the classic SSRF target. Most sit in
# link-local space and are already covered by the private-range guard;
# listing them explicitly keeps them denied even if private ranges are
# allowed.
CLOUD_METADATA_POLICY = """
# AWS, GCP, Azure, OpenStack
deny ip 169.254.169.254|fd00:ec2::254
# Alibaba Cloud
deny ip 100.100.100.200
# Oracle Cloud
deny ip 192.0.0.192
deny host metadata.google.internal|metadata.goog|metadata
"""

# Registry of available presets
PRESETS = {
    "defaults": DEFAULT_POLICY,
    "strict": STRICT_POLICY,
    "cloud-metadata": CLOUD_METADATA_POLICY,
}


def get_preset(name: str) -> str | None:
    """Get a preset policy by name."""
    return PRESETS.get(name)


def get_defaults() -> str:
    """Get the recommended default policy text."""
    return DEFAULT_POLICY
