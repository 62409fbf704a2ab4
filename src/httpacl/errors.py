"""Exceptions raised at the edges of the ACL engine.

Classification itself never raises: every classifier returns a Decision.
These are for the surrounding layers (URL parsing, config loading, client hooks).
"""


class HttpAclError(Exception):
    """Base class for httpacl errors."""


class InvalidUrlError(HttpAclError, ValueError):
    """A URL could not be split into scheme/host/port/username."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Invalid URL {url!r}: {reason}")


class PolicyConfigError(HttpAclError):
    """A policy config file is missing, malformed, or references unknown presets."""


class RequestDenied(HttpAclError):
    """Raised by client hooks when the policy blocks a request or connection."""

    def __init__(self, verdict):
        self.verdict = verdict
        super().__init__(f"Request has been rejected from acl due to {verdict.reason}")
