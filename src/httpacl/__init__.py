"""Network-egress access control for outbound HTTP requests (SSRF prevention)."""

from .errors import HttpAclError, InvalidUrlError, PolicyConfigError, RequestDenied
from .policy import (
    Classification,
    Classifier,
    Decision,
    EgressEnforcer,
    HttpMethod,
    Policy,
    PolicyBuilder,
    Verdict,
)

__version__ = "0.1.0"

__all__ = [
    "Classification",
    "Classifier",
    "Decision",
    "EgressEnforcer",
    "HttpMethod",
    "Policy",
    "PolicyBuilder",
    "Verdict",
    "HttpAclError",
    "InvalidUrlError",
    "PolicyConfigError",
    "RequestDenied",
]
