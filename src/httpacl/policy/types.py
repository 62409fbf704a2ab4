"""Classification taxonomy and decision types."""

from dataclasses import dataclass, field
from enum import Enum
from typing import Literal


class Classification(Enum):
    """Why a value was allowed or denied."""

    # Explicit allow-list match
    ALLOWED_USER_ACL = "AllowedUserAcl"
    # No explicit match, dimension defaults to allow
    ALLOWED_DEFAULT = "AllowedDefault"
    # Explicit deny-list match, or a hard policy violation
    DENIED_USER_ACL = "DeniedUserAcl"
    # No explicit match, dimension defaults to deny
    DENIED_DEFAULT = "DeniedDefault"
    # Unlisted address inside a private/reserved range
    DENIED_PRIVATE_RANGE = "DeniedPrivateRange"

    @property
    def allowed(self) -> bool:
        return self in _ALLOWED


_ALLOWED = frozenset({Classification.ALLOWED_USER_ACL, Classification.ALLOWED_DEFAULT})


class HttpMethod(str, Enum):
    """HTTP request methods known to the method ACL."""

    GET = "GET"
    CONNECT = "CONNECT"
    DELETE = "DELETE"
    HEAD = "HEAD"
    OPTIONS = "OPTIONS"
    PATCH = "PATCH"
    POST = "POST"
    PUT = "PUT"
    TRACE = "TRACE"

    def __str__(self) -> str:
        return self.value


def coerce_method(method: "HttpMethod | str") -> "HttpMethod | str":
    """Upper-case a method and map it onto HttpMethod when it names a known one.

    Unknown methods come back as upper-cased strings so they can still be
    listed and compared, but they never equal a known HttpMethod.
    """
    if isinstance(method, HttpMethod):
        return method
    upper = str(method).upper()
    try:
        return HttpMethod(upper)
    except ValueError:
        return upper


@dataclass(frozen=True)
class Decision:
    """Result of classifying one dimension of a request.

    Attributes:
        classification: The taxonomy tag for this outcome
        details: Extra reason text, only set where a deny needs disambiguation

    ``allowed`` is derived from the classification, and the decision is
    truthy exactly when it is allowed.
    """

    classification: Classification
    details: str | None = None

    @property
    def allowed(self) -> bool:
        return self.classification.allowed

    def __bool__(self) -> bool:
        return self.allowed

    def to_dict(self) -> dict:
        """Convert to a JSON-ready dict."""
        return {
            "classification": self.classification.value,
            "allowed": self.allowed,
            "details": self.details,
        }


DirectiveKind = Literal[
    "scheme",
    "host",
    "ip",
    "port",
    "method",
    "private-ranges",
    "username-in-url",
    "default",
]


@dataclass
class Directive:
    """One parsed line of policy text.

    ``values`` holds the listed schemes/hosts/IPs/ports/methods; for
    ``default`` directives it holds the single dimension name, and for the
    private-ranges/username-in-url toggles it is empty.
    """

    kind: DirectiveKind
    allow: bool
    values: list = field(default_factory=list)
