"""
Domain onboarding exceptions.

Validation and authorization problems are raised before any side effect.
DNS / ACME / proxy failures inside verification and certificate issuance are
returned as result objects instead; only the proxy layer raises
ProxyConfigError, and callers convert it into a recorded outcome.
"""

from typing import Any, Optional

from fastapi import status


class DomainError(Exception):
    """Base class carrying an HTTP status for the API layer."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(self, message: str, details: Optional[dict[str, Any]] = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)


class InvalidInput(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST


class NotAuthorized(DomainError):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "Not authorized for this organization", details=None):
        super().__init__(message, details)


class NotFound(DomainError):
    status_code = status.HTTP_404_NOT_FOUND


class Conflict(DomainError):
    # POST /domains reports duplicates as 400 alongside invalid input
    status_code = status.HTTP_400_BAD_REQUEST


class PreconditionFailed(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST


class ExternalFailure(DomainError):
    status_code = status.HTTP_502_BAD_GATEWAY


class ProxyConfigError(ExternalFailure):
    """nginx validation or reload failed; `output` holds the command diagnostic."""

    def __init__(self, message: str, output: str = ""):
        self.output = output
        super().__init__(message, {"output": output} if output else None)


class DnsLookupError(Exception):
    """Resolver failure. `code` mirrors the resolver condition (NXDOMAIN, TIMEOUT, ...)."""

    def __init__(self, code: str, message: str = "", transient: bool = False):
        self.code = code
        self.transient = transient
        super().__init__(message or code)
