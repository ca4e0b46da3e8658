"""Error taxonomy for custom domain provisioning.

Every error carries a machine readable ``code`` that the HTTP API puts in the
``error`` field of its envelope, so the API client can raise the same type on
the other side of the wire.
"""

from __future__ import annotations


class DomainError(Exception):
    """Base class for all domain provisioning errors."""

    code = "domain_error"
    status_code = 400

    def __init__(self, message: str, *, retryable: bool = False) -> None:
        super().__init__(message)
        self.message = message
        self.retryable = retryable


class ValidationError(DomainError, ValueError):
    """Malformed domain or subdomain input. Recovered locally."""

    code = "validation"


class InvalidDomainFormat(ValidationError):
    code = "invalid_domain"


class DomainNotFound(DomainError):
    code = "not_found"
    status_code = 404


class VerificationFailure(DomainError):
    """DNS answered, but not with the expected record."""

    code = "verification_failed"

    def __init__(self, message: str, *, outcome: str | None = None) -> None:
        super().__init__(message)
        self.outcome = outcome


class TransientError(DomainError):
    """Resolver or network failure. The check should be retried, not trusted."""

    code = "transient"
    status_code = 503

    def __init__(self, message: str) -> None:
        super().__init__(message, retryable=True)


class ConflictError(DomainError):
    code = "conflict"
    status_code = 409


class DuplicateDomain(ConflictError):
    code = "duplicate_domain"


class DomainNotActive(ConflictError):
    code = "not_active"


class CannotDeleteDefault(ConflictError):
    code = "cannot_delete_default"


class DomainInUse(ConflictError):
    code = "domain_in_use"


class SessionExpired(DomainError):
    """The API rejected our credentials. In-flight work must be abandoned."""

    code = "session_expired"
    status_code = 401


class ApiError(DomainError):
    """Unexpected response from the remote domain API."""

    code = "api_error"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code or 500


ERRORS_BY_CODE: dict[str, type[DomainError]] = {
    cls.code: cls
    for cls in (
        ValidationError,
        InvalidDomainFormat,
        DomainNotFound,
        VerificationFailure,
        TransientError,
        ConflictError,
        DuplicateDomain,
        DomainNotActive,
        CannotDeleteDefault,
        DomainInUse,
        SessionExpired,
    )
}

__all__ = [
    "DomainError",
    "ValidationError",
    "InvalidDomainFormat",
    "DomainNotFound",
    "VerificationFailure",
    "TransientError",
    "ConflictError",
    "DuplicateDomain",
    "DomainNotActive",
    "CannotDeleteDefault",
    "DomainInUse",
    "SessionExpired",
    "ApiError",
    "ERRORS_BY_CODE",
]
