"""
Engine-wide exception hierarchy.

Services raise these types and nothing else; blueprints register handlers
against them once and get consistent HTTP status codes everywhere.

Usage:
    from jobflow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Job", resource_id=42)
    raise ValidationError("Value must be Yes or No", details={"response_value": "maybe"})

Retry guidance:
    InvalidArgumentError, NotFoundError, ValidationError and
    PermissionDeniedError describe the request and are never retried.
    ProgressionFailedError is safe to retry once.
"""

from sqlalchemy.orm.exc import StaleDataError


class InvalidArgumentError(Exception):
    """Raised when a required argument is missing or malformed.

    Maps to HTTP 400.

    Args:
        field: Name of the offending argument.
        message: Optional explanation; defaults to "<field> is required".
    """

    def __init__(self, field: str, message: str | None = None) -> None:
        self.field = field
        super().__init__(message or f"{field} is required")


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for both genuinely missing records and cross-tenant lookups so a
    caller cannot probe for another tenant's rows.

    Args:
        resource: Human-readable model name (e.g. "Job", "StageQuestion").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        tenant_id: Optional scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when well-formed input violates a business rule.

    Typical cause: a response value that does not fit the question's
    declared type, or a transition rule that breaks catalog invariants.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would duplicate a unique row.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class PermissionDeniedError(Exception):
    """Raised when the acting user lacks the role an operation needs.

    Maps to HTTP 403.
    """

    def __init__(self, message: str, user_id: int | None = None) -> None:
        self.user_id = user_id
        super().__init__(message)


class ProgressionFailedError(Exception):
    """Raised when a validated progression attempt fails mid-transaction.

    The transaction has been rolled back and a ``failure`` audit entry
    written before this is raised. The original exception is kept on
    ``cause`` (and chained as ``__cause__``).
    """

    def __init__(self, job_id: int, cause: BaseException) -> None:
        self.job_id = job_id
        self.cause = cause
        super().__init__(f"Stage progression failed for job {job_id}: {cause}")

    @property
    def is_conflict(self) -> bool:
        """True when the failure came from a concurrent writer."""
        return isinstance(self.cause, (StaleDataError, ConflictError))
