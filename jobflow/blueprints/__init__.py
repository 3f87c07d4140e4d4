"""
Job Stage Progression Engine
Blueprint registry and shared request helpers.
"""

import logging

from flask import request

from jobflow.core.exceptions import (
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    ProgressionFailedError,
    ValidationError,
)
from jobflow.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  max items (default 200, capped at max_limit)
        offset starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def int_field(data: dict, name: str, *, required: bool = True) -> int | None:
    """Read an integer from a JSON body or query mapping.

    Raises:
        InvalidArgumentError: missing (when required) or not an integer.
    """
    value = data.get(name)
    if value is None or value == "":
        if required:
            raise InvalidArgumentError(name)
        return None
    if isinstance(value, bool):
        raise InvalidArgumentError(name, f"{name} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise InvalidArgumentError(name, f"{name} must be an integer")


def register_error_handlers(bp):
    """Map the engine exception hierarchy onto standard JSON error bodies."""

    @bp.errorhandler(InvalidArgumentError)
    def _invalid_argument(exc):
        return api_error(E.VALIDATION_REQUIRED, str(exc), details={"field": exc.field})

    @bp.errorhandler(ValidationError)
    def _validation(exc):
        return api_error(E.VALIDATION_INVALID, str(exc), details=exc.details)

    @bp.errorhandler(NotFoundError)
    def _not_found(exc):
        return api_error(E.NOT_FOUND, f"{exc.resource} not found")

    @bp.errorhandler(PermissionDeniedError)
    def _forbidden(exc):
        return api_error(E.FORBIDDEN, str(exc))

    @bp.errorhandler(ConflictError)
    def _conflict(exc):
        return api_error(E.CONFLICT_DUPLICATE, str(exc))

    @bp.errorhandler(ProgressionFailedError)
    def _progression_failed(exc):
        if exc.is_conflict:
            return api_error(
                E.CONFLICT_STATE,
                "Job was modified concurrently, retry the request",
                details={"job_id": exc.job_id},
            )
        return api_error(
            E.PROGRESSION_FAILED,
            "Stage progression failed",
            details={"job_id": exc.job_id},
        )
