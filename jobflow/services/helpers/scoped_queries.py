"""
Scoped query helpers.

Lookups of rows that belong to a tenant, stage or job go through these
helpers so a foreign id from another tenant (or a question from another
stage) is indistinguishable from a missing row.

Usage:
    # Scope by tenant_id (users, tasks, responses)
    admin = get_scoped(User, admin_id, tenant_id=job.tenant_id)

    # Scope by stage_id (questions, task templates)
    question = get_scoped(StageQuestion, question_id, stage_id=stage.id)

    # When None is an acceptable outcome
    user = get_scoped_or_none(User, user_id, tenant_id=tenant_id)

Scope field resolution:
    Each keyword argument maps directly to a column name on the model.
    If none of the provided scopes exists on the model a ValueError is
    raised at call time so the bug surfaces during development.
"""

import logging

from sqlalchemy import select

from jobflow.core.exceptions import NotFoundError
from jobflow.models import db

logger = logging.getLogger(__name__)


def get_scoped(
    model,
    pk: int,
    *,
    tenant_id: int | None = None,
    stage_id: int | None = None,
    job_id: int | None = None,
):
    """Fetch a single entity by PK with a mandatory scope filter.

    Args:
        model: SQLAlchemy model class with an ``id`` PK column.
        pk: Primary key value to look up.
        tenant_id: Scope by tenant_id column.
        stage_id: Scope by stage_id column.
        job_id: Scope by job_id column.

    Returns:
        The model instance if found within the given scope.

    Raises:
        ValueError: If no scope is provided, or none of the provided scope
                    fields exists as a column on the model.
        NotFoundError: If the entity does not exist OR belongs to a
                       different scope.
    """
    provided_scopes: dict[str, int] = {
        "tenant_id": tenant_id,
        "stage_id": stage_id,
        "job_id": job_id,
    }
    provided_scopes = {k: v for k, v in provided_scopes.items() if v is not None}

    if not provided_scopes:
        raise ValueError(
            f"{model.__name__} id={pk} requires at least one scope filter "
            "(tenant_id, stage_id or job_id)."
        )

    applicable_scopes = {
        field: value
        for field, value in provided_scopes.items()
        if hasattr(model, field)
    }

    missing_fields = set(provided_scopes) - set(applicable_scopes)
    if missing_fields:
        logger.warning(
            "get_scoped(%s, %s): scope field(s) %s not found on model; "
            "those filters were NOT applied.",
            model.__name__,
            pk,
            sorted(missing_fields),
        )

    if not applicable_scopes:
        raise ValueError(
            f"{model.__name__} id={pk}: none of the scope fields "
            f"{sorted(provided_scopes)} exist as columns on {model.__name__}."
        )

    stmt = select(model).where(model.id == pk)
    for field, value in applicable_scopes.items():
        stmt = stmt.where(getattr(model, field) == value)

    result = db.session.execute(stmt).scalar_one_or_none()

    if result is None:
        logger.debug(
            "get_scoped: %s id=%s not found in scope %s",
            model.__name__,
            pk,
            applicable_scopes,
        )
        raise NotFoundError(resource=model.__name__, resource_id=pk)

    return result


def get_scoped_or_none(
    model,
    pk: int,
    *,
    tenant_id: int | None = None,
    stage_id: int | None = None,
    job_id: int | None = None,
):
    """Same as get_scoped but returns None instead of raising NotFoundError.

    Still raises ValueError when no usable scope is given.
    """
    try:
        return get_scoped(model, pk, tenant_id=tenant_id, stage_id=stage_id, job_id=job_id)
    except NotFoundError:
        return None


def get_or_raise(model, pk: int):
    """Fetch by PK alone for entry points that establish the scope.

    Used where the row itself defines the tenant (a job id arriving at the
    progression API). Raises NotFoundError when missing.
    """
    result = db.session.get(model, pk)
    if result is None:
        raise NotFoundError(resource=model.__name__, resource_id=pk)
    return result
