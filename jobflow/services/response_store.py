"""
Response Store: type validation and idempotent upsert of answers.

One row per (job, question). A new answer updates the row in place, so
repeated submissions never raise a duplicate-key error and the latest
answer is always the one evaluated.

Writers use ``flush`` so the caller keeps transaction control.
"""

import logging
import re
from datetime import date

from sqlalchemy import select

from jobflow.core.exceptions import ValidationError
from jobflow.models import db
from jobflow.models.base import utcnow
from jobflow.models.job import Job
from jobflow.models.progression import RESPONSE_SOURCES, UserResponse
from jobflow.models.workflow import StageQuestion

logger = logging.getLogger(__name__)

_NUMBER_RE = re.compile(r"^-?\d+(\.\d+)?$")

_YES_NO = {"YES": "Yes", "NO": "No"}


def validate_response_value(question: StageQuestion, value) -> str:
    """
    Check ``value`` against the question's declared response type.

    Returns the canonical text to store (yes/no answers become "Yes"/"No",
    everything else is trimmed).

    Raises:
        ValidationError: with ``details`` naming the question and type.
    """
    details = {"question_id": question.id, "response_type": question.response_type}
    text = "" if value is None else str(value).strip()

    rtype = question.response_type
    if rtype == "yes_no":
        canonical = _YES_NO.get(text.upper())
        if canonical is None:
            raise ValidationError("Response must be Yes or No", details=details)
        return canonical

    if rtype == "number":
        if not _NUMBER_RE.match(text):
            raise ValidationError("Response must be a valid number", details=details)
        return text

    if rtype == "date":
        try:
            date.fromisoformat(text)
        except ValueError:
            raise ValidationError("Response must be a valid date (YYYY-MM-DD)", details=details)
        return text

    if rtype == "file_upload":
        if not text:
            raise ValidationError("File upload response cannot be empty", details=details)
        return text

    if rtype == "multiple_choice":
        options = question.response_options or []
        if options and text not in [str(o).strip() for o in options]:
            raise ValidationError(
                "Response must be one of the configured options",
                details={**details, "options": options},
            )
        return text

    if rtype == "text":
        return text

    raise ValidationError(f"Unsupported response type: {rtype}", details=details)


def get_response(job_id: int, question_id: int) -> UserResponse | None:
    """Current answer for (job, question), or None."""
    stmt = select(UserResponse).where(
        UserResponse.job_id == job_id,
        UserResponse.question_id == question_id,
    )
    return db.session.execute(stmt).scalar_one_or_none()


def responses_for_job(job_id: int) -> dict[int, UserResponse]:
    """Current answers for a job keyed by question id."""
    stmt = select(UserResponse).where(UserResponse.job_id == job_id)
    return {r.question_id: r for r in db.session.execute(stmt).scalars()}


def record_response(
    job: Job,
    question: StageQuestion,
    value: str,
    *,
    user_id: int | None = None,
    source: str = "web_app",
    metadata: dict | None = None,
) -> UserResponse:
    """
    Insert or update the answer to ``question`` for ``job``.

    ``value`` is expected to be already validated and canonical.

    Raises:
        ValidationError: ``source`` is not a known response channel.
    """
    if source not in RESPONSE_SOURCES:
        raise ValidationError(
            f"Unknown response source: {source}",
            details={"response_source": source, "allowed": sorted(RESPONSE_SOURCES)},
        )

    existing = get_response(job.id, question.id)
    if existing is not None:
        existing.response_value = value
        existing.response_metadata = metadata or {}
        existing.response_source = source
        existing.updated_at = utcnow()
        db.session.flush()
        logger.debug(
            "Response updated job=%s question=%s", job.id, question.id,
            extra={"job_id": job.id},
        )
        return existing

    now = utcnow()
    response = UserResponse(
        tenant_id=job.tenant_id,
        job_id=job.id,
        question_id=question.id,
        response_value=value,
        response_metadata=metadata or {},
        response_source=source,
        responded_by_id=user_id,
        created_at=now,
        updated_at=now,
    )
    db.session.add(response)
    db.session.flush()
    logger.debug(
        "Response recorded job=%s question=%s", job.id, question.id,
        extra={"job_id": job.id},
    )
    return response
