"""
Stage Progression Service: moves jobs through their stage catalog.

Entry points:
    submit_response       answer a question; may advance the job one stage
    admin_override_stage  move a job to any visible stage (owner/site_admin only)
    create_job            place a new job in the tenant's initial stage
    ensure_current_stage  lazily give a stage-less job its initial stage
    get_current_questions / get_audit_history / get_performance_metrics

submit_response pipeline (per-job lock, one transaction):
    validate → record response → skip? → resolve rule → move job
    → stage metric → audit entry → tasks for the new stage → commit

Every call that passes validation leaves exactly one StageAuditLog row:
success, skipped, no_transition, override_required, or failure. On failure
the whole transaction is rolled back, a failure entry is committed on its
own, and ProgressionFailedError is raised with the original cause.

Usage:
    from jobflow.services.stage_progression import submit_response

    result = submit_response(job_id=7, question_id=1, response_value="Yes", user_id=3)
    # -> {"action": "stage_transition", "stage_progressed": True, ...}
"""

import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from jobflow.core.exceptions import (
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    ProgressionFailedError,
    ValidationError,
)
from jobflow.models import db
from jobflow.models.auth import Tenant, User
from jobflow.models.base import as_utc, isoformat, utcnow
from jobflow.models.job import Job
from jobflow.models.progression import (
    RESPONSE_SOURCES,
    StageAuditLog,
    StagePerformanceMetric,
    hours_between,
    write_stage_audit,
    write_stage_metric,
)
from jobflow.models.workflow import JobStage, StageQuestion
from jobflow.services.catalog_service import get_stage_for_tenant, initial_stage, stage_visible
from jobflow.services.helpers.scoped_queries import get_or_raise, get_scoped, get_scoped_or_none
from jobflow.services.job_locks import job_lock
from jobflow.services.response_store import (
    record_response,
    responses_for_job,
    validate_response_value,
)
from jobflow.services.skip_evaluator import should_skip
from jobflow.services.task_generator import create_tasks_for_stage
from jobflow.services.transition_resolver import resolve

logger = logging.getLogger(__name__)

_VALIDATION_ERRORS = (InvalidArgumentError, NotFoundError, PermissionDeniedError, ValidationError)


def _require(**arguments) -> None:
    for name, value in arguments.items():
        if value is None or (isinstance(value, str) and not value.strip()):
            raise InvalidArgumentError(name)


def _lock_timeout() -> float | None:
    return current_app.config.get("JOB_LOCK_TIMEOUT_SECONDS")


def _load_job_for_update(job_id: int) -> Job:
    """Load the job row with a row lock, refreshing any cached state."""
    stmt = (
        select(Job)
        .where(Job.id == job_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    job = db.session.execute(stmt).scalar_one_or_none()
    if job is None:
        raise NotFoundError(resource="Job", resource_id=job_id)
    return job


def _load_question_for_job(question_id: int, job: Job) -> StageQuestion:
    question = get_or_raise(StageQuestion, question_id)
    if not stage_visible(question.stage, job.tenant_id):
        raise NotFoundError(resource="StageQuestion", resource_id=question_id, tenant_id=job.tenant_id)
    return question


# ═════════════════════════════════════════════════════════════════════════════
# Stage movement (shared by responses and admin override)
# ═════════════════════════════════════════════════════════════════════════════

def _move_job(
    job: Job,
    destination: JobStage,
    *,
    user_id: int | None,
    trigger_source: str,
    details: dict,
    question_id: int | None = None,
    response_value: str | None = None,
) -> tuple[StageAuditLog, float | None, int]:
    """Move ``job`` into ``destination`` and write its metric, audit and tasks.

    Flushes only. Returns (audit entry, hours spent in the exited stage, tasks created).
    """
    from_stage_id = job.current_stage_id
    from_status = job.status
    entered_at = as_utc(job.stage_entered_at)

    now = utcnow()
    if entered_at is not None and now <= entered_at:
        now = entered_at + timedelta(microseconds=1)

    duration = hours_between(entered_at, now) if entered_at is not None else None

    job.current_stage_id = destination.id
    job.stage_entered_at = now
    job.status = destination.maps_to_status
    job.updated_at = now
    db.session.flush()

    if from_stage_id is not None and entered_at is not None:
        write_stage_metric(
            tenant_id=job.tenant_id,
            job_id=job.id,
            stage_id=from_stage_id,
            entered_at=entered_at,
            exited_at=now,
        )

    audit = write_stage_audit(
        tenant_id=job.tenant_id,
        job_id=job.id,
        from_stage_id=from_stage_id,
        to_stage_id=destination.id,
        from_status=from_status,
        to_status=destination.maps_to_status,
        trigger_source=trigger_source,
        outcome="success",
        triggered_by_id=user_id,
        question_id=question_id,
        response_value=response_value,
        duration_hours=duration,
        details=details,
    )

    tasks_created = create_tasks_for_stage(job, destination.id, user_id)
    return audit, duration, tasks_created


def _record_failure(
    *,
    tenant_id: int,
    job_id: int,
    stage_id: int | None,
    status: str | None,
    trigger_source: str,
    user_id: int | None,
    exc: Exception,
    question_id: int | None = None,
    response_value: str | None = None,
    details: dict | None = None,
) -> None:
    """Commit a failure audit entry after the main transaction rolled back."""
    try:
        write_stage_audit(
            tenant_id=tenant_id,
            job_id=job_id,
            from_stage_id=stage_id,
            to_stage_id=stage_id,
            from_status=status,
            to_status=status,
            trigger_source=trigger_source,
            outcome="failure",
            triggered_by_id=user_id,
            question_id=question_id,
            response_value=response_value,
            details=details,
            error_detail=f"{type(exc).__name__}: {exc}",
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception(
            "Could not write failure audit for job %s", job_id,
            extra={"job_id": job_id, "stage_id": stage_id},
        )


# ═════════════════════════════════════════════════════════════════════════════
# Response-driven progression
# ═════════════════════════════════════════════════════════════════════════════

def _process_response(
    job: Job,
    question: StageQuestion,
    value: str,
    *,
    user_id: int,
    source: str,
    metadata: dict | None,
) -> dict:
    response = record_response(job, question, value, user_id=user_id, source=source, metadata=metadata)
    current_stage_id = job.current_stage_id
    details = {"source": source, "metadata": metadata or {}}
    result = {
        "job_id": job.id,
        "question_id": question.id,
        "response_id": response.id,
        "response_value": value,
        "current_stage_id": current_stage_id,
        "next_stage_id": current_stage_id,
        "stage_progressed": False,
        "tasks_created": 0,
        "duration_hours": None,
    }

    def _non_transition(outcome: str, extra_details: dict | None = None) -> StageAuditLog:
        return write_stage_audit(
            tenant_id=job.tenant_id,
            job_id=job.id,
            from_stage_id=current_stage_id,
            to_stage_id=current_stage_id,
            from_status=job.status,
            to_status=job.status,
            trigger_source="question_response",
            outcome=outcome,
            triggered_by_id=user_id,
            question_id=question.id,
            response_value=value,
            details={**details, **(extra_details or {})},
        )

    if should_skip(job, question, value):
        audit = _non_transition("skipped")
        logger.debug("Question %s skipped for job %s", question.id, job.id, extra={"job_id": job.id})
        return {**result, "action": "skipped", "audit_id": audit.id,
                "message": "Question skipped due to conditional logic"}

    rule = resolve(current_stage_id, question.id, value)
    if rule is None:
        audit = _non_transition("no_transition")
        logger.debug("No transition for job %s on question %s", job.id, question.id, extra={"job_id": job.id})
        return {**result, "action": "no_transition", "audit_id": audit.id,
                "message": "No stage transition triggered"}

    if rule.requires_admin_override:
        audit = _non_transition(
            "override_required",
            {"transition_id": rule.id, "pending_stage_id": rule.to_stage_id},
        )
        logger.info(
            "Job %s transition %s awaits admin override", job.id, rule.id,
            extra={"job_id": job.id, "stage_id": current_stage_id},
        )
        return {**result, "action": "override_required", "audit_id": audit.id,
                "pending_stage_id": rule.to_stage_id, "transition_id": rule.id,
                "message": "Transition requires admin override"}

    destination = get_or_raise(JobStage, rule.to_stage_id)
    audit, duration, tasks_created = _move_job(
        job,
        destination,
        user_id=user_id,
        trigger_source="question_response",
        details={**details, "transition_id": rule.id, "transition_action": rule.action},
        question_id=question.id,
        response_value=value,
    )
    logger.info(
        "Job %s moved %s → %s (%.2fh in previous stage)",
        job.id, current_stage_id, destination.id, duration or 0.0,
        extra={"job_id": job.id, "stage_id": destination.id},
    )
    return {
        **result,
        "action": "stage_transition",
        "stage_progressed": True,
        "current_stage_id": current_stage_id,
        "next_stage_id": destination.id,
        "tasks_created": tasks_created,
        "duration_hours": duration,
        "transition_action": rule.action,
        "audit_id": audit.id,
        "message": f"Job moved to {destination.name}",
    }


def submit_response(
    job_id: int,
    question_id: int,
    response_value: str,
    user_id: int,
    response_source: str = "web_app",
    response_metadata: dict | None = None,
) -> dict:
    """
    Record an answer and apply whatever stage transition it triggers.

    Returns:
        {"action": "stage_transition" | "skipped" | "no_transition" | "override_required",
         "stage_progressed", "current_stage_id", "next_stage_id",
         "tasks_created", "duration_hours", "audit_id", ...}

    Raises:
        InvalidArgumentError, NotFoundError, ValidationError: before any write.
        ProgressionFailedError: after rollback and the failure audit entry.
    """
    if response_value is None:
        raise InvalidArgumentError("response_value")
    _require(job_id=job_id, question_id=question_id, user_id=user_id)

    with job_lock(job_id, timeout=_lock_timeout()):
        try:
            job = _load_job_for_update(job_id)
            question = _load_question_for_job(question_id, job)
            if response_source not in RESPONSE_SOURCES:
                raise ValidationError(
                    f"Unknown response source: {response_source}",
                    details={"response_source": response_source, "allowed": sorted(RESPONSE_SOURCES)},
                )
            value = validate_response_value(question, response_value)
            ensure_current_stage(job)
        except _VALIDATION_ERRORS:
            db.session.rollback()
            raise

        tenant_id = job.tenant_id
        entry_stage_id = job.current_stage_id
        entry_status = job.status
        try:
            result = _process_response(
                job, question, value,
                user_id=user_id, source=response_source, metadata=response_metadata,
            )
            db.session.commit()
        except Exception as exc:
            db.session.rollback()
            logger.exception(
                "Stage progression failed for job %s", job_id,
                extra={"job_id": job_id, "stage_id": entry_stage_id},
            )
            _record_failure(
                tenant_id=tenant_id,
                job_id=job_id,
                stage_id=entry_stage_id,
                status=entry_status,
                trigger_source="question_response",
                user_id=user_id,
                exc=exc,
                question_id=question_id,
                response_value=value,
                details={"source": response_source},
            )
            raise ProgressionFailedError(job_id, exc) from exc

    return result


# ═════════════════════════════════════════════════════════════════════════════
# Admin override
# ═════════════════════════════════════════════════════════════════════════════

def admin_override_stage(job_id: int, target_stage_id: int, admin_id: int, reason: str) -> dict:
    """
    Move a job to ``target_stage_id`` regardless of the transition table.

    Raises:
        InvalidArgumentError: missing argument.
        NotFoundError: job or target stage missing / not visible to the job's tenant.
        PermissionDeniedError: ``admin_id`` is not an owner or site_admin of the tenant.
        ValidationError: the job is already in the target stage.
        ProgressionFailedError: after rollback and the failure audit entry.
    """
    _require(job_id=job_id, target_stage_id=target_stage_id, admin_id=admin_id, reason=reason)

    with job_lock(job_id, timeout=_lock_timeout()):
        try:
            job = _load_job_for_update(job_id)
            admin = get_scoped_or_none(User, admin_id, tenant_id=job.tenant_id)
            if admin is None or not admin.is_active or not admin.is_admin:
                raise PermissionDeniedError(
                    "Only owners and site admins can override job stages", user_id=admin_id,
                )
            destination = get_stage_for_tenant(target_stage_id, job.tenant_id)
            if destination.id == job.current_stage_id:
                raise ValidationError(
                    "Job is already in the target stage",
                    details={"target_stage_id": target_stage_id},
                )
        except _VALIDATION_ERRORS:
            db.session.rollback()
            raise

        tenant_id = job.tenant_id
        entry_stage_id = job.current_stage_id
        entry_status = job.status
        details = {"reason": reason.strip(), "admin_email": admin.email}
        try:
            audit, duration, tasks_created = _move_job(
                job,
                destination,
                user_id=admin.id,
                trigger_source="admin_override",
                details=details,
            )
            db.session.commit()
        except Exception as exc:
            db.session.rollback()
            logger.exception(
                "Admin override failed for job %s", job_id,
                extra={"job_id": job_id, "stage_id": entry_stage_id},
            )
            _record_failure(
                tenant_id=tenant_id,
                job_id=job_id,
                stage_id=entry_stage_id,
                status=entry_status,
                trigger_source="admin_override",
                user_id=admin_id,
                exc=exc,
                details=details,
            )
            raise ProgressionFailedError(job_id, exc) from exc

    logger.info(
        "Admin %s overrode job %s: %s → %s", admin_id, job_id, entry_stage_id, destination.id,
        extra={"job_id": job_id, "stage_id": destination.id},
    )
    return {
        "action": "admin_override",
        "job_id": job_id,
        "stage_progressed": True,
        "previous_stage_id": entry_stage_id,
        "current_stage_id": destination.id,
        "status": destination.maps_to_status,
        "tasks_created": tasks_created,
        "duration_hours": duration,
        "audit_id": audit.id,
    }


# ═════════════════════════════════════════════════════════════════════════════
# Job creation & lazy stage assignment
# ═════════════════════════════════════════════════════════════════════════════

def ensure_current_stage(job: Job) -> JobStage:
    """Give a stage-less job its tenant's initial stage. Flushes only.

    Raises:
        ValidationError: the tenant has no stages at all.
    """
    if job.current_stage_id is not None:
        return job.current_stage

    stage = initial_stage(job.tenant_id)
    if stage is None:
        raise ValidationError(
            "No stages are configured for this tenant",
            details={"tenant_id": job.tenant_id},
        )
    job.current_stage_id = stage.id
    job.current_stage = stage
    job.stage_entered_at = utcnow()
    job.status = stage.maps_to_status
    db.session.flush()
    logger.info(
        "Job %s assigned initial stage %s", job.id, stage.id,
        extra={"job_id": job.id, "stage_id": stage.id},
    )
    return stage


def create_job(
    tenant_id: int,
    title: str,
    *,
    created_by_id: int | None = None,
    job_type: str = "standard",
    foreman_id: int | None = None,
) -> Job:
    """
    Create a job in the tenant's initial stage, with its job_created audit
    entry and initial-stage tasks. Commits.

    Raises:
        InvalidArgumentError, NotFoundError, ValidationError
    """
    _require(tenant_id=tenant_id, title=title, job_type=job_type)
    get_or_raise(Tenant, tenant_id)
    if created_by_id is not None:
        get_scoped(User, created_by_id, tenant_id=tenant_id)
    if foreman_id is not None:
        get_scoped(User, foreman_id, tenant_id=tenant_id)

    stage = initial_stage(tenant_id)
    if stage is None:
        raise ValidationError(
            "No stages are configured for this tenant",
            details={"tenant_id": tenant_id},
        )

    now = utcnow()
    try:
        job = Job(
            tenant_id=tenant_id,
            title=title.strip(),
            job_type=job_type,
            foreman_id=foreman_id,
            created_by_id=created_by_id,
            current_stage_id=stage.id,
            stage_entered_at=now,
            status=stage.maps_to_status,
        )
        db.session.add(job)
        db.session.flush()

        write_stage_audit(
            tenant_id=tenant_id,
            job_id=job.id,
            from_stage_id=None,
            to_stage_id=stage.id,
            from_status=None,
            to_status=stage.maps_to_status,
            trigger_source="job_created",
            outcome="success",
            triggered_by_id=created_by_id,
            details={"title": job.title, "job_type": job_type},
        )
        tasks_created = create_tasks_for_stage(job, stage.id, created_by_id)
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Job creation failed for tenant %s", tenant_id)
        raise

    logger.info(
        "Job %s created in stage %s with %d task(s)", job.id, stage.id, tasks_created,
        extra={"job_id": job.id, "stage_id": stage.id, "tenant_id": tenant_id},
    )
    return job


# ═════════════════════════════════════════════════════════════════════════════
# Read views
# ═════════════════════════════════════════════════════════════════════════════

def get_current_questions(job_id: int) -> dict:
    """Questions of the job's current stage with answered/skipped flags."""
    job = get_or_raise(Job, job_id)
    stage = job.current_stage
    if stage is None:
        return {
            "job_id": job.id,
            "stage": None,
            "questions": [],
            "next_question": None,
            "progress": {"total": 0, "answered": 0, "skipped": 0, "remaining": 0},
        }

    answers = responses_for_job(job.id)
    questions = []
    for question in stage.questions:
        answer = answers.get(question.id)
        item = question.to_dict()
        item["answered"] = answer is not None
        item["response_value"] = answer.response_value if answer else None
        item["skipped"] = should_skip(job, question, answer.response_value if answer else "")
        questions.append(item)

    pending = [q for q in questions if not q["answered"] and not q["skipped"]]
    answered = sum(1 for q in questions if q["answered"])
    skipped = sum(1 for q in questions if q["skipped"] and not q["answered"])
    return {
        "job_id": job.id,
        "stage": stage.to_dict(),
        "stage_entered_at": isoformat(job.stage_entered_at),
        "questions": questions,
        "next_question": pending[0] if pending else None,
        "progress": {
            "total": len(questions),
            "answered": answered,
            "skipped": skipped,
            "remaining": len(pending),
        },
    }


def get_audit_history(job_id: int) -> list[dict]:
    """The job's audit ledger, oldest first."""
    get_or_raise(Job, job_id)
    rows = db.session.execute(
        select(StageAuditLog)
        .where(StageAuditLog.job_id == job_id)
        .order_by(StageAuditLog.created_at.asc(), StageAuditLog.id.asc())
    ).scalars()
    return [r.to_dict() for r in rows]


def get_performance_metrics(job_id: int) -> dict:
    """Completed stage occupancies plus time spent so far in the current stage."""
    job = get_or_raise(Job, job_id)
    rows = db.session.execute(
        select(StagePerformanceMetric)
        .where(StagePerformanceMetric.job_id == job_id)
        .order_by(StagePerformanceMetric.entered_at.asc(), StagePerformanceMetric.id.asc())
    ).scalars().all()

    current = None
    if job.current_stage_id is not None and job.stage_entered_at is not None:
        current = {
            "stage_id": job.current_stage_id,
            "entered_at": isoformat(job.stage_entered_at),
            "hours_so_far": hours_between(job.stage_entered_at, utcnow()),
        }
    return {
        "job_id": job.id,
        "metrics": [m.to_dict() for m in rows],
        "total_completed_hours": sum(m.duration_hours for m in rows),
        "current_stage": current,
    }
