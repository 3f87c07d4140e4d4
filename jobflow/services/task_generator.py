"""
Task Generator: instantiates a stage's task templates for a job.

Assignment by template.auto_assign_to:
    creator → the user who triggered the stage change
    foreman → the job's foreman, falling back to the user
    admin   → the tenant's earliest active owner/site_admin, falling back to the user

Idempotent per stage occupancy: a template that already has a non-cancelled
task created since the job entered the stage is not instantiated again.
Re-entering a stage later creates fresh tasks.
"""

import logging
from datetime import timedelta

from flask import current_app
from sqlalchemy import select

from jobflow.models import db
from jobflow.models.auth import ADMIN_ROLES, Tenant, User
from jobflow.models.base import utcnow
from jobflow.models.job import Job, JobTask
from jobflow.models.workflow import TaskTemplate

logger = logging.getLogger(__name__)


def auto_create_enabled(tenant_id: int) -> bool:
    """Tenant setting ``auto_create_tasks`` wins over app config AUTO_CREATE_TASKS."""
    tenant = db.session.get(Tenant, tenant_id)
    settings = (tenant.settings or {}) if tenant else {}
    if "auto_create_tasks" in settings:
        return bool(settings["auto_create_tasks"])
    return bool(current_app.config.get("AUTO_CREATE_TASKS", True))


def _tenant_admin_id(tenant_id: int) -> int | None:
    stmt = (
        select(User.id)
        .where(
            User.tenant_id == tenant_id,
            User.role.in_(ADMIN_ROLES),
            User.is_active.is_(True),
        )
        .order_by(User.created_at.asc(), User.id.asc())
        .limit(1)
    )
    return db.session.execute(stmt).scalar_one_or_none()


def resolve_assignee(template: TaskTemplate, job: Job, user_id: int | None) -> int | None:
    if template.auto_assign_to == "foreman":
        return job.foreman_id or user_id
    if template.auto_assign_to == "admin":
        return _tenant_admin_id(job.tenant_id) or user_id
    return user_id


def _existing_template_ids(job: Job, stage_id: int) -> set[int]:
    stmt = select(JobTask.template_id).where(
        JobTask.job_id == job.id,
        JobTask.stage_id == stage_id,
        JobTask.template_id.is_not(None),
        JobTask.status != "cancelled",
    )
    if job.current_stage_id == stage_id and job.stage_entered_at is not None:
        stmt = stmt.where(JobTask.created_at >= job.stage_entered_at)
    return set(db.session.execute(stmt).scalars())


def create_tasks_for_stage(job: Job, stage_id: int, user_id: int | None) -> int:
    """Create the stage's tasks for ``job``. Flushes, never commits.

    Returns the number of tasks created (zero when disabled, when the stage
    has no templates, or when every template already has a live task for
    the current occupancy).
    """
    if not auto_create_enabled(job.tenant_id):
        logger.debug("Task auto-creation disabled for tenant %s", job.tenant_id)
        return 0

    templates = db.session.execute(
        select(TaskTemplate).where(TaskTemplate.stage_id == stage_id).order_by(TaskTemplate.id)
    ).scalars().all()
    if not templates:
        return 0

    existing = _existing_template_ids(job, stage_id)
    now = utcnow()
    created = 0
    for template in templates:
        if template.id in existing:
            continue
        offset = template.due_date_offset_hours or 0
        task = JobTask(
            tenant_id=job.tenant_id,
            job_id=job.id,
            template_id=template.id,
            stage_id=stage_id,
            title=template.title,
            description=template.description,
            subtasks=list(template.subtasks or []),
            status="pending",
            priority=template.priority,
            assigned_to_id=resolve_assignee(template, job, user_id),
            created_by_id=user_id,
            due_date=now + timedelta(hours=offset) if offset > 0 else None,
        )
        db.session.add(task)
        created += 1

    if created:
        db.session.flush()
        logger.info(
            "Created %d task(s) for job %s in stage %s", created, job.id, stage_id,
            extra={"job_id": job.id, "stage_id": stage_id},
        )
    return created

