"""
Performance & SLA reporting over the progression ledger.

    get_stage_performance_report  per-stage duration statistics from
                                  StagePerformanceMetric rows
    check_sla_violations          open tasks past their template's SLA,
                                  graded by hours overdue
    check_stage_overstays         jobs sitting in a stage beyond its
                                  max_duration_hours

Severity thresholds come from config SLA_SEVERITY_THRESHOLDS
(hours overdue strictly greater than the threshold).
"""

import logging
import statistics
from datetime import date, datetime, time, timedelta, timezone

from flask import current_app
from sqlalchemy import select

from jobflow.models import db
from jobflow.models.base import as_utc, isoformat, utcnow
from jobflow.models.job import OPEN_TASK_STATUSES, Job, JobTask
from jobflow.models.progression import StagePerformanceMetric, hours_between
from jobflow.models.workflow import JobStage, TaskTemplate

logger = logging.getLogger(__name__)

DEFAULT_SLA_THRESHOLDS = {"critical": 48, "high": 24, "medium": 8}


def _thresholds() -> dict:
    return current_app.config.get("SLA_SEVERITY_THRESHOLDS") or DEFAULT_SLA_THRESHOLDS


def severity_for(hours_overdue: float, thresholds: dict | None = None) -> str:
    """critical / high / medium / low by hours past the deadline."""
    thresholds = thresholds or DEFAULT_SLA_THRESHOLDS
    for level in ("critical", "high", "medium"):
        if hours_overdue > thresholds[level]:
            return level
    return "low"


def _day_start(value: date) -> datetime:
    return datetime.combine(value, time.min, tzinfo=timezone.utc)


def get_stage_performance_report(
    tenant_id: int,
    date_from: date | None = None,
    date_to: date | None = None,
) -> list[dict]:
    """Duration statistics per stage for completed occupancies.

    ``date_from`` / ``date_to`` filter on the exit time, both inclusive.
    Stages with no completed occupancy in range are omitted.
    """
    stmt = (
        select(StagePerformanceMetric, JobStage)
        .join(JobStage, StagePerformanceMetric.stage_id == JobStage.id)
        .where(StagePerformanceMetric.tenant_id == tenant_id)
    )
    if date_from is not None:
        stmt = stmt.where(StagePerformanceMetric.exited_at >= _day_start(date_from))
    if date_to is not None:
        stmt = stmt.where(StagePerformanceMetric.exited_at < _day_start(date_to + timedelta(days=1)))

    grouped: dict[int, dict] = {}
    for metric, stage in db.session.execute(stmt):
        bucket = grouped.setdefault(stage.id, {"stage": stage, "durations": [], "jobs": set()})
        bucket["durations"].append(metric.duration_hours)
        bucket["jobs"].add(metric.job_id)

    report = []
    for bucket in sorted(grouped.values(), key=lambda b: (b["stage"].sequence_order, b["stage"].id)):
        stage = bucket["stage"]
        durations = bucket["durations"]
        over_max = (
            sum(1 for d in durations if d > stage.max_duration_hours)
            if stage.max_duration_hours is not None else 0
        )
        report.append({
            "stage_id": stage.id,
            "stage_name": stage.name,
            "sequence_order": stage.sequence_order,
            "total_entries": len(durations),
            "distinct_jobs": len(bucket["jobs"]),
            "avg_duration_hours": round(statistics.fmean(durations), 4),
            "median_duration_hours": round(statistics.median(durations), 4),
            "min_duration_hours": round(min(durations), 4),
            "max_duration_hours": round(max(durations), 4),
            "over_max_duration_count": over_max,
        })
    return report


def check_sla_violations(tenant_id: int | None = None, now: datetime | None = None) -> list[dict]:
    """Open tasks older than their template's sla_hours, most overdue first."""
    now = as_utc(now) or utcnow()
    thresholds = _thresholds()

    stmt = (
        select(JobTask, TaskTemplate)
        .join(TaskTemplate, JobTask.template_id == TaskTemplate.id)
        .where(
            JobTask.status.in_(OPEN_TASK_STATUSES),
            TaskTemplate.sla_hours.is_not(None),
        )
    )
    if tenant_id is not None:
        stmt = stmt.where(JobTask.tenant_id == tenant_id)

    violations = []
    for task, template in db.session.execute(stmt):
        hours_overdue = hours_between(task.created_at, now) - template.sla_hours
        if hours_overdue <= 0:
            continue
        violations.append({
            "task_id": task.id,
            "job_id": task.job_id,
            "task_title": task.title,
            "assigned_to_id": task.assigned_to_id,
            "sla_hours": template.sla_hours,
            "hours_overdue": round(hours_overdue, 4),
            "severity": severity_for(hours_overdue, thresholds),
        })

    violations.sort(key=lambda v: v["hours_overdue"], reverse=True)
    if violations:
        logger.info("%d SLA violation(s) for tenant %s", len(violations), tenant_id)
    return violations


def check_stage_overstays(tenant_id: int, now: datetime | None = None) -> list[dict]:
    """Jobs in a stage longer than the stage's max_duration_hours."""
    now = as_utc(now) or utcnow()
    thresholds = _thresholds()

    stmt = (
        select(Job, JobStage)
        .join(JobStage, Job.current_stage_id == JobStage.id)
        .where(
            Job.tenant_id == tenant_id,
            Job.stage_entered_at.is_not(None),
            JobStage.max_duration_hours.is_not(None),
        )
    )
    overstays = []
    for job, stage in db.session.execute(stmt):
        elapsed = hours_between(job.stage_entered_at, now)
        hours_over = elapsed - stage.max_duration_hours
        if hours_over <= 0:
            continue
        overstays.append({
            "job_id": job.id,
            "job_title": job.title,
            "stage_id": stage.id,
            "stage_name": stage.name,
            "stage_entered_at": isoformat(job.stage_entered_at),
            "max_duration_hours": stage.max_duration_hours,
            "hours_over": round(hours_over, 4),
            "severity": severity_for(hours_over, thresholds),
        })
    overstays.sort(key=lambda o: o["hours_over"], reverse=True)
    return overstays
