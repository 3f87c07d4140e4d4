"""
Job Stage Progression Engine
Progression ledger models.

Models:
    - UserResponse:           current answer per (job, question), updated in place
    - StageAuditLog:          immutable, append-only record of every progression attempt
    - StagePerformanceMetric: one row per completed stage occupancy

The writers at the bottom use ``flush`` so callers keep transaction control.
"""

import logging
from datetime import datetime

from jobflow.models import db
from jobflow.models.base import TenantModel, as_utc, isoformat, utcnow

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────────────────────

RESPONSE_SOURCES = {"web_app", "mobile_app", "sms", "email", "client_portal"}

TRIGGER_SOURCES = {"question_response", "admin_override", "job_created"}

AUDIT_OUTCOMES = {"success", "skipped", "no_transition", "override_required", "failure"}

_ERROR_DETAIL_MAX = 2000


class UserResponse(TenantModel):
    """The current answer to one question for one job."""

    __tablename__ = "user_responses"
    __table_args__ = (
        db.UniqueConstraint("job_id", "question_id", name="uq_response_job_question"),
    )

    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(
        db.Integer, db.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    question_id = db.Column(
        db.Integer, db.ForeignKey("stage_questions.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    response_value = db.Column(db.Text, nullable=False)
    response_metadata = db.Column(db.JSON, default=dict)
    response_source = db.Column(db.String(30), nullable=False, default="web_app")
    responded_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "question_id": self.question_id,
            "response_value": self.response_value,
            "response_metadata": self.response_metadata or {},
            "response_source": self.response_source,
            "responded_by_id": self.responded_by_id,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }


class StageAuditLog(TenantModel):
    """
    Immutable audit trail for every progression attempt.

    One row per attempt, whatever the outcome. Non-transitions and failures
    carry from_stage_id == to_stage_id.
    """

    __tablename__ = "stage_audit_log"
    __table_args__ = (
        db.Index("idx_stage_audit_job", "job_id", "created_at"),
        db.Index("idx_stage_audit_outcome", "outcome"),
    )

    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(
        db.Integer, db.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False,
    )
    from_stage_id = db.Column(db.Integer, db.ForeignKey("job_stages.id"), nullable=True)
    to_stage_id = db.Column(db.Integer, db.ForeignKey("job_stages.id"), nullable=True)
    from_status = db.Column(db.String(20))
    to_status = db.Column(db.String(20))
    trigger_source = db.Column(
        db.String(30), nullable=False,
        comment="question_response | admin_override | job_created",
    )
    triggered_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    trigger_details = db.Column(db.JSON, default=dict)
    question_id = db.Column(
        db.Integer, db.ForeignKey("stage_questions.id", ondelete="SET NULL"), nullable=True,
    )
    response_value = db.Column(db.Text)
    duration_in_previous_stage_hours = db.Column(db.Float, nullable=True)
    outcome = db.Column(
        db.String(20), nullable=False,
        comment="success | skipped | no_transition | override_required | failure",
    )
    error_detail = db.Column(db.Text, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "from_stage_id": self.from_stage_id,
            "to_stage_id": self.to_stage_id,
            "from_status": self.from_status,
            "to_status": self.to_status,
            "trigger_source": self.trigger_source,
            "triggered_by_id": self.triggered_by_id,
            "trigger_details": self.trigger_details or {},
            "question_id": self.question_id,
            "response_value": self.response_value,
            "duration_in_previous_stage_hours": self.duration_in_previous_stage_hours,
            "outcome": self.outcome,
            "error_detail": self.error_detail,
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<StageAuditLog {self.id}: job={self.job_id} {self.outcome} {self.from_stage_id}->{self.to_stage_id}>"


class StagePerformanceMetric(TenantModel):
    """Time one job spent in one stage. Written once, at stage exit."""

    __tablename__ = "stage_performance_metrics"
    __table_args__ = (
        db.UniqueConstraint("job_id", "stage_id", "entered_at", name="uq_metric_job_stage_entered"),
        db.Index("idx_stage_metric_stage", "stage_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(
        db.Integer, db.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    stage_id = db.Column(db.Integer, db.ForeignKey("job_stages.id"), nullable=False)
    entered_at = db.Column(db.DateTime(timezone=True), nullable=False)
    exited_at = db.Column(db.DateTime(timezone=True), nullable=False)
    duration_hours = db.Column(db.Float, nullable=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    stage = db.relationship("JobStage")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "stage_id": self.stage_id,
            "stage_name": self.stage.name if self.stage else None,
            "entered_at": isoformat(self.entered_at),
            "exited_at": isoformat(self.exited_at),
            "duration_hours": self.duration_hours,
        }


# ── Convenience writers ──────────────────────────────────────────────────────

def hours_between(start: datetime, end: datetime) -> float:
    """Fractional hours from start to end."""
    return (as_utc(end) - as_utc(start)).total_seconds() / 3600


def write_stage_audit(
    *,
    tenant_id: int,
    job_id: int,
    from_stage_id: int | None,
    to_stage_id: int | None,
    trigger_source: str,
    outcome: str,
    triggered_by_id: int | None = None,
    from_status: str | None = None,
    to_status: str | None = None,
    question_id: int | None = None,
    response_value: str | None = None,
    duration_hours: float | None = None,
    details: dict | None = None,
    error_detail: str | None = None,
) -> StageAuditLog:
    """
    Append a single audit row.  Uses ``flush`` so callers keep
    transaction control.

    Returns the (flushed) StageAuditLog instance.
    """
    if outcome not in AUDIT_OUTCOMES:
        raise ValueError(f"Unknown audit outcome: {outcome}")
    if trigger_source not in TRIGGER_SOURCES:
        raise ValueError(f"Unknown trigger source: {trigger_source}")

    entry = StageAuditLog(
        tenant_id=tenant_id,
        job_id=job_id,
        from_stage_id=from_stage_id,
        to_stage_id=to_stage_id,
        from_status=from_status,
        to_status=to_status,
        trigger_source=trigger_source,
        triggered_by_id=triggered_by_id,
        trigger_details=details or {},
        question_id=question_id,
        response_value=response_value,
        duration_in_previous_stage_hours=duration_hours,
        outcome=outcome,
        error_detail=error_detail[:_ERROR_DETAIL_MAX] if error_detail else None,
    )
    db.session.add(entry)
    db.session.flush()
    return entry


def write_stage_metric(
    *,
    tenant_id: int,
    job_id: int,
    stage_id: int,
    entered_at: datetime,
    exited_at: datetime,
) -> StagePerformanceMetric:
    """Record one finished stage occupancy. Flushes, never commits."""
    metric = StagePerformanceMetric(
        tenant_id=tenant_id,
        job_id=job_id,
        stage_id=stage_id,
        entered_at=as_utc(entered_at),
        exited_at=as_utc(exited_at),
        duration_hours=hours_between(entered_at, exited_at),
    )
    db.session.add(metric)
    db.session.flush()
    return metric
