"""
Job Stage Progression Engine
Job domain models.

Models:
    - Job:     the subject of stage progression
    - JobTask: work item instantiated from a TaskTemplate for one job

Job.current_stage_id / stage_entered_at / status are written only by the
progression service (submit_response, admin override, job creation).
"""

from jobflow.models import db
from jobflow.models.base import TenantModel, isoformat, utcnow

TASK_STATUSES = {"pending", "in_progress", "completed", "overdue", "cancelled"}

OPEN_TASK_STATUSES = ("pending", "in_progress")


class Job(TenantModel):
    """A construction job moving through the tenant's stage catalog."""

    __tablename__ = "jobs"
    __table_args__ = (
        db.Index("idx_jobs_current_stage", "current_stage_id"),
        db.Index("idx_jobs_stage_entered", "stage_entered_at"),
    )

    id = db.Column(db.Integer, primary_key=True)
    title = db.Column(db.String(200), nullable=False)
    job_type = db.Column(db.String(50), nullable=False, default="standard")
    foreman_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    current_stage_id = db.Column(
        db.Integer, db.ForeignKey("job_stages.id", ondelete="RESTRICT"), nullable=True,
    )
    stage_entered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    status = db.Column(
        db.String(20), nullable=False, default="planning",
        comment="Derived from current stage's maps_to_status",
    )
    created_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    version_id = db.Column(db.Integer, nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version_id}

    current_stage = db.relationship("JobStage", foreign_keys=[current_stage_id])
    tasks = db.relationship(
        "JobTask", back_populates="job", lazy="dynamic", cascade="all, delete-orphan",
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "title": self.title,
            "job_type": self.job_type,
            "foreman_id": self.foreman_id,
            "current_stage_id": self.current_stage_id,
            "current_stage": self.current_stage.to_dict() if self.current_stage else None,
            "stage_entered_at": isoformat(self.stage_entered_at),
            "status": self.status,
            "created_by_id": self.created_by_id,
            "created_at": isoformat(self.created_at),
            "updated_at": isoformat(self.updated_at),
        }

    def __repr__(self):
        return f"<Job {self.id}: {self.title[:40]} stage={self.current_stage_id}>"


class JobTask(TenantModel):
    """Work item owned by a job, created when the job enters a stage."""

    __tablename__ = "job_tasks"
    __table_args__ = (
        db.Index("idx_job_tasks_job_template", "job_id", "template_id"),
        db.Index("idx_job_tasks_status", "status"),
    )

    id = db.Column(db.Integer, primary_key=True)
    job_id = db.Column(
        db.Integer, db.ForeignKey("jobs.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    template_id = db.Column(
        db.Integer, db.ForeignKey("task_templates.id", ondelete="SET NULL"), nullable=True,
    )
    stage_id = db.Column(
        db.Integer, db.ForeignKey("job_stages.id", ondelete="SET NULL"), nullable=True,
    )
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    subtasks = db.Column(db.JSON, default=list)
    status = db.Column(
        db.String(20), nullable=False, default="pending",
        comment="pending | in_progress | completed | overdue | cancelled",
    )
    priority = db.Column(db.String(20), nullable=False, default="normal")
    assigned_to_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True,
    )
    created_by_id = db.Column(
        db.Integer, db.ForeignKey("users.id", ondelete="SET NULL"), nullable=True,
    )
    due_date = db.Column(db.DateTime(timezone=True), nullable=True)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    job = db.relationship("Job", back_populates="tasks")
    template = db.relationship("TaskTemplate")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "job_id": self.job_id,
            "template_id": self.template_id,
            "stage_id": self.stage_id,
            "title": self.title,
            "description": self.description,
            "subtasks": self.subtasks or [],
            "status": self.status,
            "priority": self.priority,
            "assigned_to_id": self.assigned_to_id,
            "created_by_id": self.created_by_id,
            "due_date": isoformat(self.due_date),
            "completed_at": isoformat(self.completed_at),
            "created_at": isoformat(self.created_at),
        }
