"""
Job Stage Progression Engine
Workflow catalog models: read-mostly configuration per tenant.

Models:
    - JobStage:        ordered stage catalog entry, mapped to a job status
    - StageQuestion:   question asked within a stage, typed response
    - StageTransition: edge between stages triggered by a question's answer
    - TaskTemplate:    standard work item instantiated when a stage is entered

Stages with tenant_id NULL are global and shared by every tenant that has
no stage of its own at the same sequence position.
"""

from jobflow.models import db
from jobflow.models.base import isoformat, utcnow

# ── Constants ────────────────────────────────────────────────────────────────

JOB_STATUSES = {"planning", "active", "on_hold", "completed", "cancelled"}

STAGE_TYPES = {"standard", "milestone", "approval"}

RESPONSE_TYPES = {"yes_no", "number", "text", "date", "multiple_choice", "file_upload"}

TASK_TYPES = {"reminder", "checklist", "documentation", "communication", "approval", "scheduling"}

TASK_PRIORITIES = {"low", "normal", "high", "urgent"}

AUTO_ASSIGN_TARGETS = {"creator", "foreman", "admin"}

DEFAULT_JOB_STATUS = "planning"


class JobStage(db.Model):
    """One ordered step of a job's lifecycle."""

    __tablename__ = "job_stages"
    __table_args__ = (
        db.UniqueConstraint("tenant_id", "sequence_order", name="uq_stage_tenant_sequence"),
        db.CheckConstraint(
            "max_duration_hours IS NULL OR max_duration_hours > min_duration_hours",
            name="ck_stage_duration",
        ),
    )

    id = db.Column(db.Integer, primary_key=True)
    tenant_id = db.Column(
        db.Integer,
        db.ForeignKey("tenants.id", ondelete="CASCADE"),
        nullable=True,
        index=True,
        comment="NULL = global stage shared by all tenants",
    )
    name = db.Column(db.String(100), nullable=False)
    description = db.Column(db.Text)
    color = db.Column(db.String(7), nullable=False, default="#C7D2FE")
    sequence_order = db.Column(db.Integer, nullable=False)
    maps_to_status = db.Column(
        db.String(20), nullable=False, default=DEFAULT_JOB_STATUS,
        comment="planning | active | on_hold | completed | cancelled",
    )
    stage_type = db.Column(
        db.String(20), nullable=False, default="standard",
        comment="standard | milestone | approval",
    )
    min_duration_hours = db.Column(db.Integer, default=0)
    max_duration_hours = db.Column(db.Integer, nullable=True)
    requires_approval = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    questions = db.relationship(
        "StageQuestion",
        back_populates="stage",
        order_by="StageQuestion.sequence_order",
        lazy="select",
    )
    task_templates = db.relationship(
        "TaskTemplate",
        back_populates="stage",
        order_by="TaskTemplate.id",
        lazy="select",
    )

    def to_dict(self, include_questions: bool = False) -> dict:
        data = {
            "id": self.id,
            "tenant_id": self.tenant_id,
            "name": self.name,
            "description": self.description,
            "color": self.color,
            "sequence_order": self.sequence_order,
            "maps_to_status": self.maps_to_status,
            "stage_type": self.stage_type,
            "min_duration_hours": self.min_duration_hours,
            "max_duration_hours": self.max_duration_hours,
            "requires_approval": self.requires_approval,
        }
        if include_questions:
            data["questions"] = [q.to_dict() for q in self.questions]
        return data

    def __repr__(self):
        return f"<JobStage {self.id}: {self.sequence_order} {self.name}>"


class StageQuestion(db.Model):
    """A prompt answered (logically) once per job within a stage."""

    __tablename__ = "stage_questions"
    __table_args__ = (
        db.UniqueConstraint("stage_id", "sequence_order", name="uq_question_stage_sequence"),
    )

    id = db.Column(db.Integer, primary_key=True)
    stage_id = db.Column(
        db.Integer,
        db.ForeignKey("job_stages.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    question_text = db.Column(db.Text, nullable=False)
    response_type = db.Column(
        db.String(20), nullable=False,
        comment="yes_no | number | text | date | multiple_choice | file_upload",
    )
    response_options = db.Column(db.JSON, nullable=True, comment="Choices for multiple_choice")
    sequence_order = db.Column(db.Integer, nullable=False)
    is_required = db.Column(db.Boolean, default=True)
    skip_conditions = db.Column(
        db.JSON, default=dict,
        comment="{job_types: [...], previous_responses: [...], when_response: {...}}",
    )
    help_text = db.Column(db.Text)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    stage = db.relationship("JobStage", back_populates="questions")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stage_id": self.stage_id,
            "question_text": self.question_text,
            "response_type": self.response_type,
            "response_options": self.response_options,
            "sequence_order": self.sequence_order,
            "is_required": self.is_required,
            "skip_conditions": self.skip_conditions or {},
            "help_text": self.help_text,
        }

    def __repr__(self):
        return f"<StageQuestion {self.id}: stage={self.stage_id} #{self.sequence_order}>"


class StageTransition(db.Model):
    """
    Configured edge from one stage to another.

    Fires when the answer to ``question_id`` (any question of the source
    stage when NULL) equals ``trigger_response`` or satisfies ``condition``.
    """

    __tablename__ = "stage_transitions"
    __table_args__ = (
        db.CheckConstraint("from_stage_id != to_stage_id", name="ck_no_self_transition"),
        db.Index("idx_transition_from_question", "from_stage_id", "question_id"),
    )

    id = db.Column(db.Integer, primary_key=True)
    from_stage_id = db.Column(
        db.Integer, db.ForeignKey("job_stages.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    to_stage_id = db.Column(
        db.Integer, db.ForeignKey("job_stages.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    question_id = db.Column(
        db.Integer, db.ForeignKey("stage_questions.id", ondelete="CASCADE"), nullable=True,
    )
    trigger_response = db.Column(db.Text, nullable=False, default="")
    condition = db.Column(
        db.JSON, nullable=True,
        comment='Tagged expression, e.g. {"type": "compare", "op": ">=", "value": 90}',
    )
    action = db.Column(db.String(50), nullable=True, comment="Label, e.g. revise_quote")
    is_automatic = db.Column(db.Boolean, nullable=False, default=True)
    requires_admin_override = db.Column(db.Boolean, nullable=False, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    from_stage = db.relationship("JobStage", foreign_keys=[from_stage_id])
    to_stage = db.relationship("JobStage", foreign_keys=[to_stage_id])

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "from_stage_id": self.from_stage_id,
            "to_stage_id": self.to_stage_id,
            "question_id": self.question_id,
            "trigger_response": self.trigger_response,
            "condition": self.condition,
            "action": self.action,
            "is_automatic": self.is_automatic,
            "requires_admin_override": self.requires_admin_override,
            "created_at": isoformat(self.created_at),
        }

    def __repr__(self):
        return f"<StageTransition {self.id}: {self.from_stage_id}->{self.to_stage_id} on {self.trigger_response!r}>"


class TaskTemplate(db.Model):
    """Standard work item created for every job entering the stage."""

    __tablename__ = "task_templates"

    id = db.Column(db.Integer, primary_key=True)
    stage_id = db.Column(
        db.Integer, db.ForeignKey("job_stages.id", ondelete="CASCADE"), nullable=False, index=True,
    )
    task_type = db.Column(db.String(30), nullable=False, default="checklist")
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    subtasks = db.Column(db.JSON, default=list)
    priority = db.Column(db.String(20), nullable=False, default="normal")
    auto_assign_to = db.Column(
        db.String(20), nullable=False, default="creator",
        comment="creator | foreman | admin",
    )
    due_date_offset_hours = db.Column(db.Integer, default=0)
    sla_hours = db.Column(db.Integer, nullable=True)
    upload_required = db.Column(db.Boolean, default=False)
    client_visible = db.Column(db.Boolean, default=False)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    stage = db.relationship("JobStage", back_populates="task_templates")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "stage_id": self.stage_id,
            "task_type": self.task_type,
            "title": self.title,
            "description": self.description,
            "subtasks": self.subtasks or [],
            "priority": self.priority,
            "auto_assign_to": self.auto_assign_to,
            "due_date_offset_hours": self.due_date_offset_hours,
            "sla_hours": self.sla_hours,
            "upload_required": self.upload_required,
            "client_visible": self.client_visible,
        }
