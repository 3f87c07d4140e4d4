"""job_stage_progression

Create tenants, users, the stage catalog (stages, questions, transitions,
task templates), jobs, job tasks and the progression ledger (responses,
audit log, stage performance metrics).

Revision ID: 0001_job_stage_progression
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "0001_job_stage_progression"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "tenants" not in existing_tables:
        op.create_table(
            "tenants",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("name", sa.String(length=200), nullable=False),
            sa.Column("slug", sa.String(length=100), nullable=False),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("settings", sa.JSON(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("slug"),
        )

    if "users" not in existing_tables:
        op.create_table(
            "users",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("email", sa.String(length=200), nullable=False),
            sa.Column("full_name", sa.String(length=200), nullable=True),
            sa.Column("role", sa.String(length=30), nullable=False, server_default="worker"),
            sa.Column("is_active", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("tenant_id", "email", name="uq_user_tenant_email"),
        )
        op.create_index("ix_users_tenant_id", "users", ["tenant_id"])

    if "job_stages" not in existing_tables:
        op.create_table(
            "job_stages",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=True),
            sa.Column("name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("color", sa.String(length=7), nullable=False, server_default="#C7D2FE"),
            sa.Column("sequence_order", sa.Integer(), nullable=False),
            sa.Column("maps_to_status", sa.String(length=20), nullable=False, server_default="planning"),
            sa.Column("stage_type", sa.String(length=20), nullable=False, server_default="standard"),
            sa.Column("min_duration_hours", sa.Integer(), nullable=True),
            sa.Column("max_duration_hours", sa.Integer(), nullable=True),
            sa.Column("requires_approval", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint(
                "max_duration_hours IS NULL OR max_duration_hours > min_duration_hours",
                name="ck_stage_duration",
            ),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("tenant_id", "sequence_order", name="uq_stage_tenant_sequence"),
        )
        op.create_index("ix_job_stages_tenant_id", "job_stages", ["tenant_id"])

    if "stage_questions" not in existing_tables:
        op.create_table(
            "stage_questions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("stage_id", sa.Integer(), nullable=False),
            sa.Column("question_text", sa.Text(), nullable=False),
            sa.Column("response_type", sa.String(length=20), nullable=False),
            sa.Column("response_options", sa.JSON(), nullable=True),
            sa.Column("sequence_order", sa.Integer(), nullable=False),
            sa.Column("is_required", sa.Boolean(), nullable=True),
            sa.Column("skip_conditions", sa.JSON(), nullable=True),
            sa.Column("help_text", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["stage_id"], ["job_stages.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("stage_id", "sequence_order", name="uq_question_stage_sequence"),
        )
        op.create_index("ix_stage_questions_stage_id", "stage_questions", ["stage_id"])

    if "stage_transitions" not in existing_tables:
        op.create_table(
            "stage_transitions",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("from_stage_id", sa.Integer(), nullable=False),
            sa.Column("to_stage_id", sa.Integer(), nullable=False),
            sa.Column("question_id", sa.Integer(), nullable=True),
            sa.Column("trigger_response", sa.Text(), nullable=False, server_default=""),
            sa.Column("condition", sa.JSON(), nullable=True),
            sa.Column("action", sa.String(length=50), nullable=True),
            sa.Column("is_automatic", sa.Boolean(), nullable=False, server_default=sa.true()),
            sa.Column("requires_admin_override", sa.Boolean(), nullable=False, server_default=sa.false()),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint("from_stage_id != to_stage_id", name="ck_no_self_transition"),
            sa.ForeignKeyConstraint(["from_stage_id"], ["job_stages.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["to_stage_id"], ["job_stages.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["question_id"], ["stage_questions.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_stage_transitions_from_stage_id", "stage_transitions", ["from_stage_id"])
        op.create_index("ix_stage_transitions_to_stage_id", "stage_transitions", ["to_stage_id"])
        op.create_index("idx_transition_from_question", "stage_transitions", ["from_stage_id", "question_id"])

    if "task_templates" not in existing_tables:
        op.create_table(
            "task_templates",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("stage_id", sa.Integer(), nullable=False),
            sa.Column("task_type", sa.String(length=30), nullable=False, server_default="checklist"),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("subtasks", sa.JSON(), nullable=True),
            sa.Column("priority", sa.String(length=20), nullable=False, server_default="normal"),
            sa.Column("auto_assign_to", sa.String(length=20), nullable=False, server_default="creator"),
            sa.Column("due_date_offset_hours", sa.Integer(), nullable=True),
            sa.Column("sla_hours", sa.Integer(), nullable=True),
            sa.Column("upload_required", sa.Boolean(), nullable=True),
            sa.Column("client_visible", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["stage_id"], ["job_stages.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_task_templates_stage_id", "task_templates", ["stage_id"])

    if "jobs" not in existing_tables:
        op.create_table(
            "jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("job_type", sa.String(length=50), nullable=False, server_default="standard"),
            sa.Column("foreman_id", sa.Integer(), nullable=True),
            sa.Column("current_stage_id", sa.Integer(), nullable=True),
            sa.Column("stage_entered_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="planning"),
            sa.Column("created_by_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("version_id", sa.Integer(), nullable=False, server_default="1"),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["foreman_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["current_stage_id"], ["job_stages.id"], ondelete="RESTRICT"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_jobs_tenant_id", "jobs", ["tenant_id"])
        op.create_index("idx_jobs_current_stage", "jobs", ["current_stage_id"])
        op.create_index("idx_jobs_stage_entered", "jobs", ["stage_entered_at"])

    if "job_tasks" not in existing_tables:
        op.create_table(
            "job_tasks",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("job_id", sa.Integer(), nullable=False),
            sa.Column("template_id", sa.Integer(), nullable=True),
            sa.Column("stage_id", sa.Integer(), nullable=True),
            sa.Column("title", sa.String(length=200), nullable=False),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("subtasks", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("priority", sa.String(length=20), nullable=False, server_default="normal"),
            sa.Column("assigned_to_id", sa.Integer(), nullable=True),
            sa.Column("created_by_id", sa.Integer(), nullable=True),
            sa.Column("due_date", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["job_id"], ["jobs.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["template_id"], ["task_templates.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["stage_id"], ["job_stages.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["assigned_to_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["created_by_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_job_tasks_tenant_id", "job_tasks", ["tenant_id"])
        op.create_index("ix_job_tasks_job_id", "job_tasks", ["job_id"])
        op.create_index("ix_job_tasks_assigned_to_id", "job_tasks", ["assigned_to_id"])
        op.create_index("idx_job_tasks_job_template", "job_tasks", ["job_id", "template_id"])
        op.create_index("idx_job_tasks_status", "job_tasks", ["status"])

    if "user_responses" not in existing_tables:
        op.create_table(
            "user_responses",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("job_id", sa.Integer(), nullable=False),
            sa.Column("question_id", sa.Integer(), nullable=False),
            sa.Column("response_value", sa.Text(), nullable=False),
            sa.Column("response_metadata", sa.JSON(), nullable=True),
            sa.Column("response_source", sa.String(length=30), nullable=False, server_default="web_app"),
            sa.Column("responded_by_id", sa.Integer(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["job_id"], ["jobs.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["question_id"], ["stage_questions.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["responded_by_id"], ["users.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("job_id", "question_id", name="uq_response_job_question"),
        )
        op.create_index("ix_user_responses_tenant_id", "user_responses", ["tenant_id"])
        op.create_index("ix_user_responses_job_id", "user_responses", ["job_id"])
        op.create_index("ix_user_responses_question_id", "user_responses", ["question_id"])

    if "stage_audit_log" not in existing_tables:
        op.create_table(
            "stage_audit_log",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("job_id", sa.Integer(), nullable=False),
            sa.Column("from_stage_id", sa.Integer(), nullable=True),
            sa.Column("to_stage_id", sa.Integer(), nullable=True),
            sa.Column("from_status", sa.String(length=20), nullable=True),
            sa.Column("to_status", sa.String(length=20), nullable=True),
            sa.Column("trigger_source", sa.String(length=30), nullable=False),
            sa.Column("triggered_by_id", sa.Integer(), nullable=True),
            sa.Column("trigger_details", sa.JSON(), nullable=True),
            sa.Column("question_id", sa.Integer(), nullable=True),
            sa.Column("response_value", sa.Text(), nullable=True),
            sa.Column("duration_in_previous_stage_hours", sa.Float(), nullable=True),
            sa.Column("outcome", sa.String(length=20), nullable=False),
            sa.Column("error_detail", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["job_id"], ["jobs.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["from_stage_id"], ["job_stages.id"]),
            sa.ForeignKeyConstraint(["to_stage_id"], ["job_stages.id"]),
            sa.ForeignKeyConstraint(["triggered_by_id"], ["users.id"], ondelete="SET NULL"),
            sa.ForeignKeyConstraint(["question_id"], ["stage_questions.id"], ondelete="SET NULL"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_stage_audit_log_tenant_id", "stage_audit_log", ["tenant_id"])
        op.create_index("idx_stage_audit_job", "stage_audit_log", ["job_id", "created_at"])
        op.create_index("idx_stage_audit_outcome", "stage_audit_log", ["outcome"])

    if "stage_performance_metrics" not in existing_tables:
        op.create_table(
            "stage_performance_metrics",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("tenant_id", sa.Integer(), nullable=False),
            sa.Column("job_id", sa.Integer(), nullable=False),
            sa.Column("stage_id", sa.Integer(), nullable=False),
            sa.Column("entered_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("exited_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("duration_hours", sa.Float(), nullable=False),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["tenant_id"], ["tenants.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["job_id"], ["jobs.id"], ondelete="CASCADE"),
            sa.ForeignKeyConstraint(["stage_id"], ["job_stages.id"]),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("job_id", "stage_id", "entered_at", name="uq_metric_job_stage_entered"),
        )
        op.create_index("ix_stage_performance_metrics_tenant_id", "stage_performance_metrics", ["tenant_id"])
        op.create_index("ix_stage_performance_metrics_job_id", "stage_performance_metrics", ["job_id"])
        op.create_index("idx_stage_metric_stage", "stage_performance_metrics", ["stage_id"])


def downgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    for table in (
        "stage_performance_metrics",
        "stage_audit_log",
        "user_responses",
        "job_tasks",
        "jobs",
        "task_templates",
        "stage_transitions",
        "stage_questions",
        "job_stages",
        "users",
        "tenants",
    ):
        if table in existing_tables:
            op.drop_table(table)
