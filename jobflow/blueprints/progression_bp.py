"""
Stage progression API.

Blueprint: progression_bp
Prefix: /api/v1

Endpoints:
    POST /jobs                               -- Create a job in its initial stage
    GET  /jobs/<jid>                         -- Job detail
    POST /jobs/<jid>/responses               -- Answer a question (may advance the stage)
    GET  /jobs/<jid>/current-questions       -- Questions of the current stage
    GET  /jobs/<jid>/audit-history           -- Progression ledger
    GET  /jobs/<jid>/performance-metrics     -- Time spent per stage
    GET  /jobs/<jid>/tasks                   -- Tasks generated for the job
    POST /jobs/<jid>/override-stage          -- Admin override to any stage
"""

import logging

from flask import Blueprint, jsonify, request

from jobflow.blueprints import int_field, paginate_query, register_error_handlers
from jobflow.core.exceptions import InvalidArgumentError
from jobflow.models.job import TASK_STATUSES, Job, JobTask
from jobflow.services.helpers.scoped_queries import get_or_raise
from jobflow.services.stage_progression import (
    admin_override_stage,
    create_job,
    get_audit_history,
    get_current_questions,
    get_performance_metrics,
    submit_response,
)

logger = logging.getLogger(__name__)

progression_bp = Blueprint("progression", __name__, url_prefix="/api/v1")
register_error_handlers(progression_bp)


def _json_body() -> dict:
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


# ═══════════════════════════════════════════════════════════════
# Jobs
# ═══════════════════════════════════════════════════════════════

@progression_bp.route("/jobs", methods=["POST"])
def create_job_route():
    """Create a job and place it in the tenant's first stage."""
    data = _json_body()
    job = create_job(
        tenant_id=int_field(data, "tenant_id"),
        title=data.get("title"),
        created_by_id=int_field(data, "created_by_id", required=False),
        job_type=data.get("job_type") or "standard",
        foreman_id=int_field(data, "foreman_id", required=False),
    )
    return jsonify({"job": job.to_dict()}), 201


@progression_bp.route("/jobs/<int:job_id>", methods=["GET"])
def get_job_route(job_id):
    job = get_or_raise(Job, job_id)
    return jsonify({"job": job.to_dict()}), 200


# ═══════════════════════════════════════════════════════════════
# Responses & progression
# ═══════════════════════════════════════════════════════════════

@progression_bp.route("/jobs/<int:job_id>/responses", methods=["POST"])
def submit_response_route(job_id):
    """Record an answer and apply the transition it triggers, if any."""
    data = _json_body()
    metadata = data.get("response_metadata")
    if metadata is not None and not isinstance(metadata, dict):
        raise InvalidArgumentError("response_metadata", "response_metadata must be an object")

    result = submit_response(
        job_id=job_id,
        question_id=int_field(data, "question_id"),
        response_value=data.get("response_value"),
        user_id=int_field(data, "user_id"),
        response_source=data.get("response_source") or "web_app",
        response_metadata=metadata,
    )
    return jsonify(result), 200


@progression_bp.route("/jobs/<int:job_id>/override-stage", methods=["POST"])
def override_stage_route(job_id):
    """Move the job to any stage of its catalog (owner / site_admin only)."""
    data = _json_body()
    result = admin_override_stage(
        job_id=job_id,
        target_stage_id=int_field(data, "target_stage_id"),
        admin_id=int_field(data, "admin_id"),
        reason=data.get("reason"),
    )
    return jsonify(result), 200


# ═══════════════════════════════════════════════════════════════
# Read views
# ═══════════════════════════════════════════════════════════════

@progression_bp.route("/jobs/<int:job_id>/current-questions", methods=["GET"])
def current_questions_route(job_id):
    return jsonify(get_current_questions(job_id)), 200


@progression_bp.route("/jobs/<int:job_id>/audit-history", methods=["GET"])
def audit_history_route(job_id):
    entries = get_audit_history(job_id)
    return jsonify({"job_id": job_id, "entries": entries, "total": len(entries)}), 200


@progression_bp.route("/jobs/<int:job_id>/performance-metrics", methods=["GET"])
def performance_metrics_route(job_id):
    return jsonify(get_performance_metrics(job_id)), 200


@progression_bp.route("/jobs/<int:job_id>/tasks", methods=["GET"])
def list_tasks_route(job_id):
    """Tasks for a job, optionally filtered by ?status=."""
    job = get_or_raise(Job, job_id)
    status = request.args.get("status")
    if status and status not in TASK_STATUSES:
        raise InvalidArgumentError("status", f"Unknown task status: {status}")

    query = JobTask.query_for_tenant(job.tenant_id).filter_by(job_id=job.id)
    if status:
        query = query.filter_by(status=status)
    query = query.order_by(JobTask.created_at.asc(), JobTask.id.asc())
    tasks, total = paginate_query(query)
    return jsonify({"job_id": job.id, "tasks": [t.to_dict() for t in tasks], "total": total}), 200
