"""
Admin override: permission checks, movement and ledger entries.
"""

import pytest

from jobflow.core.exceptions import (
    InvalidArgumentError,
    NotFoundError,
    PermissionDeniedError,
    ProgressionFailedError,
    ValidationError,
)
from jobflow.models import db
from jobflow.models.auth import Tenant, User
from jobflow.models.job import Job, JobTask
from jobflow.models.progression import StageAuditLog, StagePerformanceMetric
from jobflow.models.workflow import JobStage
from jobflow.services import stage_progression
from jobflow.services.stage_progression import admin_override_stage


def test_owner_moves_job_anywhere(job, catalog, users):
    result = admin_override_stage(job.id, catalog[9].id, users["owner"].id, "Client skipped paperwork")

    assert result["action"] == "admin_override"
    assert result["previous_stage_id"] == catalog[1].id
    assert result["current_stage_id"] == catalog[9].id
    assert result["status"] == "active"
    assert result["tasks_created"] == 1

    refreshed = db.session.get(Job, job.id)
    assert refreshed.current_stage_id == catalog[9].id
    assert refreshed.status == "active"

    entry = db.session.get(StageAuditLog, result["audit_id"])
    assert entry.trigger_source == "admin_override"
    assert entry.outcome == "success"
    assert entry.triggered_by_id == users["owner"].id
    assert entry.trigger_details == {"reason": "Client skipped paperwork", "admin_email": "owner@test.example"}

    assert StagePerformanceMetric.query.filter_by(job_id=job.id, stage_id=catalog[1].id).count() == 1
    task = JobTask.query.filter_by(job_id=job.id, stage_id=catalog[9].id).one()
    assert task.assigned_to_id == users["foreman"].id


def test_site_admin_allowed(job, catalog, default_tenant):
    admin = User(tenant_id=default_tenant.id, email="site@test.example", role="site_admin")
    db.session.add(admin)
    db.session.commit()
    result = admin_override_stage(job.id, catalog[3].id, admin.id, "Moved by site admin")
    assert result["current_stage_id"] == catalog[3].id


@pytest.mark.parametrize("role", ["worker", "foreman"])
def test_non_admin_roles_denied(job, catalog, users, role):
    with pytest.raises(PermissionDeniedError):
        admin_override_stage(job.id, catalog[3].id, users[role].id, "Trying my luck")
    assert db.session.get(Job, job.id).current_stage_id == catalog[1].id
    assert StageAuditLog.query.filter_by(job_id=job.id, trigger_source="admin_override").count() == 0


def test_inactive_owner_denied(job, catalog, users):
    users["owner"].is_active = False
    db.session.commit()
    with pytest.raises(PermissionDeniedError):
        admin_override_stage(job.id, catalog[3].id, users["owner"].id, "Left the company")


def test_owner_of_other_tenant_denied(job, catalog):
    other = Tenant(name="Other", slug="other")
    db.session.add(other)
    db.session.flush()
    outsider = User(tenant_id=other.id, email="boss@other.example", role="owner")
    db.session.add(outsider)
    db.session.commit()

    with pytest.raises(PermissionDeniedError):
        admin_override_stage(job.id, catalog[3].id, outsider.id, "Not my job")


def test_target_must_be_visible(job, users):
    other = Tenant(name="Other", slug="other")
    db.session.add(other)
    db.session.flush()
    private = JobStage(tenant_id=other.id, name="Private", sequence_order=1)
    db.session.add(private)
    db.session.commit()

    with pytest.raises(NotFoundError):
        admin_override_stage(job.id, private.id, users["owner"].id, "Cross tenant")


def test_same_stage_rejected(job, catalog, users):
    with pytest.raises(ValidationError):
        admin_override_stage(job.id, catalog[1].id, users["owner"].id, "No-op")


def test_reason_required(job, catalog, users):
    with pytest.raises(InvalidArgumentError) as exc_info:
        admin_override_stage(job.id, catalog[2].id, users["owner"].id, "")
    assert exc_info.value.field == "reason"


def test_failure_is_audited(monkeypatch, job, catalog, users):
    def _boom(*args, **kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(stage_progression, "create_tasks_for_stage", _boom)
    with pytest.raises(ProgressionFailedError):
        admin_override_stage(job.id, catalog[5].id, users["owner"].id, "Emergency move")

    assert db.session.get(Job, job.id).current_stage_id == catalog[1].id
    failure = StageAuditLog.query.filter_by(job_id=job.id, outcome="failure").one()
    assert failure.trigger_source == "admin_override"
    assert failure.trigger_details["reason"] == "Emergency move"
