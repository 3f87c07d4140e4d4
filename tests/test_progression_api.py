"""
HTTP layer: progression and catalog blueprints.

Checks argument extraction and the exception → status mapping; the
behaviour behind each endpoint is covered by the service tests.
"""

import pytest

from jobflow.models import db
from jobflow.models.job import Job
from jobflow.services import stage_progression

BASE = "/api/v1"


@pytest.fixture()
def job_id(client, default_tenant, users, catalog):
    res = client.post(f"{BASE}/jobs", json={
        "tenant_id": default_tenant.id,
        "title": "Loft conversion",
        "created_by_id": users["worker"].id,
        "foreman_id": users["foreman"].id,
    })
    assert res.status_code == 201
    return res.get_json()["job"]["id"]


# ═════════════════════════════════════════════════════════════════════════════
# Jobs
# ═════════════════════════════════════════════════════════════════════════════

class TestJobs:
    def test_create_and_get(self, client, job_id, catalog):
        res = client.get(f"{BASE}/jobs/{job_id}")
        assert res.status_code == 200
        body = res.get_json()["job"]
        assert body["title"] == "Loft conversion"
        assert body["current_stage_id"] == catalog[1].id
        assert body["current_stage"]["name"] == "Lead Qualification"
        assert "X-Request-ID" in res.headers

    def test_create_requires_tenant(self, client, catalog):
        res = client.post(f"{BASE}/jobs", json={"title": "No tenant"})
        assert res.status_code == 400
        body = res.get_json()
        assert body["code"] == "ERR_VALIDATION_REQUIRED"
        assert body["details"] == {"field": "tenant_id"}

    def test_create_rejects_non_integer_ids(self, client, default_tenant, catalog):
        res = client.post(f"{BASE}/jobs", json={"tenant_id": "abc", "title": "Bad"})
        assert res.status_code == 400

    def test_unknown_job(self, client):
        res = client.get(f"{BASE}/jobs/999")
        assert res.status_code == 404
        assert res.get_json()["code"] == "ERR_NOT_FOUND"


# ═════════════════════════════════════════════════════════════════════════════
# Responses
# ═════════════════════════════════════════════════════════════════════════════

class TestResponses:
    def test_answer_advances_stage(self, client, job_id, catalog, question_at, users):
        res = client.post(f"{BASE}/jobs/{job_id}/responses", json={
            "question_id": question_at(1, 1).id,
            "response_value": "yes",
            "user_id": users["worker"].id,
            "response_source": "mobile_app",
            "response_metadata": {"gps": [51.5, -0.1]},
        })
        assert res.status_code == 200
        body = res.get_json()
        assert body["action"] == "stage_transition"
        assert body["stage_progressed"] is True
        assert body["next_stage_id"] == catalog[2].id
        assert body["response_value"] == "Yes"

    def test_no_transition(self, client, job_id, question_at, users):
        res = client.post(f"{BASE}/jobs/{job_id}/responses", json={
            "question_id": question_at(1, 2).id,
            "response_value": "50000",
            "user_id": users["worker"].id,
        })
        assert res.status_code == 200
        assert res.get_json()["action"] == "no_transition"

    def test_missing_value(self, client, job_id, question_at, users):
        res = client.post(f"{BASE}/jobs/{job_id}/responses", json={
            "question_id": question_at(1, 1).id,
            "user_id": users["worker"].id,
        })
        assert res.status_code == 400
        assert res.get_json()["details"]["field"] == "response_value"

    def test_type_mismatch(self, client, job_id, question_at, users):
        res = client.post(f"{BASE}/jobs/{job_id}/responses", json={
            "question_id": question_at(1, 1).id,
            "response_value": "perhaps",
            "user_id": users["worker"].id,
        })
        assert res.status_code == 400
        assert res.get_json()["code"] == "ERR_VALIDATION_INVALID"

    def test_metadata_must_be_object(self, client, job_id, question_at, users):
        res = client.post(f"{BASE}/jobs/{job_id}/responses", json={
            "question_id": question_at(1, 1).id,
            "response_value": "Yes",
            "user_id": users["worker"].id,
            "response_metadata": ["not", "an", "object"],
        })
        assert res.status_code == 400

    def test_unknown_question(self, client, job_id, users):
        res = client.post(f"{BASE}/jobs/{job_id}/responses", json={
            "question_id": 98765,
            "response_value": "Yes",
            "user_id": users["worker"].id,
        })
        assert res.status_code == 404

    def test_progression_failure_is_500(self, monkeypatch, client, job_id, question_at, users):
        def _boom(*args, **kwargs):
            raise RuntimeError("downstream")

        monkeypatch.setattr(stage_progression, "create_tasks_for_stage", _boom)
        res = client.post(f"{BASE}/jobs/{job_id}/responses", json={
            "question_id": question_at(1, 1).id,
            "response_value": "Yes",
            "user_id": users["worker"].id,
        })
        assert res.status_code == 500
        body = res.get_json()
        assert body["code"] == "PROGRESSION_FAILED"
        assert body["details"] == {"job_id": job_id}

    def test_concurrent_modification_is_409(self, monkeypatch, client, job_id, question_at, users):
        from sqlalchemy.orm.exc import StaleDataError

        def _stale(*args, **kwargs):
            raise StaleDataError("row changed")

        monkeypatch.setattr(stage_progression, "create_tasks_for_stage", _stale)
        res = client.post(f"{BASE}/jobs/{job_id}/responses", json={
            "question_id": question_at(1, 1).id,
            "response_value": "Yes",
            "user_id": users["worker"].id,
        })
        assert res.status_code == 409
        assert res.get_json()["code"] == "ERR_CONFLICT_STATE"


# ═════════════════════════════════════════════════════════════════════════════
# Override & read views
# ═════════════════════════════════════════════════════════════════════════════

class TestOverride:
    def test_owner_override(self, client, job_id, catalog, users):
        res = client.post(f"{BASE}/jobs/{job_id}/override-stage", json={
            "target_stage_id": catalog[6].id,
            "admin_id": users["owner"].id,
            "reason": "Contract signed offline",
        })
        assert res.status_code == 200
        assert res.get_json()["current_stage_id"] == catalog[6].id
        assert db.session.get(Job, job_id).status == "active"

    def test_worker_forbidden(self, client, job_id, catalog, users):
        res = client.post(f"{BASE}/jobs/{job_id}/override-stage", json={
            "target_stage_id": catalog[6].id,
            "admin_id": users["worker"].id,
            "reason": "Please",
        })
        assert res.status_code == 403
        assert res.get_json()["code"] == "ERR_FORBIDDEN"


class TestReadViews:
    def test_current_questions(self, client, job_id):
        res = client.get(f"{BASE}/jobs/{job_id}/current-questions")
        assert res.status_code == 200
        body = res.get_json()
        assert body["progress"]["total"] == 3
        assert body["next_question"]["sequence_order"] == 1

    def test_audit_history(self, client, job_id, question_at, users):
        client.post(f"{BASE}/jobs/{job_id}/responses", json={
            "question_id": question_at(1, 1).id, "response_value": "Yes", "user_id": users["worker"].id,
        })
        res = client.get(f"{BASE}/jobs/{job_id}/audit-history")
        body = res.get_json()
        assert body["total"] == 2
        assert [e["trigger_source"] for e in body["entries"]] == ["job_created", "question_response"]

    def test_performance_metrics(self, client, job_id, question_at, users, catalog):
        client.post(f"{BASE}/jobs/{job_id}/responses", json={
            "question_id": question_at(1, 1).id, "response_value": "Yes", "user_id": users["worker"].id,
        })
        body = client.get(f"{BASE}/jobs/{job_id}/performance-metrics").get_json()
        assert len(body["metrics"]) == 1
        assert body["current_stage"]["stage_id"] == catalog[2].id

    def test_tasks_with_status_filter(self, client, job_id):
        body = client.get(f"{BASE}/jobs/{job_id}/tasks").get_json()
        assert body["total"] == 1
        assert body["tasks"][0]["title"] == "Lead Qualification Checklist"

        body = client.get(f"{BASE}/jobs/{job_id}/tasks?status=completed").get_json()
        assert body["total"] == 0

        res = client.get(f"{BASE}/jobs/{job_id}/tasks?status=archived")
        assert res.status_code == 400


# ═════════════════════════════════════════════════════════════════════════════
# Catalog & reports
# ═════════════════════════════════════════════════════════════════════════════

class TestCatalogApi:
    def test_list_stages(self, client, default_tenant, catalog):
        body = client.get(f"{BASE}/stages?tenant_id={default_tenant.id}").get_json()
        assert body["total"] == 12
        assert body["stages"][0]["questions"][0]["response_type"] == "yes_no"

    def test_list_stages_requires_tenant(self, client, catalog):
        assert client.get(f"{BASE}/stages").status_code == 400

    def test_add_transition(self, client, catalog, question_at):
        res = client.post(f"{BASE}/stages/{catalog[4].id}/transitions", json={
            "to_stage_id": catalog[3].id,
            "question_id": question_at(4, 1).id,
            "trigger_response": "No",
            "is_automatic": False,
        })
        assert res.status_code == 201
        assert res.get_json()["transition"]["from_stage_id"] == catalog[4].id

    def test_add_duplicate_transition_conflicts(self, client, catalog, question_at):
        res = client.post(f"{BASE}/stages/{catalog[1].id}/transitions", json={
            "to_stage_id": catalog[4].id,
            "question_id": question_at(1, 1).id,
            "trigger_response": "Yes",
        })
        assert res.status_code == 409

    def test_validation_report(self, client, default_tenant, catalog):
        body = client.get(f"{BASE}/stages/validation?tenant_id={default_tenant.id}").get_json()
        assert body["valid"] is True

    def test_stage_performance_dates(self, client, default_tenant, catalog):
        res = client.get(
            f"{BASE}/reports/stage-performance?tenant_id={default_tenant.id}"
            "&date_from=2026-03-10&date_to=2026-03-01"
        )
        assert res.status_code == 400

        res = client.get(f"{BASE}/reports/stage-performance?tenant_id={default_tenant.id}&date_from=March")
        assert res.status_code == 400

        res = client.get(f"{BASE}/reports/stage-performance?tenant_id={default_tenant.id}")
        assert res.status_code == 200
        assert res.get_json()["stages"] == []

    def test_sla_and_overstays(self, client, default_tenant, job_id):
        body = client.get(f"{BASE}/reports/sla-violations").get_json()
        assert body["total"] == 0
        body = client.get(f"{BASE}/reports/stage-overstays?tenant_id={default_tenant.id}").get_json()
        assert body["overstays"] == []
