"""
App factory, health probes, error helpers and logging formatters.
"""

import json
import logging

import pytest
from sqlalchemy.orm.exc import StaleDataError

from jobflow import create_app
from jobflow.core.exceptions import (
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    ProgressionFailedError,
)
from jobflow.middleware.logging_config import JSONFormatter, ReadableFormatter
from jobflow.utils.errors import E, api_error


class TestHealth:
    def test_ready(self, client):
        res = client.get("/api/v1/health/ready")
        assert res.status_code == 200
        assert res.get_json() == {"status": "ok"}

    def test_live_with_empty_catalog(self, client):
        body = client.get("/api/v1/health/live").get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["status"] == "ok"
        assert body["checks"]["stage_catalog"] == {"status": "empty", "stages": 0}
        assert body["checks"]["app"]["testing"] is True

    def test_live_with_catalog(self, client, catalog):
        body = client.get("/api/v1/health/live").get_json()
        assert body["checks"]["stage_catalog"]["stages"] == 12


class TestAppFactory:
    def test_unknown_route_is_json_404(self, client):
        res = client.get("/api/v1/nowhere")
        assert res.status_code == 404
        assert res.get_json()["path"] == "/api/v1/nowhere"

    def test_method_not_allowed(self, client):
        assert client.delete("/api/v1/health/ready").status_code == 405

    def test_production_requires_database_url(self, monkeypatch):
        import importlib

        config_module = importlib.import_module("jobflow.config")

        monkeypatch.setattr(config_module.ProductionConfig, "SQLALCHEMY_DATABASE_URI", None)
        with pytest.raises(RuntimeError):
            create_app("production")

    def test_seed_cli(self, app):
        from jobflow.models.workflow import JobStage

        runner = app.test_cli_runner()
        result = runner.invoke(args=["seed-stages"])
        assert result.exit_code == 0
        assert JobStage.query.count() == 12

        result = runner.invoke(args=["seed-stages"])
        assert result.exit_code == 0
        assert JobStage.query.count() == 12


class TestErrors:
    def test_api_error_shape(self, app):
        with app.test_request_context():
            resp, status = api_error(E.CONFLICT_STATE, "busy", details={"job_id": 3})
        assert status == 409
        assert resp.get_json() == {"error": "busy", "code": "ERR_CONFLICT_STATE", "details": {"job_id": 3}}

    def test_status_override(self, app):
        with app.test_request_context():
            _, status = api_error(E.INTERNAL, "teapot", status=418)
        assert status == 418

    def test_exception_messages(self):
        assert str(InvalidArgumentError("user_id")) == "user_id is required"
        assert str(NotFoundError("Job", 5)) == "Job id=5 not found"
        assert "trigger_response='Yes'" in str(ConflictError("StageTransition", "trigger_response", "Yes"))

    def test_progression_failed_conflict_flag(self):
        assert ProgressionFailedError(1, StaleDataError("x")).is_conflict
        assert ProgressionFailedError(1, ConflictError("Job", "lock", "1")).is_conflict
        assert not ProgressionFailedError(1, RuntimeError("x")).is_conflict


class TestLogging:
    def _record(self, **extra):
        record = logging.LogRecord("jobflow.test", logging.INFO, __file__, 1, "moved %s", ("job",), None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_formatter_includes_context(self):
        payload = json.loads(JSONFormatter().format(self._record(job_id=7, stage_id=2, ignored="x")))
        assert payload["message"] == "moved job"
        assert payload["job_id"] == 7
        assert payload["stage_id"] == 2
        assert "ignored" not in payload

    def test_readable_formatter(self):
        line = ReadableFormatter().format(self._record(job_id=7, duration_ms=12.3))
        assert "job=7" in line
        assert "[12ms]" in line
