"""
Shared pytest fixtures for the job stage progression test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - client: Flask test client (function-scoped)
    - default_tenant: Pre-created Tenant entity
    - users: owner / foreman / worker of the default tenant
    - catalog: the default 12-stage workflow seeded globally, keyed by sequence
    - question_at: (stage sequence, question sequence) -> StageQuestion
"""

import pytest

from jobflow import create_app
from jobflow.models import db as _db


def _ensure_default_tenant():
    """Create a default tenant for tests if it doesn't exist.

    Returns the tenant ID.
    """
    from jobflow.models.auth import Tenant
    t = Tenant.query.filter_by(slug="test-default").first()
    if not t:
        t = Tenant(name="Test Default", slug="test-default", settings={})
        _db.session.add(t)
        _db.session.commit()
    return t.id


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        _ensure_default_tenant()
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def client(app):
    """Flask test client."""
    return app.test_client()


@pytest.fixture()
def default_tenant():
    """Return the auto-created default test tenant."""
    from jobflow.models.auth import Tenant
    return Tenant.query.filter_by(slug="test-default").first()


# ── Convenience fixtures ─────────────────────────────────────────────────


@pytest.fixture()
def users(default_tenant):
    """One user per role the engine cares about, keyed by role."""
    from jobflow.models.auth import User
    created = {}
    for role in ("owner", "foreman", "worker"):
        u = User(
            tenant_id=default_tenant.id,
            email=f"{role}@test.example",
            full_name=role.title(),
            role=role,
        )
        _db.session.add(u)
        created[role] = u
    _db.session.commit()
    return created


@pytest.fixture()
def catalog():
    """Seed the default global workflow; return {sequence_order: JobStage}."""
    from jobflow.models.workflow import JobStage
    from jobflow.services.default_catalog import seed_default_catalog

    seed_default_catalog()
    stages = (
        JobStage.query.filter(JobStage.tenant_id.is_(None))
        .order_by(JobStage.sequence_order)
        .all()
    )
    return {s.sequence_order: s for s in stages}


@pytest.fixture()
def question_at(catalog):
    """Look up a seeded question by (stage sequence, question sequence)."""
    from jobflow.models.workflow import StageQuestion

    def _lookup(stage_seq, question_seq):
        return StageQuestion.query.filter_by(
            stage_id=catalog[stage_seq].id, sequence_order=question_seq,
        ).one()

    return _lookup


@pytest.fixture()
def job(default_tenant, users, catalog):
    """A standard job created in the initial stage by the worker."""
    from jobflow.services.stage_progression import create_job
    return create_job(
        default_tenant.id,
        "Kitchen renovation",
        created_by_id=users["worker"].id,
        foreman_id=users["foreman"].id,
    )
