"""
Skip evaluator: job_types, when_response and previous_responses keys.
"""

from jobflow.models import db
from jobflow.models.workflow import StageQuestion
from jobflow.services.response_store import record_response
from jobflow.services.skip_evaluator import should_skip


def _with_skip(question: StageQuestion, conditions: dict) -> StageQuestion:
    question.skip_conditions = conditions
    db.session.commit()
    return question


def test_no_conditions_never_skips(job, question_at):
    assert should_skip(job, question_at(1, 1), "Yes") is False


def test_job_type_listed(job, question_at):
    q = _with_skip(question_at(1, 2), {"job_types": ["maintenance"]})
    assert should_skip(job, q, "100") is False

    job.job_type = "maintenance"
    db.session.commit()
    assert should_skip(job, q, "100") is True


def test_when_response_condition(job, question_at):
    q = _with_skip(question_at(1, 2), {"when_response": {"type": "compare", "op": "<", "value": 1000}})
    assert should_skip(job, q, "500") is True
    assert should_skip(job, q, "5000") is False


def test_previous_response_value(job, question_at, users):
    """Seeded rule: the site-meeting date is skipped once the meeting happened."""
    meeting, site_date = question_at(2, 1), question_at(2, 2)
    assert site_date.skip_conditions["previous_responses"][0]["question_id"] == meeting.id

    assert should_skip(job, site_date, "2026-05-01") is False
    record_response(job, meeting, "Yes", user_id=users["worker"].id)
    assert should_skip(job, site_date, "2026-05-01") is True


def test_previous_response_condition(job, question_at, users):
    value_q = question_at(1, 2)
    q = _with_skip(question_at(1, 3), {
        "previous_responses": [{"question_id": str(value_q.id), "condition": ">=100000"}],
    })
    record_response(job, value_q, "50000", user_id=users["worker"].id)
    assert should_skip(job, q, "2026-06-01") is False

    record_response(job, value_q, "150000", user_id=users["worker"].id)
    assert should_skip(job, q, "2026-06-01") is True


def test_previous_response_rule_without_operand_is_ignored(job, question_at, users):
    value_q = question_at(1, 2)
    q = _with_skip(question_at(1, 3), {"previous_responses": [{"question_id": value_q.id}, {"question_id": None}]})
    record_response(job, value_q, "1", user_id=users["worker"].id)
    assert should_skip(job, q, "2026-06-01") is False
