"""
Response store: type validation and idempotent upsert.
"""

import pytest

from jobflow.core.exceptions import ValidationError
from jobflow.models import db
from jobflow.models.progression import UserResponse
from jobflow.models.workflow import StageQuestion
from jobflow.services.response_store import (
    get_response,
    record_response,
    responses_for_job,
    validate_response_value,
)


def _q(response_type, options=None):
    """Transient question; validation never touches the database."""
    return StageQuestion(id=99, response_type=response_type, response_options=options)


class TestValidation:
    @pytest.mark.parametrize("raw,expected", [
        ("Yes", "Yes"), ("yes", "Yes"), (" NO ", "No"), ("no", "No"),
    ])
    def test_yes_no_canonical(self, raw, expected):
        assert validate_response_value(_q("yes_no"), raw) == expected

    @pytest.mark.parametrize("raw", ["maybe", "", "Y"])
    def test_yes_no_rejects(self, raw):
        with pytest.raises(ValidationError) as exc_info:
            validate_response_value(_q("yes_no"), raw)
        assert exc_info.value.details["question_id"] == 99

    @pytest.mark.parametrize("raw", ["50000", "-3", "12.75", 42])
    def test_number_accepts(self, raw):
        assert validate_response_value(_q("number"), raw) == str(raw)

    @pytest.mark.parametrize("raw", ["50k", "1e5", "", "12."])
    def test_number_rejects(self, raw):
        with pytest.raises(ValidationError):
            validate_response_value(_q("number"), raw)

    def test_date(self):
        assert validate_response_value(_q("date"), "2026-03-01") == "2026-03-01"
        with pytest.raises(ValidationError):
            validate_response_value(_q("date"), "01/03/2026")

    def test_file_upload_requires_reference(self):
        assert validate_response_value(_q("file_upload"), "uploads/notes.pdf") == "uploads/notes.pdf"
        with pytest.raises(ValidationError):
            validate_response_value(_q("file_upload"), "   ")

    def test_multiple_choice(self):
        q = _q("multiple_choice", ["Kitchen", "Bathroom"])
        assert validate_response_value(q, "Kitchen") == "Kitchen"
        with pytest.raises(ValidationError) as exc_info:
            validate_response_value(q, "Garage")
        assert exc_info.value.details["options"] == ["Kitchen", "Bathroom"]

    def test_multiple_choice_without_options_is_free(self):
        assert validate_response_value(_q("multiple_choice"), "Anything") == "Anything"

    def test_text_is_free(self):
        assert validate_response_value(_q("text"), "  some notes ") == "some notes"

    def test_unknown_type(self):
        with pytest.raises(ValidationError):
            validate_response_value(_q("signature"), "x")


class TestUpsert:
    def test_insert_then_update_in_place(self, job, question_at, users):
        q = question_at(1, 2)
        first = record_response(job, q, "50000", user_id=users["worker"].id)
        second = record_response(job, q, "65000", user_id=users["worker"].id, source="sms",
                                 metadata={"via": "gateway"})
        db.session.commit()

        assert first.id == second.id
        rows = UserResponse.query.filter_by(job_id=job.id, question_id=q.id).all()
        assert len(rows) == 1
        assert rows[0].response_value == "65000"
        assert rows[0].response_source == "sms"
        assert rows[0].response_metadata == {"via": "gateway"}
        assert rows[0].responded_by_id == users["worker"].id

    def test_lookups(self, job, question_at, users):
        q1, q2 = question_at(1, 1), question_at(1, 2)
        record_response(job, q1, "Yes", user_id=users["worker"].id)
        record_response(job, q2, "100", user_id=users["worker"].id)

        assert get_response(job.id, q1.id).response_value == "Yes"
        assert get_response(job.id, question_at(1, 3).id) is None
        assert set(responses_for_job(job.id)) == {q1.id, q2.id}

    def test_unknown_source(self, job, question_at):
        with pytest.raises(ValidationError):
            record_response(job, question_at(1, 1), "Yes", source="carrier_pigeon")
        assert UserResponse.query.count() == 0
