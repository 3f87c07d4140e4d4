"""
Transition resolver: matching, tie-break and ambiguity detection.

Builds a small two-question stage by hand so each rule's effect is visible.
"""

import pytest

from jobflow.models import db
from jobflow.models.workflow import JobStage, StageQuestion, StageTransition
from jobflow.services.transition_resolver import (
    candidate_rules,
    find_ambiguous_rules,
    resolve,
    rule_matches,
)


# ═════════════════════════════════════════════════════════════════════════════
# ORM helper factories
# ═════════════════════════════════════════════════════════════════════════════

def _stage(seq, name=None):
    s = JobStage(name=name or f"Stage {seq}", sequence_order=seq)
    db.session.add(s)
    db.session.flush()
    return s


def _question(stage, seq, rtype="yes_no"):
    q = StageQuestion(stage_id=stage.id, question_text=f"Q{seq}?", response_type=rtype, sequence_order=seq)
    db.session.add(q)
    db.session.flush()
    return q


def _rule(src, dst, question=None, trigger="", condition=None, automatic=True):
    r = StageTransition(
        from_stage_id=src.id,
        to_stage_id=dst.id,
        question_id=question.id if question else None,
        trigger_response=trigger,
        condition=condition,
        is_automatic=automatic,
    )
    db.session.add(r)
    db.session.flush()
    return r


@pytest.fixture()
def stages():
    a, b, c = _stage(1), _stage(2), _stage(3)
    return a, b, c


def test_trigger_match_is_trimmed_and_case_insensitive(stages):
    a, b, _ = stages
    q = _question(a, 1)
    rule = _rule(a, b, q, trigger=" Yes ")
    assert rule_matches(rule, "yes")
    assert resolve(a.id, q.id, "YES").id == rule.id
    assert resolve(a.id, q.id, "No") is None


def test_condition_match(stages):
    a, b, _ = stages
    q = _question(a, 1, "number")
    rule = _rule(a, b, q, condition={"type": "compare", "op": ">=", "value": 90})
    assert resolve(a.id, q.id, "95").id == rule.id
    assert resolve(a.id, q.id, "89") is None


def test_rule_for_other_question_is_ignored(stages):
    a, b, _ = stages
    q1, q2 = _question(a, 1), _question(a, 2)
    _rule(a, b, q1, trigger="Yes")
    assert resolve(a.id, q2.id, "Yes") is None


def test_question_agnostic_rule_applies_to_own_questions_only(stages):
    a, b, c = stages
    own = _question(a, 1)
    foreign = _question(c, 1)
    rule = _rule(a, b, None, trigger="Yes")

    assert resolve(a.id, own.id, "Yes").id == rule.id
    assert resolve(a.id, foreign.id, "Yes") is None


def test_tie_break_automatic_first_then_lowest_id(stages):
    a, b, c = stages
    q = _question(a, 1)
    manual = _rule(a, c, q, trigger="Yes", automatic=False)
    auto_late = _rule(a, b, None, trigger="Yes")
    auto_later = _rule(a, c, q, condition="Yes")

    assert [r.id for r in candidate_rules(a.id, q.id)] == [auto_late.id, auto_later.id, manual.id]
    assert resolve(a.id, q.id, "yes").id == auto_late.id


def test_manual_rule_still_fires_when_alone(stages):
    a, _, c = stages
    q = _question(a, 1)
    manual = _rule(a, c, q, trigger="No", automatic=False)
    assert resolve(a.id, q.id, "No").id == manual.id


def test_malformed_condition_propagates(stages):
    from jobflow.core.exceptions import ValidationError

    a, b, _ = stages
    q = _question(a, 1, "text")
    _rule(a, b, q, condition={"type": "regex", "value": ".*"})
    with pytest.raises(ValidationError):
        resolve(a.id, q.id, "anything")


class TestAmbiguity:
    def test_same_question_same_trigger(self, stages):
        a, b, c = stages
        q = _question(a, 1)
        r1 = _rule(a, b, q, trigger="Yes")
        r2 = _rule(a, c, q, trigger="yes")
        conflicts = find_ambiguous_rules(a.id)
        assert conflicts == [{
            "from_stage_id": a.id,
            "question_id": q.id,
            "trigger_response": "Yes",
            "rule_ids": [r1.id, r2.id],
        }]

    def test_null_question_overlaps_specific_rule(self, stages):
        a, b, c = stages
        q = _question(a, 1)
        _rule(a, b, None, trigger="Yes")
        _rule(a, c, q, trigger="Yes")
        assert len(find_ambiguous_rules(a.id)) == 1

    def test_distinct_questions_or_manual_rules_do_not_conflict(self, stages):
        a, b, c = stages
        q1, q2 = _question(a, 1), _question(a, 2)
        _rule(a, b, q1, trigger="Yes")
        _rule(a, c, q2, trigger="Yes")
        _rule(a, c, q1, trigger="Yes", automatic=False)
        assert find_ambiguous_rules(a.id) == []

    def test_seeded_catalog_is_unambiguous(self, catalog):
        for stage in catalog.values():
            assert find_ambiguous_rules(stage.id) == []
