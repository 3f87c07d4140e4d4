"""
Transition Resolver: picks the rule (if any) fired by an answer.

A rule from the job's current stage is a candidate when its question_id is
NULL or equals the answered question, and either
  (a) its trigger_response equals the answer (trimmed, case-insensitive), or
  (b) its condition expression evaluates true against the answer.

Ties go to automatic rules first, then the lowest rule id, so the result is
deterministic for any catalog.
"""

import logging
from itertools import combinations

from sqlalchemy import or_, select

from jobflow.models import db
from jobflow.models.workflow import StageQuestion, StageTransition
from jobflow.services.conditions import condition_matches, normalize

logger = logging.getLogger(__name__)


def candidate_rules(current_stage_id: int, question_id: int | None = None) -> list[StageTransition]:
    """Rules leaving ``current_stage_id`` in evaluation order."""
    stmt = select(StageTransition).where(StageTransition.from_stage_id == current_stage_id)
    if question_id is not None:
        stmt = stmt.where(
            or_(StageTransition.question_id.is_(None), StageTransition.question_id == question_id)
        )
    stmt = stmt.order_by(StageTransition.is_automatic.desc(), StageTransition.id.asc())
    return list(db.session.execute(stmt).scalars())


def rule_matches(rule: StageTransition, value: str) -> bool:
    trigger = normalize(rule.trigger_response)
    if trigger and trigger == normalize(value):
        return True
    return condition_matches(rule.condition, value)


def resolve(current_stage_id: int, question_id: int, value: str) -> StageTransition | None:
    """Return the winning rule, or None when nothing fires.

    Rules without a question only apply to questions of the current stage.
    """
    question = db.session.get(StageQuestion, question_id)
    own_question = question is not None and question.stage_id == current_stage_id
    for rule in candidate_rules(current_stage_id, question_id):
        if rule.question_id is None and not own_question:
            continue
        if rule_matches(rule, value):
            logger.debug(
                "Transition rule %s matched (stage %s → %s)",
                rule.id, rule.from_stage_id, rule.to_stage_id,
                extra={"stage_id": current_stage_id},
            )
            return rule
    return None


def find_ambiguous_rules(stage_id: int) -> list[dict]:
    """
    Automatic rules of one stage that fire on the same (question, value).

    A rule with a NULL question overlaps every question-specific rule with
    the same trigger. Returns one entry per conflicting pair.
    """
    automatic = [
        r for r in candidate_rules(stage_id)
        if r.is_automatic and normalize(r.trigger_response)
    ]
    conflicts = []
    for first, second in combinations(automatic, 2):
        if normalize(first.trigger_response) != normalize(second.trigger_response):
            continue
        if (
            first.question_id is not None
            and second.question_id is not None
            and first.question_id != second.question_id
        ):
            continue
        conflicts.append({
            "from_stage_id": stage_id,
            "question_id": first.question_id or second.question_id,
            "trigger_response": first.trigger_response,
            "rule_ids": [first.id, second.id],
        })
    return conflicts
