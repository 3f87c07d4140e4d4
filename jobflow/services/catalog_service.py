"""
Catalog Service: read access to the stage catalog and guarded edits to
the transition table.

A tenant sees its own stages plus every global stage (tenant_id NULL)
whose sequence position it has not overridden. The progression engine
only reads the catalog; the only write here is adding a transition rule,
which is validated against the catalog invariants first.

Transaction policy: ``add_transition`` commits; everything else is read-only.
"""

import logging

from sqlalchemy import or_, select

from jobflow.core.exceptions import ConflictError, NotFoundError, ValidationError
from jobflow.models import db
from jobflow.models.workflow import (
    AUTO_ASSIGN_TARGETS,
    JOB_STATUSES,
    RESPONSE_TYPES,
    STAGE_TYPES,
    TASK_PRIORITIES,
    TASK_TYPES,
    JobStage,
    StageQuestion,
    StageTransition,
)
from jobflow.services.conditions import normalize, parse_condition
from jobflow.services.helpers.scoped_queries import get_or_raise, get_scoped
from jobflow.services.transition_resolver import candidate_rules, find_ambiguous_rules

logger = logging.getLogger(__name__)


# ═════════════════════════════════════════════════════════════════════════════
# Stage visibility
# ═════════════════════════════════════════════════════════════════════════════

def stage_visible(stage: JobStage, tenant_id: int) -> bool:
    return stage.tenant_id is None or stage.tenant_id == tenant_id


def stages_for_tenant(tenant_id: int) -> list[JobStage]:
    """The tenant's effective catalog ordered by sequence."""
    rows = db.session.execute(
        select(JobStage)
        .where(or_(JobStage.tenant_id == tenant_id, JobStage.tenant_id.is_(None)))
        .order_by(JobStage.sequence_order, JobStage.id)
    ).scalars().all()

    own_positions = {s.sequence_order for s in rows if s.tenant_id == tenant_id}
    return [
        s for s in rows
        if s.tenant_id == tenant_id or s.sequence_order not in own_positions
    ]


def initial_stage(tenant_id: int) -> JobStage | None:
    stages = stages_for_tenant(tenant_id)
    return stages[0] if stages else None


def get_stage_for_tenant(stage_id: int, tenant_id: int) -> JobStage:
    """Stage by id, NotFoundError unless it is visible to ``tenant_id``."""
    stage = get_or_raise(JobStage, stage_id)
    if not stage_visible(stage, tenant_id):
        raise NotFoundError(resource="JobStage", resource_id=stage_id, tenant_id=tenant_id)
    return stage


def list_catalog(tenant_id: int) -> list[dict]:
    """Stages with their questions, outgoing rules and task templates."""
    result = []
    for stage in stages_for_tenant(tenant_id):
        data = stage.to_dict(include_questions=True)
        data["transitions"] = [r.to_dict() for r in candidate_rules(stage.id)]
        data["task_templates"] = [t.to_dict() for t in stage.task_templates]
        result.append(data)
    return result


# ═════════════════════════════════════════════════════════════════════════════
# Transition table edits
# ═════════════════════════════════════════════════════════════════════════════

def add_transition(from_stage_id: int, data: dict) -> StageTransition:
    """Add a rule leaving ``from_stage_id``.

    Raises:
        NotFoundError: source/destination stage or question missing.
        ValidationError: self-loop, cross-tenant destination, no trigger,
                         malformed condition.
        ConflictError: a second automatic rule for the same (question, value).
    """
    from_stage = get_or_raise(JobStage, from_stage_id)

    to_stage_id = data.get("to_stage_id")
    if to_stage_id is None:
        raise ValidationError("to_stage_id is required", details={"to_stage_id": "required"})
    to_stage = get_or_raise(JobStage, to_stage_id)

    if to_stage.id == from_stage.id:
        raise ValidationError("A stage cannot transition to itself", details={"to_stage_id": to_stage_id})
    if from_stage.tenant_id is not None and not stage_visible(to_stage, from_stage.tenant_id):
        raise ValidationError(
            "Destination stage belongs to another tenant",
            details={"to_stage_id": to_stage_id},
        )
    if from_stage.tenant_id is None and to_stage.tenant_id is not None:
        raise ValidationError(
            "A global stage can only transition to global stages",
            details={"to_stage_id": to_stage_id},
        )

    question_id = data.get("question_id")
    if question_id is not None:
        get_scoped(StageQuestion, question_id, stage_id=from_stage.id)

    trigger = str(data.get("trigger_response") or "").strip()
    condition = data.get("condition")
    if parse_condition(condition) is None and not trigger:
        raise ValidationError(
            "A rule needs a trigger_response or a condition",
            details={"trigger_response": "required"},
        )

    is_automatic = bool(data.get("is_automatic", True))
    if is_automatic and trigger:
        for existing in candidate_rules(from_stage.id, question_id):
            same_question = existing.question_id is None or question_id is None or existing.question_id == question_id
            if existing.is_automatic and same_question and normalize(existing.trigger_response) == normalize(trigger):
                raise ConflictError(resource="StageTransition", field="trigger_response", value=trigger)

    rule = StageTransition(
        from_stage_id=from_stage.id,
        to_stage_id=to_stage.id,
        question_id=question_id,
        trigger_response=trigger,
        condition=condition,
        action=data.get("action"),
        is_automatic=is_automatic,
        requires_admin_override=bool(data.get("requires_admin_override", False)),
    )
    db.session.add(rule)
    db.session.commit()
    logger.info(
        "Transition rule %s added %s → %s on %r", rule.id, from_stage.id, to_stage.id, trigger,
        extra={"stage_id": from_stage.id},
    )
    return rule


# ═════════════════════════════════════════════════════════════════════════════
# Catalog validation
# ═════════════════════════════════════════════════════════════════════════════

def _value_problem(stage: JobStage, field: str, value, allowed: set, **ids) -> dict:
    return {
        "rule": "invalid_value",
        "severity": "error",
        "stage_id": stage.id,
        "field": field,
        "message": f"{field} '{value}' is not one of {sorted(allowed)}",
        **ids,
    }


def _invalid_values(stage: JobStage) -> list[dict]:
    """Catalog columns holding values outside their allowed sets."""
    problems = []
    if stage.maps_to_status not in JOB_STATUSES:
        problems.append(_value_problem(stage, "maps_to_status", stage.maps_to_status, JOB_STATUSES))
    if stage.stage_type not in STAGE_TYPES:
        problems.append(_value_problem(stage, "stage_type", stage.stage_type, STAGE_TYPES))
    for question in stage.questions:
        if question.response_type not in RESPONSE_TYPES:
            problems.append(_value_problem(
                stage, "response_type", question.response_type, RESPONSE_TYPES, question_id=question.id,
            ))
    for template in stage.task_templates:
        for field, allowed in (
            ("task_type", TASK_TYPES),
            ("priority", TASK_PRIORITIES),
            ("auto_assign_to", AUTO_ASSIGN_TARGETS),
        ):
            value = getattr(template, field)
            if value not in allowed:
                problems.append(_value_problem(stage, field, value, allowed, template_id=template.id))
    return problems


def validate_catalog(tenant_id: int) -> dict:
    """
    Check the tenant's transition table against the catalog invariants.

    Returns:
        {"valid": bool, "problems": [{"rule", "stage_id", "message", ...}]}
        ``valid`` is False only for errors; dead-end stages are warnings.
    """
    stages = stages_for_tenant(tenant_id)
    problems = []
    terminal_id = stages[-1].id if stages else None

    for stage in stages:
        problems.extend(_invalid_values(stage))

        for conflict in find_ambiguous_rules(stage.id):
            problems.append({
                "rule": "ambiguous_automatic_rules",
                "severity": "error",
                "stage_id": stage.id,
                "message": f"Automatic rules {conflict['rule_ids']} fire on the same answer",
                **conflict,
            })

        rules = candidate_rules(stage.id)
        for rule in rules:
            try:
                parse_condition(rule.condition)
            except ValidationError as exc:
                problems.append({
                    "rule": "malformed_condition",
                    "severity": "error",
                    "stage_id": stage.id,
                    "transition_id": rule.id,
                    "message": str(exc),
                })
            if rule.to_stage is not None and not stage_visible(rule.to_stage, tenant_id):
                problems.append({
                    "rule": "cross_tenant_destination",
                    "severity": "error",
                    "stage_id": stage.id,
                    "transition_id": rule.id,
                    "message": f"Destination stage {rule.to_stage_id} is not in this tenant's catalog",
                })
            if rule.question_id is not None:
                question = db.session.get(StageQuestion, rule.question_id)
                if question is None or question.stage_id != stage.id:
                    problems.append({
                        "rule": "question_outside_stage",
                        "severity": "error",
                        "stage_id": stage.id,
                        "transition_id": rule.id,
                        "message": f"Question {rule.question_id} does not belong to stage {stage.id}",
                    })

        if not rules and stage.id != terminal_id:
            problems.append({
                "rule": "dead_end_stage",
                "severity": "warn",
                "stage_id": stage.id,
                "message": f"Stage '{stage.name}' has no outgoing transitions",
            })

    valid = not any(p["severity"] == "error" for p in problems)
    if not valid:
        logger.warning("Catalog for tenant %s has %d problem(s)", tenant_id, len(problems))
    return {"valid": valid, "problems": problems}
