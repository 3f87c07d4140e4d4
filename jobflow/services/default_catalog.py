"""
Default construction workflow: 12 stages with questions, transitions and
task templates.

Loaded by the ``flask seed-stages`` CLI command (globally, or for one
tenant with ``--tenant-id``). Seeding is idempotent: a scope that already
has stages is left untouched.

Questions are addressed as (stage sequence, question sequence) so skip
conditions and transition rules can reference them before ids exist.
"""

import logging

from sqlalchemy import select

from jobflow.models import db
from jobflow.models.workflow import JobStage, StageQuestion, StageTransition, TaskTemplate

logger = logging.getLogger(__name__)


STAGES = [
    # seq, name, description, color, status, type, min_h, max_h
    (1, "Lead Qualification", "Initial assessment of lead viability and requirements", "#C7D2FE", "planning", "standard", 1, 168),
    (2, "Initial Client Meeting", "First meeting with client to understand project scope", "#A5B4FC", "planning", "milestone", 2, 72),
    (3, "Quote Preparation", "Prepare detailed project quote and estimates", "#93C5FD", "planning", "standard", 4, 120),
    (4, "Quote Submission", "Submit quote to client and await response", "#60A5FA", "planning", "milestone", 1, 336),
    (5, "Client Decision", "Client reviews and makes decision on quote", "#38BDF8", "planning", "approval", 1, 168),
    (6, "Contract & Deposit", "Finalize contract terms and collect deposit", "#34D399", "active", "milestone", 2, 72),
    (7, "Planning & Procurement", "Detailed planning and material procurement", "#4ADE80", "active", "standard", 8, 168),
    (8, "On-Site Preparation", "Site preparation and setup for construction", "#FACC15", "active", "standard", 4, 72),
    (9, "Construction Execution", "Main construction and building phase", "#FB923C", "active", "standard", 40, 2000),
    (10, "Inspections & Progress Payments", "Quality inspections and progress billing", "#F87171", "active", "milestone", 2, 48),
    (11, "Finalisation", "Final touches and completion preparations", "#F472B6", "active", "standard", 8, 120),
    (12, "Handover & Close", "Final handover and project closure", "#D1D5DB", "completed", "milestone", 1, 24),
]

# stage seq → [(question seq, text, response type, help text, skip_conditions)]
# skip_conditions reference other questions as {"question": (stage_seq, question_seq), ...}
QUESTIONS = {
    1: [
        (1, "Have you qualified this lead as a viable opportunity?", "yes_no", "Consider budget, timeline, and project scope", None),
        (2, "What is the estimated project value?", "number", "Enter rough estimate in dollars", None),
        (3, "When does the client want to start?", "date", "Ideal project start date", None),
    ],
    2: [
        (1, "Have you had your initial meeting with the client?", "yes_no", "Face-to-face or video meeting to discuss project", None),
        (2, "When is the site meeting scheduled?", "date", "Schedule on-site assessment",
         {"question": (2, 1), "response_value": "Yes"}),
        (3, "Upload meeting notes or photos", "file_upload", "Document important details from the meeting", None),
    ],
    3: [
        (1, "Have you completed the site assessment?", "yes_no", "Detailed on-site evaluation for accurate quoting", None),
        (2, "Are all materials and labor costs calculated?", "yes_no", "Ensure comprehensive cost breakdown", None),
        (3, "What is the total quote amount?", "number", "Final quote amount including all costs and margin", None),
    ],
    4: [
        (1, "Has the quote been submitted to the client?", "yes_no", "Quote formally sent via email or hand-delivered", None),
        (2, "When do you expect a response?", "date", "Client indicated decision timeline", None),
        (3, "Upload quote document", "file_upload", "Keep copy of submitted quote", None),
    ],
    5: [
        (1, "Has the client accepted the quote?", "yes_no", "Client formally agreed to proceed", None),
        (2, "Are there any requested changes?", "text", "Document any scope or price modifications",
         {"question": (5, 1), "response_value": "Yes"}),
        (3, "What is the reason for rejection?", "text", "Understand why quote was declined",
         {"question": (5, 1), "response_value": "No"}),
    ],
    6: [
        (1, "Has the contract been signed?", "yes_no", "Both parties have signed the agreement", None),
        (2, "Has the deposit been received?", "yes_no", "Initial payment collected as per contract", None),
        (3, "Upload signed contract", "file_upload", "Store signed contract documents", None),
    ],
    7: [
        (1, "Have you ordered materials yet?", "yes_no", "Materials ordered and delivery scheduled", None),
        (2, "When will materials be delivered?", "date", "Expected delivery date for materials", None),
        (3, "Is the work schedule finalized?", "yes_no", "Team schedule and project timeline confirmed", None),
    ],
    8: [
        (1, "Is the site prepared for construction?", "yes_no", "Site cleared and ready for work to begin", None),
        (2, "Are all permits obtained?", "yes_no", "All required building permits and approvals", None),
        (3, "When will construction begin?", "date", "Actual construction start date", None),
    ],
    9: [
        (1, "Are there any variations so far?", "yes_no", "Changes to original scope during construction", None),
        (2, "What is the current completion percentage?", "number", "Estimated percentage of work completed", None),
        (3, "Upload progress photos", "file_upload", "Document construction progress", None),
    ],
    10: [
        (1, "Have inspections been passed?", "yes_no", "All required inspections completed successfully", None),
        (2, "Has progress payment been requested?", "yes_no", "Invoice sent for completed work", None),
        (3, "Upload inspection certificates", "file_upload", "Store inspection approval documents", None),
    ],
    11: [
        (1, "Are all finishing touches complete?", "yes_no", "Final details and cleanup completed", None),
        (2, "Is the final invoice prepared?", "yes_no", "Final billing ready for client", None),
        (3, "When is handover scheduled?", "date", "Scheduled date for project handover", None),
    ],
    12: [
        (1, "Has the project been handed over to the client?", "yes_no", "Client has accepted completed project", None),
        (2, "Has final payment been received?", "yes_no", "All payments collected from client", None),
        (3, "Upload handover documentation", "file_upload", "Warranties, manuals, and completion certificates", None),
    ],
}

# (from seq, to seq, (stage seq, question seq), trigger, condition, action, automatic)
TRANSITIONS = [
    (1, 2, (1, 1), "Yes", None, None, True),
    (1, 12, (1, 1), "No", None, "close_as_unqualified", False),
    (2, 3, (2, 1), "Yes", None, None, True),
    (3, 4, (3, 2), "Yes", None, None, True),
    (4, 5, (4, 1), "Yes", None, None, True),
    (5, 6, (5, 1), "Yes", None, None, True),
    (5, 3, (5, 1), "No", None, "revise_quote", False),
    (6, 7, (6, 2), "Yes", None, None, True),
    (7, 8, (7, 3), "Yes", None, None, True),
    (8, 9, (8, 2), "Yes", None, None, True),
    (9, 10, (9, 2), "", {"type": "compare", "op": ">=", "value": 90}, None, True),
    (10, 11, (10, 1), "Yes", None, None, True),
    (11, 12, (11, 2), "Yes", None, None, True),
]

_HANDOVER_SUBTASKS = ["Prepare handover documentation", "Collect final payment",
                      "Provide warranties and manuals", "Schedule follow-up check"]

# stage seq → template kwargs
TASK_TEMPLATES = {
    1: dict(task_type="checklist", title="Lead Qualification Checklist",
            description="Complete initial lead assessment", priority="normal", auto_assign_to="creator",
            subtasks=["Review lead source and details", "Assess project budget range",
                      "Evaluate timeline feasibility", "Check client references if applicable"]),
    2: dict(task_type="scheduling", title="Schedule Initial Meeting",
            description="Arrange first meeting with client", priority="high", auto_assign_to="creator",
            client_visible=True, due_date_offset_hours=48,
            subtasks=["Contact client to schedule meeting", "Confirm meeting time and location",
                      "Prepare meeting agenda"]),
    3: dict(task_type="documentation", title="Prepare Detailed Quote",
            description="Create comprehensive project quote", priority="high", auto_assign_to="creator",
            upload_required=True,
            subtasks=["Conduct site survey", "Calculate material costs", "Estimate labor requirements",
                      "Add profit margin", "Create quote document"]),
    6: dict(task_type="documentation", title="Contract and Deposit Collection",
            description="Finalize contract and collect deposit", priority="urgent", auto_assign_to="admin",
            client_visible=True, upload_required=True,
            subtasks=["Prepare contract documents", "Review terms with client", "Collect signed contract",
                      "Process deposit payment"]),
    7: dict(task_type="checklist", title="Planning and Material Procurement",
            description="Organize project planning and order materials", priority="high",
            auto_assign_to="foreman", sla_hours=48,
            subtasks=["Create detailed work schedule", "Order materials from suppliers",
                      "Arrange delivery schedules", "Coordinate with team members"]),
    9: dict(task_type="documentation", title="Progress Documentation",
            description="Document construction progress", priority="normal", auto_assign_to="foreman",
            client_visible=True, upload_required=True,
            subtasks=["Take daily progress photos", "Update completion percentage",
                      "Note any issues or delays", "Communicate with client"]),
    12: dict(task_type="documentation", title="Project Handover Documentation",
             description="Complete project handover process", priority="high", auto_assign_to="creator",
             client_visible=True, upload_required=True, subtasks=_HANDOVER_SUBTASKS),
}


def _subtask_list(titles: list[str]) -> list[dict]:
    return [{"id": str(i), "title": title, "completed": False} for i, title in enumerate(titles, start=1)]


def seed_default_catalog(tenant_id: int | None = None) -> dict:
    """
    Insert the default workflow for ``tenant_id`` (None = global). Commits.

    Returns:
        {"created": bool, "stages": n, "questions": n, "transitions": n, "task_templates": n}
    """
    scope = JobStage.tenant_id.is_(None) if tenant_id is None else JobStage.tenant_id == tenant_id
    existing = db.session.execute(select(JobStage.id).where(scope).limit(1)).scalar_one_or_none()
    if existing is not None:
        logger.info("Stage catalog already present for tenant %s, skipping seed", tenant_id)
        return {"created": False, "stages": 0, "questions": 0, "transitions": 0, "task_templates": 0}

    stages: dict[int, JobStage] = {}
    for seq, name, description, color, status, stage_type, min_h, max_h in STAGES:
        stage = JobStage(
            tenant_id=tenant_id,
            name=name,
            description=description,
            color=color,
            sequence_order=seq,
            maps_to_status=status,
            stage_type=stage_type,
            min_duration_hours=min_h,
            max_duration_hours=max_h,
            requires_approval=stage_type == "approval",
        )
        db.session.add(stage)
        stages[seq] = stage
    db.session.flush()

    questions: dict[tuple[int, int], StageQuestion] = {}
    pending_skips = []
    for stage_seq, entries in QUESTIONS.items():
        for q_seq, text, rtype, help_text, skip in entries:
            question = StageQuestion(
                stage_id=stages[stage_seq].id,
                question_text=text,
                response_type=rtype,
                sequence_order=q_seq,
                help_text=help_text,
                skip_conditions={},
            )
            db.session.add(question)
            questions[(stage_seq, q_seq)] = question
            if skip:
                pending_skips.append((question, skip))
    db.session.flush()

    for question, skip in pending_skips:
        ref = questions[skip["question"]]
        question.skip_conditions = {
            "previous_responses": [{"question_id": ref.id, "response_value": skip["response_value"]}],
        }

    for from_seq, to_seq, q_key, trigger, condition, action, automatic in TRANSITIONS:
        db.session.add(StageTransition(
            from_stage_id=stages[from_seq].id,
            to_stage_id=stages[to_seq].id,
            question_id=questions[q_key].id,
            trigger_response=trigger,
            condition=condition,
            action=action,
            is_automatic=automatic,
        ))

    for stage_seq, kwargs in TASK_TEMPLATES.items():
        template_kwargs = dict(kwargs)
        template_kwargs["subtasks"] = _subtask_list(template_kwargs.pop("subtasks", []))
        db.session.add(TaskTemplate(stage_id=stages[stage_seq].id, **template_kwargs))

    db.session.commit()
    counts = {
        "created": True,
        "stages": len(stages),
        "questions": len(questions),
        "transitions": len(TRANSITIONS),
        "task_templates": len(TASK_TEMPLATES),
    }
    logger.info("Seeded default stage catalog for tenant %s: %s", tenant_id, counts)
    return counts
