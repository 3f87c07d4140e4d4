"""
Skip Evaluator: decides whether a question's answer bypasses transition
evaluation.

``skip_conditions`` keys (any one true ⇒ skip):
    job_types:          ["maintenance", ...]  job.job_type is listed
    previous_responses: [{"question_id": 4, "response_value": "Yes"},
                         {"question_id": 9, "condition": ">=1000"}]
                        the job's current answer to that question matches
    when_response:      condition evaluated against the submitted value
"""

import logging

from jobflow.models.job import Job
from jobflow.models.workflow import StageQuestion
from jobflow.services.conditions import Equals, parse_condition
from jobflow.services.response_store import responses_for_job

logger = logging.getLogger(__name__)


def _previous_response_matches(rule: dict, answers: dict) -> bool:
    try:
        question_id = int(rule.get("question_id"))
    except (TypeError, ValueError):
        return False
    previous = answers.get(question_id)
    if previous is None:
        return False

    if "condition" in rule:
        cond = parse_condition(rule["condition"])
    elif "response_value" in rule:
        cond = Equals(str(rule["response_value"]))
    else:
        return False
    return cond is not None and cond.matches(previous.response_value)


def should_skip(job: Job, question: StageQuestion, value: str) -> bool:
    """True when the question's skip conditions hold for this job."""
    conditions = question.skip_conditions or {}
    if not conditions:
        return False

    job_types = conditions.get("job_types") or []
    if job.job_type in job_types:
        logger.debug("Skip: job %s type %s listed", job.id, job.job_type, extra={"job_id": job.id})
        return True

    when_response = parse_condition(conditions.get("when_response"))
    if when_response is not None and when_response.matches(value):
        logger.debug("Skip: submitted value matched for question %s", question.id, extra={"job_id": job.id})
        return True

    previous_rules = conditions.get("previous_responses") or []
    if previous_rules:
        answers = responses_for_job(job.id)
        for rule in previous_rules:
            if _previous_response_matches(rule, answers):
                logger.debug(
                    "Skip: previous answer to question %s matched", rule.get("question_id"),
                    extra={"job_id": job.id},
                )
                return True

    return False
