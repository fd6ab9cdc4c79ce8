"""
Report assembler: execution statistics, defect metrics, narrative reports
and test plans.

Statistics are computed locally from the catalog; the narrative text comes
from one completion call. Nothing here is persisted except the AI usage log
written by the gateway.
"""

import logging
from datetime import datetime, timezone

from testpilot.ai.gateway import LLMGateway
from testpilot.ai.prompts import build_report_messages, build_test_plan_messages
from testpilot.core.exceptions import ValidationError
from testpilot.models.story import UserStory
from testpilot.models.testing import TestCase

logger = logging.getLogger(__name__)

REPORT_TYPES = {"executive", "detailed", "summary"}
DEFAULT_REPORT_TYPE = "executive"
MAX_REPORT_TEST_CASES = 200
MAX_PLAN_STORIES = 50

REPORT_TEMPERATURE = 0.6
PLAN_TEMPERATURE = 0.7
LONG_FORM_MAX_TOKENS = 4000

DEFAULT_TESTING_SCOPE = "Full application testing"

CLOSED_DEFECT_STATES = {"closed", "resolved", "done"}
_SEVERITY_BY_PREFIX = {"1": "critical", "2": "high", "3": "medium", "4": "low"}


# ── Statistics ───────────────────────────────────────────────────────────────


def compute_statistics(test_cases) -> dict:
    """Aggregate execution counts.

    ``pending`` counts not-run cases. ``pass_rate`` is a percentage rounded
    to one decimal and exactly 0 for an empty catalog.
    """
    stats = {"total": 0, "passed": 0, "failed": 0, "blocked": 0, "pending": 0}
    by_priority = {"high": 0, "medium": 0, "low": 0}

    for tc in test_cases:
        stats["total"] += 1
        if tc.status == "passed":
            stats["passed"] += 1
        elif tc.status == "failed":
            stats["failed"] += 1
        elif tc.status == "blocked":
            stats["blocked"] += 1
        else:
            stats["pending"] += 1
        if tc.priority in by_priority:
            by_priority[tc.priority] += 1

    total = stats["total"]
    stats["pass_rate"] = round(stats["passed"] / total * 100, 1) if total else 0
    stats["by_priority"] = by_priority
    return stats


def project_statistics(project_id: int) -> dict:
    return compute_statistics(TestCase.query.filter_by(project_id=project_id).all())


# ── Defects ──────────────────────────────────────────────────────────────────


def _severity(value) -> str:
    text = str(value or "").strip()
    return _SEVERITY_BY_PREFIX.get(text[:1], "medium")


def normalize_defect(item: dict) -> dict:
    fields = item.get("fields") or {}
    assigned = fields.get("System.AssignedTo")
    if isinstance(assigned, dict):
        assigned = assigned.get("displayName") or assigned.get("uniqueName")
    return {
        "id": item.get("id"),
        "title": fields.get("System.Title") or "Untitled",
        "priority": fields.get("Microsoft.VSTS.Common.Priority"),
        "severity": fields.get("Microsoft.VSTS.Common.Severity") or "",
        "state": fields.get("System.State") or "",
        "assigned_to": assigned or "Unassigned",
        "created_date": fields.get("System.CreatedDate") or "",
    }


def compute_defect_metrics(work_items: list[dict]) -> dict:
    """Bug work items → {"defects": [...], "metrics": {...}} for the report prompt."""
    defects = [normalize_defect(item) for item in work_items]

    metrics = {
        "total_defects": len(defects),
        "open_defects": 0,
        "closed_defects": 0,
        "critical_defects": 0,
        "high_defects": 0,
        "medium_defects": 0,
        "low_defects": 0,
    }
    for defect in defects:
        if str(defect["state"]).lower() in CLOSED_DEFECT_STATES:
            metrics["closed_defects"] += 1
        else:
            metrics["open_defects"] += 1
        metrics[f"{_severity(defect['severity'])}_defects"] += 1

    total = metrics["total_defects"]
    metrics["defect_closure_rate"] = round(metrics["closed_defects"] / total * 100, 1) if total else 0

    defects.sort(key=lambda d: str(d["created_date"]), reverse=True)
    return {"defects": defects, "metrics": metrics}


# ── Narrative report ─────────────────────────────────────────────────────────


def _require_llm(llm_config):
    if llm_config is None:
        raise ValidationError("LLM configuration is required",
                              details={"provider": "llm", "missing": ["llm"]})


def generate_report(
    project,
    llm_config,
    *,
    report_type: str | None = None,
    defect_data: dict | None = None,
    execution_period: dict | None = None,
    user: str = "system",
    gateway: LLMGateway | None = None,
) -> dict:
    """Narrative execution report for a project's catalog.

    Raises:
        ValidationError: no LLM config, unknown report type, or 0 / >200 test cases.
        ProviderError: completion endpoint failure.
    """
    _require_llm(llm_config)
    report_type = (report_type or DEFAULT_REPORT_TYPE).strip().lower()
    if report_type not in REPORT_TYPES:
        raise ValidationError(
            f"Report type must be one of: {', '.join(sorted(REPORT_TYPES))}",
            details={"report_type": report_type},
        )

    test_cases = (
        TestCase.query.filter_by(project_id=project.id)
        .order_by(TestCase.id.asc())
        .all()
    )
    if not test_cases:
        raise ValidationError("The project has no test cases to report on",
                              details={"test_cases": 0})
    if len(test_cases) > MAX_REPORT_TEST_CASES:
        raise ValidationError(
            f"Maximum {MAX_REPORT_TEST_CASES} test cases allowed per report",
            details={"test_cases": len(test_cases)},
        )

    statistics = compute_statistics(test_cases)
    execution_period = execution_period or {}
    period_start = execution_period.get("start_date") or execution_period.get("startDate") or "N/A"
    period_end = (execution_period.get("end_date") or execution_period.get("endDate")
                  or datetime.now(timezone.utc).date().isoformat())

    messages = build_report_messages(
        project_name=project.name,
        statistics=statistics,
        test_cases=[
            {
                "title": tc.title,
                "status": tc.status,
                "priority": tc.priority,
                "user_story_title": tc.user_story.title if tc.user_story else None,
            }
            for tc in test_cases
        ],
        report_type=report_type,
        period_start=period_start,
        period_end=period_end,
        defect_data=defect_data,
    )

    gateway = gateway or LLMGateway()
    result = gateway.chat(
        messages, llm_config,
        purpose="test_report_generation", user=user, project_id=project.id,
        temperature=REPORT_TEMPERATURE, max_tokens=LONG_FORM_MAX_TOKENS,
    )
    logger.info("Report generated project_id=%s type=%s test_cases=%d",
                project.id, report_type, statistics["total"], extra={"project_id": project.id})

    return {
        "report": result["content"],
        "statistics": statistics,
        "metadata": {
            "project_name": project.name,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "report_type": report_type,
            "execution_period": {"start_date": period_start, "end_date": period_end},
        },
    }


# ── Test plan ────────────────────────────────────────────────────────────────


def generate_test_plan(
    project,
    llm_config,
    *,
    testing_scope: str | None = None,
    custom_prompt: str | None = None,
    requirements_doc: str | None = None,
    story_ids: list | None = None,
    user: str = "system",
    gateway: LLMGateway | None = None,
) -> dict:
    """Structured test plan from the project's stories and/or a requirements document."""
    _require_llm(llm_config)

    q = UserStory.query.filter_by(project_id=project.id)
    if story_ids:
        try:
            ids = [int(i) for i in story_ids]
        except (TypeError, ValueError):
            raise ValidationError("story_ids must be a list of integers", details={"story_ids": story_ids})
        q = q.filter(UserStory.id.in_(ids))
    stories = q.order_by(UserStory.id.asc()).all()

    if len(stories) > MAX_PLAN_STORIES:
        raise ValidationError(
            f"Maximum {MAX_PLAN_STORIES} user stories allowed per test plan",
            details={"stories": len(stories)},
        )
    requirements_doc = (requirements_doc or "").strip()
    if not stories and not requirements_doc:
        raise ValidationError(
            "Either user stories or a requirements document is required",
            details={"missing": ["stories", "requirements_doc"]},
        )

    testing_scope = (testing_scope or "").strip() or DEFAULT_TESTING_SCOPE
    messages = build_test_plan_messages(
        project_name=project.name,
        stories=[{"title": s.title, "description": s.description} for s in stories],
        requirements_doc=requirements_doc or None,
        testing_scope=testing_scope,
        custom_prompt=custom_prompt,
    )

    gateway = gateway or LLMGateway()
    result = gateway.chat(
        messages, llm_config,
        purpose="test_plan_generation", user=user, project_id=project.id,
        temperature=PLAN_TEMPERATURE, max_tokens=LONG_FORM_MAX_TOKENS,
    )

    return {
        "plan": result["content"],
        "metadata": {
            "project_name": project.name,
            "generated_at": datetime.now(timezone.utc).isoformat(),
            "testing_scope": testing_scope,
            "story_count": len(stories),
            "has_requirements_doc": bool(requirements_doc),
        },
    }
