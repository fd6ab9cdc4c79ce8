"""
TestPilot
AI Blueprint - LLM-backed generation, reports and usage.

Endpoints:
    GENERATION   /api/v1/stories/<sid>/generate-test-cases    POST
                 /api/v1/test-cases/<cid>/automation          POST  (template, no LLM)

    REPORTING    /api/v1/projects/<pid>/reports               POST
                 /api/v1/projects/<pid>/test-plan             POST
                 /api/v1/projects/<pid>/defects               POST

    USAGE        /api/v1/ai/usage                             GET
    PROMPTS      /api/v1/ai/prompts                           GET

Provider settings are read from the body under ``integrations``
({"llm": {...}, "azure_devops": {...}}); nothing is stored server-side.
A failed completion call still commits its usage log row.
"""

from datetime import datetime, timedelta, timezone

from flask import Blueprint, current_app, jsonify, request

from testpilot.ai.gateway import LLMGateway
from testpilot.ai.prompts import registry as prompt_registry
from testpilot.blueprints import paginate_query, register_error_handlers
from testpilot.core.exceptions import ValidationError
from testpilot.integrations.config import IntegrationSettings
from testpilot.integrations.tracker_gateway import tracker_gateway
from testpilot.models.ai import AIUsageLog
from testpilot.models.project import Project
from testpilot.models.story import UserStory
from testpilot.models.testing import TestCase
from testpilot.services import automation_service, generation_service, report_service
from testpilot.utils.helpers import actor, db_commit_or_error, get_or_404

ai_bp = Blueprint("ai", __name__, url_prefix="/api/v1")
register_error_handlers(ai_bp, keep_usage_log=True)

# ── Rate limiting ─────────────────────────────────────────────────────────
from testpilot import limiter  # noqa: E402

_ai_generate_limit = limiter.shared_limit(
    lambda: current_app.config.get("AI_RATE_LIMIT", "30/minute"), scope="ai_generate",
)


# ── Lazy singleton stored on Flask app (test-isolation safe) ────────────────

def _get_gateway():
    if not hasattr(current_app, "_ai_gateway"):
        current_app._ai_gateway = LLMGateway()
    return current_app._ai_gateway


def _settings(data: dict) -> IntegrationSettings:
    return IntegrationSettings.from_dict(data.get("integrations"))


def _fetch_defect_data(settings: IntegrationSettings) -> dict:
    if settings.azure_devops is None:
        raise ValidationError(
            "Azure DevOps configuration is required for defect metrics",
            details={"provider": "azure-devops", "missing": ["azure_devops"]},
        )
    work_items = tracker_gateway.fetch_azure_devops_defects(settings.azure_devops)
    return report_service.compute_defect_metrics(work_items)


# ══════════════════════════════════════════════════════════════════════════════
# GENERATION
# ══════════════════════════════════════════════════════════════════════════════

@ai_bp.route("/stories/<int:sid>/generate-test-cases", methods=["POST"])
@_ai_generate_limit
def generate_test_cases(sid):
    """Replace the story's test cases with a freshly generated set."""
    story, err = get_or_404(UserStory, sid)
    if err:
        return err

    data = request.get_json(silent=True) or {}
    settings = _settings(data)
    images = data.get("images") or []
    if not isinstance(images, list):
        raise ValidationError("images must be a list", details={"images": "invalid"})

    cases = generation_service.generate_test_cases(
        story,
        settings.require_llm(),
        custom_prompt=data.get("custom_prompt"),
        images=images,
        user=actor(data),
        gateway=_get_gateway(),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({
        "story": story.to_dict(),
        "items": [tc.to_dict() for tc in cases],
        "total": len(cases),
    }), 201


@ai_bp.route("/test-cases/<int:cid>/automation", methods=["POST"])
def generate_automation(cid):
    """Selenium JUnit skeleton for one test case."""
    tc, err = get_or_404(TestCase, cid)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    result = automation_service.generate_selenium_code(tc, user=actor(data), gateway=_get_gateway())
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result)


# ══════════════════════════════════════════════════════════════════════════════
# REPORTING
# ══════════════════════════════════════════════════════════════════════════════

@ai_bp.route("/projects/<int:pid>/reports", methods=["POST"])
@_ai_generate_limit
def generate_report(pid):
    """Narrative execution report; defect data is taken from the body or fetched live."""
    project, err = get_or_404(Project, pid)
    if err:
        return err

    data = request.get_json(silent=True) or {}
    settings = _settings(data)
    llm_config = settings.require_llm()

    defect_data = data.get("defect_data")
    if defect_data is None and data.get("include_defects"):
        defect_data = _fetch_defect_data(settings)

    result = report_service.generate_report(
        project,
        llm_config,
        report_type=data.get("report_type"),
        defect_data=defect_data,
        execution_period=data.get("execution_period"),
        user=actor(data),
        gateway=_get_gateway(),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result)


@ai_bp.route("/projects/<int:pid>/test-plan", methods=["POST"])
@_ai_generate_limit
def generate_test_plan(pid):
    project, err = get_or_404(Project, pid)
    if err:
        return err

    data = request.get_json(silent=True) or {}
    result = report_service.generate_test_plan(
        project,
        _settings(data).require_llm(),
        testing_scope=data.get("testing_scope"),
        custom_prompt=data.get("custom_prompt"),
        requirements_doc=data.get("requirements_doc"),
        story_ids=data.get("story_ids"),
        user=actor(data),
        gateway=_get_gateway(),
    )
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result)


@ai_bp.route("/projects/<int:pid>/defects", methods=["POST"])
def fetch_defects(pid):
    """Bug work items from Azure DevOps with aggregate metrics."""
    _, err = get_or_404(Project, pid)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    return jsonify(_fetch_defect_data(_settings(data)))


# ══════════════════════════════════════════════════════════════════════════════
# USAGE & PROMPTS
# ══════════════════════════════════════════════════════════════════════════════

@ai_bp.route("/ai/usage", methods=["GET"])
def usage_stats():
    """Usage log rows (newest first) plus token/cost totals over the period."""
    pid = request.args.get("project_id", type=int)
    days = request.args.get("days", 30, type=int)

    # Calls made for a soft-deleted project are hidden with it
    q = (
        AIUsageLog.query
        .outerjoin(Project, AIUsageLog.project_id == Project.id)
        .filter(Project.deleted_at.is_(None))
    )
    if pid:
        q = q.filter(AIUsageLog.project_id == pid)
    cutoff = datetime.now(timezone.utc) - timedelta(days=days)
    q = q.filter(AIUsageLog.created_at >= cutoff)

    logs = q.all()
    total_calls = len(logs)
    total_prompt = sum(l.prompt_tokens for l in logs)
    total_completion = sum(l.completion_tokens for l in logs)
    error_count = sum(1 for l in logs if not l.success)

    by_purpose = {}
    for l in logs:
        p = l.purpose or "other"
        entry = by_purpose.setdefault(p, {"calls": 0, "tokens": 0, "cost": 0.0})
        entry["calls"] += 1
        entry["tokens"] += l.total_tokens
        entry["cost"] += l.cost_usd

    items, _ = paginate_query(q.order_by(AIUsageLog.created_at.desc(), AIUsageLog.id.desc()), default_limit=50)
    return jsonify({
        "period_days": days,
        "total_calls": total_calls,
        "total_prompt_tokens": total_prompt,
        "total_completion_tokens": total_completion,
        "total_tokens": total_prompt + total_completion,
        "total_cost_usd": round(sum(l.cost_usd for l in logs), 4),
        "avg_latency_ms": round(sum(l.latency_ms for l in logs) / max(total_calls, 1)),
        "error_count": error_count,
        "by_purpose": {k: {**v, "cost": round(v["cost"], 4)} for k, v in by_purpose.items()},
        "items": [l.to_dict() for l in items],
    })


@ai_bp.route("/ai/prompts", methods=["GET"])
def list_prompts():
    """Built-in prompt templates (previews only)."""
    return jsonify({"items": prompt_registry.list_templates()})
