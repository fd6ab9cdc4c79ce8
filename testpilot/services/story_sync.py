"""
Story synchronizer.

Pulls the current issue list from each enabled tracker (Jira first, then
Azure DevOps), normalizes every item into the local story shape and
reconciles it against the project's stories by case-insensitive title:
a match is updated in place, anything else is inserted.

Failure policy:
    A provider failure (transport, auth or parse) is logged, recorded in
    SyncResult.errors and skipped. Rows already written for other providers
    stay in the session. Zero items is not an error.

Transaction policy: flush() only; the route handler commits.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

from testpilot.core.exceptions import ProviderError, ResponseParseError, ValidationError
from testpilot.integrations.config import AzureDevOpsConfig, IntegrationSettings, JiraConfig
from testpilot.integrations.tracker_gateway import tracker_gateway
from testpilot.models import db
from testpilot.models.story import STORY_PRIORITIES, STORY_STATUSES, UserStory
from testpilot.services.story_service import find_story_by_title

logger = logging.getLogger(__name__)

NO_DESCRIPTION = "No description available"
UNTITLED = "Untitled"

_WORK_ITEM_PRIORITY = {1: "high", 2: "medium", 3: "low"}


# ── Normalization ────────────────────────────────────────────────────────────


def extract_adf_text(value) -> str:
    """Flatten a rich-text (Atlassian Document Format) description.

    Strings pass through unchanged. A node carrying a ``content`` list is
    walked depth-first; the strings of its ``"type": "text"`` leaves are joined
    with single spaces and no other node contributes text.
    Anything else, or an empty result, yields the placeholder.
    """
    if isinstance(value, str) and value:
        return value
    if not isinstance(value, dict) or not isinstance(value.get("content"), list):
        return NO_DESCRIPTION

    parts: list[str] = []

    def walk(node):
        if not isinstance(node, dict):
            return
        if node.get("type") == "text" and node.get("text"):
            parts.append(str(node["text"]))
        elif isinstance(node.get("content"), list):
            for child in node["content"]:
                walk(child)

    for child in value["content"]:
        walk(child)
    text = " ".join(parts).strip()
    return text or NO_DESCRIPTION


def map_work_item_priority(value) -> str:
    """Azure DevOps numeric priority: 1 → high, 2 → medium, 3 → low, else medium.

    Only the integers themselves count; "1", 1.5 and True are medium.
    """
    if isinstance(value, bool) or not isinstance(value, int):
        return "medium"
    return _WORK_ITEM_PRIORITY.get(value, "medium")


def _coerce(value: str, allowed: set, fallback: str) -> str:
    return value if value in allowed else fallback


def normalize_jira_issue(issue: dict) -> dict:
    fields = issue.get("fields") or {}
    priority = ((fields.get("priority") or {}).get("name") or "medium").lower()
    status = ((fields.get("status") or {}).get("name") or "draft").lower().replace(" ", "-")
    return {
        "title": fields.get("summary") or UNTITLED,
        "description": extract_adf_text(fields.get("description")),
        "acceptance_criteria": "",
        "priority": _coerce(priority, STORY_PRIORITIES, "medium"),
        "status": _coerce(status, STORY_STATUSES, "draft"),
        "source": JiraConfig.kind,
        "external_key": issue.get("key"),
    }


def normalize_work_item(item: dict) -> dict:
    fields = item.get("fields") or {}
    status = str(fields.get("System.State") or "new").lower()
    return {
        "title": fields.get("System.Title") or UNTITLED,
        "description": fields.get("System.Description") or NO_DESCRIPTION,
        "acceptance_criteria": fields.get("Microsoft.VSTS.Common.AcceptanceCriteria") or "",
        "priority": map_work_item_priority(fields.get("Microsoft.VSTS.Common.Priority")),
        "status": _coerce(status, STORY_STATUSES, "draft"),
        "source": AzureDevOpsConfig.kind,
        "external_key": str(item["id"]) if item.get("id") is not None else None,
    }


# ── Reconciliation ───────────────────────────────────────────────────────────


@dataclass
class SyncResult:
    created: int = 0
    updated: int = 0
    providers: dict = field(default_factory=dict)
    errors: list = field(default_factory=list)

    @property
    def total(self) -> int:
        return self.created + self.updated

    @property
    def success(self) -> bool:
        """At least one tracker was fetched and reconciled."""
        return bool(self.providers)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "created": self.created,
            "updated": self.updated,
            "total": self.total,
            "providers": self.providers,
            "errors": self.errors,
        }


def upsert_story(project_id: int, data: dict) -> tuple[UserStory, bool]:
    """Update the title-matching story in place or insert a new one.

    Returns:
        (story, created)
    """
    story = find_story_by_title(project_id, data["title"])
    if story:
        story.description = data["description"]
        story.acceptance_criteria = data["acceptance_criteria"]
        story.priority = data["priority"]
        story.status = data["status"]
        db.session.flush()
        return story, False

    story = UserStory(project_id=project_id, **data)
    db.session.add(story)
    db.session.flush()
    return story, True


def _fetch_normalized(cfg) -> list[dict]:
    if isinstance(cfg, JiraConfig):
        return [normalize_jira_issue(i) for i in tracker_gateway.fetch_jira_issues(cfg)]
    return [normalize_work_item(i) for i in tracker_gateway.fetch_azure_devops_work_items(cfg)]


def sync_stories(project_id: int, settings: IntegrationSettings) -> SyncResult:
    """Reconcile the project's stories against every enabled tracker.

    Raises:
        ValidationError: no tracker is configured and enabled.
    """
    trackers = settings.trackers()
    if not trackers:
        raise ValidationError(
            "No issue tracker is configured. Enable Jira or Azure DevOps first.",
            details={"missing": ["jira", "azure_devops"]},
        )

    result = SyncResult()
    for cfg in trackers:
        try:
            items = _fetch_normalized(cfg)
        except (ProviderError, ResponseParseError) as e:
            logger.warning("Story sync skipped provider=%s project_id=%s: %s",
                           cfg.kind, project_id, e, extra={"provider": cfg.kind, "project_id": project_id})
            result.errors.append({"provider": cfg.kind, "error": str(e)})
            continue

        counts = {"fetched": len(items), "created": 0, "updated": 0}
        for data in items:
            _, created = upsert_story(project_id, data)
            counts["created" if created else "updated"] += 1
        result.providers[cfg.kind] = counts
        result.created += counts["created"]
        result.updated += counts["updated"]
        logger.info("Story sync provider=%s project_id=%s created=%d updated=%d",
                    cfg.kind, project_id, counts["created"], counts["updated"])

    return result
