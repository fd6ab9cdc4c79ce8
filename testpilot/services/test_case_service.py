"""Test case service layer: catalog CRUD, execution status and row import.

Transaction policy: flush() only; the route handler commits.
"""
import json
import logging
import re

from testpilot.core.exceptions import ValidationError
from testpilot.models import db
from testpilot.models.story import UserStory
from testpilot.models.testing import (
    DEFAULT_STATUS,
    TEST_CASE_CATEGORIES,
    TEST_CASE_PRIORITIES,
    TEST_CASE_STATUSES,
    TEST_CASE_TYPES,
    TestCase,
    join_steps,
)
from testpilot.services.story_service import find_story_by_title

logger = logging.getLogger(__name__)

READABLE_ID_PREFIX = "TC-"
_READABLE_ID_RE = re.compile(r"^TC-(\d+)$")

TITLE_MAX = 500


def next_readable_id(project_id: int) -> str:
    """Next free TC-NNNN identifier in the project."""
    highest = 0
    rows = (
        db.session.query(TestCase.readable_id)
        .filter(TestCase.project_id == project_id)
        .filter(TestCase.readable_id.like(f"{READABLE_ID_PREFIX}%"))
        .all()
    )
    for (readable_id,) in rows:
        match = _READABLE_ID_RE.match(readable_id or "")
        if match:
            highest = max(highest, int(match.group(1)))
    return f"{READABLE_ID_PREFIX}{highest + 1:04d}"


def encode_test_data(value) -> str:
    """Test data is stored as text; structured values are JSON-encoded."""
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value)


def _validated_title(value) -> str:
    title = str(value or "").strip()
    if not title:
        raise ValidationError("Test case title is required", details={"title": "required"})
    if len(title) > TITLE_MAX:
        raise ValidationError(f"Test case title must be at most {TITLE_MAX} characters",
                              details={"title": f"max {TITLE_MAX}"})
    return title


def _validated_choice(field: str, value, allowed: set, default):
    if value in (None, ""):
        return default
    value = str(value).strip().lower()
    if value not in allowed:
        raise ValidationError(
            f"{field} must be one of: {', '.join(sorted(allowed))}",
            details={field: value},
        )
    return value


def _validated_story_id(project_id: int, story_id):
    if story_id in (None, ""):
        return None
    try:
        story_id = int(story_id)
    except (TypeError, ValueError):
        raise ValidationError("user_story_id must be an integer", details={"user_story_id": story_id})
    story = db.session.get(UserStory, story_id)
    if not story or story.project_id != project_id:
        raise ValidationError("User story not found for project", details={"user_story_id": story_id})
    return story_id


# ── Queries ──────────────────────────────────────────────────────────────────


def list_test_cases(project_id: int, *, user_story_id=None, status=None, priority=None, search=None):
    q = TestCase.query.filter_by(project_id=project_id)
    if user_story_id:
        q = q.filter(TestCase.user_story_id == int(user_story_id))
    if status:
        q = q.filter(TestCase.status == status)
    if priority:
        q = q.filter(TestCase.priority == priority)
    if search:
        term = f"%{search}%"
        q = q.filter(db.or_(
            TestCase.title.ilike(term),
            TestCase.readable_id.ilike(term),
            TestCase.description.ilike(term),
        ))
    return q.order_by(TestCase.created_at.desc(), TestCase.id.desc())


# ── Mutations ────────────────────────────────────────────────────────────────


def create_test_case(project_id: int, data: dict) -> TestCase:
    tc = TestCase(
        project_id=project_id,
        user_story_id=_validated_story_id(project_id, data.get("user_story_id")),
        readable_id=(str(data.get("readable_id")).strip()[:50] if data.get("readable_id")
                     else next_readable_id(project_id)),
        title=_validated_title(data.get("title")),
        description=data.get("description") or "",
        steps=join_steps(data.get("steps")),
        expected_result=data.get("expected_result") or "",
        test_data=encode_test_data(data.get("test_data")),
        priority=_validated_choice("priority", data.get("priority"), TEST_CASE_PRIORITIES, "medium"),
        status=_validated_choice("status", data.get("status"), TEST_CASE_STATUSES, DEFAULT_STATUS),
        test_type=_validated_choice("test_type", data.get("test_type"), TEST_CASE_TYPES, None),
        category=_validated_choice("category", data.get("category"), TEST_CASE_CATEGORIES, None),
    )
    db.session.add(tc)
    db.session.flush()
    return tc


def update_test_case(tc: TestCase, data: dict) -> TestCase:
    if "title" in data:
        tc.title = _validated_title(data.get("title"))
    for field in ("description", "expected_result"):
        if field in data:
            setattr(tc, field, data.get(field) or "")
    if "steps" in data:
        tc.steps = join_steps(data.get("steps"))
    if "test_data" in data:
        tc.test_data = encode_test_data(data.get("test_data"))
    if "priority" in data:
        tc.priority = _validated_choice("priority", data.get("priority"), TEST_CASE_PRIORITIES, tc.priority)
    if "status" in data:
        tc.status = _validated_choice("status", data.get("status"), TEST_CASE_STATUSES, tc.status)
    if "user_story_id" in data:
        tc.user_story_id = _validated_story_id(tc.project_id, data.get("user_story_id"))
    db.session.flush()
    return tc


def update_status(tc: TestCase, status) -> TestCase:
    """Record an execution result."""
    if not status:
        raise ValidationError("status is required", details={"status": "required"})
    tc.status = _validated_choice("status", status, TEST_CASE_STATUSES, tc.status)
    db.session.flush()
    logger.info("Test case status id=%s status=%s", tc.id, tc.status)
    return tc


def delete_test_case(tc: TestCase) -> None:
    db.session.delete(tc)
    db.session.flush()


# ── Import ───────────────────────────────────────────────────────────────────


def _row_value(row: dict, *keys: str, default=None):
    for key in keys:
        if row.get(key) not in (None, ""):
            return row[key]
    return default


def import_test_cases(project_id: int, rows: list) -> dict:
    """Import spreadsheet-style rows into the catalog.

    Each row names its story by title (case-insensitive). Rows whose story is
    missing are skipped and the title reported. A ``test_id`` that already
    exists in the project updates that case; otherwise the row is inserted.
    Imported cases always start as not-run.

    Returns:
        {created, updated, skipped, missing_stories}
    """
    if not isinstance(rows, list) or not rows:
        raise ValidationError("rows must be a non-empty list", details={"rows": "required"})

    summary = {"created": 0, "updated": 0, "skipped": 0, "missing_stories": []}
    story_cache: dict[str, int | None] = {}

    for index, row in enumerate(rows):
        if not isinstance(row, dict):
            raise ValidationError(f"Row {index + 1} must be an object", details={"row": index + 1})

        story_title = str(_row_value(row, "story_title", "storyTitle", "user_story", default="")).strip()
        title = str(_row_value(row, "title", "test_case_title", default="")).strip()
        if not story_title or not title:
            summary["skipped"] += 1
            continue

        key = story_title.lower()
        if key not in story_cache:
            story = find_story_by_title(project_id, story_title)
            story_cache[key] = story.id if story else None
        story_id = story_cache[key]
        if story_id is None:
            summary["skipped"] += 1
            if story_title not in summary["missing_stories"]:
                summary["missing_stories"].append(story_title)
            continue

        fields = {
            "user_story_id": story_id,
            "title": title[:TITLE_MAX],
            "description": _row_value(row, "description", default=""),
            "steps": join_steps(_row_value(row, "steps", "test_steps", default="")),
            "expected_result": _row_value(row, "expected_result", "expectedResult", default=""),
            "test_data": encode_test_data(_row_value(row, "test_data", "testData", default="")),
            "priority": _validated_choice(
                "priority", _row_value(row, "priority"), TEST_CASE_PRIORITIES, "medium",
            ),
            "status": DEFAULT_STATUS,
        }

        test_id = str(_row_value(row, "test_id", "testId", "readable_id", default="")).strip()[:50]
        existing = None
        if test_id:
            existing = TestCase.query.filter_by(project_id=project_id, readable_id=test_id).first()

        if existing:
            for attr, value in fields.items():
                setattr(existing, attr, value)
            summary["updated"] += 1
        else:
            db.session.add(TestCase(
                project_id=project_id,
                readable_id=test_id or next_readable_id(project_id),
                **fields,
            ))
            summary["created"] += 1
        db.session.flush()

    logger.info("Test case import project_id=%s created=%d updated=%d skipped=%d",
                project_id, summary["created"], summary["updated"], summary["skipped"])
    return summary
