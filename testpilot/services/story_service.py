"""User story service layer.

Transaction policy: flush() only; the route handler commits.

Deleting a story removes its test cases first, then the story, in
application code rather than through a database cascade.
"""
import logging

from testpilot.core.exceptions import ValidationError
from testpilot.models import db
from testpilot.models.story import STORY_PRIORITIES, STORY_SOURCES, STORY_STATUSES, UserStory
from testpilot.models.testing import TestCase

logger = logging.getLogger(__name__)

TITLE_MAX = 255


def _validated_title(value) -> str:
    title = str(value or "").strip()
    if not title:
        raise ValidationError("Story title is required", details={"title": "required"})
    if len(title) > TITLE_MAX:
        raise ValidationError(
            f"Story title must be at most {TITLE_MAX} characters",
            details={"title": f"max {TITLE_MAX}"},
        )
    return title


def _validated_choice(field: str, value, allowed: set, default: str) -> str:
    if value in (None, ""):
        return default
    value = str(value).strip().lower()
    if value not in allowed:
        raise ValidationError(
            f"{field} must be one of: {', '.join(sorted(allowed))}",
            details={field: value},
        )
    return value


def list_stories(project_id: int, *, status=None, priority=None, search=None):
    q = UserStory.query.filter_by(project_id=project_id)
    if status:
        q = q.filter(UserStory.status == status)
    if priority:
        q = q.filter(UserStory.priority == priority)
    if search:
        term = f"%{search}%"
        q = q.filter(db.or_(UserStory.title.ilike(term), UserStory.description.ilike(term)))
    return q.order_by(UserStory.created_at.desc(), UserStory.id.desc())


def find_story_by_title(project_id: int, title: str) -> UserStory | None:
    """Case-insensitive exact title match within a project.

    Titles are folded in Python: SQLite's lower() leaves non-ASCII letters
    alone, so "Éclair" would never meet "éclair" in SQL. Whitespace is
    significant: "Login " and "login" are different stories.
    """
    wanted = title.casefold()
    candidates = (
        UserStory.query
        .filter(UserStory.project_id == project_id)
        .order_by(UserStory.id.asc())
    )
    return next((s for s in candidates if s.title.casefold() == wanted), None)


def create_story(project_id: int, data: dict) -> UserStory:
    story = UserStory(
        project_id=project_id,
        title=_validated_title(data.get("title")),
        description=data.get("description") or "",
        acceptance_criteria=data.get("acceptance_criteria") or "",
        priority=_validated_choice("priority", data.get("priority"), STORY_PRIORITIES, "medium"),
        status=_validated_choice("status", data.get("status"), STORY_STATUSES, "draft"),
        source=_validated_choice("source", data.get("source"), STORY_SOURCES, "manual"),
        external_key=data.get("external_key"),
    )
    db.session.add(story)
    db.session.flush()
    return story


def update_story(story: UserStory, data: dict) -> UserStory:
    if "title" in data:
        story.title = _validated_title(data.get("title"))
    for field in ("description", "acceptance_criteria"):
        if field in data:
            setattr(story, field, data.get(field) or "")
    if "priority" in data:
        story.priority = _validated_choice("priority", data.get("priority"), STORY_PRIORITIES, story.priority)
    if "status" in data:
        story.status = _validated_choice("status", data.get("status"), STORY_STATUSES, story.status)
    db.session.flush()
    return story


def delete_story(story: UserStory) -> int:
    """Delete the story's test cases, then the story. Returns the test-case count removed."""
    test_cases = TestCase.query.filter_by(user_story_id=story.id).all()
    for tc in test_cases:
        db.session.delete(tc)
    db.session.flush()
    removed = len(test_cases)

    db.session.delete(story)
    db.session.flush()
    logger.info("Story deleted id=%s test_cases_removed=%d", story.id, removed)
    return removed
