"""
TestPilot
Test case model and execution status vocabulary.

Steps are stored as a single newline-delimited string and split/joined at the
API boundary (see ``join_steps`` / ``split_steps``).
"""

from datetime import datetime, timezone

from testpilot.models import db

# ── Constants ────────────────────────────────────────────────────────────────

TEST_CASE_STATUSES = {"not-run", "passed", "failed", "blocked"}
TEST_CASE_PRIORITIES = {"low", "medium", "high"}
TEST_CASE_TYPES = {"positive", "negative", "edge", "boundary"}
TEST_CASE_CATEGORIES = {"functional", "ui", "integration", "performance"}

DEFAULT_STATUS = "not-run"


def join_steps(steps) -> str:
    """Store-side form: a list is joined with newlines, a string kept as-is."""
    if steps is None:
        return ""
    if isinstance(steps, (list, tuple)):
        return "\n".join(str(s).strip() for s in steps if str(s).strip())
    return str(steps)


def split_steps(steps: str | None) -> list[str]:
    """API-side form: non-blank lines of the stored string."""
    if not steps:
        return []
    return [line.strip() for line in steps.split("\n") if line.strip()]


class TestCase(db.Model):
    """
    Structured, human-executable test description tied to a story.

    Status lifecycle is a plain field: not-run | passed | failed | blocked.
    """

    __tablename__ = "test_cases"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_story_id = db.Column(
        db.Integer,
        db.ForeignKey("user_stories.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # ── Identification
    readable_id = db.Column(
        db.String(50), nullable=True, index=True,
        comment="Human-friendly id, e.g. TC-0001; may be supplied on import",
    )
    title = db.Column(db.String(500), nullable=False)
    description = db.Column(db.Text, default="")

    # ── Test details
    steps = db.Column(db.Text, default="", comment="Newline-delimited step list")
    expected_result = db.Column(db.Text, default="")
    test_data = db.Column(db.Text, default="")
    priority = db.Column(
        db.String(20), nullable=False, default="medium",
        comment="low | medium | high",
    )
    status = db.Column(
        db.String(20), nullable=False, default=DEFAULT_STATUS,
        comment="not-run | passed | failed | blocked",
    )
    test_type = db.Column(
        db.String(20), nullable=True,
        comment="positive | negative | edge | boundary",
    )
    category = db.Column(
        db.String(20), nullable=True,
        comment="functional | ui | integration | performance",
    )

    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user_story_id": self.user_story_id,
            "readable_id": self.readable_id,
            "title": self.title,
            "description": self.description,
            "steps": self.steps or "",
            "steps_list": split_steps(self.steps),
            "expected_result": self.expected_result,
            "test_data": self.test_data,
            "priority": self.priority,
            "status": self.status,
            "test_type": self.test_type,
            "category": self.category,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    def __repr__(self):
        return f"<TestCase {self.readable_id or self.id}: {self.title[:40]}>"
