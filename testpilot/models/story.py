"""
TestPilot
User story model.

A story's uniqueness within a project is a convention of the sync
reconciliation (case-insensitive title match), not a database constraint:
two manually created stories with the same title can coexist.
"""

from datetime import datetime, timezone

from testpilot.models import db

STORY_PRIORITIES = {"low", "medium", "high"}
STORY_STATUSES = {"draft", "ready", "in-progress", "completed"}
STORY_SOURCES = {"manual", "jira", "azure-devops"}


class UserStory(db.Model):
    """Unit of product requirement that test cases are generated against."""

    __tablename__ = "user_stories"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    title = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, default="")
    acceptance_criteria = db.Column(db.Text, default="")
    priority = db.Column(
        db.String(20), nullable=False, default="medium",
        comment="low | medium | high",
    )
    status = db.Column(
        db.String(20), nullable=False, default="draft",
        comment="draft | ready | in-progress | completed",
    )
    source = db.Column(
        db.String(20), nullable=False, default="manual",
        comment="manual | jira | azure-devops",
    )
    external_key = db.Column(
        db.String(100), nullable=True,
        comment="Issue key / work item id at the source; informational only",
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

    test_cases = db.relationship("TestCase", backref="user_story", lazy="dynamic")

    def to_dict(self, include_counts=False):
        result = {
            "id": self.id,
            "project_id": self.project_id,
            "title": self.title,
            "description": self.description,
            "acceptance_criteria": self.acceptance_criteria,
            "priority": self.priority,
            "status": self.status,
            "source": self.source,
            "external_key": self.external_key,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_counts:
            result["test_case_count"] = self.test_cases.count()
        return result

    def __repr__(self):
        return f"<UserStory {self.id}: {self.title[:40]}>"
