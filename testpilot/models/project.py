"""Project domain model: the container for stories and test cases.

Deleting a project only stamps ``deleted_at``; its stories and test cases
stay in place and the project can be restored.
"""

from datetime import datetime, timezone

from testpilot.models import db

MEMBER_ROLES = {"owner", "editor", "viewer"}


class Project(db.Model):
    """Top-level workspace owning user stories and test cases."""

    __tablename__ = "projects"

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False)
    description = db.Column(db.Text, nullable=True)
    created_by = db.Column(db.String(150), nullable=False, default="system")

    deleted_at = db.Column(db.DateTime(timezone=True), nullable=True, index=True)
    deleted_by = db.Column(db.String(150), nullable=True)

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

    stories = db.relationship("UserStory", backref="project", lazy="dynamic")
    test_cases = db.relationship("TestCase", backref="project", lazy="dynamic")
    members = db.relationship(
        "ProjectMember", backref="project", lazy="dynamic",
        cascade="all, delete-orphan",
    )

    @classmethod
    def active(cls):
        return cls.query.filter(cls.deleted_at.is_(None))

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None

    def mark_deleted(self, by: str = "system"):
        self.deleted_at = datetime.now(timezone.utc)
        self.deleted_by = by

    def restore(self):
        self.deleted_at = None
        self.deleted_by = None

    def to_dict(self, include_counts=False) -> dict:
        """Serialize core project fields for API responses."""
        result = {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
            "deleted_at": self.deleted_at.isoformat() if self.deleted_at else None,
            "deleted_by": self.deleted_by,
        }
        if include_counts:
            result["member_count"] = self.members.count()
            result["story_count"] = self.stories.count()
            result["test_case_count"] = self.test_cases.count()
        return result

    def __repr__(self):
        return f"<Project {self.id}: {self.name}>"


class ProjectMember(db.Model):
    """A user granted access to a project."""

    __tablename__ = "project_members"

    id = db.Column(db.Integer, primary_key=True)
    project_id = db.Column(
        db.Integer,
        db.ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user = db.Column(db.String(150), nullable=False)
    role = db.Column(
        db.String(20), nullable=False, default="viewer",
        comment="owner | editor | viewer",
    )
    created_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )

    __table_args__ = (
        db.UniqueConstraint("project_id", "user", name="uq_project_members_project_user"),
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "project_id": self.project_id,
            "user": self.user,
            "role": self.role,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<ProjectMember {self.user}@{self.project_id} ({self.role})>"
