"""Project service layer: project CRUD, soft delete and membership.

Transaction policy: methods use flush() for ID generation, never commit().
Caller (route handler) is responsible for db.session.commit().
"""
import logging

from testpilot.core.exceptions import ConflictError, NotFoundError, ValidationError
from testpilot.models import db
from testpilot.models.project import MEMBER_ROLES, Project, ProjectMember

logger = logging.getLogger(__name__)

NAME_MAX = 255
DESCRIPTION_MAX = 2000


def _validated_name(value) -> str:
    name = str(value or "").strip()
    if not name:
        raise ValidationError("Project name is required", details={"name": "required"})
    if len(name) > NAME_MAX:
        raise ValidationError(
            f"Project name must be at most {NAME_MAX} characters",
            details={"name": f"max {NAME_MAX}"},
        )
    return name


def _validated_description(value) -> str:
    description = str(value or "").strip()
    if len(description) > DESCRIPTION_MAX:
        raise ValidationError(
            f"Project description must be at most {DESCRIPTION_MAX} characters",
            details={"description": f"max {DESCRIPTION_MAX}"},
        )
    return description


def list_projects(include_deleted: bool = False):
    """Projects ordered by last update, newest first."""
    query = Project.query if include_deleted else Project.active()
    return query.order_by(Project.updated_at.desc(), Project.id.desc())


def create_project(data: dict, created_by: str = "system") -> Project:
    """Create a project; the creator becomes its owner."""
    project = Project(
        name=_validated_name(data.get("name")),
        description=_validated_description(data.get("description")),
        created_by=created_by,
    )
    db.session.add(project)
    db.session.flush()

    db.session.add(ProjectMember(project_id=project.id, user=created_by, role="owner"))
    db.session.flush()
    logger.info("Project created id=%s name=%r", project.id, project.name)
    return project


def update_project(project: Project, data: dict) -> Project:
    if "name" in data:
        project.name = _validated_name(data.get("name"))
    if "description" in data:
        project.description = _validated_description(data.get("description"))
    db.session.flush()
    return project


def delete_project(project: Project, deleted_by: str = "system") -> None:
    """Soft delete: the row and its stories stay, listings hide it."""
    project.mark_deleted(deleted_by)
    db.session.flush()
    logger.info("Project soft-deleted id=%s", project.id)


def restore_project(project_id: int) -> Project:
    project = db.session.get(Project, project_id)
    if not project:
        raise NotFoundError(resource="Project", resource_id=project_id)
    if not project.is_deleted:
        raise ValidationError("Project is not deleted", details={"deleted_at": None})
    project.restore()
    db.session.flush()
    return project


# ── Membership ────────────────────────────────────────────────────────────────


def list_members(project: Project) -> list[ProjectMember]:
    return project.members.order_by(ProjectMember.created_at.asc(), ProjectMember.id.asc()).all()


def add_member(project: Project, data: dict) -> ProjectMember:
    user = str(data.get("user") or "").strip()
    if not user:
        raise ValidationError("user is required", details={"user": "required"})
    if len(user) > 150:
        raise ValidationError("user must be at most 150 characters", details={"user": "max 150"})

    role = str(data.get("role") or "viewer").strip().lower()
    if role not in MEMBER_ROLES:
        raise ValidationError(
            f"role must be one of: {', '.join(sorted(MEMBER_ROLES))}",
            details={"role": role},
        )

    if project.members.filter_by(user=user).first():
        raise ConflictError(resource="ProjectMember", field="user", value=user)

    member = ProjectMember(project_id=project.id, user=user, role=role)
    db.session.add(member)
    db.session.flush()
    return member


def remove_member(project: Project, member_id: int) -> None:
    member = db.session.get(ProjectMember, member_id)
    if not member or member.project_id != project.id:
        raise NotFoundError(resource="ProjectMember", resource_id=member_id)
    db.session.delete(member)
    db.session.flush()
