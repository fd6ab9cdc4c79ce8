"""
TestPilot
Project Blueprint - project CRUD, soft delete and membership.

Endpoints:
    GET    /api/v1/projects                          - List active projects
    POST   /api/v1/projects                          - Create project
    GET    /api/v1/projects/<pid>                    - Detail (+ counts)
    PUT    /api/v1/projects/<pid>                    - Update
    DELETE /api/v1/projects/<pid>                    - Soft delete
    POST   /api/v1/projects/<pid>/restore            - Restore soft-deleted project

    GET    /api/v1/projects/<pid>/members            - List members
    POST   /api/v1/projects/<pid>/members            - Add member
    DELETE /api/v1/projects/<pid>/members/<mid>      - Remove member
"""

import logging

from flask import Blueprint, jsonify, request

import testpilot.services.project_service as project_service
from testpilot.blueprints import paginate_query, register_error_handlers
from testpilot.models.project import Project
from testpilot.utils.helpers import actor, db_commit_or_error, get_or_404

logger = logging.getLogger(__name__)

project_bp = Blueprint("project", __name__, url_prefix="/api/v1")
register_error_handlers(project_bp)


@project_bp.route("/projects", methods=["GET"])
def list_projects():
    """List active projects, most recently updated first, with member counts."""
    include_deleted = request.args.get("include_deleted", "false").lower() in ("true", "1")
    projects, total = paginate_query(project_service.list_projects(include_deleted=include_deleted))
    return jsonify({"items": [p.to_dict(include_counts=True) for p in projects], "total": total})


@project_bp.route("/projects", methods=["POST"])
def create_project():
    data = request.get_json(silent=True) or {}
    project = project_service.create_project(data, created_by=actor(data))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(project.to_dict(include_counts=True)), 201


@project_bp.route("/projects/<int:pid>", methods=["GET"])
def get_project(pid):
    project, err = get_or_404(Project, pid)
    if err:
        return err
    return jsonify(project.to_dict(include_counts=True))


@project_bp.route("/projects/<int:pid>", methods=["PUT"])
def update_project(pid):
    project, err = get_or_404(Project, pid)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    project_service.update_project(project, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(project.to_dict(include_counts=True))


@project_bp.route("/projects/<int:pid>", methods=["DELETE"])
def delete_project(pid):
    project, err = get_or_404(Project, pid)
    if err:
        return err
    project_service.delete_project(project, deleted_by=actor(request.get_json(silent=True)))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Project deleted", "id": pid})


@project_bp.route("/projects/<int:pid>/restore", methods=["POST"])
def restore_project(pid):
    project = project_service.restore_project(pid)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(project.to_dict(include_counts=True))


# ═════════════════════════════════════════════════════════════════════════
# Membership
# ═════════════════════════════════════════════════════════════════════════


@project_bp.route("/projects/<int:pid>/members", methods=["GET"])
def list_members(pid):
    project, err = get_or_404(Project, pid)
    if err:
        return err
    members = project_service.list_members(project)
    return jsonify({"items": [m.to_dict() for m in members], "total": len(members)})


@project_bp.route("/projects/<int:pid>/members", methods=["POST"])
def add_member(pid):
    project, err = get_or_404(Project, pid)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    member = project_service.add_member(project, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(member.to_dict()), 201


@project_bp.route("/projects/<int:pid>/members/<int:mid>", methods=["DELETE"])
def remove_member(pid, mid):
    project, err = get_or_404(Project, pid)
    if err:
        return err
    project_service.remove_member(project, mid)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Member removed", "id": mid})
