"""
TestPilot
Story Blueprint - user story CRUD and tracker sync.

Endpoints:
    GET    /api/v1/projects/<pid>/stories        - List (filters: status, priority, search)
    POST   /api/v1/projects/<pid>/stories        - Create
    POST   /api/v1/projects/<pid>/stories/sync   - Pull stories from Jira / Azure DevOps
    GET    /api/v1/stories/<sid>                 - Detail
    PUT    /api/v1/stories/<sid>                 - Update
    DELETE /api/v1/stories/<sid>                 - Delete (test cases first)

Tracker credentials travel in the sync body under ``integrations``.
"""

import logging

from flask import Blueprint, jsonify, request

import testpilot.services.story_service as story_service
from testpilot.blueprints import paginate_query, register_error_handlers
from testpilot.integrations.config import IntegrationSettings
from testpilot.models.project import Project
from testpilot.models.story import UserStory
from testpilot.services.story_sync import sync_stories
from testpilot.utils.helpers import db_commit_or_error, get_or_404

logger = logging.getLogger(__name__)

story_bp = Blueprint("story", __name__, url_prefix="/api/v1")
register_error_handlers(story_bp)


@story_bp.route("/projects/<int:pid>/stories", methods=["GET"])
def list_stories(pid):
    _, err = get_or_404(Project, pid)
    if err:
        return err
    q = story_service.list_stories(
        pid,
        status=request.args.get("status"),
        priority=request.args.get("priority"),
        search=request.args.get("search"),
    )
    stories, total = paginate_query(q)
    return jsonify({"items": [s.to_dict(include_counts=True) for s in stories], "total": total})


@story_bp.route("/projects/<int:pid>/stories", methods=["POST"])
def create_story(pid):
    _, err = get_or_404(Project, pid)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    story = story_service.create_story(pid, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(story.to_dict()), 201


@story_bp.route("/projects/<int:pid>/stories/sync", methods=["POST"])
def sync_project_stories(pid):
    """Reconcile stories against every enabled tracker; per-provider failures are reported, not raised."""
    _, err = get_or_404(Project, pid)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    settings = IntegrationSettings.from_dict(data.get("integrations"))
    result = sync_stories(pid, settings)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(result.to_dict())


@story_bp.route("/stories/<int:sid>", methods=["GET"])
def get_story(sid):
    story, err = get_or_404(UserStory, sid)
    if err:
        return err
    return jsonify(story.to_dict(include_counts=True))


@story_bp.route("/stories/<int:sid>", methods=["PUT"])
def update_story(sid):
    story, err = get_or_404(UserStory, sid)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    story_service.update_story(story, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(story.to_dict())


@story_bp.route("/stories/<int:sid>", methods=["DELETE"])
def delete_story(sid):
    story, err = get_or_404(UserStory, sid)
    if err:
        return err
    removed = story_service.delete_story(story)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Story deleted", "id": sid, "test_cases_deleted": removed})
