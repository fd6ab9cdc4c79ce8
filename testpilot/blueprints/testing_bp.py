"""
TestPilot
Testing Blueprint - test case catalog and execution status.

Endpoints:
    GET    /api/v1/projects/<pid>/test-cases          - List (filters: user_story_id, status, priority, search)
    POST   /api/v1/projects/<pid>/test-cases          - Create (auto TC-NNNN id)
    POST   /api/v1/projects/<pid>/test-cases/import   - Import rows matched to stories by title
    GET    /api/v1/projects/<pid>/statistics          - Execution statistics
    GET    /api/v1/test-cases/<cid>                   - Detail
    PUT    /api/v1/test-cases/<cid>                   - Update
    PATCH  /api/v1/test-cases/<cid>/status            - Record execution status
    DELETE /api/v1/test-cases/<cid>                   - Delete
"""

import logging

from flask import Blueprint, jsonify, request

import testpilot.services.test_case_service as test_case_service
from testpilot.blueprints import paginate_query, register_error_handlers
from testpilot.models.project import Project
from testpilot.models.testing import TestCase
from testpilot.services.report_service import project_statistics
from testpilot.utils.errors import E, api_error
from testpilot.utils.helpers import db_commit_or_error, get_or_404

logger = logging.getLogger(__name__)

testing_bp = Blueprint("testing", __name__, url_prefix="/api/v1")
register_error_handlers(testing_bp)


@testing_bp.route("/projects/<int:pid>/test-cases", methods=["GET"])
def list_test_cases(pid):
    _, err = get_or_404(Project, pid)
    if err:
        return err

    user_story_id = request.args.get("user_story_id")
    if user_story_id and not user_story_id.isdigit():
        return api_error(E.VALIDATION_INVALID, "user_story_id must be an integer")

    q = test_case_service.list_test_cases(
        pid,
        user_story_id=user_story_id,
        status=request.args.get("status"),
        priority=request.args.get("priority"),
        search=request.args.get("search"),
    )
    cases, total = paginate_query(q)
    return jsonify({"items": [tc.to_dict() for tc in cases], "total": total})


@testing_bp.route("/projects/<int:pid>/test-cases", methods=["POST"])
def create_test_case(pid):
    _, err = get_or_404(Project, pid)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    tc = test_case_service.create_test_case(pid, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(tc.to_dict()), 201


@testing_bp.route("/projects/<int:pid>/test-cases/import", methods=["POST"])
def import_test_cases(pid):
    _, err = get_or_404(Project, pid)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    if "rows" not in data:
        return api_error(E.VALIDATION_REQUIRED, "rows is required")
    summary = test_case_service.import_test_cases(pid, data["rows"])
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(summary)


@testing_bp.route("/projects/<int:pid>/statistics", methods=["GET"])
def get_statistics(pid):
    _, err = get_or_404(Project, pid)
    if err:
        return err
    return jsonify(project_statistics(pid))


@testing_bp.route("/test-cases/<int:cid>", methods=["GET"])
def get_test_case(cid):
    tc, err = get_or_404(TestCase, cid)
    if err:
        return err
    return jsonify(tc.to_dict())


@testing_bp.route("/test-cases/<int:cid>", methods=["PUT"])
def update_test_case(cid):
    tc, err = get_or_404(TestCase, cid)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    test_case_service.update_test_case(tc, data)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(tc.to_dict())


@testing_bp.route("/test-cases/<int:cid>/status", methods=["PATCH"])
def update_test_case_status(cid):
    tc, err = get_or_404(TestCase, cid)
    if err:
        return err
    data = request.get_json(silent=True) or {}
    test_case_service.update_status(tc, data.get("status"))
    err = db_commit_or_error()
    if err:
        return err
    return jsonify(tc.to_dict())


@testing_bp.route("/test-cases/<int:cid>", methods=["DELETE"])
def delete_test_case(cid):
    tc, err = get_or_404(TestCase, cid)
    if err:
        return err
    test_case_service.delete_test_case(tc)
    err = db_commit_or_error()
    if err:
        return err
    return jsonify({"message": "Test case deleted", "id": cid})
