"""User story API: CRUD and cascade delete."""

from testpilot.models import db
from testpilot.models.testing import TestCase


def _create_story(client, pid, **overrides):
    payload = {
        "title": "Guest Checkout",
        "description": "As a guest I want to check out without registering",
        "priority": "high",
    }
    payload.update(overrides)
    res = client.post(f"/api/v1/projects/{pid}/stories", json=payload)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


def _create_test_case(client, pid, story_id, **overrides):
    payload = {"title": "Pay as guest", "user_story_id": story_id, "steps": ["Open cart", "Pay"]}
    payload.update(overrides)
    res = client.post(f"/api/v1/projects/{pid}/test-cases", json=payload)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


class TestStoryCrud:
    def test_create_story_defaults(self, client, project):
        story = _create_story(client, project["id"], priority=None)
        assert story["priority"] == "medium"
        assert story["status"] == "draft"
        assert story["source"] == "manual"

    def test_create_requires_title(self, client, project):
        res = client.post(f"/api/v1/projects/{project['id']}/stories", json={"description": "x"})
        assert res.status_code == 422

    def test_title_max_length(self, client, project):
        res = client.post(f"/api/v1/projects/{project['id']}/stories", json={"title": "t" * 256})
        assert res.status_code == 422

    def test_invalid_status(self, client, project):
        res = client.post(f"/api/v1/projects/{project['id']}/stories", json={"title": "A", "status": "open"})
        assert res.status_code == 422
        assert res.get_json()["code"] == "ERR_PRECONDITION"

    def test_story_on_missing_project(self, client):
        res = client.post("/api/v1/projects/404/stories", json={"title": "A"})
        assert res.status_code == 404

    def test_same_title_allowed_twice(self, client, project):
        _create_story(client, project["id"])
        _create_story(client, project["id"])
        res = client.get(f"/api/v1/projects/{project['id']}/stories")
        assert res.get_json()["total"] == 2

    def test_list_filters(self, client, project):
        _create_story(client, project["id"], title="Login", status="ready", description="")
        _create_story(client, project["id"], title="Logout", description="")
        res = client.get(f"/api/v1/projects/{project['id']}/stories?status=ready")
        assert [s["title"] for s in res.get_json()["items"]] == ["Login"]
        res = client.get(f"/api/v1/projects/{project['id']}/stories?search=out")
        assert [s["title"] for s in res.get_json()["items"]] == ["Logout"]

    def test_update_story(self, client, project):
        story = _create_story(client, project["id"])
        res = client.put(f"/api/v1/stories/{story['id']}", json={"status": "in-progress", "acceptance_criteria": "AC1"})
        assert res.status_code == 200
        body = res.get_json()
        assert body["status"] == "in-progress"
        assert body["acceptance_criteria"] == "AC1"
        assert body["title"] == "Guest Checkout"

    def test_get_story_counts(self, client, project):
        story = _create_story(client, project["id"])
        _create_test_case(client, project["id"], story["id"])
        res = client.get(f"/api/v1/stories/{story['id']}")
        assert res.get_json()["test_case_count"] == 1


class TestStoryDelete:
    def test_delete_removes_test_cases(self, client, project):
        story = _create_story(client, project["id"])
        other = _create_story(client, project["id"], title="Registered Checkout")
        _create_test_case(client, project["id"], story["id"])
        _create_test_case(client, project["id"], story["id"], title="Guest pays by card")
        kept = _create_test_case(client, project["id"], other["id"])

        res = client.delete(f"/api/v1/stories/{story['id']}")
        assert res.status_code == 200
        assert res.get_json()["test_cases_deleted"] == 2

        assert client.get(f"/api/v1/stories/{story['id']}").status_code == 404
        remaining = [tc.id for tc in db.session.query(TestCase).all()]
        assert remaining == [kept["id"]]

    def test_delete_missing_story(self, client):
        assert client.delete("/api/v1/stories/321").status_code == 404
