"""Test case catalog: CRUD, execution status, readable ids and row import."""

from testpilot.models.testing import join_steps, split_steps


def _create_story(client, pid, title="Guest Checkout"):
    res = client.post(f"/api/v1/projects/{pid}/stories", json={"title": title})
    assert res.status_code == 201
    return res.get_json()


def _create_test_case(client, pid, **overrides):
    payload = {"title": "Pay as guest", "steps": ["Open cart", "", "Pay"], "priority": "high"}
    payload.update(overrides)
    res = client.post(f"/api/v1/projects/{pid}/test-cases", json=payload)
    assert res.status_code == 201, res.get_json()
    return res.get_json()


class TestSteps:
    def test_join_list(self):
        assert join_steps(["a", " b ", "", "  "]) == "a\nb"

    def test_join_string_kept(self):
        assert join_steps("a\nb") == "a\nb"

    def test_join_none(self):
        assert join_steps(None) == ""

    def test_split(self):
        assert split_steps("a\n\n b \n") == ["a", "b"]
        assert split_steps(None) == []


class TestTestCaseCrud:
    def test_create_defaults(self, client, project):
        tc = _create_test_case(client, project["id"])
        assert tc["readable_id"] == "TC-0001"
        assert tc["status"] == "not-run"
        assert tc["steps"] == "Open cart\nPay"
        assert tc["steps_list"] == ["Open cart", "Pay"]

    def test_readable_ids_increment(self, client, project):
        _create_test_case(client, project["id"])
        _create_test_case(client, project["id"], readable_id="LEGACY-7")
        third = _create_test_case(client, project["id"])
        assert third["readable_id"] == "TC-0002"

    def test_readable_ids_are_per_project(self, client, project):
        other = client.post("/api/v1/projects", json={"name": "Other"}).get_json()
        _create_test_case(client, project["id"])
        tc = _create_test_case(client, other["id"])
        assert tc["readable_id"] == "TC-0001"

    def test_structured_test_data_encoded(self, client, project):
        tc = _create_test_case(client, project["id"], test_data={"user": "guest"})
        assert tc["test_data"] == '{"user": "guest"}'

    def test_requires_title(self, client, project):
        res = client.post(f"/api/v1/projects/{project['id']}/test-cases", json={"steps": "x"})
        assert res.status_code == 422

    def test_story_must_belong_to_project(self, client, project):
        other = client.post("/api/v1/projects", json={"name": "Other"}).get_json()
        foreign = _create_story(client, other["id"])
        res = client.post(f"/api/v1/projects/{project['id']}/test-cases",
                          json={"title": "X", "user_story_id": foreign["id"]})
        assert res.status_code == 422

    def test_list_filters(self, client, project):
        story = _create_story(client, project["id"])
        _create_test_case(client, project["id"], title="Linked", user_story_id=story["id"])
        _create_test_case(client, project["id"], title="Unlinked", priority="low")

        base = f"/api/v1/projects/{project['id']}/test-cases"
        assert client.get(base).get_json()["total"] == 2
        by_story = client.get(f"{base}?user_story_id={story['id']}").get_json()
        assert [tc["title"] for tc in by_story["items"]] == ["Linked"]
        by_priority = client.get(f"{base}?priority=low").get_json()
        assert [tc["title"] for tc in by_priority["items"]] == ["Unlinked"]
        by_search = client.get(f"{base}?search=unlink").get_json()
        assert [tc["title"] for tc in by_search["items"]] == ["Unlinked"]

    def test_bad_story_filter(self, client, project):
        res = client.get(f"/api/v1/projects/{project['id']}/test-cases?user_story_id=abc")
        assert res.status_code == 400

    def test_update(self, client, project):
        tc = _create_test_case(client, project["id"])
        res = client.put(f"/api/v1/test-cases/{tc['id']}", json={
            "title": "Pay as guest (updated)", "steps": ["Only step"], "expected_result": "Paid",
        })
        assert res.status_code == 200
        body = res.get_json()
        assert body["title"] == "Pay as guest (updated)"
        assert body["steps_list"] == ["Only step"]
        assert body["expected_result"] == "Paid"
        assert body["priority"] == "high"

    def test_delete(self, client, project):
        tc = _create_test_case(client, project["id"])
        assert client.delete(f"/api/v1/test-cases/{tc['id']}").status_code == 200
        assert client.get(f"/api/v1/test-cases/{tc['id']}").status_code == 404


class TestExecutionStatus:
    def test_update_status(self, client, project):
        tc = _create_test_case(client, project["id"])
        res = client.patch(f"/api/v1/test-cases/{tc['id']}/status", json={"status": "passed"})
        assert res.status_code == 200
        assert res.get_json()["status"] == "passed"

    def test_invalid_status(self, client, project):
        tc = _create_test_case(client, project["id"])
        res = client.patch(f"/api/v1/test-cases/{tc['id']}/status", json={"status": "pending"})
        assert res.status_code == 422
        assert client.get(f"/api/v1/test-cases/{tc['id']}").get_json()["status"] == "not-run"

    def test_missing_status(self, client, project):
        tc = _create_test_case(client, project["id"])
        res = client.patch(f"/api/v1/test-cases/{tc['id']}/status", json={})
        assert res.status_code == 422

    def test_statistics_endpoint(self, client, project):
        for status in ("passed", "passed", "failed", None):
            tc = _create_test_case(client, project["id"])
            if status:
                client.patch(f"/api/v1/test-cases/{tc['id']}/status", json={"status": status})

        stats = client.get(f"/api/v1/projects/{project['id']}/statistics").get_json()
        assert stats["total"] == 4
        assert stats["passed"] == 2
        assert stats["failed"] == 1
        assert stats["pending"] == 1
        assert stats["pass_rate"] == 50.0

    def test_statistics_empty_project(self, client, project):
        stats = client.get(f"/api/v1/projects/{project['id']}/statistics").get_json()
        assert stats["total"] == 0
        assert stats["pass_rate"] == 0


class TestImport:
    def _import(self, client, pid, rows):
        return client.post(f"/api/v1/projects/{pid}/test-cases/import", json={"rows": rows})

    def test_import_creates_and_updates(self, client, project):
        story = _create_story(client, project["id"])
        existing = _create_test_case(client, project["id"], user_story_id=story["id"], readable_id="TC-0100")
        client.patch(f"/api/v1/test-cases/{existing['id']}/status", json={"status": "failed"})

        res = self._import(client, project["id"], [
            {"story_title": "guest checkout", "test_id": "TC-0100", "title": "Pay as guest v2",
             "steps": "Open cart\nPay", "priority": "low"},
            {"story_title": "Guest Checkout", "title": "Guest enters address"},
            {"story_title": "Guest Checkout", "test_id": "TC-0200", "title": "Guest enters coupon"},
        ])
        assert res.status_code == 200
        assert res.get_json() == {"created": 2, "updated": 1, "skipped": 0, "missing_stories": []}

        updated = client.get(f"/api/v1/test-cases/{existing['id']}").get_json()
        assert updated["title"] == "Pay as guest v2"
        assert updated["priority"] == "low"
        assert updated["status"] == "not-run"

        items = client.get(f"/api/v1/projects/{project['id']}/test-cases").get_json()["items"]
        assert {tc["readable_id"] for tc in items} == {"TC-0100", "TC-0101", "TC-0200"}

    def test_missing_story_reported(self, client, project):
        _create_story(client, project["id"])
        res = self._import(client, project["id"], [
            {"story_title": "Wishlist", "title": "Add to wishlist"},
            {"story_title": "Wishlist", "title": "Remove from wishlist"},
            {"story_title": "Guest Checkout", "title": "Pay"},
        ])
        body = res.get_json()
        assert body["created"] == 1
        assert body["skipped"] == 2
        assert body["missing_stories"] == ["Wishlist"]

    def test_rows_required(self, client, project):
        res = client.post(f"/api/v1/projects/{project['id']}/test-cases/import", json={})
        assert res.status_code == 400
        res = self._import(client, project["id"], [])
        assert res.status_code == 422
