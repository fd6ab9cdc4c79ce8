"""TrackerGateway: HTTP outcome classification and the Jira / Azure DevOps calls.

The gateway gets a MagicMock session, so no network is touched.
"""

import json
from unittest.mock import MagicMock

import pytest
import requests

from testpilot.core.exceptions import ProviderAuthError, ProviderError, ResponseParseError
from testpilot.integrations.config import AzureDevOpsConfig, JiraConfig
from testpilot.integrations.tracker_gateway import TrackerGateway


def _response(status_code=200, body=None, text=None) -> MagicMock:
    """Build a lightweight requests.Response stand-in."""
    r = MagicMock()
    r.status_code = status_code
    r.ok = 200 <= status_code < 400
    if text is None:
        text = json.dumps(body) if body is not None else ""
    r.text = text
    r.content = text.encode()
    if body is not None:
        r.json.return_value = body
    else:
        r.json.side_effect = ValueError("No JSON object could be decoded")
    return r


def _gateway(*responses):
    session = MagicMock()
    session.request.side_effect = list(responses)
    return TrackerGateway(session=session, timeout=5), session


_JIRA = JiraConfig(url="https://acme.atlassian.net", email="qa@acme.test",
                   api_token="jira-token", project_key="SHOP")
_ADO = AzureDevOpsConfig(organization_url="https://dev.azure.com/acme", project_name="Shop",
                         personal_access_token="ado-pat")


class TestRequestClassification:
    def test_unauthorized(self):
        gw, _ = _gateway(_response(401, text="Unauthorized"))
        with pytest.raises(ProviderAuthError) as exc:
            gw.fetch_jira_issues(_JIRA)
        assert exc.value.status_code == 401
        assert exc.value.provider == "jira"

    def test_forbidden_is_auth_failure(self):
        gw, _ = _gateway(_response(403, text="Forbidden"))
        with pytest.raises(ProviderAuthError):
            gw.fetch_azure_devops_work_items(_ADO)

    def test_html_sign_in_page(self):
        gw, _ = _gateway(_response(200, text="<!DOCTYPE html><html><body>Sign in</body></html>"))
        with pytest.raises(ProviderAuthError) as exc:
            gw.fetch_azure_devops_work_items(_ADO)
        assert "HTML" in str(exc.value)

    def test_not_found_names_the_project(self):
        gw, _ = _gateway(_response(404, text="nope"))
        with pytest.raises(ProviderError) as exc:
            gw.fetch_jira_issues(_JIRA)
        assert not isinstance(exc.value, ProviderAuthError)
        assert "SHOP" in str(exc.value)
        assert exc.value.status_code == 404

    def test_server_error(self):
        gw, _ = _gateway(_response(500, text="Internal Server Error"))
        with pytest.raises(ProviderError) as exc:
            gw.fetch_jira_issues(_JIRA)
        assert exc.value.status_code == 500
        assert "HTTP 500" in str(exc.value)

    def test_network_failure(self):
        session = MagicMock()
        session.request.side_effect = requests.ConnectionError("connection refused")
        gw = TrackerGateway(session=session)
        with pytest.raises(ProviderError) as exc:
            gw.fetch_jira_issues(_JIRA)
        assert exc.value.status_code is None
        assert "connection refused" in str(exc.value)

    def test_timeout(self):
        session = MagicMock()
        session.request.side_effect = requests.Timeout()
        gw = TrackerGateway(session=session, timeout=5)
        with pytest.raises(ProviderError) as exc:
            gw.fetch_jira_issues(_JIRA)
        assert "timed out after 5s" in str(exc.value)

    def test_non_json_body(self):
        gw, _ = _gateway(_response(200, text="plain text, not json"))
        with pytest.raises(ResponseParseError) as exc:
            gw.fetch_jira_issues(_JIRA)
        assert exc.value.raw_content == "plain text, not json"

    def test_missing_issues_list(self):
        gw, _ = _gateway(_response(200, body={"total": 0}))
        with pytest.raises(ResponseParseError):
            gw.fetch_jira_issues(_JIRA)


class TestJira:
    def test_search_request(self):
        issues = [{"key": "SHOP-1", "fields": {"summary": "Guest Checkout"}}]
        gw, session = _gateway(_response(200, body={"issues": issues}))

        assert gw.fetch_jira_issues(_JIRA) == issues

        args, kwargs = session.request.call_args
        assert args == ("GET", "https://acme.atlassian.net/rest/api/3/search")
        assert kwargs["params"]["jql"] == "project=SHOP"
        assert kwargs["params"]["maxResults"] == 50
        assert kwargs["auth"].username == "qa@acme.test"
        assert kwargs["auth"].password == "jira-token"
        assert kwargs["headers"]["Accept"] == "application/json"
        assert kwargs["timeout"] == 5

    def test_empty_project(self):
        gw, _ = _gateway(_response(200, body={"issues": []}))
        assert gw.fetch_jira_issues(_JIRA) == []


class TestAzureDevOps:
    def test_two_step_fetch(self):
        items = [{"id": 11, "fields": {"System.Title": "Refunds"}}]
        gw, session = _gateway(
            _response(200, body={"workItems": [{"id": 11}, {"id": 12}]}),
            _response(200, body={"value": items}),
        )

        assert gw.fetch_azure_devops_work_items(_ADO) == items
        assert session.request.call_count == 2

        wiql_call, detail_call = session.request.call_args_list
        assert wiql_call.args == ("POST", "https://dev.azure.com/acme/Shop/_apis/wit/wiql")
        assert "[System.TeamProject] = 'Shop'" in wiql_call.kwargs["json"]["query"]
        assert "'User Story'" in wiql_call.kwargs["json"]["query"]
        assert wiql_call.kwargs["auth"].username == ""
        assert wiql_call.kwargs["auth"].password == "ado-pat"
        assert detail_call.args == ("GET", "https://dev.azure.com/acme/Shop/_apis/wit/workitems")
        assert detail_call.kwargs["params"]["ids"] == "11,12"
        assert detail_call.kwargs["params"]["$expand"] == "Fields"

    def test_no_ids_skips_second_call(self):
        gw, session = _gateway(_response(200, body={"workItems": []}))
        assert gw.fetch_azure_devops_work_items(_ADO) == []
        assert session.request.call_count == 1

    def test_story_ids_capped(self):
        gw, session = _gateway(
            _response(200, body={"workItems": [{"id": i} for i in range(1, 80)]}),
            _response(200, body={"value": []}),
        )
        gw.fetch_azure_devops_work_items(_ADO)
        ids = session.request.call_args_list[1].kwargs["params"]["ids"].split(",")
        assert len(ids) == 50

    def test_project_name_quoted_in_wiql(self):
        cfg = AzureDevOpsConfig(organization_url="https://dev.azure.com/acme",
                                project_name="Bob's Shop", personal_access_token="pat")
        gw, session = _gateway(_response(200, body={"workItems": []}))
        gw.fetch_azure_devops_work_items(cfg)
        assert "'Bob''s Shop'" in session.request.call_args.kwargs["json"]["query"]

    def test_defect_query(self):
        bugs = [{"id": 5, "fields": {"System.Title": "Crash"}}]
        gw, session = _gateway(
            _response(200, body={"workItems": [{"id": 5}]}),
            _response(200, body={"value": bugs}),
        )
        assert gw.fetch_azure_devops_defects(_ADO) == bugs
        assert "'Bug'" in session.request.call_args_list[0].kwargs["json"]["query"]

    def test_detail_call_failure(self):
        gw, _ = _gateway(
            _response(200, body={"workItems": [{"id": 5}]}),
            _response(500, text="boom"),
        )
        with pytest.raises(ProviderError):
            gw.fetch_azure_devops_work_items(_ADO)
