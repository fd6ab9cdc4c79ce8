"""
Issue / work-item tracker gateway.

All outbound HTTP calls to Jira and Azure DevOps go through this class.
Direct `requests` calls in services or blueprints are FORBIDDEN.

Design follows `testpilot/ai/gateway.py`:
  - Credentials come from the typed config passed into each call
  - No retry, no backoff: a failure is reported to the caller, who decides
  - Timeout: 30 s (TRACKER_TIMEOUT)
  - Failures are raised as ProviderError / ProviderAuthError / ResponseParseError

Testability: pass a fake `session` to TrackerGateway() in tests, or
patch.object the module-level `tracker_gateway` singleton.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Any

import requests
from requests.auth import HTTPBasicAuth

from testpilot.core.exceptions import ProviderAuthError, ProviderError, ResponseParseError
from testpilot.integrations.config import AzureDevOpsConfig, JiraConfig

logger = logging.getLogger(__name__)

_DEFAULT_TIMEOUT = int(os.getenv("TRACKER_TIMEOUT", "30"))

# Page sizes: stories are bounded to the first page, defects feed metrics only
JIRA_MAX_RESULTS = 50
ADO_STORY_LIMIT = 50
ADO_DEFECT_LIMIT = 200

ADO_API_VERSION = "7.1"

JIRA_FIELDS = "summary,description,issuetype,priority,status"

_WIQL_STORIES = (
    "SELECT [System.Id] FROM WorkItems "
    "WHERE [System.TeamProject] = '{project}' "
    "AND ([System.WorkItemType] = 'User Story' OR [System.WorkItemType] = 'Feature') "
    "ORDER BY [System.CreatedDate] DESC"
)
_WIQL_DEFECTS = (
    "SELECT [System.Id] FROM WorkItems "
    "WHERE [System.TeamProject] = '{project}' "
    "AND [System.WorkItemType] = 'Bug' "
    "ORDER BY [System.CreatedDate] DESC"
)


def _looks_like_html(text: str) -> bool:
    head = (text or "").lstrip()[:200].lower()
    return head.startswith("<!doctype") or head.startswith("<html")


def _wiql_literal(value: str) -> str:
    return value.replace("'", "''")


class TrackerGateway:
    """Jira REST v3 + Azure DevOps WIT REST gateway.

    Instantiate once at module level (module-level singleton pattern).

    Usage:
        from testpilot.integrations.tracker_gateway import tracker_gateway
        issues = tracker_gateway.fetch_jira_issues(jira_cfg)
    """

    def __init__(self, session: requests.Session | None = None, timeout: int = _DEFAULT_TIMEOUT) -> None:
        # Inject custom session for testing; create real one lazily otherwise.
        self._session: requests.Session | None = session
        self.timeout = timeout

    # ── HTTP session ─────────────────────────────────────────────────────────

    @property
    def session(self) -> requests.Session:
        """Return (or lazily create) the requests.Session."""
        if self._session is None:
            self._session = requests.Session()
        return self._session

    # ── Core request dispatcher ───────────────────────────────────────────────

    def _do_request(
        self,
        method: str,
        url: str,
        *,
        auth: HTTPBasicAuth,
        json_body: dict | None = None,
        params: dict | None = None,
    ) -> requests.Response:
        """Execute a single HTTP request, no retry logic here."""
        kwargs: dict[str, Any] = {
            "headers": {"Accept": "application/json", "Content-Type": "application/json"},
            "auth": auth,
            "timeout": self.timeout,
        }
        if json_body is not None:
            kwargs["json"] = json_body
        if params:
            kwargs["params"] = params
        return self.session.request(method, url, **kwargs)

    def request(
        self,
        method: str,
        url: str,
        *,
        provider: str,
        auth: HTTPBasicAuth,
        json_body: dict | None = None,
        params: dict | None = None,
        not_found_message: str | None = None,
    ) -> dict:
        """Execute one authenticated request and return the decoded JSON body.

        Raises:
            ProviderAuthError: 401/403, or an HTML page instead of JSON.
            ProviderError: network failure or any other non-2xx status.
            ResponseParseError: 2xx body that is not JSON.
        """
        t0 = time.perf_counter()
        try:
            resp = self._do_request(method, url, auth=auth, json_body=json_body, params=params)
        except requests.Timeout as exc:
            logger.warning("%s request timed out url=%s", provider, url)
            raise ProviderError(
                f"{provider} request timed out after {self.timeout}s", provider=provider,
            ) from exc
        except requests.RequestException as exc:
            logger.warning("%s network error url=%s error=%s", provider, url, str(exc)[:300])
            raise ProviderError(
                f"{provider} network error: {str(exc)[:300]}", provider=provider,
            ) from exc

        duration_ms = int((time.perf_counter() - t0) * 1000)
        logger.info("%s %s %s -> %d (%dms)", provider, method, url, resp.status_code, duration_ms)

        if resp.status_code in (401, 403):
            raise ProviderAuthError(
                f"{provider} authentication failed. Check credentials and permissions.",
                provider=provider, status_code=resp.status_code,
            )
        if resp.status_code == 404:
            raise ProviderError(
                not_found_message or f"{provider} resource not found",
                provider=provider, status_code=404,
            )
        if not resp.ok:
            raise ProviderError(
                f"{provider} API error: HTTP {resp.status_code}: {resp.text[:300]}",
                provider=provider, status_code=resp.status_code,
            )

        if _looks_like_html(resp.text):
            # Sign-in pages come back as 200 text/html when the token is rejected
            raise ProviderAuthError(
                f"{provider} returned an HTML page instead of JSON; authentication likely failed",
                provider=provider, status_code=resp.status_code,
            )
        try:
            return resp.json() if resp.content else {}
        except ValueError as exc:
            raise ResponseParseError(
                f"{provider} returned a non-JSON response",
                raw_content=resp.text[:2000], provider=provider,
            ) from exc

    # ── Jira ──────────────────────────────────────────────────────────────────

    def fetch_jira_issues(self, cfg: JiraConfig) -> list[dict]:
        """Return the first page of issues for the configured project.

        Each issue is the raw Jira shape: {"key", "fields": {summary, description, ...}}.
        """
        url = f"{cfg.url}/rest/api/3/search"
        body = self.request(
            "GET", url,
            provider="jira",
            auth=HTTPBasicAuth(cfg.email, cfg.api_token),
            params={
                "jql": f"project={cfg.project_key}",
                "fields": JIRA_FIELDS,
                "maxResults": JIRA_MAX_RESULTS,
            },
            not_found_message=f"Jira project '{cfg.project_key}' not found",
        )
        issues = body.get("issues") if isinstance(body, dict) else None
        if issues is None:
            raise ResponseParseError("Jira response has no 'issues' list", raw_content=str(body)[:2000],
                                     provider="jira")
        logger.info("Fetched %d Jira issues project=%s", len(issues), cfg.project_key)
        return issues

    # ── Azure DevOps ──────────────────────────────────────────────────────────

    def _ado_auth(self, cfg: AzureDevOpsConfig) -> HTTPBasicAuth:
        return HTTPBasicAuth("", cfg.personal_access_token)

    def _ado_query_ids(self, cfg: AzureDevOpsConfig, wiql: str) -> list[int]:
        url = f"{cfg.base_url}/_apis/wit/wiql"
        body = self.request(
            "POST", url,
            provider="azure-devops",
            auth=self._ado_auth(cfg),
            params={"api-version": ADO_API_VERSION},
            json_body={"query": wiql.format(project=_wiql_literal(cfg.project_name))},
            not_found_message=f"Azure DevOps project '{cfg.project_name}' not found",
        )
        items = body.get("workItems") if isinstance(body, dict) else None
        if items is None:
            raise ResponseParseError("WIQL response has no 'workItems' list",
                                     raw_content=str(body)[:2000], provider="azure-devops")
        return [item["id"] for item in items if "id" in item]

    def _ado_fetch_items(self, cfg: AzureDevOpsConfig, ids: list[int]) -> list[dict]:
        url = f"{cfg.base_url}/_apis/wit/workitems"
        body = self.request(
            "GET", url,
            provider="azure-devops",
            auth=self._ado_auth(cfg),
            params={
                "ids": ",".join(str(i) for i in ids),
                "$expand": "Fields",
                "api-version": ADO_API_VERSION,
            },
        )
        values = body.get("value") if isinstance(body, dict) else None
        if values is None:
            raise ResponseParseError("Work item response has no 'value' list",
                                     raw_content=str(body)[:2000], provider="azure-devops")
        return values

    def fetch_azure_devops_work_items(self, cfg: AzureDevOpsConfig) -> list[dict]:
        """Two-step fetch of User Story / Feature items: WIQL ids, then details.

        Returns raw work items ({"id", "fields": {...}}); empty list when the
        query matches nothing (no second call is made).
        """
        ids = self._ado_query_ids(cfg, _WIQL_STORIES)[:ADO_STORY_LIMIT]
        if not ids:
            logger.info("No Azure DevOps work items project=%s", cfg.project_name)
            return []
        items = self._ado_fetch_items(cfg, ids)
        logger.info("Fetched %d Azure DevOps work items project=%s", len(items), cfg.project_name)
        return items

    def fetch_azure_devops_defects(self, cfg: AzureDevOpsConfig) -> list[dict]:
        """Two-step fetch of Bug items, newest first."""
        ids = self._ado_query_ids(cfg, _WIQL_DEFECTS)[:ADO_DEFECT_LIMIT]
        if not ids:
            return []
        return self._ado_fetch_items(cfg, ids)


# Module-level singleton - import this instance in services.
# In tests, override via:
#   patch.object(tracker_gateway, "fetch_jira_issues", return_value=[...])
tracker_gateway = TrackerGateway()
