"""
Typed provider settings, passed into each collaborator at call time.

The browser client keeps connection settings locally and sends them with the
request that needs them. They are parsed here into frozen dataclasses, one
per provider, and never persisted server-side.

LLM settings are an explicit tagged variant chosen at configuration time:

    AzureOpenAIConfig  kind="azure-openai"  api-key header, deployment in the URL
    OpenAIConfig       kind="openai"        bearer token, model in the body
    LocalStubConfig    kind="local"         offline canned replies, no credentials

Usage:
    settings = IntegrationSettings.from_dict(data.get("integrations"))
    if settings.jira and settings.jira.enabled:
        tracker_gateway.fetch_jira_issues(settings.jira)
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from testpilot.core.exceptions import ValidationError

DEFAULT_AZURE_API_VERSION = "2024-02-15-preview"
DEFAULT_OPENAI_MODEL = "gpt-4o-mini"

_PROJECT_KEY_STRIP = re.compile(r"[^a-zA-Z0-9_-]")


def _pick(data: dict, *keys: str, default=None):
    """Return the first non-empty value among snake_case / camelCase aliases."""
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return default


def _clean(value, max_len: int | None = None) -> str:
    text = str(value or "").strip()
    if max_len is not None and len(text) > max_len:
        raise ValidationError(f"Value exceeds {max_len} characters", details={"max_length": max_len})
    return text


def _require(provider: str, fields: dict) -> None:
    missing = [name for name, value in fields.items() if not value]
    if missing:
        raise ValidationError(
            f"{provider} configuration is incomplete: missing {', '.join(missing)}",
            details={"provider": provider, "missing": missing},
        )


def _enabled(data: dict) -> bool:
    value = data.get("enabled", True)
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes")
    return bool(value)


# ── Issue tracker ────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class JiraConfig:
    """Jira Cloud connection (REST API v3, Basic auth email:api_token)."""

    url: str
    email: str
    api_token: str
    project_key: str
    enabled: bool = True

    kind = "jira"

    @classmethod
    def from_dict(cls, data: dict) -> JiraConfig:
        url = _clean(_pick(data, "url", "jira_url", "jiraUrl"), 500).rstrip("/")
        email = _clean(_pick(data, "email"), 100)
        api_token = _clean(_pick(data, "api_token", "apiToken"), 500)
        project_key = _PROJECT_KEY_STRIP.sub(
            "", _clean(_pick(data, "project_key", "projectKey"), 50),
        )
        _require("jira", {
            "url": url, "email": email, "api_token": api_token, "project_key": project_key,
        })
        return cls(url=url, email=email, api_token=api_token,
                   project_key=project_key, enabled=_enabled(data))

    def __repr__(self):
        return f"JiraConfig(url={self.url!r}, project_key={self.project_key!r}, enabled={self.enabled})"


# ── Work-item tracker ────────────────────────────────────────────────────────


@dataclass(frozen=True)
class AzureDevOpsConfig:
    """Azure DevOps Services connection (WIT REST 7.1, Basic auth with a PAT)."""

    organization_url: str
    project_name: str
    personal_access_token: str
    enabled: bool = True

    kind = "azure-devops"

    @classmethod
    def from_dict(cls, data: dict) -> AzureDevOpsConfig:
        organization_url = _clean(
            _pick(data, "organization_url", "organizationUrl"), 500,
        ).rstrip("/")
        project_name = _clean(_pick(data, "project_name", "projectName"), 255)
        pat = _clean(_pick(data, "personal_access_token", "personalAccessToken"), 500)
        _require("azure-devops", {
            "organization_url": organization_url,
            "project_name": project_name,
            "personal_access_token": pat,
        })
        return cls(organization_url=organization_url, project_name=project_name,
                   personal_access_token=pat, enabled=_enabled(data))

    @property
    def base_url(self) -> str:
        return f"{self.organization_url}/{self.project_name}"

    def __repr__(self):
        return (f"AzureDevOpsConfig(organization_url={self.organization_url!r}, "
                f"project_name={self.project_name!r}, enabled={self.enabled})")


# ── Completion endpoint (tagged variant) ─────────────────────────────────────


@dataclass(frozen=True)
class AzureOpenAIConfig:
    """Azure OpenAI deployment: keyed `api-key` header, deployment in the URL."""

    endpoint: str
    api_key: str
    deployment: str
    api_version: str = DEFAULT_AZURE_API_VERSION

    kind = "azure-openai"

    @property
    def model(self) -> str:
        return self.deployment

    def __repr__(self):
        return (f"AzureOpenAIConfig(endpoint={self.endpoint!r}, "
                f"deployment={self.deployment!r}, api_version={self.api_version!r})")


@dataclass(frozen=True)
class OpenAIConfig:
    """OpenAI (or compatible) endpoint: bearer token, model in the request body."""

    api_key: str
    model: str = DEFAULT_OPENAI_MODEL
    base_url: str | None = None

    kind = "openai"

    def __repr__(self):
        return f"OpenAIConfig(model={self.model!r}, base_url={self.base_url!r})"


@dataclass(frozen=True)
class LocalStubConfig:
    """Offline deterministic responder for development and demos."""

    model: str = "local-stub"

    kind = "local"


LLMConfig = AzureOpenAIConfig | OpenAIConfig | LocalStubConfig

LLM_PROVIDER_KINDS = {AzureOpenAIConfig.kind, OpenAIConfig.kind, LocalStubConfig.kind}


def llm_config_from_dict(data: dict | None) -> LLMConfig:
    """Build the LLM variant named by ``provider``.

    ``provider`` defaults to "azure-openai"; the variant is never inferred
    from the shape of the endpoint URL.

    Raises:
        ValidationError: Unknown provider or missing required fields.
    """
    if not data:
        raise ValidationError(
            "LLM configuration is required",
            details={"provider": "llm", "missing": ["llm"]},
        )

    kind = str(_pick(data, "provider", "kind", default=AzureOpenAIConfig.kind)).strip().lower()
    if kind not in LLM_PROVIDER_KINDS:
        raise ValidationError(
            f"Unknown LLM provider '{kind}'",
            details={"provider": kind, "allowed": sorted(LLM_PROVIDER_KINDS)},
        )

    if kind == LocalStubConfig.kind:
        return LocalStubConfig()

    api_key = _clean(_pick(data, "api_key", "apiKey"), 500)

    if kind == AzureOpenAIConfig.kind:
        endpoint = _clean(_pick(data, "endpoint", "base_url", "baseURL"), 500).rstrip("/")
        deployment = _clean(_pick(data, "deployment", "deployment_id", "deploymentId"), 100)
        api_version = _clean(
            _pick(data, "api_version", "apiVersion", default=DEFAULT_AZURE_API_VERSION), 50,
        )
        _require("azure-openai", {"endpoint": endpoint, "api_key": api_key, "deployment": deployment})
        return AzureOpenAIConfig(endpoint=endpoint, api_key=api_key,
                                 deployment=deployment, api_version=api_version)

    _require("openai", {"api_key": api_key})
    model = _clean(_pick(data, "model", default=DEFAULT_OPENAI_MODEL), 100)
    base_url = _clean(_pick(data, "base_url", "baseURL", "endpoint"), 500).rstrip("/") or None
    return OpenAIConfig(api_key=api_key, model=model, base_url=base_url)


# ── Aggregate ────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class IntegrationSettings:
    """All provider settings supplied with one request."""

    jira: JiraConfig | None = None
    azure_devops: AzureDevOpsConfig | None = None
    llm: LLMConfig | None = None

    @classmethod
    def from_dict(cls, data: dict | None) -> IntegrationSettings:
        """Parse the ``integrations`` body object.

        Disabled providers are parsed leniently: a disabled entry with missing
        fields is dropped instead of failing the whole request.
        """
        data = data or {}
        jira_data = _pick(data, "jira")
        ado_data = _pick(data, "azure_devops", "azure-devops", "azureDevOps")
        llm_data = _pick(data, "llm", "openai")

        jira = None
        if isinstance(jira_data, dict) and _enabled(jira_data):
            jira = JiraConfig.from_dict(jira_data)
        azure_devops = None
        if isinstance(ado_data, dict) and _enabled(ado_data):
            azure_devops = AzureDevOpsConfig.from_dict(ado_data)
        llm = llm_config_from_dict(llm_data) if isinstance(llm_data, dict) else None

        return cls(jira=jira, azure_devops=azure_devops, llm=llm)

    def trackers(self) -> list[JiraConfig | AzureDevOpsConfig]:
        """Enabled tracker configs in sync order (Jira first)."""
        return [cfg for cfg in (self.jira, self.azure_devops) if cfg is not None and cfg.enabled]

    def require_llm(self) -> LLMConfig:
        if self.llm is None:
            raise ValidationError(
                "LLM configuration is required",
                details={"provider": "llm", "missing": ["llm"]},
            )
        return self.llm
