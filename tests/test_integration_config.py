"""Integration settings parsing: aliases, required fields and LLM variants."""

import pytest

from testpilot.core.exceptions import ValidationError
from testpilot.integrations.config import (
    DEFAULT_AZURE_API_VERSION,
    AzureDevOpsConfig,
    AzureOpenAIConfig,
    IntegrationSettings,
    JiraConfig,
    LocalStubConfig,
    OpenAIConfig,
    llm_config_from_dict,
)


class TestJiraConfig:
    def test_camel_case_aliases(self, jira_settings):
        cfg = JiraConfig.from_dict(jira_settings["jira"])
        assert cfg.url == "https://acme.atlassian.net"
        assert cfg.email == "qa@acme.test"
        assert cfg.api_token == "jira-token"
        assert cfg.project_key == "SHOP"
        assert cfg.enabled is True

    def test_snake_case_and_trailing_slash(self):
        cfg = JiraConfig.from_dict({
            "url": "https://acme.atlassian.net/", "email": "a@b.c",
            "api_token": "t", "project_key": "SHOP",
        })
        assert cfg.url == "https://acme.atlassian.net"

    def test_project_key_sanitized(self):
        cfg = JiraConfig.from_dict({
            "url": "https://acme.atlassian.net", "email": "a@b.c",
            "api_token": "t", "project_key": "SHOP OR 1=1",
        })
        assert cfg.project_key == "SHOPOR11"

    def test_missing_fields_listed(self):
        with pytest.raises(ValidationError) as exc:
            JiraConfig.from_dict({"jiraUrl": "https://acme.atlassian.net"})
        assert exc.value.details["provider"] == "jira"
        assert exc.value.details["missing"] == ["email", "api_token", "project_key"]

    def test_overlong_value_rejected(self):
        with pytest.raises(ValidationError):
            JiraConfig.from_dict({
                "url": "https://acme.atlassian.net", "email": "x" * 101,
                "api_token": "t", "project_key": "SHOP",
            })

    def test_repr_hides_token(self, jira_settings):
        assert "jira-token" not in repr(JiraConfig.from_dict(jira_settings["jira"]))


class TestAzureDevOpsConfig:
    def test_aliases_and_base_url(self, ado_settings):
        cfg = AzureDevOpsConfig.from_dict(ado_settings["azure_devops"])
        assert cfg.base_url == "https://dev.azure.com/acme/Shop"
        assert cfg.personal_access_token == "ado-pat"

    def test_missing_pat(self):
        with pytest.raises(ValidationError) as exc:
            AzureDevOpsConfig.from_dict({"organizationUrl": "https://dev.azure.com/acme",
                                         "projectName": "Shop"})
        assert exc.value.details["missing"] == ["personal_access_token"]

    def test_repr_hides_pat(self, ado_settings):
        assert "ado-pat" not in repr(AzureDevOpsConfig.from_dict(ado_settings["azure_devops"]))


class TestLLMConfig:
    def test_default_provider_is_azure(self):
        cfg = llm_config_from_dict({
            "endpoint": "https://acme.openai.azure.com/", "apiKey": "k", "deploymentId": "gpt4o",
        })
        assert isinstance(cfg, AzureOpenAIConfig)
        assert cfg.endpoint == "https://acme.openai.azure.com"
        assert cfg.model == "gpt4o"
        assert cfg.api_version == DEFAULT_AZURE_API_VERSION

    def test_azure_host_does_not_select_variant(self):
        cfg = llm_config_from_dict({
            "provider": "openai", "apiKey": "sk", "baseURL": "https://acme.openai.azure.com",
        })
        assert isinstance(cfg, OpenAIConfig)
        assert cfg.base_url == "https://acme.openai.azure.com"

    def test_openai_defaults(self):
        cfg = llm_config_from_dict({"provider": "OpenAI", "api_key": "sk"})
        assert cfg == OpenAIConfig(api_key="sk", model="gpt-4o-mini", base_url=None)

    def test_openai_requires_key(self):
        with pytest.raises(ValidationError) as exc:
            llm_config_from_dict({"provider": "openai"})
        assert exc.value.details["missing"] == ["api_key"]

    def test_local_stub(self):
        assert llm_config_from_dict({"provider": "local"}) == LocalStubConfig()

    def test_unknown_provider(self):
        with pytest.raises(ValidationError) as exc:
            llm_config_from_dict({"provider": "anthropic"})
        assert exc.value.details["provider"] == "anthropic"

    def test_empty(self):
        with pytest.raises(ValidationError):
            llm_config_from_dict({})

    def test_repr_hides_key(self):
        cfg = llm_config_from_dict({"provider": "openai", "apiKey": "sk-secret"})
        assert "sk-secret" not in repr(cfg)


class TestIntegrationSettings:
    def test_empty_payload(self):
        settings = IntegrationSettings.from_dict(None)
        assert settings.trackers() == []
        with pytest.raises(ValidationError):
            settings.require_llm()

    def test_tracker_order(self, jira_settings, ado_settings):
        settings = IntegrationSettings.from_dict({**ado_settings, **jira_settings})
        assert [cfg.kind for cfg in settings.trackers()] == ["jira", "azure-devops"]

    def test_disabled_incomplete_entry_dropped(self, ado_settings):
        settings = IntegrationSettings.from_dict({
            "jira": {"enabled": False, "jiraUrl": "https://acme.atlassian.net"},
            **ado_settings,
        })
        assert settings.jira is None
        assert [cfg.kind for cfg in settings.trackers()] == ["azure-devops"]

    def test_enabled_as_string(self, jira_settings):
        payload = {"jira": {**jira_settings["jira"], "enabled": "false"}}
        assert IntegrationSettings.from_dict(payload).jira is None

    def test_azure_devops_key_aliases(self, ado_settings):
        payload = {"azureDevOps": ado_settings["azure_devops"]}
        assert IntegrationSettings.from_dict(payload).azure_devops is not None

    def test_llm_parsed(self, local_llm):
        assert IntegrationSettings.from_dict(local_llm).require_llm() == LocalStubConfig()
