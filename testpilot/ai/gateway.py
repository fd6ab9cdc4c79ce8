"""
TestPilot
LLM Gateway.

Provider-agnostic chat-completion client with:
    - Explicit provider variants chosen from the typed LLM config
      (Azure OpenAI keyed header, OpenAI bearer token, local stub)
    - Multimodal user content (text + image_url parts)
    - Token tracking & cost logging to AIUsageLog
    - No retries: a provider failure is raised to the caller as ProviderError

Usage:
    from testpilot.ai.gateway import LLMGateway
    gw = LLMGateway()
    result = gw.chat(messages, llm_config, purpose="test_case_generation", project_id=3)
"""

import json
import logging
import re
import time
from abc import ABC, abstractmethod

import openai
from sqlalchemy.exc import SQLAlchemyError

from testpilot.core.exceptions import ProviderAuthError, ProviderError
from testpilot.integrations.config import AzureOpenAIConfig, LocalStubConfig, OpenAIConfig
from testpilot.models import db
from testpilot.models.ai import AIUsageLog, calculate_cost

logger = logging.getLogger(__name__)

# The SDK retries 5xx, 429 and connection errors twice by default; failures go straight to the caller
MAX_RETRIES = 0


def message_text(content) -> str:
    """Plain text of a chat message content (string or list of parts)."""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        return "\n".join(
            part.get("text", "") for part in content
            if isinstance(part, dict) and part.get("type") == "text"
        )
    return ""


# ── Provider Abstract Base ────────────────────────────────────────────────────

class LLMProvider(ABC):
    """Abstract interface for chat-completion providers."""

    name = "abstract"

    @abstractmethod
    def chat(self, messages: list, model: str, **kwargs) -> dict:
        """
        Send a chat completion request.

        Args:
            messages: List of {"role": "...", "content": str | list[part]} dicts.
            model: Model or deployment identifier.
            **kwargs: temperature, max_tokens.

        Returns:
            dict with keys: content, prompt_tokens, completion_tokens, model
        """
        ...


# ── OpenAI-compatible providers ───────────────────────────────────────────────

class _OpenAICompatibleProvider(LLMProvider):
    """Shared completion call for the openai SDK clients."""

    def __init__(self):
        self._client = None

    def _build_client(self):
        raise NotImplementedError

    def _get_client(self):
        if self._client is None:
            self._client = self._build_client()
        return self._client

    def chat(self, messages: list, model: str, **kwargs) -> dict:
        client = self._get_client()
        response = client.chat.completions.create(
            model=model,
            messages=messages,
            max_tokens=kwargs.get("max_tokens", 2500),
            temperature=kwargs.get("temperature", 0.7),
        )
        choice = response.choices[0]
        usage = response.usage
        return {
            "content": choice.message.content or "",
            "prompt_tokens": usage.prompt_tokens if usage else 0,
            "completion_tokens": usage.completion_tokens if usage else 0,
            "model": model,
        }


class AzureOpenAIProvider(_OpenAICompatibleProvider):
    """Azure OpenAI deployment; the SDK sends the `api-key` header."""

    name = "azure-openai"

    def __init__(self, cfg: AzureOpenAIConfig):
        super().__init__()
        self.cfg = cfg

    def _build_client(self):
        return openai.AzureOpenAI(
            azure_endpoint=self.cfg.endpoint,
            api_key=self.cfg.api_key,
            api_version=self.cfg.api_version,
            max_retries=MAX_RETRIES,
        )


class OpenAIProvider(_OpenAICompatibleProvider):
    """OpenAI (or compatible base_url) with bearer-token auth."""

    name = "openai"

    def __init__(self, cfg: OpenAIConfig):
        super().__init__()
        self.cfg = cfg

    def _build_client(self):
        kwargs = {"api_key": self.cfg.api_key, "max_retries": MAX_RETRIES}
        if self.cfg.base_url:
            kwargs["base_url"] = self.cfg.base_url
        return openai.OpenAI(**kwargs)


# ── Local stub ────────────────────────────────────────────────────────────────

class LocalStubProvider(LLMProvider):
    """
    Local stub that returns deterministic responses for dev/testing.
    No API key required.
    """

    name = "local"

    def chat(self, messages: list, model: str = "local-stub", **kwargs) -> dict:
        user_msg = ""
        for m in reversed(messages):
            if m["role"] == "user":
                user_msg = message_text(m["content"])
                break

        content = self._generate_stub_response(user_msg)

        return {
            "content": content,
            "prompt_tokens": len(user_msg.split()) * 2,  # rough estimate
            "completion_tokens": len(content.split()) * 2,
            "model": "local-stub",
        }

    @staticmethod
    def _generate_stub_response(user_msg: str) -> str:
        """Generate context-aware stub response."""
        if "Generate comprehensive test cases" in user_msg:
            match = re.search(r"^Title: (.*)$", user_msg, re.MULTILINE)
            title = match.group(1).strip() if match else "Story"
            return json.dumps([
                {
                    "id": "TC001",
                    "title": f"{title} - happy path",
                    "description": f"Verify {title} succeeds with valid input",
                    "type": "positive",
                    "priority": "high",
                    "steps": ["Open the feature", "Enter valid data", "Submit"],
                    "expectedResult": "The operation completes successfully",
                    "testData": "Valid sample data",
                    "category": "functional",
                },
                {
                    "id": "TC002",
                    "title": f"{title} - invalid input rejected",
                    "description": f"Verify {title} rejects invalid input",
                    "type": "negative",
                    "priority": "medium",
                    "steps": ["Open the feature", "Enter invalid data", "Submit"],
                    "expectedResult": "A validation message is shown",
                    "testData": "Empty required fields",
                    "category": "functional",
                },
            ])

        if "test plan" in user_msg.lower():
            return (
                "# Test Plan\n\n## 1. Test Objectives\nValidate the documented stories.\n\n"
                "## 2. Test Scope and Approach\nFunctional and regression testing.\n\n"
                "*This is a local stub response. Configure an LLM provider for real output.*"
            )

        return (
            "# Test Execution Report\n\n## Executive Summary\nExecution data summarized below.\n\n"
            "*This is a local stub response. Configure an LLM provider for real output.*"
        )


# ── Gateway ───────────────────────────────────────────────────────────────────

_PROVIDER_CLASSES = {
    AzureOpenAIConfig.kind: AzureOpenAIProvider,
    OpenAIConfig.kind: OpenAIProvider,
}


class LLMGateway:
    """
    Central gateway for all completion calls.

    Features:
        - Provider variant selected from the config type, never from the URL
        - Token/cost tracking (persisted to AIUsageLog via flush)
        - Provider exceptions normalised to ProviderError / ProviderAuthError

    Usage:
        gw = LLMGateway()
        result = gw.chat(
            messages=[{"role": "system", "content": "..."}, {"role": "user", "content": "..."}],
            llm_config=AzureOpenAIConfig(...),
            purpose="test_case_generation",
        )
    """

    def __init__(self):
        self._stub = LocalStubProvider()

    def _get_provider(self, llm_config) -> LLMProvider:
        if isinstance(llm_config, LocalStubConfig):
            return self._stub
        provider_cls = _PROVIDER_CLASSES.get(getattr(llm_config, "kind", None))
        if provider_cls is None:
            raise ProviderError(f"Unsupported LLM configuration: {llm_config!r}")
        return provider_cls(llm_config)

    def chat(
        self,
        messages: list,
        llm_config,
        *,
        purpose: str = "",
        user: str = "system",
        project_id: int | None = None,
        **kwargs,
    ) -> dict:
        """
        Send one chat completion request. No retry.

        Args:
            messages: Chat messages.
            llm_config: AzureOpenAIConfig | OpenAIConfig | LocalStubConfig.
            purpose: What the call is for (e.g. "test_case_generation").
            user: Who triggered the call.
            project_id: Associated project.
            **kwargs: temperature, max_tokens passed to provider.

        Returns:
            dict: {content, prompt_tokens, completion_tokens, model, cost_usd, latency_ms, provider}

        Raises:
            ProviderAuthError: credentials rejected by the provider.
            ProviderError: any other provider or network failure.
        """
        provider = self._get_provider(llm_config)
        model = llm_config.model
        start_time = time.time()

        try:
            result = provider.chat(messages, model, **kwargs)
        except Exception as e:
            latency_ms = int((time.time() - start_time) * 1000)
            error = self._to_provider_error(e, provider.name)
            logger.warning("LLM call failed provider=%s model=%s purpose=%s: %s",
                           provider.name, model, purpose, error)
            self._log_usage(
                provider=provider.name, model=model,
                prompt_tokens=0, completion_tokens=0,
                cost_usd=0.0, latency_ms=latency_ms,
                user=user, purpose=purpose, project_id=project_id,
                success=False, error_message=str(error),
            )
            raise error from e

        latency_ms = int((time.time() - start_time) * 1000)
        cost = calculate_cost(result["model"], result["prompt_tokens"], result["completion_tokens"])
        result["cost_usd"] = cost
        result["latency_ms"] = latency_ms
        result["provider"] = provider.name

        log = self._log_usage(
            provider=provider.name, model=result["model"],
            prompt_tokens=result["prompt_tokens"],
            completion_tokens=result["completion_tokens"],
            cost_usd=cost, latency_ms=latency_ms,
            user=user, purpose=purpose, project_id=project_id,
            success=True,
        )
        result["usage_log_id"] = log.id if log is not None else None
        logger.info("LLM call ok provider=%s model=%s purpose=%s tokens=%d latency=%dms",
                    provider.name, result["model"], purpose,
                    result["prompt_tokens"] + result["completion_tokens"], latency_ms)
        return result

    def record_usage(self, *, provider: str, model: str, purpose: str,
                     user: str = "system", project_id: int | None = None,
                     latency_ms: int = 0) -> None:
        """Log a template-based generation that consumed no tokens."""
        self._log_usage(
            provider=provider, model=model,
            prompt_tokens=0, completion_tokens=0,
            cost_usd=0.0, latency_ms=latency_ms,
            user=user, purpose=purpose, project_id=project_id,
            success=True,
        )

    def mark_failed(self, result: dict, error: Exception) -> None:
        """Flag the usage row of a completed call whose reply was unusable."""
        log_id = result.get("usage_log_id")
        log = db.session.get(AIUsageLog, log_id) if log_id is not None else None
        if log is None:
            return
        log.success = False
        log.error_message = str(error)[:1000]
        db.session.flush()

    # ── Internal ──────────────────────────────────────────────────────────

    @staticmethod
    def _to_provider_error(exc: Exception, provider_name: str) -> ProviderError:
        if isinstance(exc, ProviderError):
            return exc
        if isinstance(exc, (openai.AuthenticationError, openai.PermissionDeniedError)):
            return ProviderAuthError(
                f"{provider_name} rejected the API key", provider=provider_name,
                status_code=exc.status_code,
            )
        if isinstance(exc, openai.APIStatusError):
            return ProviderError(
                f"{provider_name} API error: HTTP {exc.status_code}: {str(exc)[:300]}",
                provider=provider_name, status_code=exc.status_code,
            )
        if isinstance(exc, openai.APIConnectionError):
            return ProviderError(f"{provider_name} connection failed: {str(exc)[:300]}",
                                 provider=provider_name)
        return ProviderError(f"{provider_name} call failed: {str(exc)[:300]}", provider=provider_name)

    @staticmethod
    def _log_usage(*, provider, model, prompt_tokens, completion_tokens,
                   cost_usd, latency_ms, user, purpose, project_id,
                   success, error_message=None):
        """Add a usage log record with flush only; the route's commit persists it."""
        try:
            log = AIUsageLog(
                provider=provider, model=model,
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
                cost_usd=cost_usd, latency_ms=latency_ms,
                user=user, purpose=purpose, project_id=project_id,
                success=success, error_message=error_message,
            )
            db.session.add(log)
            db.session.flush()
            return log
        except SQLAlchemyError as e:
            logger.error("Failed to log AI usage: %s", e)
            db.session.rollback()
            return None
