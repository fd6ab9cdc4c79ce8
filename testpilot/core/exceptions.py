"""
Platform-wide exception hierarchy.

Services raise these; blueprints register handlers against them once and get
consistent HTTP status codes everywhere.

Taxonomy:
  precondition  → ValidationError   (required config/fields missing, before any network call)
  transport     → ProviderError     (network failure or non-2xx from a provider)
  authorization → ProviderAuthError (401, or an HTML page where JSON was expected)
  parse         → ResponseParseError (body does not match the expected shape)

Usage:
    from testpilot.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="UserStory", resource_id=42)
    raise ValidationError("title is required", details={"title": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Project", "TestCase").
        resource_id: The PK that was looked up.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input or configuration fails a precondition.

    Maps to HTTP 422 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown; keys are field names.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised when an operation would create a duplicate.

    Maps to HTTP 409.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class ProviderError(Exception):
    """Raised when an external provider call fails at the transport level.

    Args:
        message: Short human-readable reason.
        provider: "jira", "azure-devops", "azure-openai", "openai", ...
        status_code: HTTP status of the provider response, None for network errors.
    """

    def __init__(self, message: str, *, provider: str = "", status_code: int | None = None) -> None:
        self.provider = provider
        self.status_code = status_code
        super().__init__(message)


class ProviderAuthError(ProviderError):
    """Raised when a provider rejects our credentials.

    Also raised when a provider answers with an HTML sign-in page where a JSON
    body was expected.
    """


class ResponseParseError(Exception):
    """Raised when a provider body cannot be parsed into the expected shape.

    The raw text is kept for diagnostics and surfaced to the caller.
    """

    def __init__(self, message: str, *, raw_content: str = "", provider: str = "") -> None:
        self.raw_content = raw_content
        self.provider = provider
        super().__init__(message)
