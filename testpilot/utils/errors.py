"""JSON error bodies shared by every blueprint.

    {"error": "<message>", "code": "ERR_...", "details": {...}, "request_id": "..."}

``details`` is present only when there is something structured to report
(missing config fields, the provider that failed, the raw completion text).
``request_id`` echoes the X-Request-ID set by the timing middleware.

Usage:
    from testpilot.utils.errors import E, api_error, provider_error

    return api_error(E.NOT_FOUND, "Story not found")
    return api_error(E.PRECONDITION, "LLM configuration is required", details={"missing": ["llm"]})
    return provider_error(exc)   # ProviderError / ProviderAuthError / ResponseParseError
"""

from __future__ import annotations

from flask import g, has_request_context, jsonify

from testpilot.core.exceptions import ProviderAuthError, ResponseParseError


class E:
    """Machine-readable error codes."""

    # 400: malformed request shape
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"

    # 422: well-formed request that fails a precondition (config, field rules)
    PRECONDITION = "ERR_PRECONDITION"

    NOT_FOUND = "ERR_NOT_FOUND"
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"

    # 502: Jira / Azure DevOps / completion endpoint
    PROVIDER = "ERR_PROVIDER"
    PROVIDER_AUTH = "ERR_PROVIDER_AUTH"
    PROVIDER_RESPONSE = "ERR_PROVIDER_RESPONSE"

    # Raised by Flask itself rather than a view
    METHOD_NOT_ALLOWED = "ERR_METHOD_NOT_ALLOWED"
    PAYLOAD_TOO_LARGE = "ERR_PAYLOAD_TOO_LARGE"
    RATE_LIMITED = "ERR_RATE_LIMITED"

    DATABASE = "ERR_DATABASE"
    INTERNAL = "ERR_INTERNAL"


STATUS_BY_CODE: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.PRECONDITION: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.PROVIDER: 502,
    E.PROVIDER_AUTH: 502,
    E.PROVIDER_RESPONSE: 502,
    E.METHOD_NOT_ALLOWED: 405,
    E.PAYLOAD_TOO_LARGE: 413,
    E.RATE_LIMITED: 429,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def api_error(code: str, message: str, *, status: int | None = None, details: dict | None = None):
    """Build ``(response, status)`` for a view to return.

    The status defaults to ``STATUS_BY_CODE[code]`` (400 for unknown codes).
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    if has_request_context() and getattr(g, "request_id", None):
        body["request_id"] = g.request_id
    return jsonify(body), status or STATUS_BY_CODE.get(code, 400)


def provider_error(exc: Exception):
    """Error response for a failed provider call.

    Auth failures and unparseable bodies get their own codes; a parse failure
    carries the raw provider text so the client can show what came back.
    """
    if isinstance(exc, ResponseParseError):
        return api_error(E.PROVIDER_RESPONSE, str(exc), details={
            "provider": exc.provider, "raw_content": exc.raw_content,
        })
    code = E.PROVIDER_AUTH if isinstance(exc, ProviderAuthError) else E.PROVIDER
    return api_error(code, str(exc), details={
        "provider": getattr(exc, "provider", ""),
        "status_code": getattr(exc, "status_code", None),
    })
