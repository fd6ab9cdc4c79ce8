"""
TestPilot
Blueprint registry and shared blueprint helpers.
"""

import logging

from flask import request
from werkzeug.exceptions import HTTPException

from testpilot.core.exceptions import (
    ConflictError,
    NotFoundError,
    ProviderError,
    ResponseParseError,
    ValidationError,
)
from testpilot.models import db
from testpilot.utils.errors import E, api_error, provider_error

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=200, max_limit=1000):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  - max items (default 200, capped at max_limit)
        offset - starting position (default 0)

    Returns:
        (items_list, total_count)
    """
    total = query.count()
    try:
        limit = min(int(request.args.get("limit", default_limit)), max_limit)
    except (ValueError, TypeError):
        limit = default_limit
    try:
        offset = max(int(request.args.get("offset", 0)), 0)
    except (ValueError, TypeError):
        offset = 0
    items = query.limit(limit).offset(offset).all()
    return items, total


def register_error_handlers(bp, *, keep_usage_log=False):
    """Map the domain exceptions to JSON responses for one blueprint.

    Pending session changes are rolled back. With ``keep_usage_log`` a
    provider or parse failure commits instead, so the failed call's usage
    log survives; those failures happen before any catalog change is made.
    """

    def _finish_provider_failure():
        if keep_usage_log:
            try:
                db.session.commit()
            except Exception:
                logger.exception("Could not persist usage log after provider failure")
                db.session.rollback()
        else:
            db.session.rollback()

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        db.session.rollback()
        return api_error(E.NOT_FOUND, str(error))

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        db.session.rollback()
        return api_error(E.PRECONDITION, str(error), status=422, details=error.details)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        db.session.rollback()
        return api_error(E.CONFLICT_DUPLICATE, str(error))

    @bp.errorhandler(ProviderError)
    @bp.errorhandler(ResponseParseError)
    def _handle_provider(error):
        _finish_provider_failure()
        logger.warning("Provider failure in %s endpoint=%s: %s", bp.name, request.endpoint, error)
        return provider_error(error)

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return error
        db.session.rollback()
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
