"""View helpers shared by the blueprints.

get_or_404          lookup returning ``(obj, None)`` or ``(None, error_response)``
actor               who triggered the request (body ``user``, then X-User header)
db_commit_or_error  the single commit point of a request
"""
import logging

from flask import request
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from testpilot.models import db
from testpilot.utils.errors import E, api_error

logger = logging.getLogger(__name__)

ACTOR_MAX = 150

_LABELS = {"UserStory": "Story", "TestCase": "Test case"}


def _hidden(obj) -> bool:
    if getattr(obj, "is_deleted", False):
        return True
    project = getattr(obj, "project", None)
    return project is not None and project.is_deleted


def get_or_404(model, pk, label=None):
    """Fetch by primary key; soft-deleted projects and their stories and test
    cases count as missing.

        story, err = get_or_404(UserStory, sid)
        if err:
            return err
    """
    obj = db.session.get(model, pk)
    if obj is None or _hidden(obj):
        label = label or _LABELS.get(model.__name__, model.__name__)
        return None, api_error(E.NOT_FOUND, f"{label} not found", details={"id": pk})
    return obj, None


def actor(data: dict | None = None) -> str:
    if data and data.get("user"):
        return str(data["user"])[:ACTOR_MAX]
    return (request.headers.get("X-User") or "system")[:ACTOR_MAX]


def db_commit_or_error():
    """Commit the request's unit of work.

    Services only flush; the view calls this once at the end. Returns None on
    success, otherwise a ready-to-return error response after rolling back:

        IntegrityError    → 409 ERR_CONFLICT_DUPLICATE
        other DB failures → 500 ERR_DATABASE
    """
    try:
        db.session.commit()
        return None
    except IntegrityError as exc:
        db.session.rollback()
        logger.warning("Integrity error on commit: %s", exc.orig)
        return api_error(E.CONFLICT_DUPLICATE, "Duplicate or constraint violation")
    except OperationalError:
        db.session.rollback()
        logger.exception("Database unavailable on commit")
        return api_error(E.DATABASE, "Database error")
    except SQLAlchemyError:
        db.session.rollback()
        logger.exception("Unexpected database error on commit")
        return api_error(E.DATABASE, "Database error")
