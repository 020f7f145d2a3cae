"""
Municipal Innovation Strategy Platform
Blueprint registry and shared view helpers.
"""

import logging

from flask import current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import NotFoundError, StateConflictError, ValidationError
from app.models import db
from app.utils.errors import E, api_error

logger = logging.getLogger(__name__)


def paginate_query(query, default_limit=100, max_limit=500):
    """Apply limit/offset pagination to a SQLAlchemy query.

    Query params:
        limit  - max items (default 100, capped at max_limit)
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


def register_error_handlers(bp):
    """Map service-layer exceptions to HTTP responses for one blueprint."""

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return jsonify({"error": str(error), "code": E.NOT_FOUND}), 404

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        db.session.rollback()
        return jsonify({
            "error": str(error),
            "code": E.VALIDATION_RULE,
            "details": error.details,
        }), 422

    @bp.errorhandler(StateConflictError)
    def _handle_conflict(error: StateConflictError):
        db.session.rollback()
        return api_error(E.CONFLICT_STATE, str(error), details={
            "current_status": error.current_status,
            "expected": error.expected,
        })

    @bp.errorhandler(SQLAlchemyError)
    def _handle_db_error(error: SQLAlchemyError):
        db.session.rollback()
        logger.exception("Database error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.DATABASE, "Database error")


def json_body():
    """The request's JSON object, or None when the body is not an object."""
    data = request.get_json(silent=True)
    if data is None:
        return {}
    return data if isinstance(data, dict) else None


def current_actor():
    """Audit label for the caller. There is no login; clients may send X-User."""
    return (request.headers.get("X-User") or "").strip()[:100] or "system"


def ai_rate_limit():
    return current_app.config.get("AI_RATE_LIMIT", "10/minute")
