"""
ERP Form Templates
Blueprint registry and shared request helpers.
"""

import logging

from flask import jsonify, request
from werkzeug.exceptions import HTTPException

from erpforms.core.exceptions import ConflictError, InvariantViolation, NotFoundError, ValidationError
from erpforms.utils.errors import E, api_error, error_from_exception

logger = logging.getLogger(__name__)


def json_body() -> dict:
    """Return the JSON object body, or an empty dict when absent/not an object."""
    data = request.get_json(silent=True)
    return data if isinstance(data, dict) else {}


def expected_version(data: dict | None = None) -> int | None:
    """Optimistic ``lock_version`` from the If-Match header or the JSON body.

    Raises:
        ValidationError: The value is not an integer.
    """
    raw = request.headers.get("If-Match")
    if raw is None and data is not None:
        raw = data.get("expected_version")
    if raw is None or raw == "":
        return None
    try:
        return int(str(raw).strip('"'))
    except ValueError:
        raise ValidationError("expected_version must be an integer", details={"expected_version": raw}) from None


def register_error_handlers(bp) -> None:
    """Map domain exceptions to HTTP responses for one blueprint.

        NotFoundError -> 404, ValidationError -> 422 (400 for missing body
        keys), ConflictError -> 409, InvariantViolation / anything else -> 500.
    """

    @bp.errorhandler(NotFoundError)
    def _handle_not_found(error: NotFoundError):
        return error_from_exception(error)

    @bp.errorhandler(ValidationError)
    def _handle_validation(error: ValidationError):
        return error_from_exception(error)

    @bp.errorhandler(ConflictError)
    def _handle_conflict(error: ConflictError):
        return error_from_exception(error)

    @bp.errorhandler(InvariantViolation)
    def _handle_invariant(error: InvariantViolation):
        logger.critical("Invariant violated in %s endpoint=%s: %s", bp.name, request.endpoint, error)
        return api_error(E.INTERNAL, "Internal server error")

    @bp.errorhandler(Exception)
    def _handle_unexpected(error: Exception):
        if isinstance(error, HTTPException):
            return jsonify({"error": error.description}), error.code
        logger.exception("Unexpected error in %s endpoint=%s", bp.name, request.endpoint)
        return api_error(E.INTERNAL, "Internal server error")
