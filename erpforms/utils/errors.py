"""Standardised API error responses.

Usage
-----
    from erpforms.utils.errors import api_error, error_from_exception, E

    return api_error(E.VALIDATION_REQUIRED, "field_ids is required")
    return error_from_exception(exc)   # any erpforms.core.exceptions error
"""

from __future__ import annotations

from flask import jsonify

from erpforms.core.exceptions import (
    ConflictError,
    EmptyApproverSetError,
    FixedFieldImmutableError,
    InvalidBundleError,
    InvalidPermutationError,
    NotFoundError,
    StaleVersionError,
    TemplateAlreadyExistsError,
    UnknownEditableFieldError,
    UnsupportedVersionError,
    ValidationError,
)


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants (``ERR_`` prefix)."""

    # Validation - HTTP 400 / 422
    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    FIXED_FIELD_IMMUTABLE = "ERR_FIXED_FIELD_IMMUTABLE"
    INVALID_PERMUTATION = "ERR_INVALID_PERMUTATION"
    EMPTY_APPROVER_SET = "ERR_EMPTY_APPROVER_SET"
    UNKNOWN_EDITABLE_FIELD = "ERR_UNKNOWN_EDITABLE_FIELD"
    INVALID_BUNDLE = "ERR_INVALID_BUNDLE"
    UNSUPPORTED_VERSION = "ERR_UNSUPPORTED_VERSION"

    # Not-found - HTTP 404
    NOT_FOUND = "ERR_NOT_FOUND"

    # Conflict - HTTP 409
    CONFLICT_DUPLICATE = "ERR_CONFLICT_DUPLICATE"
    TEMPLATE_EXISTS = "ERR_TEMPLATE_EXISTS"
    STALE_VERSION = "ERR_STALE_VERSION"

    # Server - HTTP 500
    INTERNAL = "ERR_INTERNAL"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 422,
    E.FIXED_FIELD_IMMUTABLE: 422,
    E.INVALID_PERMUTATION: 422,
    E.EMPTY_APPROVER_SET: 422,
    E.UNKNOWN_EDITABLE_FIELD: 422,
    E.INVALID_BUNDLE: 422,
    E.UNSUPPORTED_VERSION: 422,
    E.NOT_FOUND: 404,
    E.CONFLICT_DUPLICATE: 409,
    E.TEMPLATE_EXISTS: 409,
    E.STALE_VERSION: 409,
    E.INTERNAL: 500,
}

# Most specific first
_EXCEPTION_CODES: tuple[tuple[type, str], ...] = (
    (FixedFieldImmutableError, E.FIXED_FIELD_IMMUTABLE),
    (InvalidPermutationError, E.INVALID_PERMUTATION),
    (EmptyApproverSetError, E.EMPTY_APPROVER_SET),
    (UnknownEditableFieldError, E.UNKNOWN_EDITABLE_FIELD),
    (UnsupportedVersionError, E.UNSUPPORTED_VERSION),
    (InvalidBundleError, E.INVALID_BUNDLE),
    (ValidationError, E.VALIDATION_INVALID),
    (NotFoundError, E.NOT_FOUND),
    (TemplateAlreadyExistsError, E.TEMPLATE_EXISTS),
    (StaleVersionError, E.STALE_VERSION),
    (ConflictError, E.CONFLICT_DUPLICATE),
)


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override. Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (entity ids, offending field, level order).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` - drop-in for Flask views.
    """
    http_status = status or _DEFAULT_STATUS.get(code, 400)

    body: dict = {
        "error": message,
        "code": code,
    }
    if details:
        body["details"] = details

    return jsonify(body), http_status


def error_from_exception(exc: Exception):
    """Map a domain exception to its standard JSON error response."""
    code = next((c for exc_type, c in _EXCEPTION_CODES if isinstance(exc, exc_type)), E.INTERNAL)
    details = dict(getattr(exc, "details", None) or {})
    if isinstance(exc, TemplateAlreadyExistsError) and exc.existing_id:
        details["existing_template_id"] = exc.existing_id
    if isinstance(exc, StaleVersionError):
        details.update({"expected_version": exc.expected, "actual_version": exc.actual})
    return api_error(code, str(exc), details=details or None)
