"""
Exception hierarchy for the template/workflow configuration core.

Services raise only these types. Blueprints register handlers against the
three base classes once and get consistent HTTP status codes everywhere:

    NotFoundError      -> 404
    ValidationError    -> 422  (rejected before any write)
    ConflictError      -> 409  (caller chooses overwrite-or-abort)
    InvariantViolation -> 500  (defect in a validating component)

Usage:
    from erpforms.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="TemplateTable", resource_id=table_id)
    raise ValidationError("alias is required", details={"alias": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable entity name (e.g. "Template", "FormField").
        resource_id: The key that was looked up.
    """

    def __init__(self, resource: str, resource_id: str | int | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input violates a structural invariant.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown (entity id, field name, level).
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class FixedFieldImmutableError(ValidationError):
    """Attempt to change a catalog-owned attribute of a schema-sourced field."""

    def __init__(self, field_id: str, attribute: str) -> None:
        super().__init__(
            f"Field {field_id} is schema-sourced; '{attribute}' cannot be changed",
            details={"field_id": field_id, "attribute": attribute},
        )


class InvalidPermutationError(ValidationError):
    """Requested field order is not a permutation of the table's current fields."""

    def __init__(self, table_id: str, missing: list, unexpected: list, duplicates: list) -> None:
        super().__init__(
            f"Requested order for table {table_id} is not a permutation of its fields",
            details={
                "table_id": table_id,
                "missing": missing,
                "unexpected": unexpected,
                "duplicates": duplicates,
            },
        )


class EmptyApproverSetError(ValidationError):
    """A workflow level resolves to no approvers."""

    def __init__(self, level_order: int) -> None:
        self.level_order = level_order
        super().__init__(
            f"Level {level_order} has no resolvable approvers",
            details={"level_order": level_order},
        )


class UnknownEditableFieldError(ValidationError):
    """A workflow level lists an editable field that is not visible on the template."""

    def __init__(self, level_order: int, field_name: str) -> None:
        self.level_order = level_order
        self.field_name = field_name
        super().__init__(
            f"Level {level_order}: editable field '{field_name}' is not a visible template field",
            details={"level_order": level_order, "field_name": field_name},
        )


class InvalidBundleError(ValidationError):
    """Export bundle is malformed or fails structural validation."""


class UnsupportedVersionError(InvalidBundleError):
    """Export bundle declares a format version this installation cannot read."""

    def __init__(self, version: str, supported: list[str]) -> None:
        self.version = version
        super().__init__(
            f"Unsupported bundle format version {version!r}",
            details={"format_version": version, "supported": supported},
        )


class ConflictError(Exception):
    """Raised when an operation would collide with existing state.

    Args:
        resource: Entity name.
        field: The unique attribute that collides.
        value: The conflicting value.
    """

    def __init__(self, resource: str, field: str, value: str | None = None) -> None:
        self.resource = resource
        self.field = field
        self.value = value
        msg = f"{resource} with {field}={value!r} already exists"
        super().__init__(msg)


class TemplateAlreadyExistsError(ConflictError):
    """Import target already has a template for the bundle's primary table."""

    def __init__(self, table_name: str, existing_id: str | None = None) -> None:
        self.existing_id = existing_id
        super().__init__("Template", "table_name", table_name)


class StaleVersionError(ConflictError):
    """Optimistic version check failed: another writer committed first."""

    def __init__(self, template_id: str, expected: int, actual: int) -> None:
        self.resource = "Template"
        self.field = "lock_version"
        self.value = str(expected)
        self.expected = expected
        self.actual = actual
        Exception.__init__(
            self,
            f"Template {template_id} changed concurrently "
            f"(expected version {expected}, found {actual})",
        )


class InvariantViolation(Exception):
    """An invariant that validation should have guaranteed does not hold.

    Never raised for bad input. Indicates a defect and aborts the transaction.
    """
