"""
Platform-wide exception hierarchy.

Services raise these; blueprints register handlers against them once and
get consistent HTTP status codes everywhere.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="StrategicPlan", resource_id=42)
    raise ValidationError("quality_score must be between 0 and 100",
                          details={"quality_score": 140})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Maps to HTTP 404.

    Args:
        resource: Human-readable model/entity name (e.g. "StrategicPlan").
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
    """Raised when input fails business-rule validation in the service layer.

    Distinct from HTTP 400 (malformed input, caught in blueprint): the data
    was well-formed but violated a business rule (unknown status, negative
    ratio, out-of-range quality score).

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class StateConflictError(Exception):
    """Raised when a row is not in the state an operation requires.

    Typical case: two operators try to claim the same queue item and the
    conditional update finds it already in_progress.

    Maps to HTTP 409.

    Args:
        resource: Model name.
        resource_id: PK of the row.
        current_status: Status found in the store.
        expected: Status(es) the operation needed.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str,
        current_status: str | None,
        expected: str | tuple[str, ...],
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.current_status = current_status
        self.expected = expected
        if isinstance(expected, tuple):
            expected = " | ".join(expected)
        super().__init__(
            f"{resource} id={resource_id} is '{current_status}', expected '{expected}'"
        )
