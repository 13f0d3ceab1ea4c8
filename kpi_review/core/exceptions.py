"""
Review-engine exception hierarchy.

Every service in this package raises one of these types and nothing else for
an expected failure. Blueprints register a single handler against
``ReviewError`` and turn it into the ``{"success": false, "error": {...}}``
envelope, so callers can branch on the error ``code`` rather than on message
text.

Usage:
    from kpi_review.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Deliverable", resource_id=42)
    raise ValidationError("Score must be between 0 and 100", details={"value": 140})
"""


class ReviewError(Exception):
    """Base class for every expected failure in the review engine.

    Args:
        message: Human-readable explanation, safe to show in the UI.
        details: Optional field-level breakdown for structured API responses.
    """

    code = "ERR_REVIEW"
    status = 400

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "details": self.details}


class NotFoundError(ReviewError):
    """Raised when a deliverable, KPI or discrepancy id is unknown.

    Args:
        resource: Human-readable model name (e.g. "Deliverable").
        resource_id: The id that was looked up.
    """

    code = "ERR_NOT_FOUND"
    status = 404

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(ReviewError):
    """Input was well-formed JSON but violates a business rule (range, required notes, ...)."""

    code = "ERR_VALIDATION"
    status = 422


class NotAuthorized(ReviewError):
    """Caller's identity or relationship to the KPI does not permit the operation.

    ``status`` is 401 when there is no caller identity at all, 403 otherwise.
    """

    code = "ERR_NOT_AUTHORIZED"
    status = 403

    def __init__(self, message: str, details: dict | None = None, *, unauthenticated: bool = False) -> None:
        super().__init__(message, details)
        if unauthenticated:
            self.status = 401


class AlreadyScored(ReviewError):
    """The targeted score slot is locked; corrections go through resolution."""

    code = "ERR_ALREADY_SCORED"
    status = 409


class AssigneeScoreMissing(ReviewError):
    """A review was attempted before the assignee self-reported."""

    code = "ERR_ASSIGNEE_SCORE_MISSING"
    status = 409


class MissingOccurrence(ReviewError):
    """A recurring deliverable was targeted without a period label."""

    code = "ERR_MISSING_OCCURRENCE"
    status = 422


class UploadError(ReviewError):
    """The evidence store rejected or failed the upload."""

    code = "ERR_UPLOAD"
    status = 502


class UploadTimeout(UploadError):
    """The evidence upload did not finish within the caller's timeout."""

    code = "ERR_UPLOAD_TIMEOUT"
    status = 504


class DataIntegrityError(ReviewError):
    """A correlation key matched more than one record.

    Correlation keys are unique by construction, so this always indicates a
    storage bug rather than a user error.
    """

    code = "ERR_DATA_INTEGRITY"
    status = 500
