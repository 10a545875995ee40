"""
Engine Exceptions
==================
Every failure carries the model, field / relationship and attempted operation
so the calling layer can build an actionable message. The HTTP status code is
only used by the FastAPI exception handler.
"""
from typing import Any, Dict, Optional


class CRUDError(Exception):
    """Base class for all engine errors."""

    status_code = 500
    error_type = "internal"

    def __init__(
        self,
        message: str,
        model: Optional[str] = None,
        field: Optional[str] = None,
        relationship: Optional[str] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.model = model
        self.field = field
        self.relationship = relationship
        self.operation = operation

    def to_dict(self) -> Dict[str, Any]:
        data = {"type": self.error_type, "message": self.message}
        for key in ("model", "field", "relationship", "operation"):
            value = getattr(self, key)
            if value is not None:
                data[key] = value
        return data


class SchemaMalformedError(CRUDError):
    """Schema document failed structural validation."""

    status_code = 500
    error_type = "malformed"


class NotFoundError(CRUDError):
    status_code = 404
    error_type = "not_found"


class SchemaNotFoundError(NotFoundError):
    """No schema resource exists for the requested model."""


class RecordNotFoundError(NotFoundError):
    """No record with the requested primary key."""


class ForbiddenError(CRUDError):
    """The access gate denied the operation."""

    status_code = 403
    error_type = "forbidden"

    def __init__(self, message: str, permission: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.permission = permission

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.permission:
            data["permission"] = self.permission
        return data


class InvalidRequestError(CRUDError):
    """Unsortable / unfilterable field, unknown relationship, bad payload."""

    status_code = 400
    error_type = "invalid_request"


class ConflictError(CRUDError):
    """Constraint violation during create / update / delete."""

    status_code = 409
    error_type = "conflict"


class InternalError(CRUDError):
    """Unexpected database or transport failure."""
