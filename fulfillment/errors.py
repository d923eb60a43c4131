"""Error taxonomy shared by the domain, application and storage layers.

Every error carries a machine readable ``code`` and the HTTP status the
API layer answers with.
"""
from typing import Any, Optional


class FulfillmentError(Exception):
    status_code = 500
    default_code = "internal_error"

    def __init__(self, message: str, code: Optional[str] = None, details: Any = None):
        self.message = message
        self.code = code or self.default_code
        self.details = details
        super().__init__(message)

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(FulfillmentError):
    """Malformed or missing input."""
    status_code = 400
    default_code = "validation_error"


class NotFoundError(FulfillmentError):
    status_code = 404
    default_code = "not_found"

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} with ID {entity_id} not found", code="not_found")
        self.entity = entity
        self.entity_id = entity_id


class StateError(FulfillmentError):
    """A rule about the current state of an entity forbids the operation.

    ``code`` names the rule: ``unavailable``, ``insufficient-stock``,
    ``overpayment``, ``illegal-transition`` and so on.
    """
    status_code = 409
    default_code = "illegal-state"


class DatabaseError(FulfillmentError):
    status_code = 500
    default_code = "database_error"
