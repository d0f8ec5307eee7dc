from __future__ import annotations

from typing import Any


class LoanError(Exception):
    """Base class for every failure the loan core reports to its caller."""

    kind = "LoanError"

    def __init__(
        self,
        message: str,
        *,
        entity_type: str | None = None,
        entity_id: str | None = None,
        field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.field = field

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "message": self.message,
            "entityType": self.entity_type,
            "entityId": self.entity_id,
            "field": self.field,
        }


class NotFound(LoanError):
    kind = "NotFound"


class Forbidden(LoanError):
    kind = "Forbidden"


class InvalidTransition(LoanError):
    kind = "InvalidTransition"


class Conflict(LoanError):
    kind = "Conflict"


class InvariantViolation(Conflict):
    # Reported as a Conflict; the subclass only names the ledger bound that tripped.
    pass


class LoanValidationError(LoanError):
    kind = "ValidationError"


HTTP_STATUS_BY_KIND = {
    NotFound.kind: 404,
    Forbidden.kind: 403,
    InvalidTransition.kind: 409,
    Conflict.kind: 409,
    LoanValidationError.kind: 422,
}
