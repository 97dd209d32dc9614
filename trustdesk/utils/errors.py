"""Domain exceptions and standardized error payloads."""
from typing import Any


def error_response(code: str, message: str, details: dict[str, Any] | None = None) -> dict[str, Any]:
    """Return a standardized error payload."""

    payload: dict[str, Any] = {"error": {"code": code, "message": message}}
    if details:
        payload["error"]["details"] = details
    return payload


class DomainError(Exception):
    """Base class for errors raised by the escrow, dispute and ledger services."""

    status_code = 400
    code = "DOMAIN_ERROR"

    def __init__(self, message: str, *, code: str | None = None, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        self.details = details

    def to_payload(self) -> dict[str, Any]:
        return error_response(self.code, self.message, self.details)


class ValidationError(DomainError):
    """Malformed input: bad id, non-positive amount, missing field, amount over bound."""

    status_code = 400
    code = "VALIDATION_ERROR"


class InvalidStateError(DomainError):
    """The aggregate's current status forbids the requested operation."""

    status_code = 409
    code = "INVALID_STATE"


class NotFoundError(DomainError):
    status_code = 404
    code = "NOT_FOUND"

    def __init__(self, entity: str, entity_id: str) -> None:
        super().__init__(
            f"{entity} not found.",
            code=f"{entity.upper()}_NOT_FOUND",
            details={"id": entity_id},
        )


class PermissionDeniedError(DomainError):
    status_code = 403
    code = "FORBIDDEN"


__all__ = [
    "error_response",
    "DomainError",
    "ValidationError",
    "InvalidStateError",
    "NotFoundError",
    "PermissionDeniedError",
]
