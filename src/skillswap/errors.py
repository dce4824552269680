"""Domain errors for the booking and credit core.

Every error carries a stable ``code`` and the HTTP status the API layer maps
it to. Validation and state-machine errors are raised before any mutation.
"""

from __future__ import annotations

from typing import Any


class SkillSwapError(Exception):
    """Base class for all domain errors."""

    status_code: int = 400
    code: str = "skillswap_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, "details": self.details}


class InsufficientBalance(SkillSwapError):
    status_code = 409
    code = "insufficient_balance"

    def __init__(self, user_id: int, balance: int, required: int) -> None:
        super().__init__(
            f"Insufficient credits: balance {balance}, required {required}",
            details={"user_id": user_id, "balance": balance, "required": required},
        )
        self.user_id = user_id
        self.balance = balance
        self.required = required


class InvalidStateTransition(SkillSwapError):
    status_code = 409
    code = "invalid_state_transition"

    def __init__(self, entity: str, current: str, target: str) -> None:
        super().__init__(
            f"Invalid {entity} transition: {current} -> {target}",
            details={"entity": entity, "current": current, "target": target},
        )
        self.current = current
        self.target = target


class NotFound(SkillSwapError):
    status_code = 404
    code = "not_found"

    def __init__(self, entity: str, entity_id: object) -> None:
        super().__init__(f"{entity} {entity_id} not found", details={"entity": entity, "id": str(entity_id)})


class Unauthorized(SkillSwapError):
    """The caller is authenticated but is the wrong party for the action."""

    status_code = 403
    code = "unauthorized"


class ValidationError(SkillSwapError):
    status_code = 422
    code = "validation_error"


class TransientStoreError(SkillSwapError):
    """Persistence timed out or hit a conflict; the caller may retry."""

    status_code = 503
    code = "transient_store_error"
    retry_after_seconds = 2
