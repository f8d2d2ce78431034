from __future__ import annotations

from typing import Any


class CommissionFlowError(Exception):
    kind = "error"

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        return {"ok": False, "kind": self.kind, "detail": self.message, **self.details}


class NotFoundError(CommissionFlowError):
    kind = "not_found"


class InvalidStateError(CommissionFlowError):
    kind = "invalid_state"


class ValidationError(CommissionFlowError):
    kind = "validation"


class ConsistencyError(CommissionFlowError):
    """Stored quantities contradict each other (closed + fallback > po_qty)."""

    kind = "consistency"
