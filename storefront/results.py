"""
Operation results carrying an outcome and a user-facing message.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from fastapi import HTTPException, status


class Outcome(str, Enum):
    SUCCESS = "success"
    VALIDATION_ERROR = "validation_error"
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    RULE_VIOLATION = "rule_violation"


HTTP_STATUS_BY_OUTCOME = {
    Outcome.VALIDATION_ERROR: 422,
    Outcome.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    Outcome.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    Outcome.RULE_VIOLATION: status.HTTP_400_BAD_REQUEST,
}


@dataclass
class OperationResult:
    """Outcome of a workflow operation."""
    outcome: Outcome
    message: Optional[str] = None
    value: Any = None

    @property
    def succeeded(self) -> bool:
        return self.outcome == Outcome.SUCCESS

    @classmethod
    def ok(cls, value: Any = None, message: Optional[str] = None) -> "OperationResult":
        return cls(Outcome.SUCCESS, message, value)

    @classmethod
    def invalid(cls, message: str) -> "OperationResult":
        return cls(Outcome.VALIDATION_ERROR, message)

    @classmethod
    def not_found(cls, message: str) -> "OperationResult":
        return cls(Outcome.NOT_FOUND, message)

    @classmethod
    def forbidden(cls, message: str = "You do not have access to this resource.") -> "OperationResult":
        return cls(Outcome.FORBIDDEN, message)

    @classmethod
    def rejected(cls, message: str) -> "OperationResult":
        return cls(Outcome.RULE_VIOLATION, message)


def raise_for_result(result: OperationResult) -> OperationResult:
    """Raise an HTTPException for any non-success result."""
    if not result.succeeded:
        raise HTTPException(
            status_code=HTTP_STATUS_BY_OUTCOME[result.outcome],
            detail=result.message
        )
    return result
