"""
Error taxonomy for the planning engine.

Engine operations never raise on expected failures. They return an
``OperationResult`` whose ``error`` carries one of the codes below, and the
API layer turns that into the ``{success, error_code, message}`` envelope.
``PersistenceError`` is the one exception type in play: stores raise it and
the ledger / plan services catch it to run their rollback path.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Generic, Optional, TypeVar


class ErrorCode(Enum):
    """Error codes for API responses and operation results."""
    SUCCESS = "SUCCESS"
    ERR_MISSING_FIELD = "ERR_MISSING_FIELD"
    ERR_INVALID_ENERGY = "ERR_INVALID_ENERGY"
    ERR_INVALID_BUDGET = "ERR_INVALID_BUDGET"
    ERR_INVALID_MINUTES = "ERR_INVALID_MINUTES"
    ERR_BUDGET_EXCEEDED = "ERR_BUDGET_EXCEEDED"
    ERR_UNKNOWN_TASK = "ERR_UNKNOWN_TASK"
    ERR_DUPLICATE_REQUEST = "ERR_DUPLICATE_REQUEST"
    ERR_PERSISTENCE = "ERR_PERSISTENCE"
    ERR_INVALID_TRANSITION = "ERR_INVALID_TRANSITION"
    ERR_PLAN_EXISTS = "ERR_PLAN_EXISTS"
    ERR_EMPTY_TASKS = "ERR_EMPTY_TASKS"


@dataclass
class ValidationError:
    """Structured error with code and details."""
    code: ErrorCode
    message: str
    field: Optional[str] = None
    task_id: Optional[int] = None

    def to_dict(self) -> Dict:
        result = {
            'error_code': self.code.value,
            'message': self.message
        }
        if self.field:
            result['field'] = self.field
        if self.task_id is not None:
            result['task_id'] = self.task_id
        return result


class PersistenceError(Exception):
    """A write to the backing store failed."""

    def __init__(self, message: str, operation: Optional[str] = None):
        super().__init__(message)
        self.operation = operation


T = TypeVar('T')


@dataclass
class OperationResult(Generic[T]):
    """Result/error pair returned by every mutating engine operation."""
    ok: bool
    value: Optional[T] = None
    error: Optional[ValidationError] = None

    @classmethod
    def success(cls, value: Any = None) -> "OperationResult":
        return cls(ok=True, value=value)

    @classmethod
    def failure(
        cls,
        code: ErrorCode,
        message: str,
        field: Optional[str] = None,
        task_id: Optional[int] = None,
        value: Any = None
    ) -> "OperationResult":
        return cls(
            ok=False,
            value=value,
            error=ValidationError(code=code, message=message, field=field, task_id=task_id)
        )

    @property
    def error_code(self) -> ErrorCode:
        return self.error.code if self.error else ErrorCode.SUCCESS
