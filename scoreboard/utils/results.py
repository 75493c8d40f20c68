"""
Operation result types shared by the operations layer.

Refused operations come back as a failed OperationResult carrying an
ErrorKind; storage failures are not wrapped and propagate as exceptions so
the surrounding transaction rolls back.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class ErrorKind(Enum):
    NOT_FOUND = "not_found"            # Missing row, or row not in the stated event
    STATE_CONFLICT = "state_conflict"  # Lifecycle forbids the operation right now
    SHAPE_CONFLICT = "shape_conflict"  # Input shape disagrees with the game type or event


@dataclass
class OperationResult:
    """Result of a ledger-mutating or ledger-reading operation"""
    success: bool
    data: Optional[Any] = None
    error_kind: Optional[ErrorKind] = None
    error_message: Optional[str] = None

    @classmethod
    def ok(cls, data: Any = None) -> 'OperationResult':
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error_kind: ErrorKind, error_message: str) -> 'OperationResult':
        return cls(success=False, error_kind=error_kind, error_message=error_message)

    @classmethod
    def not_found(cls, error_message: str) -> 'OperationResult':
        return cls.fail(ErrorKind.NOT_FOUND, error_message)

    @classmethod
    def state_conflict(cls, error_message: str) -> 'OperationResult':
        return cls.fail(ErrorKind.STATE_CONFLICT, error_message)

    @classmethod
    def shape_conflict(cls, error_message: str) -> 'OperationResult':
        return cls.fail(ErrorKind.SHAPE_CONFLICT, error_message)
