"""
Errors - error handling module

Standardized exceptions and error response payloads.
"""

from .exceptions import (
    OrchestratorError,
    InvalidMessageError,
    GraphNotFoundError,
    TaskNotFoundError,
    InvalidGraphError,
    CycleDetectedError,
    DanglingReferenceError,
    LockTimeoutError,
    StorageError,
    RecordNotFoundError,
)

from .error_response import ErrorResponse, ErrorType, ErrorSeverity

__all__ = [
    # Exceptions
    "OrchestratorError",
    "InvalidMessageError",
    "GraphNotFoundError",
    "TaskNotFoundError",
    "InvalidGraphError",
    "CycleDetectedError",
    "DanglingReferenceError",
    "LockTimeoutError",
    "StorageError",
    "RecordNotFoundError",

    # Response
    "ErrorResponse",
    "ErrorType",
    "ErrorSeverity",
]
