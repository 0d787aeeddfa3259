"""
ErrorResponse - HTTP error body for the orchestrator API

Maps an error code to its category, severity and HTTP status. Unknown codes
and non-orchestrator exceptions become a 500 ``INTERNAL_ERROR`` whose
message does not leak internals.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, NamedTuple, Optional
from uuid import uuid4

from .exceptions import OrchestratorError


class ErrorType(str, Enum):
    VALIDATION = "validation"
    NOT_FOUND = "not_found"
    INTEGRITY = "integrity"
    CONCURRENCY = "concurrency"
    SYSTEM = "system"


class ErrorSeverity(str, Enum):
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class ErrorClass(NamedTuple):
    error_type: ErrorType
    severity: ErrorSeverity
    status_code: int


INTERNAL = ErrorClass(ErrorType.SYSTEM, ErrorSeverity.CRITICAL, 500)

ERROR_CLASSES: Dict[str, ErrorClass] = {
    "VALIDATION_ERROR": ErrorClass(ErrorType.VALIDATION, ErrorSeverity.WARNING, 422),
    "GRAPH_NOT_FOUND": ErrorClass(ErrorType.NOT_FOUND, ErrorSeverity.WARNING, 404),
    "TASK_NOT_FOUND": ErrorClass(ErrorType.NOT_FOUND, ErrorSeverity.WARNING, 404),
    "RECORD_NOT_FOUND": ErrorClass(ErrorType.NOT_FOUND, ErrorSeverity.WARNING, 404),
    "INVALID_GRAPH": ErrorClass(ErrorType.INTEGRITY, ErrorSeverity.ERROR, 409),
    "CYCLE_DETECTED": ErrorClass(ErrorType.INTEGRITY, ErrorSeverity.ERROR, 409),
    "DANGLING_REFERENCE": ErrorClass(ErrorType.INTEGRITY, ErrorSeverity.ERROR, 409),
    "LOCK_TIMEOUT": ErrorClass(ErrorType.CONCURRENCY, ErrorSeverity.WARNING, 503),
    "STORAGE_ERROR": ErrorClass(ErrorType.SYSTEM, ErrorSeverity.ERROR, 500),
}


def classify(code: str) -> ErrorClass:
    return ERROR_CLASSES.get(code, INTERNAL)


@dataclass
class ErrorResponse:
    """Error body: ``{"success": false, "error": {...}}``."""
    error_code: str
    message: str
    error_class: ErrorClass = INTERNAL
    details: Dict[str, Any] = field(default_factory=dict)
    trace_id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def status_code(self) -> int:
        return self.error_class.status_code

    @property
    def severity(self) -> ErrorSeverity:
        return self.error_class.severity

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "error": {
                "code": self.error_code,
                "type": self.error_class.error_type.value,
                "severity": self.severity.value,
                "message": self.message,
                "details": self.details,
                "traceId": self.trace_id,
                "timestamp": self.timestamp.isoformat(),
            },
        }

    @classmethod
    def from_exception(cls, exception: Exception, trace_id: Optional[str] = None) -> "ErrorResponse":
        if isinstance(exception, OrchestratorError):
            return cls(
                error_code=exception.code,
                message=exception.message,
                error_class=classify(exception.code),
                details=exception.details,
                trace_id=trace_id or str(uuid4()),
            )

        return cls(
            error_code="INTERNAL_ERROR",
            message="Internal server error",
            details={"exception": type(exception).__name__},
            trace_id=trace_id or str(uuid4()),
        )
