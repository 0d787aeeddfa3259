"""
Exceptions - orchestrator error hierarchy

Standardized exception classes shared by the graph model, the scheduler,
the router and the storage layer.
"""

from typing import Any, Dict, List, Optional


class OrchestratorError(Exception):
    """Base class for every orchestrator error."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Args:
            message: Human readable message
            code: Stable error code
            details: Additional structured details
        """
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict:
        """Convert the error to a dictionary."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details
        }


class InvalidMessageError(OrchestratorError):
    """Raised when an agent message fails structural validation."""

    def __init__(self, errors: List[str], warnings: Optional[List[str]] = None):
        super().__init__(
            message=f"Invalid agent message: {'; '.join(errors)}",
            code="VALIDATION_ERROR",
            details={"errors": list(errors), "warnings": list(warnings or [])}
        )
        self.errors = list(errors)
        self.warnings = list(warnings or [])


class GraphNotFoundError(OrchestratorError):
    """Raised when no task graph exists for a product."""

    def __init__(self, product: str):
        super().__init__(
            message=f"Task graph for product '{product}' not found",
            code="GRAPH_NOT_FOUND",
            details={"product": product}
        )
        self.product = product


class TaskNotFoundError(OrchestratorError):
    """Raised when a task id is not part of a graph."""

    def __init__(self, task_id: str, product: Optional[str] = None):
        super().__init__(
            message=f"Task '{task_id}' not found",
            code="TASK_NOT_FOUND",
            details={"task_id": task_id, "product": product}
        )
        self.task_id = task_id
        self.product = product


class InvalidGraphError(OrchestratorError):
    """Raised when a graph violates its structural invariants."""

    def __init__(
        self,
        message: str,
        issues: Optional[List[Any]] = None,
        code: str = "INVALID_GRAPH",
        product: Optional[str] = None
    ):
        issues = list(issues or [])
        super().__init__(
            message=message,
            code=code,
            details={
                "product": product,
                "issues": [
                    issue.to_dict() if hasattr(issue, "to_dict") else str(issue)
                    for issue in issues
                ],
            }
        )
        self.issues = issues
        self.product = product


class CycleDetectedError(InvalidGraphError):
    """Raised when the dependency relation contains a cycle."""

    def __init__(self, issues: List[Any], product: Optional[str] = None):
        super().__init__(
            message=f"Dependency cycle detected ({len(issues)} issue(s))",
            issues=issues,
            code="CYCLE_DETECTED",
            product=product
        )


class DanglingReferenceError(InvalidGraphError):
    """Raised when a dependency or consumed artifact points nowhere."""

    def __init__(self, issues: List[Any], product: Optional[str] = None):
        super().__init__(
            message=f"Dangling reference(s) in task graph ({len(issues)} issue(s))",
            issues=issues,
            code="DANGLING_REFERENCE",
            product=product
        )


class LockTimeoutError(OrchestratorError):
    """Raised when a keyed lock cannot be acquired in time."""

    def __init__(self, key: str, timeout: float):
        super().__init__(
            message=f"Timed out after {timeout}s waiting for lock '{key}'",
            code="LOCK_TIMEOUT",
            details={"key": key, "timeout": timeout}
        )
        self.key = key
        self.timeout = timeout


class StorageError(OrchestratorError):
    """Raised when a storage backend operation fails."""

    def __init__(self, message: str, backend: Optional[str] = None, key: Optional[str] = None):
        super().__init__(
            message=message,
            code="STORAGE_ERROR",
            details={"backend": backend, "key": key}
        )


class RecordNotFoundError(OrchestratorError):
    """Raised when a checkpoint or blocker id is unknown."""

    def __init__(self, kind: str, record_id: str, product: Optional[str] = None):
        super().__init__(
            message=f"{kind.capitalize()} '{record_id}' not found",
            code="RECORD_NOT_FOUND",
            details={"kind": kind, "record_id": record_id, "product": product}
        )
        self.kind = kind
        self.record_id = record_id
