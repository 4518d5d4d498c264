"""
TaskBoard Exceptions
====================

Error taxonomy shared by the service layer, the HTTP layer and the client.

- TaskValidationError: request fields violate constraints (400)
- TaskNotFoundError: operation targets a nonexistent id (404)
- OptimisticLockConflict: version mismatch on update (409)
- StaleRecordError: the store rejected a write carrying a stale version
"""

import time
from typing import Any, Dict, Optional

CONFLICT_ERROR_CODE = "OPTIMISTIC_LOCK_CONFLICT"
CONFLICT_MESSAGE = "Task was modified by another user. Please refresh and try again."


class TaskBoardError(Exception):
    """Base class for all task board errors."""


class TaskValidationError(TaskBoardError):
    """Raised when request fields fail validation."""

    def __init__(self, field_errors: Dict[str, str], message: str = "Validation failed for request"):
        self.field_errors = dict(field_errors)
        super().__init__(message)


class TaskNotFoundError(TaskBoardError):
    """Raised when no task exists with the given id."""

    def __init__(self, task_id: int):
        self.task_id = task_id
        super().__init__(f"Task not found with ID: {task_id}")


class StaleRecordError(TaskBoardError):
    """Raised by the store when a write matched no row at the expected version."""

    def __init__(self, task_id: int, expected_version: Optional[int] = None):
        self.task_id = task_id
        self.expected_version = expected_version
        super().__init__(f"Task {task_id} changed underneath version {expected_version}")


class OptimisticLockConflict(TaskBoardError):
    """
    Raised when an update carries a version other than the stored one.

    Carries the authoritative current record so the client can resolve the
    conflict without a second round trip.
    """

    def __init__(
        self,
        current_version: int,
        attempted_version: int,
        current_data: Dict[str, Any],
        message: str = CONFLICT_MESSAGE,
        timestamp: Optional[int] = None,
    ):
        self.current_version = current_version
        self.attempted_version = attempted_version
        self.current_data = current_data
        self.timestamp = timestamp if timestamp is not None else int(time.time() * 1000)
        super().__init__(message)

    @property
    def message(self) -> str:
        return self.args[0]

    def to_payload(self) -> Dict[str, Any]:
        """Build the 409 response body."""
        return {
            "error": CONFLICT_ERROR_CODE,
            "message": self.message,
            "currentData": self.current_data,
            "currentVersion": self.current_version,
            "attemptedVersion": self.attempted_version,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], attempted_version: Optional[int] = None) -> "OptimisticLockConflict":
        """Rebuild the conflict from a 409 response body."""
        current_data = payload.get("currentData") or {}
        current_version = payload.get("currentVersion", current_data.get("version"))
        if attempted_version is None:
            attempted_version = payload.get("attemptedVersion")
        return cls(
            current_version=current_version,
            attempted_version=attempted_version,
            current_data=current_data,
            message=payload.get("message", CONFLICT_MESSAGE),
            timestamp=payload.get("timestamp"),
        )


class TaskBoardClientError(TaskBoardError):
    """Raised by the HTTP client for unexpected non-2xx responses."""

    def __init__(self, status_code: int, body: Any = None):
        self.status_code = status_code
        self.body = body
        detail = body.get("message") if isinstance(body, dict) else None
        super().__init__(detail or f"Request failed with status {status_code}")
