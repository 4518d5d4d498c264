"""
TaskBoard Models Module

Pydantic request/response models for the task board API. Each operation has
its own validated request type so loosely shaped bodies never reach the
service layer.

Author: taskboard maintainers
Created: 2026-10-19
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# ==================== ENUMS ====================

class TaskStatus(str, Enum):
    """Task status enumeration"""
    BACKLOG = "BACKLOG"
    IN_PROGRESS = "IN_PROGRESS"
    REVIEW = "REVIEW"
    TESTING = "TESTING"
    DONE = "DONE"

    @property
    def display_name(self) -> str:
        return STATUS_DISPLAY_NAMES[self]


class TaskPriority(str, Enum):
    """Task priority enumeration"""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def display_name(self) -> str:
        return self.value.capitalize()


STATUS_DISPLAY_NAMES = {
    TaskStatus.BACKLOG: "Backlog",
    TaskStatus.IN_PROGRESS: "In Progress",
    TaskStatus.REVIEW: "In Review",
    TaskStatus.TESTING: "Testing",
    TaskStatus.DONE: "Done",
}

PRIORITY_LEVELS = {
    TaskPriority.LOW: 1,
    TaskPriority.MEDIUM: 2,
    TaskPriority.HIGH: 3,
    TaskPriority.CRITICAL: 4,
}

# Fields a client may edit; everything else is managed by the server
EDITABLE_FIELDS = (
    "title",
    "description",
    "status",
    "priority",
    "assignee",
    "estimatedHours",
    "tags",
)

TITLE_MIN_LENGTH = 3
TITLE_MAX_LENGTH = 200
DESCRIPTION_MAX_LENGTH = 1000
ASSIGNEE_MAX_LENGTH = 100
TAGS_MAX_LENGTH = 500
MAX_ESTIMATED_HOURS = 1000


class TaskBoardModel(BaseModel):
    """Base model: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        str_strip_whitespace=True,
        use_enum_values=True,
    )


# ==================== TASK REQUEST MODELS ====================

class TaskCreate(TaskBoardModel):
    """Model for creating a new task"""

    title: str = Field(
        ...,
        min_length=TITLE_MIN_LENGTH,
        max_length=TITLE_MAX_LENGTH,
        description="Task title (3-200 characters)"
    )
    description: Optional[str] = Field(
        None,
        max_length=DESCRIPTION_MAX_LENGTH,
        description="Task description (max 1000 characters)"
    )
    status: TaskStatus = Field(
        default=TaskStatus.BACKLOG.value,
        description="Task status"
    )
    priority: TaskPriority = Field(
        default=TaskPriority.MEDIUM.value,
        description="Task priority level"
    )
    assignee: Optional[str] = Field(
        None,
        max_length=ASSIGNEE_MAX_LENGTH,
        description="Person assigned to this task"
    )
    estimated_hours: Optional[float] = Field(
        None,
        ge=0,
        le=MAX_ESTIMATED_HOURS,
        description="Estimated effort in hours (0-1000)"
    )
    tags: Optional[str] = Field(
        None,
        max_length=TAGS_MAX_LENGTH,
        description="Comma-separated tags (max 500 characters)"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Create Task Management API",
                "description": "Build REST endpoints for tasks with optimistic locking",
                "status": "IN_PROGRESS",
                "priority": "HIGH",
                "assignee": "Emma Wilson",
                "estimatedHours": 20,
                "tags": "api,backend,crud"
            }
        }
    )


class TaskUpdate(TaskBoardModel):
    """
    Model for updating an existing task.

    Only the fields present in the request body are applied. ``version`` is the
    version the client last saw and is compared against the stored one.
    """

    title: Optional[str] = Field(
        None,
        min_length=TITLE_MIN_LENGTH,
        max_length=TITLE_MAX_LENGTH,
        description="Task title (3-200 characters)"
    )
    description: Optional[str] = Field(
        None,
        max_length=DESCRIPTION_MAX_LENGTH,
        description="Task description (max 1000 characters)"
    )
    status: Optional[TaskStatus] = Field(None, description="Task status")
    priority: Optional[TaskPriority] = Field(None, description="Task priority level")
    assignee: Optional[str] = Field(
        None,
        max_length=ASSIGNEE_MAX_LENGTH,
        description="Person assigned to this task"
    )
    estimated_hours: Optional[float] = Field(
        None,
        ge=0,
        le=MAX_ESTIMATED_HOURS,
        description="Estimated effort in hours (0-1000)"
    )
    tags: Optional[str] = Field(
        None,
        max_length=TAGS_MAX_LENGTH,
        description="Comma-separated tags (max 500 characters)"
    )
    version: int = Field(
        ...,
        ge=0,
        description="Version the client last fetched, required for optimistic locking"
    )

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "status": "REVIEW",
                "assignee": "Bob",
                "version": 3
            }
        }
    )

    @field_validator("title", "status", "priority", mode="before")
    @classmethod
    def reject_null(cls, v, info):
        """Required task fields may be omitted but never cleared"""
        if v is None:
            raise ValueError(f"{to_camel(info.field_name)} cannot be null")
        return v

    def changes(self) -> Dict[str, Any]:
        """Return the fields explicitly sent by the client, keyed by attribute name."""
        return {
            name: getattr(self, name)
            for name in self.model_fields_set
            if name != "version"
        }


class BulkStatusChange(TaskBoardModel):
    """Model for moving several tasks to one status"""

    task_ids: List[int] = Field(..., min_length=1, description="Ids of the tasks to move")
    status: TaskStatus = Field(..., description="Target status")


class SearchCriteria(TaskBoardModel):
    """Filters for task search; every filter is optional and they combine with AND"""

    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    assignee: Optional[str] = None
    search_term: Optional[str] = None


# ==================== TASK RESPONSE MODELS ====================

class TaskResponse(TaskBoardModel):
    """Model for task response"""

    id: int = Field(..., description="Unique task identifier")
    title: str = Field(..., description="Task title")
    description: Optional[str] = Field(None, description="Task description")
    status: TaskStatus = Field(..., description="Task status")
    priority: TaskPriority = Field(..., description="Task priority level")
    assignee: Optional[str] = Field(None, description="Person assigned to this task")
    estimated_hours: Optional[float] = Field(None, description="Estimated effort in hours")
    tags: Optional[str] = Field(None, description="Comma-separated tags")
    version: int = Field(..., description="Optimistic locking version")
    created_at: datetime = Field(..., description="Creation timestamp (UTC)")
    updated_at: datetime = Field(..., description="Last update timestamp (UTC)")
    created_by: Optional[str] = Field(None, description="Who created the task")
    updated_by: Optional[str] = Field(None, description="Who last updated the task")

    model_config = ConfigDict(from_attributes=True, str_strip_whitespace=False)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready dictionary, identical to the HTTP response body."""
        return self.model_dump(mode="json", by_alias=True)


class TaskPage(TaskBoardModel):
    """Model for paginated task list response"""

    content: List[TaskResponse] = Field(..., description="Tasks on this page")
    total_elements: int = Field(..., ge=0, description="Total number of tasks")
    total_pages: int = Field(..., ge=0, description="Total number of pages")
    number: int = Field(..., ge=0, description="Zero-based page number")
    size: int = Field(..., ge=1, description="Page size")
    sort_by: str = Field(..., description="Sort column")
    direction: str = Field(..., description="Sort direction")


class ConflictPayload(TaskBoardModel):
    """Body of a 409 response"""

    error: str = Field(..., description="Always OPTIMISTIC_LOCK_CONFLICT")
    message: str
    current_data: TaskResponse = Field(..., description="Authoritative current record")
    current_version: int
    attempted_version: int
    timestamp: int = Field(..., description="Epoch milliseconds")


class ConflictCheckResult(TaskBoardModel):
    """Result of the advisory conflict pre-check"""

    has_conflict: bool
    timestamp: datetime
    current_snapshot: Optional[TaskResponse] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready dictionary; absent snapshot and error keys are left out."""
        data = self.model_dump(mode="json", by_alias=True)
        return {key: value for key, value in data.items() if value is not None}


class TaskStatistics(TaskBoardModel):
    """Dashboard statistics"""

    total_tasks: int = Field(..., ge=0)
    by_status: Dict[str, int] = Field(default_factory=dict)
    by_priority: Dict[str, int] = Field(default_factory=dict)
    by_assignee: Dict[str, int] = Field(default_factory=dict)
    completion_rate: float = Field(..., ge=0, le=100, description="Percent of tasks DONE")
    total_estimated_hours: float = Field(..., ge=0)
    timestamp: datetime


class ErrorResponse(TaskBoardModel):
    """Structured error body for 400 and 500 responses"""

    error: str
    message: str
    field_errors: Optional[Dict[str, str]] = None
    timestamp: datetime
