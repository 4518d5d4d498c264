"""
TaskBoard Service
=================

Business operations over tasks. The update path implements optimistic
concurrency control:

1. load the current row
2. compare the client's expected version with the stored one
3. apply the change, or reject it with the authoritative current record

The comparison in step 2 and the write are not one atomic operation here; the
store's guarded UPDATE (``WHERE version = :loaded``) is the final arbiter, and a
write it rejects is reported to the caller exactly like a step 2 mismatch.

Author: taskboard maintainers
Created: 2026-10-19
"""

import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from taskboard.database import DatabaseManager, Task, TaskRepository, utcnow
from taskboard.exceptions import (
    OptimisticLockConflict,
    StaleRecordError,
    TaskNotFoundError,
    TaskValidationError,
)
from taskboard.logging_monitoring import AuditAction, AuditLogger
from taskboard.models import (
    BulkStatusChange,
    ConflictCheckResult,
    SearchCriteria,
    TaskCreate,
    TaskPage,
    TaskPriority,
    TaskResponse,
    TaskStatistics,
    TaskStatus,
    TaskUpdate,
)

logger = logging.getLogger(__name__)


def parse_timestamp(value: str) -> datetime:
    """
    Parse an ISO-8601 timestamp into the store's naive UTC representation.

    Raises:
        ValueError: If the value is not a valid ISO-8601 timestamp
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError("Timestamp is empty")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def validation_errors_to_fields(error: ValidationError) -> Dict[str, str]:
    """Flatten a pydantic ValidationError into a field -> message map."""
    field_errors = {}
    for item in error.errors():
        loc = [str(part) for part in item.get("loc", ()) if part not in ("body", "query", "path")]
        key = ".".join(loc) or "request"
        field_errors.setdefault(key, item.get("msg", "Invalid value"))
    return field_errors


class TaskService:
    """
    Service layer for task management.

    Provides CRUD with optimistic locking, the advisory conflict pre-check,
    search, statistics and bulk status changes.
    """

    def __init__(
        self,
        db_manager: DatabaseManager,
        audit_logger: Optional[AuditLogger] = None,
        default_actor: str = "system",
        bulk_max_retries: int = 3,
    ):
        self.db = db_manager
        self.audit = audit_logger or AuditLogger()
        self.default_actor = default_actor
        self.bulk_max_retries = bulk_max_retries

    # ==================== Helpers ====================

    def _actor(self, actor: Optional[str]) -> str:
        return actor or self.default_actor

    @staticmethod
    def _to_response(task: Task) -> TaskResponse:
        return TaskResponse.model_validate(task)

    def _build_conflict(self, task: Task, attempted_version: int) -> OptimisticLockConflict:
        return OptimisticLockConflict(
            current_version=task.version,
            attempted_version=attempted_version,
            current_data=self._to_response(task).to_dict(),
        )

    def _conflict_after_race(self, task_id: int, attempted_version: int) -> OptimisticLockConflict:
        """Re-read the row the store refused to overwrite and describe it as a conflict."""
        with self.db.get_session() as session:
            task = TaskRepository(session).get(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            return self._build_conflict(task, attempted_version)

    def _load(self, task_id: int) -> TaskResponse:
        with self.db.get_session() as session:
            task = TaskRepository(session).get(task_id)
            if task is None:
                raise TaskNotFoundError(task_id)
            return self._to_response(task)

    # ==================== Queries ====================

    def list_tasks(self) -> List[TaskResponse]:
        """Get all tasks ordered by id"""
        with self.db.get_session() as session:
            tasks = TaskRepository(session).list_all()
            return [self._to_response(task) for task in tasks]

    def get_task(self, task_id: int) -> TaskResponse:
        """Get task by id"""
        return self._load(task_id)

    def get_fresh_task(self, task_id: int) -> TaskResponse:
        """Read the current stored record, for conflict resolution"""
        logger.info(f"Fetching fresh data for task {task_id}")
        return self._load(task_id)

    def get_tasks_page(
        self,
        page: int = 0,
        size: int = 20,
        sort_by: str = "id",
        direction: str = "ASC",
        max_page_size: int = 200,
    ) -> TaskPage:
        """
        Get one page of tasks.

        Args:
            page: Zero-based page number
            size: Page size (1 to max_page_size)
            sort_by: Whitelisted column name
            direction: ASC or DESC

        Raises:
            TaskValidationError: On an invalid page, size or ordering
        """
        field_errors = {}
        if page < 0:
            field_errors["page"] = "Page must not be negative"
        if size < 1 or size > max_page_size:
            field_errors["size"] = f"Size must be between 1 and {max_page_size}"
        if field_errors:
            raise TaskValidationError(field_errors)

        with self.db.get_session() as session:
            repo = TaskRepository(session)
            try:
                tasks = repo.find_page(page * size, size, sort_by, direction)
            except ValueError as e:
                raise TaskValidationError({"sortBy": str(e)}) from e
            total = repo.count()

        return TaskPage(
            content=[self._to_response(task) for task in tasks],
            total_elements=total,
            total_pages=math.ceil(total / size) if total else 0,
            number=page,
            size=size,
            sort_by=sort_by,
            direction=direction.upper(),
        )

    def search_tasks(self, criteria: SearchCriteria) -> List[TaskResponse]:
        """Search tasks; filters combine with AND"""
        logger.info(
            f"Searching tasks - status={criteria.status}, priority={criteria.priority}, "
            f"assignee={criteria.assignee}, term={criteria.search_term}"
        )
        with self.db.get_session() as session:
            tasks = TaskRepository(session).find_by_criteria(
                status=criteria.status,
                priority=criteria.priority,
                assignee=criteria.assignee,
                search_term=criteria.search_term,
            )
            return [self._to_response(task) for task in tasks]

    def get_tasks_by_status(self, status: str) -> List[TaskResponse]:
        """Get tasks in one status column"""
        try:
            criteria = SearchCriteria(status=status)
        except ValidationError as e:
            raise TaskValidationError(validation_errors_to_fields(e)) from e
        return self.search_tasks(criteria)

    def get_tasks_by_priority(self, priority: str) -> List[TaskResponse]:
        """Get tasks with one priority"""
        try:
            criteria = SearchCriteria(priority=priority)
        except ValidationError as e:
            raise TaskValidationError(validation_errors_to_fields(e)) from e
        return self.search_tasks(criteria)

    def get_statistics(self) -> TaskStatistics:
        """Aggregate counts, completion rate and effort for the dashboard"""
        with self.db.get_session() as session:
            tasks = TaskRepository(session).list_all()

        by_status = {status.value: 0 for status in TaskStatus}
        by_priority = {priority.value: 0 for priority in TaskPriority}
        by_assignee: Dict[str, int] = {}
        total_hours = 0.0

        for task in tasks:
            by_status[task.status] = by_status.get(task.status, 0) + 1
            by_priority[task.priority] = by_priority.get(task.priority, 0) + 1
            if task.assignee:
                by_assignee[task.assignee] = by_assignee.get(task.assignee, 0) + 1
            if task.estimated_hours is not None:
                total_hours += task.estimated_hours

        total = len(tasks)
        done = by_status.get(TaskStatus.DONE.value, 0)
        completion_rate = round(done / total * 100, 2) if total else 0.0

        logger.info(f"Statistics calculated - total tasks: {total}, completion rate: {completion_rate}%")

        return TaskStatistics(
            total_tasks=total,
            by_status=by_status,
            by_priority=by_priority,
            by_assignee=by_assignee,
            completion_rate=completion_rate,
            total_estimated_hours=total_hours,
            timestamp=utcnow(),
        )

    # ==================== Mutations ====================

    def create_task(self, request: TaskCreate, actor: Optional[str] = None) -> TaskResponse:
        """Create a new task at version 0"""
        actor = self._actor(actor)
        with self.db.get_session() as session:
            task = Task(
                title=request.title,
                description=request.description,
                status=request.status,
                priority=request.priority,
                assignee=request.assignee,
                estimated_hours=request.estimated_hours,
                tags=request.tags,
            )
            task.stamp_created(actor)
            TaskRepository(session).add(task)

        logger.info(f"Task created with ID: {task.id}")
        self.audit.log_event(AuditAction.CREATE, actor=actor, task_id=task.id, title=task.title)
        return self._to_response(task)

    def update_task(self, task_id: int, request: TaskUpdate, actor: Optional[str] = None) -> TaskResponse:
        """
        Apply an update only if the client's version is still current.

        Args:
            task_id: Task to update
            request: Changed fields plus the version the client last saw
            actor: Who is making the change

        Returns:
            The updated task, with its version incremented by one

        Raises:
            TaskNotFoundError: If the task does not exist
            OptimisticLockConflict: If the version no longer matches
        """
        actor = self._actor(actor)
        changes = request.changes()

        try:
            try:
                with self.db.get_session() as session:
                    repo = TaskRepository(session)
                    task = repo.get(task_id)
                    if task is None:
                        raise TaskNotFoundError(task_id)

                    if task.version != request.version:
                        logger.warning(
                            f"Optimistic locking conflict on task {task_id} - "
                            f"stored version: {task.version}, attempted: {request.version}"
                        )
                        raise self._build_conflict(task, request.version)

                    for name, value in changes.items():
                        setattr(task, name, value)
                    task.touch(actor)
                    repo.save(task)
            except StaleRecordError:
                logger.warning(f"Store rejected concurrent write on task {task_id}")
                raise self._conflict_after_race(task_id, request.version) from None
        except OptimisticLockConflict as conflict:
            self.audit.log_event(
                AuditAction.CONFLICT,
                status="rejected",
                actor=actor,
                task_id=task_id,
                current_version=conflict.current_version,
                attempted_version=conflict.attempted_version,
            )
            raise

        logger.info(f"Task {task_id} updated to version {task.version}")
        self.audit.log_event(
            AuditAction.UPDATE,
            actor=actor,
            task_id=task_id,
            version=task.version,
            fields=sorted(changes),
        )
        return self._to_response(task)

    def attempt_update(
        self,
        task_id: int,
        fields: Dict[str, Any],
        expected_version: int,
        actor: Optional[str] = None,
    ) -> TaskResponse:
        """
        Validate raw fields (camelCase or snake_case keys) and run the update.

        Raises:
            TaskValidationError: If the fields fail validation
        """
        try:
            request = TaskUpdate.model_validate({**fields, "version": expected_version})
        except ValidationError as e:
            raise TaskValidationError(validation_errors_to_fields(e)) from e
        return self.update_task(task_id, request, actor=actor)

    def delete_task(self, task_id: int, actor: Optional[str] = None):
        """Hard delete a task; unconditional, no version check"""
        actor = self._actor(actor)
        with self.db.get_session() as session:
            if not TaskRepository(session).delete_by_id(task_id):
                raise TaskNotFoundError(task_id)

        logger.info(f"Task deleted with ID: {task_id}")
        self.audit.log_event(AuditAction.DELETE, actor=actor, task_id=task_id)

    def bulk_update_status(self, request: BulkStatusChange, actor: Optional[str] = None) -> List[TaskResponse]:
        """
        Move several tasks to one status.

        Unknown ids are skipped. Each task is written through the store, so
        its version and updated_at advance like any other update.

        Every task is committed on its own. When one keeps losing races
        after ``bulk_max_retries`` attempts the call stops there and raises
        ``OptimisticLockConflict`` for it; tasks earlier in the list keep
        their new status and later ones are not touched. The audit trail
        records the committed ids with status ``partial``.
        """
        actor = self._actor(actor)
        task_ids = list(dict.fromkeys(request.task_ids))
        logger.info(f"Bulk updating {len(task_ids)} tasks to status: {request.status}")

        updated = []
        for task_id in task_ids:
            try:
                task = self._set_status(task_id, request.status, actor)
            except OptimisticLockConflict:
                committed = [task.id for task in updated]
                logger.error(f"Bulk status change stopped at task {task_id}; already committed: {committed}")
                self.audit.log_event(
                    AuditAction.BULK_STATUS,
                    status="partial",
                    actor=actor,
                    status_value=request.status,
                    task_ids=committed,
                    failed_task_id=task_id,
                )
                raise
            if task is not None:
                updated.append(self._to_response(task))

        self.audit.log_event(
            AuditAction.BULK_STATUS,
            actor=actor,
            status_value=request.status,
            task_ids=[task.id for task in updated],
        )
        return updated

    def _set_status(self, task_id: int, status: str, actor: str) -> Optional[Task]:
        last_error = None
        for attempt in range(1, self.bulk_max_retries + 1):
            try:
                with self.db.get_session() as session:
                    repo = TaskRepository(session)
                    task = repo.get(task_id)
                    if task is None:
                        return None
                    task.status = status
                    task.touch(actor)
                    repo.save(task)
                    return task
            except StaleRecordError as e:
                logger.warning(f"Bulk status change raced on task {task_id} (attempt {attempt})")
                last_error = e

        raise self._conflict_after_race(task_id, last_error.expected_version)

    # ==================== Conflict detection ====================

    def check_for_conflicts(self, task_id: int, last_fetched: Optional[str]) -> ConflictCheckResult:
        """
        Advisory check: has the task changed since ``last_fetched``?

        An unparseable timestamp is reported as a conflict. The authoritative
        check is always the version comparison in ``update_task``.
        """
        logger.info(f"Checking for conflicts on task {task_id} since: {last_fetched}")
        current = self._load(task_id)

        try:
            since = parse_timestamp(last_fetched)
        except (TypeError, ValueError):
            logger.warning(f"Could not parse lastFetched timestamp: {last_fetched!r}")
            return ConflictCheckResult(
                has_conflict=True,
                timestamp=utcnow(),
                current_snapshot=current,
                error="Invalid date format",
            )

        has_conflict = current.updated_at > since
        return ConflictCheckResult(
            has_conflict=has_conflict,
            timestamp=utcnow(),
            current_snapshot=current if has_conflict else None,
        )
