"""
Task Service Tests
==================

Covers the update orchestrator, conflict payloads, the advisory pre-check,
bulk status changes, search, paging and statistics.
"""

import os
import sys
import threading
from datetime import timedelta

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from taskboard.database import DatabaseConfig, DatabaseManager, TaskRepository
from taskboard.exceptions import (
    CONFLICT_ERROR_CODE,
    OptimisticLockConflict,
    TaskNotFoundError,
    TaskValidationError,
)
from taskboard.logging_monitoring import AuditAction, AuditLogger
from taskboard.models import BulkStatusChange, SearchCriteria, TaskCreate, TaskUpdate
from taskboard.service import TaskService, parse_timestamp


@pytest.fixture
def db_manager(tmp_path):
    manager = DatabaseManager(DatabaseConfig(f"sqlite:///{tmp_path / 'service.db'}"))
    manager.initialize()
    yield manager
    manager.close()


@pytest.fixture
def service(db_manager):
    return TaskService(db_manager, audit_logger=AuditLogger(), default_actor="system")


def create(service, title="Design login page", **fields):
    return service.create_task(TaskCreate(title=title, **fields))


def race_on_next_save(monkeypatch, db_manager, **competing_fields):
    """Commit a competing write right before the next repository save."""
    original_save = TaskRepository.save
    state = {"fired": False}

    def racing_save(self, task):
        if not state["fired"]:
            state["fired"] = True
            with db_manager.get_session() as session:
                repo = TaskRepository(session)
                competing = repo.get(task.id)
                for name, value in competing_fields.items():
                    setattr(competing, name, value)
                competing.touch("racer")
                original_save(repo, competing)
        return original_save(self, task)

    monkeypatch.setattr(TaskRepository, "save", racing_save)
    return state


# ============================================================================
# CREATE / READ / DELETE
# ============================================================================

class TestCrud:
    """Basic task lifecycle."""

    def test_create_applies_defaults(self, service):
        task = create(service)
        assert task.version == 0
        assert task.status == "BACKLOG"
        assert task.priority == "MEDIUM"
        assert task.created_by == "system"
        assert task.updated_by == "system"

    def test_create_records_actor(self, service):
        task = service.create_task(TaskCreate(title="Review PR"), actor="alice")
        assert task.created_by == "alice"
        events = service.audit.get_recent_events(AuditAction.CREATE)
        assert events[-1].task_id == task.id
        assert events[-1].actor == "alice"

    def test_get_missing_raises_not_found(self, service):
        with pytest.raises(TaskNotFoundError):
            service.get_task(404)

    def test_list_is_ordered_by_id(self, service):
        for title in ("Task one", "Task two", "Task three"):
            create(service, title)
        assert [t.title for t in service.list_tasks()] == ["Task one", "Task two", "Task three"]

    def test_delete_is_unconditional(self, service):
        task = create(service)
        service.update_task(task.id, TaskUpdate(title="Renamed task", version=0))

        service.delete_task(task.id)

        with pytest.raises(TaskNotFoundError):
            service.get_task(task.id)
        with pytest.raises(TaskNotFoundError):
            service.delete_task(task.id)


# ============================================================================
# UPDATE ORCHESTRATOR
# ============================================================================

class TestUpdate:
    """Versioned updates."""

    def test_update_increments_version_and_timestamp(self, service):
        task = create(service)
        updated = service.update_task(task.id, TaskUpdate(status="IN_PROGRESS", version=0), actor="bob")

        assert updated.version == 1
        assert updated.updated_at > task.updated_at
        assert updated.status == "IN_PROGRESS"
        assert updated.updated_by == "bob"
        assert updated.created_at == task.created_at

    def test_update_applies_only_sent_fields(self, service):
        task = create(service, assignee="Alice", description="Original")
        updated = service.update_task(task.id, TaskUpdate(priority="HIGH", version=0))

        assert updated.priority == "HIGH"
        assert updated.assignee == "Alice"
        assert updated.description == "Original"

    def test_explicit_null_clears_optional_field(self, service):
        task = create(service, assignee="Alice")
        updated = service.update_task(task.id, TaskUpdate(assignee=None, version=0))
        assert updated.assignee is None

    def test_stale_version_raises_conflict_with_current_record(self, service):
        task = create(service)
        service.update_task(task.id, TaskUpdate(title="Second title", version=0))

        with pytest.raises(OptimisticLockConflict) as exc_info:
            service.update_task(task.id, TaskUpdate(title="Third title", version=0))

        conflict = exc_info.value
        assert conflict.current_version == 1
        assert conflict.attempted_version == 0
        assert conflict.current_data == service.get_task(task.id).to_dict()

        payload = conflict.to_payload()
        assert payload["error"] == CONFLICT_ERROR_CODE
        assert payload["currentData"]["title"] == "Second title"

    def test_rejected_update_leaves_record_untouched(self, service):
        task = create(service)
        current = service.update_task(task.id, TaskUpdate(title="Second title", version=0))

        with pytest.raises(OptimisticLockConflict):
            service.update_task(task.id, TaskUpdate(title="Lost update", version=0))

        assert service.get_task(task.id) == current

    def test_future_version_is_also_a_conflict(self, service):
        task = create(service)
        with pytest.raises(OptimisticLockConflict) as exc_info:
            service.update_task(task.id, TaskUpdate(title="From the future", version=7))
        assert exc_info.value.current_version == 0

    def test_update_missing_task(self, service):
        with pytest.raises(TaskNotFoundError):
            service.update_task(99, TaskUpdate(title="Nobody home", version=0))

    def test_conflict_is_audited(self, service):
        task = create(service)
        service.update_task(task.id, TaskUpdate(title="Second title", version=0))
        with pytest.raises(OptimisticLockConflict):
            service.update_task(task.id, TaskUpdate(title="Third title", version=0), actor="carol")

        event = service.audit.get_recent_events(AuditAction.CONFLICT, task_id=task.id)[-1]
        assert event.status == "rejected"
        assert event.actor == "carol"
        assert event.details["current_version"] == 1

    def test_store_race_is_reported_as_conflict(self, service, db_manager, monkeypatch):
        """A write that loses the race after the version check still conflicts."""
        task = create(service)
        state = race_on_next_save(monkeypatch, db_manager, assignee="Racer")

        with pytest.raises(OptimisticLockConflict) as exc_info:
            service.update_task(task.id, TaskUpdate(title="Loses the race", version=0))

        assert state["fired"]
        conflict = exc_info.value
        assert conflict.current_version == 1
        assert conflict.attempted_version == 0
        assert conflict.current_data["assignee"] == "Racer"
        assert conflict.current_data["title"] == "Design login page"

    def test_attempt_update_validates_fields(self, service):
        task = create(service)
        with pytest.raises(TaskValidationError) as exc_info:
            service.attempt_update(task.id, {"title": "ab", "estimatedHours": -1}, 0)
        assert set(exc_info.value.field_errors) == {"title", "estimatedHours"}

    def test_attempt_update_rejects_null_title(self, service):
        task = create(service)
        with pytest.raises(TaskValidationError) as exc_info:
            service.attempt_update(task.id, {"title": None}, 0)
        assert "title" in exc_info.value.field_errors

    def test_attempt_update_accepts_camel_case(self, service):
        task = create(service)
        updated = service.attempt_update(task.id, {"estimatedHours": 5}, 0)
        assert updated.estimated_hours == 5.0
        assert updated.version == 1


# ============================================================================
# CONCURRENT WRITERS
# ============================================================================

class TestConcurrentWriters:
    """Several threads update one task from the same version at once."""

    WRITERS = 8

    def test_exactly_one_writer_wins(self, service):
        task = create(service)
        barrier = threading.Barrier(self.WRITERS)
        successes, conflicts, errors = [], [], []

        def write(index):
            barrier.wait()
            try:
                successes.append(service.update_task(task.id, TaskUpdate(assignee=f"user{index}", version=0)))
            except OptimisticLockConflict as conflict:
                conflicts.append(conflict)
            except Exception as e:
                errors.append(e)

        threads = [threading.Thread(target=write, args=(i,)) for i in range(self.WRITERS)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join(timeout=30)

        assert errors == []
        assert len(successes) == 1
        assert len(conflicts) == self.WRITERS - 1

        winner = successes[0]
        assert winner.version == 1
        for conflict in conflicts:
            assert conflict.current_version == 1
            assert conflict.attempted_version == 0
            assert conflict.current_data == winner.to_dict()

        assert service.get_task(task.id) == winner


# ============================================================================
# CONFLICT PRE-CHECK
# ============================================================================

class TestConflictCheck:
    """Advisory timestamp comparison."""

    def test_no_conflict_when_unchanged(self, service):
        task = create(service)
        since = task.updated_at.isoformat()

        for _ in range(2):
            result = service.check_for_conflicts(task.id, since)
            assert result.has_conflict is False
            assert result.current_snapshot is None

    def test_conflict_when_newer_on_server(self, service):
        task = create(service)
        since = task.updated_at.isoformat()
        updated = service.update_task(task.id, TaskUpdate(status="REVIEW", version=0))

        result = service.check_for_conflicts(task.id, since)
        assert result.has_conflict is True
        assert result.current_snapshot == updated

    def test_unparseable_timestamp_fails_safe(self, service):
        task = create(service)
        result = service.check_for_conflicts(task.id, "yesterday-ish")
        assert result.has_conflict is True
        assert result.error == "Invalid date format"
        assert result.current_snapshot.id == task.id

    def test_missing_timestamp_fails_safe(self, service):
        task = create(service)
        assert service.check_for_conflicts(task.id, None).has_conflict is True

    def test_utc_designator_is_accepted(self, service):
        task = create(service)
        later = (task.updated_at + timedelta(seconds=1)).isoformat() + "Z"
        assert service.check_for_conflicts(task.id, later).has_conflict is False

    def test_missing_task(self, service):
        with pytest.raises(TaskNotFoundError):
            service.check_for_conflicts(5, "2026-01-01T00:00:00")

    def test_parse_timestamp_converts_offsets_to_utc(self):
        parsed = parse_timestamp("2026-10-19T12:00:00+02:00")
        assert parsed.tzinfo is None
        assert parsed.hour == 10


# ============================================================================
# BULK, SEARCH, PAGING, STATISTICS
# ============================================================================

class TestBulkStatus:
    """Bulk status changes."""

    def test_moves_tasks_and_bumps_versions(self, service):
        first = create(service, "First task")
        second = create(service, "Second task")

        updated = service.bulk_update_status(BulkStatusChange(task_ids=[first.id, second.id, 77], status="DONE"))

        assert [t.id for t in updated] == [first.id, second.id]
        assert all(t.status == "DONE" and t.version == 1 for t in updated)

    def test_retries_after_store_race(self, service, db_manager, monkeypatch):
        task = create(service)
        race_on_next_save(monkeypatch, db_manager, assignee="Racer")

        updated = service.bulk_update_status(BulkStatusChange(task_ids=[task.id], status="TESTING"))

        assert updated[0].status == "TESTING"
        assert updated[0].assignee == "Racer"
        assert updated[0].version == 2

    def test_gives_up_after_repeated_races_keeping_earlier_tasks(self, service, db_manager, monkeypatch):
        first = create(service, "First task")
        second = create(service, "Second task")
        third = create(service, "Third task")
        original_save = TaskRepository.save

        def always_racing(self, task):
            if task.id == second.id:
                with db_manager.get_session() as session:
                    repo = TaskRepository(session)
                    competing = repo.get(task.id)
                    competing.assignee = "Racer"
                    competing.touch("racer")
                    original_save(repo, competing)
            return original_save(self, task)

        monkeypatch.setattr(TaskRepository, "save", always_racing)

        with pytest.raises(OptimisticLockConflict) as exc_info:
            service.bulk_update_status(
                BulkStatusChange(task_ids=[first.id, second.id, third.id], status="DONE"),
                actor="dana",
            )

        retries = service.bulk_max_retries
        assert exc_info.value.current_version == retries
        assert exc_info.value.attempted_version == retries - 1

        committed = service.get_task(first.id)
        assert (committed.status, committed.version) == ("DONE", 1)
        raced = service.get_task(second.id)
        assert (raced.status, raced.assignee, raced.version) == ("BACKLOG", "Racer", retries)
        assert service.get_task(third.id) == third

        event = service.audit.get_recent_events(AuditAction.BULK_STATUS)[-1]
        assert event.status == "partial"
        assert event.details["task_ids"] == [first.id]
        assert event.details["failed_task_id"] == second.id

    def test_requires_at_least_one_id(self):
        with pytest.raises(ValueError):
            BulkStatusChange(task_ids=[], status="DONE")


class TestQueries:
    """Search, paging and statistics."""

    @pytest.fixture
    def board(self, service):
        create(service, "Build login API", status="IN_PROGRESS", priority="HIGH", assignee="Alice", estimated_hours=8)
        create(service, "Write release notes", status="DONE", priority="LOW", assignee="Bob", estimated_hours=2)
        create(service, "Fix flaky test", status="DONE", priority="CRITICAL", description="Login test times out")
        create(service, "Plan sprint", priority="MEDIUM", assignee="alice")
        return service

    def test_search_by_term_matches_title_or_description(self, board):
        titles = [t.title for t in board.search_tasks(SearchCriteria(search_term="LOGIN"))]
        assert titles == ["Build login API", "Fix flaky test"]

    def test_search_combines_filters(self, board):
        tasks = board.search_tasks(SearchCriteria(status="DONE", assignee="bob"))
        assert [t.title for t in tasks] == ["Write release notes"]

    def test_by_status_and_priority(self, board):
        assert len(board.get_tasks_by_status("DONE")) == 2
        assert [t.title for t in board.get_tasks_by_priority("CRITICAL")] == ["Fix flaky test"]

    def test_unknown_status_is_a_validation_error(self, board):
        with pytest.raises(TaskValidationError):
            board.get_tasks_by_status("ARCHIVED")

    def test_page(self, board):
        page = board.get_tasks_page(page=1, size=3, sort_by="id", direction="asc")
        assert page.total_elements == 4
        assert page.total_pages == 2
        assert [t.title for t in page.content] == ["Plan sprint"]
        assert page.direction == "ASC"

    def test_page_validation(self, board):
        with pytest.raises(TaskValidationError) as exc_info:
            board.get_tasks_page(page=-1, size=0)
        assert set(exc_info.value.field_errors) == {"page", "size"}

        with pytest.raises(TaskValidationError) as exc_info:
            board.get_tasks_page(sort_by="description")
        assert "sortBy" in exc_info.value.field_errors

    def test_statistics(self, board):
        stats = board.get_statistics()
        assert stats.total_tasks == 4
        assert stats.by_status == {"BACKLOG": 1, "IN_PROGRESS": 1, "REVIEW": 0, "TESTING": 0, "DONE": 2}
        assert stats.by_priority == {"LOW": 1, "MEDIUM": 1, "HIGH": 1, "CRITICAL": 1}
        assert stats.by_assignee == {"Alice": 1, "Bob": 1, "alice": 1}
        assert stats.completion_rate == 50.0
        assert stats.total_estimated_hours == 10.0

    def test_statistics_on_empty_board(self, service):
        stats = service.get_statistics()
        assert stats.total_tasks == 0
        assert stats.completion_rate == 0.0
        assert set(stats.by_status.values()) == {0}
