"""
TaskBoard Database Module
=========================

Record store for tasks: SQLAlchemy ORM model, connection management and a
repository with safe query helpers.

Features:
- Optimistic locking through SQLAlchemy's ``version_id_col``: every UPDATE
  carries ``WHERE version = :loaded_version`` so a stale write matches no row
- Version starts at 0 and grows by exactly one per flushed mutation
- ``updated_at`` strictly increases with the version
- Ids are never reused after deletion (``AUTOINCREMENT`` on SQLite)
- Literal substring search (escaped LIKE) and whitelisted page ordering
- Transaction management with automatic rollback

Author: taskboard maintainers
Created: 2026-10-19
"""

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Iterator, List, Optional

from sqlalchemy import (
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    case,
    create_engine,
    delete,
    event,
    func,
    or_,
    select,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import QueuePool, StaticPool

from taskboard.exceptions import StaleRecordError, TaskBoardError
from taskboard.models import PRIORITY_LEVELS, TaskPriority, TaskStatus

logger = logging.getLogger(__name__)

# Query logger, silent unless DEBUG is enabled
query_logger = logging.getLogger('taskboard.database.queries')

Base = declarative_base()


# ============================================================================
# CONSTANTS AND HELPERS
# ============================================================================

# Columns a page may be sorted by; anything else is rejected before a query is built
SORTABLE_COLUMNS = (
    'id', 'title', 'status', 'priority', 'assignee',
    'estimated_hours', 'version', 'created_at', 'updated_at',
)

LIKE_ESCAPE = '\\'

# Smallest step the store uses to keep updated_at strictly increasing
TIMESTAMP_RESOLUTION = timedelta(microseconds=1)


def utcnow() -> datetime:
    """Naive UTC timestamp, the representation stored in the database."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _next_version(current: Optional[int]) -> int:
    """Version generator: 0 on insert, +1 on every update."""
    return 0 if current is None else current + 1


# ============================================================================
# DATABASE MODELS
# ============================================================================

class Task(Base):
    """
    Task row with optimistic locking.
    """
    __tablename__ = 'tasks'

    id = Column(Integer, primary_key=True, autoincrement=True)
    title = Column(String(200), nullable=False)
    description = Column(String(2000), nullable=True)
    status = Column(String(20), default=TaskStatus.BACKLOG.value, nullable=False)
    priority = Column(String(20), default=TaskPriority.MEDIUM.value, nullable=False)
    assignee = Column(String(100), nullable=True)
    estimated_hours = Column(Float, nullable=True)
    tags = Column(String(500), nullable=True)

    # Optimistic locking
    version = Column(Integer, nullable=False)

    # Audit fields
    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)
    created_by = Column(String(100), nullable=True)
    updated_by = Column(String(100), nullable=True)

    __table_args__ = (
        Index('idx_task_status', 'status'),
        Index('idx_task_priority', 'priority'),
        Index('idx_task_assignee', 'assignee'),
        {'sqlite_autoincrement': True},
    )

    __mapper_args__ = {
        'version_id_col': version,
        'version_id_generator': _next_version,
    }

    def stamp_created(self, actor: str):
        """Set the audit fields of a new row"""
        now = utcnow()
        self.created_at = now
        self.updated_at = now
        self.created_by = actor
        self.updated_by = actor

    def touch(self, actor: str):
        """Mark the row as modified now, keeping updated_at strictly increasing"""
        now = utcnow()
        if self.updated_at is not None and now <= self.updated_at:
            now = self.updated_at + TIMESTAMP_RESOLUTION
        self.updated_at = now
        self.updated_by = actor

    def __repr__(self):
        return f"<Task(id={self.id}, title='{self.title}', status='{self.status}', version={self.version})>"


# ============================================================================
# QUERY HELPERS
# ============================================================================

def contains_pattern(term: str) -> str:
    """
    Lower-cased LIKE pattern matching ``term`` anywhere in a value.

    ``%`` and ``_`` typed by a user are escaped with ``LIKE_ESCAPE`` so
    "100%" finds the literal text instead of every row starting with 100.
    """
    escaped = (
        term.lower()
        .replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace('%', LIKE_ESCAPE + '%')
        .replace('_', LIKE_ESCAPE + '_')
    )
    return f"%{escaped}%"


def task_ordering(column: str, direction: str = 'ASC'):
    """
    Build the ORDER BY expression for a page of tasks.

    Priority sorts by level (LOW < MEDIUM < HIGH < CRITICAL), not
    alphabetically.

    Raises:
        ValueError: If the column is not sortable or the direction is not ASC/DESC
    """
    if column not in SORTABLE_COLUMNS:
        logger.warning(f"Rejected ordering by unknown column: {column!r}")
        raise ValueError(f"Cannot sort tasks by '{column}'")

    direction = direction.upper()
    if direction not in ('ASC', 'DESC'):
        logger.warning(f"Rejected sort direction: {direction!r}")
        raise ValueError(f"Invalid sort direction: {direction}")

    if column == 'priority':
        expression = case(
            {priority.value: level for priority, level in PRIORITY_LEVELS.items()},
            value=Task.priority,
        )
    else:
        expression = getattr(Task, column)
    return expression.desc() if direction == 'DESC' else expression.asc()


# ============================================================================
# DATABASE CONNECTION AND POOLING
# ============================================================================

class DatabaseConfig:
    """Database configuration with secure defaults"""

    def __init__(
        self,
        database_url: str,
        pool_size: int = 5,
        max_overflow: int = 10,
        pool_timeout: int = 30,
        pool_recycle: int = 3600,
        echo: bool = False,
    ):
        self.database_url = database_url
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.pool_timeout = pool_timeout
        self.pool_recycle = pool_recycle
        self.echo = echo

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith('sqlite')

    @property
    def is_memory(self) -> bool:
        return self.is_sqlite and (
            self.database_url in ('sqlite://', 'sqlite:///:memory:')
            or 'mode=memory' in self.database_url
        )


class DatabaseManager:
    """
    Database manager with connection pooling and transaction management.

    Sessions are short-lived: each service operation opens one, and it is
    committed on success or rolled back on any error.
    """

    def __init__(self, config: DatabaseConfig):
        self.config = config
        self.engine = None
        self.session_factory = None
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    def _engine_kwargs(self) -> dict:
        kwargs = {'echo': self.config.echo}
        if self.config.is_sqlite:
            # Sessions are used from FastAPI's worker threads
            kwargs['connect_args'] = {'check_same_thread': False}
        if self.config.is_memory:
            # A single shared connection keeps the in-memory database alive
            kwargs['poolclass'] = StaticPool
        else:
            kwargs.update(
                poolclass=QueuePool,
                pool_size=self.config.pool_size,
                max_overflow=self.config.max_overflow,
                pool_timeout=self.config.pool_timeout,
                pool_recycle=self.config.pool_recycle,
            )
        return kwargs

    def initialize(self):
        """Initialize database engine, session factory and schema"""
        if self._initialized:
            logger.warning("DatabaseManager already initialized")
            return

        try:
            self.engine = create_engine(self.config.database_url, **self._engine_kwargs())

            self.session_factory = sessionmaker(
                bind=self.engine,
                expire_on_commit=False,
            )

            Base.metadata.create_all(self.engine)

            self._setup_event_listeners()

            self._initialized = True
            logger.info("Database initialized successfully")

        except Exception as e:
            logger.error(f"Failed to initialize database: {e}")
            raise

    def _setup_event_listeners(self):
        """Set up SQLAlchemy event listeners for query logging"""

        @event.listens_for(self.engine, "before_cursor_execute")
        def before_cursor_execute(conn, cursor, statement, parameters, context, executemany):
            query_logger.debug(f"Query: {statement}")
            query_logger.debug(f"Parameters: {parameters}")

        @event.listens_for(self.engine, "handle_error")
        def handle_error(exception_context):
            query_logger.error(
                f"Database error: {exception_context.original_exception}"
            )

    @contextmanager
    def get_session(self) -> Iterator[Session]:
        """
        Context manager for database sessions with automatic rollback.

        Usage:
            with db_manager.get_session() as session:
                task = TaskRepository(session).get(1)
        """
        if not self._initialized:
            raise RuntimeError("DatabaseManager not initialized. Call initialize() first.")

        session = self.session_factory()
        try:
            yield session
            session.commit()
        except TaskBoardError as e:
            session.rollback()
            logger.debug(f"Session rollback: {e}")
            raise
        except Exception as e:
            session.rollback()
            logger.error(f"Session rollback due to error: {e}")
            raise
        finally:
            session.close()

    def close(self):
        """Close database connections"""
        if self.engine:
            self.engine.dispose()
            logger.info("Database engine disposed")
        self._initialized = False


# ============================================================================
# REPOSITORY
# ============================================================================

class TaskRepository:
    """
    Record store operations on a single session.

    ``save`` is the write path: it flushes pending changes and turns a
    version mismatch detected by the database into ``StaleRecordError``.
    """

    def __init__(self, session: Session):
        self.session = session

    def get(self, task_id: int) -> Optional[Task]:
        return self.session.get(Task, task_id)

    def list_all(self) -> List[Task]:
        return list(self.session.scalars(select(Task).order_by(Task.id)))

    def count(self) -> int:
        return self.session.scalar(select(func.count()).select_from(Task))

    def add(self, task: Task) -> Task:
        self.session.add(task)
        self.save(task)
        return task

    def save(self, task: Task) -> Task:
        """Flush pending changes of ``task``; the UPDATE is guarded by its loaded version."""
        # A failed flush expires ``task``; its attributes cannot be read afterwards.
        task_id, expected_version = task.id, task.version
        try:
            self.session.flush()
        except StaleDataError as e:
            logger.warning(f"Store rejected stale write for task {task_id} at version {expected_version}")
            raise StaleRecordError(task_id, expected_version) from e
        return task

    def delete_by_id(self, task_id: int) -> bool:
        """Hard delete by id, without a version check. Returns whether a row was removed."""
        result = self.session.execute(delete(Task).where(Task.id == task_id))
        return result.rowcount > 0

    def find_by_criteria(
        self,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        assignee: Optional[str] = None,
        search_term: Optional[str] = None,
    ) -> List[Task]:
        """
        Search tasks; filters combine with AND.

        Args:
            status: Exact status
            priority: Exact priority
            assignee: Case-insensitive substring of the assignee
            search_term: Case-insensitive substring of title or description

        Returns:
            Matching tasks ordered by id
        """
        query = select(Task)

        if status:
            query = query.where(Task.status == status)
        if priority:
            query = query.where(Task.priority == priority)
        if assignee:
            query = query.where(func.lower(Task.assignee).like(contains_pattern(assignee), escape=LIKE_ESCAPE))
        if search_term:
            pattern = contains_pattern(search_term)
            query = query.where(or_(
                func.lower(Task.title).like(pattern, escape=LIKE_ESCAPE),
                func.lower(Task.description).like(pattern, escape=LIKE_ESCAPE),
            ))

        return list(self.session.scalars(query.order_by(Task.id)))

    def find_page(self, offset: int, limit: int, order_by: str = 'id', direction: str = 'ASC') -> List[Task]:
        """Fetch one page of tasks; ties on the sort column fall back to id order."""
        query = select(Task).order_by(task_ordering(order_by, direction), Task.id.asc()).offset(offset).limit(limit)
        return list(self.session.scalars(query))
