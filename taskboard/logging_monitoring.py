"""
Logging and Audit Module
========================

Logging setup and audit trail for the task board:
- Plain or JSON structured log output
- Optional rotating log file
- Audit events for every task mutation and every optimistic lock conflict
- In-memory buffer of recent audit events

Author: taskboard maintainers
Created: 2026-10-19
"""

import json
import logging
import logging.handlers
import sys
import threading
import traceback
import uuid
from collections import deque
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

PLAIN_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
AUDIT_LOGGER_NAME = 'taskboard.audit'


class AuditAction(Enum):
    """Actions recorded in the audit trail."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    BULK_STATUS = "bulk_status"
    CONFLICT = "conflict"


@dataclass
class LogEntry:
    """Structured log entry."""
    timestamp: str
    level: str
    message: str
    logger_name: str
    module: str
    function: str
    line_number: int
    thread_id: int
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(asdict(self), default=str)


@dataclass
class AuditEvent:
    """Audit trail event."""
    event_id: str
    timestamp: str
    action: str
    actor: Optional[str]
    task_id: Optional[int]
    status: str  # success, rejected
    details: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(asdict(self), default=str)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return asdict(self)


class JSONFormatter(logging.Formatter):
    """JSON log formatter."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = LogEntry(
            timestamp=datetime.now(timezone.utc).isoformat(),
            level=record.levelname,
            message=record.getMessage(),
            logger_name=record.name,
            module=record.module,
            function=record.funcName,
            line_number=record.lineno,
            thread_id=record.thread,
            extra=dict(getattr(record, 'extra', {}) or {}),
        )

        if record.exc_info:
            log_entry.extra['exception'] = {
                'type': record.exc_info[0].__name__,
                'message': str(record.exc_info[1]),
                'traceback': traceback.format_exception(*record.exc_info)
            }

        return log_entry.to_json()


def configure_logging(level: str = "INFO", json_format: bool = False, log_file: Optional[str] = None):
    """
    Configure the root logger for the application.

    Args:
        level: Log level name
        json_format: Emit one JSON object per line instead of plain text
        log_file: Optional path of a rotating log file
    """
    formatter = JSONFormatter() if json_format else logging.Formatter(PLAIN_FORMAT)

    handlers: List[logging.Handler] = []
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    handlers.append(console_handler)

    if log_file:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,  # 10 MB
            backupCount=5
        )
        file_handler.setFormatter(formatter)
        handlers.append(file_handler)

    logging.basicConfig(level=level, handlers=handlers, force=True)


class AuditLogger:
    """Audit trail logging."""

    def __init__(self, max_recent: int = 1000):
        """
        Initialize audit logger.

        Args:
            max_recent: Number of recent events kept in memory
        """
        self.logger = logging.getLogger(AUDIT_LOGGER_NAME)
        self.recent_events: deque = deque(maxlen=max_recent)
        self._lock = threading.Lock()

    def log_event(
        self,
        action: AuditAction,
        status: str = "success",
        actor: Optional[str] = None,
        task_id: Optional[int] = None,
        **details
    ) -> AuditEvent:
        """
        Log an audit event.

        Returns:
            The recorded event
        """
        event = AuditEvent(
            event_id=str(uuid.uuid4()),
            timestamp=datetime.now(timezone.utc).isoformat(),
            action=action.value,
            actor=actor,
            task_id=task_id,
            status=status,
            details=details,
        )

        with self._lock:
            self.recent_events.append(event)

        self.logger.info(event.to_json(), extra={'extra': event.to_dict()})
        return event

    def get_recent_events(
        self,
        action: Optional[AuditAction] = None,
        task_id: Optional[int] = None,
        limit: int = 100
    ) -> List[AuditEvent]:
        """Return the most recent events, newest last, optionally filtered."""
        with self._lock:
            events = list(self.recent_events)

        if action is not None:
            events = [e for e in events if e.action == action.value]
        if task_id is not None:
            events = [e for e in events if e.task_id == task_id]

        return events[-limit:]
