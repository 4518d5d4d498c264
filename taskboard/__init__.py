"""
TaskBoard
=========

Kanban task board backend with optimistic concurrency control.

Modules:
- models: request/response models and enums
- database: record store with version-guarded writes
- service: task operations and the update orchestrator
- conflicts: client-side conflict resolution protocol
- client: HTTP client with a confirmed-state cache
- logging_monitoring: logging setup and audit trail

Author: taskboard maintainers
Created: 2026-10-19
"""

__version__ = "1.0.0"

__all__ = [
    "__version__",
]
