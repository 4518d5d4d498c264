"""
Conflict Resolution
===================

Client-side protocol for resolving optimistic locking conflicts.

An ``EditSession`` wraps one task being edited. Its draft is submitted with
the version that was loaded; when the server answers with a conflict the
session moves to ``CONFLICTED`` and keeps both the draft and the server's
current record until the user picks one of:

- discard: drop the draft and continue from the server record
- force_overwrite: resend the draft edits against the server's version
- merge: choose "mine" or "theirs" for every contested field
- cancel: keep editing the draft against the old version
- abandon: stop editing

Author: taskboard maintainers
Created: 2026-10-19
"""

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from taskboard.exceptions import OptimisticLockConflict, TaskBoardError
from taskboard.models import EDITABLE_FIELDS, TaskPriority, TaskStatus

logger = logging.getLogger(__name__)

MINE = "mine"
THEIRS = "theirs"

# submit(task_id, fields, expected_version) -> confirmed task record
SubmitFunc = Callable[[int, Dict[str, Any], int], Dict[str, Any]]


class ResolutionState(Enum):
    """States of an edit session"""
    EDITING = "editing"
    CONFLICTED = "conflicted"
    RESOLVING = "resolving"
    ABANDONED = "abandoned"


class InvalidTransitionError(TaskBoardError):
    """Raised when an action is not allowed in the session's current state."""

    def __init__(self, action: str, state: ResolutionState):
        self.action = action
        self.state = state
        super().__init__(f"Cannot {action} while {state.value}")


def normalize(value: Any) -> Any:
    """Comparable form of a field value: empty means None, numbers compare as floats."""
    if value is None:
        return None
    if isinstance(value, str):
        value = value.strip()
        return value or None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return float(value)
    return value


def values_differ(a: Any, b: Any) -> bool:
    return normalize(a) != normalize(b)


def display_value(field: str, value: Any) -> str:
    """Human readable rendering of a field value for the merge dialog."""
    if normalize(value) is None:
        return "(empty)"
    if field == "status":
        return TaskStatus(value).display_name
    if field == "priority":
        return TaskPriority(value).display_name
    if field == "estimatedHours":
        return f"{float(value):g}h"
    return str(value)


class EditSession:
    """
    Edit session for a single task.

    Args:
        base: Task record as last fetched from the server (camelCase keys)
        submit: Callable that performs the versioned update and returns the
            confirmed record, raising OptimisticLockConflict on a stale version
    """

    def __init__(self, base: Dict[str, Any], submit: SubmitFunc):
        self.task_id = base["id"]
        self.submit = submit
        self.state = ResolutionState.EDITING
        self.conflict: Optional[OptimisticLockConflict] = None
        self._rebase(base)

    # ==================== Helpers ====================

    def _rebase(self, record: Dict[str, Any]):
        self.base = dict(record)
        self.draft = dict(record)
        self.expected_version = record["version"]
        self.conflict = None

    def _require(self, action: str, *states: ResolutionState):
        if self.state not in states:
            raise InvalidTransitionError(action, self.state)

    @property
    def snapshot(self) -> Optional[Dict[str, Any]]:
        """Server record carried by the pending conflict"""
        return self.conflict.current_data if self.conflict else None

    def _submit(self, fields: Dict[str, Any], expected_version: int) -> Optional[Dict[str, Any]]:
        try:
            confirmed = self.submit(self.task_id, fields, expected_version)
        except OptimisticLockConflict as conflict:
            logger.info(
                f"Task {self.task_id} conflicted at version {expected_version}, "
                f"server is at {conflict.current_version}"
            )
            self.conflict = conflict
            self.state = ResolutionState.CONFLICTED
            return None
        except TaskBoardError:
            if self.state == ResolutionState.RESOLVING:
                self.state = ResolutionState.CONFLICTED
            raise

        self._rebase(confirmed)
        self.state = ResolutionState.EDITING
        return confirmed

    # ==================== Editing ====================

    def edit(self, field: str, value: Any):
        """Change one field of the local draft"""
        self._require("edit", ResolutionState.EDITING)
        if field not in EDITABLE_FIELDS:
            raise ValueError(f"Field '{field}' is not editable")
        self.draft[field] = value

    def edited_fields(self) -> Dict[str, Any]:
        """Fields the user changed relative to the loaded base"""
        return {
            field: self.draft.get(field)
            for field in EDITABLE_FIELDS
            if values_differ(self.draft.get(field), self.base.get(field))
        }

    def save(self) -> Optional[Dict[str, Any]]:
        """
        Submit the edited fields with the loaded version.

        Returns:
            The confirmed record, or None if the save conflicted
        """
        self._require("save", ResolutionState.EDITING)
        return self._submit(self.edited_fields(), self.expected_version)

    # ==================== Resolution ====================

    def discard(self) -> Dict[str, Any]:
        """Drop local edits and continue from the server record"""
        self._require("discard", ResolutionState.CONFLICTED)
        snapshot = self.snapshot
        self._rebase(snapshot)
        self.state = ResolutionState.EDITING
        logger.info(f"Discarded local edits on task {self.task_id}")
        return snapshot

    def force_overwrite(self) -> Optional[Dict[str, Any]]:
        """Resend the edited fields against the server's current version"""
        self._require("force overwrite", ResolutionState.CONFLICTED)
        version = self.snapshot["version"]
        self.state = ResolutionState.RESOLVING
        return self._submit(self.edited_fields(), version)

    def contested_fields(self) -> List[str]:
        """
        Fields both sides changed to different values.

        A field is contested only when the user edited it, the server changed
        it since the base was loaded, and the two new values still differ.
        """
        self._require("list contested fields", ResolutionState.CONFLICTED)
        snapshot = self.snapshot
        contested = []
        for field in EDITABLE_FIELDS:
            mine = self.draft.get(field)
            base = self.base.get(field)
            theirs = snapshot.get(field)
            if values_differ(mine, base) and values_differ(theirs, base) and values_differ(mine, theirs):
                contested.append(field)
        return contested

    def describe_conflict(self) -> List[Dict[str, str]]:
        """Rows for a merge dialog, one per contested field"""
        snapshot = self.snapshot
        return [
            {
                "field": field,
                "mine": display_value(field, self.draft.get(field)),
                "theirs": display_value(field, snapshot.get(field)),
            }
            for field in self.contested_fields()
        ]

    def merge(self, choices: Optional[Dict[str, str]] = None) -> Optional[Dict[str, Any]]:
        """
        Submit a merged record against the server's current version.

        Args:
            choices: ``"mine"`` or ``"theirs"`` per contested field; fields
                left out default to ``"mine"``
        """
        contested = self.contested_fields()
        choices = choices or {}
        for field, choice in choices.items():
            if field not in contested:
                raise ValueError(f"Field '{field}' is not contested")
            if choice not in (MINE, THEIRS):
                raise ValueError(f"Invalid choice '{choice}' for field '{field}'")

        snapshot = self.snapshot
        edited = self.edited_fields()
        merged = {}
        for field in EDITABLE_FIELDS:
            if field in contested:
                source = snapshot if choices.get(field, MINE) == THEIRS else self.draft
                merged[field] = source.get(field)
            elif field in edited:
                merged[field] = edited[field]
            else:
                merged[field] = snapshot.get(field)

        self.state = ResolutionState.RESOLVING
        return self._submit(merged, snapshot["version"])

    def cancel(self):
        """Close the conflict and keep editing; the stale version is kept"""
        self._require("cancel", ResolutionState.CONFLICTED)
        self.conflict = None
        self.state = ResolutionState.EDITING

    def abandon(self):
        """Stop editing this task"""
        self._require("abandon", ResolutionState.EDITING, ResolutionState.CONFLICTED)
        self.conflict = None
        self.state = ResolutionState.ABANDONED
