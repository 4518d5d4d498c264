"""
TaskBoard HTTP Client
=====================

Thin client for the task board REST API with a local cache of task records.

The cache only ever holds records the server confirmed: responses to reads,
creates and updates, and the current record carried by a 409 conflict. It is
never updated ahead of a response.

Author: taskboard maintainers
Created: 2026-10-19
"""

import logging
import threading
from typing import Any, Dict, Iterable, List, Optional

import requests

from taskboard.conflicts import EditSession
from taskboard.exceptions import (
    OptimisticLockConflict,
    TaskBoardClientError,
    TaskNotFoundError,
    TaskValidationError,
)

logger = logging.getLogger(__name__)


class TaskCache:
    """Confirmed task records keyed by id"""

    def __init__(self):
        self._tasks: Dict[int, Dict[str, Any]] = {}
        self._lock = threading.Lock()

    def put(self, task: Dict[str, Any]):
        with self._lock:
            self._tasks[task["id"]] = dict(task)

    def put_all(self, tasks: Iterable[Dict[str, Any]]):
        for task in tasks:
            self.put(task)

    def replace_all(self, tasks: Iterable[Dict[str, Any]]):
        with self._lock:
            self._tasks = {task["id"]: dict(task) for task in tasks}

    def get(self, task_id: int) -> Optional[Dict[str, Any]]:
        with self._lock:
            task = self._tasks.get(task_id)
            return dict(task) if task else None

    def remove(self, task_id: int):
        with self._lock:
            self._tasks.pop(task_id, None)

    def values(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [dict(task) for _, task in sorted(self._tasks.items())]

    def __contains__(self, task_id: int) -> bool:
        return task_id in self._tasks

    def __len__(self) -> int:
        return len(self._tasks)


class TaskBoardClient:
    """
    REST client for the task board.

    Args:
        base_url: Server root, e.g. ``http://localhost:8080``
        api_prefix: Prefix the server mounts its routes under
        session: Object with a requests-compatible ``request`` method;
            defaults to a new ``requests.Session``
        actor: Sent as ``X-User`` for attribution of mutations
        timeout: Request timeout in seconds, None to disable
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8080",
        api_prefix: str = "",
        session=None,
        actor: Optional[str] = None,
        timeout: Optional[float] = 10,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_prefix = api_prefix.rstrip("/")
        self.session = session if session is not None else requests.Session()
        self.actor = actor
        self.timeout = timeout
        self.cache = TaskCache()

    # ==================== Transport ====================

    def _url(self, path: str) -> str:
        return f"{self.base_url}{self.api_prefix}/tasks{path}"

    def _request(self, method: str, path: str, task_id: Optional[int] = None, **kwargs) -> Any:
        headers = kwargs.pop("headers", {})
        if self.actor:
            headers["X-User"] = self.actor
        if self.timeout is not None:
            kwargs["timeout"] = self.timeout

        response = self.session.request(method, self._url(path), headers=headers, **kwargs)
        body = self._decode(response)

        if 200 <= response.status_code < 300:
            return body
        if response.status_code == 404:
            raise TaskNotFoundError(task_id)
        if response.status_code == 400:
            body = body if isinstance(body, dict) else {}
            raise TaskValidationError(
                body.get("fieldErrors") or {},
                body.get("message", "Validation failed for request"),
            )
        if response.status_code == 409 and isinstance(body, dict):
            conflict = OptimisticLockConflict.from_payload(body)
            if conflict.current_data:
                self.cache.put(conflict.current_data)
            raise conflict

        logger.error(f"{method} {path} failed: {response.status_code} - {body}")
        raise TaskBoardClientError(response.status_code, body)

    @staticmethod
    def _decode(response) -> Any:
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError:
            return response.text

    # ==================== Reads ====================

    def list_tasks(self) -> List[Dict[str, Any]]:
        tasks = self._request("GET", "")
        self.cache.replace_all(tasks)
        return tasks

    def get_task(self, task_id: int) -> Dict[str, Any]:
        task = self._request("GET", f"/{task_id}", task_id=task_id)
        self.cache.put(task)
        return task

    def get_fresh_task(self, task_id: int) -> Dict[str, Any]:
        task = self._request("GET", f"/{task_id}/fresh", task_id=task_id)
        self.cache.put(task)
        return task

    def get_tasks_page(self, page: int = 0, size: int = 20, sort_by: str = "id", direction: str = "ASC") -> Dict[str, Any]:
        result = self._request(
            "GET",
            "/page",
            params={"page": page, "size": size, "sortBy": sort_by, "direction": direction},
        )
        self.cache.put_all(result["content"])
        return result

    def search_tasks(
        self,
        status: Optional[str] = None,
        priority: Optional[str] = None,
        assignee: Optional[str] = None,
        search_term: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        params = {
            "status": status,
            "priority": priority,
            "assignee": assignee,
            "searchTerm": search_term,
        }
        tasks = self._request("GET", "/search", params={k: v for k, v in params.items() if v})
        self.cache.put_all(tasks)
        return tasks

    def get_tasks_by_status(self, status: str) -> List[Dict[str, Any]]:
        tasks = self._request("GET", f"/status/{status}")
        self.cache.put_all(tasks)
        return tasks

    def get_tasks_by_priority(self, priority: str) -> List[Dict[str, Any]]:
        tasks = self._request("GET", f"/priority/{priority}")
        self.cache.put_all(tasks)
        return tasks

    def get_statistics(self) -> Dict[str, Any]:
        return self._request("GET", "/statistics")

    def check_for_conflicts(self, task_id: int, last_fetched: str) -> Dict[str, Any]:
        """Advisory pre-check; a reported snapshot refreshes the cache"""
        result = self._request(
            "GET",
            f"/{task_id}/conflict-check",
            task_id=task_id,
            params={"lastFetched": last_fetched},
        )
        if result.get("currentSnapshot"):
            self.cache.put(result["currentSnapshot"])
        return result

    # ==================== Mutations ====================

    def create_task(self, fields: Dict[str, Any]) -> Dict[str, Any]:
        task = self._request("POST", "", json=fields)
        self.cache.put(task)
        return task

    def update_task(self, task_id: int, fields: Dict[str, Any], version: int) -> Dict[str, Any]:
        """
        Send a versioned update.

        Raises:
            OptimisticLockConflict: If ``version`` is stale; the cache then
                holds the server's current record
        """
        task = self._request("PUT", f"/{task_id}", task_id=task_id, json={**fields, "version": version})
        self.cache.put(task)
        return task

    def delete_task(self, task_id: int):
        self._request("DELETE", f"/{task_id}", task_id=task_id)
        self.cache.remove(task_id)

    def bulk_update_status(self, task_ids: List[int], status: str) -> List[Dict[str, Any]]:
        tasks = self._request("PATCH", "/bulk-status", json={"taskIds": list(task_ids), "status": status})
        self.cache.put_all(tasks)
        return tasks

    def edit(self, task_id: int) -> EditSession:
        """Start an edit session on the current server record"""
        return EditSession(self.get_task(task_id), self.update_task)
