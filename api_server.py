"""
TaskBoard - FastAPI Server
REST API for the task board with optimistic locking on updates
"""

from datetime import datetime
from typing import List, Optional

import uvicorn
import logging
from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import config
from taskboard import __version__
from taskboard.database import DatabaseConfig, DatabaseManager, utcnow
from taskboard.exceptions import OptimisticLockConflict, TaskNotFoundError, TaskValidationError
from taskboard.logging_monitoring import AuditLogger, configure_logging
from taskboard.models import (
    BulkStatusChange,
    ConflictCheckResult,
    ConflictPayload,
    ErrorResponse,
    SearchCriteria,
    TaskCreate,
    TaskPage,
    TaskPriority,
    TaskResponse,
    TaskStatistics,
    TaskStatus,
    TaskUpdate,
)
from taskboard.sample_data import seed_sample_tasks
from taskboard.service import TaskService, validation_errors_to_fields

# Setup logging
configure_logging(level=config.LOG_LEVEL, json_format=config.LOG_JSON, log_file=config.LOG_FILE)
logger = logging.getLogger(__name__)

GENERIC_ERROR_MESSAGE = "An unexpected error occurred. Please try again later."


def _error_body(error: str, message: str, field_errors: Optional[dict] = None) -> dict:
    return ErrorResponse(
        error=error,
        message=message,
        field_errors=field_errors,
        timestamp=utcnow(),
    ).model_dump(mode="json", by_alias=True, exclude_none=True)


# REQUEST DEPENDENCIES
def get_service(request: Request) -> TaskService:
    return request.app.state.task_service


def get_actor(x_user: Optional[str] = Header(default=None, max_length=100)) -> Optional[str]:
    """Attribution for mutations; falls back to the configured default actor"""
    return x_user.strip() if x_user and x_user.strip() else None


# ROUTES
router = APIRouter(prefix="/tasks", tags=["tasks"])


@router.get("", response_model=List[TaskResponse])
def list_tasks(service: TaskService = Depends(get_service)):
    """Get all tasks"""
    return service.list_tasks()


@router.get("/page", response_model=TaskPage)
def get_tasks_page(
    page: int = Query(0, ge=0),
    size: int = Query(config.DEFAULT_PAGE_SIZE, ge=1, le=config.MAX_PAGE_SIZE),
    sort_by: str = Query("id", alias="sortBy"),
    direction: str = Query("ASC"),
    service: TaskService = Depends(get_service),
):
    """Get one page of tasks"""
    return service.get_tasks_page(page, size, sort_by, direction, max_page_size=config.MAX_PAGE_SIZE)


@router.get("/search", response_model=List[TaskResponse])
def search_tasks(
    task_status: Optional[TaskStatus] = Query(None, alias="status"),
    priority: Optional[TaskPriority] = Query(None),
    assignee: Optional[str] = Query(None, max_length=100),
    search_term: Optional[str] = Query(None, alias="searchTerm", max_length=200),
    service: TaskService = Depends(get_service),
):
    """Search tasks by status, priority, assignee and free text"""
    criteria = SearchCriteria(
        status=task_status,
        priority=priority,
        assignee=assignee,
        search_term=search_term,
    )
    return service.search_tasks(criteria)


@router.get("/statistics", response_model=TaskStatistics)
def get_statistics(service: TaskService = Depends(get_service)):
    """Dashboard statistics"""
    return service.get_statistics()


@router.get("/status/{task_status}", response_model=List[TaskResponse])
def get_tasks_by_status(task_status: str, service: TaskService = Depends(get_service)):
    """Get tasks in one status column"""
    return service.get_tasks_by_status(task_status)


@router.get("/priority/{priority}", response_model=List[TaskResponse])
def get_tasks_by_priority(priority: str, service: TaskService = Depends(get_service)):
    """Get tasks with one priority"""
    return service.get_tasks_by_priority(priority)


@router.patch("/bulk-status", response_model=List[TaskResponse])
def bulk_update_status(
    request: BulkStatusChange,
    service: TaskService = Depends(get_service),
    actor: Optional[str] = Depends(get_actor),
):
    """Move several tasks to one status"""
    return service.bulk_update_status(request, actor=actor)


@router.get("/{task_id}", response_model=TaskResponse)
def get_task(task_id: int, service: TaskService = Depends(get_service)):
    """Get task by id"""
    return service.get_task(task_id)


@router.post("", response_model=TaskResponse, status_code=status.HTTP_201_CREATED)
def create_task(
    request: TaskCreate,
    service: TaskService = Depends(get_service),
    actor: Optional[str] = Depends(get_actor),
):
    """Create a new task"""
    return service.create_task(request, actor=actor)


@router.put(
    "/{task_id}",
    response_model=TaskResponse,
    responses={409: {"model": ConflictPayload}},
)
def update_task(
    task_id: int,
    request: TaskUpdate,
    service: TaskService = Depends(get_service),
    actor: Optional[str] = Depends(get_actor),
):
    """Update a task with optimistic locking"""
    return service.update_task(task_id, request, actor=actor)


@router.delete("/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_task(
    task_id: int,
    service: TaskService = Depends(get_service),
    actor: Optional[str] = Depends(get_actor),
):
    """Delete a task"""
    service.delete_task(task_id, actor=actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{task_id}/fresh", response_model=TaskResponse)
def get_fresh_task(task_id: int, service: TaskService = Depends(get_service)):
    """Get the current stored task, for conflict resolution"""
    return service.get_fresh_task(task_id)


@router.get(
    "/{task_id}/conflict-check",
    response_model=ConflictCheckResult,
)
def check_for_conflicts(
    task_id: int,
    last_fetched: Optional[str] = Query(None, alias="lastFetched"),
    service: TaskService = Depends(get_service),
):
    """Advisory check whether the task changed since the client fetched it"""
    result = service.check_for_conflicts(task_id, last_fetched)
    return JSONResponse(content=result.to_dict())


# EXCEPTION HANDLERS
async def handle_not_found(request: Request, exc: TaskNotFoundError):
    logger.warning(f"Task not found: {exc}")
    return Response(status_code=status.HTTP_404_NOT_FOUND)


async def handle_conflict(request: Request, exc: OptimisticLockConflict):
    logger.warning(f"Optimistic locking conflict: {exc}")
    return JSONResponse(status_code=status.HTTP_409_CONFLICT, content=exc.to_payload())


async def handle_task_validation(request: Request, exc: TaskValidationError):
    logger.warning(f"Validation error: {exc.field_errors}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body("VALIDATION_FAILED", str(exc), exc.field_errors),
    )


async def handle_request_validation(request: Request, exc: RequestValidationError):
    field_errors = validation_errors_to_fields(exc)
    logger.warning(f"Validation error: {field_errors}")
    return JSONResponse(
        status_code=status.HTTP_400_BAD_REQUEST,
        content=_error_body("VALIDATION_FAILED", "Validation failed for request", field_errors),
    )


async def handle_unexpected(request: Request, exc: Exception):
    logger.error(f"Unexpected error on {request.method} {request.url.path}", exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body("INTERNAL_SERVER_ERROR", GENERIC_ERROR_MESSAGE),
    )


def create_app(
    database_url: Optional[str] = None,
    seed_sample_data: Optional[bool] = None,
) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        database_url: Overrides DATABASE_URL from the configuration
        seed_sample_data: Overrides SEED_SAMPLE_DATA from the configuration
    """
    app = FastAPI(
        title="TaskBoard API",
        description="Kanban task board with optimistic concurrency control",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    db_manager = DatabaseManager(DatabaseConfig(
        database_url=database_url or config.DATABASE_URL,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
        echo=config.DB_ECHO,
    ))
    db_manager.initialize()

    service = TaskService(
        db_manager,
        audit_logger=AuditLogger(),
        default_actor=config.DEFAULT_ACTOR,
        bulk_max_retries=config.BULK_MAX_RETRIES,
    )

    should_seed = config.SEED_SAMPLE_DATA if seed_sample_data is None else seed_sample_data
    if should_seed:
        seed_sample_tasks(db_manager)

    app.state.db_manager = db_manager
    app.state.task_service = service

    app.include_router(router, prefix=config.API_PREFIX)

    app.add_exception_handler(TaskNotFoundError, handle_not_found)
    app.add_exception_handler(OptimisticLockConflict, handle_conflict)
    app.add_exception_handler(TaskValidationError, handle_task_validation)
    app.add_exception_handler(RequestValidationError, handle_request_validation)
    app.add_exception_handler(Exception, handle_unexpected)

    @app.on_event("shutdown")
    def shutdown():
        db_manager.close()

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy" if db_manager.initialized else "degraded",
            "timestamp": datetime.now().isoformat(),
            "version": __version__,
            "environment": config.ENVIRONMENT,
        }

    @app.get("/")
    async def root():
        """Root endpoint"""
        return {
            "name": "TaskBoard API",
            "version": __version__,
            "status": "operational",
            "docs": "/docs"
        }

    logger.info(f"TaskBoard API ready (database: {db_manager.config.database_url})")
    return app


if __name__ == "__main__":
    uvicorn.run(
        "api_server:create_app",
        factory=True,
        host=config.API_HOST,
        port=config.API_PORT,
        workers=config.API_WORKERS,
        reload=False,
        log_level=config.LOG_LEVEL.lower()
    )
