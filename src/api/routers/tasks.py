import logging
import time
from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from api.backend import BackendAPI, ProcessResult
from api.dependencies import get_backend, get_current_user_id
from api.metrics import (
    DISPATCH_TOTAL,
    EXTRACTION_FALLBACKS_TOTAL,
    REQUEST_LATENCY_SECONDS,
    REQUESTS_TOTAL,
    TASKS_CREATED_TOTAL,
)
from talk2task.models import (
    Category,
    DispatchResult,
    NewTask,
    Platform,
    Priority,
    Task,
    TaskSource,
    TaskStatus,
)

router = APIRouter()
logger = logging.getLogger(__name__)


class ProcessTextIn(BaseModel):
    text: str
    timezone: str = "UTC"
    source: TaskSource = TaskSource.TEXT


class CreateTaskIn(BaseModel):
    title: str
    description: str = ""
    priority: Priority = Priority.MEDIUM
    due_date: Optional[datetime] = None
    category: Category = Category.GENERAL


class UpdateTaskIn(BaseModel):
    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[Priority] = None
    due_date: Optional[datetime] = None
    status: Optional[TaskStatus] = None


class SyncTaskIn(BaseModel):
    integrations: List[Platform] = Field(default_factory=list)
    timezone: str = "UTC"


class TaskOut(BaseModel):
    task: Task
    sync: Optional[DispatchResult] = None


def _count_dispatch(results: List[DispatchResult]) -> None:
    for r in results:
        DISPATCH_TOTAL.labels(platform=r.platform, status=r.status.value).inc()


@router.post("/tasks/process", response_model=ProcessResult)
async def process_text(
    payload: ProcessTextIn,
    user_id: str = Depends(get_current_user_id),
    backend: BackendAPI = Depends(get_backend),
) -> ProcessResult:
    start = time.time()
    logger.info(f"Received text from user {user_id}: {payload.text[:50]}...")

    try:
        result = await backend.process_text(
            user_id, payload.text, user_timezone=payload.timezone, source=payload.source
        )
    except Exception:
        REQUESTS_TOTAL.labels(endpoint="/tasks/process", status="error").inc()
        raise
    finally:
        REQUEST_LATENCY_SECONDS.labels(endpoint="/tasks/process").observe(time.time() - start)

    REQUESTS_TOTAL.labels(endpoint="/tasks/process", status="ok").inc()
    TASKS_CREATED_TOTAL.labels(source=payload.source.value).inc()
    if result.fallback:
        EXTRACTION_FALLBACKS_TOTAL.inc()
    _count_dispatch(result.integrations)
    return result


@router.get("/tasks")
async def list_tasks(
    user_id: str = Depends(get_current_user_id),
    backend: BackendAPI = Depends(get_backend),
) -> dict:
    tasks = await backend.list_tasks(user_id)
    return {"tasks": tasks, "total": len(tasks)}


@router.post("/tasks", response_model=Task, status_code=201)
async def create_task(
    payload: CreateTaskIn,
    user_id: str = Depends(get_current_user_id),
    backend: BackendAPI = Depends(get_backend),
) -> Task:
    task = await backend.create_task(NewTask(user_id=user_id, **payload.model_dump()))
    TASKS_CREATED_TOTAL.labels(source=task.source.value).inc()
    return task


@router.patch("/tasks/{task_id}", response_model=TaskOut)
async def update_task(
    task_id: str,
    payload: UpdateTaskIn,
    user_id: str = Depends(get_current_user_id),
    backend: BackendAPI = Depends(get_backend),
) -> TaskOut:
    # An explicit null only clears the due date.
    changes = {
        k: v
        for k, v in payload.model_dump(exclude_unset=True).items()
        if v is not None or k == "due_date"
    }
    task, sync = await backend.update_task(user_id, task_id, changes)
    if sync is not None:
        _count_dispatch([sync])
    return TaskOut(task=task, sync=sync)


@router.delete("/tasks/{task_id}")
async def delete_task(
    task_id: str,
    user_id: str = Depends(get_current_user_id),
    backend: BackendAPI = Depends(get_backend),
) -> dict:
    sync = await backend.delete_task(user_id, task_id)
    if sync is not None:
        _count_dispatch([sync])
    return {"status": "deleted", "id": task_id, "sync": sync}


@router.post("/tasks/{task_id}/sync")
async def sync_task(
    task_id: str,
    payload: SyncTaskIn,
    user_id: str = Depends(get_current_user_id),
    backend: BackendAPI = Depends(get_backend),
) -> dict:
    task, results = await backend.sync_task(
        user_id, task_id, payload.integrations, user_timezone=payload.timezone
    )
    _count_dispatch(results)
    return {"task": task, "integrations": results}
