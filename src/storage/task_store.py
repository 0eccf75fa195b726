"""
Task store adapters.

Every call is scoped to one user. A task that does not exist and a task owned
by somebody else look the same to the caller: NotFoundError.
"""

import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional, Union

from storage import db
from talk2task.errors import NotFoundError, UnauthorizedError, ValidationError
from talk2task.models import AIConversation, NewTask, Task, TaskPatch

logger = logging.getLogger(__name__)

PatchLike = Union[TaskPatch, Dict]

_TASK_COLUMNS = (
    "id, user_id, title, description, status, priority, due_date, source, category, "
    "ai_context, external_id, external_platform, created_at, updated_at"
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _require_user(user_id: Optional[str]) -> str:
    if not user_id:
        raise UnauthorizedError("Unauthorized")
    return user_id


def _patch_values(patch: PatchLike) -> Dict:
    if isinstance(patch, dict):
        unknown = set(patch) - set(TaskPatch.model_fields)
        if unknown:
            raise ValidationError(f"Fields cannot be changed: {', '.join(sorted(unknown))}")
        patch = TaskPatch(**patch)
    values = patch.model_dump(exclude_unset=True)
    if "title" in values:
        title = (values["title"] or "").strip()
        if not title:
            raise ValidationError("Title is required")
        values["title"] = title
    return values


class TaskStore(ABC):
    @abstractmethod
    async def create(self, task: NewTask) -> Task: ...

    @abstractmethod
    async def get(self, user_id: str, task_id: str) -> Task: ...

    @abstractmethod
    async def list(self, user_id: str) -> List[Task]:
        """Tasks owned by `user_id`, newest first."""

    @abstractmethod
    async def update(self, user_id: str, task_id: str, patch: PatchLike) -> Task: ...

    @abstractmethod
    async def delete(self, user_id: str, task_id: str) -> None: ...

    @abstractmethod
    async def record_conversation(self, conversation: AIConversation) -> None: ...


class InMemoryTaskStore(TaskStore):
    """Process-local store used when no database is configured (and in tests)."""

    def __init__(self, clock: Optional[Callable[[], datetime]] = None):
        self._tasks: Dict[str, Task] = {}
        self.conversations: List[AIConversation] = []
        self._clock = clock or _utcnow

    async def create(self, task: NewTask) -> Task:
        _require_user(task.user_id)
        now = self._clock()
        stored = Task(**task.model_dump(), id=str(uuid.uuid4()), created_at=now, updated_at=now)
        self._tasks[stored.id] = stored
        return stored.model_copy()

    def _owned(self, user_id: str, task_id: str) -> Task:
        _require_user(user_id)
        task = self._tasks.get(task_id)
        if task is None or task.user_id != user_id:
            raise NotFoundError(f"Task {task_id} not found")
        return task

    async def get(self, user_id: str, task_id: str) -> Task:
        return self._owned(user_id, task_id).model_copy()

    async def list(self, user_id: str) -> List[Task]:
        _require_user(user_id)
        owned = [t for t in self._tasks.values() if t.user_id == user_id]
        owned.sort(key=lambda t: t.created_at, reverse=True)
        return [t.model_copy() for t in owned]

    async def update(self, user_id: str, task_id: str, patch: PatchLike) -> Task:
        task = self._owned(user_id, task_id)
        values = _patch_values(patch)
        values["updated_at"] = self._clock()
        updated = task.model_copy(update=values)
        self._tasks[task_id] = updated
        return updated.model_copy()

    async def delete(self, user_id: str, task_id: str) -> None:
        self._owned(user_id, task_id)
        del self._tasks[task_id]

    async def record_conversation(self, conversation: AIConversation) -> None:
        self.conversations.append(
            conversation.model_copy(update={"created_at": conversation.created_at or self._clock()})
        )


def _row_to_task(row) -> Task:
    data = dict(row)
    data["id"] = str(data["id"])
    return Task(**data)


def _as_uuid(task_id: str) -> uuid.UUID:
    try:
        return uuid.UUID(str(task_id))
    except ValueError:
        raise NotFoundError(f"Task {task_id} not found") from None


class PostgresTaskStore(TaskStore):
    """Task store backed by the asyncpg pool in storage.db."""

    async def create(self, task: NewTask) -> Task:
        _require_user(task.user_id)
        row = await db.fetchrow(
            f"""
            INSERT INTO tasks (id, user_id, title, description, priority, due_date,
                               source, category, ai_context)
            VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9)
            RETURNING {_TASK_COLUMNS}
            """,
            uuid.uuid4(),
            task.user_id,
            task.title,
            task.description,
            task.priority.value,
            task.due_date,
            task.source.value,
            task.category.value,
            task.ai_context,
        )
        return _row_to_task(row)

    async def get(self, user_id: str, task_id: str) -> Task:
        _require_user(user_id)
        row = await db.fetchrow(
            f"SELECT {_TASK_COLUMNS} FROM tasks WHERE id = $1 AND user_id = $2",
            _as_uuid(task_id),
            user_id,
        )
        if row is None:
            raise NotFoundError(f"Task {task_id} not found")
        return _row_to_task(row)

    async def list(self, user_id: str) -> List[Task]:
        _require_user(user_id)
        rows = await db.fetch(
            f"SELECT {_TASK_COLUMNS} FROM tasks WHERE user_id = $1 ORDER BY created_at DESC",
            user_id,
        )
        return [_row_to_task(r) for r in rows]

    async def update(self, user_id: str, task_id: str, patch: PatchLike) -> Task:
        _require_user(user_id)
        values = _patch_values(patch)

        assignments = []
        args: list = [_as_uuid(task_id), user_id]
        for column, value in values.items():
            if hasattr(value, "value"):
                value = value.value
            args.append(value)
            assignments.append(f"{column} = ${len(args)}")
        assignments.append("updated_at = NOW()")

        row = await db.fetchrow(
            f"""
            UPDATE tasks SET {', '.join(assignments)}
            WHERE id = $1 AND user_id = $2
            RETURNING {_TASK_COLUMNS}
            """,
            *args,
        )
        if row is None:
            raise NotFoundError(f"Task {task_id} not found")
        return _row_to_task(row)

    async def delete(self, user_id: str, task_id: str) -> None:
        _require_user(user_id)
        status = await db.execute(
            "DELETE FROM tasks WHERE id = $1 AND user_id = $2",
            _as_uuid(task_id),
            user_id,
        )
        if status.endswith(" 0"):
            raise NotFoundError(f"Task {task_id} not found")

    async def record_conversation(self, conversation: AIConversation) -> None:
        await db.execute(
            """
            INSERT INTO ai_conversations (id, user_id, input_text, ai_response, task_created, task_id)
            VALUES ($1, $2, $3, $4, $5, $6)
            """,
            uuid.uuid4(),
            conversation.user_id,
            conversation.input_text,
            conversation.ai_response,
            conversation.task_created,
            uuid.UUID(conversation.task_id) if conversation.task_id else None,
        )
