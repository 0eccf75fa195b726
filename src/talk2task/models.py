from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class Priority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskSource(str, Enum):
    VOICE = "voice"
    TEXT = "text"
    AI_GENERATED = "ai_generated"


class Category(str, Enum):
    TASK = "Task"
    WORK = "Work"
    MEETING = "Meeting"
    GENERAL = "General"


class Platform(str, Enum):
    GOOGLE_CALENDAR = "google_calendar"
    NOTION = "notion"


class ExtractedTask(BaseModel):
    """Normalizer output: a complete extraction record, safe to persist."""

    title: str = Field(..., min_length=1)
    description: str
    priority: Priority = Priority.MEDIUM
    due_date: Optional[datetime] = None
    integrations: List[Platform] = Field(default_factory=list)
    category: Category = Category.GENERAL
    ai_response: str
    ai_context: Optional[str] = None

    # True when the model output was unusable and the record was synthesized locally.
    fallback: bool = False


class NewTask(BaseModel):
    user_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: str = ""
    priority: Priority = Priority.MEDIUM
    due_date: Optional[datetime] = None
    source: TaskSource = TaskSource.TEXT
    category: Category = Category.GENERAL
    ai_context: Optional[str] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        v2 = v.strip()
        if not v2:
            raise ValueError("title must not be blank")
        return v2


class Task(NewTask):
    id: str
    status: TaskStatus = TaskStatus.PENDING
    external_id: Optional[str] = None
    external_platform: Optional[Platform] = None
    created_at: datetime
    updated_at: datetime


class TaskPatch(BaseModel):
    """Fields a caller may change after creation. `source` and `created_at` are not here on purpose."""

    title: Optional[str] = None
    description: Optional[str] = None
    priority: Optional[Priority] = None
    due_date: Optional[datetime] = None
    status: Optional[TaskStatus] = None
    external_id: Optional[str] = None
    external_platform: Optional[Platform] = None


class IntegrationCredential(BaseModel):
    user_id: str
    platform: Platform
    access_token: str
    refresh_token: Optional[str] = None
    expires_at: Optional[datetime] = None
    is_active: bool = True
    label: Optional[str] = None  # google email or notion workspace name
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DispatchStatus(str, Enum):
    SUCCEEDED = "succeeded"
    SKIPPED_NOT_CONNECTED = "skipped_not_connected"
    SKIPPED = "skipped"
    FAILED = "failed"


class DispatchResult(BaseModel):
    platform: str
    status: DispatchStatus
    external_id: Optional[str] = None
    reason: Optional[str] = None
    failure: Optional[str] = None  # auth_expired | remote_error | network_error

    @property
    def ok(self) -> bool:
        return self.status != DispatchStatus.FAILED


class AIConversation(BaseModel):
    user_id: str
    input_text: str
    ai_response: str
    task_created: bool = False
    task_id: Optional[str] = None
    created_at: Optional[datetime] = None
