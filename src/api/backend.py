import asyncio
import logging
from datetime import datetime, timezone
from typing import Callable, Iterable, List, Optional, Tuple

from pydantic import BaseModel, Field

from extraction.normalizer import fallback_task, normalize
from extraction.task_extractor import TaskExtractor
from integration.dispatcher import IntegrationDispatcher, first_success
from llm.llm_client import LLMClient
from storage.credential_store import CredentialStore
from storage.task_store import PatchLike, TaskStore
from talk2task.config import Settings
from talk2task.errors import UpstreamError, ValidationError
from talk2task.models import (
    AIConversation,
    DispatchResult,
    ExtractedTask,
    NewTask,
    Task,
    TaskSource,
)

logger = logging.getLogger(__name__)


class ProcessResult(BaseModel):
    task: Task
    integrations: List[DispatchResult] = Field(default_factory=list)
    ai_response: str
    original_input: str
    fallback: bool = False


class BackendAPI:
    """Central orchestration component: extract, normalize, persist, dispatch."""

    def __init__(
        self,
        settings: Settings,
        task_store: TaskStore,
        credential_store: CredentialStore,
        extractor: Optional[TaskExtractor] = None,
        dispatcher: Optional[IntegrationDispatcher] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.settings = settings
        self.task_store = task_store
        self.credential_store = credential_store
        self.extractor = extractor or TaskExtractor(LLMClient.from_settings(settings))
        self.dispatcher = dispatcher or IntegrationDispatcher.from_settings(
            settings, on_token_refresh=credential_store.store_refreshed
        )
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def _extract(self, text: str, user_timezone: str) -> ExtractedTask:
        now = self._clock()
        try:
            # The provider call is blocking; keep it off the event loop.
            raw = await asyncio.to_thread(self.extractor.extract, text, now, user_timezone)
        except UpstreamError as e:
            if not self.settings.extraction_fallback_on_upstream_error:
                raise
            logger.warning(f"Extraction failed ({e.message}); synthesizing the task locally")
            return fallback_task(text)
        return normalize(raw, text)

    async def process_text(
        self,
        user_id: str,
        text: str,
        user_timezone: str = "UTC",
        source: TaskSource = TaskSource.TEXT,
    ) -> ProcessResult:
        """Accepts free-form text and runs it through the whole pipeline."""
        if not text or not text.strip():
            raise ValidationError("Text input is required")
        text = text.strip()
        user_timezone = user_timezone or "UTC"

        # 1. Extract and normalize
        extracted = await self._extract(text, user_timezone)

        # 2. Persist
        task = await self.task_store.create(
            NewTask(
                user_id=user_id,
                title=extracted.title,
                description=extracted.description,
                priority=extracted.priority,
                due_date=extracted.due_date,
                source=source,
                category=extracted.category,
                ai_context=extracted.ai_context,
            )
        )
        logger.info(f"Created task {task.id} for user {user_id} (fallback={extracted.fallback})")

        # 3. Mirror to external tools, then stamp the mirror on the stored record
        results = await self.dispatcher.dispatch(
            task,
            extracted.integrations,
            self.credential_store.lookup_for(user_id),
            user_timezone=user_timezone,
        )
        task = await self._stamp_mirror(user_id, task, results)

        await self._record_conversation(user_id, text, extracted.ai_response, task)

        return ProcessResult(
            task=task,
            integrations=results,
            ai_response=extracted.ai_response,
            original_input=text,
            fallback=extracted.fallback,
        )

    async def _stamp_mirror(self, user_id: str, task: Task, results: List[DispatchResult]) -> Task:
        primary = first_success(results)
        if primary is None:
            return task
        try:
            return await self.task_store.update(
                user_id,
                task.id,
                {"external_id": primary.external_id, "external_platform": primary.platform},
            )
        except Exception as e:
            # The remote object exists but is not linked; there is no rollback.
            logger.error(f"Could not record {primary.platform} mirror {primary.external_id} on task {task.id}: {e}")
            return task

    async def _record_conversation(self, user_id: str, text: str, ai_response: str, task: Task) -> None:
        try:
            await self.task_store.record_conversation(
                AIConversation(
                    user_id=user_id,
                    input_text=text,
                    ai_response=ai_response,
                    task_created=True,
                    task_id=task.id,
                )
            )
        except Exception as e:
            logger.warning(f"Failed to record conversation for task {task.id}: {e}")

    async def create_task(self, task: NewTask) -> Task:
        return await self.task_store.create(task)

    async def list_tasks(self, user_id: str) -> List[Task]:
        return await self.task_store.list(user_id)

    async def sync_task(self, user_id: str, task_id: str, hints: Iterable, user_timezone: str = "UTC") -> Tuple[Task, List[DispatchResult]]:
        """Mirror an existing task on demand. Tasks that already have a mirror are left alone."""
        if not task_id:
            raise ValidationError("Task ID is required")
        task = await self.task_store.get(user_id, task_id)
        results = await self.dispatcher.dispatch(
            task, hints, self.credential_store.lookup_for(user_id), user_timezone=user_timezone
        )
        task = await self._stamp_mirror(user_id, task, results)
        return task, results

    async def update_task(self, user_id: str, task_id: str, patch: PatchLike) -> Tuple[Task, Optional[DispatchResult]]:
        if not task_id:
            raise ValidationError("Task ID is required")
        before = await self.task_store.get(user_id, task_id)
        updated = await self.task_store.update(user_id, task_id, patch)

        sync = None
        if updated.status != before.status:
            sync = await self.dispatcher.propagate_status(
                updated, self.credential_store.lookup_for(user_id)
            )
        return updated, sync

    async def delete_task(self, user_id: str, task_id: str) -> Optional[DispatchResult]:
        """Delete the mirror first (best-effort), then the task."""
        if not task_id:
            raise ValidationError("Task ID is required")
        task = await self.task_store.get(user_id, task_id)
        sync = await self.dispatcher.propagate_delete(
            task, self.credential_store.lookup_for(user_id)
        )
        await self.task_store.delete(user_id, task_id)
        logger.info(f"Deleted task {task_id} for user {user_id}")
        return sync
