"""
Best-effort fan-out of tasks to external productivity tools.

Nothing in here raises for a remote failure: every attempt ends as a
DispatchResult (succeeded, skipped_not_connected, skipped or failed) and the
caller decides what to stamp on the stored task. There is no retry loop; a
failed attempt is terminal for that request.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from integration.base import IntegrationClient
from talk2task.config import Settings
from talk2task.errors import IntegrationError
from talk2task.models import (
    DispatchResult,
    DispatchStatus,
    IntegrationCredential,
    Platform,
    Task,
    TaskStatus,
)

logger = logging.getLogger(__name__)

CredentialLookup = Callable[[Platform], Awaitable[Optional[IntegrationCredential]]]
ClientFactory = Callable[[IntegrationCredential], IntegrationClient]
TokenRefreshSink = Callable[[IntegrationCredential], Awaitable[None]]


def default_client_factories(
    settings: Settings, on_token_refresh: Optional[TokenRefreshSink] = None
) -> Dict[Platform, ClientFactory]:
    from integration.calendar_integration import CalendarIntegration
    from integration.notion_integration import NotionIntegration

    return {
        Platform.GOOGLE_CALENDAR: lambda cred: CalendarIntegration.from_credential(
            cred, settings, on_token_refresh=on_token_refresh
        ),
        Platform.NOTION: lambda cred: NotionIntegration.from_credential(cred, settings),
    }


def _skipped(platform: str, reason: str) -> DispatchResult:
    return DispatchResult(platform=platform, status=DispatchStatus.SKIPPED, reason=reason)


def _failed(platform: str, reason: str, failure: Optional[str] = None) -> DispatchResult:
    return DispatchResult(
        platform=platform, status=DispatchStatus.FAILED, reason=reason, failure=failure
    )


class IntegrationDispatcher:
    def __init__(
        self,
        client_factories: Dict[Platform, ClientFactory],
        multi_platform: bool = False,
    ):
        self.client_factories = client_factories
        self.multi_platform = multi_platform

    @classmethod
    def from_settings(
        cls, settings: Settings, on_token_refresh: Optional[TokenRefreshSink] = None
    ) -> "IntegrationDispatcher":
        return cls(
            client_factories=default_client_factories(settings, on_token_refresh),
            multi_platform=settings.dispatch_multi_platform,
        )

    async def _client_for(
        self, platform: Platform, credentials: CredentialLookup
    ) -> Tuple[Optional[IntegrationClient], Optional[DispatchResult]]:
        """Resolve a client, or the result explaining why there is none."""
        factory = self.client_factories.get(platform)
        if factory is None:
            return None, _skipped(platform.value, "not_configured")

        try:
            credential = await credentials(platform)
        except Exception as e:
            logger.error(f"Credential lookup for {platform.value} failed: {e}")
            return None, _failed(platform.value, f"credential lookup failed: {e}")

        if credential is None or not credential.is_active:
            return None, DispatchResult(
                platform=platform.value, status=DispatchStatus.SKIPPED_NOT_CONNECTED
            )

        try:
            return factory(credential), None
        except Exception as e:
            logger.error(f"Could not build {platform.value} client: {e}")
            return None, _failed(platform.value, f"client setup failed: {e}")

    async def _attempt(
        self, platform: Platform, action: str, call: Callable[[], Awaitable[Optional[str]]]
    ) -> DispatchResult:
        try:
            external_id = await call()
        except IntegrationError as e:
            logger.warning(f"{platform.value} {action} failed ({e.kind}): {e.message}")
            return _failed(platform.value, e.message, failure=e.kind)
        except Exception as e:
            logger.exception(f"Unexpected error during {platform.value} {action}")
            return _failed(platform.value, str(e) or type(e).__name__, failure=IntegrationError.REMOTE_ERROR)
        return DispatchResult(
            platform=platform.value, status=DispatchStatus.SUCCEEDED, external_id=external_id
        )

    async def dispatch(
        self,
        task: Task,
        hints: Iterable,
        credentials: CredentialLookup,
        user_timezone: str = "UTC",
    ) -> List[DispatchResult]:
        """Create one remote object per connected hint and report what happened to each."""
        ordered: List[str] = []
        for hint in hints:
            name = hint.value if isinstance(hint, Platform) else str(hint)
            if name not in ordered:
                ordered.append(name)

        if task.external_id:
            # Create must never run twice for the same task.
            return [_skipped(name, "already_mirrored") for name in ordered]

        results: List[Optional[DispatchResult]] = [None] * len(ordered)
        planned: List[Tuple[int, Platform, IntegrationClient]] = []

        for i, name in enumerate(ordered):
            try:
                platform = Platform(name)
            except ValueError:
                results[i] = _skipped(name, "unknown_integration")
                continue

            client, outcome = await self._client_for(platform, credentials)
            if client is None:
                results[i] = outcome
                continue

            if planned and not self.multi_platform:
                results[i] = _skipped(name, "single_platform")
                continue
            planned.append((i, platform, client))

        async def _create(platform: Platform, client: IntegrationClient) -> DispatchResult:
            return await self._attempt(
                platform, "create", lambda: client.create(task, user_timezone=user_timezone)
            )

        outcomes = await asyncio.gather(*(_create(p, c) for _, p, c in planned))
        for (i, _, _), outcome in zip(planned, outcomes):
            results[i] = outcome

        for r in results:
            logger.info(f"Dispatch of task {task.id} to {r.platform}: {r.status.value}")
        return results

    async def propagate_status(
        self, task: Task, credentials: CredentialLookup
    ) -> Optional[DispatchResult]:
        """Reflect the task's current status on its mirror, if it has one."""
        if not task.external_id or not task.external_platform:
            return None

        platform = Platform(task.external_platform)
        client, outcome = await self._client_for(platform, credentials)
        if client is None:
            return outcome

        async def _update() -> str:
            await client.update_status(task.external_id, TaskStatus(task.status))
            return task.external_id

        return await self._attempt(platform, "status update", _update)

    async def propagate_delete(
        self, task: Task, credentials: CredentialLookup
    ) -> Optional[DispatchResult]:
        """Remove the task's mirror. A mirror that is already gone counts as removed."""
        if not task.external_id or not task.external_platform:
            return None

        platform = Platform(task.external_platform)
        client, outcome = await self._client_for(platform, credentials)
        if client is None:
            return outcome

        async def _delete() -> str:
            await client.delete(task.external_id)
            return task.external_id

        return await self._attempt(platform, "delete", _delete)


def first_success(results: Iterable[DispatchResult]) -> Optional[DispatchResult]:
    for r in results:
        if r.status == DispatchStatus.SUCCEEDED and r.external_id:
            return r
    return None
