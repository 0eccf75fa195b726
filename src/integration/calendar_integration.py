import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

import httplib2
from google.auth.exceptions import RefreshError, TransportError
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from integration.base import IntegrationClient, relabel_title
from talk2task.config import Settings
from talk2task.errors import IntegrationError
from talk2task.models import IntegrationCredential, Platform, Task, TaskStatus

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URI = "https://oauth2.googleapis.com/token"
CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar.events",
]


def google_credentials_from(credential: IntegrationCredential, settings: Settings) -> Credentials:
    """Rebuild google-auth credentials from a stored integration credential."""
    expiry = credential.expires_at
    # google-auth compares against a naive UTC clock
    if expiry and expiry.tzinfo:
        expiry = expiry.astimezone(timezone.utc).replace(tzinfo=None)

    return Credentials(
        token=credential.access_token,
        refresh_token=credential.refresh_token,
        token_uri=GOOGLE_TOKEN_URI,
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        scopes=CALENDAR_SCOPES,
        expiry=expiry,
    )


class CalendarIntegration(IntegrationClient):
    """Mirrors tasks as Google Calendar events."""

    platform = Platform.GOOGLE_CALENDAR

    def __init__(
        self,
        credentials=None,
        calendar_id: str = "primary",
        event_duration_min: int = 60,
        timeout_s: float = 30.0,
        service=None,
        clock: Optional[Callable[[], datetime]] = None,
        credential: Optional[IntegrationCredential] = None,
        on_token_refresh: Optional[Callable[[IntegrationCredential], Awaitable[None]]] = None,
    ):
        self.credentials = credentials
        self.calendar_id = calendar_id
        self.event_duration = timedelta(minutes=event_duration_min)
        self.timeout_s = timeout_s
        self._service = service
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        # the stored record behind `credentials`, kept current when google-auth refreshes
        self.credential = credential
        self.on_token_refresh = on_token_refresh

    @classmethod
    def from_credential(
        cls,
        credential: IntegrationCredential,
        settings: Settings,
        on_token_refresh: Optional[Callable[[IntegrationCredential], Awaitable[None]]] = None,
    ) -> "CalendarIntegration":
        return cls(
            credentials=google_credentials_from(credential, settings),
            calendar_id=settings.google_calendar_id,
            event_duration_min=settings.event_duration_min,
            timeout_s=settings.integration_timeout_s,
            credential=credential,
            on_token_refresh=on_token_refresh,
        )

    @property
    def service(self):
        if self._service is None:
            self._service = build(
                "calendar", "v3", credentials=self.credentials, cache_discovery=False
            )
        return self._service

    def build_event_body(self, task: Task, user_timezone: str = "UTC") -> Dict[str, Any]:
        start = task.due_date or self._clock()
        if start.tzinfo is None:
            start = start.replace(tzinfo=timezone.utc)
        end = start + self.event_duration

        return {
            "summary": task.title,
            "description": task.description or f"Task: {task.title}",
            "start": {"dateTime": start.isoformat(), "timeZone": user_timezone or "UTC"},
            "end": {"dateTime": end.isoformat(), "timeZone": user_timezone or "UTC"},
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": 24 * 60},
                    {"method": "popup", "minutes": 30},
                ],
            },
            "extendedProperties": {
                "private": {
                    "taskId": task.id,
                    "source": "Talk2Task",
                    "priority": task.priority.value,
                }
            },
        }

    async def _persist_refreshed_token(self) -> None:
        if self.credential is None or self.on_token_refresh is None:
            return
        token = getattr(self.credentials, "token", None)
        if not token or token == self.credential.access_token:
            return

        expiry = getattr(self.credentials, "expiry", None)
        self.credential = self.credential.model_copy(
            update={
                "access_token": token,
                "refresh_token": getattr(self.credentials, "refresh_token", None)
                or self.credential.refresh_token,
                "expires_at": expiry.replace(tzinfo=timezone.utc) if expiry else None,
            }
        )
        try:
            await self.on_token_refresh(self.credential)
        except Exception as e:
            # The call itself succeeded; the next dispatch just refreshes again.
            logger.warning(f"Could not store refreshed Google token for user {self.credential.user_id}: {e}")
            return
        logger.info(f"Stored refreshed Google token for user {self.credential.user_id}")

    async def _execute(self, request) -> Any:
        try:
            result = await asyncio.wait_for(
                asyncio.to_thread(request.execute), timeout=self.timeout_s
            )
        except HttpError as e:
            status = e.resp.status if e.resp is not None else None
            kind = IntegrationError.AUTH_EXPIRED if status == 401 else IntegrationError.REMOTE_ERROR
            raise IntegrationError(
                self.platform.value, kind, f"Google Calendar API error: {e}", status_code=status
            ) from e
        except RefreshError as e:
            raise IntegrationError(
                self.platform.value, IntegrationError.AUTH_EXPIRED, f"Google token refresh failed: {e}"
            ) from e
        except (asyncio.TimeoutError, TransportError, httplib2.HttpLib2Error, OSError) as e:
            raise IntegrationError(
                self.platform.value, IntegrationError.NETWORK_ERROR, f"Google Calendar unreachable: {e!r}"
            ) from e
        await self._persist_refreshed_token()
        return result

    async def create(self, task: Task, user_timezone: str = "UTC") -> str:
        body = self.build_event_body(task, user_timezone)
        result = await self._execute(
            self.service.events().insert(calendarId=self.calendar_id, body=body)
        )
        event_id = (result or {}).get("id")
        if not event_id:
            raise IntegrationError(
                self.platform.value, IntegrationError.REMOTE_ERROR, "Google Calendar returned no event id"
            )
        logger.info(f"Created calendar event {event_id} for task {task.id}")
        return event_id

    async def update_status(self, external_id: str, status: TaskStatus) -> None:
        existing = await self._execute(
            self.service.events().get(calendarId=self.calendar_id, eventId=external_id)
        )
        current = (existing or {}).get("summary") or "Event"
        new_title = relabel_title(current, status)
        if new_title == current:
            return

        await self._execute(
            self.service.events().patch(
                calendarId=self.calendar_id,
                eventId=external_id,
                body={"summary": new_title},
            )
        )
        logger.info(f"Relabeled calendar event {external_id} as {new_title!r}")

    async def delete(self, external_id: str) -> None:
        try:
            await self._execute(
                self.service.events().delete(calendarId=self.calendar_id, eventId=external_id)
            )
        except IntegrationError as e:
            if e.remote_status in (404, 410):
                logger.info(f"Calendar event {external_id} was already deleted")
                return
            raise
        logger.info(f"Deleted calendar event {external_id}")
