"""
Notion workspace integration.

Tasks become pages in a configured database. Notion has no hard delete over
the API, so deleting a mirror archives the page.
"""

import base64
import logging
from typing import Any, Dict, Optional

import httpx

from integration.base import IntegrationClient
from talk2task.config import Settings
from talk2task.errors import IntegrationError
from talk2task.models import IntegrationCredential, Platform, Task, TaskStatus

logger = logging.getLogger(__name__)

NOTION_VERSION = "2022-06-28"
NOTION_AUTHORIZE_URL = "https://api.notion.com/v1/oauth/authorize"

STATUS_NAMES = {
    TaskStatus.PENDING: "Not started",
    TaskStatus.IN_PROGRESS: "In progress",
    TaskStatus.COMPLETED: "Done",
    TaskStatus.CANCELLED: "Cancelled",
}

# Notion caps a rich text item at 2000 characters.
_MAX_TEXT = 2000


def _error_code(response: httpx.Response) -> str:
    try:
        return str(response.json().get("code", ""))
    except (ValueError, AttributeError):
        return ""


def _error_message(response: httpx.Response) -> str:
    try:
        return str(response.json().get("message", response.text))
    except (ValueError, AttributeError):
        return response.text


class NotionIntegration(IntegrationClient):
    platform = Platform.NOTION

    def __init__(
        self,
        access_token: str,
        database_id: str,
        base_url: str = "https://api.notion.com/v1",
        timeout_s: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token
        self.database_id = database_id
        self.base_url = base_url.rstrip("/")
        self.timeout_s = timeout_s
        self._transport = transport

    @classmethod
    def from_credential(cls, credential: IntegrationCredential, settings: Settings) -> "NotionIntegration":
        return cls(
            access_token=credential.access_token,
            database_id=settings.notion_database_id or "",
            base_url=settings.notion_base_url,
            timeout_s=settings.integration_timeout_s,
        )

    async def _request(self, method: str, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Notion-Version": NOTION_VERSION,
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(timeout=self.timeout_s, transport=self._transport) as client:
                r = await client.request(method, f"{self.base_url}{path}", headers=headers, json=payload)
        except httpx.HTTPError as e:
            raise IntegrationError(
                self.platform.value, IntegrationError.NETWORK_ERROR, f"Notion unreachable: {e!r}"
            ) from e

        if r.is_success:
            return r.json()

        code = _error_code(r)
        kind = (
            IntegrationError.AUTH_EXPIRED
            if r.status_code == 401 or code == "unauthorized"
            else IntegrationError.REMOTE_ERROR
        )
        raise IntegrationError(
            self.platform.value,
            kind,
            f"Notion API error {r.status_code} ({code or 'unknown'}): {_error_message(r)}",
            status_code=r.status_code,
            code=code or None,
        )

    def build_page(self, task: Task) -> Dict[str, Any]:
        page: Dict[str, Any] = {
            "parent": {"database_id": self.database_id},
            "properties": {
                "Name": {"title": [{"text": {"content": task.title[:_MAX_TEXT]}}]},
            },
            "children": [],
        }
        if task.description:
            page["children"].append(
                {
                    "object": "block",
                    "type": "paragraph",
                    "paragraph": {
                        "rich_text": [{"text": {"content": task.description[:_MAX_TEXT]}}]
                    },
                }
            )
        return page

    async def create(self, task: Task, user_timezone: str = "UTC") -> str:
        if not self.database_id:
            raise IntegrationError(
                self.platform.value, IntegrationError.REMOTE_ERROR, "NOTION_DATABASE_ID is not configured"
            )
        data = await self._request("POST", "/pages", self.build_page(task))
        page_id = data.get("id")
        if not page_id:
            raise IntegrationError(
                self.platform.value, IntegrationError.REMOTE_ERROR, "Notion returned no page id"
            )
        logger.info(f"Created Notion page {page_id} for task {task.id}")
        return page_id

    async def update_status(self, external_id: str, status: TaskStatus) -> None:
        name = STATUS_NAMES.get(TaskStatus(status), "Not started")
        await self._request(
            "PATCH",
            f"/pages/{external_id}",
            {"properties": {"Status": {"select": {"name": name}}}},
        )
        logger.info(f"Set Notion page {external_id} status to {name!r}")

    async def delete(self, external_id: str) -> None:
        try:
            await self._request("PATCH", f"/pages/{external_id}", {"archived": True})
        except IntegrationError as e:
            already_gone = e.remote_status == 404 or e.code == "object_not_found" or (
                e.remote_status == 400 and "archived" in e.message.lower()
            )
            if already_gone:
                logger.info(f"Notion page {external_id} was already archived")
                return
            raise
        logger.info(f"Archived Notion page {external_id}")


def authorize_url(settings: Settings) -> str:
    params = httpx.QueryParams(
        {
            "client_id": settings.notion_client_id or "",
            "response_type": "code",
            "owner": "user",
            "redirect_uri": settings.notion_redirect_uri,
        }
    )
    return f"{NOTION_AUTHORIZE_URL}?{params}"


async def exchange_oauth_code(
    code: str,
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> Dict[str, Any]:
    """Trade an OAuth authorization code for a Notion access token."""
    if not settings.notion_client_id or not settings.notion_client_secret:
        raise RuntimeError("Notion credentials not configured")

    basic = base64.b64encode(
        f"{settings.notion_client_id}:{settings.notion_client_secret}".encode()
    ).decode()
    async with httpx.AsyncClient(timeout=settings.integration_timeout_s, transport=transport) as client:
        r = await client.post(
            f"{settings.notion_base_url.rstrip('/')}/oauth/token",
            headers={"Authorization": f"Basic {basic}", "Content-Type": "application/json"},
            json={
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": settings.notion_redirect_uri,
            },
        )
        r.raise_for_status()
        return r.json()
