import base64
import json

import httpx
import pytest

from conftest import FIXED_NOW
from integration.notion_integration import (
    NOTION_VERSION,
    NotionIntegration,
    authorize_url,
    exchange_oauth_code,
)
from talk2task.config import Settings
from talk2task.errors import IntegrationError
from talk2task.models import Task, TaskStatus


def _task(**overrides) -> Task:
    data = dict(
        id="task-1",
        user_id="u1",
        title="Work: Draft roadmap",
        description="Draft the Q3 roadmap",
        created_at=FIXED_NOW,
        updated_at=FIXED_NOW,
    )
    data.update(overrides)
    return Task(**data)


def _notion(handler, database_id="db-1") -> NotionIntegration:
    return NotionIntegration("secret-token", database_id, transport=httpx.MockTransport(handler))


def _error(status: int, code: str, message: str = "nope") -> httpx.Response:
    return httpx.Response(status, json={"object": "error", "status": status, "code": code, "message": message})


@pytest.mark.asyncio
async def test_create_page():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["headers"] = request.headers
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"object": "page", "id": "page-42"})

    page_id = await _notion(handler).create(_task())

    assert page_id == "page-42"
    assert seen["method"] == "POST"
    assert seen["path"] == "/v1/pages"
    assert seen["headers"]["Authorization"] == "Bearer secret-token"
    assert seen["headers"]["Notion-Version"] == NOTION_VERSION
    assert seen["body"]["parent"] == {"database_id": "db-1"}
    assert seen["body"]["properties"]["Name"]["title"][0]["text"]["content"] == "Work: Draft roadmap"
    assert seen["body"]["children"][0]["paragraph"]["rich_text"][0]["text"]["content"] == "Draft the Q3 roadmap"


@pytest.mark.asyncio
async def test_create_without_database_is_remote_error():
    def handler(request):
        raise AssertionError("no request expected")

    with pytest.raises(IntegrationError) as exc:
        await _notion(handler, database_id="").create(_task())
    assert exc.value.kind == IntegrationError.REMOTE_ERROR


@pytest.mark.asyncio
async def test_revoked_token_is_auth_expired():
    with pytest.raises(IntegrationError) as exc:
        await _notion(lambda r: _error(401, "unauthorized")).create(_task())
    assert exc.value.kind == IntegrationError.AUTH_EXPIRED
    assert exc.value.remote_status == 401


@pytest.mark.asyncio
async def test_validation_failure_is_remote_error():
    with pytest.raises(IntegrationError) as exc:
        await _notion(lambda r: _error(400, "validation_error")).create(_task())
    assert exc.value.kind == IntegrationError.REMOTE_ERROR
    assert exc.value.code == "validation_error"


@pytest.mark.asyncio
async def test_network_failure():
    def handler(request):
        raise httpx.ConnectTimeout("timed out", request=request)

    with pytest.raises(IntegrationError) as exc:
        await _notion(handler).create(_task())
    assert exc.value.kind == IntegrationError.NETWORK_ERROR


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "status, name",
    [(TaskStatus.COMPLETED, "Done"), (TaskStatus.IN_PROGRESS, "In progress"), (TaskStatus.CANCELLED, "Cancelled")],
)
async def test_status_update(status, name):
    seen = {}

    def handler(request):
        seen["method"] = request.method
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"object": "page", "id": "page-42"})

    await _notion(handler).update_status("page-42", status)

    assert seen["method"] == "PATCH"
    assert seen["path"] == "/v1/pages/page-42"
    assert seen["body"] == {"properties": {"Status": {"select": {"name": name}}}}


@pytest.mark.asyncio
async def test_delete_twice_succeeds():
    archived = set()

    def handler(request):
        page_id = request.url.path.rsplit("/", 1)[-1]
        if page_id in archived:
            return _error(404, "object_not_found")
        archived.add(page_id)
        assert json.loads(request.content) == {"archived": True}
        return httpx.Response(200, json={"object": "page", "id": page_id, "archived": True})

    notion = _notion(handler)
    await notion.delete("page-42")
    await notion.delete("page-42")
    assert archived == {"page-42"}


@pytest.mark.asyncio
async def test_delete_failure_is_raised():
    with pytest.raises(IntegrationError):
        await _notion(lambda r: _error(500, "internal_server_error")).delete("page-42")


def test_authorize_url():
    url = authorize_url(Settings(notion_client_id="client-1"))
    assert url.startswith("https://api.notion.com/v1/oauth/authorize?")
    assert "client_id=client-1" in url
    assert "response_type=code" in url
    assert "owner=user" in url


@pytest.mark.asyncio
async def test_exchange_oauth_code_uses_basic_auth():
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["Authorization"]
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"access_token": "tok", "workspace_name": "Acme"})

    settings = Settings(notion_client_id="cid", notion_client_secret="csecret")
    token = await exchange_oauth_code("code-1", settings, transport=httpx.MockTransport(handler))

    assert token["workspace_name"] == "Acme"
    assert seen["path"] == "/v1/oauth/token"
    assert seen["auth"] == "Basic " + base64.b64encode(b"cid:csecret").decode()
    assert seen["body"]["grant_type"] == "authorization_code"
    assert seen["body"]["code"] == "code-1"


@pytest.mark.asyncio
async def test_exchange_oauth_code_requires_configuration():
    with pytest.raises(RuntimeError):
        await exchange_oauth_code("code-1", Settings())
