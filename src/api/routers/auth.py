import asyncio
import logging
from datetime import timezone
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, Response
from google_auth_oauthlib.flow import Flow

from api.dependencies import (
    get_credential_store,
    get_current_user_id,
    get_oauth_state_signer,
    get_settings,
)
from api.oauth_state import OAuthStateSigner
from integration.calendar_integration import CALENDAR_SCOPES, GOOGLE_TOKEN_URI
from integration.notion_integration import authorize_url, exchange_oauth_code
from storage.credential_store import CredentialStore
from talk2task.config import Settings
from talk2task.errors import NotFoundError, UnauthorizedError, ValidationError
from talk2task.models import Platform

router = APIRouter()
logger = logging.getLogger(__name__)

GOOGLE_AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/userinfo/v2/me"
GOOGLE_SCOPES = ["openid", "https://www.googleapis.com/auth/userinfo.email", *CALENDAR_SCOPES]


def _redirect(location: str) -> Response:
    return Response(status_code=307, headers={"Location": location})


def _frontend(settings: Settings, platform: Platform, outcome: str) -> Response:
    return _redirect(f"{settings.frontend_url}/integrations?platform={platform.value}&{outcome}")


def _google_flow(settings: Settings) -> Flow:
    return Flow.from_client_config(
        {
            "web": {
                "client_id": settings.google_client_id,
                "client_secret": settings.google_client_secret,
                "auth_uri": GOOGLE_AUTH_URI,
                "token_uri": GOOGLE_TOKEN_URI,
            }
        },
        scopes=GOOGLE_SCOPES,
        redirect_uri=settings.google_redirect_uri,
        # login and callback build separate flows, so no PKCE verifier can be shared
        autogenerate_code_verifier=False,
    )


def _fetch_google_email(flow: Flow, timeout: float) -> Optional[str]:
    try:
        session = flow.authorized_session()
        return session.get(GOOGLE_USERINFO_URL, timeout=timeout).json().get("email")
    except Exception as e:
        logger.error(f"Failed to fetch user email: {e}")
        return None


@router.get("/auth/google/login")
async def google_login(
    user_id: str = Depends(get_current_user_id),
    settings: Settings = Depends(get_settings),
    signer: OAuthStateSigner = Depends(get_oauth_state_signer),
):
    """Initiates the OAuth2 flow - redirects to Google."""
    if not settings.google_client_id or not settings.google_client_secret:
        raise ValidationError("Google credentials not configured")

    flow = _google_flow(settings)
    # The callback is a browser redirect without our headers; the user rides along in a signed `state`.
    authorization_url, _ = flow.authorization_url(
        access_type="offline",
        include_granted_scopes="true",
        prompt="consent",
        state=signer.sign(user_id, Platform.GOOGLE_CALENDAR.value),
    )
    return _redirect(authorization_url)


@router.get("/auth/google/callback")
async def google_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    credential_store: CredentialStore = Depends(get_credential_store),
    signer: OAuthStateSigner = Depends(get_oauth_state_signer),
):
    """Handles the OAuth2 callback."""
    if error:
        logger.error(f"OAuth error: {error}")
        return _frontend(settings, Platform.GOOGLE_CALENDAR, f"error={error}")
    if not code or not state:
        return _frontend(settings, Platform.GOOGLE_CALENDAR, "error=missing_code")

    try:
        user_id = signer.verify(state, Platform.GOOGLE_CALENDAR.value)
    except UnauthorizedError as e:
        logger.warning(f"Rejected Google OAuth callback: {e.details}")
        return _frontend(settings, Platform.GOOGLE_CALENDAR, "error=invalid_state")

    try:
        flow = _google_flow(settings)
        await asyncio.to_thread(flow.fetch_token, code=code)
        credentials = flow.credentials
        email = await asyncio.to_thread(_fetch_google_email, flow, settings.integration_timeout_s)

        # google-auth reports expiry as naive UTC
        expires_at = credentials.expiry.replace(tzinfo=timezone.utc) if credentials.expiry else None
        await credential_store.save(
            user_id,
            Platform.GOOGLE_CALENDAR,
            credentials.token,
            refresh_token=credentials.refresh_token,
            expires_at=expires_at,
            label=email,
        )
        logger.info(f"Connected Google Calendar for user {user_id}")
        return _frontend(settings, Platform.GOOGLE_CALENDAR, "success=true")

    except Exception as e:
        logger.error(f"OAuth callback failed: {e}")
        return _frontend(settings, Platform.GOOGLE_CALENDAR, "error=token_exchange_failed")


@router.get("/auth/notion/login")
async def notion_login(
    user_id: str = Depends(get_current_user_id),
    settings: Settings = Depends(get_settings),
    signer: OAuthStateSigner = Depends(get_oauth_state_signer),
):
    """Redirects to Notion's consent page."""
    if not settings.notion_client_id or not settings.notion_client_secret:
        raise ValidationError("Notion credentials not configured")
    state = signer.sign(user_id, Platform.NOTION.value)
    return _redirect(f"{authorize_url(settings)}&{httpx.QueryParams({'state': state})}")


@router.get("/auth/notion/callback")
async def notion_callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    settings: Settings = Depends(get_settings),
    credential_store: CredentialStore = Depends(get_credential_store),
    signer: OAuthStateSigner = Depends(get_oauth_state_signer),
):
    if error:
        logger.error(f"Notion OAuth error: {error}")
        return _frontend(settings, Platform.NOTION, f"error={error}")
    if not code or not state:
        return _frontend(settings, Platform.NOTION, "error=missing_code")

    try:
        user_id = signer.verify(state, Platform.NOTION.value)
    except UnauthorizedError as e:
        logger.warning(f"Rejected Notion OAuth callback: {e.details}")
        return _frontend(settings, Platform.NOTION, "error=invalid_state")

    try:
        token = await exchange_oauth_code(code, settings)
    except (httpx.HTTPError, RuntimeError) as e:
        logger.error(f"Notion token exchange failed: {e}")
        return _frontend(settings, Platform.NOTION, "error=token_exchange_failed")

    access_token = token.get("access_token")
    if not access_token:
        return _frontend(settings, Platform.NOTION, "error=token_exchange_failed")

    await credential_store.save(
        user_id,
        Platform.NOTION,
        access_token,
        refresh_token=token.get("refresh_token"),
        label=token.get("workspace_name"),
    )
    logger.info(f"Connected Notion workspace for user {user_id}")
    return _frontend(settings, Platform.NOTION, "success=true")


@router.get("/integrations")
async def list_integrations(
    user_id: str = Depends(get_current_user_id),
    credential_store: CredentialStore = Depends(get_credential_store),
) -> dict:
    """Connection state per platform. Tokens never leave the server."""
    creds = {c.platform: c for c in await credential_store.list_for_user(user_id)}
    out = []
    for platform in Platform:
        cred = creds.get(platform)
        out.append(
            {
                "platform": platform.value,
                "connected": bool(cred and cred.is_active),
                "label": cred.label if cred else None,
                "updated_at": cred.updated_at if cred else None,
            }
        )
    return {"integrations": out}


@router.post("/integrations/{platform}/disconnect")
async def disconnect(
    platform: str,
    user_id: str = Depends(get_current_user_id),
    credential_store: CredentialStore = Depends(get_credential_store),
) -> dict:
    try:
        target = Platform(platform)
    except ValueError:
        raise NotFoundError(f"Unknown integration: {platform}") from None

    if not await credential_store.deactivate(user_id, target):
        raise NotFoundError(f"{target.value} is not connected")
    return {"status": "disconnected", "platform": target.value}
