from typing import Optional

from fastapi import Header

from api import state
from api.backend import BackendAPI
from api.oauth_state import OAuthStateSigner
from storage.credential_store import CredentialStore
from talk2task.config import Settings
from talk2task.errors import UnauthorizedError


def get_settings() -> Settings:
    if state.settings is None:
        state.settings = Settings.from_env()
    return state.settings


def get_backend() -> BackendAPI:
    if state.backend is None:
        raise RuntimeError("Backend not initialized")
    return state.backend


def get_credential_store() -> CredentialStore:
    if state.credential_store is None:
        raise RuntimeError("Credential store not initialized")
    return state.credential_store


def get_oauth_state_signer() -> OAuthStateSigner:
    if state.oauth_state_signer is None:
        state.oauth_state_signer = OAuthStateSigner.from_settings(get_settings())
    return state.oauth_state_signer


def get_current_user_id(x_user_id: Optional[str] = Header(default=None)) -> str:
    """The identity gateway forwards the authenticated user in X-User-Id."""
    if not x_user_id or not x_user_id.strip():
        raise UnauthorizedError("Unauthorized", "Missing X-User-Id header")
    return x_user_id.strip()
