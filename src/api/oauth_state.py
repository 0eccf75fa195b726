"""
Signed `state` values for the OAuth login round trip.

The callbacks are plain browser redirects without the X-User-Id header, so
the user who started the login travels inside `state`. It is a Fernet token
(authenticated and timestamped), which lets the callback reject forged,
tampered or stale values before any credential is saved.
"""

import base64
import hashlib
import json
import logging
import secrets
from typing import Optional

from cryptography.fernet import Fernet, InvalidToken

from talk2task.config import Settings
from talk2task.errors import UnauthorizedError

logger = logging.getLogger(__name__)


class OAuthStateSigner:
    def __init__(self, secret: Optional[str] = None, ttl_s: int = 600):
        if not secret:
            # Development only: logins started before a restart cannot complete.
            logger.warning("OAUTH_STATE_SECRET not set. Generating a temporary key.")
            secret = Fernet.generate_key().decode()
        key = base64.urlsafe_b64encode(hashlib.sha256(secret.encode()).digest())
        self.fernet = Fernet(key)
        self.ttl_s = ttl_s

    @classmethod
    def from_settings(cls, settings: Settings) -> "OAuthStateSigner":
        return cls(
            secret=settings.oauth_state_secret or settings.token_encryption_key,
            ttl_s=settings.oauth_state_ttl_s,
        )

    def sign(self, user_id: str, platform: str) -> str:
        payload = {"uid": user_id, "platform": platform, "nonce": secrets.token_urlsafe(8)}
        return self.fernet.encrypt(json.dumps(payload).encode()).decode()

    def verify(self, state: Optional[str], platform: str) -> str:
        """Return the user id carried by `state`, or raise UnauthorizedError."""
        if not state:
            raise UnauthorizedError("Invalid OAuth state", "Missing state")
        try:
            payload = json.loads(self.fernet.decrypt(state.encode(), ttl=self.ttl_s))
        except (InvalidToken, ValueError) as e:
            raise UnauthorizedError("Invalid OAuth state", "State is forged or expired") from e

        user_id = payload.get("uid") if isinstance(payload, dict) else None
        if not user_id or payload.get("platform") != platform:
            raise UnauthorizedError("Invalid OAuth state", "State was issued for another login")
        return user_id
