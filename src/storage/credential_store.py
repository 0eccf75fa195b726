import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from cryptography.fernet import Fernet, InvalidToken

from storage.db import get_pool
from talk2task.models import IntegrationCredential, Platform

logger = logging.getLogger(__name__)


class CredentialStore(ABC):
    """One credential per (user, platform). Disconnecting deactivates, it never deletes."""

    @abstractmethod
    async def save(
        self,
        user_id: str,
        platform: Platform,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        label: Optional[str] = None,
    ) -> None: ...

    @abstractmethod
    async def get_active(self, user_id: str, platform: Platform) -> Optional[IntegrationCredential]: ...

    @abstractmethod
    async def deactivate(self, user_id: str, platform: Platform) -> bool: ...

    @abstractmethod
    async def list_for_user(self, user_id: str) -> List[IntegrationCredential]: ...

    def lookup_for(self, user_id: str):
        """Bind the store to one user, in the shape the dispatcher expects."""

        async def _lookup(platform: Platform) -> Optional[IntegrationCredential]:
            return await self.get_active(user_id, platform)

        return _lookup

    async def store_refreshed(self, credential: IntegrationCredential) -> None:
        """Write back a token the provider client refreshed on its own."""
        await self.save(
            credential.user_id,
            credential.platform,
            credential.access_token,
            refresh_token=credential.refresh_token,
            expires_at=credential.expires_at,
            label=credential.label,
        )


class InMemoryCredentialStore(CredentialStore):
    def __init__(self):
        self._items: Dict[Tuple[str, str], IntegrationCredential] = {}

    async def save(
        self,
        user_id: str,
        platform: Platform,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        label: Optional[str] = None,
    ) -> None:
        key = (user_id, Platform(platform).value)
        now = datetime.now(timezone.utc)
        existing = self._items.get(key)
        self._items[key] = IntegrationCredential(
            user_id=user_id,
            platform=Platform(platform),
            access_token=access_token,
            # Re-consent does not always return a refresh token; keep the old one.
            refresh_token=refresh_token or (existing.refresh_token if existing else None),
            expires_at=expires_at,
            is_active=True,
            label=label or (existing.label if existing else None),
            created_at=existing.created_at if existing else now,
            updated_at=now,
        )

    async def get_active(self, user_id: str, platform: Platform) -> Optional[IntegrationCredential]:
        cred = self._items.get((user_id, Platform(platform).value))
        if cred is None or not cred.is_active:
            return None
        return cred.model_copy()

    async def deactivate(self, user_id: str, platform: Platform) -> bool:
        key = (user_id, Platform(platform).value)
        cred = self._items.get(key)
        if cred is None or not cred.is_active:
            return False
        self._items[key] = cred.model_copy(
            update={"is_active": False, "updated_at": datetime.now(timezone.utc)}
        )
        return True

    async def list_for_user(self, user_id: str) -> List[IntegrationCredential]:
        return [c.model_copy() for (uid, _), c in self._items.items() if uid == user_id]


class PostgresCredentialStore(CredentialStore):
    """Integration tokens in PostgreSQL, encrypted with Fernet."""

    def __init__(self, encryption_key: Optional[str] = None):
        key = encryption_key
        if not key:
            # Development only: tokens written with a temporary key are unreadable after a restart.
            logger.warning("TOKEN_ENCRYPTION_KEY not set. Generating a temporary key.")
            key = Fernet.generate_key().decode()
        self.fernet = Fernet(key.encode() if isinstance(key, str) else key)

    def _encrypt(self, data: Optional[str]) -> Optional[str]:
        if not data:
            return None
        return self.fernet.encrypt(data.encode()).decode()

    def _decrypt(self, token: Optional[str]) -> Optional[str]:
        if not token:
            return None
        try:
            return self.fernet.decrypt(token.encode()).decode()
        except InvalidToken:
            logger.error("Failed to decrypt stored integration token")
            return None

    def _from_row(self, row) -> Optional[IntegrationCredential]:
        access_token = self._decrypt(row["access_token"])
        if not access_token:
            return None
        return IntegrationCredential(
            user_id=row["user_id"],
            platform=Platform(row["platform"]),
            access_token=access_token,
            refresh_token=self._decrypt(row["refresh_token"]),
            expires_at=row["expires_at"],
            is_active=row["is_active"],
            label=row["label"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    async def save(
        self,
        user_id: str,
        platform: Platform,
        access_token: str,
        refresh_token: Optional[str] = None,
        expires_at: Optional[datetime] = None,
        label: Optional[str] = None,
    ) -> None:
        pool = get_pool()
        query = """
            INSERT INTO integrations (user_id, platform, access_token, refresh_token, expires_at, label, is_active)
            VALUES ($1, $2, $3, $4, $5, $6, TRUE)
            ON CONFLICT (user_id, platform) DO UPDATE SET
                access_token = EXCLUDED.access_token,
                refresh_token = COALESCE(EXCLUDED.refresh_token, integrations.refresh_token),
                expires_at = EXCLUDED.expires_at,
                label = COALESCE(EXCLUDED.label, integrations.label),
                is_active = TRUE,
                updated_at = NOW()
        """
        await pool.execute(
            query,
            user_id,
            Platform(platform).value,
            self._encrypt(access_token),
            self._encrypt(refresh_token),
            expires_at,
            label,
        )
        logger.info(f"Saved {Platform(platform).value} credentials for user {user_id}")

    async def get_active(self, user_id: str, platform: Platform) -> Optional[IntegrationCredential]:
        pool = get_pool()
        row = await pool.fetchrow(
            "SELECT * FROM integrations WHERE user_id = $1 AND platform = $2 AND is_active",
            user_id,
            Platform(platform).value,
        )
        if not row:
            return None
        return self._from_row(row)

    async def deactivate(self, user_id: str, platform: Platform) -> bool:
        pool = get_pool()
        status = await pool.execute(
            """
            UPDATE integrations SET is_active = FALSE, updated_at = NOW()
            WHERE user_id = $1 AND platform = $2 AND is_active
            """,
            user_id,
            Platform(platform).value,
        )
        logger.info(f"Deactivated {Platform(platform).value} credentials for user {user_id}")
        return not status.endswith(" 0")

    async def list_for_user(self, user_id: str) -> List[IntegrationCredential]:
        pool = get_pool()
        rows = await pool.fetch("SELECT * FROM integrations WHERE user_id = $1", user_id)
        out = []
        for row in rows:
            cred = self._from_row(row)
            if cred is not None:
                out.append(cred)
        return out
