from typing import Optional

from api.backend import BackendAPI
from api.oauth_state import OAuthStateSigner
from storage.credential_store import CredentialStore
from storage.task_store import TaskStore
from talk2task.config import Settings

# Global instances initialized at startup
settings: Optional[Settings] = None
task_store: Optional[TaskStore] = None
credential_store: Optional[CredentialStore] = None
backend: Optional[BackendAPI] = None
oauth_state_signer: Optional[OAuthStateSigner] = None

# True when the stores are backed by the asyncpg pool
uses_database: bool = False
