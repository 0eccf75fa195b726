import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from api import state
from api.backend import BackendAPI
from api.oauth_state import OAuthStateSigner
from api.routers import auth, ops, tasks
from storage import db
from storage.credential_store import InMemoryCredentialStore, PostgresCredentialStore
from storage.task_store import InMemoryTaskStore, PostgresTaskStore
from talk2task.config import Settings
from talk2task.errors import Talk2TaskError

# Logging configuration
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s"
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Talk2Task")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(tasks.router)
app.include_router(auth.router)
app.include_router(ops.router)


@app.exception_handler(Talk2TaskError)
async def talk2task_error_handler(request: Request, exc: Talk2TaskError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "details": exc.details},
    )


@app.exception_handler(PydanticValidationError)
async def model_validation_error_handler(request: Request, exc: PydanticValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid task", "details": str(exc)},
    )


async def configure(settings: Settings) -> None:
    """Wire stores and the backend into api.state."""
    state.settings = settings
    if settings.database_url:
        await db.init_db_pool(settings.database_url)
        await db.init_schema()
        state.task_store = PostgresTaskStore()
        state.credential_store = PostgresCredentialStore(settings.token_encryption_key)
        state.uses_database = True
    else:
        logger.warning("DATABASE_URL not set. Tasks and credentials are kept in memory.")
        state.task_store = InMemoryTaskStore()
        state.credential_store = InMemoryCredentialStore()
        state.uses_database = False

    state.backend = BackendAPI(settings, state.task_store, state.credential_store)
    state.oauth_state_signer = OAuthStateSigner.from_settings(settings)
    logger.info(
        f"Talk2Task ready (provider={settings.llm_provider}, model={settings.llm_model}, "
        f"multi_platform={settings.dispatch_multi_platform})"
    )


@app.on_event("startup")
async def startup() -> None:
    # Tests install their own backend before the app starts.
    if state.backend is not None:
        return
    await configure(Settings.from_env())


@app.on_event("shutdown")
async def shutdown() -> None:
    if state.uses_database:
        await db.close_db_pool()
        state.uses_database = False
