"""
FastAPI application bootstrap with: \n
- Lifespan-managed construction of the collaborators (database engine, stores,
  object storage, chat model, orchestrator), kept on `app.state` \n
- CORS configured for the frontend \n
- The chat/conversation router \n

Environment contract (from `settings`): \n
- DB_* : database connection; tables are created on startup. \n
- FRONTEND_URL: allowed CORS origin. \n
- API_KEY / OPEN_AI_MODEL, AWS_* / BUCKET_NAME: model and storage clients. \n

Run with ``uvicorn chat_backend.main:app``.
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chat_backend.api.aws_bucket_funcs.funcs import ObjectStorage
from chat_backend.api.fast_api import router
from chat_backend.api.llm_pipeline import load_chat_model
from chat_backend.database.config.config import Settings, settings as default_settings
from chat_backend.database.config.connection_engine import build_engine, build_session_factory, metadata
from chat_backend.database.core.chat_store import ChatStore
from chat_backend.database.core.quota_store import QuotaStore
from chat_backend.orchestrator.pipeline import ChatTurnOrchestrator

# Registers every entity on `metadata` before `create_all`
from chat_backend.database.entities import conversations, messages, quota  # noqa: F401

logger = logging.getLogger("uvicorn")
"""Logger instance for capturing and emitting Uvicorn server logs."""


def create_app(settings: Settings = default_settings, engine=None, storage=None, model=None,
               tools: list | None = None) -> FastAPI:
    """
    Build the application.

    `engine`, `storage` and `model` default to the ones described by `settings`;
    tests pass an in-memory engine and fakes instead.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """
        App lifespan manager.

        - On startup: create the engine and tables, construct the stores, the
          storage client, the chat model and the orchestrator.
        - On shutdown: wait for turns still being committed, then dispose the engine.
        """
        db_engine = engine if engine is not None else build_engine(settings)
        metadata.create_all(db_engine)
        session_factory = build_session_factory(db_engine)

        chat_store = ChatStore(session_factory)
        quota_store = QuotaStore(session_factory, settings)
        object_storage = storage if storage is not None else ObjectStorage.from_settings(settings)
        chat_model = model if model is not None else load_chat_model(settings)

        app.state.settings = settings
        app.state.chat_store = chat_store
        app.state.quota_store = quota_store
        app.state.orchestrator = ChatTurnOrchestrator.build(
            chat_store, quota_store, object_storage, chat_model, settings, tools
        )
        logger.info("Chat backend ready (model=%s)", settings.OPEN_AI_MODEL)

        try:
            yield
        finally:
            await app.state.orchestrator.drain()
            if engine is None:
                db_engine.dispose()
            logger.info("Chat backend stopped")

    application = FastAPI(lifespan=lifespan)

    # -----------------------
    # CORS configuration
    # -----------------------
    application.add_middleware(
        CORSMiddleware,
        allow_origins=[settings.FRONTEND_URL],      # Frontend origin
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # -----------------------
    # API routes
    # -----------------------
    application.include_router(router)
    return application


app = create_app()
"""The application served by uvicorn."""
