"""
FastAPI application factory for the catalog cache administration API.

Collaborators live on ``app.state``. Anything not passed to
``create_app`` is built from the environment when the app starts.
"""

import logging
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from ..cache.client import ValkeyClient
from ..cache.config import ValkeyConfig
from ..cache.evictor import CacheEvictor
from ..cache.store import KeyStore, ValkeyKeyStore
from ..database.config import DatabaseConfig
from ..errors import InvalidationError, InvalidRequestError
from ..services.batch_queue import BatchQueue
from ..services.locale_expander import LocaleExpander
from ..services.pattern_trigger import PatternTriggerService
from ..utils.config import AppConfig, load_config
from .routes import router

logger = logging.getLogger(__name__)


def _bind_services(app: FastAPI) -> None:
    state = app.state
    state.evictor = CacheEvictor(state.store)
    state.expander = LocaleExpander(state.config.supported_locales)
    state.queue = BatchQueue(state.session_factory)
    state.trigger = PatternTriggerService(state.store, state.evictor, state.config.supported_locales)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Open the Valkey connection and database engine the factory was not given."""
    state = app.state
    valkey_client: Optional[ValkeyClient] = None
    db_config: Optional[DatabaseConfig] = None

    if state.store is None:
        valkey_client = ValkeyClient(ValkeyConfig.from_env())
        await valkey_client.connect()
        state.store = ValkeyKeyStore(valkey_client)

    if state.session_factory is None:
        db_config = DatabaseConfig(state.config.database_url)
        db_config.initialize()
        state.session_factory = db_config.get_session

    if getattr(state, "trigger", None) is None:
        _bind_services(app)
    logger.info(f"Cache administration API ready for locales {state.config.supported_locales}")

    try:
        yield
    finally:
        if valkey_client is not None:
            await valkey_client.disconnect()
        if db_config is not None:
            db_config.close()


async def invalidation_error_handler(request: Request, exc: InvalidationError) -> JSONResponse:
    if isinstance(exc, InvalidRequestError):
        status_code = 422
    elif exc.retryable:
        status_code = 503
    else:
        status_code = 400
    logger.warning(f"{request.method} {request.url.path} failed ({exc.kind}): {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"error": exc.kind, "retryable": exc.retryable, "detail": exc.message},
    )


def create_app(
    config: Optional[AppConfig] = None,
    store: Optional[KeyStore] = None,
    session_factory: Optional[Callable[[], Session]] = None,
) -> FastAPI:
    """
    Build the API.

    Args:
        config: Application configuration (default: ``load_config()``)
        store: Key store to evict from (default: Valkey from the environment)
        session_factory: Catalog session factory (default: engine for ``config.database_url``)
    """
    app = FastAPI(
        title="Pilot Catalog Cache API",
        description="Cache inspection and invalidation for the parts catalog",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.config = config or load_config()
    app.state.store = store
    app.state.session_factory = session_factory
    if store is not None and session_factory is not None:
        _bind_services(app)

    app.add_exception_handler(InvalidationError, invalidation_error_handler)
    app.include_router(router)
    return app
