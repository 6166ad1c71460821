from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger

from dm_chat.core.config import Settings, get_settings
from dm_chat.core.errors import ChatError
from dm_chat.core.logging import setup_logging
from dm_chat.database.connection import close_mongo_connection, connect_to_mongo, mongo_db_dependency
from dm_chat.database.indexes import ensure_indexes
from dm_chat.routers.chat import router as chat_router
from dm_chat.routers.devices import router as devices_router
from dm_chat.routers.realtime import router as realtime_router
from dm_chat.services.storage_service import ObjectStorage
from dm_chat.utils.background import TaskSupervisor
from dm_chat.utils.notifications import create_push_provider
from dm_chat.utils.realtime_bus import create_bus
from dm_chat.utils.websocket_manager import PresenceHub


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings: Settings = app.state.settings
    db = await connect_to_mongo(settings)
    await ensure_indexes(db)
    await app.state.hub.start()
    try:
        yield
    finally:
        await app.state.tasks.shutdown()
        await app.state.hub.stop()
        await close_mongo_connection()


def register_exception_handlers(app: FastAPI) -> None:

    @app.exception_handler(ChatError)
    async def chat_error_handler(request: Request, exc: ChatError):
        if exc.status_code >= 500:
            logger.error(f"Request failed | path={request.url.path} error={exc.message}")
        return JSONResponse(status_code=exc.status_code, content={"message": exc.message})

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        logger.debug(f"Invalid request | path={request.url.path} errors={exc.errors()}")
        return JSONResponse(status_code=400, content={"message": "Invalid request"})

    @app.exception_handler(Exception)
    async def unhandled_error_handler(request: Request, exc: Exception):
        logger.opt(exception=exc).error(f"Unhandled error | path={request.url.path}")
        return JSONResponse(status_code=500, content={"message": "Server error"})


def create_app(settings: Optional[Settings] = None, storage: Optional[ObjectStorage] = None, push=None) -> FastAPI:
    settings = settings or get_settings()
    setup_logging(settings.log_level, settings.log_file)
    if settings.jwt_secret == "change-me" and settings.app_env != "local":
        logger.warning(f"JWT_SECRET is the built-in default | env={settings.app_env}")

    app = FastAPI(title="Direct messaging service", lifespan=lifespan)
    app.state.settings = settings
    app.state.tasks = TaskSupervisor()
    app.state.hub = PresenceHub(settings, bus=create_bus(settings.redis_url))
    app.state.push = push if push is not None else create_push_provider(settings)
    app.state.storage = storage or ObjectStorage(settings)

    register_exception_handlers(app)

    app.include_router(devices_router)
    app.include_router(chat_router)
    app.include_router(realtime_router)

    @app.get("/")
    async def root(db=Depends(mongo_db_dependency)):
        # debug endpoint, unauthenticated; not part of the production surface
        collections = await db.list_collection_names()
        return {"message": "Connected to MongoDB!", "collections": collections}

    return app
