import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from collaboration.application.persistence import PersistenceAdapter
from collaboration.application.sessions import DocumentSessionRegistry
from collaboration.infrastructure.redis_pubsub import RedisUpdateRelay
from collaboration.interfaces.ws_handler import router as collaboration_router
from notes.interfaces.routes import router as notes_router
from shared.config import settings
from shared.exceptions import (
    AppError,
    AuthenticationError,
    AuthorizationError,
    ConflictError,
    NotFoundError,
    ValidationError,
)
from shared.infrastructure.database import async_session, engine
from shared.infrastructure.redis import close_redis, get_redis
from shared.logging_config import configure_logging

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.LOG_LEVEL)
    relay = RedisUpdateRelay(get_redis()) if settings.REDIS_ENABLED else None
    registry = DocumentSessionRegistry(
        PersistenceAdapter(async_session),
        persist_interval=settings.COLLAB_PERSIST_INTERVAL_SECONDS,
        version_interval=settings.VERSION_SNAPSHOT_INTERVAL_SECONDS,
        relay=relay,
    )
    await registry.start()
    app.state.session_registry = registry
    logger.info("collaboration_server_started", extra={"redis_relay": relay is not None})
    yield
    await registry.close()
    await engine.dispose()
    if relay is not None:
        await close_redis()
    logger.info("collaboration_server_stopped")


app = FastAPI(
    title="PlumeNote Collaboration",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(notes_router)
app.include_router(collaboration_router)


@app.exception_handler(NotFoundError)
async def not_found_handler(request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": exc.message})


@app.exception_handler(ConflictError)
async def conflict_handler(request, exc: ConflictError):
    return JSONResponse(status_code=409, content={"detail": exc.message})


@app.exception_handler(AuthenticationError)
async def auth_error_handler(request, exc: AuthenticationError):
    return JSONResponse(status_code=401, content={"detail": exc.message})


@app.exception_handler(AuthorizationError)
async def forbidden_handler(request, exc: AuthorizationError):
    return JSONResponse(status_code=403, content={"detail": exc.message})


@app.exception_handler(ValidationError)
async def validation_error_handler(request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": exc.message})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request, exc: RequestValidationError):
    errors = exc.errors()
    message = errors[0]["msg"] if errors else "Invalid request"
    return JSONResponse(status_code=400, content={"detail": message})


@app.exception_handler(AppError)
async def app_error_handler(request, exc: AppError):
    logger.error("app_error", extra={"path": request.url.path, "error": exc.message})
    return JSONResponse(status_code=500, content={"detail": exc.message})


@app.exception_handler(Exception)
async def unexpected_error_handler(request, exc: Exception):
    logger.exception("unexpected_error", extra={"path": request.url.path})
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.get("/health")
async def health_check():
    return {"status": "ok"}
