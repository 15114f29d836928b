from __future__ import annotations

import functools
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import redis.asyncio as aioredis
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from match_chat.api.middleware.correlation_id import CorrelationIdMiddleware
from match_chat.api.middleware.metrics import RequestTimingMiddleware
from match_chat.api.v1.routers import conversations, health, messages, ws
from match_chat.application.exceptions import (
    ConflictError,
    ForbiddenError,
    NotFoundError,
    TransientBackendError,
    ValidationError,
)
from match_chat.config import settings
from match_chat.infrastructure.bus.redis_pubsub import RedisPubSubSubscriber
from match_chat.infrastructure.db.session import create_engine, create_session_factory
from match_chat.infrastructure.db.uow import uow_scope
from match_chat.infrastructure.realtime.broker import REASON_BUS_LOST, MessageBroker
from match_chat.services import realtime_service

logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 1


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Startup / shutdown lifecycle."""
    engine = create_engine(settings)
    app.state.session_factory = create_session_factory(engine)
    app.state.uow_factory = functools.partial(uow_scope, app.state.session_factory)
    app.state.redis = aioredis.from_url(
        settings.REDIS_URL,
        decode_responses=True,
    )
    app.state.broker = MessageBroker(max_pending=settings.SUBSCRIPTION_QUEUE_SIZE)
    logger.info("Database engine and Redis connection pool created")

    subscriber = RedisPubSubSubscriber(
        app.state.redis,
        settings.REDIS_PUBSUB_CHANNEL,
        functools.partial(realtime_service.dispatch_event, app.state.broker),
        on_disconnect=functools.partial(app.state.broker.disconnect_all, REASON_BUS_LOST),
    )
    await subscriber.start()
    app.state.pubsub_subscriber = subscriber

    yield

    await subscriber.stop()
    app.state.broker.close()
    await app.state.redis.aclose()
    await engine.dispose()
    logger.info("Database engine and Redis connection pool closed")


def create_app() -> FastAPI:
    app = FastAPI(
        title="Match Chat Service",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestTimingMiddleware)
    app.add_middleware(CorrelationIdMiddleware)

    _register_exception_handlers(app)

    app.include_router(health.router)
    app.include_router(conversations.router)
    app.include_router(messages.router)
    app.include_router(ws.router)

    return app


def _register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(NotFoundError)
    async def _not_found(_req: Request, exc: NotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": exc.detail})

    @app.exception_handler(ForbiddenError)
    async def _forbidden(_req: Request, exc: ForbiddenError) -> JSONResponse:
        return JSONResponse(status_code=403, content={"detail": exc.detail})

    @app.exception_handler(ConflictError)
    async def _conflict(_req: Request, exc: ConflictError) -> JSONResponse:
        return JSONResponse(status_code=409, content={"detail": exc.detail})

    @app.exception_handler(ValidationError)
    async def _validation(_req: Request, exc: ValidationError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": exc.detail})

    @app.exception_handler(TransientBackendError)
    async def _unavailable(_req: Request, exc: TransientBackendError) -> JSONResponse:
        logger.warning("Backend unavailable: %s", exc.detail)
        return JSONResponse(
            status_code=503,
            content={"detail": exc.detail or "Service temporarily unavailable"},
            headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
        )
