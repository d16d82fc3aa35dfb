"""
FastAPI application factory.

* Registers routes for users, orders, drivers, chat, admin and the
  Telegram webhook.
* Starts / stops the background notification worker via lifespan events.
* Applies rate-limiting middleware.
* Swagger / OpenAPI UI available at ``/docs``.
"""

from contextlib import asynccontextmanager
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from taxi_dispatch.api.middleware import limiter
from taxi_dispatch.api.routes import admin, chat, drivers, orders, telegram, users
from taxi_dispatch.config import settings
from taxi_dispatch.workers import notifier as _notifier

logging.basicConfig(level=settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the notification worker on startup; stop on shutdown."""
    await _notifier.start_notification_worker()
    yield
    await _notifier.stop_notification_worker()


def create_app() -> FastAPI:
    app = FastAPI(
        title="Taxi Dispatch API",
        description=(
            "Backend of a Telegram Mini App taxi service: clients place "
            "taxi, cargo, courier and towing orders, drivers take and price "
            "them, admins manage drivers, tariffs and access codes."
        ),
        version="1.0.0",
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Rate limiter
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

    # Routers
    for module in (users, orders, drivers, chat, admin, telegram):
        app.include_router(module.router, prefix="/api/v1")

    return app
