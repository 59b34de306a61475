"""
Copyright © 2026 Vladimir Vaulin-Belskii. All rights reserved.

FastAPI application entrypoint wiring routers and middleware.
"""
from contextlib import asynccontextmanager
import asyncio
import contextlib
import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from .api import router as api_router
from .categorizer import warm_up as warm_up_llm
from .config import settings
from .db import engine, Base
from . import models  # noqa: F401

handlers = [logging.StreamHandler()]
if settings.log_file:
    handlers.append(logging.FileHandler(settings.log_file))

logging.basicConfig(
    level=logging.INFO,
    handlers=handlers,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)

logging.getLogger("minddump").setLevel(settings.log_level.upper())
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Log configuration and create tables on startup."""
    logger.info("Starting MindDump backend")
    for key, value in settings.model_dump().items():
        if any(secret in key.lower() for secret in ["key", "secret", "token", "password"]):
            value = "***"
        logger.info("  %s: %s", key, value)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    warm_up_task = asyncio.create_task(warm_up_llm())

    yield

    warm_up_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await warm_up_task
    await engine.dispose()


app = FastAPI(title=settings.app_name, lifespan=lifespan)

origins = [origin.strip() for origin in settings.allowed_origins.split(",") if origin.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=origins or ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Forwarded headers from the reverse proxy decide the client scheme
app.add_middleware(
    ProxyHeadersMiddleware,
    trusted_hosts=[ip.strip() for ip in settings.forwarded_allow_ips.split(",")] if settings.forwarded_allow_ips != "*" else "*",
)

app.include_router(api_router)
