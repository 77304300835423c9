"""FastAPI application entry point for the short-link service.

Application Lifecycle Diagram
=============================
::
    ┌──────────────┐
    │ uvicorn      │
    │ startup      │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ init_db()    │
    │ manager.     │
    │ initialize() │  (starts the access-count flusher)
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ Serve HTTP   │
    │ requests     │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ lifespan()   │
    │ shutdown:    │
    │ pending hit  │
    │ tasks, final │
    │ flush, close │
    │ db + redis   │
    └──────────────┘

How to Use
===========
**Run with uvicorn**::
    uvicorn linker.main:app --host 0.0.0.0 --port 8080

**Docs and metrics**::
    http://localhost:8080/docs
    http://localhost:8080/metrics

Key Behaviours
===============
- Tables and indexes are created on startup.
- Hit-path counter tasks are awaited before the final flush on shutdown.
- CORS is enabled for all origins.
"""

__all__ = ["app"]

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator

from linker.cache import close_redis
from linker.cache_layer import wait_for_background_tasks
from linker.config import get_settings
from linker.database import close_db, init_db
from linker.dependencies import _service_manager
from linker.routes import router

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    # Startup
    await init_db()
    await _service_manager.initialize()
    yield
    # Shutdown
    await wait_for_background_tasks()
    await _service_manager.cleanup()
    await close_db()
    await close_redis()


app = FastAPI(
    title=settings.APP_NAME,
    version="1.0.0",
    description="Short-code resolution service",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Instrumentator(
    should_group_status_codes=True,
    should_ignore_untemplated=False,
    should_respect_env_var=False,
).instrument(app).expose(app)

app.include_router(router)
