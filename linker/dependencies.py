"""Dependency injection with a singleton service manager.

Shared, long-lived resources (logger, cache adapter, access-count flusher)
are built once at startup by the ServiceManager. The store session is the
only per-request resource.

Dependency Graph
================
::
    get_link_service
          │
          ▼
    get_request_context ──► get_store ──► get_db (AsyncSession)
          │
          ▼
    get_service_manager ──► ServiceManager (singleton)
                             ├─ logger
                             ├─ cache (RedisCacheAdapter)
                             └─ flusher (AccessCountFlusher, running)

How to Use
===========
**In routes**::
    @router.get("/{code}")
    async def redirect(code: str, service: ShortLinkService = Depends(get_link_service)):
        ...

**In tests**::
    await _service_manager.initialize(cache=FakeCache(), store_scope=fake_scope)
    app.dependency_overrides[get_store] = lambda: fake_store
"""

import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Optional

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from linker.access_counter import AccessCountFlusher
from linker.cache import CacheAdapter, RedisCacheAdapter, get_redis, get_redis_read
from linker.config import Settings, get_settings
from linker.database import get_db
from linker.service import ShortLinkService
from linker.store import ShortLinkStore, SQLAlchemyShortLinkStore, StoreScope, sql_store_scope

__all__ = [
    "RequestContext",
    "ServiceManager",
    "get_link_service",
    "get_request_context",
    "get_service_manager",
    "get_store",
]


# ============================================================================
# SINGLETON SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Singleton holder for resources shared across requests."""

    _instance: Optional["ServiceManager"] = None
    _initialized: bool = False

    def __new__(cls) -> "ServiceManager":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    async def initialize(
        self,
        cache: CacheAdapter | None = None,
        store_scope: StoreScope | None = None,
    ) -> None:
        """Initialize shared resources once at startup.

        Args:
            cache: Cache adapter to use instead of Redis
            store_scope: Store factory for the flusher instead of the SQL store
        """
        if self._initialized:
            return
        self.settings: Settings = get_settings()
        self.logger = self._setup_logger()
        self.cache = cache or RedisCacheAdapter(await get_redis(), await get_redis_read())
        self.flusher = AccessCountFlusher(
            store_scope or sql_store_scope,
            self.cache,
            self.settings,
            self.logger,
        )
        self.flusher.start()
        self._initialized = True

    def _setup_logger(self) -> logging.Logger:
        logger = logging.getLogger("linker")
        if not logger.handlers:
            handler = logging.StreamHandler()
            formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
            handler.setFormatter(formatter)
            logger.addHandler(handler)
            logger.setLevel(self.settings.LOG_LEVEL.upper())
        return logger

    async def cleanup(self) -> None:
        """Stop the flusher (final flush included) at shutdown."""
        if hasattr(self, "flusher"):
            await self.flusher.stop()
        self._initialized = False


_service_manager = ServiceManager()


# ============================================================================
# REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request context with tracking and access to shared resources.

    Attributes:
        store: Store adapter over the request's database session
        service_manager: Singleton service manager with shared resources
        request_id: Unique identifier for this request
        trace_id: Correlation ID from the X-Trace-ID header
        user_agent: Client user agent string
        client_ip: Client IP address
        start_time: Request start timestamp
        tags: Request tags for categorization
    """

    store: ShortLinkStore
    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: Optional[str] = None
    user_agent: Optional[str] = None
    client_ip: Optional[str] = None
    start_time: float = field(default_factory=lambda: time.time())
    tags: list[str] = field(default_factory=list)

    @property
    def cache(self) -> CacheAdapter:
        return self.service_manager.cache

    @property
    def flusher(self) -> AccessCountFlusher:
        return self.service_manager.flusher

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def logger(self) -> logging.LoggerAdapter:
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
                "tags": ",".join(self.tags),
            },
        )

    def add_tag(self, tag: str) -> None:
        if tag not in self.tags:
            self.tags.append(tag)

    def get_duration(self) -> float:
        """Get request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager() -> ServiceManager:
    if not _service_manager._initialized:
        await _service_manager.initialize()
    return _service_manager


async def get_store(db: AsyncSession = Depends(get_db)) -> ShortLinkStore:
    return SQLAlchemyShortLinkStore(db)


async def get_request_context(
    request: Request,
    store: ShortLinkStore = Depends(get_store),
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    client_ip = request.client.host if request.client else None

    return RequestContext(
        store=store,
        service_manager=manager,
        trace_id=request.headers.get("x-trace-id"),
        user_agent=request.headers.get("user-agent"),
        client_ip=client_ip,
    )


def get_link_service(ctx: RequestContext = Depends(get_request_context)) -> ShortLinkService:
    return ShortLinkService.from_context(ctx)
