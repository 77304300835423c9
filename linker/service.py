"""Short-link service: the single entry point used by the HTTP boundary.

The service composes the creation workflow and the cache layer for one unit
of work (one request, one store session) and adds metrics and logging around
them. Shared, long-lived pieces (cache adapter, access-count flusher, logger)
come from the ServiceManager through the request context.

Request Flow Diagrams
=====================

Link Creation Flow
------------------
::
    ┌─────────────┐
    │ POST /api/  │
    │ v1/links    │
    └──────┬──────┘
           ▼
    ┌─────────────┐   alias given    ┌──────────────────┐
    │ dispatch    ├─────────────────►│ create_custom_   │
    └──────┬──────┘                  │ code()           │
           ▼ no alias                └────────┬─────────┘
    ┌─────────────┐                           │
    │ create_     │                           │
    │ system_code │                           │
    └──────┬──────┘                           │
           ▼◄─────────────────────────────────┘
    ┌─────────────┐
    │ invalidate  │  shortlink:{code} + stats:system
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ return link │
    └─────────────┘

Redirect Flow
-------------
::
    GET /{code} ──► resolve() ──► CacheLayer.resolve() ──► 307 / 404

How to Use
===========
**In route handlers**::
    @router.post("/api/v1/links", status_code=201)
    async def create_link(
        payload: LinkCreate,
        service: ShortLinkService = Depends(get_link_service),
    ) -> LinkResponse:
        link = await service.create_short_link(payload.url, payload.custom_alias, payload.description)
        return LinkResponse.from_model(link, service.settings.BASE_URL)

**Outside a request**::
    async with sql_store_scope() as store:
        service = ShortLinkService(store, cache)
        target = await service.resolve("abc")
"""

import logging
import time

from prometheus_client import Counter, Histogram

from linker.access_counter import AccessCountFlusher
from linker.alias_policy import AliasPolicy
from linker.cache import CacheAdapter
from linker.cache_layer import CacheLayer
from linker.config import Settings, get_settings
from linker.creation import CreationWorkflow
from linker.enums import RequestStatus
from linker.exceptions import CodeOverflowError, ConflictError, InvalidArgumentError
from linker.models import ShortLink
from linker.schemas import LinkResponse, SystemStats
from linker.store import ShortLinkStore

__all__ = ["ShortLinkService"]

CREATION_REQUESTS_TOTAL = Counter(
    "linker_creation_requests_total",
    "Total link creation requests",
    ["status", "kind"],
)
CREATION_DURATION = Histogram(
    "linker_creation_duration_seconds",
    "Time taken to create short links",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)


class ShortLinkService:
    """Facade over link creation and resolution.

    Example:
        >>> service = ShortLinkService.from_context(ctx)
        >>> link = await service.create_system_code("https://example.com/a")
        >>> await service.resolve(link.code)
        'https://example.com/a'
    """

    def __init__(
        self,
        store: ShortLinkStore,
        cache: CacheAdapter,
        settings: Settings | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
        flusher: AccessCountFlusher | None = None,
    ):
        self.settings = settings or get_settings()
        self._store = store
        self._logger = logger or logging.getLogger("linker")
        alias_policy = AliasPolicy.from_settings(self.settings)
        self._creation = CreationWorkflow(store, alias_policy, self.settings, self._logger)
        self._cache_layer = CacheLayer(cache, store, self.settings, self._logger, flusher, alias_policy)

    @classmethod
    def from_context(cls, ctx: "RequestContext") -> "ShortLinkService":
        """Build a service from the per-request context.

        Args:
            ctx: Request context holding the store and the shared resources

        Returns:
            ShortLinkService: Service bound to the request's store session
        """
        return cls(
            store=ctx.store,
            cache=ctx.cache,
            settings=ctx.settings,
            logger=ctx.logger,
            flusher=ctx.flusher,
        )

    @property
    def cache_layer(self) -> CacheLayer:
        return self._cache_layer

    # ========================================================================
    # CREATION
    # ========================================================================

    async def create_system_code(self, target: str) -> ShortLink:
        return await self._create("system", self._creation.create_system_code(target))

    async def create_custom_code(self, target: str, alias: str, description: str | None = None) -> ShortLink:
        return await self._create("custom", self._creation.create_custom_code(target, alias, description))

    async def create_short_link(
        self,
        target: str,
        custom_alias: str | None = None,
        description: str | None = None,
    ) -> ShortLink:
        """Create a custom alias when one is given, otherwise a system code.

        Description is stored only with custom aliases.
        """
        if custom_alias is None:
            return await self.create_system_code(target)
        return await self.create_custom_code(target, custom_alias, description)

    # ========================================================================
    # READS
    # ========================================================================

    async def resolve(self, code: str) -> str | None:
        return await self._cache_layer.resolve(code)

    async def is_available(self, code: str) -> bool:
        return await self._cache_layer.is_available(code)

    async def get_system_stats(self) -> SystemStats:
        return await self._cache_layer.get_system_stats()

    async def get_link_info(self, code: str) -> LinkResponse | None:
        """Read a link without counting an access.

        The reported access_count includes hits still held in the cache
        buffer, so it runs ahead of the durable counter between flushes.
        """
        link = await self._store.find_by_code(code)
        if link is None:
            return None
        buffered = await self._cache_layer.get_buffered_access_count(code)
        return LinkResponse.from_model(link, self.settings.BASE_URL, access_count=link.access_count + buffered)

    async def invalidate(self, code: str) -> None:
        await self._cache_layer.invalidate(code)

    # ========================================================================
    # PRIVATE HELPERS
    # ========================================================================

    async def _create(self, kind: str, operation) -> ShortLink:
        start_time = time.perf_counter()
        try:
            link = await operation
        except (InvalidArgumentError, CodeOverflowError) as exc:
            CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.VALIDATION_ERROR, kind=kind).inc()
            self._logger.warning(f"Link creation rejected: {exc}")
            raise
        except ConflictError as exc:
            CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.CONFLICT, kind=kind).inc()
            self._logger.warning(f"Link creation conflict: {exc}")
            raise
        except Exception as exc:
            CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.ERROR, kind=kind).inc()
            self._logger.error(f"Link creation error: {exc}")
            raise
        finally:
            CREATION_DURATION.observe(time.perf_counter() - start_time)

        # Dedupe hits invalidate too, so stats never outlive a create call.
        await self._cache_layer.invalidate(link.code)
        CREATION_REQUESTS_TOTAL.labels(status=RequestStatus.SUCCESS, kind=kind).inc()
        self._logger.info(f"Link {link.code} ready in {time.perf_counter() - start_time:.3f}s")
        return link
