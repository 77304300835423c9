"""FastAPI route definitions for the short-link REST API.

The routes translate between HTTP and the ShortLinkService. They carry no
business rules: validation of aliases and targets, dedupe and conflict
handling all live in the engine.

API Endpoint Overview
=====================
::
    GET  /health
        └─ HealthResponse (200)

    POST /api/v1/links
        ├─ LinkCreate (request body)
        └─ LinkResponse (201) or 400/422

    GET  /api/v1/links/check-availability?code=
        └─ AvailabilityResponse (200)

    GET  /api/v1/links/:code
        └─ LinkResponse (200) or 404

    GET  /api/v1/stats
        └─ SystemStats (200)

    GET  /:code
        └─ 307 Redirect or 404

Error Mapping
=============
::
    InvalidArgumentError ─┐
    ConflictError ────────┼──► 400
    CodeOverflowError ────┘
    None (unknown code) ─────► 404
    pydantic schema errors ──► 422

How to Use
===========
**Include the router**::
    from linker.routes import router
    app.include_router(router)

**Call the endpoints**::
    POST http://localhost:8080/api/v1/links
    {"url": "https://example.com/a", "custom_alias": "promo"}

    GET http://localhost:8080/promo

Key Behaviours
===============
- check-availability is declared before /api/v1/links/{code} so it is not
  captured as a code.
- Link info never counts an access; only the redirect does.
- 307 redirects preserve the HTTP method.
"""

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import RedirectResponse

from linker.dependencies import RequestContext, get_link_service, get_request_context
from linker.enums import HealthStatus
from linker.exceptions import LinkerError
from linker.schemas import AvailabilityResponse, HealthResponse, LinkCreate, LinkResponse, SystemStats
from linker.service import ShortLinkService

__all__ = ["router"]

router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    try:
        await ctx.store.ping()
    except Exception as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    try:
        await ctx.cache.ping()
    except Exception as e:
        ctx.logger.error(f"Cache health check failed: {e}")
        cache_status = HealthStatus.UNHEALTHY

    status = HealthStatus.from_bool(db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY)
    ctx.logger.info(f"Health check completed: {status.value}")
    return HealthResponse(status=status, database=db_status, cache=cache_status)


@router.post("/api/v1/links", response_model=LinkResponse, status_code=201, tags=["links"])
async def create_link(
    payload: LinkCreate,
    ctx: RequestContext = Depends(get_request_context),
    service: ShortLinkService = Depends(get_link_service),
) -> LinkResponse:
    ctx.add_tag("link_creation")
    ctx.logger.info(
        f"Link creation requested: {payload.url}",
        extra={"operation": "create_link", "custom_alias": payload.custom_alias},
    )

    try:
        link = await service.create_short_link(payload.url, payload.custom_alias, payload.description)
    except LinkerError as exc:
        ctx.logger.warning(f"Link creation failed: {exc} ({ctx.get_duration():.1f}ms)")
        raise HTTPException(status_code=400, detail=str(exc)) from exc

    ctx.logger.info(f"Link created: {link.code} ({ctx.get_duration():.1f}ms)")
    return LinkResponse.from_model(link, ctx.settings.BASE_URL)


@router.get("/api/v1/links/check-availability", response_model=AvailabilityResponse, tags=["links"])
async def check_availability(
    code: str = Query(..., max_length=64),
    service: ShortLinkService = Depends(get_link_service),
) -> AvailabilityResponse:
    available = await service.is_available(code)
    message = "Code is available" if available else "Code is taken, reserved or malformed"
    return AvailabilityResponse(code=code, available=available, message=message)


@router.get("/api/v1/links/{code}", response_model=LinkResponse, tags=["links"])
async def get_link(
    code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: ShortLinkService = Depends(get_link_service),
) -> LinkResponse:
    info = await service.get_link_info(code)
    if info is None:
        ctx.logger.warning(f"Link info not found for code: {code}")
        raise HTTPException(status_code=404, detail="Short link not found")
    return info


@router.get("/api/v1/stats", response_model=SystemStats, tags=["stats"])
async def get_stats(service: ShortLinkService = Depends(get_link_service)) -> SystemStats:
    return await service.get_system_stats()


@router.get("/{code}", tags=["redirect"])
async def redirect_to_target(
    code: str,
    ctx: RequestContext = Depends(get_request_context),
    service: ShortLinkService = Depends(get_link_service),
) -> RedirectResponse:
    ctx.add_tag("redirect")

    target = await service.resolve(code)
    if target is None:
        ctx.logger.warning(f"Redirect failed, code not found: {code} ({ctx.get_duration():.1f}ms)")
        raise HTTPException(status_code=404, detail="Short link not found")

    ctx.logger.info(f"Redirect: {code} -> {target} ({ctx.get_duration():.1f}ms)")
    return RedirectResponse(url=target, status_code=307)
