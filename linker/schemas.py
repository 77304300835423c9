"""Pydantic schemas for request/response validation and cache payloads.

This module defines Pydantic models for API input validation and output serialization,
plus the JSON payloads the engine stores in the cache.

Schema Hierarchy
=================
::
    LinkCreate (Input)
    ├─ url: str (absolute http/https URL, <= 2048 chars)
    ├─ custom_alias: str | None (blank treated as absent)
    └─ description: str | None (<= 500 chars)

    LinkResponse (Output)
    ├─ id, code, target_address, short_url
    ├─ is_custom_alias, access_count, description
    └─ created_at, last_updated_at

    AvailabilityResponse (Output)
    ├─ code, available
    └─ message

    SystemStats (Output + cache payload "stats:system")
    ├─ total_links, total_access, custom_aliases
    └─ generated_at

    CachedShortLink (cache payload "shortlink:{code}")

    HealthResponse (Output)
    ├─ status
    ├─ database
    └─ cache

How to Use
===========
**Step 1 — Input validation**::
    @router.post("/api/v1/links")
    async def create_link(payload: LinkCreate):
        # payload.url is already an allowed absolute URL
        ...

**Step 2 — Response serialization**::
    return LinkResponse.from_model(link, settings.BASE_URL)

**Step 3 — Cache round trip**::
    raw = CachedShortLink.model_validate(link).model_dump_json()
    cached = CachedShortLink.model_validate_json(raw)

Key Behaviours
===============
- URL shape uses the validators library; the scheme must be in ALLOWED_SCHEMES.
- Alias charset, length and reserved words are checked by AliasPolicy in the
  engine, not here, so direct callers get the same rules.
- Models are configured for ORM attribute mapping.

Classes:
    LinkCreate:  Input schema for link creation.
    LinkResponse:  Output schema for a single link.
    AvailabilityResponse:  Output schema for availability checks.
    SystemStats:  Aggregate counters.
    CachedShortLink:  Cached record payload.
    HealthResponse:  Output schema for health checks.
"""

import datetime
from urllib.parse import urlsplit

import validators
from pydantic import BaseModel, Field, field_validator

from linker.config import get_settings
from linker.enums import HealthStatus

__all__ = [
    "AvailabilityResponse",
    "CachedShortLink",
    "HealthResponse",
    "LinkCreate",
    "LinkResponse",
    "SystemStats",
]

settings = get_settings()


class LinkCreate(BaseModel):
    url: str = Field(..., max_length=settings.MAX_TARGET_LENGTH)
    custom_alias: str | None = None
    description: str | None = Field(None, max_length=settings.MAX_DESCRIPTION_LENGTH)

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        v = v.strip()
        if not validators.url(v):
            raise ValueError("Invalid URL provided")
        if urlsplit(v).scheme.lower() not in settings.ALLOWED_SCHEMES:
            raise ValueError(f"URL scheme must be one of {', '.join(settings.ALLOWED_SCHEMES)}")
        return v

    @field_validator("custom_alias")
    @classmethod
    def blank_alias_is_absent(cls, v: str | None) -> str | None:
        if v is not None and not v.strip():
            return None
        return v


class LinkResponse(BaseModel):
    id: int
    code: str
    target_address: str
    short_url: str
    is_custom_alias: bool
    access_count: int
    description: str | None = None
    created_at: datetime.datetime
    last_updated_at: datetime.datetime

    model_config = {"from_attributes": True}

    @classmethod
    def from_model(cls, link, base_url: str, access_count: int | None = None) -> "LinkResponse":
        return cls(
            id=link.id,
            code=link.code,
            target_address=link.target_address,
            short_url=f"{base_url.rstrip('/')}/{link.code}",
            is_custom_alias=link.is_custom_alias,
            access_count=link.access_count if access_count is None else access_count,
            description=link.description,
            created_at=link.created_at,
            last_updated_at=link.last_updated_at,
        )


class AvailabilityResponse(BaseModel):
    code: str
    available: bool
    message: str


class SystemStats(BaseModel):
    total_links: int
    total_access: int
    custom_aliases: int
    generated_at: datetime.datetime = Field(
        default_factory=lambda: datetime.datetime.now(datetime.timezone.utc)
    )


class CachedShortLink(BaseModel):
    """Cache payload for a resolved link, keyed by "shortlink:{code}"."""

    id: int
    code: str
    target_address: str
    is_custom_alias: bool
    access_count: int
    description: str | None = None

    model_config = {"from_attributes": True}


class HealthResponse(BaseModel):
    status: HealthStatus
    database: HealthStatus
    cache: HealthStatus
