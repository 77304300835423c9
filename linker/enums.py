"""Shared enums for the short-link engine.

This module defines the status values used in health responses and as
Prometheus label values. Using enums instead of string literals keeps label
sets closed and prevents typos.
"""

from enum import StrEnum

__all__ = ["CacheStatus", "HealthStatus", "RequestStatus"]


class HealthStatus(StrEnum):
    """Health check status values."""

    HEALTHY = "healthy"
    UNHEALTHY = "unhealthy"

    @classmethod
    def from_bool(cls, ok: bool) -> "HealthStatus":
        return cls.HEALTHY if ok else cls.UNHEALTHY


class RequestStatus(StrEnum):
    """Outcome of a create or resolve call."""

    SUCCESS = "success"
    NOT_FOUND = "not_found"
    VALIDATION_ERROR = "validation_error"
    CONFLICT = "conflict"
    ERROR = "error"


class CacheStatus(StrEnum):
    """Whether a resolution was served from the cache."""

    HIT = "hit"
    MISS = "miss"
