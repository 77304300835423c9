"""Error taxonomy for the short-code resolution engine."""

__all__ = [
    "LinkerError",
    "InvalidArgumentError",
    "ConflictError",
    "CodeOverflowError",
    "DuplicateRecordError",
]


class LinkerError(Exception):
    """Base class for every error raised by the engine."""


class InvalidArgumentError(LinkerError, ValueError):
    """Malformed target, alias, codec input or description."""


class ConflictError(LinkerError):
    """A requested code is already held by another record."""


class CodeOverflowError(LinkerError, OverflowError):
    """A code decodes to a value above the largest representable identifier."""


class DuplicateRecordError(LinkerError):
    """Raised by store adapters when an insert or update hits a unique constraint."""
