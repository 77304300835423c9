"""Static validation rules for caller-supplied short codes.

A custom alias must be usable as a code: non-blank, at most MAX_ALIAS_LENGTH
symbols, drawn from the codec alphabet, and not one of the reserved words that
collide with service paths (/api, /health, /docs, ...). The checks are purely
syntactic. Whether an alias is free is decided by the store at insert time.

How to Use
===========
**Build from settings**::
    policy = AliasPolicy.from_settings(get_settings())

**Validate before creating**::
    alias = policy.validate("  promo2024 ")  # -> "promo2024"
    policy.validate("Admin")  # raises InvalidArgumentError

**Non-raising check**::
    policy.is_well_formed("my-code")  # False

Key Behaviours
===============
- Reserved-word membership is case-insensitive and O(1).
- validate() returns the trimmed alias; callers persist that value.
"""

__all__ = ["AliasPolicy"]

from collections.abc import Iterable

from linker.codec import is_valid_alphabet
from linker.config import DEFAULT_RESERVED_ALIASES, Settings
from linker.exceptions import InvalidArgumentError


class AliasPolicy:
    """Validates and classifies requested custom aliases."""

    def __init__(self, reserved_words: Iterable[str] = DEFAULT_RESERVED_ALIASES, max_length: int = 20):
        assert max_length > 0, f"max_length must be positive, got {max_length!r}"
        self._reserved = frozenset(word.strip().lower() for word in reserved_words)
        self._max_length = max_length

    @classmethod
    def from_settings(cls, settings: Settings) -> "AliasPolicy":
        return cls(reserved_words=settings.RESERVED_ALIASES, max_length=settings.MAX_ALIAS_LENGTH)

    @property
    def max_length(self) -> int:
        return self._max_length

    def is_reserved(self, alias: str) -> bool:
        return alias.strip().lower() in self._reserved

    def validate(self, alias: str | None) -> str:
        """Return the trimmed alias or raise InvalidArgumentError.

        Args:
            alias: Caller-supplied alias

        Returns:
            str: Alias with surrounding whitespace removed

        Raises:
            InvalidArgumentError: If the alias is blank, too long, uses symbols
                outside the codec alphabet, or is a reserved word
        """
        if alias is None or not alias.strip():
            raise InvalidArgumentError("Custom alias must not be blank")

        candidate = alias.strip()
        if len(candidate) > self._max_length:
            raise InvalidArgumentError(f"Custom alias must be at most {self._max_length} characters")
        if not is_valid_alphabet(candidate):
            raise InvalidArgumentError("Custom alias may only contain digits and ASCII letters")
        if self.is_reserved(candidate):
            raise InvalidArgumentError(f"Custom alias '{candidate}' is a reserved word")
        return candidate

    def is_well_formed(self, alias: str | None) -> bool:
        try:
            self.validate(alias)
        except InvalidArgumentError:
            return False
        return True
