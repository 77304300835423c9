"""Creation workflow: dedupe by target, identity allocation, code backfill and
custom-alias conflict handling.

Flow Diagram — create_system_code()
===================================
::
    ┌─────────────┐
    │ normalize   │
    │ target      │
    └──────┬──────┘
           ▼
    ┌─────────────┐   found
    │ find_by_    ├──────────► return existing (idempotent)
    │ target      │
    └──────┬──────┘
           ▼
    ┌─────────────┐  duplicate target
    │ insert with ├──────────► rollback, reread, return existing
    │ placeholder │
    └──────┬──────┘
           ▼ id assigned
    ┌─────────────┐  code held by custom alias
    │ code =      ├──────────► rollback, retry with a new id
    │ encode(id)  │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ commit      │
    └─────────────┘

Flow Diagram — create_custom_code()
===================================
::
    validate alias + target ──► exists_by_code? ── yes ──► ConflictError
                                     │ no
                                     ▼
                            insert + commit ── duplicate ──► ConflictError

Key Behaviours
===============
- All validation runs before the first store call.
- Insert and backfill share one store transaction. A failure or cancellation
  between them rolls back, so no placeholder row is left behind by a store
  whose commit() is transactional.
- The check-then-insert sequences are advisory. The store's unique indexes
  decide concurrent races: a duplicate system target is reread and returned,
  a duplicate alias surfaces as ConflictError.
- Custom aliases never dedupe by target.

Classes:
    CreationWorkflow:  Orchestrates both creation paths against a store.
"""

import logging

from linker.alias_policy import AliasPolicy
from linker.codec import encode
from linker.config import Settings, get_settings
from linker.exceptions import ConflictError, DuplicateRecordError, InvalidArgumentError
from linker.models import ShortLink, placeholder_code
from linker.store import ShortLinkStore

__all__ = ["CreationWorkflow", "normalize_description", "normalize_target"]


def normalize_target(target: str | None, max_length: int = 2048) -> str:
    if target is None or not target.strip():
        raise InvalidArgumentError("Target address must not be blank")
    normalized = target.strip()
    if len(normalized) > max_length:
        raise InvalidArgumentError(f"Target address must be at most {max_length} characters")
    return normalized


def normalize_description(description: str | None, max_length: int = 500) -> str | None:
    if description is None or not description.strip():
        return None
    if len(description) > max_length:
        raise InvalidArgumentError(f"Description must be at most {max_length} characters")
    return description


class CreationWorkflow:
    """Creates system-generated and custom short links against a store adapter."""

    def __init__(
        self,
        store: ShortLinkStore,
        alias_policy: AliasPolicy | None = None,
        settings: Settings | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ):
        self._store = store
        self._settings = settings or get_settings()
        self._alias_policy = alias_policy or AliasPolicy.from_settings(self._settings)
        self._logger = logger or logging.getLogger("linker")

    async def create_system_code(self, target: str) -> ShortLink:
        """Return the link for target, creating it with a codec-derived code if needed.

        Args:
            target: Absolute target address

        Returns:
            ShortLink: Existing link for target, or a new committed link whose
                code is encode(id)

        Raises:
            InvalidArgumentError: If target is blank or too long
            ConflictError: If every allocated identifier encodes to a code
                already held by a custom alias
        """
        target = normalize_target(target, self._settings.MAX_TARGET_LENGTH)

        existing = await self._store.find_by_target(target)
        if existing is not None:
            self._logger.debug(f"Target already shortened as {existing.code}")
            return existing

        attempts = self._settings.CODE_ALLOCATION_ATTEMPTS
        for attempt in range(1, attempts + 1):
            try:
                link = await self._store.insert(
                    ShortLink(
                        target_address=target,
                        code=placeholder_code(),
                        is_custom_alias=False,
                        access_count=0,
                    )
                )
            except DuplicateRecordError as exc:
                # A concurrent caller inserted the same target first.
                await self._store.rollback()
                existing = await self._store.find_by_target(target)
                if existing is None:
                    raise ConflictError("Target address was created concurrently but cannot be read back") from exc
                self._logger.info(f"Concurrent create for target resolved to {existing.code}")
                return existing
            except BaseException:
                await self._store.rollback()
                raise

            # Rollback detaches the new row, so keep the id for logging.
            link_id = link.id
            try:
                link.code = encode(link_id)
                link = await self._store.update(link)
                await self._store.commit()
            except DuplicateRecordError:
                await self._store.rollback()
                self._logger.warning(
                    f"Derived code for id {link_id} is held by a custom alias "
                    f"(attempt {attempt}/{attempts})"
                )
                continue
            except BaseException:
                await self._store.rollback()
                raise

            self._logger.info(f"Created system code {link.code} for id {link.id}")
            return link

        raise ConflictError(f"Could not allocate a free system code after {attempts} attempts")

    async def create_custom_code(self, target: str, alias: str, description: str | None = None) -> ShortLink:
        """Create a link whose code is the caller's alias.

        Raises:
            InvalidArgumentError: If target, alias or description is malformed
            ConflictError: If the alias is already in use
        """
        target = normalize_target(target, self._settings.MAX_TARGET_LENGTH)
        description = normalize_description(description, self._settings.MAX_DESCRIPTION_LENGTH)
        alias = self._alias_policy.validate(alias)

        if await self._store.exists_by_code(alias):
            raise ConflictError(f"Custom alias '{alias}' is already in use")

        try:
            link = await self._store.insert(
                ShortLink(
                    target_address=target,
                    code=alias,
                    is_custom_alias=True,
                    access_count=0,
                    description=description,
                )
            )
            await self._store.commit()
        except DuplicateRecordError as exc:
            await self._store.rollback()
            raise ConflictError(f"Custom alias '{alias}' is already in use") from exc
        except BaseException:
            await self._store.rollback()
            raise

        self._logger.info(f"Created custom alias {link.code} for id {link.id}")
        return link
