"""SQLAlchemy ORM model for short links.

Data Model Layout
=================
::
    short_links table
    ├─ id (BIGSERIAL PRIMARY KEY)
    ├─ target_address (VARCHAR(2048) NOT NULL, INDEXED)
    ├─ code (VARCHAR(20) UNIQUE, INDEXED)
    ├─ is_custom_alias (BOOLEAN NOT NULL)
    ├─ access_count (BIGINT DEFAULT 0)
    ├─ created_at (TIMESTAMPTZ, DEFAULT NOW())
    ├─ last_updated_at (TIMESTAMPTZ, DEFAULT NOW(), ON UPDATE)
    └─ description (VARCHAR(500) NULL)

    uq_short_links_system_target
        UNIQUE (target_address) WHERE is_custom_alias = false

How to Use
===========
**System-generated code (two-phase)**::
    link = ShortLink(target_address="https://example.com", code=placeholder_code())
    store.insert(link)          # id assigned
    link.code = encode(link.id)
    store.update(link)

**Custom alias**::
    link = ShortLink(
        target_address="https://example.com",
        code="promo",
        is_custom_alias=True,
        description="spring campaign",
    )

Key Behaviours
===============
- code is unique across all rows; the store is the only uniqueness authority.
- A target has at most one system-generated row (partial unique index); custom
  aliases may point at the same target any number of times.
- Placeholder codes start with "~", which is outside the codec alphabet, so a
  placeholder never equals a real code.
- created_at and last_updated_at are managed by the database.

Classes:
    ShortLink:  A code -> target mapping with an access counter.

Functions:
    placeholder_code:  Unique temporary code for the insert-then-backfill flow.
"""

import datetime
import uuid

from sqlalchemy import BigInteger, Boolean, DateTime, Index, Integer, String, func, text
from sqlalchemy.orm import Mapped, mapped_column

from linker.database import Base

__all__ = ["PLACEHOLDER_PREFIX", "ShortLink", "placeholder_code"]

PLACEHOLDER_PREFIX = "~"


def placeholder_code() -> str:
    return PLACEHOLDER_PREFIX + uuid.uuid4().hex[:19]


class ShortLink(Base):
    __tablename__ = "short_links"
    __table_args__ = (
        Index(
            "uq_short_links_system_target",
            "target_address",
            unique=True,
            postgresql_where=text("is_custom_alias = false"),
            sqlite_where=text("is_custom_alias = 0"),
        ),
    )
    __mapper_args__ = {"eager_defaults": True}

    # SQLite only autoincrements INTEGER PRIMARY KEY columns.
    id: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    target_address: Mapped[str] = mapped_column(String(2048), index=True, nullable=False)
    code: Mapped[str] = mapped_column(String(20), unique=True, index=True, nullable=False)
    is_custom_alias: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    access_count: Mapped[int] = mapped_column(BigInteger, default=0, nullable=False)
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), index=True, nullable=False
    )
    last_updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )
    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<ShortLink(id={self.id}, code='{self.code}', "
            f"is_custom_alias={self.is_custom_alias}, access_count={self.access_count})>"
        )
