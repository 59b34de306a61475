"""
Copyright © 2026 Vladimir Vaulin-Belskii. All rights reserved.

SQLAlchemy ORM models describing core domain entities.
"""
import datetime as dt
from sqlalchemy import DateTime, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base


def _utcnow():
    """Return a timezone-aware UTC datetime."""
    return dt.datetime.now(dt.timezone.utc)


class TimestampMixin:
    """Shared created/updated timestamps."""

    created_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, nullable=False
    )
    updated_at: Mapped[dt.datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )


class KeyValue(Base, TimestampMixin):
    """A single string value stored under a key, like browser local storage."""

    __tablename__ = "kv_store"

    key: Mapped[str] = mapped_column(String(255), primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)
