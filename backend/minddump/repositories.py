"""
Copyright © 2026 Vladimir Vaulin-Belskii. All rights reserved.

Database access helpers for the key-value store and the saved session list.
"""
import json
import logging

from pydantic import TypeAdapter, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from . import models
from .config import settings
from .schemas import ThoughtSession

logger = logging.getLogger(__name__)

_sessions_adapter = TypeAdapter(list[ThoughtSession])


async def get_value(session: AsyncSession, key: str) -> str | None:
    """Return the raw value stored under key, or None."""
    result = await session.execute(select(models.KeyValue).where(models.KeyValue.key == key))
    item = result.scalar_one_or_none()
    return item.value if item else None


async def set_value(session: AsyncSession, key: str, value: str) -> None:
    """Store value under key, replacing whatever was there."""
    result = await session.execute(select(models.KeyValue).where(models.KeyValue.key == key))
    item = result.scalar_one_or_none()
    if item is None:
        session.add(models.KeyValue(key=key, value=value))
    else:
        item.value = value
    await session.flush()


async def load_sessions(session: AsyncSession, key: str | None = None) -> list[ThoughtSession]:
    """Load the saved session list, newest first.

    A missing or unreadable value yields an empty list.
    """
    key = key or settings.sessions_storage_key
    raw = await get_value(session, key)
    if not raw:
        return []
    try:
        return _sessions_adapter.validate_json(raw)
    except ValidationError as e:
        logger.error("Failed to load sessions from %s: %s", key, e)
        return []


async def save_sessions(session: AsyncSession, sessions: list[ThoughtSession], key: str | None = None) -> None:
    """Overwrite the saved session list with sessions."""
    key = key or settings.sessions_storage_key
    payload = json.dumps([s.model_dump(mode="json") for s in sessions])
    await set_value(session, key, payload)
    logger.debug("Saved %d sessions under %s", len(sessions), key)


async def prepend_session(session: AsyncSession, record: ThoughtSession, key: str | None = None) -> list[ThoughtSession]:
    """Put record at the front of the saved list and write the whole list back."""
    sessions = await load_sessions(session, key)
    updated = [record, *sessions]
    await save_sessions(session, updated, key)
    return updated


async def get_thought_session(session: AsyncSession, session_id: str, key: str | None = None) -> ThoughtSession | None:
    """Find a saved session by id."""
    for record in await load_sessions(session, key):
        if record.id == session_id:
            return record
    return None
