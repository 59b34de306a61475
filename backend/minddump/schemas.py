"""
Copyright © 2026 Vladimir Vaulin-Belskii. All rights reserved.

Pydantic schemas for API IO models.
"""
import datetime as dt
from typing import List
from pydantic import BaseModel, Field, field_validator

CATEGORY_NAMES = ("actions", "decisions", "worries", "wins")

_last_session_id = 0


def next_session_id(now: dt.datetime) -> str:
    """Millisecond timestamp id, bumped so ids issued by this process never repeat."""
    global _last_session_id
    _last_session_id = max(int(now.timestamp() * 1000), _last_session_id + 1)
    return str(_last_session_id)


class Categories(BaseModel):
    actions: List[str] = Field(default_factory=list)
    decisions: List[str] = Field(default_factory=list)
    worries: List[str] = Field(default_factory=list)
    wins: List[str] = Field(default_factory=list)

    def total_items(self) -> int:
        return sum(len(getattr(self, name)) for name in CATEGORY_NAMES)


class ProcessResponse(BaseModel):
    categories: Categories


class ThoughtSession(BaseModel):
    id: str
    timestamp: dt.datetime
    transcript: str
    categories: Categories

    @classmethod
    def create(cls, transcript: str, categories: Categories) -> "ThoughtSession":
        """Build a new record stamped with the current time."""
        now = dt.datetime.now(dt.timezone.utc)
        return cls(
            id=next_session_id(now),
            timestamp=now,
            transcript=transcript,
            categories=categories,
        )


class ThoughtSessionCreate(BaseModel):
    transcript: str = Field(..., min_length=1)
    categories: Categories = Field(default_factory=Categories)

    @field_validator("transcript")
    @classmethod
    def validate_transcript(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Transcript must not be blank")
        return value.strip()
