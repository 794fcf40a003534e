"""
Typed records for journal entries, users, mood counts and AI analyses.

Records are stored with camelCase keys (`userId`, `aiAnalysis`, `moodCounts`).
Reading a record from the store always goes through `from_record`, which applies
the documented defaults and raises `DecodeError` for anything it cannot validate.
"""

import re
import time
from datetime import date as date_type, datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from .errors import DecodeError

MOODS = ("happy", "neutral", "sad")
DEFAULT_MOOD = "neutral"
NO_ANALYSIS_PLACEHOLDER = "No analysis performed"

_ISO_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def now_millis() -> int:
    return int(time.time() * 1000)


def is_canonical_mood(mood: Any) -> bool:
    return isinstance(mood, str) and mood in MOODS


def normalize_date(value: Any) -> str:
    """Return the canonical `YYYY-MM-DD` string for a date, datetime or ISO string."""
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date_type):
        return value.isoformat()
    if isinstance(value, str) and _ISO_DATE.match(value):
        # Rejects well-formed but impossible dates like 2024-02-30
        return date_type.fromisoformat(value).isoformat()
    raise ValueError(f"Expected an ISO-8601 date (YYYY-MM-DD), got {value!r}")


class Mood(str, Enum):
    HAPPY = "happy"
    NEUTRAL = "neutral"
    SAD = "sad"


class _Record(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_record(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class JournalEntry(_Record):
    """A single dated journal record."""

    id: str = ""
    user_id: str = ""
    title: str = ""
    content: str = ""
    ai_analysis: str = ""
    mood: str = DEFAULT_MOOD
    date: str
    timestamp: int = Field(default_factory=now_millis)

    @field_validator("date", mode="before")
    @classmethod
    def _canonical_date(cls, value: Any) -> str:
        return normalize_date(value)

    @classmethod
    def from_record(
        cls,
        raw: Any,
        key: Optional[str] = None,
        user_id: Optional[str] = None,
        path: Optional[str] = None,
    ) -> "JournalEntry":
        """Decode a stored entry. The storage key and owning user fill in missing `id`/`userId`."""
        if not isinstance(raw, dict):
            raise DecodeError(f"Journal entry record is not a mapping: {raw!r}", path=path)
        data = dict(raw)
        if key and not data.get("id"):
            data["id"] = key
        if user_id and not data.get("userId"):
            data["userId"] = user_id
        if "date" not in data:
            raise DecodeError("Journal entry record has no date", path=path)
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise DecodeError(f"Invalid journal entry record: {e}", path=path) from e


class MoodCounts(_Record):
    """Per-user count of distinct entry dates by mood."""

    happy: int = Field(0, ge=0)
    neutral: int = Field(0, ge=0)
    sad: int = Field(0, ge=0)

    def total(self) -> int:
        return self.happy + self.neutral + self.sad

    def increment(self, mood: str) -> "MoodCounts":
        if not is_canonical_mood(mood):
            return self
        return self.model_copy(update={mood: getattr(self, mood) + 1})

    @classmethod
    def from_record(cls, raw: Any, path: Optional[str] = None) -> "MoodCounts":
        if raw is None:
            return cls()
        if not isinstance(raw, dict):
            raise DecodeError(f"Mood counts record is not a mapping: {raw!r}", path=path)
        try:
            return cls.model_validate(raw)
        except ValidationError as e:
            raise DecodeError(f"Invalid mood counts record: {e}", path=path) from e


class UserProfile(_Record):
    id: str
    display_name: str = ""
    email: str = ""

    @classmethod
    def from_record(cls, raw: Any, user_id: str, path: Optional[str] = None) -> "UserProfile":
        if not isinstance(raw, dict):
            raise DecodeError(f"User profile record is not a mapping: {raw!r}", path=path)
        data = dict(raw)
        data.setdefault("id", user_id)
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise DecodeError(f"Invalid user profile record: {e}", path=path) from e


class User(BaseModel):
    """A user's profile together with the mood counts stored beside it."""

    profile: UserProfile
    mood_counts: MoodCounts = Field(default_factory=MoodCounts)

    @property
    def id(self) -> str:
        return self.profile.id


class AIAnalysis(_Record):
    entry_id: str = ""
    sentiment: float = 0.0
    emotions: Dict[str, float] = Field(default_factory=dict)
    feedback: str = ""

    @classmethod
    def from_record(cls, raw: Any, entry_id: str, path: Optional[str] = None) -> "AIAnalysis":
        if not isinstance(raw, dict):
            raise DecodeError(f"Analysis record is not a mapping: {raw!r}", path=path)
        data = dict(raw)
        data.setdefault("entryId", entry_id)
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            raise DecodeError(f"Invalid analysis record: {e}", path=path) from e
