"""
Pydantic models for API request/response validation.
"""

import datetime as dt
from typing import Optional

from pydantic import BaseModel, Field

from .models import AIAnalysis, JournalEntry, Mood


class EntryRequest(BaseModel):
    """Request model for creating (or replacing) the entry of a date."""

    content: str = Field(..., max_length=20000, description="Journal text")
    date: dt.date = Field(..., description="Calendar date of the entry (YYYY-MM-DD)")
    mood: Mood = Field(Mood.NEUTRAL, description="User-selected mood")
    title: str = Field("", max_length=255)


class UpdateEntryRequest(BaseModel):
    content: Optional[str] = Field(None, max_length=20000)
    mood: Optional[Mood] = None
    title: Optional[str] = Field(None, max_length=255)


class ProcessEntryResponse(BaseModel):
    """Saved entry plus the analysis, or the reason there is none."""

    entry: JournalEntry
    analysis: Optional[AIAnalysis] = None
    error: Optional[str] = None


class HealthResponse(BaseModel):
    status: str = Field(..., description="Health status")
    timestamp: dt.datetime = Field(
        default_factory=lambda: dt.datetime.now(dt.timezone.utc), description="Response timestamp"
    )
