"""
Application-level journal flows.

`JournalComponents` holds the long-lived collaborators (tree backend, mood
aggregator, completion client) and is built once at startup. `JournalService` is
a cheap per-user view over them used by the HTTP layer and other clients.
"""

import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from .analysis import AnalysisRepository, AnalysisService, PromptStyle
from .completion import CompletionClient
from .config import Settings
from .database import init_database
from .date_index import DateIndex, DateLike, to_date_string
from .entries import EntryStore
from .errors import AnalysisError, InvalidState, StorageError
from .models import DEFAULT_MOOD, NO_ANALYSIS_PLACEHOLDER, AIAnalysis, JournalEntry, MoodCounts, now_millis
from .moods import MoodAggregator
from .tree import Subscription, TreeBackend
from .users import StaticUserIdProvider, UserIdProvider, UserRepository

logger = logging.getLogger(__name__)


@dataclass
class ProcessedEntry:
    entry: JournalEntry
    analysis: Optional[AIAnalysis] = None
    error: Optional[str] = None


class JournalComponents:
    def __init__(self, backend: TreeBackend, completion: Optional[CompletionClient] = None, recompute_on_update: bool = True):
        self.backend = backend
        self.completion = completion
        self.recompute_on_update = recompute_on_update
        self.users = UserRepository(backend)
        self.aggregator = MoodAggregator(backend, self.users)
        self.analyses = AnalysisRepository(backend)
        self.date_index = DateIndex(backend)

    def for_user(self, user_id: Optional[str]) -> "JournalService":
        return JournalService(self, StaticUserIdProvider(user_id))

    async def aclose(self) -> None:
        """Let pending recomputes finish, then release the completion client and the store."""
        await self.aggregator.aclose()
        if self.completion is not None:
            await self.completion.aclose()
        await self.backend.close()


async def build_components(settings: Settings) -> JournalComponents:
    backend = await init_database(settings.database_url)
    completion = CompletionClient.from_settings(settings)
    return JournalComponents(backend, completion, recompute_on_update=settings.recompute_on_update)


class JournalService:
    def __init__(self, components: JournalComponents, user_ids: UserIdProvider):
        self.components = components
        self.user_ids = user_ids
        self.entries = EntryStore(
            components.backend,
            components.aggregator,
            user_ids,
            date_index=components.date_index,
            recompute_on_update=components.recompute_on_update,
        )
        self.analysis: Optional[AnalysisService] = None
        if components.completion is not None:
            self.analysis = AnalysisService(components.completion, components.analyses, self.entries)

    @property
    def user_id(self) -> str:
        user_id = self.user_ids.current_user_id()
        if not user_id:
            raise InvalidState("No authenticated user")
        return user_id

    async def save_entry(self, content: str, day: DateLike, mood: str = DEFAULT_MOOD, title: str = "") -> JournalEntry:
        """
        Create the entry for `day`, or update the one that already speaks for that date.
        A stored analysis is dropped when the content changes so it can be redone.
        """
        user_id = self.user_id
        date_string = to_date_string(day)
        existing = await self.entries.get_entry_for_date(user_id, date_string)
        if existing is not None:
            return await self._apply_changes(existing, content=content, mood=mood, title=title or None)

        entry = JournalEntry(
            user_id=user_id,
            title=title,
            content=content,
            ai_analysis=NO_ANALYSIS_PLACEHOLDER,
            mood=mood,
            date=date_string,
        )
        entry_id = await self.entries.create(entry)
        return entry.model_copy(update={"id": entry_id})

    async def update_entry(
        self,
        entry_id: str,
        content: Optional[str] = None,
        mood: Optional[str] = None,
        title: Optional[str] = None,
    ) -> Optional[JournalEntry]:
        """Change fields of an existing entry. None if the entry doesn't exist."""
        existing = await self.get_entry(entry_id)
        if existing is None:
            return None
        return await self._apply_changes(existing, content=content, mood=mood, title=title)

    async def _apply_changes(
        self,
        existing: JournalEntry,
        content: Optional[str] = None,
        mood: Optional[str] = None,
        title: Optional[str] = None,
    ) -> JournalEntry:
        changes = {"timestamp": now_millis()}
        if content is not None:
            changes["content"] = content
        if mood is not None:
            changes["mood"] = mood
        if title is not None:
            changes["title"] = title
        content_changed = content is not None and content != existing.content
        if content_changed:
            changes["ai_analysis"] = NO_ANALYSIS_PLACEHOLDER
        entry = existing.model_copy(update=changes)
        await self.entries.update(entry)
        if content_changed:
            await self.components.analyses.delete(existing.id)
        return entry

    async def process_entry(self, content: str, day: DateLike, user_selected_mood: str = DEFAULT_MOOD, title: str = "") -> ProcessedEntry:
        """
        Save the entry, then classify its mood and analyze it. The saved entry is kept
        whatever happens to the analysis.
        """
        entry = await self.save_entry(content, day, user_selected_mood, title)
        if self.analysis is None:
            return ProcessedEntry(entry=entry, error="Analysis is not configured")

        try:
            mood = await self.analysis.classify_mood(content)
        except AnalysisError as e:
            logger.warning(f"Sentiment analysis failed, using user-selected mood {user_selected_mood}: {e}")
            mood = user_selected_mood
        if mood != entry.mood:
            entry = entry.model_copy(update={"mood": mood})
            await self.entries.update(entry)

        try:
            analysis = await self.analysis.analyze_entry(entry, PromptStyle.STRUCTURED)
        except (AnalysisError, StorageError) as e:
            logger.warning(f"Analysis failed for entry {entry.id}; entry kept without analysis: {e}")
            return ProcessedEntry(entry=entry, error=str(e))
        return ProcessedEntry(entry=entry.model_copy(update={"ai_analysis": analysis.feedback}), analysis=analysis)

    async def analyze(self, entry_id: str) -> Optional[AIAnalysis]:
        """Analyze one of the current user's entries. None if the entry doesn't exist."""
        if self.analysis is None:
            raise AnalysisError("Analysis is not configured")
        entry = await self.get_entry(entry_id)
        if entry is None:
            return None
        return await self.analysis.analyze_entry(entry)

    async def get_entry(self, entry_id: str) -> Optional[JournalEntry]:
        return await self.entries.get_by_id(entry_id, user_id=self.user_id)

    async def delete_entry(self, entry_id: str) -> bool:
        return await self.entries.delete(entry_id)

    async def entry_for_date(self, day: DateLike) -> Optional[JournalEntry]:
        return await self.entries.get_entry_for_date(self.user_id, day)

    async def entries_for_date(self, day: DateLike) -> List[JournalEntry]:
        return await self.entries.get_by_date(self.user_id, day)

    async def week_overview(self, start: DateLike, end: DateLike) -> Dict[str, bool]:
        return await self.entries.get_entry_dates_for_range(self.user_id, start, end)

    async def list_entries(self) -> List[JournalEntry]:
        return await self.entries.list_entries(self.user_id)

    async def watch_entries(self) -> Subscription:
        return await self.entries.watch(self.user_id)

    async def mood_counts(self, refresh: bool = False) -> MoodCounts:
        return await self.components.aggregator.get_mood_counts(self.user_id, refresh=refresh)
