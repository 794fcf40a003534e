"""
Entry store: CRUD for journal entries scoped to the current user.

Writes (create/update/delete) propagate failures to the caller and, once the
write is acknowledged, schedule a mood-count recompute that runs on its own.
Date lookups and listings are best-effort: a storage failure is logged and an
empty result returned.
"""

import logging
import uuid
from typing import Dict, List, Optional

from .date_index import DateIndex, DateLike, decode_entries
from .errors import InvalidArgument, InvalidState, StorageError
from .layout import analysis_path, entries_path, entry_path
from .models import JournalEntry
from .moods import MoodAggregator
from .tree import SEPARATOR, Subscription, TreeBackend
from .users import UserIdProvider

logger = logging.getLogger(__name__)


def new_entry_id() -> str:
    return str(uuid.uuid4())


class EntryStore:
    def __init__(
        self,
        backend: TreeBackend,
        aggregator: MoodAggregator,
        user_ids: UserIdProvider,
        date_index: Optional[DateIndex] = None,
        recompute_on_update: bool = True,
    ):
        self.backend = backend
        self.aggregator = aggregator
        self.user_ids = user_ids
        self.date_index = date_index or DateIndex(backend)
        self.recompute_on_update = recompute_on_update

    def _require_user(self) -> str:
        user_id = self.user_ids.current_user_id()
        if not user_id:
            raise InvalidState("No authenticated user")
        return user_id

    def _check_entry_id(self, entry_id: str) -> None:
        if SEPARATOR in entry_id:
            raise InvalidArgument(f"Entry ID must not contain {SEPARATOR!r}: {entry_id!r}")

    def _check_owner(self, entry: JournalEntry, user_id: str) -> None:
        if entry.user_id and entry.user_id != user_id:
            raise InvalidArgument(f"Entry belongs to user {entry.user_id}, not the current user")

    # --- Writes ---

    async def create(self, entry: JournalEntry) -> str:
        """Persist a new entry, assigning an id if it has none. Returns the final id."""
        user_id = self._require_user()
        self._check_owner(entry, user_id)
        entry_id = entry.id or new_entry_id()
        self._check_entry_id(entry_id)
        final_entry = entry.model_copy(update={"id": entry_id, "user_id": user_id})
        await self.backend.set(entry_path(user_id, entry_id), final_entry.to_record())
        logger.info(f"Saved entry {entry_id} for {final_entry.date} (user {user_id}, mood {final_entry.mood})")
        self.aggregator.schedule_recompute(user_id)
        return entry_id

    async def update(self, entry: JournalEntry) -> bool:
        """Overwrite an existing entry in place."""
        if not entry.id:
            raise InvalidArgument("Entry ID must not be empty for updates")
        self._check_entry_id(entry.id)
        user_id = self._require_user()
        self._check_owner(entry, user_id)
        final_entry = entry.model_copy(update={"user_id": user_id})
        await self.backend.set(entry_path(user_id, entry.id), final_entry.to_record())
        logger.info(f"Updated entry {entry.id} (user {user_id})")
        if self.recompute_on_update:
            self.aggregator.schedule_recompute(user_id)
        return True

    async def delete(self, entry_id: str) -> bool:
        """Remove an entry together with its analysis record."""
        if not entry_id:
            raise InvalidArgument("Entry ID must not be empty for deletes")
        self._check_entry_id(entry_id)
        user_id = self._require_user()
        await self.backend.delete(entry_path(user_id, entry_id))
        await self.backend.delete(analysis_path(entry_id))
        logger.info(f"Deleted entry {entry_id} (user {user_id})")
        self.aggregator.schedule_recompute(user_id)
        return True

    # --- Reads ---

    async def get_by_id(self, entry_id: str, user_id: Optional[str] = None) -> Optional[JournalEntry]:
        """
        Point lookup. Without `user_id` the owner is found by scanning every user's
        collection, which is O(all entries).
        """
        if not entry_id:
            raise InvalidArgument("Entry ID must not be empty")
        owner = user_id or await self.date_index.find_owner(entry_id)
        if not owner:
            return None
        path = entry_path(owner, entry_id)
        raw = await self.backend.get(path)
        if raw is None:
            return None
        return JournalEntry.from_record(raw, key=entry_id, user_id=owner, path=path)

    async def get_by_date(self, user_id: str, day: DateLike) -> List[JournalEntry]:
        try:
            return await self.date_index.entries_for_date(user_id, day)
        except StorageError as e:
            logger.warning(f"Failed to get entries for date {day}: {e}")
            return []

    async def has_entry_for_date(self, user_id: str, day: DateLike) -> bool:
        try:
            return await self.date_index.has_entry_for_date(user_id, day)
        except StorageError as e:
            logger.warning(f"Failed to check entries for date {day}: {e}")
            return False

    async def get_entry_for_date(self, user_id: str, day: DateLike) -> Optional[JournalEntry]:
        try:
            return await self.date_index.entry_for_date(user_id, day)
        except StorageError as e:
            logger.warning(f"Failed to get the entry for date {day}: {e}")
            return None

    async def get_entry_dates_for_range(self, user_id: str, start: DateLike, end: DateLike) -> Dict[str, bool]:
        try:
            return await self.date_index.entry_dates_for_range(user_id, start, end)
        except StorageError as e:
            logger.warning(f"Failed to get entry dates for range {start}..{end}: {e}")
            return {}

    async def list_entries(self, user_id: str) -> List[JournalEntry]:
        """One-shot read of every entry of a user, in key order."""
        try:
            return decode_entries(await self.backend.get(entries_path(user_id)), user_id)
        except StorageError as e:
            logger.warning(f"Failed to load entries for user {user_id}: {e}")
            return []

    async def watch(self, user_id: str) -> Subscription:
        """
        Live view of a user's entries. Yields the full list now and again after every
        change; the caller must `close()` it (or use `async with`) when done.
        """
        return await self.backend.subscribe(entries_path(user_id), transform=lambda raw: decode_entries(raw, user_id))
