"""
Mood aggregation: keeps `users/{userId}/moodCounts` consistent with the entry set.

`recompute` rebuilds the counts from scratch and is the path the entry store uses.
It is idempotent, so running it again after a lost or failed update repairs the
counts. `increment` is the naive read-add-write update; it never decrements and
drifts under concurrent writers, deletes and mood edits.
"""

import asyncio
import logging
import weakref
from typing import Iterable, Optional, Set

from .date_index import decode_entries, latest_per_date
from .errors import DecodeError, StorageError
from .layout import entries_path, mood_counts_path
from .models import JournalEntry, MoodCounts, is_canonical_mood
from .tree import TreeBackend, join_path
from .users import UserRepository

logger = logging.getLogger(__name__)


def count_moods(entries: Iterable[JournalEntry]) -> MoodCounts:
    """
    Count each distinct date once.

    Entries with a mood outside happy/neutral/sad are ignored. Among the remaining
    entries of a date, the newest (by timestamp, then key) decides the mood.
    """
    counts = MoodCounts()
    valid = [entry for entry in entries if is_canonical_mood(entry.mood)]
    for entry in latest_per_date(valid).values():
        counts = counts.increment(entry.mood)
    return counts


class MoodAggregator:
    def __init__(self, backend: TreeBackend, users: Optional[UserRepository] = None):
        self.backend = backend
        self.users = users or UserRepository(backend)
        # Entries disappear once no recompute holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = weakref.WeakValueDictionary()
        self._pending: Set[asyncio.Task] = set()

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[user_id] = lock
        return lock

    async def recompute(self, user_id: str) -> MoodCounts:
        """Rebuild the user's counts from their full entry set and overwrite all three counters."""
        # Serialized per user so an older snapshot can't be written after a newer one
        lock = self._lock_for(user_id)
        async with lock:
            raw = await self.backend.get(entries_path(user_id))
            counts = count_moods(decode_entries(raw, user_id))
            await self.users.ensure_user(user_id)
            await self.backend.set(mood_counts_path(user_id), counts.to_record())
        logger.info(
            f"Recomputed mood counts for user {user_id}: "
            f"happy={counts.happy} neutral={counts.neutral} sad={counts.sad}"
        )
        return counts

    async def increment(self, user_id: str, mood: str) -> MoodCounts:
        """Add one to a single counter. Kept as the baseline the full recompute is checked against."""
        if not is_canonical_mood(mood):
            logger.warning(f"Invalid mood value: {mood} - must be happy, neutral, or sad")
            return await self.get_mood_counts(user_id)
        path = join_path(mood_counts_path(user_id), mood)
        current = await self.backend.get(path)
        new_count = (current if isinstance(current, int) else 0) + 1
        logger.info(f"Incrementing {mood} count from {new_count - 1} to {new_count}")
        await self.users.ensure_user(user_id)
        await self.backend.set(path, new_count)
        return await self.get_mood_counts(user_id)

    async def get_mood_counts(self, user_id: str, refresh: bool = False) -> MoodCounts:
        """Read the stored counts. A corrupt record, or `refresh=True`, triggers a recompute."""
        if refresh:
            return await self.recompute(user_id)
        path = mood_counts_path(user_id)
        raw = await self.backend.get(path)
        try:
            return MoodCounts.from_record(raw, path=path)
        except DecodeError as e:
            logger.warning(f"Stored mood counts for {user_id} are unreadable, recomputing: {e}")
            return await self.recompute(user_id)

    # --- Background recomputation ---

    def schedule_recompute(self, user_id: str) -> asyncio.Task:
        """Start a recompute without waiting for it. Failures are logged, never raised to the caller."""
        task = asyncio.create_task(self._recompute_logged(user_id))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _recompute_logged(self, user_id: str) -> Optional[MoodCounts]:
        try:
            return await self.recompute(user_id)
        except StorageError as e:
            logger.error(f"Could not recompute mood counts for user {user_id}: {e}", exc_info=True)
        except Exception as e:
            logger.error(f"Unexpected error recomputing mood counts for user {user_id}: {e}", exc_info=True)
        return None

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    async def wait_for_pending(self) -> None:
        """Wait until every scheduled recompute has finished."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        await self.wait_for_pending()
