"""
Date lookups over a user's entry collection without a real secondary index.

Everything here is a linear scan or an equality filter over
`journal_entries/{userId}`. ISO-8601 date strings sort lexicographically in
chronological order, so range checks are plain string comparisons. Lookups are
O(entries) per call; `find_owner` is O(all entries of all users).
"""

import logging
from datetime import date as date_type
from typing import Any, Dict, Iterable, List, Optional, Union

from .errors import DecodeError, InvalidArgument
from .layout import JOURNAL_ENTRIES, entries_path, entry_path
from .models import JournalEntry, normalize_date
from .tree import TreeBackend, join_path

logger = logging.getLogger(__name__)

DateLike = Union[str, date_type]


def to_date_string(value: DateLike) -> str:
    try:
        return normalize_date(value)
    except ValueError as e:
        raise InvalidArgument(str(e)) from e


def decode_entries(raw: Any, user_id: str) -> List[JournalEntry]:
    """Decode a `journal_entries/{userId}` subtree in key order, skipping bad records."""
    entries: List[JournalEntry] = []
    if not isinstance(raw, dict):
        return entries
    base = entries_path(user_id)
    for key in sorted(raw):
        path = join_path(base, key)
        try:
            entries.append(JournalEntry.from_record(raw[key], key=key, user_id=user_id, path=path))
        except DecodeError as e:
            logger.warning(f"Skipping undecodable entry at {path}: {e}")
    return entries


def authoritative_entry(entries: Iterable[JournalEntry]) -> Optional[JournalEntry]:
    """The entry that speaks for its date: newest timestamp, then the later key."""
    entries = list(entries)
    if not entries:
        return None
    return max(entries, key=lambda e: (e.timestamp, e.id))


def latest_per_date(entries: Iterable[JournalEntry]) -> Dict[str, JournalEntry]:
    by_date: Dict[str, List[JournalEntry]] = {}
    for entry in entries:
        by_date.setdefault(entry.date, []).append(entry)
    return {day: authoritative_entry(group) for day, group in sorted(by_date.items())}


class DateIndex:
    def __init__(self, backend: TreeBackend):
        self.backend = backend

    async def entries_for_date(self, user_id: str, day: DateLike) -> List[JournalEntry]:
        """All entries on `day`, in the order the collection yields them (by key)."""
        date_string = to_date_string(day)
        matches = await self.backend.query(entries_path(user_id), "date", date_string)
        return decode_entries(matches, user_id)

    async def has_entry_for_date(self, user_id: str, day: DateLike) -> bool:
        date_string = to_date_string(day)
        matches = await self.backend.query(entries_path(user_id), "date", date_string, limit=1)
        return len(matches) > 0

    async def entry_for_date(self, user_id: str, day: DateLike) -> Optional[JournalEntry]:
        return authoritative_entry(await self.entries_for_date(user_id, day))

    async def entry_dates_for_range(self, user_id: str, start: DateLike, end: DateLike) -> Dict[str, bool]:
        """`{date: True}` for every date in [start, end] that has at least one entry."""
        start_string = to_date_string(start)
        end_string = to_date_string(end)
        result: Dict[str, bool] = {}
        for entry in decode_entries(await self.backend.get(entries_path(user_id)), user_id):
            if start_string <= entry.date <= end_string:
                result[entry.date] = True
        logger.debug(f"Found entries on {len(result)} different dates between {start_string} and {end_string}")
        return result

    async def find_owner(self, entry_id: str) -> Optional[str]:
        """Scan every user's collection for `entry_id`, stopping at the first match."""
        for user_id in await self.backend.child_keys(JOURNAL_ENTRIES):
            if await self.backend.exists(entry_path(user_id, entry_id)):
                return user_id
        return None
