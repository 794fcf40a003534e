"""
Logical paths of the persisted layout.

    users/{userId}/profile             -> {id, displayName, email}
    users/{userId}/moodCounts          -> {happy, neutral, sad}
    journal_entries/{userId}/{entryId} -> JournalEntry
    ai_analysis/{entryId}              -> AIAnalysis
"""

from .tree import join_path

USERS = "users"
JOURNAL_ENTRIES = "journal_entries"
AI_ANALYSIS = "ai_analysis"


def profile_path(user_id: str) -> str:
    return join_path(USERS, user_id, "profile")


def mood_counts_path(user_id: str) -> str:
    return join_path(USERS, user_id, "moodCounts")


def entries_path(user_id: str) -> str:
    return join_path(JOURNAL_ENTRIES, user_id)


def entry_path(user_id: str, entry_id: str) -> str:
    return join_path(JOURNAL_ENTRIES, user_id, entry_id)


def analysis_path(entry_id: str) -> str:
    return join_path(AI_ANALYSIS, entry_id)
