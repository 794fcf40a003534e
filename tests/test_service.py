from datetime import date

import pytest

from conftest import FailingBackend
from reflectai.errors import AnalysisError, InvalidState, StorageError
from reflectai.models import NO_ANALYSIS_PLACEHOLDER, AIAnalysis, MoodCounts
from reflectai.service import JournalComponents

ANALYSIS_REPLY = '{"sentiment": -0.4, "emotions": {"sadness": 0.7}, "feedback": "Be kind to yourself today."}'


@pytest.mark.asyncio
async def test_save_entry_creates_with_placeholder_analysis(components):
    journal = components.for_user("u1")

    entry = await journal.save_entry("First entry", date(2024, 6, 1), mood="happy", title="Hello")

    assert entry.id
    assert entry.user_id == "u1"
    assert entry.ai_analysis == NO_ANALYSIS_PLACEHOLDER
    assert await journal.get_entry(entry.id) == entry


@pytest.mark.asyncio
async def test_save_entry_updates_the_entry_of_that_date(components):
    journal = components.for_user("u1")
    first = await journal.save_entry("Draft", "2024-06-01", mood="sad")

    second = await journal.save_entry("Final", "2024-06-01", mood="happy")

    assert second.id == first.id
    assert second.title == ""
    assert [e.content for e in await journal.list_entries()] == ["Final"]
    await components.aggregator.wait_for_pending()
    assert await journal.mood_counts() == MoodCounts(happy=1)


@pytest.mark.asyncio
async def test_editing_content_discards_stored_analysis(components):
    journal = components.for_user("u1")
    entry = await journal.save_entry("Old words", "2024-06-01")
    await components.analyses.save(AIAnalysis(entry_id=entry.id, feedback="About the old words"))
    await journal.entries.update(entry.model_copy(update={"ai_analysis": "About the old words"}))

    updated = await journal.update_entry(entry.id, content="New words")

    assert updated.ai_analysis == NO_ANALYSIS_PLACEHOLDER
    assert await components.analyses.get(entry.id) is None


@pytest.mark.asyncio
async def test_mood_only_edit_keeps_stored_analysis(components):
    journal = components.for_user("u1")
    entry = await journal.save_entry("Same words", "2024-06-01")
    await components.analyses.save(AIAnalysis(entry_id=entry.id, feedback="kept"))

    updated = await journal.update_entry(entry.id, mood="sad")

    assert updated.mood == "sad"
    assert (await components.analyses.get(entry.id)).feedback == "kept"


@pytest.mark.asyncio
async def test_update_of_missing_entry_returns_none(components):
    assert await components.for_user("u1").update_entry("missing", content="x") is None


@pytest.mark.asyncio
async def test_process_entry_classifies_and_analyzes(components, completion):
    completion.responses = ["sad", ANALYSIS_REPLY]
    journal = components.for_user("u1")

    result = await journal.process_entry("I miss home.", "2024-06-01", user_selected_mood="happy")

    assert result.error is None
    assert result.entry.mood == "sad"
    assert result.analysis.sentiment == -0.4
    assert result.entry.ai_analysis == "Be kind to yourself today."

    stored = await journal.get_entry(result.entry.id)
    assert stored.mood == "sad"
    assert stored.ai_analysis == "Be kind to yourself today."
    await components.aggregator.wait_for_pending()
    assert await journal.mood_counts() == MoodCounts(sad=1)


@pytest.mark.asyncio
async def test_process_entry_keeps_entry_when_analysis_fails(components, completion):
    completion.responses = [AnalysisError("offline"), AnalysisError("API call failed with status 503")]
    journal = components.for_user("u1")

    result = await journal.process_entry("Quiet day.", "2024-06-02", user_selected_mood="neutral")

    assert result.analysis is None
    assert "503" in result.error
    stored = await journal.get_entry(result.entry.id)
    assert stored.mood == "neutral"
    assert stored.ai_analysis == NO_ANALYSIS_PLACEHOLDER


@pytest.mark.asyncio
async def test_process_entry_without_completion_client(backend):
    components = JournalComponents(backend)
    journal = components.for_user("u1")

    result = await journal.process_entry("Offline day.", "2024-06-03")

    assert result.error == "Analysis is not configured"
    assert await journal.entry_for_date("2024-06-03") == result.entry
    with pytest.raises(AnalysisError):
        await journal.analyze(result.entry.id)
    await components.aclose()


@pytest.mark.asyncio
async def test_analyze_is_memoized_per_entry(components, completion):
    completion.responses = [ANALYSIS_REPLY]
    journal = components.for_user("u1")
    entry = await journal.save_entry("Tired.", "2024-06-01")

    first = await journal.analyze(entry.id)
    second = await journal.analyze(entry.id)

    assert first == second
    assert len(completion.calls) == 1
    assert await journal.analyze("missing") is None


@pytest.mark.asyncio
async def test_week_overview_and_date_lookups(components):
    journal = components.for_user("u1")
    for day in ("2024-01-05", "2024-01-10", "2024-02-01"):
        await journal.save_entry(f"Entry {day}", day)

    assert await journal.week_overview("2024-01-01", "2024-01-31") == {"2024-01-05": True, "2024-01-10": True}
    assert [e.date for e in await journal.entries_for_date("2024-02-01")] == ["2024-02-01"]
    assert await journal.entry_for_date("2024-03-01") is None


@pytest.mark.asyncio
async def test_users_do_not_see_each_other(components):
    mine = await components.for_user("u1").save_entry("Mine", "2024-06-01")

    theirs = components.for_user("u2")

    assert await theirs.get_entry(mine.id) is None
    assert await theirs.list_entries() == []


@pytest.mark.asyncio
async def test_anonymous_service_is_invalid_state(components):
    journal = components.for_user(None)

    with pytest.raises(InvalidState):
        await journal.save_entry("Who am I?", "2024-06-01")
    with pytest.raises(InvalidState):
        await journal.mood_counts()


@pytest.mark.asyncio
async def test_watch_entries_streams_changes(components):
    journal = components.for_user("u1")

    async with await journal.watch_entries() as subscription:
        assert await subscription.next_snapshot(timeout=1) == []
        entry = await journal.save_entry("Live", "2024-06-01")
        assert await subscription.next_snapshot(timeout=1) == [entry]


@pytest.mark.asyncio
async def test_components_close_completion_client(backend, completion):
    components = JournalComponents(backend, completion)
    await components.for_user("u1").save_entry("Bye", "2024-06-01")

    await components.aclose()

    assert completion.closed
    assert components.aggregator.pending_count == 0


@pytest.mark.asyncio
async def test_process_entry_keeps_entry_when_analysis_cannot_be_stored(completion):
    backend = FailingBackend(fail_writes=["ai_analysis"])
    completion.responses = ["happy", ANALYSIS_REPLY]
    components = JournalComponents(backend, completion)
    journal = components.for_user("u1")

    result = await journal.process_entry("Good day", "2024-06-01")

    assert result.analysis is None
    assert "ai_analysis" in result.error
    assert (await journal.get_entry(result.entry.id)).mood == "happy"
    await components.aclose()


@pytest.mark.asyncio
async def test_failed_content_edit_keeps_stored_analysis(completion):
    backend = FailingBackend()
    components = JournalComponents(backend, completion)
    journal = components.for_user("u1")
    entry = await journal.save_entry("Old words", "2024-06-01")
    await components.analyses.save(AIAnalysis(entry_id=entry.id, feedback="About the old words"))

    backend.fail_writes.append("journal_entries")
    with pytest.raises(StorageError):
        await journal.update_entry(entry.id, content="New words")

    assert (await components.analyses.get(entry.id)).feedback == "About the old words"
    await components.aclose()
