import pytest

from conftest import FakeCompletion
from reflectai.analysis import (
    AnalysisRepository,
    AnalysisService,
    ParseOutcome,
    PromptStyle,
    build_messages,
    normalize_mood,
    parse_completion,
)
from reflectai.errors import AnalysisError, InvalidArgument
from reflectai.models import AIAnalysis, JournalEntry
from reflectai.tree import MemoryTreeBackend

STRUCTURED_REPLY = (
    'Here is my analysis: {"sentiment": 0.6, "emotions": {"joy": 0.8, "relief": 0.3}, '
    '"feedback": "It sounds like a good day."} Take care!'
)


# -------------------------------------------------
# Parsing
# -------------------------------------------------

def test_parse_completion_reads_embedded_json():
    analysis, outcome = parse_completion(STRUCTURED_REPLY, "e1")

    assert outcome == ParseOutcome.PARSED
    assert analysis == AIAnalysis(
        entry_id="e1",
        sentiment=0.6,
        emotions={"joy": 0.8, "relief": 0.3},
        feedback="It sounds like a good day.",
    )


def test_parse_completion_without_braces_degrades():
    raw = "You seem to be carrying a lot today. Be gentle with yourself."

    analysis, outcome = parse_completion(raw, "e1")

    assert outcome == ParseOutcome.DEGRADED
    assert analysis.sentiment == 0.0
    assert analysis.emotions == {}
    assert analysis.feedback == raw


@pytest.mark.parametrize("raw", ["{not json}", "} backwards {", '{"sentiment": "very"}', "[1, 2] {1}"])
def test_parse_completion_never_raises_on_garbage(raw):
    analysis, outcome = parse_completion(raw, "e1")

    assert outcome == ParseOutcome.DEGRADED
    assert analysis.feedback == raw


def test_parse_completion_defaults_missing_fields():
    raw = '{"sentiment": -0.2}'

    analysis, outcome = parse_completion(raw, "e1")

    assert outcome == ParseOutcome.PARSED
    assert analysis.sentiment == -0.2
    assert analysis.emotions == {}
    assert analysis.feedback == raw


def test_parse_completion_clamps_sentiment():
    analysis, _ = parse_completion('{"sentiment": 4, "feedback": "wow"}', "e1")
    assert analysis.sentiment == 1.0


@pytest.mark.parametrize(
    "text, mood",
    [("happy", "happy"), (" Sad.\n", "sad"), ("'neutral'", "neutral"), ("I think happy", "neutral"), ("", "neutral")],
)
def test_normalize_mood(text, mood):
    assert normalize_mood(text) == mood


def test_build_messages_styles():
    structured = build_messages("my day", PromptStyle.STRUCTURED)
    free_text = build_messages("my day", PromptStyle.FREE_TEXT)

    assert [m["role"] for m in structured] == ["system", "user"]
    assert "my day" in structured[1]["content"] and "JSON" in structured[1]["content"]
    assert free_text[1]["content"] == "my day"


# -------------------------------------------------
# Service
# -------------------------------------------------

@pytest.fixture()
def entry():
    return JournalEntry(id="e1", user_id="u1", content="Went hiking with friends.", date="2024-06-01")


@pytest.mark.asyncio
async def test_analyze_entry_is_memoized(entry):
    backend = MemoryTreeBackend()
    completion = FakeCompletion(STRUCTURED_REPLY, '{"feedback": "second"}')
    service = AnalysisService(completion, AnalysisRepository(backend))

    first = await service.analyze_entry(entry)
    second = await service.analyze_entry(entry)

    assert len(completion.calls) == 1
    assert second == first
    assert await backend.get("ai_analysis/e1/feedback") == "It sounds like a good day."


@pytest.mark.asyncio
async def test_analyze_entry_stores_degraded_result(entry):
    backend = MemoryTreeBackend()
    service = AnalysisService(FakeCompletion("Plain words only."), AnalysisRepository(backend))

    analysis = await service.analyze_entry(entry)

    assert analysis.feedback == "Plain words only."
    assert await AnalysisRepository(backend).get("e1") == analysis


@pytest.mark.asyncio
async def test_analyze_entry_failure_propagates_and_stores_nothing(entry):
    backend = MemoryTreeBackend()
    service = AnalysisService(FakeCompletion(AnalysisError("rate limited", status_code=429)), AnalysisRepository(backend))

    with pytest.raises(AnalysisError) as excinfo:
        await service.analyze_entry(entry)

    assert excinfo.value.status_code == 429
    assert await backend.get("ai_analysis/e1") is None


@pytest.mark.asyncio
async def test_analyze_entry_requires_a_saved_entry():
    service = AnalysisService(FakeCompletion(STRUCTURED_REPLY), AnalysisRepository(MemoryTreeBackend()))

    with pytest.raises(InvalidArgument):
        await service.analyze_entry(JournalEntry(date="2024-06-01"))


@pytest.mark.asyncio
async def test_analyze_entry_writes_feedback_back_to_entry(store, backend):
    entry_id = await store.create(JournalEntry(user_id="u1", content="Long day.", date="2024-06-01"))
    entry = await store.get_by_id(entry_id)
    service = AnalysisService(FakeCompletion(STRUCTURED_REPLY), AnalysisRepository(backend), store)

    await service.analyze_entry(entry)

    assert (await store.get_by_id(entry_id)).ai_analysis == "It sounds like a good day."


@pytest.mark.asyncio
async def test_unreadable_stored_analysis_is_treated_as_missing(entry):
    backend = MemoryTreeBackend({"ai_analysis": {"e1": {"sentiment": "bad"}}})
    completion = FakeCompletion(STRUCTURED_REPLY)
    service = AnalysisService(completion, AnalysisRepository(backend))

    analysis = await service.analyze_entry(entry)

    assert len(completion.calls) == 1
    assert analysis.sentiment == 0.6


@pytest.mark.asyncio
async def test_classify_mood_uses_a_short_deterministic_request():
    completion = FakeCompletion("Sad")
    service = AnalysisService(completion, AnalysisRepository(MemoryTreeBackend()))

    assert await service.classify_mood("Lost my keys again.") == "sad"
    assert completion.calls[0]["temperature"] == 0.0
    assert completion.calls[0]["max_tokens"] == 5


@pytest.mark.asyncio
async def test_supportive_reply_uses_free_text_prompt():
    completion = FakeCompletion("That sounds hard.")
    service = AnalysisService(completion, AnalysisRepository(MemoryTreeBackend()))

    assert await service.supportive_reply("Rough week.") == "That sounds hard."
    assert completion.calls[0]["messages"][1]["content"] == "Rough week."


@pytest.mark.asyncio
async def test_repository_save_requires_entry_id():
    with pytest.raises(InvalidArgument):
        await AnalysisRepository(MemoryTreeBackend()).save(AIAnalysis(feedback="orphan"))


def test_parse_completion_makes_emotion_names_storable():
    raw = '{"sentiment": 0.2, "emotions": {"love/affection": 0.7, " ": 0.1, "calm": 0.4}, "feedback": "Nice."}'

    analysis, outcome = parse_completion(raw, "e1")

    assert outcome == ParseOutcome.PARSED
    assert analysis.emotions == {"love-affection": 0.7, "calm": 0.4}


@pytest.mark.asyncio
async def test_analysis_with_slashed_emotion_name_is_stored(entry):
    backend = MemoryTreeBackend()
    reply = '{"sentiment": 0.2, "emotions": {"love/affection": 0.7}, "feedback": "Nice."}'
    service = AnalysisService(FakeCompletion(reply), AnalysisRepository(backend))

    analysis = await service.analyze_entry(entry)

    assert await AnalysisRepository(backend).get("e1") == analysis
    assert await backend.get("ai_analysis/e1/emotions") == {"love-affection": 0.7}
