"""
AI analysis of journal entries.

`AnalysisService.analyze_entry` is memoized per entry id: an analysis stored under
`ai_analysis/{entryId}` is returned as-is and the completion service is never
called twice for the same entry. Completion text is parsed leniently; when no
structured JSON can be read the raw text becomes the feedback and the outcome is
reported as `ParseOutcome.DEGRADED` instead of raising.
"""

import json
import logging
import math
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .errors import DecodeError, InvalidArgument
from .layout import analysis_path
from .models import DEFAULT_MOOD, MOODS, AIAnalysis, JournalEntry
from .tree import TreeBackend

logger = logging.getLogger(__name__)


class PromptStyle(str, Enum):
    STRUCTURED = "structured"
    FREE_TEXT = "free_text"


class ParseOutcome(str, Enum):
    PARSED = "parsed"
    DEGRADED = "degraded"


STRUCTURED_SYSTEM_PROMPT = (
    "You are a supportive, non-clinical assistant that reads personal journal entries. "
    "Provide sentiment analysis, identify emotions, and give brief supportive feedback. "
    "Do not diagnose and do not give medical advice."
)

STRUCTURED_USER_TEMPLATE = (
    "Analyze this journal entry and provide: "
    "1. A sentiment score from -1.0 (very negative) to 1.0 (very positive), "
    "2. The main emotions expressed (joy, sadness, anxiety, etc.) as a mapping from emotion to intensity between 0 and 1, and "
    "3. Brief supportive feedback. "
    "Format as JSON with fields 'sentiment', 'emotions', and 'feedback'. "
    "Here's the entry: {content}"
)

SUPPORTIVE_SYSTEM_PROMPT = (
    "You are a supportive and empathetic listener. Respond directly to the journal entry with "
    "emotionally supportive words. Be concise but warm. Address the user directly. Validate their "
    "feelings and offer gentle perspective. Don't analyze the entry academically and don't diagnose."
)

MOOD_SYSTEM_PROMPT = (
    "Analyze the sentiment of the following journal entry. Respond with ONLY one of these three "
    "words: 'happy', 'neutral', or 'sad'. No other text or explanation."
)


def build_messages(content: str, style: PromptStyle = PromptStyle.STRUCTURED) -> List[Dict[str, str]]:
    if style == PromptStyle.FREE_TEXT:
        return [
            {"role": "system", "content": SUPPORTIVE_SYSTEM_PROMPT},
            {"role": "user", "content": content},
        ]
    return [
        {"role": "system", "content": STRUCTURED_SYSTEM_PROMPT},
        {"role": "user", "content": STRUCTURED_USER_TEMPLATE.format(content=content)},
    ]


def _emotion_name(name: Any) -> str:
    # Emotion names become storage keys, which cannot contain "/"
    return str(name).replace("/", "-").strip()


def _to_float(value: Any) -> float:
    if isinstance(value, bool):
        raise ValueError(f"Expected a number, got {value!r}")
    result = float(value)
    if math.isnan(result) or math.isinf(result):
        raise ValueError(f"Expected a finite number, got {value!r}")
    return result


def parse_completion(raw: str, entry_id: str) -> Tuple[AIAnalysis, ParseOutcome]:
    """
    Read `{sentiment, emotions, feedback}` from the span between the first `{` and
    the last `}` of the completion text.

    Missing fields default to 0.0, {} and the raw text. Sentiment is clamped to
    [-1, 1]. Anything unparseable yields the raw text as feedback with
    `ParseOutcome.DEGRADED`.
    """
    degraded = AIAnalysis(entry_id=entry_id, sentiment=0.0, emotions={}, feedback=raw)
    start = raw.find("{")
    end = raw.rfind("}")
    if start < 0 or end <= start:
        return degraded, ParseOutcome.DEGRADED
    try:
        data = json.loads(raw[start:end + 1])
        if not isinstance(data, dict):
            return degraded, ParseOutcome.DEGRADED

        sentiment = 0.0
        if data.get("sentiment") is not None:
            sentiment = max(-1.0, min(1.0, _to_float(data["sentiment"])))

        emotions: Dict[str, float] = {}
        if isinstance(data.get("emotions"), dict):
            for name, score in data["emotions"].items():
                key = _emotion_name(name)
                if key:
                    emotions[key] = _to_float(score)

        feedback = data.get("feedback")
        if not isinstance(feedback, str):
            feedback = raw
    except (ValueError, TypeError) as e:
        logger.debug(f"Could not parse completion as JSON: {e}")
        return degraded, ParseOutcome.DEGRADED

    analysis = AIAnalysis(entry_id=entry_id, sentiment=sentiment, emotions=emotions, feedback=feedback)
    return analysis, ParseOutcome.PARSED


def normalize_mood(text: str) -> str:
    word = text.strip().strip(".!'\"").strip().lower()
    return word if word in MOODS else DEFAULT_MOOD


class AnalysisRepository:
    """Persistence for `ai_analysis/{entryId}` records."""

    def __init__(self, backend: TreeBackend):
        self.backend = backend

    async def get(self, entry_id: str) -> Optional[AIAnalysis]:
        path = analysis_path(entry_id)
        raw = await self.backend.get(path)
        if raw is None:
            return None
        try:
            return AIAnalysis.from_record(raw, entry_id, path=path)
        except DecodeError as e:
            logger.warning(f"Ignoring unreadable analysis record at {path}: {e}")
            return None

    async def save(self, analysis: AIAnalysis) -> None:
        if not analysis.entry_id:
            raise InvalidArgument("Analysis must reference an entry id")
        await self.backend.set(analysis_path(analysis.entry_id), analysis.to_record())

    async def delete(self, entry_id: str) -> None:
        await self.backend.delete(analysis_path(entry_id))


class AnalysisService:
    def __init__(self, completion, analyses: AnalysisRepository, entries=None):
        """
        Args:
            completion: anything with `async complete(messages, temperature=None, max_tokens=None) -> str`
            analyses: where analyses are stored
            entries: optional EntryStore; when given, the feedback is written back
                into the entry's `aiAnalysis` field
        """
        self.completion = completion
        self.analyses = analyses
        self.entries = entries

    async def analyze_entry(self, entry: JournalEntry, style: PromptStyle = PromptStyle.STRUCTURED) -> AIAnalysis:
        if not entry.id:
            raise InvalidArgument("Entry must be saved before it can be analyzed")

        existing = await self.analyses.get(entry.id)
        if existing is not None:
            logger.info(f"Reusing stored analysis for entry {entry.id}")
            return existing

        text = await self.completion.complete(build_messages(entry.content, style))
        analysis, outcome = parse_completion(text, entry.id)
        if outcome == ParseOutcome.DEGRADED and style == PromptStyle.STRUCTURED:
            logger.warning(f"Completion for entry {entry.id} was not valid JSON; storing raw feedback")

        await self.analyses.save(analysis)
        if self.entries is not None:
            await self.entries.update(entry.model_copy(update={"ai_analysis": analysis.feedback}))
        return analysis

    async def classify_mood(self, content: str) -> str:
        """Ask for a single mood word. Anything other than happy/neutral/sad becomes neutral."""
        text = await self.completion.complete(
            [
                {"role": "system", "content": MOOD_SYSTEM_PROMPT},
                {"role": "user", "content": content},
            ],
            temperature=0.0,
            max_tokens=5,
        )
        mood = normalize_mood(text)
        logger.info(f"Sentiment analysis result: {mood}")
        return mood

    async def supportive_reply(self, content: str) -> str:
        return await self.completion.complete(build_messages(content, PromptStyle.FREE_TEXT))
