"""Shared fixtures and builders for engine tests."""

import pytest

from captionarr.core.types import AudioAnalysisData, AudioSegment, AudioWord
from captionarr.templates import AnimationSelector
from captionarr.templates.context import RuleEvaluationContext


def make_transcript(*segments, metadata=None, transcript_id=None) -> AudioAnalysisData:
    """Build a transcript from lists of word dicts (one list per segment)."""
    return AudioAnalysisData.from_dict(
        {
            "id": transcript_id,
            "metadata": metadata or {},
            "segments": [{"words": list(words)} for words in segments],
        }
    )


def word(text: str, start: float = 0.0, end: float = 0.5, confidence: float = 1.0, **features) -> dict:
    return {"text": text, "start": start, "end": end, "confidence": confidence, **features}


def rule(rule_id: str, condition: str, plugin: str = "fade", priority=0, **extra) -> dict:
    return {
        "id": rule_id,
        "condition": condition,
        "priority": priority,
        "animation": {"pluginName": plugin, "params": {}, "timing": {"offset": ["0", "100%"]}},
        **extra,
    }


def template(*rules, variables=None, template_id: str = "tpl", version: str | None = None) -> dict:
    data = {"id": template_id, "rules": list(rules), "variables": variables or {}}
    if version is not None:
        data["version"] = version
    return data


def word_context(
    audio_word: AudioWord | None = None,
    segment: AudioSegment | None = None,
    audio_data: AudioAnalysisData | None = None,
    variables=None,
    **kwargs,
) -> RuleEvaluationContext:
    """Context for a single word; builds a one-word transcript when omitted."""
    audio_word = audio_word or AudioWord(text="hello", start=0.0, end=0.4, confidence=0.9)
    segment = segment or AudioSegment(words=(audio_word,), speaker="A", emotion="neutral")
    audio_data = audio_data or AudioAnalysisData(segments=(segment,))
    kwargs.setdefault("word_id", "0-0")
    return RuleEvaluationContext(
        audio_data=audio_data,
        variables=variables or {},
        word=audio_word,
        segment=segment,
        total_words=audio_data.total_words,
        total_segments=len(audio_data.segments),
        **kwargs,
    )


@pytest.fixture
def selector():
    return AnimationSelector(debug_mode=False)


@pytest.fixture
def context():
    return word_context()
