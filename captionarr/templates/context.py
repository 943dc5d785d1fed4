"""Evaluation context for expressions.

A RuleEvaluationContext is the read-only bundle an expression sees:
the current word and segment, the whole transcript, pre-computed template
variables and positional counters. One is built per word and discarded.

Template variables are computed against a transcript-level context
(see RuleEvaluationContext.for_variables) where word and segment are not
available.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from captionarr.core.types import AudioAnalysisData, AudioSegment, AudioWord

# Names an expression may start with
ROOT_NAMES = frozenset(
    {
        "word",
        "segment",
        "audioData",
        "variables",
        "wordIndex",
        "segmentIndex",
        "wordPositionInSegment",
        "totalWords",
        "totalSegments",
    }
)


def resolve_field(obj: Any, name: str) -> Any:
    """Resolve obj.<name> for expression member access.

    Raises:
        KeyError: obj has no such field
    """
    if isinstance(obj, Mapping):
        return obj[name]
    get_field = getattr(obj, "get_field", None)
    if get_field is not None:
        return get_field(name)
    if name == "length" and isinstance(obj, (str, list, tuple)):
        return len(obj)
    raise KeyError(name)


@dataclass(frozen=True)
class RuleEvaluationContext:
    """Read-only per-word context.

    word_index is the running index across the whole transcript;
    word_position_in_segment is the index within the segment.
    """

    audio_data: AudioAnalysisData
    variables: Mapping[str, Any] = field(default_factory=dict)
    word: AudioWord | None = None
    segment: AudioSegment | None = None
    word_index: int = 0
    segment_index: int = 0
    word_position_in_segment: int = 0
    total_words: int = 0
    total_segments: int = 0
    word_id: str | None = None

    def __post_init__(self):
        # Expressions must never be able to write to the variable store
        if not isinstance(self.variables, MappingProxyType):
            object.__setattr__(self, "variables", MappingProxyType(dict(self.variables)))

    @classmethod
    def for_variables(
        cls, audio_data: AudioAnalysisData, variables: Mapping[str, Any]
    ) -> "RuleEvaluationContext":
        """Transcript-level context used to compute template variables."""
        return cls(
            audio_data=audio_data,
            variables=variables,
            total_words=audio_data.total_words,
            total_segments=len(audio_data.segments),
        )

    @property
    def is_variable_scope(self) -> bool:
        return self.word is None

    @property
    def location(self) -> str:
        if self.word_id is None:
            return "template variables"
        return f"word {self.word_id}"

    def root(self, name: str) -> Any:
        """Value of a root identifier.

        Raises:
            LookupError: unknown root, or word/segment in variable scope
        """
        if name == "word":
            if self.word is None:
                raise LookupError("'word' is not available when computing template variables")
            return self.word
        if name == "segment":
            if self.segment is None:
                raise LookupError("'segment' is not available when computing template variables")
            return self.segment
        if name == "audioData":
            return self.audio_data
        if name == "variables":
            return self.variables
        if name == "wordIndex":
            return self.word_index
        if name == "segmentIndex":
            return self.segment_index
        if name == "wordPositionInSegment":
            return self.word_position_in_segment
        if name == "totalWords":
            return self.total_words
        if name == "totalSegments":
            return self.total_segments
        raise LookupError(f"Unknown reference '{name}'")
