"""Core data types for Captionarr.

All data structures are pure dataclasses with attribute access.
Input types (transcript and template) are frozen: the engine borrows them
for one call and never mutates them.

Every input type has a ``from_dict`` constructor that accepts the JSON-like
shapes produced by the editor (camelCase or snake_case keys). Output types
have ``to_dict`` producing camelCase keys for the rendering layer.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from functools import cached_property
from typing import Any

from captionarr.config import Config


def _pick(data: Mapping, *keys: str, default: Any = None) -> Any:
    """Return the first key present in data (camelCase/snake_case aliases)."""
    for key in keys:
        if key in data:
            return data[key]
    return default


# =============================================================================
# TRANSCRIPT
# =============================================================================

_WORD_KEYS = {"text", "start", "end", "confidence", "id", "features"}


@dataclass(frozen=True)
class AudioWord:
    """A single transcribed word with timing and optional audio features."""

    text: str
    start: float  # seconds
    end: float  # seconds
    confidence: float = 1.0
    id: str | None = None
    features: dict[str, Any] = field(default_factory=dict)  # emotion, volume, pitch, ...

    @property
    def duration(self) -> float:
        return self.end - self.start

    def get_field(self, name: str) -> Any:
        """Resolve a field referenced as ``word.<name>`` in an expression."""
        if name in ("text", "start", "end", "confidence", "id", "duration", "features"):
            return getattr(self, name)
        if name in self.features:
            return self.features[name]
        raise KeyError(name)

    @classmethod
    def from_dict(cls, data: Mapping) -> "AudioWord":
        # Unknown keys are treated as features so flat ASR payloads work
        features = dict(data.get("features") or {})
        for key, value in data.items():
            if key not in _WORD_KEYS:
                features[key] = value
        word_id = data.get("id")
        return cls(
            text=str(data["text"]),
            start=float(data["start"]),
            end=float(data["end"]),
            confidence=float(data.get("confidence", 1.0)),
            id=str(word_id) if word_id is not None else None,
            features=features,
        )


@dataclass(frozen=True)
class AudioSegment:
    """An ordered run of words, usually one utterance by one speaker."""

    words: tuple[AudioWord, ...]
    id: str | None = None
    start: float | None = None
    end: float | None = None
    text: str | None = None
    speaker: str | None = None
    emotion: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def duration(self) -> float:
        start = self.start if self.start is not None else (self.words[0].start if self.words else 0.0)
        end = self.end if self.end is not None else (self.words[-1].end if self.words else 0.0)
        return end - start

    def get_field(self, name: str) -> Any:
        """Resolve a field referenced as ``segment.<name>`` in an expression."""
        if name == "wordCount":
            return len(self.words)
        if name == "duration":
            return self.duration
        if name == "words":
            return list(self.words)
        if name == "text":
            if self.text is not None:
                return self.text
            return " ".join(w.text for w in self.words)
        if name in ("id", "start", "end", "speaker", "emotion", "metadata"):
            return getattr(self, name)
        if name in self.metadata:
            return self.metadata[name]
        raise KeyError(name)

    @classmethod
    def from_dict(cls, data: Mapping) -> "AudioSegment":
        words = data.get("words")
        if words is None:
            words = []
        if not isinstance(words, (list, tuple)):
            raise TypeError(f"segment words must be a list, got {type(words).__name__}")
        seg_id = data.get("id")
        start = data.get("start")
        end = data.get("end")
        return cls(
            words=tuple(w if isinstance(w, AudioWord) else AudioWord.from_dict(w) for w in words),
            id=str(seg_id) if seg_id is not None else None,
            start=float(start) if start is not None else None,
            end=float(end) if end is not None else None,
            text=data.get("text"),
            speaker=data.get("speaker"),
            emotion=data.get("emotion"),
            metadata=dict(data.get("metadata") or {}),
        )


@dataclass(frozen=True)
class AudioAnalysisData:
    """Whole transcript: segments in document order plus global metadata."""

    segments: tuple[AudioSegment, ...]
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str | None = None  # stable transcript identifier, preferred cache key

    @cached_property
    def words(self) -> tuple[AudioWord, ...]:
        """All words flattened in document order."""
        return tuple(w for segment in self.segments for w in segment.words)

    @property
    def total_words(self) -> int:
        return len(self.words)

    @property
    def duration(self) -> float:
        if "duration" in self.metadata:
            return float(self.metadata["duration"])
        if not self.words:
            return 0.0
        return self.words[-1].end

    def get_field(self, name: str) -> Any:
        """Resolve a field referenced as ``audioData.<name>`` in an expression."""
        if name == "segments":
            return list(self.segments)
        if name == "words":
            return list(self.words)
        if name == "totalWords":
            return self.total_words
        if name == "totalSegments":
            return len(self.segments)
        if name in ("metadata", "duration", "id"):
            return getattr(self, name)
        raise KeyError(name)

    @classmethod
    def from_dict(cls, data: Mapping) -> "AudioAnalysisData":
        segments = data.get("segments")
        if not isinstance(segments, (list, tuple)):
            raise TypeError("audio data must contain a 'segments' list")
        metadata = data.get("metadata") or {}
        if not isinstance(metadata, Mapping):
            raise TypeError("audio data 'metadata' must be a mapping")
        data_id = data.get("id")
        return cls(
            segments=tuple(s if isinstance(s, AudioSegment) else AudioSegment.from_dict(s) for s in segments),
            metadata=dict(metadata),
            id=str(data_id) if data_id is not None else None,
        )


# =============================================================================
# TEMPLATE
# =============================================================================


@dataclass(frozen=True)
class AnimationTiming:
    """Timing window of an animation relative to the word.

    offset holds (start, end) as CSS-like strings, e.g. ("0", "200ms").
    """

    offset: tuple[str, str] = ("0", "100%")
    duration: str | None = None
    easing: str | None = None

    def to_dict(self) -> dict:
        result: dict[str, Any] = {"offset": list(self.offset)}
        if self.duration is not None:
            result["duration"] = self.duration
        if self.easing is not None:
            result["easing"] = self.easing
        return result

    @classmethod
    def from_dict(cls, data: Mapping | None) -> "AnimationTiming":
        if not data:
            return cls()
        offset = data.get("offset", ("0", "100%"))
        # Left as-authored when malformed; the template parser reports it
        if isinstance(offset, list):
            offset = tuple(offset)
        return cls(offset=offset, duration=data.get("duration"), easing=data.get("easing"))


@dataclass(frozen=True)
class AnimationConfig:
    """Target animation of a rule: a named renderer plugin and its parameters."""

    plugin_name: str
    params: dict[str, Any] = field(default_factory=dict)
    timing: AnimationTiming = field(default_factory=AnimationTiming)

    def to_dict(self) -> dict:
        return {
            "pluginName": self.plugin_name,
            "params": dict(self.params),
            "timing": self.timing.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping) -> "AnimationConfig":
        return cls(
            plugin_name=_pick(data, "pluginName", "plugin_name", default=""),
            params=dict(data.get("params") or {}),
            timing=AnimationTiming.from_dict(data.get("timing")),
        )


@dataclass(frozen=True)
class TemplateRule:
    """A condition + animation pair with a priority.

    priority: higher wins when several rules match the same word.
    conflict_group: rules only compete with rules of the same group;
        winners of different groups stack on the word.
    intensity_expression: optional expression overriding the declared
        intensity for a matched word.
    """

    id: str
    condition: str
    animation: AnimationConfig
    priority: float = 0
    intensity: float = 1.0
    intensity_expression: str | None = None
    conflict_group: str = "default"
    enabled: bool = True
    name: str | None = None
    description: str | None = None

    @classmethod
    def from_dict(cls, data: Mapping) -> "TemplateRule":
        animation = data.get("animation")
        if isinstance(animation, Mapping):
            animation = AnimationConfig.from_dict(animation)
        elif not isinstance(animation, AnimationConfig):
            animation = AnimationConfig(plugin_name="")
        return cls(
            id=str(_pick(data, "id", default="")),
            condition=data.get("condition", ""),
            animation=animation,
            priority=data.get("priority", 0),
            intensity=data.get("intensity", 1.0),
            intensity_expression=_pick(data, "intensityExpression", "intensity_expression"),
            conflict_group=_pick(data, "conflictGroup", "conflict_group", default="default"),
            enabled=data.get("enabled", True),
            name=data.get("name"),
            description=data.get("description"),
        )


@dataclass(frozen=True)
class TemplateVariable:
    """Named template-scoped expression, computed once per transcript.

    cached: memoize the value across calls for the same transcript.
    """

    name: str
    expression: str
    cached: bool = False
    description: str | None = None

    @classmethod
    def from_dict(cls, name: str, data: Mapping | str) -> "TemplateVariable":
        if isinstance(data, str):
            return cls(name=name, expression=data)
        return cls(
            name=name,
            expression=data.get("expression", ""),
            cached=bool(data.get("cached", False)),
            description=data.get("description"),
        )


@dataclass(frozen=True)
class SubtitleTemplate:
    """Author-defined bundle of rules and variables."""

    id: str
    rules: tuple[TemplateRule, ...]
    variables: tuple[TemplateVariable, ...] = ()
    name: str | None = None
    version: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def cache_key(self) -> tuple[str, str | None]:
        """Identity used by the compiled-template cache."""
        return (self.id, self.version)

    @classmethod
    def from_dict(cls, data: Mapping) -> "SubtitleTemplate":
        rules = data.get("rules") or []
        if not isinstance(rules, (list, tuple)):
            raise TypeError("template 'rules' must be a list")

        raw_vars = data.get("variables") or {}
        if isinstance(raw_vars, Mapping):
            variables = tuple(TemplateVariable.from_dict(str(n), v) for n, v in raw_vars.items())
        elif isinstance(raw_vars, (list, tuple)):
            variables = tuple(
                v if isinstance(v, TemplateVariable) else TemplateVariable.from_dict(str(v.get("name", "")), v)
                for v in raw_vars
            )
        else:
            raise TypeError("template 'variables' must be a mapping or a list")

        version = data.get("version")
        return cls(
            id=str(data.get("id") or ""),
            rules=tuple(r if isinstance(r, TemplateRule) else TemplateRule.from_dict(r) for r in rules),
            variables=variables,
            name=data.get("name"),
            version=str(version) if version is not None else None,
            metadata=dict(data.get("metadata") or {}),
        )


# =============================================================================
# OPTIONS
# =============================================================================


@dataclass
class BatchSelectionOptions:
    """Options for a whole-transcript template application.

    max_concurrent_evaluations is accepted for API compatibility with batching
    hosts; evaluation is always sequential and in document order.
    max_processing_time_ms: when set, the word loop stops once exceeded and a
    partial result is returned.
    """

    # Performance optimization
    enable_caching: bool = True
    max_concurrent_evaluations: int = 100

    # Debugging options
    enable_profiling: bool = False
    collect_debug_info: bool = False

    # Filtering options
    skip_low_confidence_words: bool = True
    confidence_threshold: float = field(default_factory=lambda: Config.DEFAULT_CONFIDENCE_THRESHOLD)

    # Rule filtering
    enabled_rule_ids: list[str] | None = None
    disabled_rule_ids: list[str] | None = None

    # Deadline
    max_processing_time_ms: float | None = None

    def __post_init__(self):
        if self.max_concurrent_evaluations < 1:
            raise ValueError("max_concurrent_evaluations must be >= 1")
        if not 0.0 <= self.confidence_threshold <= 1.0:
            raise ValueError("confidence_threshold must be between 0 and 1")

    @classmethod
    def from_dict(cls, data: Mapping | None) -> "BatchSelectionOptions":
        if not data:
            return cls()
        kwargs: dict[str, Any] = {}
        aliases = {
            "enable_caching": ("enableCaching", "enable_caching"),
            "max_concurrent_evaluations": ("maxConcurrentEvaluations", "max_concurrent_evaluations"),
            "enable_profiling": ("enableProfiling", "enable_profiling"),
            "collect_debug_info": ("collectDebugInfo", "collect_debug_info"),
            "skip_low_confidence_words": ("skipLowConfidenceWords", "skip_low_confidence_words"),
            "confidence_threshold": ("confidenceThreshold", "confidence_threshold"),
            "enabled_rule_ids": ("enabledRuleIds", "enabled_rule_ids"),
            "disabled_rule_ids": ("disabledRuleIds", "disabled_rule_ids"),
            "max_processing_time_ms": ("maxProcessingTimeMs", "max_processing_time_ms"),
        }
        for attr, keys in aliases.items():
            value = _pick(data, *keys, default=None)
            if value is not None:
                kwargs[attr] = value
        return cls(**kwargs)


# =============================================================================
# RESULTS
# =============================================================================


@dataclass(frozen=True)
class SelectedAnimation:
    """One animation chosen for a word."""

    plugin_name: str
    params: dict[str, Any]
    timing: AnimationTiming
    intensity: float
    rule_id: str

    def to_dict(self) -> dict:
        return {
            "pluginName": self.plugin_name,
            "params": dict(self.params),
            "timing": self.timing.to_dict(),
            "intensity": self.intensity,
            "ruleId": self.rule_id,
        }


@dataclass
class AnimationSelection:
    """Per-word output: selected animations in application order."""

    word_id: str
    animations: list[SelectedAnimation] = field(default_factory=list)
    applied_rule_ids: list[str] = field(default_factory=list)
    execution_time: float = 0.0  # ms

    def to_dict(self) -> dict:
        return {
            "wordId": self.word_id,
            "animations": [a.to_dict() for a in self.animations],
            "appliedRuleIds": list(self.applied_rule_ids),
            "executionTime": self.execution_time,
        }


@dataclass(frozen=True)
class AppliedRule:
    """Flattened (rule, word) application in the aggregate result."""

    rule_id: str
    word_id: str
    animation: AnimationConfig
    match_strength: float

    def to_dict(self) -> dict:
        return {
            "ruleId": self.rule_id,
            "wordId": self.word_id,
            "animation": self.animation.to_dict(),
            "matchStrength": self.match_strength,
        }


@dataclass
class PerformanceCounters:
    processing_time: float = 0.0  # ms
    rules_evaluated: int = 0
    animations_applied: int = 0
    words_processed: int = 0
    words_skipped: int = 0

    def to_dict(self) -> dict:
        return {
            "processingTime": self.processing_time,
            "rulesEvaluated": self.rules_evaluated,
            "animationsApplied": self.animations_applied,
            "wordsProcessed": self.words_processed,
            "wordsSkipped": self.words_skipped,
        }


@dataclass
class TemplateApplicationResult:
    """Aggregate result of one whole-transcript run.

    completed is False only when a processing deadline cut the run short.
    debug holds per-word selections when collect_debug_info is enabled.
    """

    success: bool
    applied_rules: list[AppliedRule] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    performance: PerformanceCounters = field(default_factory=PerformanceCounters)
    completed: bool = True
    debug: list[AnimationSelection] | None = None

    def to_dict(self) -> dict:
        result = {
            "success": self.success,
            "appliedRules": [r.to_dict() for r in self.applied_rules],
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "performance": self.performance.to_dict(),
            "completed": self.completed,
        }
        if self.debug is not None:
            result["debug"] = [s.to_dict() for s in self.debug]
        return result
