"""Core types."""

from captionarr.core.types import (
    AnimationConfig,
    AnimationSelection,
    AnimationTiming,
    AppliedRule,
    AudioAnalysisData,
    AudioSegment,
    AudioWord,
    BatchSelectionOptions,
    PerformanceCounters,
    SelectedAnimation,
    SubtitleTemplate,
    TemplateApplicationResult,
    TemplateRule,
    TemplateVariable,
)

__all__ = [
    "AnimationConfig",
    "AnimationSelection",
    "AnimationTiming",
    "AppliedRule",
    "AudioAnalysisData",
    "AudioSegment",
    "AudioWord",
    "BatchSelectionOptions",
    "PerformanceCounters",
    "SelectedAnimation",
    "SubtitleTemplate",
    "TemplateApplicationResult",
    "TemplateRule",
    "TemplateVariable",
]
