"""API request/response models.

Request models check the JSON shape only. Semantic template checks
(expression syntax, priorities, variable references) belong to the
template parser and come back as validation errors, so rule fields are
typed loosely here.
"""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# =============================================================================
# TRANSCRIPT
# =============================================================================


class WordModel(_CamelModel):
    # Extra keys (emotion, volume, ...) are kept as word features
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    text: str
    start: float
    end: float
    confidence: float = 1.0
    id: str | None = None
    features: dict[str, Any] = Field(default_factory=dict)


class SegmentModel(_CamelModel):
    words: list[WordModel] = Field(default_factory=list)
    id: str | None = None
    start: float | None = None
    end: float | None = None
    text: str | None = None
    speaker: str | None = None
    emotion: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class AudioAnalysisModel(_CamelModel):
    segments: list[SegmentModel]
    metadata: dict[str, Any] = Field(default_factory=dict)
    id: str | None = None


# =============================================================================
# TEMPLATE
# =============================================================================


class TimingModel(_CamelModel):
    offset: list[Any] = Field(default_factory=lambda: ["0", "100%"])
    duration: str | None = None
    easing: str | None = None


class AnimationModel(_CamelModel):
    plugin_name: str = Field("", alias="pluginName")
    params: dict[str, Any] = Field(default_factory=dict)
    timing: TimingModel = Field(default_factory=TimingModel)


class RuleModel(_CamelModel):
    id: str = ""
    condition: Any = ""
    animation: AnimationModel
    priority: Any = 0
    intensity: Any = 1.0
    intensity_expression: str | None = Field(None, alias="intensityExpression")
    conflict_group: Any = Field("default", alias="conflictGroup")
    enabled: Any = True
    name: str | None = None
    description: str | None = None


class VariableModel(_CamelModel):
    expression: Any = ""
    cached: bool = False
    description: str | None = None


class TemplateModel(_CamelModel):
    id: str
    name: str | None = None
    version: str | None = None
    rules: list[RuleModel] = Field(default_factory=list)
    variables: dict[str, VariableModel] = Field(default_factory=dict)
    metadata: dict[str, Any] = Field(default_factory=dict)


class OptionsModel(_CamelModel):
    enable_caching: bool = Field(True, alias="enableCaching")
    max_concurrent_evaluations: int = Field(100, alias="maxConcurrentEvaluations", ge=1)
    enable_profiling: bool = Field(False, alias="enableProfiling")
    collect_debug_info: bool = Field(False, alias="collectDebugInfo")
    skip_low_confidence_words: bool = Field(True, alias="skipLowConfidenceWords")
    confidence_threshold: float | None = Field(None, alias="confidenceThreshold", ge=0.0, le=1.0)
    enabled_rule_ids: list[str] | None = Field(None, alias="enabledRuleIds")
    disabled_rule_ids: list[str] | None = Field(None, alias="disabledRuleIds")
    max_processing_time_ms: float | None = Field(None, alias="maxProcessingTimeMs", gt=0)


class ApplyTemplateRequest(_CamelModel):
    template: TemplateModel
    audio_data: AudioAnalysisModel = Field(alias="audioData")
    options: OptionsModel | None = None


# =============================================================================
# RESPONSES
# =============================================================================


class ValidationResponse(_CamelModel):
    is_valid: bool = Field(alias="isValid")
    errors: list[str]
    warnings: list[str]
    estimated_complexity: str = Field(alias="estimatedComplexity")
