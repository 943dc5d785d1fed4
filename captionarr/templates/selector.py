"""Animation selector.

Public entry point of the engine. Applies a template to a whole transcript:

    NotStarted -> Compiling -> ValidationFailed
                            -> VariablesComputed -> EvaluatingWords -> Completed

The call returns a TemplateApplicationResult in every case. Rule and
expression failures are recovered per word and reported in warnings;
unexpected failures (e.g. a malformed transcript) produce success=False
with a descriptive error instead of an exception.

Processing is sequential and in document order, so repeated calls with the
same inputs give identical results.
"""

import asyncio
import logging
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

from captionarr.config import Config
from captionarr.core.types import (
    AnimationSelection,
    AppliedRule,
    AudioAnalysisData,
    AudioSegment,
    AudioWord,
    BatchSelectionOptions,
    PerformanceCounters,
    SelectedAnimation,
    SubtitleTemplate,
    TemplateApplicationResult,
)
from captionarr.templates.cache import LRUCache, VariableStore
from captionarr.templates.compiled import (
    CompiledRule,
    CompiledTemplate,
    TemplateValidationResult,
    ValidationIssue,
)
from captionarr.templates.context import RuleEvaluationContext
from captionarr.templates.evaluator import ExpressionEvaluator
from captionarr.templates.parser import TemplateParser
from captionarr.templates.rule_engine import RuleEngine, RuleEvaluationResult, RuleStats

logger = logging.getLogger(__name__)


@dataclass
class PerformanceStats:
    """Point-in-time snapshot of selector caches and rule statistics."""

    compiled_templates: int = 0
    cached_variables: int = 0
    template_cache_hits: int = 0
    template_cache_misses: int = 0
    variable_cache_hits: int = 0
    variable_cache_misses: int = 0
    rule_stats: dict[str, dict[str, RuleStats]] = field(default_factory=dict)  # template id -> rule id

    def to_dict(self) -> dict:
        return {
            "compiledTemplates": self.compiled_templates,
            "cachedVariables": self.cached_variables,
            "templateCacheHits": self.template_cache_hits,
            "templateCacheMisses": self.template_cache_misses,
            "variableCacheHits": self.variable_cache_hits,
            "variableCacheMisses": self.variable_cache_misses,
            "ruleStats": {
                template_id: {rule_id: s.to_dict() for rule_id, s in rules.items()}
                for template_id, rules in self.rule_stats.items()
            },
        }


class AnimationSelector:
    """Selects animations for every word of a transcript from template rules.

    Usage:
        selector = AnimationSelector()
        result = selector.apply_template(template, audio_data)
        if result.success:
            for applied in result.applied_rules:
                render(applied.word_id, applied.animation)
    """

    def __init__(
        self,
        debug_mode: bool | None = None,
        template_cache_size: int | None = None,
        variable_cache_size: int | None = None,
        evaluator: ExpressionEvaluator | None = None,
    ):
        debug_mode = Config.DEBUG_MODE if debug_mode is None else debug_mode
        self._evaluator = evaluator or ExpressionEvaluator()
        self._parser = TemplateParser()
        self._rule_engine = RuleEngine(debug_mode=debug_mode, evaluator=self._evaluator)
        self._compiled_templates: LRUCache[CompiledTemplate] = LRUCache(
            template_cache_size or Config.COMPILED_TEMPLATE_CACHE_SIZE
        )
        self._variable_cache: LRUCache[Any] = LRUCache(variable_cache_size or Config.VARIABLE_CACHE_SIZE)

    @property
    def evaluator(self) -> ExpressionEvaluator:
        return self._evaluator

    # =========================================================================
    # Whole transcript
    # =========================================================================

    def apply_template(
        self,
        template: SubtitleTemplate | Mapping,
        audio_data: AudioAnalysisData | Mapping,
        options: BatchSelectionOptions | Mapping | None = None,
    ) -> TemplateApplicationResult:
        """Apply template to the entire transcript and return all animation selections."""
        start = time.perf_counter()

        try:
            options = _coerce_options(options)

            if isinstance(template, Mapping):
                try:
                    template = SubtitleTemplate.from_dict(template)
                except (TypeError, ValueError, KeyError, AttributeError) as e:
                    return _failed(start, [f"Invalid template structure: {e}"], [])

            compiled = self.get_compiled_template(template, use_cache=options.enable_caching)
            if not compiled.is_valid:
                logger.info(f"Template '{template.id}' rejected: {len(compiled.validation_errors)} validation error(s)")
                return _failed(
                    start,
                    list(compiled.validation_errors),
                    [f"Template {template.id} has validation errors"],
                )

            if isinstance(audio_data, Mapping):
                audio_data = AudioAnalysisData.from_dict(audio_data)
            elif not isinstance(audio_data, AudioAnalysisData):
                raise TypeError(f"expected audio analysis data, got {type(audio_data).__name__}")

            return self._apply_compiled(compiled, audio_data, options, start)

        except Exception as e:
            logger.exception(f"Template application failed: {e}")
            return _failed(start, [f"Template application failed: {e}"], [])

    async def apply_template_async(
        self,
        template: SubtitleTemplate | Mapping,
        audio_data: AudioAnalysisData | Mapping,
        options: BatchSelectionOptions | Mapping | None = None,
    ) -> TemplateApplicationResult:
        """Run apply_template in a worker thread for async hosts."""
        return await asyncio.to_thread(self.apply_template, template, audio_data, options)

    def _apply_compiled(
        self,
        compiled: CompiledTemplate,
        audio_data: AudioAnalysisData,
        options: BatchSelectionOptions,
        start: float,
    ) -> TemplateApplicationResult:
        store = VariableStore(cache=self._variable_cache if options.enable_caching else None)
        variables = store.compute(compiled, audio_data, self._evaluator)
        logger.debug(
            f"Template '{compiled.template_id}': {store.evaluated} variable(s) evaluated, "
            f"{store.cache_hits} from cache"
        )

        rules = _filter_rules(compiled.compiled_rules, options)
        applied_rules: list[AppliedRule] = []
        errors: list[str] = []
        warnings: list[str] = list(store.warnings)
        counters = PerformanceCounters()
        debug: list[AnimationSelection] | None = [] if options.collect_debug_info else None
        total_words = audio_data.total_words
        total_segments = len(audio_data.segments)
        deadline = options.max_processing_time_ms
        completed = True
        word_index = -1

        for segment_index, segment in enumerate(audio_data.segments):
            if not completed:
                break
            for position, word in enumerate(segment.words):
                word_index += 1
                word_id = word.id or f"{segment_index}-{position}"

                if deadline is not None and (time.perf_counter() - start) * 1000 > deadline:
                    warnings.append(
                        f"Processing deadline of {deadline}ms exceeded after {word_index} of "
                        f"{total_words} words; result is partial"
                    )
                    completed = False
                    break

                # Skip low confidence words if option is enabled
                if options.skip_low_confidence_words and word.confidence < options.confidence_threshold:
                    counters.words_skipped += 1
                    continue

                try:
                    selection, result = self.select_animations_for_word(
                        compiled,
                        word,
                        segment,
                        audio_data,
                        word_index=word_index,
                        segment_index=segment_index,
                        word_position_in_segment=position,
                        variables=variables,
                        total_words=total_words,
                        total_segments=total_segments,
                        options=options,
                        rules=rules,
                    )
                except Exception as e:
                    # One word's failure must not block the rest
                    logger.warning(f"Failed to select animations for word {word_id}: {e}")
                    errors.append(f"Failed to select animations for word {word_id}: {e}")
                    continue

                counters.words_processed += 1
                counters.rules_evaluated += result.execution_stats.evaluations
                counters.animations_applied += len(result.selected_rules)

                for selected in result.selected_rules:
                    applied_rules.append(
                        AppliedRule(
                            rule_id=selected.rule.id,
                            word_id=selection.word_id,
                            animation=selected.animation,
                            match_strength=selected.match_strength,
                        )
                    )

                for rule_error in result.errors:
                    warnings.append(f"Rule '{rule_error.rule_id}' failed for word {word_id}: {rule_error.message}")

                for conflict in result.conflicts:
                    warnings.append(
                        f"Rule conflict for word {word_id}: {', '.join(conflict.conflicting_rules)}"
                    )

                if debug is not None:
                    debug.append(selection)

        counters.processing_time = (time.perf_counter() - start) * 1000
        logger.info(
            f"Applied template '{compiled.template_id}': {counters.animations_applied} animation(s) "
            f"on {counters.words_processed} word(s), {counters.words_skipped} skipped, "
            f"{len(errors)} error(s), {len(warnings)} warning(s) in {counters.processing_time:.1f}ms"
        )

        return TemplateApplicationResult(
            success=not errors,
            applied_rules=applied_rules,
            errors=errors,
            warnings=warnings,
            performance=counters,
            completed=completed,
            debug=debug,
        )

    # =========================================================================
    # Single word
    # =========================================================================

    def select_animations_for_word(
        self,
        compiled_template: CompiledTemplate,
        word: AudioWord,
        segment: AudioSegment,
        audio_data: AudioAnalysisData,
        *,
        word_index: int,
        segment_index: int,
        word_position_in_segment: int,
        variables: Mapping[str, Any],
        total_words: int | None = None,
        total_segments: int | None = None,
        options: BatchSelectionOptions | None = None,
        rules: Sequence[CompiledRule] | None = None,
    ) -> tuple[AnimationSelection, RuleEvaluationResult]:
        """Select animations for a single word.

        rules: pre-filtered rule list; when omitted the template's rules are
        filtered with the options' enabled/disabled rule ids.
        """
        options = options or BatchSelectionOptions()
        if rules is None:
            rules = _filter_rules(compiled_template.compiled_rules, options)

        context = RuleEvaluationContext(
            audio_data=audio_data,
            variables=variables,
            word=word,
            segment=segment,
            word_index=word_index,
            segment_index=segment_index,
            word_position_in_segment=word_position_in_segment,
            total_words=audio_data.total_words if total_words is None else total_words,
            total_segments=len(audio_data.segments) if total_segments is None else total_segments,
            word_id=word.id or f"{segment_index}-{word_position_in_segment}",
        )

        result = self._rule_engine.evaluate_rules(rules, context, profile=options.enable_profiling)

        selection = AnimationSelection(
            word_id=context.word_id,
            animations=[
                SelectedAnimation(
                    plugin_name=selected.animation.plugin_name,
                    params=selected.animation.params or {},
                    timing=selected.animation.timing,
                    intensity=selected.intensity,
                    rule_id=selected.rule.id,
                )
                for selected in result.selected_rules
            ],
            applied_rule_ids=[selected.rule.id for selected in result.selected_rules],
            execution_time=result.total_execution_time,
        )
        return selection, result

    # =========================================================================
    # Compilation, validation, caches
    # =========================================================================

    def get_compiled_template(self, template: SubtitleTemplate, use_cache: bool = True) -> CompiledTemplate:
        """Compile template, or fetch it from the cache by (id, version).

        A template mutated in place without a new id or version keeps its
        stale compiled form until clear_caches().
        """
        if not use_cache or not template.id:
            return self._parser.parse_template(template)

        compiled = self._compiled_templates.get(template.cache_key)
        if compiled is None:
            # Compilation is pure; a concurrent duplicate compile is harmless
            compiled = self._parser.parse_template(template)
            self._compiled_templates.set(template.cache_key, compiled)
        return compiled

    def validate_template(self, template: SubtitleTemplate | Mapping) -> TemplateValidationResult:
        """Validate template without applying it. Never raises and never touches caches."""
        try:
            return self._parser.validate_template(template)
        except Exception as e:
            logger.exception(f"Validation failed: {e}")
            return TemplateValidationResult(
                is_valid=False,
                errors=[ValidationIssue(f"Validation failed: {e}")],
                estimated_complexity="high",
            )

    def clear_caches(self) -> None:
        """Drop compiled templates, cached variables and rule statistics."""
        self._compiled_templates.clear()
        self._variable_cache.clear()
        self._rule_engine.clear_stats()
        logger.info("Animation selector caches cleared")

    def get_performance_stats(self) -> PerformanceStats:
        """Snapshot of cache sizes, hit counters and per-rule stats (a copy)."""
        return PerformanceStats(
            compiled_templates=len(self._compiled_templates),
            cached_variables=len(self._variable_cache),
            template_cache_hits=self._compiled_templates.hits,
            template_cache_misses=self._compiled_templates.misses,
            variable_cache_hits=self._variable_cache.hits,
            variable_cache_misses=self._variable_cache.misses,
            rule_stats=self._rule_engine.get_all_stats(),
        )

    def get_stats_for_rule(self, rule_id: str, template_id: str | None = None) -> RuleStats | None:
        return self._rule_engine.get_stats_for_rule(rule_id, template_id)


def _coerce_options(options: BatchSelectionOptions | Mapping | None) -> BatchSelectionOptions:
    if options is None:
        return BatchSelectionOptions()
    if isinstance(options, Mapping):
        return BatchSelectionOptions.from_dict(options)
    return options


def _filter_rules(rules: Sequence[CompiledRule], options: BatchSelectionOptions) -> list[CompiledRule]:
    enabled = set(options.enabled_rule_ids) if options.enabled_rule_ids is not None else None
    disabled = set(options.disabled_rule_ids or ())
    return [r for r in rules if (enabled is None or r.id in enabled) and r.id not in disabled]


def _failed(start: float, errors: list[str], warnings: list[str]) -> TemplateApplicationResult:
    return TemplateApplicationResult(
        success=False,
        applied_rules=[],
        errors=errors,
        warnings=warnings,
        performance=PerformanceCounters(processing_time=(time.perf_counter() - start) * 1000),
    )
