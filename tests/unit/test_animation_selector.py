"""Tests for whole-transcript template application."""

import asyncio

import pytest
from conftest import make_transcript, rule, template, word

from captionarr.core.types import BatchSelectionOptions, SubtitleTemplate
from captionarr.templates import AnimationSelector
from captionarr.templates.cache import compute_fingerprint


def two_word_transcript(transcript_id=None):
    return make_transcript(
        [word("hi", 0.0, 0.3, confidence=0.9), word("there", 0.3, 0.6, confidence=0.4)],
        transcript_id=transcript_id,
    )


# =============================================================================
# APPLY TEMPLATE
# =============================================================================


class TestApplyTemplate:
    """Test apply_template end to end."""

    def test_confidence_rule(self, selector):
        """Only the confident word gets the animation."""
        result = selector.apply_template(
            template(rule("r1", "word.confidence >= 0.8")),
            two_word_transcript(),
            {"skipLowConfidenceWords": False},
        )
        assert result.success
        assert [(a.rule_id, a.word_id) for a in result.applied_rules] == [("r1", "0-0")]
        assert result.performance.animations_applied == 1
        assert result.performance.rules_evaluated == 2
        assert result.performance.words_processed == 2
        assert result.completed

    def test_bounce_on_confident_word(self, selector):
        tpl = {
            "id": "bounce-template",
            "rules": [
                {
                    "id": "r1",
                    "condition": "word.confidence >= 0.8",
                    "priority": 1,
                    "animation": {"pluginName": "bounce", "params": {}, "timing": {"offset": ["0", "200ms"]}},
                }
            ],
        }
        result = selector.apply_template(tpl, two_word_transcript())
        assert result.errors == []
        assert len(result.applied_rules) == 1
        assert result.applied_rules[0].rule_id == "r1"
        assert result.applied_rules[0].word_id == "0-0"
        assert result.applied_rules[0].animation.to_dict()["timing"] == {"offset": ["0", "200ms"]}
        assert result.performance.animations_applied == 1

    def test_word_below_threshold_never_applied(self, selector):
        audio = make_transcript([word("quiet", confidence=0.3), word("loud", confidence=0.95)])
        result = selector.apply_template(
            template(rule("all", "true")),
            audio,
            {"skipLowConfidenceWords": True, "confidenceThreshold": 0.5},
        )
        assert [a.word_id for a in result.applied_rules] == ["0-1"]

    def test_low_confidence_words_skipped_by_default(self, selector):
        result = selector.apply_template(template(rule("all", "true")), two_word_transcript())
        assert [a.word_id for a in result.applied_rules] == ["0-0"]
        assert result.performance.words_skipped == 1
        assert result.performance.rules_evaluated == 1

    def test_confidence_threshold_option(self, selector):
        options = BatchSelectionOptions(confidence_threshold=0.3)
        result = selector.apply_template(template(rule("all", "true")), two_word_transcript(), options)
        assert [a.word_id for a in result.applied_rules] == ["0-0", "0-1"]

    def test_word_ids_and_running_index(self, selector):
        audio = make_transcript(
            [word("a"), {"text": "b", "start": 0, "end": 1, "id": "w-b"}],
            [word("c")],
        )
        result = selector.apply_template(template(rule("third", "wordIndex == 2")), audio)
        assert [a.word_id for a in result.applied_rules] == ["1-0"]

        result = selector.apply_template(template(rule("b", "word.text == 'b'"), template_id="t2"), audio)
        assert [a.word_id for a in result.applied_rules] == ["w-b"]

    def test_accepts_dataclasses(self, selector):
        tpl = SubtitleTemplate.from_dict(template(rule("r1", "true")))
        result = selector.apply_template(tpl, two_word_transcript(), BatchSelectionOptions())
        assert result.success
        assert result.applied_rules[0].animation.plugin_name == "fade"

    def test_deterministic(self, selector):
        tpl = template(
            rule("a", "word.start >= 0", priority=1),
            rule("b", "word.confidence > 0.5", priority=1),
            rule("c", "word.text == 'hi'", plugin="bounce", priority=3),
        )
        first = selector.apply_template(tpl, two_word_transcript()).to_dict()
        second = AnimationSelector().apply_template(tpl, two_word_transcript()).to_dict()
        for result in (first, second):
            result["performance"].pop("processingTime")
        assert first == second

    def test_conflict_warning(self, selector):
        result = selector.apply_template(
            template(rule("a", "true", priority=1), rule("b", "true", priority=2)),
            two_word_transcript(),
        )
        assert [a.rule_id for a in result.applied_rules] == ["b"]
        assert "Rule conflict for word 0-0: b, a" in result.warnings

    def test_empty_transcript(self, selector):
        result = selector.apply_template(template(rule("r1", "true")), make_transcript())
        assert result.success
        assert result.applied_rules == []
        assert result.performance.words_processed == 0


# =============================================================================
# FAILURE HANDLING
# =============================================================================


class TestFailureHandling:
    """Test validation gate and error isolation."""

    def test_invalid_template_rejected(self, selector):
        result = selector.apply_template(template(rule("r1", "word.confidence >=")), two_word_transcript())
        assert not result.success
        assert result.applied_rules == []
        assert any("syntax error" in e for e in result.errors)
        assert "Template tpl has validation errors" in result.warnings
        assert result.performance.rules_evaluated == 0

    def test_invalid_template_structure(self, selector):
        result = selector.apply_template({"id": "x", "rules": 5}, two_word_transcript())
        assert not result.success
        assert result.errors[0].startswith("Invalid template structure")

    def test_failing_rule_does_not_abort(self, selector):
        audio = make_transcript([word("a", emotion="happy"), word("b")])
        result = selector.apply_template(
            template(rule("mood", "word.emotion == 'happy'", priority=5), rule("base", "word.text == 'b'")),
            audio,
        )
        assert result.success
        assert [(a.rule_id, a.word_id) for a in result.applied_rules] == [("mood", "0-0"), ("base", "0-1")]
        assert len(result.warnings) == 1
        assert result.warnings[0].startswith("Rule 'mood' failed for word 0-1")
        assert result.errors == []

    def test_unhashable_map_key_stays_in_its_rule(self, selector):
        """A type error inside one condition never costs the word its animation."""
        audio = make_transcript([word("a"), word("b")], metadata={"genre": "pop"})
        result = selector.apply_template(
            template(rule("bad", "[1] in audioData.metadata", priority=5), rule("base", "true")),
            audio,
        )
        assert result.success
        assert [(a.rule_id, a.word_id) for a in result.applied_rules] == [("base", "0-0"), ("base", "0-1")]
        assert len(result.warnings) == 2
        assert all(w.startswith("Rule 'bad' failed for word") for w in result.warnings)

    def test_long_generated_condition(self, selector):
        """Thousands of || clauses compile and evaluate without exhausting the stack."""
        condition = " || ".join(f"word.text == 'w{i}'" for i in range(1200)) + " || word.text == 'b'"
        result = selector.apply_template(template(rule("list", condition)), make_transcript([word("a"), word("b")]))
        assert result.success, result.errors
        assert [a.word_id for a in result.applied_rules] == ["0-1"]

    def test_nan_priority_rejected(self, selector):
        result = selector.apply_template(
            template(rule("a", "true", priority=float("nan")), rule("b", "true", priority=5)),
            two_word_transcript(),
        )
        assert not result.success
        assert result.applied_rules == []
        assert any("priority must be finite" in e for e in result.errors)

    def test_malformed_transcript(self, selector):
        result = selector.apply_template(template(rule("r1", "true")), {"segments": "nope"})
        assert not result.success
        assert result.errors[0].startswith("Template application failed")

    def test_malformed_word(self, selector):
        result = selector.apply_template(template(rule("r1", "true")), {"segments": [{"words": [{"text": "a"}]}]})
        assert not result.success
        assert len(result.errors) == 1


# =============================================================================
# VARIABLES AND CACHES
# =============================================================================


class TestVariables:
    """Test template variables and their cache."""

    def test_variables_visible_to_rules(self, selector):
        tpl = template(
            rule("above_avg", "word.confidence > variables.avg"),
            variables={"avg": "mean(pluck(audioData.words, 'confidence'))"},
        )
        result = selector.apply_template(tpl, two_word_transcript(), {"skipLowConfidenceWords": False})
        assert [a.word_id for a in result.applied_rules] == ["0-0"]

    def test_variables_see_earlier_variables(self, selector):
        tpl = template(
            rule("r1", "variables.double == 4"),
            variables={"count": "audioData.totalWords", "double": "variables.count * 2"},
        )
        audio = make_transcript([word("a"), word("b")])
        assert len(selector.apply_template(tpl, audio).applied_rules) == 2

    def test_failed_variable_becomes_null(self, selector):
        tpl = template(
            rule("r1", "variables.bad == null"),
            variables={"bad": "audioData.metadata.missing"},
        )
        result = selector.apply_template(tpl, two_word_transcript())
        assert len(result.applied_rules) == 1
        assert any("Failed to compute variable 'bad'" in w for w in result.warnings)

    def test_cached_variable_evaluated_once(self, selector):
        tpl = template(variables={"total": {"expression": "audioData.totalWords", "cached": True}})
        audio = two_word_transcript(transcript_id="t-1")

        selector.apply_template(tpl, audio)
        selector.apply_template(tpl, audio)
        assert selector.evaluator.evaluation_count == 1
        assert selector.get_performance_stats().variable_cache_hits == 1

        selector.clear_caches()
        selector.apply_template(tpl, audio)
        assert selector.evaluator.evaluation_count == 2

    def test_uncached_variable_evaluated_every_call(self, selector):
        tpl = template(variables={"total": "audioData.totalWords"})
        audio = two_word_transcript()
        selector.apply_template(tpl, audio)
        selector.apply_template(tpl, audio)
        assert selector.evaluator.evaluation_count == 2

    def test_caching_disabled(self, selector):
        tpl = template(variables={"total": {"expression": "audioData.totalWords", "cached": True}})
        audio = two_word_transcript()
        selector.apply_template(tpl, audio, {"enableCaching": False})
        selector.apply_template(tpl, audio, {"enableCaching": False})
        assert selector.evaluator.evaluation_count == 2
        assert selector.get_performance_stats().compiled_templates == 0

    def test_fingerprint(self):
        assert compute_fingerprint(make_transcript(transcript_id="abc")) == "id:abc"
        first = compute_fingerprint(make_transcript(metadata={"b": 1, "a": 2}))
        second = compute_fingerprint(make_transcript(metadata={"a": 2, "b": 1}))
        assert first == second
        assert len(first) == 16


class TestCompiledTemplateCache:
    """Test compiled template caching by id and version."""

    def test_compiled_once(self, selector):
        tpl = template(rule("r1", "true"))
        selector.apply_template(tpl, two_word_transcript())
        selector.apply_template(tpl, two_word_transcript())
        stats = selector.get_performance_stats()
        assert stats.compiled_templates == 1
        assert stats.template_cache_hits == 1

    def test_same_id_keeps_stale_rules(self, selector):
        """Changing a template without bumping id or version reuses the cached compile."""
        selector.apply_template(template(rule("r1", "true")), two_word_transcript())
        result = selector.apply_template(template(rule("r1", "false")), two_word_transcript())
        assert len(result.applied_rules) == 1

    def test_version_bump_recompiles(self, selector):
        selector.apply_template(template(rule("r1", "true"), version="1"), two_word_transcript())
        result = selector.apply_template(template(rule("r1", "false"), version="2"), two_word_transcript())
        assert result.applied_rules == []

    def test_clear_caches_resets_stats(self, selector):
        selector.apply_template(template(rule("r1", "true")), two_word_transcript())
        assert selector.get_stats_for_rule("r1").evaluations == 1
        selector.clear_caches()
        stats = selector.get_performance_stats()
        assert stats.compiled_templates == 0
        assert stats.rule_stats == {}
        assert selector.get_stats_for_rule("r1") is None

    def test_rule_stats_kept_per_template(self, selector):
        """Two templates declaring the same rule id never share counters."""
        selector.apply_template(template(rule("r1", "true"), template_id="one"), two_word_transcript())
        selector.apply_template(template(rule("r1", "false"), template_id="two"), two_word_transcript())
        assert selector.get_stats_for_rule("r1", "one").matches == 1
        assert selector.get_stats_for_rule("r1", "two").matches == 0
        assert selector.get_stats_for_rule("r1").evaluations == 2
        assert set(selector.get_performance_stats().rule_stats) == {"one", "two"}

    def test_stats_snapshot_serializes(self, selector):
        selector.apply_template(template(rule("r1", "true")), two_word_transcript())
        data = selector.get_performance_stats().to_dict()
        assert data["compiledTemplates"] == 1
        assert data["ruleStats"]["tpl"]["r1"]["matches"] == 1


# =============================================================================
# OPTIONS
# =============================================================================


class TestOptions:
    """Test batch selection options."""

    def test_rule_id_filters(self, selector):
        tpl = template(rule("a", "true", priority=2), rule("b", "true", priority=1))
        enabled = selector.apply_template(tpl, two_word_transcript(), {"enabledRuleIds": ["b"]})
        assert [a.rule_id for a in enabled.applied_rules] == ["b"]
        disabled = selector.apply_template(tpl, two_word_transcript(), {"disabledRuleIds": ["a"]})
        assert [a.rule_id for a in disabled.applied_rules] == ["b"]

    def test_debug_info(self, selector):
        result = selector.apply_template(
            template(rule("r1", "true")), two_word_transcript(), {"collectDebugInfo": True}
        )
        assert [s.word_id for s in result.debug] == ["0-0"]
        assert result.to_dict()["debug"][0]["appliedRuleIds"] == ["r1"]

    def test_deadline_returns_partial_result(self, selector):
        audio = make_transcript([word(f"w{i}") for i in range(50)])
        result = selector.apply_template(
            template(rule("r1", "true")), audio, BatchSelectionOptions(max_processing_time_ms=1e-9)
        )
        assert not result.completed
        assert result.performance.words_processed < 50
        assert any("deadline" in w for w in result.warnings)

    @pytest.mark.parametrize(
        "kwargs",
        [{"max_concurrent_evaluations": 0}, {"confidence_threshold": 1.5}],
    )
    def test_invalid_options(self, kwargs):
        with pytest.raises(ValueError):
            BatchSelectionOptions(**kwargs)


# =============================================================================
# SINGLE WORD AND ASYNC
# =============================================================================


class TestSingleWord:
    """Test select_animations_for_word and the async wrapper."""

    def test_select_for_word(self, selector):
        audio = two_word_transcript()
        compiled = selector.get_compiled_template(SubtitleTemplate.from_dict(template(rule("r1", "true"))))
        segment = audio.segments[0]
        selection, result = selector.select_animations_for_word(
            compiled,
            segment.words[1],
            segment,
            audio,
            word_index=1,
            segment_index=0,
            word_position_in_segment=1,
            variables={},
        )
        assert selection.word_id == "0-1"
        assert selection.applied_rule_ids == ["r1"]
        assert selection.animations[0].plugin_name == "fade"
        assert selection.animations[0].timing.offset == ("0", "100%")
        assert result.matched_rule_ids == ["r1"]

    def test_apply_template_async(self, selector):
        result = asyncio.run(selector.apply_template_async(template(rule("r1", "true")), two_word_transcript()))
        assert result.success
        assert len(result.applied_rules) == 1
