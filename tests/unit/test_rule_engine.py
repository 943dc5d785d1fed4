"""Tests for rule evaluation and conflict resolution."""

import threading

import pytest
from conftest import rule, template, word_context

from captionarr.core.types import AudioWord
from captionarr.templates.parser import TemplateParser
from captionarr.templates.rule_engine import RuleEngine


def compile_rules(*rules):
    compiled = TemplateParser().parse_template(template(*rules))
    assert compiled.is_valid, compiled.validation_errors
    return compiled.compiled_rules


@pytest.fixture
def engine():
    return RuleEngine()


# =============================================================================
# SELECTION
# =============================================================================


class TestSelection:
    """Test which rules win for a word."""

    def test_no_match(self, engine, context):
        result = engine.evaluate_rules(compile_rules(rule("r1", "word.confidence < 0.1")), context)
        assert result.selected_rules == []
        assert result.matched_rule_ids == []
        assert result.execution_stats.evaluations == 1

    def test_single_match(self, engine, context):
        result = engine.evaluate_rules(compile_rules(rule("r1", "word.confidence >= 0.8")), context)
        assert [s.rule.id for s in result.selected_rules] == ["r1"]
        assert result.selected_rules[0].animation.plugin_name == "fade"
        assert result.selected_rules[0].intensity == 1.0

    def test_higher_priority_wins(self, engine, context):
        rules = compile_rules(
            rule("low", "true", plugin="fade", priority=1),
            rule("high", "true", plugin="bounce", priority=10),
        )
        result = engine.evaluate_rules(rules, context)
        assert [s.rule.id for s in result.selected_rules] == ["high"]
        assert result.matched_rule_ids == ["high", "low"]

    def test_more_specific_wins_on_equal_priority(self, engine, context):
        rules = compile_rules(
            rule("broad", "word.confidence > 0.5"),
            rule("narrow", "word.confidence > 0.5 && word.text == 'hello'"),
        )
        result = engine.evaluate_rules(rules, context)
        assert [s.rule.id for s in result.selected_rules] == ["narrow"]

    def test_declaration_order_breaks_remaining_ties(self, engine, context):
        rules = compile_rules(rule("first", "true"), rule("second", "true"))
        result = engine.evaluate_rules(rules, context)
        assert [s.rule.id for s in result.selected_rules] == ["first"]

    def test_order_of_input_does_not_matter(self, engine, context):
        rules = compile_rules(rule("a", "true", priority=1), rule("b", "true", priority=2))
        forward = engine.evaluate_rules(rules, context)
        backward = engine.evaluate_rules(list(reversed(rules)), context)
        assert [s.rule.id for s in forward.selected_rules] == [s.rule.id for s in backward.selected_rules] == ["b"]

    def test_conflict_reported(self, engine, context):
        rules = compile_rules(rule("a", "true", priority=1), rule("b", "true", priority=2))
        result = engine.evaluate_rules(rules, context)
        assert len(result.conflicts) == 1
        conflict = result.conflicts[0]
        assert conflict.group == "default"
        assert conflict.winner == "b"
        assert conflict.conflicting_rules == ("b", "a")

    def test_conflict_groups_stack(self, engine, context):
        """Winners of different groups are all selected, in precedence order."""
        rules = compile_rules(
            rule("color", "true", plugin="tint", priority=1, conflictGroup="color"),
            rule("motion", "true", plugin="bounce", priority=5, conflictGroup="motion"),
            rule("motion_weak", "true", plugin="shake", priority=2, conflictGroup="motion"),
        )
        result = engine.evaluate_rules(rules, context)
        assert [s.rule.id for s in result.selected_rules] == ["motion", "color"]
        assert [c.group for c in result.conflicts] == ["motion"]


# =============================================================================
# INTENSITY
# =============================================================================


class TestIntensity:
    """Test declared and computed intensity."""

    def test_declared_intensity(self, engine, context):
        result = engine.evaluate_rules(compile_rules(rule("r1", "true", intensity=0.4)), context)
        assert result.selected_rules[0].intensity == 0.4
        assert result.selected_rules[0].match_strength == 0.4

    def test_intensity_expression(self, engine):
        ctx = word_context(AudioWord(text="x", start=0, end=1, features={"volume": 1.7}))
        rules = compile_rules(rule("r1", "true", intensityExpression="clamp(word.volume, 0, 1)"))
        assert engine.evaluate_rules(rules, ctx).selected_rules[0].intensity == 1.0

    def test_failing_intensity_falls_back(self, engine, context):
        rules = compile_rules(rule("r1", "true", intensity=0.3, intensityExpression="word.volume * 2"))
        result = engine.evaluate_rules(rules, context)
        assert result.selected_rules[0].intensity == 0.3
        assert result.errors[0].rule_id == "r1"
        assert result.errors[0].message.startswith("intensity:")

    def test_non_numeric_intensity_falls_back(self, engine, context):
        rules = compile_rules(rule("r1", "true", intensityExpression="word.text"))
        result = engine.evaluate_rules(rules, context)
        assert result.selected_rules[0].intensity == 1.0
        assert "expected a finite number" in result.errors[0].message

    def test_infinite_intensity_falls_back(self, engine, context):
        rules = compile_rules(rule("r1", "true", intensity=0.5, intensityExpression="1e308 * 10"))
        result = engine.evaluate_rules(rules, context)
        assert result.selected_rules[0].intensity == 0.5
        assert "expected a finite number" in result.errors[0].message


# =============================================================================
# ERROR ISOLATION
# =============================================================================


class TestErrorIsolation:
    """Test that a failing rule never blocks its siblings."""

    def test_failing_rule_is_non_matching(self, engine, context):
        rules = compile_rules(
            rule("broken", "word.emotion == 'happy'", priority=10),
            rule("ok", "word.confidence > 0.5"),
        )
        result = engine.evaluate_rules(rules, context)
        assert [s.rule.id for s in result.selected_rules] == ["ok"]
        assert len(result.errors) == 1
        assert result.errors[0].rule_id == "broken"
        assert "Unknown field 'emotion'" in result.errors[0].message
        assert result.execution_stats.errors == 1
        assert result.execution_stats.evaluations == 2

    def test_type_error_is_isolated(self, engine, context):
        rules = compile_rules(rule("bad", "word.text > 3"), rule("ok", "true"))
        result = engine.evaluate_rules(rules, context)
        assert [s.rule.id for s in result.selected_rules] == ["ok"]
        assert result.errors[0].rule_id == "bad"

    @pytest.mark.parametrize("condition", ["[1] in audioData.metadata", "word in audioData.metadata"])
    def test_unhashable_membership_is_isolated(self, engine, context, condition):
        rules = compile_rules(rule("bad", condition, priority=5), rule("base", "true"))
        result = engine.evaluate_rules(rules, context)
        assert [s.rule.id for s in result.selected_rules] == ["base"]
        assert [e.rule_id for e in result.errors] == ["bad"]
        assert result.conflicts == []


# =============================================================================
# STATS
# =============================================================================


class TestRuleStats:
    """Test per-rule historical counters."""

    def test_counters_accumulate(self, engine, context):
        rules = compile_rules(rule("hit", "true"), rule("miss", "false"), rule("bad", "word.nope"))
        for _ in range(3):
            engine.evaluate_rules(rules, context)

        assert engine.get_stats_for_rule("hit").evaluations == 3
        assert engine.get_stats_for_rule("hit").matches == 3
        assert engine.get_stats_for_rule("miss").matches == 0
        assert engine.get_stats_for_rule("bad").errors == 3
        assert engine.get_stats_for_rule("unknown") is None

    def test_stats_are_snapshots(self, engine, context):
        rules = compile_rules(rule("r1", "true"))
        engine.evaluate_rules(rules, context)
        snapshot = engine.get_stats_for_rule("r1")
        engine.evaluate_rules(rules, context)
        assert snapshot.evaluations == 1
        assert engine.get_stats_for_rule("r1").evaluations == 2

    def test_profiling_records_time(self, engine, context):
        rules = compile_rules(rule("r1", "true"))
        engine.evaluate_rules(rules, context, profile=True)
        assert engine.get_stats_for_rule("r1").total_time_ms >= 0.0
        assert engine.get_all_stats()["tpl"]["r1"].to_dict()["evaluations"] == 1

    def test_stats_kept_per_template(self, engine, context):
        """The same rule id in two templates keeps two sets of counters."""
        parser = TemplateParser()
        first = parser.parse_template(template(rule("r1", "true"), template_id="one")).compiled_rules
        second = parser.parse_template(template(rule("r1", "false"), template_id="two")).compiled_rules
        engine.evaluate_rules(first, context)
        engine.evaluate_rules(second, context)
        engine.evaluate_rules(second, context)

        assert engine.get_stats_for_rule("r1", "one").matches == 1
        assert engine.get_stats_for_rule("r1", "two").evaluations == 2
        assert engine.get_stats_for_rule("r1", "two").matches == 0
        assert engine.get_stats_for_rule("r1", "three") is None
        assert engine.get_stats_for_rule("r1").evaluations == 3
        assert sorted(engine.get_all_stats()) == ["one", "two"]

    def test_stats_survive_concurrent_evaluation(self, engine, context):
        rules = compile_rules(rule("r1", "true"), rule("r2", "false"))

        def work():
            for _ in range(200):
                engine.evaluate_rules(rules, context)

        threads = [threading.Thread(target=work) for _ in range(4)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        assert engine.get_stats_for_rule("r1").evaluations == 800
        assert engine.get_stats_for_rule("r2").evaluations == 800

    def test_clear_stats(self, engine, context):
        engine.evaluate_rules(compile_rules(rule("r1", "true")), context)
        engine.clear_stats()
        assert engine.get_all_stats() == {}
