"""Rule engine.

Evaluates every compiled rule against one word's context and resolves
conflicts between matching rules.

Conflict resolution is a total order over matches:
    1. higher priority wins
    2. then the more specific condition (more clauses)
    3. then the rule declared first

Rules compete within their conflict group; the winner of every group is
selected, so rules in distinct groups stack. With the default single group
exactly one rule is selected per word. Matches that lost are reported as
conflicts, never dropped silently.

A rule whose condition fails to evaluate is treated as non-matching and
reported in errors; its siblings are still evaluated.

Historical RuleStats are keyed by (template id, rule id) so templates that
reuse a rule id never share counters. Requests are served from a thread
pool, so the stats map is only touched under a lock.
"""

import logging
import math
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass, field, replace

from captionarr.core.types import AnimationConfig, TemplateRule
from captionarr.templates.compiled import CompiledRule
from captionarr.templates.context import RuleEvaluationContext
from captionarr.templates.errors import ExpressionError
from captionarr.templates.evaluator import ExpressionEvaluator
from captionarr.templates.helpers.numeric import is_number

logger = logging.getLogger(__name__)


@dataclass
class RuleStats:
    """Historical per-rule counters."""

    evaluations: int = 0
    matches: int = 0
    errors: int = 0
    total_time_ms: float = 0.0  # only accumulated when profiling

    def add(self, other: "RuleStats") -> None:
        self.evaluations += other.evaluations
        self.matches += other.matches
        self.errors += other.errors
        self.total_time_ms += other.total_time_ms

    def to_dict(self) -> dict:
        return {
            "evaluations": self.evaluations,
            "matches": self.matches,
            "errors": self.errors,
            "totalTimeMs": self.total_time_ms,
        }


@dataclass(frozen=True)
class SelectedRule:
    rule: TemplateRule
    animation: AnimationConfig
    intensity: float
    match_strength: float


@dataclass(frozen=True)
class RuleConflict:
    """Several rules of one conflict group matched the same word."""

    group: str
    winner: str
    conflicting_rules: tuple[str, ...]  # all matched ids, winner first


@dataclass(frozen=True)
class RuleError:
    rule_id: str
    message: str


@dataclass
class ExecutionStats:
    evaluations: int = 0  # every condition evaluation attempted
    matches: int = 0
    errors: int = 0


@dataclass
class RuleEvaluationResult:
    selected_rules: list[SelectedRule] = field(default_factory=list)
    matched_rule_ids: list[str] = field(default_factory=list)
    conflicts: list[RuleConflict] = field(default_factory=list)
    errors: list[RuleError] = field(default_factory=list)
    execution_stats: ExecutionStats = field(default_factory=ExecutionStats)
    total_execution_time: float = 0.0  # ms


class RuleEngine:
    """Evaluates compiled rules for one word at a time.

    Usage:
        engine = RuleEngine()
        result = engine.evaluate_rules(compiled.compiled_rules, context)
        for selected in result.selected_rules:
            ...
    """

    def __init__(self, debug_mode: bool = False, evaluator: ExpressionEvaluator | None = None):
        self.debug_mode = debug_mode
        self._evaluator = evaluator or ExpressionEvaluator()
        self._stats: dict[tuple[str, str], RuleStats] = {}
        self._lock = threading.Lock()

    def evaluate_rules(
        self,
        rules: Sequence[CompiledRule],
        context: RuleEvaluationContext,
        profile: bool = False,
    ) -> RuleEvaluationResult:
        """Evaluate all rules for one word and select the winners.

        Args:
            rules: Compiled rules (any order; precedence comes from sort_key)
            context: Context of the word being evaluated
            profile: Accumulate per-rule wall-clock time in RuleStats

        Returns:
            RuleEvaluationResult with selected rules in precedence order
        """
        start = time.perf_counter()
        result = RuleEvaluationResult()
        matches: list[CompiledRule] = []
        outcomes: list[tuple[CompiledRule, RuleStats]] = []

        for compiled in rules:
            stats = RuleStats(evaluations=1)
            outcomes.append((compiled, stats))
            result.execution_stats.evaluations += 1
            rule_start = time.perf_counter() if profile else 0.0

            try:
                if compiled.condition_ast is None:
                    raise ExpressionError(f"Rule '{compiled.id}' has no compiled condition")
                matched = self._evaluator.evaluate_condition(
                    compiled.condition_ast, context, compiled.rule.condition
                )
            except ExpressionError as e:
                stats.errors += 1
                result.execution_stats.errors += 1
                result.errors.append(RuleError(compiled.id, str(e)))
                if self.debug_mode:
                    logger.debug(f"Rule '{compiled.id}' failed at {context.location}: {e}")
                matched = False
            finally:
                if profile:
                    stats.total_time_ms += (time.perf_counter() - rule_start) * 1000

            if matched:
                stats.matches += 1
                result.execution_stats.matches += 1
                matches.append(compiled)

        self._record(outcomes)
        matches.sort(key=lambda r: r.sort_key)
        result.matched_rule_ids = [r.id for r in matches]

        groups: dict[str, list[CompiledRule]] = {}
        for compiled in matches:
            groups.setdefault(compiled.conflict_group, []).append(compiled)

        for compiled in matches:
            group = groups[compiled.conflict_group]
            if group[0] is not compiled:
                continue
            intensity = self._resolve_intensity(compiled, context, result)
            result.selected_rules.append(
                SelectedRule(
                    rule=compiled.rule,
                    animation=compiled.rule.animation,
                    intensity=intensity,
                    match_strength=intensity,
                )
            )
            if len(group) > 1:
                result.conflicts.append(
                    RuleConflict(
                        group=compiled.conflict_group,
                        winner=compiled.id,
                        conflicting_rules=tuple(r.id for r in group),
                    )
                )

        result.total_execution_time = (time.perf_counter() - start) * 1000

        if self.debug_mode:
            logger.debug(
                f"{context.location}: {result.execution_stats.evaluations} evaluated, "
                f"matched={result.matched_rule_ids}, "
                f"selected={[s.rule.id for s in result.selected_rules]}"
            )
        return result

    def _resolve_intensity(
        self, compiled: CompiledRule, context: RuleEvaluationContext, result: RuleEvaluationResult
    ) -> float:
        declared = float(compiled.rule.intensity)
        if compiled.intensity_ast is None:
            return declared
        try:
            value = self._evaluator.evaluate(
                compiled.intensity_ast, context, compiled.rule.intensity_expression
            )
        except ExpressionError as e:
            result.errors.append(RuleError(compiled.id, f"intensity: {e}"))
            return declared
        try:
            intensity = float(value) if is_number(value) else math.nan
        except OverflowError:
            intensity = math.nan
        if not math.isfinite(intensity):
            result.errors.append(
                RuleError(compiled.id, f"intensity expression returned {value!r}, expected a finite number")
            )
            return declared
        return intensity

    def _record(self, outcomes: list[tuple[CompiledRule, RuleStats]]) -> None:
        with self._lock:
            for compiled, outcome in outcomes:
                self._stats.setdefault((compiled.template_id, compiled.id), RuleStats()).add(outcome)

    def get_stats_for_rule(self, rule_id: str, template_id: str | None = None) -> RuleStats | None:
        """Snapshot of a rule's counters (a copy, safe to keep).

        Without template_id the counters of every template that declares
        rule_id are summed.
        """
        with self._lock:
            found = [
                stats
                for (owner, rid), stats in self._stats.items()
                if rid == rule_id and (template_id is None or owner == template_id)
            ]
            if not found:
                return None
            total = RuleStats()
            for stats in found:
                total.add(stats)
            return total

    def get_all_stats(self) -> dict[str, dict[str, RuleStats]]:
        """Snapshot of every counter as {template_id: {rule_id: RuleStats}}."""
        with self._lock:
            snapshot: dict[str, dict[str, RuleStats]] = {}
            for (template_id, rule_id), stats in self._stats.items():
                snapshot.setdefault(template_id, {})[rule_id] = replace(stats)
            return snapshot

    def clear_stats(self) -> None:
        with self._lock:
            self._stats.clear()
