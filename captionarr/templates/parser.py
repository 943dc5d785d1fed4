"""Template parser / compiler.

Validates a raw SubtitleTemplate and compiles it into a CompiledTemplate:
conditions pre-parsed, precedence resolved, problems collected up front.

Validation problems are data, not exceptions. A template with errors still
compiles, to a CompiledTemplate whose validation_errors is non-empty, so the
AnimationSelector can refuse it with a clear report.
"""

import logging
import math
import time
from collections.abc import Mapping
from typing import Any

from captionarr.core.types import AnimationTiming, SubtitleTemplate
from captionarr.templates.compiled import (
    CompiledRule,
    CompiledTemplate,
    CompiledVariable,
    TemplateValidationResult,
    ValidationIssue,
)
from captionarr.templates.context import ROOT_NAMES
from captionarr.templates.errors import ExpressionSyntaxError
from captionarr.templates.expression import (
    Node,
    calls,
    clause_count,
    node_count,
    parse_expression,
    root_names,
    variable_references,
)
from captionarr.templates.helpers import HelperRegistry, get_registry

logger = logging.getLogger(__name__)

# Complexity thresholds on total AST node count
LOW_COMPLEXITY_MAX = 50
MEDIUM_COMPLEXITY_MAX = 250

# Roots that only exist per word
_WORD_SCOPED_ROOTS = {"word", "segment", "wordIndex", "segmentIndex", "wordPositionInSegment"}


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_finite_number(value: Any) -> bool:
    # NaN and infinities have no place in the rule order
    if not _is_number(value):
        return False
    try:
        return math.isfinite(value)
    except OverflowError:
        return False


def estimate_complexity(total_nodes: int) -> str:
    if total_nodes < LOW_COMPLEXITY_MAX:
        return "low"
    if total_nodes < MEDIUM_COMPLEXITY_MAX:
        return "medium"
    return "high"


class _Analysis:
    """Mutable scratch state for one parse/validate pass."""

    def __init__(self):
        self.errors: list[ValidationIssue] = []
        self.warnings: list[ValidationIssue] = []
        self.rules: list[CompiledRule] = []
        self.variables: list[CompiledVariable] = []
        self.total_nodes = 0

    def error(self, message: str, rule_id: str | None = None, variable: str | None = None) -> None:
        self.errors.append(ValidationIssue(message, "error", rule_id, variable))

    def warning(self, message: str, rule_id: str | None = None, variable: str | None = None) -> None:
        self.warnings.append(ValidationIssue(message, "warning", rule_id, variable))


class TemplateParser:
    """Compiles and validates subtitle templates.

    Usage:
        parser = TemplateParser()
        compiled = parser.parse_template(template)
        if not compiled.is_valid:
            print(compiled.validation_errors)
    """

    def __init__(self, helpers: HelperRegistry | None = None):
        self._helpers = helpers or get_registry()

    def parse_template(self, template: SubtitleTemplate | Mapping) -> CompiledTemplate:
        """Compile a template. Never raises for template problems."""
        template_id, version = _identity(template)
        try:
            template = _coerce(template)
        except (TypeError, ValueError, KeyError, AttributeError) as e:
            logger.warning(f"Template '{template_id}' has an invalid structure: {e}")
            return CompiledTemplate(
                template_id=template_id,
                version=version,
                validation_errors=(f"Invalid template structure: {e}",),
                compiled_at=time.time(),
            )

        analysis = self._analyze(template)
        compiled_rules = sorted(
            (r for r in analysis.rules if r.rule.enabled),
            key=lambda r: r.sort_key,
        )
        compiled = CompiledTemplate(
            template_id=template.id,
            version=template.version,
            compiled_rules=tuple(compiled_rules),
            variables=tuple(analysis.variables),
            validation_errors=tuple(e.message for e in analysis.errors),
            validation_warnings=tuple(w.message for w in analysis.warnings),
            estimated_complexity=estimate_complexity(analysis.total_nodes),
            compiled_at=time.time(),
        )

        if compiled.validation_errors:
            logger.info(
                f"Template '{template.id}' compiled with {len(compiled.validation_errors)} validation error(s)"
            )
        else:
            logger.debug(
                f"Compiled template '{template.id}': {len(compiled_rules)} rules, "
                f"{len(compiled.variables)} variables, complexity={compiled.estimated_complexity}"
            )
        return compiled

    def validate_template(self, template: SubtitleTemplate | Mapping) -> TemplateValidationResult:
        """Validate without compiling into any cache. Never raises for template problems."""
        try:
            template = _coerce(template)
        except (TypeError, ValueError, KeyError, AttributeError) as e:
            return TemplateValidationResult(
                is_valid=False,
                errors=[ValidationIssue(f"Invalid template structure: {e}")],
                estimated_complexity="high",
            )

        analysis = self._analyze(template)
        return TemplateValidationResult(
            is_valid=not analysis.errors,
            errors=analysis.errors,
            warnings=analysis.warnings,
            estimated_complexity=estimate_complexity(analysis.total_nodes),
        )

    # -------------------------------------------------------------------------
    # Analysis
    # -------------------------------------------------------------------------

    def _analyze(self, template: SubtitleTemplate) -> _Analysis:
        analysis = _Analysis()

        if not template.id:
            analysis.error("Template id is required")

        declared = [v.name for v in template.variables]
        self._analyze_variables(template, declared, analysis)
        self._analyze_rules(template, set(declared), analysis)

        if not template.rules:
            analysis.warning(f"Template '{template.id}' has no rules")

        return analysis

    def _analyze_variables(self, template: SubtitleTemplate, declared: list[str], analysis: _Analysis) -> None:
        seen: set[str] = set()
        for index, variable in enumerate(template.variables):
            name = variable.name
            if not name:
                analysis.error(f"Variable #{index + 1} has no name")
                continue
            if name in seen:
                analysis.error(f"Duplicate variable name '{name}'", variable=name)
                continue
            seen.add(name)

            where = f"Variable '{name}'"
            ast = self._parse(variable.expression, where, analysis, variable=name)
            if ast is not None:
                self._check_references(ast, where, set(declared), analysis, variable=name)
                # Variables are computed in declaration order
                for ref in sorted(variable_references(ast)):
                    if ref in declared and ref not in seen - {name}:
                        analysis.warning(
                            f"{where} references '{ref}' before it is computed; it will resolve to null",
                            variable=name,
                        )
                word_roots = sorted(root_names(ast) & _WORD_SCOPED_ROOTS)
                if word_roots:
                    analysis.warning(
                        f"{where} references {', '.join(word_roots)}, which is not available "
                        "when computing template variables",
                        variable=name,
                    )
                analysis.total_nodes += node_count(ast)

            analysis.variables.append(CompiledVariable(variable=variable, ast=ast, declaration_index=index))

    def _analyze_rules(self, template: SubtitleTemplate, declared: set[str], analysis: _Analysis) -> None:
        seen: set[str] = set()
        for index, rule in enumerate(template.rules):
            rule_id = rule.id
            if not rule_id:
                analysis.error(f"Rule #{index + 1} has no id")
                rule_id = f"#{index + 1}"
            elif rule_id in seen:
                analysis.error(f"Duplicate rule id '{rule_id}'", rule_id=rule_id)
            seen.add(rule_id)
            where = f"Rule '{rule_id}'"

            for label, value in (("priority", rule.priority), ("intensity", rule.intensity)):
                if not _is_number(value):
                    analysis.error(f"{where}: {label} must be a number, got {value!r}", rule_id=rule_id)
                elif not _is_finite_number(value):
                    analysis.error(f"{where}: {label} must be finite, got {value!r}", rule_id=rule_id)
            if not isinstance(rule.conflict_group, str) or not rule.conflict_group:
                analysis.error(f"{where}: conflict group must be a non-empty string", rule_id=rule_id)
            if not isinstance(rule.enabled, bool):
                analysis.error(f"{where}: enabled must be true or false", rule_id=rule_id)
            elif not rule.enabled:
                analysis.warning(f"{where} is disabled", rule_id=rule_id)

            self._check_animation(rule, where, analysis)

            condition_ast = None
            if not isinstance(rule.condition, str) or not rule.condition.strip():
                analysis.error(f"{where}: condition is required", rule_id=rule_id)
            else:
                condition_ast = self._parse(rule.condition, where, analysis, rule_id=rule_id)
                if condition_ast is not None:
                    self._check_references(condition_ast, where, declared, analysis, rule_id=rule_id)
                    analysis.total_nodes += node_count(condition_ast)

            intensity_ast = None
            if rule.intensity_expression is not None:
                intensity_where = f"{where} intensity"
                intensity_ast = self._parse(rule.intensity_expression, intensity_where, analysis, rule_id=rule_id)
                if intensity_ast is not None:
                    self._check_references(intensity_ast, intensity_where, declared, analysis, rule_id=rule_id)
                    analysis.total_nodes += node_count(intensity_ast)

            if condition_ast is not None and _is_finite_number(rule.priority):
                analysis.rules.append(
                    CompiledRule(
                        rule=rule,
                        condition_ast=condition_ast,
                        specificity=clause_count(condition_ast),
                        declaration_index=index,
                        intensity_ast=intensity_ast,
                        template_id=template.id,
                    )
                )

    def _check_animation(self, rule, where: str, analysis: _Analysis) -> None:
        animation = rule.animation
        if not animation.plugin_name or not isinstance(animation.plugin_name, str):
            analysis.error(f"{where}: animation pluginName is required", rule_id=rule.id)
        if not isinstance(animation.params, Mapping):
            analysis.error(f"{where}: animation params must be an object", rule_id=rule.id)

        timing = animation.timing
        if not isinstance(timing, AnimationTiming):
            analysis.error(f"{where}: animation timing is malformed", rule_id=rule.id)
            return
        offset = timing.offset
        if not (isinstance(offset, tuple) and len(offset) == 2 and all(isinstance(o, str) for o in offset)):
            analysis.error(
                f"{where}: timing offset must be a pair of strings like ['0', '200ms'], got {offset!r}",
                rule_id=rule.id,
            )

    def _parse(
        self,
        expression: Any,
        where: str,
        analysis: _Analysis,
        rule_id: str | None = None,
        variable: str | None = None,
    ) -> Node | None:
        if not isinstance(expression, str) or not expression.strip():
            analysis.error(f"{where}: expression is empty", rule_id=rule_id, variable=variable)
            return None
        try:
            return parse_expression(expression)
        except ExpressionSyntaxError as e:
            analysis.error(f"{where}: syntax error: {e}", rule_id=rule_id, variable=variable)
            return None

    def _check_references(
        self,
        ast: Node,
        where: str,
        declared: set[str],
        analysis: _Analysis,
        rule_id: str | None = None,
        variable: str | None = None,
    ) -> None:
        for name in sorted(root_names(ast) - ROOT_NAMES):
            analysis.error(f"{where}: unknown reference '{name}'", rule_id=rule_id, variable=variable)

        for name in sorted(variable_references(ast) - declared):
            analysis.error(f"{where}: undeclared variable '{name}'", rule_id=rule_id, variable=variable)

        for call in calls(ast):
            helper = self._helpers.get(call.name)
            if helper is None:
                analysis.error(f"{where}: unknown helper '{call.name}'", rule_id=rule_id, variable=variable)
            elif not helper.accepts(len(call.args)):
                analysis.error(
                    f"{where}: {call.name}() takes {helper.arity_text} arguments, got {len(call.args)}",
                    rule_id=rule_id,
                    variable=variable,
                )


def _coerce(template: SubtitleTemplate | Mapping) -> SubtitleTemplate:
    if isinstance(template, SubtitleTemplate):
        return template
    if isinstance(template, Mapping):
        return SubtitleTemplate.from_dict(template)
    raise TypeError(f"expected a template, got {type(template).__name__}")


def _identity(template: Any) -> tuple[str, str | None]:
    if isinstance(template, SubtitleTemplate):
        return template.id, template.version
    if isinstance(template, Mapping):
        version = template.get("version")
        return str(template.get("id") or ""), str(version) if version is not None else None
    return "", None
