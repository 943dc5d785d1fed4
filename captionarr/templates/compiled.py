"""Compiled template artifacts.

A CompiledTemplate is derived from a SubtitleTemplate by the TemplateParser
and never mutated afterwards. It is usable only when validation_errors is
empty; callers must check is_valid before evaluating its rules.
"""

from dataclasses import dataclass, field

from captionarr.core.types import TemplateRule, TemplateVariable
from captionarr.templates.expression import Node


@dataclass(frozen=True)
class CompiledRule:
    """A rule with its condition pre-parsed and its precedence resolved."""

    rule: TemplateRule
    condition_ast: Node | None
    specificity: int  # number of clauses in the condition
    declaration_index: int
    intensity_ast: Node | None = None
    template_id: str = ""

    @property
    def id(self) -> str:
        return self.rule.id

    @property
    def priority(self) -> float:
        return self.rule.priority

    @property
    def conflict_group(self) -> str:
        return self.rule.conflict_group

    @property
    def sort_key(self) -> tuple[float, int, int]:
        """Total order: higher priority, then more clauses, then declared first."""
        return (-self.rule.priority, -self.specificity, self.declaration_index)


@dataclass(frozen=True)
class CompiledVariable:
    variable: TemplateVariable
    ast: Node | None
    declaration_index: int

    @property
    def name(self) -> str:
        return self.variable.name

    @property
    def cached(self) -> bool:
        return self.variable.cached


@dataclass(frozen=True)
class CompiledTemplate:
    """Parsed and validated template.

    compiled_rules holds enabled rules sorted by CompiledRule.sort_key.
    variables are kept in declaration order (later variables may read
    earlier ones).
    """

    template_id: str
    version: str | None
    compiled_rules: tuple[CompiledRule, ...] = ()
    variables: tuple[CompiledVariable, ...] = ()
    validation_errors: tuple[str, ...] = ()
    validation_warnings: tuple[str, ...] = ()
    estimated_complexity: str = "low"
    compiled_at: float = 0.0

    @property
    def id(self) -> str:
        return self.template_id

    @property
    def is_valid(self) -> bool:
        return not self.validation_errors


@dataclass(frozen=True)
class ValidationIssue:
    """A single validation finding."""

    message: str
    severity: str = "error"  # "error" | "warning"
    rule_id: str | None = None
    variable: str | None = None

    def to_dict(self) -> dict:
        return {
            "message": self.message,
            "severity": self.severity,
            "ruleId": self.rule_id,
            "variable": self.variable,
        }


@dataclass
class TemplateValidationResult:
    """Side-effect free validation report."""

    is_valid: bool
    errors: list[ValidationIssue] = field(default_factory=list)
    warnings: list[ValidationIssue] = field(default_factory=list)
    estimated_complexity: str = "low"  # "low" | "medium" | "high"

    def to_dict(self) -> dict:
        return {
            "isValid": self.is_valid,
            "errors": [e.message for e in self.errors],
            "warnings": [w.message for w in self.warnings],
            "estimatedComplexity": self.estimated_complexity,
        }
