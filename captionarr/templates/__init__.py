"""Template engine module.

Selects caption animations for every word of a transcript from a
declarative subtitle template. A template rule pairs a condition with an
animation:

    {"id": "loud", "condition": "word.volume > 0.8", "priority": 10,
     "animation": {"pluginName": "scalepop", "timing": {"offset": ["0", "200ms"]}}}

Pipeline:
    TemplateParser (once per template, cached)
      -> AnimationSelector (per transcript)
        -> RuleEngine (per word)
          -> ExpressionEvaluator (per condition)
"""

from captionarr.templates.cache import LRUCache, VariableStore, compute_fingerprint
from captionarr.templates.compiled import (
    CompiledRule,
    CompiledTemplate,
    CompiledVariable,
    TemplateValidationResult,
    ValidationIssue,
)
from captionarr.templates.context import RuleEvaluationContext
from captionarr.templates.errors import (
    EvaluationError,
    ExpressionError,
    ExpressionSyntaxError,
    TemplateEngineError,
)
from captionarr.templates.evaluator import ExpressionEvaluator, evaluate
from captionarr.templates.expression import parse_expression
from captionarr.templates.parser import TemplateParser
from captionarr.templates.rule_engine import (
    RuleConflict,
    RuleEngine,
    RuleError,
    RuleEvaluationResult,
    RuleStats,
    SelectedRule,
)
from captionarr.templates.selector import AnimationSelector, PerformanceStats

__all__ = [
    # Orchestrator
    "AnimationSelector",
    "PerformanceStats",
    # Parser
    "CompiledRule",
    "CompiledTemplate",
    "CompiledVariable",
    "TemplateParser",
    "TemplateValidationResult",
    "ValidationIssue",
    # Rule engine
    "RuleConflict",
    "RuleEngine",
    "RuleError",
    "RuleEvaluationResult",
    "RuleStats",
    "SelectedRule",
    # Expressions
    "ExpressionEvaluator",
    "RuleEvaluationContext",
    "evaluate",
    "parse_expression",
    # Caches
    "LRUCache",
    "VariableStore",
    "compute_fingerprint",
    # Errors
    "EvaluationError",
    "ExpressionError",
    "ExpressionSyntaxError",
    "TemplateEngineError",
]
