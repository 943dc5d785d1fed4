"""Exceptions raised by the template engine.

Only expression problems are raised as exceptions. Template validation
problems are reported as data on CompiledTemplate.validation_errors.
"""


class TemplateEngineError(Exception):
    """Base class for template engine errors."""


class ExpressionError(TemplateEngineError):
    """Base class for expression parse/evaluation errors."""

    def __init__(self, message: str, expression: str = ""):
        super().__init__(message)
        self.message = message
        self.expression = expression


class ExpressionSyntaxError(ExpressionError):
    """Expression text could not be parsed."""

    def __init__(self, message: str, expression: str = "", position: int = 0):
        super().__init__(message, expression)
        self.position = position

    def __str__(self) -> str:
        return f"{self.message} at position {self.position} in '{self.expression}'"


class EvaluationError(ExpressionError):
    """Expression failed against a specific context.

    reference: the failing sub-expression (e.g. "word.emotion")
    location: where in the transcript it failed (e.g. "word 0-3")
    """

    def __init__(
        self,
        message: str,
        expression: str = "",
        reference: str | None = None,
        location: str | None = None,
    ):
        super().__init__(message, expression)
        self.reference = reference
        self.location = location

    def __str__(self) -> str:
        parts = [self.message]
        if self.reference:
            parts.append(f"(in '{self.reference}')")
        if self.expression:
            parts.append(f"evaluating '{self.expression}'")
        if self.location:
            parts.append(f"at {self.location}")
        return " ".join(parts)
