"""
Custom exception classes for the form state engine.

This module provides specialized exception classes for specification,
configuration and expression failures with centralized error details.
"""

import logging
from typing import Optional, Dict, Any, List
from pathlib import Path

logger = logging.getLogger(__name__)


class FormEngineError(Exception):
    """
    Base exception for form engine errors.

    Attributes:
        message: Error message
        context: Additional context information
        recovery_suggestions: List of suggested recovery actions
    """

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None,
                 recovery_suggestions: Optional[List[str]] = None):
        self.message = message
        self.context = context or {}
        self.recovery_suggestions = recovery_suggestions or []
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    def get_full_details(self) -> Dict[str, Any]:
        """Get complete error details including context and suggestions."""
        return {
            'error_type': self.__class__.__name__,
            'message': self.message,
            'context': self.context,
            'recovery_suggestions': self.recovery_suggestions
        }


class ExpressionError(FormEngineError):
    """Base class for errors raised by an expression engine."""

    def __init__(self, expression: str, reason: str, message: Optional[str] = None):
        self.expression = expression
        self.reason = reason
        super().__init__(
            message or reason,
            context={'expression': expression, 'reason': reason}
        )


class ExpressionSyntaxError(ExpressionError):
    """
    Raised when an expression cannot be parsed.

    Carries the position reported by the parser when one is available.
    """

    def __init__(self, expression: str, reason: str, position: Optional[int] = None):
        self.position = position
        super().__init__(expression, reason, message=f"Syntax error: {reason}")
        self.context['position'] = position
        self.recovery_suggestions = [
            "Check parentheses and quotes are balanced",
            "Use '=' for equality and 'and'/'or' for boolean logic",
            "Multi-word functions are written with a single space, e.g. string length(x)"
        ]


class ExpressionRuntimeError(ExpressionError):
    """Raised when a syntactically valid expression fails during evaluation."""


class SpecificationError(FormEngineError, ValueError):
    """
    Raised when a form specification is structurally inconsistent.

    Subclasses ValueError so that pydantic model validators report it
    as a regular validation error.
    """

    def __init__(self, message: str, problems: Optional[List[str]] = None):
        self.problems = problems or []
        super().__init__(
            message,
            context={'problems': self.problems},
            recovery_suggestions=[
                "Make sure every path in fieldOrder has a matching field definition",
                "Make sure every page only lists defined fields",
                "Remove circular references between computed fields"
            ]
        )


class ComputedDependencyError(SpecificationError):
    """Raised when computed fields reference each other in a cycle."""

    def __init__(self, cycle: List[str]):
        self.cycle = cycle
        super().__init__(
            f"Circular dependency between computed fields: {' -> '.join(cycle)}",
            problems=[f"computed.{name}" for name in cycle]
        )


class SpecificationLoadError(FormEngineError):
    """
    Exception raised when a specification file cannot be loaded.

    This includes file not found, YAML/JSON parsing errors and
    structural validation failures.
    """

    def __init__(self, spec_path: Path, original_error: Exception,
                 message: Optional[str] = None):
        self.spec_path = spec_path
        self.original_error = original_error

        if message is None:
            message = f"Failed to load specification from {spec_path}: {str(original_error)}"

        context = {
            'spec_path': str(spec_path),
            'original_error_type': type(original_error).__name__,
            'original_error_message': str(original_error)
        }

        recovery_suggestions = [
            "Check that the specification file exists and is readable",
            "Verify YAML or JSON syntax is correct",
            "Check that fieldOrder and pages only reference defined fields"
        ]

        super().__init__(message, context, recovery_suggestions)


def log_error_with_context(error: FormEngineError, operation: str) -> None:
    """
    Log a form engine error with its context and recovery suggestions.

    Args:
        error: FormEngineError instance
        operation: Description of the operation that failed
    """
    logger.error(f"{type(error).__name__} during {operation}: {error.message}")

    for key, value in error.context.items():
        logger.error(f"  {key}: {value}")

    for i, suggestion in enumerate(error.recovery_suggestions, 1):
        logger.info(f"  {i}. {suggestion}")
