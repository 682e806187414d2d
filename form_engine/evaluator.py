"""
Expression evaluator with the collapse policy.

Every function here takes an expression and an EvaluationContext and never
raises. Failures, null results on the boolean path and results of the wrong
kind collapse to a fixed value and emit a warning on this module's logger.
Warnings are diagnostics only and never change a returned value.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional, Union

from .config import EngineSettings, resolve_settings
from .context import EvaluationContext
from .exceptions import ExpressionError, ExpressionSyntaxError
from .feel import ExpressionEngine, default_engine, is_number
from .types import Ternary

logger = logging.getLogger(__name__)

NULL_GUIDANCE = (
    "This usually means a referenced field is undefined. "
    "Consider using null-safe patterns like: (field != null and field > 0) or (field = true)"
)


@dataclass(frozen=True)
class EvaluationSuccess:
    value: Any

    @property
    def success(self) -> bool:
        return True


@dataclass(frozen=True)
class EvaluationFailure:
    error: str

    @property
    def success(self) -> bool:
        return False


EvaluationOutcome = Union[EvaluationSuccess, EvaluationFailure]


def _engine(engine: Optional[ExpressionEngine]) -> ExpressionEngine:
    return engine if engine is not None else default_engine()


def evaluate(expression: str, context: EvaluationContext,
             engine: Optional[ExpressionEngine] = None) -> EvaluationOutcome:
    """
    Evaluate an expression without raising.

    Args:
        expression: Expression text
        context: Evaluation context
        engine: Expression engine (the shared FEEL engine by default)

    Returns:
        EvaluationSuccess with the raw value, or EvaluationFailure with the error text
    """
    try:
        return EvaluationSuccess(_engine(engine).evaluate(expression, context.to_namespace()))
    except ExpressionError as e:
        return EvaluationFailure(str(e))
    except Exception as e:
        # Substitute engines may raise anything
        return EvaluationFailure(f"{type(e).__name__}: {e}")


def _warn_failure(expression: str, error: str, settings: EngineSettings) -> None:
    if settings.evaluation.warn_on_error:
        logger.warning(f'FEEL expression evaluation failed: "{expression}" - {error}')


def _type_name(value: Any) -> str:
    if isinstance(value, bool):
        return "boolean"
    if is_number(value):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "list"
    if isinstance(value, dict):
        return "context"
    return type(value).__name__


def _warn_kind(expression: str, expected: str, value: Any, settings: EngineSettings) -> None:
    if settings.evaluation.warn_on_error:
        logger.warning(
            f'FEEL expression did not return {expected}: "{expression}" returned {_type_name(value)}'
        )


def evaluate_ternary(expression: str, context: EvaluationContext,
                     engine: Optional[ExpressionEngine] = None,
                     settings: Optional[EngineSettings] = None) -> Ternary:
    """
    Evaluate a boolean expression into TRUE, FALSE or UNKNOWN.

    Failures and wrong-kind results are UNKNOWN as well; each case logs
    its own warning.
    """
    settings = resolve_settings(settings)
    outcome = evaluate(expression, context, engine)

    if not outcome.success:
        _warn_failure(expression, outcome.error, settings)
        return Ternary.UNKNOWN

    value = outcome.value
    if value is None:
        if settings.evaluation.warn_on_null:
            logger.warning(f'FEEL expression returned null: "{expression}". {NULL_GUIDANCE}')
        return Ternary.UNKNOWN

    if not isinstance(value, bool):
        _warn_kind(expression, "boolean", value, settings)
        return Ternary.UNKNOWN

    return Ternary.from_value(value)


def narrow(result: Ternary) -> bool:
    """Collapse a three-valued result: only TRUE is true."""
    return result is Ternary.TRUE


def evaluate_boolean(expression: str, context: EvaluationContext,
                     engine: Optional[ExpressionEngine] = None,
                     settings: Optional[EngineSettings] = None) -> bool:
    return narrow(evaluate_ternary(expression, context, engine, settings))


def evaluate_number(expression: str, context: EvaluationContext,
                    engine: Optional[ExpressionEngine] = None,
                    settings: Optional[EngineSettings] = None) -> Optional[Union[int, float]]:
    """Evaluate to a number; None on failure, null or a non-number result."""
    settings = resolve_settings(settings)
    outcome = evaluate(expression, context, engine)

    if not outcome.success:
        _warn_failure(expression, outcome.error, settings)
        return None
    if outcome.value is None:
        return None
    if not is_number(outcome.value):
        _warn_kind(expression, "number", outcome.value, settings)
        return None
    return outcome.value


def evaluate_string(expression: str, context: EvaluationContext,
                    engine: Optional[ExpressionEngine] = None,
                    settings: Optional[EngineSettings] = None) -> Optional[str]:
    """Evaluate to a string; None on failure, null or a non-string result."""
    settings = resolve_settings(settings)
    outcome = evaluate(expression, context, engine)

    if not outcome.success:
        _warn_failure(expression, outcome.error, settings)
        return None
    if outcome.value is None:
        return None
    if not isinstance(outcome.value, str):
        _warn_kind(expression, "string", outcome.value, settings)
        return None
    return outcome.value


def evaluate_boolean_batch(expressions: Mapping[str, str], context: EvaluationContext,
                           engine: Optional[ExpressionEngine] = None,
                           settings: Optional[EngineSettings] = None) -> Dict[str, bool]:
    """Apply evaluate_boolean to every entry of a name -> expression map."""
    return {
        key: evaluate_boolean(expression, context, engine, settings)
        for key, expression in expressions.items()
    }


def validate_expression(expression: str, engine: Optional[ExpressionEngine] = None) -> Optional[str]:
    """
    Check expression syntax only.

    Missing variables are a runtime matter and are not reported.

    Returns:
        None if the expression parses, otherwise the syntax error message
    """
    try:
        _engine(engine).parse(expression)
    except ExpressionSyntaxError as e:
        return str(e)
    return None


def is_valid_expression(expression: str, engine: Optional[ExpressionEngine] = None) -> bool:
    return validate_expression(expression, engine) is None
