"""
Computed field evaluation.

Every computed expression is evaluated once per call against the form data,
the reference data and the computed values resolved before it. A computed
field that references a computed value which is still None is None itself and
is not evaluated. Failures and non-finite numbers become None so later
expressions still evaluate.
"""

import math
import logging
from typing import Any, Dict, List, Mapping, Optional

from .config import EngineSettings, resolve_settings
from .context import build_base_context
from .dependencies import computation_order, find_computed_references
from .evaluator import evaluate
from .feel import ExpressionEngine
from .format import format_value
from .types import CalculationError, CalculationResult, FormSpecification

logger = logging.getLogger(__name__)


def _evaluation_order(spec: FormSpecification, settings: EngineSettings) -> List[str]:
    expressions = spec.computed_expressions()
    if settings.calculate.order == "declaration":
        return list(expressions)
    return computation_order(expressions)


def calculate_with_errors(data: Optional[Mapping[str, Any]], spec: FormSpecification,
                          engine: Optional[ExpressionEngine] = None,
                          settings: Optional[EngineSettings] = None) -> CalculationResult:
    """
    Calculate all computed values and collect evaluation errors.

    Args:
        data: Current form data
        spec: Form specification
        engine: Expression engine (the shared FEEL engine by default)
        settings: Engine settings; ``calculate.order`` picks the evaluation order

    Returns:
        CalculationResult with values for every computed field and any errors
    """
    settings = resolve_settings(settings)
    result = CalculationResult()

    if not spec.computed:
        return result

    for name in _evaluation_order(spec, settings):
        computed_field = spec.computed[name]
        pending = [ref for ref in find_computed_references(computed_field.expression)
                   if ref in result.values and result.values[ref] is None]
        if pending:
            logger.debug(f"Computed field '{name}' depends on null {pending}, storing null")
            result.values[name] = None
            continue

        context = build_base_context(data, spec, result.values)
        outcome = evaluate(computed_field.expression, context, engine)

        if not outcome.success:
            logger.warning(f"Computed field '{name}' could not be evaluated: {outcome.error}")
            result.errors.append(CalculationError(
                field=name,
                message=outcome.error,
                expression=computed_field.expression
            ))
            result.values[name] = None
            continue

        value = outcome.value
        if isinstance(value, float) and not math.isfinite(value):
            logger.debug(f"Computed field '{name}' produced {value}, storing null")
            value = None

        result.values[name] = value

    return result


def calculate(data: Optional[Mapping[str, Any]], spec: FormSpecification,
              engine: Optional[ExpressionEngine] = None,
              settings: Optional[EngineSettings] = None) -> Dict[str, Any]:
    """Calculate all computed values; name -> value."""
    return calculate_with_errors(data, spec, engine, settings).values


def resolve_computed(data: Optional[Mapping[str, Any]], spec: FormSpecification,
                     computed: Optional[Mapping[str, Any]] = None,
                     engine: Optional[ExpressionEngine] = None,
                     settings: Optional[EngineSettings] = None) -> Dict[str, Any]:
    """Use caller-supplied computed values or calculate them."""
    if computed is not None:
        return dict(computed)
    return calculate(data, spec, engine, settings)


def calculate_field(name: str, data: Optional[Mapping[str, Any]], spec: FormSpecification,
                    engine: Optional[ExpressionEngine] = None,
                    settings: Optional[EngineSettings] = None) -> Any:
    """Value of one computed field, None if unknown or failed."""
    return calculate(data, spec, engine, settings).get(name)


def get_formatted_value(name: str, data: Optional[Mapping[str, Any]], spec: FormSpecification,
                        currency: str = "USD", null_display: Optional[str] = None,
                        engine: Optional[ExpressionEngine] = None,
                        settings: Optional[EngineSettings] = None) -> Optional[str]:
    """
    Computed value formatted with its declared format.

    Returns:
        Formatted string; None when the field does not exist, or when the value
        is None and no null_display is given
    """
    if not spec.computed or name not in spec.computed:
        return None

    value = calculate_field(name, data, spec, engine, settings)
    if value is None and null_display is None:
        return None

    return format_value(value, spec.computed[name].format, currency=currency, null_display=null_display)
