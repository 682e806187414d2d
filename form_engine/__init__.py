"""
Form state engine.

Resolves visibility, required, enabled, readonly and validation state of a
declaratively specified form from its current data, and calculates computed
values from FEEL expressions.
"""

from .calculate import calculate, calculate_field, calculate_with_errors, get_formatted_value
from .config import EngineSettings, configure_logging, load_settings
from .context import EvaluationContext, build_base_context, iter_item_contexts
from .enabled import get_enabled, is_enabled
from .evaluator import (
    evaluate,
    evaluate_boolean,
    evaluate_boolean_batch,
    evaluate_number,
    evaluate_string,
    evaluate_ternary,
    is_valid_expression,
    narrow,
    validate_expression,
)
from .exceptions import (
    ComputedDependencyError,
    ExpressionError,
    ExpressionRuntimeError,
    ExpressionSyntaxError,
    FormEngineError,
    SpecificationError,
    SpecificationLoadError,
)
from .feel import ExpressionEngine, FeelEngine
from .format import format_value
from .readonly import get_readonly, is_readonly
from .required import get_required, is_required
from .spec_loader import as_specification, load_specification
from .types import (
    CalculationError,
    CalculationResult,
    FieldError,
    FormSpecification,
    Ternary,
    ValidationResult,
)
from .validate import validate, validate_single_field
from .values import get_submission_values
from .visibility import (
    get_options_visibility,
    get_page_visibility,
    get_visibility,
    get_visible_options,
    is_field_visible,
)

__version__ = "0.1.0"
