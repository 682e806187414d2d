"""
Form validation.

Validation runs in one pass per call: computed values and visibility are
resolved first (unless supplied), then every field in field order is checked
for required values, schema type and constraints, custom rules and, for
array fields, item counts and per-item fields.
"""

import math
import re
import logging
from datetime import date, datetime
from typing import Any, List, Mapping, Optional
from urllib.parse import urlparse

from .calculate import resolve_computed
from .config import EngineSettings, resolve_settings
from .context import (
    EvaluationContext,
    build_base_context,
    item_value,
    iter_item_contexts,
    parse_item_path,
)
from .evaluator import evaluate_boolean
from .feel import ExpressionEngine, is_number
from .required import is_field_required
from .types import (
    ArrayFieldDefinition,
    FieldBase,
    FieldError,
    FormSpecification,
    JSONSchemaProperty,
    ValidationResult,
    ValidationRule,
)
from .visibility import get_visibility

logger = logging.getLogger(__name__)

EMAIL_PATTERN = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')
UUID_PATTERN = re.compile(r'^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$', re.IGNORECASE)
URL_SCHEME_PATTERN = re.compile(r'^[A-Za-z][A-Za-z0-9+.-]*$')

MULTIPLE_OF_TOLERANCE = 1e-10


def is_empty(value: Any) -> bool:
    """None, blank strings and empty lists count as missing; False does not."""
    if value is None:
        return True
    if isinstance(value, str) and value.strip() == "":
        return True
    if isinstance(value, list) and len(value) == 0:
        return True
    return False


def _format_number(value: Any) -> str:
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _error(path: str, message: str, rule: Optional[str] = None) -> FieldError:
    return FieldError(field=path, message=message, severity="error", rule=rule)


# ============================================================================
# Type and constraint checks
# ============================================================================

def _check_format(path: str, value: str, format_name: str, label: str) -> Optional[FieldError]:
    if format_name == "email":
        if not EMAIL_PATTERN.match(value):
            return _error(path, f"{label} must be a valid email address", "format")

    elif format_name == "date":
        valid = False
        if DATE_PATTERN.match(value):
            try:
                # Round trip rejects impossible dates such as 2024-02-30
                valid = date.fromisoformat(value).isoformat() == value
            except ValueError:
                valid = False
        if not valid:
            return _error(path, f"{label} must be a valid date", "format")

    elif format_name == "date-time":
        try:
            datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return _error(path, f"{label} must be a valid date and time", "format")

    elif format_name == "uri":
        parsed = urlparse(value)
        if not (URL_SCHEME_PATTERN.match(parsed.scheme or "") and (parsed.netloc or parsed.path)):
            return _error(path, f"{label} must be a valid URL", "format")

    elif format_name == "uuid":
        if not UUID_PATTERN.match(value):
            return _error(path, f"{label} must be a valid UUID", "format")

    return None


def _check_string(path: str, value: Any, schema: JSONSchemaProperty, label: str) -> Optional[FieldError]:
    if not isinstance(value, str):
        return _error(path, f"{label} must be a string", "type")

    if schema.min_length is not None and len(value) < schema.min_length:
        return _error(path, f"{label} must be at least {schema.min_length} characters", "minLength")

    if schema.max_length is not None and len(value) > schema.max_length:
        return _error(path, f"{label} must be no more than {schema.max_length} characters", "maxLength")

    if schema.pattern:
        try:
            matched = re.search(schema.pattern, value) is not None
        except re.error as e:
            logger.warning(f"Invalid pattern for {path}: {schema.pattern!r} ({e})")
            matched = True
        if not matched:
            return _error(path, f"{label} format is invalid", "pattern")

    if schema.enum and value not in schema.enum:
        choices = ", ".join(str(choice) for choice in schema.enum)
        return _error(path, f"{label} must be one of: {choices}", "enum")

    if schema.format:
        return _check_format(path, value, schema.format, label)

    return None


def is_multiple_of(value: float, divisor: float) -> bool:
    """Remainder check tolerant of binary floating point error."""
    remainder = abs(math.fmod(value, divisor))
    return remainder < MULTIPLE_OF_TOLERANCE or abs(remainder - abs(divisor)) < MULTIPLE_OF_TOLERANCE


def _check_number(path: str, value: Any, schema: JSONSchemaProperty, label: str) -> Optional[FieldError]:
    if not is_number(value):
        return _error(path, f"{label} must be a number", "type")

    if schema.primary_type == "integer" and not (isinstance(value, int) or value.is_integer()):
        return _error(path, f"{label} must be a whole number", "type")

    if schema.minimum is not None and value < schema.minimum:
        return _error(path, f"{label} must be at least {_format_number(schema.minimum)}", "minimum")

    if schema.maximum is not None and value > schema.maximum:
        return _error(path, f"{label} must be no more than {_format_number(schema.maximum)}", "maximum")

    if schema.exclusive_minimum is not None and value <= schema.exclusive_minimum:
        return _error(path, f"{label} must be greater than {_format_number(schema.exclusive_minimum)}",
                      "exclusiveMinimum")

    if schema.exclusive_maximum is not None and value >= schema.exclusive_maximum:
        return _error(path, f"{label} must be less than {_format_number(schema.exclusive_maximum)}",
                      "exclusiveMaximum")

    if schema.multiple_of and not is_multiple_of(value, schema.multiple_of):
        return _error(path, f"{label} must be a multiple of {_format_number(schema.multiple_of)}", "multipleOf")

    return None


def check_value(path: str, value: Any, schema: Optional[JSONSchemaProperty], label: str) -> Optional[FieldError]:
    """
    Check a present value against its schema property.

    Returns:
        The first failing check as a FieldError, or None
    """
    if schema is None:
        return None

    kind = schema.primary_type
    if kind == "string":
        return _check_string(path, value, schema, label)
    if kind in ("number", "integer"):
        return _check_number(path, value, schema, label)
    if kind == "boolean" and not isinstance(value, bool):
        return _error(path, f"{label} must be true or false", "type")
    if kind == "array" and not isinstance(value, list):
        return _error(path, f"{label} must be a list", "type")
    if kind == "object" and not isinstance(value, dict):
        return _error(path, f"{label} must be an object", "type")
    return None


# ============================================================================
# Field checks
# ============================================================================

def _check_rules(path: str, rules: List[ValidationRule], context: EvaluationContext,
                 engine: Optional[ExpressionEngine],
                 settings: EngineSettings) -> List[FieldError]:
    errors = []
    for rule in rules:
        if not evaluate_boolean(rule.rule, context, engine, settings):
            errors.append(FieldError(field=path, message=rule.message, severity=rule.severity, rule=rule.rule))
    return errors


def _required_message(field_def: FieldBase) -> str:
    return f"{field_def.label} is required" if field_def.label else "This field is required"


class _FieldValidator:
    """Per-call validation state shared by the field and item checks."""

    def __init__(self, data: Mapping[str, Any], spec: FormSpecification, base: EvaluationContext,
                 visibility: Mapping[str, bool], only_visible: bool,
                 engine: Optional[ExpressionEngine], settings: EngineSettings):
        self.data = data
        self.spec = spec
        self.base = base
        self.visibility = visibility
        self.only_visible = only_visible
        self.engine = engine
        self.settings = settings

    def hidden(self, path: str) -> bool:
        return self.only_visible and self.visibility.get(path) is False

    def check_field(self, path: str, value: Any, field_def: FieldBase,
                    schema: Optional[JSONSchemaProperty], context: EvaluationContext) -> List[FieldError]:
        errors = []
        context = context.with_value(value)

        if is_field_required(path, field_def, self.spec, context, self.engine, self.settings) and is_empty(value):
            errors.append(_error(path, _required_message(field_def), "required"))

        if not is_empty(value):
            type_error = check_value(path, value, schema, field_def.label or path)
            if type_error:
                errors.append(type_error)

            if field_def.validations:
                errors.extend(_check_rules(path, field_def.validations, context, self.engine, self.settings))

        return errors

    def check_array(self, path: str, value: List[Any], field_def: FieldBase,
                    schema: Optional[JSONSchemaProperty]) -> List[FieldError]:
        errors = []
        label = field_def.label or path

        min_items = getattr(field_def, "min_items", None)
        if min_items is None and schema is not None:
            min_items = schema.min_items
        max_items = getattr(field_def, "max_items", None)
        if max_items is None and schema is not None:
            max_items = schema.max_items

        if min_items is not None and len(value) < min_items:
            errors.append(_error(path, f"{label} must have at least {min_items} items", "minItems"))
        if max_items is not None and len(value) > max_items:
            errors.append(_error(path, f"{label} must have no more than {max_items} items", "maxItems"))

        items_schema = schema.items if schema is not None else None
        item_fields = field_def.item_fields if isinstance(field_def, ArrayFieldDefinition) else {}

        if item_fields:
            for index, prefix, item_context in iter_item_contexts(path, self.data, self.base):
                for name in item_fields:
                    errors.extend(self.check_item_field(path, index, name, item_context))
        elif items_schema is not None:
            for index, element in enumerate(value):
                if not is_empty(element):
                    type_error = check_value(f"{path}[{index}]", element, items_schema, f"{label} item {index + 1}")
                    if type_error:
                        errors.append(type_error)

        return errors

    def check_item_field(self, array_path: str, index: int, name: str,
                         item_context: EvaluationContext) -> List[FieldError]:
        item_path = f"{array_path}[{index}].{name}"
        if self.hidden(item_path):
            return []

        array_def = self.spec.fields[array_path]
        item_def = array_def.item_fields[name]

        array_schema = self.spec.schema_property(array_path)
        item_schema = None
        if array_schema is not None and array_schema.items is not None and array_schema.items.properties:
            item_schema = array_schema.items.properties.get(name)

        value = item_value(item_context.item, name)
        return self.check_field(item_path, value, item_def, item_schema, item_context)

    def check_top_level(self, path: str) -> List[FieldError]:
        field_def = self.spec.fields[path]
        schema = self.spec.schema_property(path)
        value = self.data.get(path)

        errors = self.check_field(path, value, field_def, schema, self.base)
        if isinstance(value, list) and (isinstance(field_def, ArrayFieldDefinition)
                                        or (schema is not None and schema.primary_type == "array")):
            errors.extend(self.check_array(path, value, field_def, schema))
        return errors


def _validator(data: Optional[Mapping[str, Any]], spec: FormSpecification,
               computed: Optional[Mapping[str, Any]], visibility: Optional[Mapping[str, bool]],
               only_visible: Optional[bool], engine: Optional[ExpressionEngine],
               settings: Optional[EngineSettings]) -> _FieldValidator:
    settings = resolve_settings(settings)
    data = dict(data or {})
    computed = resolve_computed(data, spec, computed, engine, settings)
    if visibility is None:
        visibility = get_visibility(data, spec, computed, engine, settings)
    if only_visible is None:
        only_visible = settings.validation.only_visible

    return _FieldValidator(
        data, spec, build_base_context(data, spec, computed), visibility, only_visible, engine, settings
    )


# ============================================================================
# Public API
# ============================================================================

def validate(data: Optional[Mapping[str, Any]], spec: FormSpecification,
             computed: Optional[Mapping[str, Any]] = None,
             visibility: Optional[Mapping[str, bool]] = None,
             only_visible: Optional[bool] = None,
             engine: Optional[ExpressionEngine] = None,
             settings: Optional[EngineSettings] = None) -> ValidationResult:
    """
    Validate form data against a specification.

    Args:
        data: Current form data
        spec: Form specification
        computed: Pre-calculated computed values (calculated when omitted)
        visibility: Pre-calculated visibility map (resolved when omitted)
        only_visible: Skip hidden fields (defaults to settings.validation.only_visible)
        engine: Expression engine
        settings: Engine settings

    Returns:
        ValidationResult; valid unless an error-severity entry exists
    """
    validator = _validator(data, spec, computed, visibility, only_visible, engine, settings)
    errors: List[FieldError] = []

    for path in spec.field_order:
        if validator.hidden(path):
            continue
        errors.extend(validator.check_top_level(path))

    result = ValidationResult.from_errors(errors)
    logger.debug(f"Validation finished: valid={result.valid}, {len(result.errors)} issue(s)")
    return result


def validate_single_field(path: str, data: Optional[Mapping[str, Any]], spec: FormSpecification,
                          computed: Optional[Mapping[str, Any]] = None,
                          engine: Optional[ExpressionEngine] = None,
                          settings: Optional[EngineSettings] = None) -> List[FieldError]:
    """
    Validate one field, either a top-level path or ``array[i].field``.

    Computed values and visibility are resolved for this call. Hidden fields,
    item fields of a hidden array and unknown paths produce no errors, the same
    as in validate with only_visible set.
    """
    validator = _validator(data, spec, computed, None, True, engine, settings)

    if path in spec.fields:
        if validator.hidden(path):
            return []
        return validator.check_top_level(path)

    parts = parse_item_path(path)
    if parts is None:
        return []

    array_path, index, name = parts
    array_def = spec.fields.get(array_path)
    if not isinstance(array_def, ArrayFieldDefinition) or name not in array_def.item_fields \
            or validator.hidden(array_path):
        return []

    for item_index, _prefix, item_context in iter_item_contexts(array_path, validator.data, validator.base):
        if item_index == index:
            return validator.check_item_field(array_path, index, name, item_context)
    return []
