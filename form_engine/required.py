"""
Required-state resolution.

A field is required when the schema lists it as required or when its
``requiredWhen`` expression is true. Item fields use the ``required`` list
of the array's ``items`` schema.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from .calculate import resolve_computed
from .config import EngineSettings
from .context import (
    EvaluationContext,
    build_base_context,
    context_for_path,
    find_field,
    parse_item_path,
    resolve_field_states,
)
from .evaluator import evaluate_boolean
from .feel import ExpressionEngine
from .types import FieldBase, FormSpecification, is_input_field

logger = logging.getLogger(__name__)


def is_schema_required(path: str, spec: FormSpecification) -> bool:
    """Static required flag from the schema for a top-level or item path."""
    parts = parse_item_path(path)
    if parts is None:
        return spec.is_schema_required(path)

    array_path, _index, name = parts
    array_schema = spec.schema_property(array_path)
    if array_schema is None or array_schema.items is None:
        return False
    return name in (array_schema.items.required or [])


def is_field_required(path: str, field_def: FieldBase, spec: FormSpecification,
                      context: EvaluationContext,
                      engine: Optional[ExpressionEngine] = None,
                      settings: Optional[EngineSettings] = None) -> bool:
    if not is_input_field(field_def):
        return False
    if is_schema_required(path, spec):
        return True
    if field_def.required_when:
        return evaluate_boolean(field_def.required_when, context, engine, settings)
    return False


def get_required(data: Optional[Mapping[str, Any]], spec: FormSpecification,
                 computed: Optional[Mapping[str, Any]] = None,
                 engine: Optional[ExpressionEngine] = None,
                 settings: Optional[EngineSettings] = None) -> Dict[str, bool]:
    """
    Determine the required state of every field, array items included.

    Args:
        data: Current form data
        spec: Form specification
        computed: Pre-calculated computed values (calculated when omitted)

    Returns:
        Map of field path to required state
    """
    computed = resolve_computed(data, spec, computed, engine, settings)
    base = build_base_context(data, spec, computed)

    return resolve_field_states(
        data, spec, base,
        lambda path, field_def, context: is_field_required(path, field_def, spec, context, engine, settings)
    )


def is_required(path: str, data: Optional[Mapping[str, Any]], spec: FormSpecification,
                computed: Optional[Mapping[str, Any]] = None,
                engine: Optional[ExpressionEngine] = None,
                settings: Optional[EngineSettings] = None) -> bool:
    field_def = find_field(spec, path)
    if field_def is None:
        return is_schema_required(path, spec)

    computed = resolve_computed(data, spec, computed, engine, settings)
    context = context_for_path(path, data, build_base_context(data, spec, computed))
    return is_field_required(path, field_def, spec, context, engine, settings)
