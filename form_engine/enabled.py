"""
Enabled-state resolution. Fields are enabled unless ``enabledWhen`` says otherwise.
"""

import logging
from typing import Any, Dict, Mapping, Optional

from .calculate import resolve_computed
from .config import EngineSettings
from .context import EvaluationContext, build_base_context, context_for_path, find_field, resolve_field_states
from .evaluator import evaluate_boolean
from .feel import ExpressionEngine
from .types import FieldBase, FormSpecification, is_input_field

logger = logging.getLogger(__name__)


def is_field_enabled(field_def: FieldBase, context: EvaluationContext,
                     engine: Optional[ExpressionEngine] = None,
                     settings: Optional[EngineSettings] = None) -> bool:
    if not is_input_field(field_def) or not field_def.enabled_when:
        return True
    return evaluate_boolean(field_def.enabled_when, context, engine, settings)


def get_enabled(data: Optional[Mapping[str, Any]], spec: FormSpecification,
                computed: Optional[Mapping[str, Any]] = None,
                engine: Optional[ExpressionEngine] = None,
                settings: Optional[EngineSettings] = None) -> Dict[str, bool]:
    """Map of field path to enabled state, array items included."""
    computed = resolve_computed(data, spec, computed, engine, settings)
    base = build_base_context(data, spec, computed)

    return resolve_field_states(
        data, spec, base,
        lambda path, field_def, context: is_field_enabled(field_def, context, engine, settings)
    )


def is_enabled(path: str, data: Optional[Mapping[str, Any]], spec: FormSpecification,
               computed: Optional[Mapping[str, Any]] = None,
               engine: Optional[ExpressionEngine] = None,
               settings: Optional[EngineSettings] = None) -> bool:
    """Enabled state of one field; unknown paths are enabled."""
    field_def = find_field(spec, path)
    if field_def is None:
        return True

    computed = resolve_computed(data, spec, computed, engine, settings)
    context = context_for_path(path, data, build_base_context(data, spec, computed))
    return is_field_enabled(field_def, context, engine, settings)
