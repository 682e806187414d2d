"""
Visibility resolution for fields, pages and select options.
"""

import logging
from typing import Any, Dict, List, Mapping, Optional

from .calculate import resolve_computed
from .config import EngineSettings
from .context import (
    EvaluationContext,
    build_base_context,
    context_for_path,
    find_field,
    iter_item_contexts,
    resolve_field_states,
)
from .evaluator import evaluate_boolean
from .feel import ExpressionEngine
from .types import ArrayFieldDefinition, FormSpecification, SelectFieldDefinition, SelectOption

logger = logging.getLogger(__name__)


def get_visibility(data: Optional[Mapping[str, Any]], spec: FormSpecification,
                   computed: Optional[Mapping[str, Any]] = None,
                   engine: Optional[ExpressionEngine] = None,
                   settings: Optional[EngineSettings] = None) -> Dict[str, bool]:
    """
    Determine visibility for every field in a form.

    Fields without ``visibleWhen`` are visible. Item fields of an invisible
    array are not evaluated and do not appear in the result.

    Args:
        data: Current form data
        spec: Form specification
        computed: Pre-calculated computed values (calculated when omitted)
        engine: Expression engine
        settings: Engine settings

    Returns:
        Map of field path (including ``array[i].field``) to visibility
    """
    computed = resolve_computed(data, spec, computed, engine, settings)
    base = build_base_context(data, spec, computed)

    def field_visible(path, field_def, context):
        if not field_def.visible_when:
            return True
        return evaluate_boolean(field_def.visible_when, context, engine, settings)

    return resolve_field_states(data, spec, base, field_visible, skip_items_when_false=True)


def is_field_visible(path: str, data: Optional[Mapping[str, Any]], spec: FormSpecification,
                     computed: Optional[Mapping[str, Any]] = None,
                     engine: Optional[ExpressionEngine] = None,
                     settings: Optional[EngineSettings] = None) -> bool:
    """Visibility of one field; unknown paths are visible."""
    field_def = find_field(spec, path)
    if field_def is None or not field_def.visible_when:
        return True

    computed = resolve_computed(data, spec, computed, engine, settings)
    context = context_for_path(path, data, build_base_context(data, spec, computed))
    return evaluate_boolean(field_def.visible_when, context, engine, settings)


def get_page_visibility(data: Optional[Mapping[str, Any]], spec: FormSpecification,
                        computed: Optional[Mapping[str, Any]] = None,
                        engine: Optional[ExpressionEngine] = None,
                        settings: Optional[EngineSettings] = None) -> Dict[str, bool]:
    """Map of page id to visibility; empty when the form has no pages."""
    if not spec.pages:
        return {}

    computed = resolve_computed(data, spec, computed, engine, settings)
    context = build_base_context(data, spec, computed)

    return {
        page.id: evaluate_boolean(page.visible_when, context, engine, settings) if page.visible_when else True
        for page in spec.pages
    }


def _filter_options(options: List[SelectOption], context: EvaluationContext,
                    engine: Optional[ExpressionEngine],
                    settings: Optional[EngineSettings]) -> List[SelectOption]:
    # Failed expressions collapse to False, which hides the option
    return [
        option for option in options
        if not option.visible_when or evaluate_boolean(option.visible_when, context, engine, settings)
    ]


def get_options_visibility(data: Optional[Mapping[str, Any]], spec: FormSpecification,
                           computed: Optional[Mapping[str, Any]] = None,
                           engine: Optional[ExpressionEngine] = None,
                           settings: Optional[EngineSettings] = None) -> Dict[str, List[SelectOption]]:
    """
    Visible options of every select/multiselect field.

    Array item fields are keyed by their indexed path, e.g. ``items[0].category``.

    Returns:
        Map of field path to the options that remain visible
    """
    computed = resolve_computed(data, spec, computed, engine, settings)
    base = build_base_context(data, spec, computed)
    result: Dict[str, List[SelectOption]] = {}

    for path in spec.field_order:
        field_def = spec.fields[path]

        if isinstance(field_def, SelectFieldDefinition) and field_def.options:
            result[path] = _filter_options(field_def.options, base, engine, settings)

        if isinstance(field_def, ArrayFieldDefinition) and field_def.item_fields:
            for _index, prefix, item_context in iter_item_contexts(path, data, base):
                for name, item_def in field_def.item_fields.items():
                    if isinstance(item_def, SelectFieldDefinition) and item_def.options:
                        result[f"{prefix}.{name}"] = _filter_options(
                            item_def.options, item_context, engine, settings
                        )

    return result


def get_visible_options(options: Optional[List[SelectOption]], data: Optional[Mapping[str, Any]],
                        spec: FormSpecification, computed: Optional[Mapping[str, Any]] = None,
                        item: Any = None, item_index: Optional[int] = None,
                        engine: Optional[ExpressionEngine] = None,
                        settings: Optional[EngineSettings] = None) -> List[SelectOption]:
    """Filter one option list, optionally inside an array item scope."""
    if not options:
        return []

    computed = resolve_computed(data, spec, computed, engine, settings)
    context = build_base_context(data, spec, computed)
    if item is not None:
        context = context.with_item(item, item_index)

    return _filter_options(options, context, engine, settings)
