"""
Current-values surface.

Returns the values of the fields a specification declares, optionally
dropping fields that are hidden for the current data. Exclusion is an
explicit flag rather than something inferred from visibility.
"""

import logging
from copy import deepcopy
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .calculate import resolve_computed
from .config import EngineSettings, resolve_settings
from .feel import ExpressionEngine
from .types import ArrayFieldDefinition, FormSpecification
from .visibility import get_visibility

logger = logging.getLogger(__name__)


def filter_to_spec_fields(data: Optional[Mapping[str, Any]],
                          spec: FormSpecification) -> Tuple[Dict[str, Any], List[str]]:
    """
    Keep only keys that are in the field order.

    Returns:
        Tuple of (filtered values, sorted list of keys the specification does not declare)
    """
    if not isinstance(data, Mapping):
        return {}, []

    filtered = {path: data[path] for path in spec.field_order if path in data}
    extras = sorted(set(data.keys()) - set(spec.field_order))
    return filtered, extras


def _strip_hidden_items(path: str, elements: Any, field_def: ArrayFieldDefinition,
                        visibility: Mapping[str, bool]) -> Any:
    if not isinstance(elements, list):
        return elements

    stripped = []
    for index, element in enumerate(elements):
        if isinstance(element, dict):
            element = {
                key: value for key, value in element.items()
                if key not in field_def.item_fields or visibility.get(f"{path}[{index}].{key}", True)
            }
        stripped.append(element)
    return stripped


def get_submission_values(data: Optional[Mapping[str, Any]], spec: FormSpecification,
                          visibility: Optional[Mapping[str, bool]] = None,
                          exclude_hidden: Optional[bool] = None,
                          computed: Optional[Mapping[str, Any]] = None,
                          engine: Optional[ExpressionEngine] = None,
                          settings: Optional[EngineSettings] = None) -> Dict[str, Any]:
    """
    Values of the declared fields, deep-copied.

    Args:
        data: Current form data
        spec: Form specification
        visibility: Pre-calculated visibility map (resolved when needed and omitted)
        exclude_hidden: Drop hidden fields and hidden item fields
            (defaults to settings.values.exclude_hidden)
        computed: Pre-calculated computed values
        engine: Expression engine
        settings: Engine settings

    Returns:
        Map of field path to value, in field order
    """
    settings = resolve_settings(settings)
    if exclude_hidden is None:
        exclude_hidden = settings.values.exclude_hidden

    values, extras = filter_to_spec_fields(data, spec)
    if extras:
        logger.debug(f"Ignoring undeclared keys: {extras}")

    if not exclude_hidden:
        return deepcopy(values)

    if visibility is None:
        computed = resolve_computed(data, spec, computed, engine, settings)
        visibility = get_visibility(data, spec, computed, engine, settings)

    result = {}
    for path, value in values.items():
        if visibility.get(path) is False:
            continue
        field_def = spec.fields[path]
        if isinstance(field_def, ArrayFieldDefinition) and field_def.item_fields:
            value = _strip_hidden_items(path, value, field_def, visibility)
        result[path] = deepcopy(value)

    return result
