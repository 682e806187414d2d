"""
Evaluation context construction.

An EvaluationContext is the immutable scope an expression runs in: form data,
computed values, reference data and, inside array items or single-field
validation, the current item, its index and the value under validation.
``to_namespace`` merges these into the flat mapping the expression engine sees.
"""

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, Iterator, Mapping, Optional, Tuple

from .types import ArrayFieldDefinition, FieldBase, FormSpecification

logger = logging.getLogger(__name__)

RESERVED_NAMES = ("computed", "ref", "item", "itemIndex", "value")

ITEM_PATH_PATTERN = re.compile(r'^(?P<array>[^\[\]]+)\[(?P<index>\d+)\]\.(?P<field>.+)$')

_UNSET = object()


@dataclass(frozen=True)
class EvaluationContext:
    data: Mapping[str, Any] = field(default_factory=dict)
    computed: Optional[Mapping[str, Any]] = None
    ref: Optional[Mapping[str, Any]] = None
    item: Any = _UNSET
    item_index: Optional[int] = None
    value: Any = _UNSET

    def with_item(self, item: Any, index: int) -> "EvaluationContext":
        """Overlay an array element scope."""
        return replace(self, item=item, item_index=index)

    def with_value(self, value: Any) -> "EvaluationContext":
        """Overlay the value under validation."""
        return replace(self, value=value)

    @property
    def has_item(self) -> bool:
        return self.item is not _UNSET

    @property
    def has_value(self) -> bool:
        return self.value is not _UNSET

    def to_namespace(self) -> Dict[str, Any]:
        """
        Merge the scopes into one flat namespace.

        Data keys become bare identifiers. Reserved names are added last and
        win over data keys with the same name.
        """
        reserved = {
            "computed": dict(self.computed or {}),
            "ref": dict(self.ref or {}),
        }
        if self.has_item:
            reserved["item"] = self.item
            reserved["itemIndex"] = self.item_index
        if self.has_value:
            reserved["value"] = self.value

        namespace = dict(self.data)
        for collision in sorted(reserved.keys() & namespace.keys()):
            logger.warning(
                f"Data key '{collision}' collides with reserved name '{collision}'; "
                f"the reserved binding is used in expressions"
            )
        namespace.update(reserved)
        return namespace


def build_base_context(data: Optional[Mapping[str, Any]], spec: FormSpecification,
                       computed: Optional[Mapping[str, Any]] = None) -> EvaluationContext:
    """
    Build the form-level context shared by all resolvers.

    Args:
        data: Current form data
        spec: Form specification (provides reference data)
        computed: Computed values already resolved for this data

    Returns:
        EvaluationContext without item or value scope
    """
    return EvaluationContext(
        data=dict(data or {}),
        computed=dict(computed or {}),
        ref=dict(spec.reference_data or {}),
    )


def iter_item_contexts(path: str, data: Optional[Mapping[str, Any]],
                       base: EvaluationContext) -> Iterator[Tuple[int, str, EvaluationContext]]:
    """
    Yield an item-scoped context for each element of an array field.

    Args:
        path: Array field path
        data: Current form data
        base: Form-level context to overlay

    Yields:
        (index, indexed path prefix such as ``items[0]``, item context)
    """
    elements = (data or {}).get(path)
    if not isinstance(elements, list):
        return

    for index, element in enumerate(elements):
        item = {} if element is None else element
        yield index, f"{path}[{index}]", base.with_item(item, index)


def resolve_field_states(data: Optional[Mapping[str, Any]], spec: FormSpecification,
                         base: EvaluationContext,
                         field_state: Callable[[str, FieldBase, EvaluationContext], bool],
                         skip_items_when_false: bool = False) -> Dict[str, bool]:
    """
    Apply a per-field state function across the field tree.

    Top-level fields in field order are resolved against ``base``; item fields
    of array fields are resolved once per element against the item context and
    keyed by their indexed path.

    Args:
        data: Current form data
        spec: Form specification
        base: Form-level context
        field_state: (path, field definition, context) -> state
        skip_items_when_false: Do not descend into arrays whose own state is False

    Returns:
        Map of field path to state
    """
    result: Dict[str, bool] = {}

    for path in spec.field_order:
        field_def = spec.fields[path]
        result[path] = field_state(path, field_def, base)

        if skip_items_when_false and not result[path]:
            continue
        if not isinstance(field_def, ArrayFieldDefinition) or not field_def.item_fields:
            continue

        for _index, prefix, item_context in iter_item_contexts(path, data, base):
            for name, item_def in field_def.item_fields.items():
                item_path = f"{prefix}.{name}"
                result[item_path] = field_state(item_path, item_def, item_context)

    return result


def item_field_path(array_path: str, index: int, field_name: str) -> str:
    return f"{array_path}[{index}].{field_name}"


def parse_item_path(path: str) -> Optional[Tuple[str, int, str]]:
    """Split ``array[i].field`` into its parts; None for other paths."""
    match = ITEM_PATH_PATTERN.match(path)
    if not match:
        return None
    return match.group("array"), int(match.group("index")), match.group("field")


def item_value(item: Any, field_name: str) -> Any:
    return item.get(field_name) if isinstance(item, Mapping) else None


def find_field(spec: FormSpecification, path: str) -> Optional[FieldBase]:
    """Field definition for a top-level path or an ``array[i].field`` path."""
    if path in spec.fields:
        return spec.fields[path]

    parts = parse_item_path(path)
    if parts is None:
        return None
    array_def = spec.fields.get(parts[0])
    if not isinstance(array_def, ArrayFieldDefinition):
        return None
    return array_def.item_fields.get(parts[2])


def context_for_path(path: str, data: Optional[Mapping[str, Any]],
                     base: EvaluationContext) -> EvaluationContext:
    """The context a field at ``path`` is resolved in: base, or its item scope."""
    parts = parse_item_path(path)
    if parts is None:
        return base

    array_path, index, _name = parts
    elements = (data or {}).get(array_path)
    element = elements[index] if isinstance(elements, list) and index < len(elements) else None
    return base.with_item({} if element is None else element, index)
