"""
Core types for the form state engine.

A form specification combines a JSON Schema-like property map with
field definitions whose conditional behaviour is written as FEEL
expressions. Specification types are pydantic models that accept the
camelCase keys used in specification documents.
"""

from copy import deepcopy
from dataclasses import dataclass, field
from enum import Enum
from typing import Annotated, Any, Dict, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from .dependencies import computation_order
from .exceptions import SpecificationError

Severity = Literal["error", "warning"]

_FORMAT_FIELD_TYPES = {
    "date": "date",
    "date-time": "datetime",
    "email": "email",
    "uri": "url",
}


class SpecModel(BaseModel):
    """Base model accepting camelCase or snake_case keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


# ============================================================================
# JSON Schema
# ============================================================================

class JSONSchemaProperty(SpecModel):
    """Type and constraint declaration for one value."""
    type: Optional[Union[str, List[str]]] = None
    title: Optional[str] = None
    description: Optional[str] = None
    format: Optional[str] = None
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    pattern: Optional[str] = None
    enum: Optional[List[Any]] = None
    minimum: Optional[Union[int, float]] = None
    maximum: Optional[Union[int, float]] = None
    exclusive_minimum: Optional[Union[int, float]] = None
    exclusive_maximum: Optional[Union[int, float]] = None
    multiple_of: Optional[Union[int, float]] = None
    items: Optional["JSONSchemaProperty"] = None
    properties: Optional[Dict[str, "JSONSchemaProperty"]] = None
    required: Optional[List[str]] = None
    min_items: Optional[int] = None
    max_items: Optional[int] = None

    @property
    def primary_type(self) -> Optional[str]:
        """Declared type, ignoring a "null" alternative."""
        if isinstance(self.type, list):
            return next((t for t in self.type if t != "null"), None)
        return self.type


class JSONSchema(SpecModel):
    type: str = "object"
    properties: Dict[str, JSONSchemaProperty] = Field(default_factory=dict)
    required: List[str] = Field(default_factory=list)


# ============================================================================
# Field definitions
# ============================================================================

class ValidationRule(SpecModel):
    """Custom validation rule: a boolean FEEL expression with its message."""
    rule: str
    message: str
    severity: Severity = "error"


class SelectOption(SpecModel):
    value: Any
    label: str
    description: Optional[str] = None
    visible_when: Optional[str] = None


class FieldBase(SpecModel):
    """Attributes shared by every field kind."""
    label: Optional[str] = None
    description: Optional[str] = None
    visible_when: Optional[str] = None
    validations: List[ValidationRule] = Field(default_factory=list)


class InputFieldBase(FieldBase):
    """Attributes of field kinds that accept user input."""
    placeholder: Optional[str] = None
    default: Any = None
    required_when: Optional[str] = None
    enabled_when: Optional[str] = None
    readonly_when: Optional[str] = None


class TextFieldDefinition(InputFieldBase):
    type: Literal["text", "email", "password", "url", "textarea", "phone"]
    prefix: Optional[str] = None
    suffix: Optional[str] = None


class NumberFieldDefinition(InputFieldBase):
    type: Literal["number", "integer"]
    min: Optional[Union[int, float]] = None
    max: Optional[Union[int, float]] = None
    step: Optional[Union[int, float]] = None
    prefix: Optional[str] = None
    suffix: Optional[str] = None


class SelectFieldDefinition(InputFieldBase):
    type: Literal["select", "multiselect"]
    options: List[SelectOption] = Field(default_factory=list)


class BooleanFieldDefinition(InputFieldBase):
    type: Literal["boolean"]


class DateFieldDefinition(InputFieldBase):
    type: Literal["date", "datetime"]


class ArrayFieldDefinition(InputFieldBase):
    type: Literal["array"]
    item_fields: Dict[str, "FieldDefinition"] = Field(default_factory=dict)
    min_items: Optional[int] = None
    max_items: Optional[int] = None


class ObjectFieldDefinition(InputFieldBase):
    type: Literal["object"]


class DisplayFieldDefinition(FieldBase):
    """Static content; never required, enabled-toggled or readonly."""
    type: Literal["display"]
    content: Optional[str] = None


class ComputedFieldDefinition(FieldBase):
    """Placeholder showing the value of a computed field."""
    type: Literal["computed"]
    source: Optional[str] = None
    format: Optional[str] = None


FieldDefinition = Annotated[
    Union[
        TextFieldDefinition,
        NumberFieldDefinition,
        SelectFieldDefinition,
        BooleanFieldDefinition,
        DateFieldDefinition,
        ArrayFieldDefinition,
        ObjectFieldDefinition,
        DisplayFieldDefinition,
        ComputedFieldDefinition,
    ],
    Field(discriminator="type"),
]

ArrayFieldDefinition.model_rebuild()


def is_input_field(field_def: FieldBase) -> bool:
    """True for field kinds that carry required/enabled/readonly expressions."""
    return isinstance(field_def, InputFieldBase)


def infer_field_type(schema_property: Optional[Mapping[str, Any]]) -> str:
    """
    Infer a field kind from a raw schema property.

    Args:
        schema_property: Schema property mapping (may be None)

    Returns:
        Field type name, "text" when nothing more specific applies
    """
    if not isinstance(schema_property, Mapping):
        return "text"

    declared = schema_property.get("type")
    if isinstance(declared, list):
        declared = next((t for t in declared if t != "null"), None)

    if declared in ("number", "integer", "boolean", "array", "object"):
        return declared

    return _FORMAT_FIELD_TYPES.get(schema_property.get("format"), "text")


# ============================================================================
# Computed fields, pages, metadata
# ============================================================================

class ComputedField(SpecModel):
    expression: str
    label: Optional[str] = None
    format: Optional[str] = None


class PageDefinition(SpecModel):
    id: str
    title: Optional[str] = None
    description: Optional[str] = None
    fields: List[str] = Field(default_factory=list)
    visible_when: Optional[str] = None


class FormMeta(SpecModel):
    id: Optional[str] = None
    title: str = "Untitled Form"
    description: Optional[str] = None
    version: Optional[str] = None


# ============================================================================
# Specification
# ============================================================================

class FormSpecification(SpecModel):
    """
    Complete form specification.

    Construction fails fast when field order or pages reference undefined
    fields, or when computed fields depend on each other in a cycle.
    """
    version: str = "1.0"
    meta: FormMeta = Field(default_factory=FormMeta)
    form_schema: JSONSchema = Field(default_factory=JSONSchema, alias="schema")
    fields: Dict[str, FieldDefinition] = Field(default_factory=dict)
    field_order: List[str] = Field(default_factory=list)
    computed: Optional[Dict[str, ComputedField]] = None
    pages: Optional[List[PageDefinition]] = None
    reference_data: Optional[Dict[str, Any]] = None

    @model_validator(mode="before")
    @classmethod
    def fill_field_kinds(cls, raw: Any) -> Any:
        """Default field order and infer missing field kinds from the schema."""
        if not isinstance(raw, Mapping):
            return raw

        raw = dict(raw)
        fields = raw.get("fields")
        if not isinstance(fields, Mapping):
            return raw

        schema = raw.get("schema", raw.get("form_schema")) or {}
        if isinstance(schema, BaseModel):
            schema = schema.model_dump(by_alias=True, exclude_none=True)
        properties = (schema.get("properties") or {}) if isinstance(schema, Mapping) else {}

        filled = {}
        for path, field_def in fields.items():
            if isinstance(field_def, Mapping):
                field_def = _with_inferred_type(field_def, properties.get(path))
            filled[path] = field_def
        raw["fields"] = filled

        if "fieldOrder" not in raw and "field_order" not in raw:
            raw["fieldOrder"] = list(filled.keys())

        return raw

    @field_validator("computed", mode="before")
    @classmethod
    def expand_computed_shorthand(cls, value: Any) -> Any:
        """Accept ``name: "expression"`` as shorthand for ``name: {expression: ...}``."""
        if isinstance(value, Mapping):
            return {
                name: {"expression": entry} if isinstance(entry, str) else entry
                for name, entry in value.items()
            }
        return value

    @model_validator(mode="after")
    def check_references(self) -> "FormSpecification":
        problems = [
            f"fieldOrder entry '{path}' has no field definition"
            for path in self.field_order
            if path not in self.fields
        ]
        for page in self.pages or []:
            problems.extend(
                f"page '{page.id}' lists undefined field '{path}'"
                for path in page.fields
                if path not in self.fields
            )
        if problems:
            raise SpecificationError(
                f"Specification references undefined fields: {'; '.join(problems)}", problems
            )

        if self.computed:
            computation_order({name: c.expression for name, c in self.computed.items()})

        return self

    def schema_property(self, path: str) -> Optional[JSONSchemaProperty]:
        return self.form_schema.properties.get(path)

    def is_schema_required(self, path: str) -> bool:
        return path in self.form_schema.required

    def computed_expressions(self) -> Dict[str, str]:
        """Computed name -> expression, in declaration order."""
        return {name: c.expression for name, c in (self.computed or {}).items()}


def _with_inferred_type(field_def: Mapping[str, Any],
                        schema_property: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """Return a copy of a raw field definition with its kind filled in."""
    filled = dict(field_def)
    if "type" not in filled:
        filled["type"] = infer_field_type(schema_property)

    item_key = "itemFields" if "itemFields" in filled else "item_fields"
    item_fields = filled.get(item_key)
    if isinstance(item_fields, Mapping):
        item_properties = {}
        if isinstance(schema_property, Mapping) and isinstance(schema_property.get("items"), Mapping):
            item_properties = schema_property["items"].get("properties") or {}
        filled[item_key] = {
            name: _with_inferred_type(item_def, item_properties.get(name))
            if isinstance(item_def, Mapping) else deepcopy(item_def)
            for name, item_def in item_fields.items()
        }

    return filled


# ============================================================================
# Evaluation and result types
# ============================================================================

class Ternary(Enum):
    """Outcome of a boolean expression under three-valued logic."""
    TRUE = "true"
    FALSE = "false"
    UNKNOWN = "unknown"

    @classmethod
    def from_value(cls, value: Any) -> "Ternary":
        if value is True:
            return cls.TRUE
        if value is False:
            return cls.FALSE
        return cls.UNKNOWN


@dataclass(frozen=True)
class FieldError:
    field: str
    message: str
    severity: Severity = "error"
    rule: Optional[str] = None


@dataclass
class ValidationResult:
    """Aggregate validation outcome; warnings never make it invalid."""
    valid: bool
    errors: List[FieldError] = field(default_factory=list)

    @classmethod
    def from_errors(cls, errors: List[FieldError]) -> "ValidationResult":
        return cls(valid=not any(e.severity == "error" for e in errors), errors=list(errors))

    def errors_for(self, path: str) -> List[FieldError]:
        return [e for e in self.errors if e.field == path]


@dataclass(frozen=True)
class CalculationError:
    field: str
    message: str
    expression: str


@dataclass
class CalculationResult:
    values: Dict[str, Any] = field(default_factory=dict)
    errors: List[CalculationError] = field(default_factory=list)
