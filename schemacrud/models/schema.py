"""
Schema Definition Models
=========================
Typed, validated representation of a normalized schema document:
SchemaDef -> FieldDef / RelationshipDef (+ Directive) / ActionDef / DetailDef.

Built from the output of normalize_schema(); every identifier that ends up in
SQL (table, columns, pivot table, keys) is checked against IDENTIFIER_PATTERN.
"""
import re
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")

TIMESTAMP_COLUMNS = ("created_at", "updated_at")
DELETED_AT_COLUMN = "deleted_at"


def is_identifier(value: Any) -> bool:
    return isinstance(value, str) and bool(IDENTIFIER_PATTERN.match(value))


def _check_identifier(value: Optional[str], what: str) -> Optional[str]:
    if value is not None and not is_identifier(value):
        raise ValueError(f"{what} '{value}' must contain only letters, digits and underscores")
    return value


def singular(name: str) -> str:
    """English singular of a plural relationship name (roles -> role, categories -> category)."""
    if name.endswith("ies") and len(name) > 3:
        return name[:-3] + "y"
    if name.endswith(("sses", "shes", "ches", "xes", "zes")) or name.endswith("uses"):
        return name[:-2]
    if name.endswith("s") and not name.endswith("ss"):
        return name[:-1]
    return name


# ============================================================================
# Enums
# ============================================================================

class FieldType(str, Enum):
    STRING = "string"
    TEXT = "text"
    TEXTAREA = "textarea"
    EMAIL = "email"
    URL = "url"
    PHONE = "phone"
    ZIP = "zip"
    INTEGER = "integer"
    FLOAT = "float"
    DECIMAL = "decimal"
    CURRENCY = "currency"
    BOOLEAN = "boolean"
    DATE = "date"
    DATETIME = "datetime"
    JSON = "json"
    PASSWORD = "password"
    LOOKUP = "lookup"
    MULTISELECT = "multiselect"


NUMERIC_TYPES = {FieldType.INTEGER, FieldType.FLOAT, FieldType.DECIMAL, FieldType.CURRENCY}
TEMPORAL_TYPES = {FieldType.DATE, FieldType.DATETIME}


class FilterOperator(str, Enum):
    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    CONTAINS = "contains"
    STARTS_WITH = "starts_with"
    ENDS_WITH = "ends_with"
    IN = "in"
    RANGE = "range"
    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    IS_NULL = "is_null"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class Context(str, Enum):
    LIST = "list"
    FORM = "form"
    CREATE = "create"
    EDIT = "edit"
    DETAIL = "detail"
    META = "meta"
    FULL = "full"


class RelationshipType(str, Enum):
    MANY_TO_MANY = "many_to_many"
    MANY_TO_MANY_THROUGH = "many_to_many_through"
    HAS_MANY = "has_many"


class LifecycleEvent(str, Enum):
    ON_CREATE = "on_create"
    ON_UPDATE = "on_update"
    ON_DELETE = "on_delete"


class DirectiveType(str, Enum):
    ATTACH = "attach"
    SYNC = "sync"
    DETACH = "detach"


class ActionType(str, Enum):
    FIELD_UPDATE = "field_update"
    API_CALL = "api_call"
    ROUTE = "route"
    FORM = "form"
    DELETE = "delete"


# ============================================================================
# Fields
# ============================================================================

class LookupDef(BaseModel):
    model: Optional[str] = None
    id: str = "id"
    desc: str = "name"


class FieldDef(BaseModel):
    model_config = ConfigDict(extra="ignore", use_enum_values=False)

    name: str
    type: FieldType = FieldType.STRING
    label: Optional[str] = None
    description: Optional[str] = None
    placeholder: Optional[str] = None

    required: bool = False
    nullable: bool = True
    primary: bool = False
    auto_increment: bool = False
    readonly: bool = False
    computed: bool = False

    sortable: bool = False
    filterable: bool = False
    searchable: bool = False
    listable: bool = True
    editable: bool = True
    viewable: bool = True
    show_in: List[str] = Field(default_factory=list)

    default: Any = None
    validation: Dict[str, Any] = Field(default_factory=dict)
    filter_operators: List[FilterOperator] = Field(default_factory=list)
    lookup: Optional[LookupDef] = None

    # Rendering hints
    template: Optional[str] = None
    width: Optional[Union[int, str]] = None
    icon: Optional[str] = None
    rows: Optional[int] = None
    ui: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name_is_identifier(cls, v: str) -> str:
        return _check_identifier(v, "Field name")

    @property
    def is_persisted(self) -> bool:
        """Whether the field maps to a real column of the table."""
        return not self.computed and self.type != FieldType.MULTISELECT

    @property
    def is_mass_assignable(self) -> bool:
        return (
            self.is_persisted
            and not self.readonly
            and not self.auto_increment
            and not self.primary
            and self.editable
        )

    @property
    def default_operator(self) -> Optional[FilterOperator]:
        return self.filter_operators[0] if self.filter_operators else None


# ============================================================================
# Relationships
# ============================================================================

class Directive(BaseModel):
    """One attach / sync / detach instruction bound to a lifecycle event."""

    model_config = ConfigDict(extra="ignore")

    type: DirectiveType
    related_id: Any = None
    pivot_data: Dict[str, Any] = Field(default_factory=dict)
    field: Optional[str] = None
    ids: Union[str, List[Any], None] = None


class RelationshipDef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    type: RelationshipType = RelationshipType.MANY_TO_MANY
    title: Optional[str] = None
    related_model: Optional[str] = None
    pivot_table: Optional[str] = None
    foreign_key: Optional[str] = None
    related_key: Optional[str] = None
    through: Optional[str] = None
    actions: Dict[LifecycleEvent, List[Directive]] = Field(default_factory=dict)

    @field_validator("pivot_table", "foreign_key", "related_key")
    @classmethod
    def _keys_are_identifiers(cls, v: Optional[str]) -> Optional[str]:
        return _check_identifier(v, "Relationship identifier")

    @property
    def is_pivot_configured(self) -> bool:
        return bool(self.pivot_table and self.foreign_key and self.related_key)

    @property
    def sync_field(self) -> Optional[str]:
        """Input field carrying the related id list: the first explicit sync field, else '{singular}_ids'."""
        for directives in self.actions.values():
            for directive in directives:
                if directive.type == DirectiveType.SYNC and directive.field:
                    return directive.field
        return f"{singular(self.name)}_ids" if self.name else None


class DetailDef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    model: str
    foreign_key: Optional[str] = None
    list_fields: List[str] = Field(default_factory=list)
    title: Optional[str] = None
    cascade_delete: bool = True
    cascade_delete_mode: str = "auto"

    @field_validator("model", "foreign_key")
    @classmethod
    def _is_identifier(cls, v: Optional[str]) -> Optional[str]:
        return _check_identifier(v, "Detail identifier")


# ============================================================================
# Actions
# ============================================================================

class ActionDef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    key: str
    type: ActionType = ActionType.API_CALL
    scope: List[str] = Field(default_factory=list)
    field: Optional[str] = None
    value: Any = None
    toggle: bool = False
    label: Optional[str] = None
    field_label: Optional[str] = None
    icon: Optional[str] = None
    style: Optional[str] = None
    permission: Optional[str] = None
    confirm: Optional[str] = None
    route: Optional[str] = None
    endpoint: Optional[str] = None
    method: Optional[str] = None
    modal_config: Dict[str, Any] = Field(default_factory=dict)


# ============================================================================
# Schema
# ============================================================================

class SchemaDef(BaseModel):
    model_config = ConfigDict(extra="ignore")

    model: str
    title: Optional[str] = None
    singular_title: Optional[str] = None
    description: Optional[str] = None
    table: str
    connection: Optional[str] = None
    primary_key: str = "id"
    timestamps: bool = True
    soft_delete: bool = False
    default_actions: bool = True
    permissions: Dict[str, str] = Field(default_factory=dict)
    default_sort: Dict[str, SortDirection] = Field(default_factory=dict)
    title_field: Optional[str] = None
    fields: Dict[str, FieldDef]
    relationships: List[RelationshipDef] = Field(default_factory=list)
    actions: List[ActionDef] = Field(default_factory=list)
    details: List[DetailDef] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def _inject_field_names(cls, data: Any) -> Any:
        if isinstance(data, dict) and isinstance(data.get("fields"), dict):
            fields = {}
            for name, attrs in data["fields"].items():
                if isinstance(attrs, dict):
                    attrs = {**attrs, "name": name}
                fields[name] = attrs
            data = {**data, "fields": fields}
        return data

    @field_validator("model", "table", "primary_key")
    @classmethod
    def _is_identifier(cls, v: str) -> str:
        return _check_identifier(v, "Identifier")

    @field_validator("default_sort")
    @classmethod
    def _sort_keys_are_identifiers(cls, v: Dict[str, SortDirection]) -> Dict[str, SortDirection]:
        for key in v:
            _check_identifier(key, "Sort field")
        return v

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def field(self, name: str) -> Optional[FieldDef]:
        return self.fields.get(name)

    def relationship(self, name: str) -> Optional[RelationshipDef]:
        for relationship in self.relationships:
            if relationship.name == name:
                return relationship
        return None

    def relationship_for_field(self, field_name: str) -> Optional[RelationshipDef]:
        """Relationship whose related id list lives in field_name (e.g. role_ids -> roles)."""
        for relationship in self.relationships:
            if relationship.sync_field == field_name:
                return relationship
        if not field_name.endswith("_ids"):
            return None
        stem = field_name[: -len("_ids")]
        for relationship in self.relationships:
            if relationship.name and stem in (relationship.name, singular(relationship.name)):
                return relationship
        return None

    def action(self, key: str) -> Optional[ActionDef]:
        for action in self.actions:
            if action.key == key:
                return action
        return None

    def permission_for(self, action: str) -> str:
        """Permission key for an operation, falling back to '{model}.{action}'."""
        return self.permissions.get(action) or f"{self.model}.{action}"

    @property
    def display_title(self) -> str:
        return self.title or self.model.replace("_", " ").title()

    @property
    def sortable_fields(self) -> List[str]:
        return [name for name, f in self.fields.items() if f.sortable and f.is_persisted]

    @property
    def filterable_fields(self) -> List[str]:
        return [name for name, f in self.fields.items() if f.filterable and f.is_persisted]

    @property
    def searchable_fields(self) -> List[str]:
        return [name for name, f in self.fields.items() if f.searchable and f.is_persisted]

    @property
    def listable_fields(self) -> List[str]:
        return [name for name, f in self.fields.items() if f.listable and f.is_persisted]

    @property
    def viewable_fields(self) -> List[str]:
        return [name for name, f in self.fields.items() if f.viewable and f.is_persisted]

    def is_autogenerated(self, name: str) -> bool:
        """Primary key, auto-increment and managed timestamp columns."""
        field = self.fields.get(name)
        if name == self.primary_key or (field is not None and (field.auto_increment or field.primary)):
            return True
        if self.timestamps and name in TIMESTAMP_COLUMNS:
            return True
        return self.soft_delete and name == DELETED_AT_COLUMN
