"""
Schema Normalizer
==================
Pure function from a raw (validated) schema document to its canonical form:

- legacy singular "detail" -> plural "details"
- ORM-style field attributes (nullable, autoIncrement, references, ...)
- type aliases (smartlookup, boolean-tgl, ...) and lookup configuration
- visibility flags <-> show_in
- filter operators
- relationship action maps -> ordered directive lists
- action scope / field / icon / label / style inference
- default create / edit / delete actions

normalize_schema(normalize_schema(s)) == normalize_schema(s).
"""
import copy
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger
from pydantic import ValidationError

from schemacrud.models.schema import Directive

LIFECYCLE_EVENTS = ("on_create", "on_update", "on_delete")
DIRECTIVE_TYPES = ("attach", "sync", "detach")

TYPE_ALIASES = {
    "smartlookup": "lookup",
    "str": "string",
    "varchar": "string",
    "int": "integer",
    "bigint": "integer",
    "number": "float",
    "double": "float",
    "bool": "boolean",
    "timestamp": "datetime",
}

BOOLEAN_UI_SUFFIXES = {
    "tgl": "toggle",
    "chk": "checkbox",
    "sel": "select",
    "yn": "select",
}

RELATIONSHIP_TYPE_ALIASES = {
    "belongs_to_many": "many_to_many",
    "belongs_to_many_through": "many_to_many_through",
    "one_to_many": "has_many",
    "detail": "has_many",
}

OPERATOR_ALIASES = {
    "eq": "equals",
    "=": "equals",
    "equal": "equals",
    "like": "contains",
    "between": "range",
    "neq": "not_equals",
}

TEXT_TYPES = {"string", "text", "textarea", "email", "url", "phone", "zip"}
NUMERIC_TYPES = {"integer", "float", "decimal", "currency"}
TEMPORAL_TYPES = {"date", "datetime"}

# Action inference: first matching key pattern wins, then field type, then action type.
ACTION_ICONS: List[Tuple[str, str]] = [
    ("toggle", "power-off"),
    ("password_action", "key"),
    ("reset_password", "envelope"),
    ("delete", "trash"),
    ("edit", "pen"),
    ("enable", "check"),
    ("disable", "ban"),
    ("verify", "check-circle"),
]
FIELD_TYPE_ICONS = {
    "password": "key",
    "email": "envelope",
    "boolean": "check-circle",
    "date": "calendar",
    "datetime": "clock",
}
ACTION_STYLES: List[Tuple[str, str]] = [
    ("delete", "danger"),
    ("disable", "danger"),
    ("enable", "primary"),
    ("reset", "secondary"),
    ("password", "warning"),
    ("toggle", "default"),
    ("verify", "success"),
]
FIELD_TYPE_STYLES = {
    "password": "warning",
    "boolean": "default",
}


def normalize_schema(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Return the canonical form of a schema document. The input is not modified."""
    schema = copy.deepcopy(schema)

    schema = normalize_details(schema)
    schema = normalize_default_sort(schema)
    schema = normalize_fields(schema)
    schema = normalize_relationships(schema)
    schema = normalize_actions(schema)
    schema = add_default_actions(schema)

    return schema


# ============================================================================
# Top-level keys
# ============================================================================

def normalize_details(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Fold the legacy singular 'detail' object into the 'details' array."""
    details = schema.get("details")
    if not isinstance(details, list):
        details = [details] if isinstance(details, dict) else []

    legacy = schema.pop("detail", None)
    if isinstance(legacy, dict) and legacy not in details:
        details.insert(0, legacy)

    for detail in details:
        if isinstance(detail, dict) and "model" not in detail and "model_name" in detail:
            detail["model"] = detail.pop("model_name")

    if details:
        schema["details"] = details
    else:
        schema.pop("details", None)
    return schema


def normalize_default_sort(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Accept 'name', '-name', ['name', '-created_at'] or {'name': 'ASC'}."""
    raw = schema.get("default_sort")
    if raw is None:
        return schema

    entries: List[Tuple[str, str]] = []
    if isinstance(raw, str):
        raw = [raw]
    if isinstance(raw, list):
        for item in raw:
            if isinstance(item, str) and item:
                if item.startswith("-"):
                    entries.append((item[1:], "desc"))
                else:
                    entries.append((item, "asc"))
    elif isinstance(raw, dict):
        for key, direction in raw.items():
            entries.append((key, str(direction).lower()))

    schema["default_sort"] = {key: ("desc" if direction == "desc" else "asc") for key, direction in entries}
    return schema


# ============================================================================
# Fields
# ============================================================================

def normalize_fields(schema: Dict[str, Any]) -> Dict[str, Any]:
    fields = schema.get("fields")
    if not isinstance(fields, dict):
        return schema

    primary_key = schema.get("primary_key", "id")
    for name, field in fields.items():
        if not isinstance(field, dict):
            continue
        _normalize_orm_attributes(field)
        _normalize_field_type(field)
        _normalize_lookup(field)
        if name == primary_key:
            field.setdefault("primary", True)
        if field.get("readonly"):
            field["editable"] = False
        _normalize_visibility(field)
        _normalize_filter_operators(field)
    return schema


def _normalize_orm_attributes(field: Dict[str, Any]) -> None:
    if "nullable" in field and "required" not in field:
        field["required"] = not field["nullable"]
    if "required" in field and "nullable" not in field:
        field["nullable"] = not field["required"]

    if "autoIncrement" in field:
        field.setdefault("auto_increment", field.pop("autoIncrement"))
    if "primaryKey" in field:
        field.setdefault("primary", field.pop("primaryKey"))

    if "validate" in field:
        validate = field.pop("validate")
        if "validation" not in field:
            field["validation"] = validate
    if "unique" in field:
        field.setdefault("validation", {}).setdefault("unique", field.pop("unique"))
    if "length" in field:
        field.setdefault("validation", {}).setdefault("length", {"max": field.pop("length")})

    if "defaultValue" in field:
        default_value = field.pop("defaultValue")
        field.setdefault("default", default_value)

    if "field_template" in field:
        field.setdefault("template", field.pop("field_template"))

    ui = field.get("ui")
    if isinstance(ui, dict):
        for key in ("label", "show_in", "sortable", "filterable", "searchable", "width", "icon"):
            if key in ui:
                field.setdefault(key, ui[key])
        if ui.get("type") == "lookup" and field.get("type") in (None, "integer"):
            field["type"] = "lookup"
        field["ui"] = ui.get("widget")
        if field["ui"] is None:
            del field["ui"]

    references = field.pop("references", None)
    if isinstance(references, dict):
        field.setdefault("lookup", {
            "model": references.get("model") or references.get("table"),
            "id": references.get("key") or references.get("id") or "id",
            "desc": references.get("display") or references.get("desc") or "name",
        })
        if field.get("type") in (None, "integer") and ("display" in references or "desc" in references):
            field["type"] = "lookup"


def _normalize_field_type(field: Dict[str, Any]) -> None:
    field_type = field.get("type")
    if not isinstance(field_type, str):
        return
    field_type = field_type.strip().lower()

    if field_type.startswith("boolean-"):
        suffix = field_type.split("-", 1)[1]
        field_type = "boolean"
        field.setdefault("ui", BOOLEAN_UI_SUFFIXES.get(suffix, "checkbox"))
    field_type = TYPE_ALIASES.get(field_type, field_type)

    if field_type == "boolean":
        field.setdefault("ui", "checkbox")
    field["type"] = field_type


def _normalize_lookup(field: Dict[str, Any]) -> None:
    """Collapse flat lookup_model / lookup_id / lookup_desc attributes into lookup{}."""
    if field.get("type") != "lookup":
        return
    lookup = dict(field.get("lookup") or {})
    for key in ("model", "id", "desc"):
        flat = field.pop(f"lookup_{key}", None)
        if flat is not None and key not in lookup:
            lookup[key] = flat
    field["lookup"] = lookup


def _normalize_visibility(field: Dict[str, Any]) -> None:
    """Keep show_in and the listable / editable / viewable flags consistent."""
    show_in = field.get("show_in")
    if isinstance(show_in, list):
        expanded: List[str] = []
        for context in show_in:
            for item in (("create", "edit") if context == "form" else (context,)):
                if item not in expanded:
                    expanded.append(item)
        field["show_in"] = expanded
        field["listable"] = "list" in expanded
        field["editable"] = not field.get("readonly", False) and ("create" in expanded or "edit" in expanded)
        field["viewable"] = "detail" in expanded
        return

    is_password = field.get("type") == "password"
    listable = field.get("listable", not is_password)
    editable = field.get("editable", True) and not field.get("readonly", False)
    viewable = field.get("viewable", not is_password)

    show_in = []
    if listable:
        show_in.append("list")
    if editable:
        show_in.extend(["create", "edit"])
    if viewable:
        show_in.append("detail")

    field["show_in"] = show_in
    field["listable"] = bool(listable)
    field["editable"] = bool(editable)
    field["viewable"] = bool(viewable)


def _normalize_filter_operators(field: Dict[str, Any]) -> None:
    operators = field.get("filter_operators")
    if operators is None and "filter_type" in field:
        operators = [field.pop("filter_type")]
    field.pop("filter_type", None)

    if isinstance(operators, str):
        operators = [operators]
    if isinstance(operators, list):
        canonical = []
        for op in operators:
            op = OPERATOR_ALIASES.get(str(op).lower(), str(op).lower())
            if op not in canonical:
                canonical.append(op)
        field["filter_operators"] = canonical
        return

    if field.get("filterable"):
        field["filter_operators"] = _default_operators(field.get("type", "string"))


def _default_operators(field_type: str) -> List[str]:
    if field_type in TEXT_TYPES:
        return ["contains", "equals", "starts_with"]
    if field_type in NUMERIC_TYPES or field_type in TEMPORAL_TYPES:
        return ["equals", "range", "gt", "gte", "lt", "lte"]
    if field_type == "lookup":
        return ["equals", "in"]
    return ["equals"]


# ============================================================================
# Relationships
# ============================================================================

def normalize_relationships(schema: Dict[str, Any]) -> Dict[str, Any]:
    relationships = schema.get("relationships")
    if not isinstance(relationships, list):
        return schema

    for relationship in relationships:
        if not isinstance(relationship, dict):
            continue
        rel_type = relationship.get("type", "many_to_many")
        relationship["type"] = RELATIONSHIP_TYPE_ALIASES.get(rel_type, rel_type)

        actions = relationship.get("actions")
        if not isinstance(actions, dict):
            relationship.pop("actions", None)
            continue

        canonical: Dict[str, List[Dict[str, Any]]] = {}
        for event, config in actions.items():
            if event not in LIFECYCLE_EVENTS:
                logger.warning(
                    f"Schema '{schema.get('model')}': ignoring unknown lifecycle event "
                    f"'{event}' on relationship '{relationship.get('name')}'"
                )
                continue
            canonical[event] = normalize_directives(
                config, where=f"{schema.get('model')}.{relationship.get('name')}.{event}"
            )
        relationship["actions"] = canonical
    return schema


def normalize_directives(config: Any, where: str = "") -> List[Dict[str, Any]]:
    """
    Convert an event's action config into an ordered directive list.

    Accepted forms:
    - {"attach": [{related_id, pivot_data}], "sync": "field" | true, "detach": "all" | [ids]}
      (executed attach -> sync -> detach)
    - [{"type": "attach", ...}, {"sync": "role_ids"}, {"detach": "all"}, ...]

    Directives that do not validate are logged and dropped one by one.
    """
    directives: List[Dict[str, Any]] = []
    if isinstance(config, dict):
        for directive_type in DIRECTIVE_TYPES:
            if directive_type in config:
                directives.extend(_expand_directive(directive_type, config[directive_type]))
    elif isinstance(config, list):
        for item in config:
            if not isinstance(item, dict):
                logger.warning(f"{where or 'relationship actions'}: skipping non-object directive {item!r}")
                continue
            if item.get("type") in DIRECTIVE_TYPES:
                directives.append(_canonical_directive(item))
                continue
            for directive_type in DIRECTIVE_TYPES:
                if directive_type in item:
                    directives.extend(_expand_directive(directive_type, item[directive_type]))
    elif config is not None:
        logger.warning(f"{where or 'relationship actions'}: unsupported action config {config!r}, ignored")
    return [directive for directive in directives if _is_valid_directive(directive, where)]


def _is_valid_directive(directive: Dict[str, Any], where: str) -> bool:
    try:
        Directive.model_validate(directive)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc'])}: {error['msg']}" for error in e.errors()
        )
        logger.warning(f"{where or 'relationship actions'}: skipping malformed {directive.get('type')} directive ({problems})")
        return False
    return True


def _expand_directive(directive_type: str, value: Any) -> List[Dict[str, Any]]:
    if directive_type == "attach":
        items = value if isinstance(value, list) else [value]
        expanded = []
        for item in items:
            if isinstance(item, dict):
                expanded.append(_canonical_directive({**item, "type": "attach"}))
            elif item is not None:
                expanded.append({"type": "attach", "related_id": item, "pivot_data": {}})
            else:
                expanded.append({"type": "attach", "pivot_data": {}})
        return expanded
    if directive_type == "sync":
        if isinstance(value, dict):
            return [_canonical_directive({**value, "type": "sync"})]
        if isinstance(value, str):
            return [{"type": "sync", "field": value, "pivot_data": {}}]
        if value:
            return [{"type": "sync", "pivot_data": {}}]
        return []
    if isinstance(value, dict):
        return [_canonical_directive({**value, "type": "detach"})]
    return [{"type": "detach", "ids": value, "pivot_data": {}}]


def _canonical_directive(item: Dict[str, Any]) -> Dict[str, Any]:
    pivot_data = item.get("pivot_data")
    if pivot_data is None:
        pivot_data = {}
    elif isinstance(pivot_data, dict):
        pivot_data = dict(pivot_data)
    directive: Dict[str, Any] = {"type": item["type"], "pivot_data": pivot_data}
    for key in ("related_id", "field", "ids"):
        if key in item:
            directive[key] = item[key]
    return directive


# ============================================================================
# Actions
# ============================================================================

def normalize_actions(schema: Dict[str, Any]) -> Dict[str, Any]:
    actions = schema.get("actions")
    if not isinstance(actions, list):
        schema.pop("actions", None)
        return schema

    fields = schema.get("fields") or {}
    for action in actions:
        if not isinstance(action, dict) or not action.get("key"):
            continue
        key = action["key"]

        scope = action.get("scope")
        if isinstance(scope, str):
            action["scope"] = [scope]

        if not action.get("field") and key.endswith("_action") and key[: -len("_action")] in fields:
            action["field"] = key[: -len("_action")]

        if "type" not in action:
            action["type"] = "field_update" if action.get("field") else "api_call"

        field_config = fields.get(action.get("field") or "", {}) or {}
        if action["type"] == "field_update" and action.get("toggle"):
            _normalize_toggle(action, field_config)

        field_type = field_config.get("type")
        if not action.get("icon"):
            icon = _infer_icon(action, field_type)
            if icon:
                action["icon"] = icon
        if not action.get("label"):
            action["label"] = _infer_label(action, field_config)
        if not action.get("style"):
            action["style"] = _infer_style(action, field_type)
    return schema


def _normalize_toggle(action: Dict[str, Any], field_config: Dict[str, Any]) -> None:
    field_name = action.get("field")
    if not field_name:
        return
    if "confirm" not in action:
        action.setdefault("field_label", field_config.get("label") or field_name.replace("_", " ").capitalize())
        action["confirm"] = "CRUD.TOGGLE_CONFIRM"
    modal = action.get("modal_config")
    if not isinstance(modal, dict):
        action["modal_config"] = {"type": "confirm", "buttons": "yes_no"}
    else:
        modal.setdefault("type", "confirm")


def _infer_icon(action: Dict[str, Any], field_type: Optional[str]) -> Optional[str]:
    for pattern, icon in ACTION_ICONS:
        if pattern in action["key"]:
            return icon
    if field_type in FIELD_TYPE_ICONS:
        return FIELD_TYPE_ICONS[field_type]
    if action["type"] == "api_call":
        return "bolt"
    if action["type"] == "field_update":
        return "power-off" if action.get("toggle") else "pen"
    return None


def _infer_label(action: Dict[str, Any], field_config: Dict[str, Any]) -> str:
    if action["type"] == "field_update" and field_config.get("label"):
        prefix = "Toggle" if action.get("toggle") else "Edit"
        return f"{prefix} {field_config['label']}"
    return " ".join(word.capitalize() for word in action["key"].split("_") if word)


def _infer_style(action: Dict[str, Any], field_type: Optional[str]) -> str:
    for pattern, style in ACTION_STYLES:
        if pattern in action["key"]:
            return style
    if field_type in FIELD_TYPE_STYLES:
        return FIELD_TYPE_STYLES[field_type]
    if action["type"] == "api_call":
        return "secondary"
    return "default"


def add_default_actions(schema: Dict[str, Any]) -> Dict[str, Any]:
    """Prepend create / edit / delete actions for declared permissions (once)."""
    if schema.get("default_actions") is False:
        return schema

    actions = schema.setdefault("actions", [])
    permissions = schema.get("permissions") or {}
    existing = {a.get("key") for a in actions if isinstance(a, dict)}

    defaults = []
    if "create_action" not in existing and "create" in permissions:
        defaults.append({
            "key": "create_action",
            "label": "CRUD.CREATE",
            "icon": "plus",
            "type": "form",
            "style": "primary",
            "scope": ["list"],
            "permission": permissions["create"],
            "modal_config": {"type": "form", "title": "CRUD.CREATE"},
        })
    if "edit_action" not in existing and "update" in permissions:
        defaults.append({
            "key": "edit_action",
            "label": "CRUD.EDIT",
            "icon": "pen-to-square",
            "type": "form",
            "style": "primary",
            "scope": ["list", "detail"],
            "permission": permissions["update"],
            "modal_config": {"type": "form", "title": "CRUD.EDIT"},
        })
    if "delete_action" not in existing and "delete" in permissions:
        defaults.append({
            "key": "delete_action",
            "label": "CRUD.DELETE",
            "icon": "trash",
            "type": "delete",
            "style": "danger",
            "scope": ["list", "detail"],
            "permission": permissions["delete"],
            "confirm": "CRUD.DELETE_CONFIRM",
            "modal_config": {"type": "confirm", "buttons": "yes_no", "warning": "WARNING_CANNOT_UNDONE"},
        })

    if defaults:
        schema["actions"] = defaults + actions
        logger.debug(f"Schema '{schema.get('model')}': added default actions {[a['key'] for a in defaults]}")
    return schema
