"""
Schema Context Filter
======================
Reduces a normalized schema to the view a given context needs.

    meta    identity only, no fields
    list    listable fields, table attributes, default sort, list actions
    form    editable fields, form attributes (create / edit: per show_in)
    detail  viewable fields, full attributes, details, relationships, detail actions
    full    everything

Unknown contexts degrade to "full". "list,form" returns the shared metadata
plus a "contexts" map with one reduced view per requested context.
"""
from typing import Any, Callable, Dict, List, Optional

from loguru import logger

from schemacrud.models.schema import ActionDef, FieldDef, SchemaDef

# Per-context whitelist of field attributes
LIST_FIELD_KEYS = ("type", "label", "sortable", "filterable", "searchable", "template", "width")
FORM_FIELD_KEYS = ("type", "label", "required", "validation", "default", "placeholder", "icon", "lookup", "rows", "ui")

META_KEYS = ("model", "title", "singular_title", "primary_key", "permissions", "description")
FULL_CONTEXT = "full"


def canonical_context(context: Optional[str] = None) -> str:
    """
    Stable name for a requested context: unknown names become "full" and
    comma lists are deduplicated and sorted ("form,list,form" -> "form,list").
    """
    names = set()
    for part in (context or FULL_CONTEXT).lower().split(","):
        part = part.strip()
        if part:
            names.add(part if part in CONTEXT_HANDLERS else FULL_CONTEXT)
    return ",".join(sorted(names)) or FULL_CONTEXT


def filter_schema(definition: SchemaDef, context: Optional[str] = None) -> Dict[str, Any]:
    """Context view of a schema. Pure: same (schema, context) gives the same dict."""
    context = (context or FULL_CONTEXT).strip().lower()

    if "," in context:
        return _multi_context(definition, [c.strip() for c in context.split(",") if c.strip()])

    handler = CONTEXT_HANDLERS.get(context)
    if handler is None:
        if context != FULL_CONTEXT:
            logger.debug(f"Unknown schema context '{context}' for '{definition.model}', returning full schema")
        return full_view(definition)
    return handler(definition)


def _multi_context(definition: SchemaDef, contexts: List[str]) -> Dict[str, Any]:
    result = meta_view(definition)
    result["contexts"] = {}
    for context in contexts:
        view = filter_schema(definition, context)
        result["contexts"][context] = {k: v for k, v in view.items() if k not in META_KEYS}
    return result


# ============================================================================
# Views
# ============================================================================

def full_view(definition: SchemaDef) -> Dict[str, Any]:
    return definition.model_dump(mode="json", exclude_none=True)


def meta_view(definition: SchemaDef) -> Dict[str, Any]:
    view: Dict[str, Any] = {
        "model": definition.model,
        "title": definition.display_title,
        "singular_title": definition.singular_title or definition.display_title,
        "primary_key": definition.primary_key,
        "permissions": dict(definition.permissions),
    }
    if definition.description:
        view["description"] = definition.description
    return view


def list_view(definition: SchemaDef) -> Dict[str, Any]:
    view = meta_view(definition)
    view["fields"] = {
        name: _pick(field, LIST_FIELD_KEYS)
        for name, field in definition.fields.items()
        if field.listable
    }
    view["default_sort"] = {k: v.value for k, v in definition.default_sort.items()}
    view["actions"] = _scoped_actions(definition.actions, "list")
    return view


def form_view(definition: SchemaDef, show_in: Optional[str] = None) -> Dict[str, Any]:
    view = meta_view(definition)
    view["fields"] = {
        name: _pick(field, FORM_FIELD_KEYS)
        for name, field in definition.fields.items()
        if _is_form_field(definition, name, field, show_in)
    }
    return view


def detail_view(definition: SchemaDef) -> Dict[str, Any]:
    view = meta_view(definition)
    view["fields"] = {
        name: _full_field(field)
        for name, field in definition.fields.items()
        if field.viewable
    }
    view["default_sort"] = {k: v.value for k, v in definition.default_sort.items()}
    view["details"] = [d.model_dump(mode="json", exclude_none=True) for d in definition.details]
    view["relationships"] = [r.model_dump(mode="json", exclude_none=True) for r in definition.relationships]
    view["actions"] = _scoped_actions(definition.actions, "detail")
    if definition.title_field:
        view["title_field"] = definition.title_field
    return view


def _is_form_field(definition: SchemaDef, name: str, field: FieldDef, show_in: Optional[str]) -> bool:
    if field.readonly or not field.editable or definition.is_autogenerated(name):
        return False
    if show_in is not None and field.show_in:
        return show_in in field.show_in
    return True


def _pick(field: FieldDef, keys) -> Dict[str, Any]:
    data = field.model_dump(mode="json", include=set(keys), exclude_none=True)
    data.setdefault("label", _humanize(field.name))
    return {key: data[key] for key in keys if key in data}


def _full_field(field: FieldDef) -> Dict[str, Any]:
    data = field.model_dump(mode="json", exclude={"name"}, exclude_none=True)
    data.setdefault("label", _humanize(field.name))
    return data


def _scoped_actions(actions: List[ActionDef], scope: str) -> List[Dict[str, Any]]:
    return [
        a.model_dump(mode="json", exclude_none=True)
        for a in actions
        if not a.scope or scope in a.scope
    ]


def _humanize(name: str) -> str:
    return name.replace("_", " ").capitalize()


CONTEXT_HANDLERS: Dict[str, Callable[[SchemaDef], Dict[str, Any]]] = {
    "meta": meta_view,
    "list": list_view,
    "form": form_view,
    "create": lambda d: form_view(d, show_in="create"),
    "edit": lambda d: form_view(d, show_in="edit"),
    "detail": detail_view,
}
