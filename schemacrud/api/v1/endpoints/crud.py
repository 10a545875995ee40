"""
Generic CRUD API Endpoints
- Schema retrieval per context (list / form / create / edit / detail / meta / full)
- Sprunje list queries (query string or JSON body)
- Record create / read / update / delete / restore
- Custom field-update actions
- Relationship attach / detach
"""
import json
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Query, Request

from schemacrud.core.exceptions import ForbiddenError, InvalidRequestError
from schemacrud.schemas.common import APIResponse, PaginatedResponse
from schemacrud.schemas.crud import RelationshipIdsRequest, SprunjeQuery
from schemacrud.security.dependencies import (
    Actor, get_crud_service, get_current_actor, get_schema_service,
)
from schemacrud.services.crud_service import CrudService
from schemacrud.services.schema_service import SchemaService

router = APIRouter(prefix="/crud", tags=["Generic CRUD"])

# Request body key carrying per-request relationship directives
RELATIONSHIP_OVERRIDES_KEY = "relationship_actions"
SCHEMA_RELOAD_PERMISSION = "schema.reload"


def _split_overrides(body: Dict[str, Any]):
    data = dict(body or {})
    overrides = data.pop(RELATIONSHIP_OVERRIDES_KEY, None)
    if overrides is not None and not isinstance(overrides, dict):
        raise InvalidRequestError(
            f"'{RELATIONSHIP_OVERRIDES_KEY}' must map relationship names to directives",
            operation="parse_request",
        )
    return data, overrides


def _query_filters(request: Request, filters: Optional[str]) -> Dict[str, Any]:
    """Filters from ?filters={json} and/or ?filters[field]=value."""
    parsed: Dict[str, Any] = {}
    if filters:
        try:
            parsed = json.loads(filters)
        except json.JSONDecodeError as e:
            raise InvalidRequestError(f"'filters' is not valid JSON: {e}", operation="filter") from e
        if not isinstance(parsed, dict):
            raise InvalidRequestError("'filters' must be a JSON object", operation="filter")

    for key, value in request.query_params.multi_items():
        if key.startswith("filters[") and key.endswith("]"):
            parsed[key[len("filters["):-1]] = value
    return parsed


def _paginated(page: Dict[str, Any]) -> PaginatedResponse:
    return PaginatedResponse(
        data=page["rows"],
        total=page["count_filtered"],
        total_unfiltered=page["count"],
        page=page["page"],
        page_size=page["per_page"],
        total_pages=page["total_pages"],
    )


# ============================================================================
# Schema
# ============================================================================

@router.get("/{model}/schema", response_model=APIResponse)
def get_schema(
    model: str,
    context: Optional[str] = Query(None, description="list | form | create | edit | detail | meta | full, or comma-separated"),
    include_related: bool = Query(False),
    actor: Actor = Depends(get_current_actor),
    schema_service: SchemaService = Depends(get_schema_service),
):
    """Context-filtered schema for the UI layer."""
    definition = schema_service.get_definition(model)
    permission = definition.permission_for("read")
    if not actor.gate.check_access(permission):
        raise ForbiddenError(f"Access denied: '{permission}' is required", permission=permission, model=model)
    view = schema_service.get_schema(model, context, include_related=include_related)
    return APIResponse(data=view)


@router.post("/{model}/schema/reload", response_model=APIResponse)
def reload_schema(
    model: str,
    actor: Actor = Depends(get_current_actor),
    schema_service: SchemaService = Depends(get_schema_service),
):
    """Drop cached views of a schema and load it again."""
    if not actor.gate.check_access(SCHEMA_RELOAD_PERMISSION):
        raise ForbiddenError(
            f"Access denied: '{SCHEMA_RELOAD_PERMISSION}' is required",
            permission=SCHEMA_RELOAD_PERMISSION,
            model=model,
            operation="reload_schema",
        )
    definition = schema_service.reload(model)
    return APIResponse(data={"model": definition.model}, message=f"Schema '{model}' reloaded")


# ============================================================================
# List (Sprunje)
# ============================================================================

@router.get("/{model}", response_model=PaginatedResponse)
def list_records(
    model: str,
    request: Request,
    sort: Optional[str] = Query(None, description="name,-created_at"),
    filters: Optional[str] = Query(None, description='JSON object, e.g. {"is_active": true}'),
    search: Optional[str] = Query(None),
    page: int = Query(1),
    per_page: Optional[int] = Query(None),
    deleted: str = Query("exclude", description="exclude | include | only"),
    service: CrudService = Depends(get_crud_service),
):
    """Sorted / filtered / searched / paginated rows of listable fields."""
    query = SprunjeQuery(
        sort=sort,
        filters=_query_filters(request, filters),
        search=search,
        page=page,
        per_page=per_page,
        deleted=deleted,
    )
    return _paginated(service.list(model, query))


@router.post("/{model}/query", response_model=PaginatedResponse)
def query_records(
    model: str,
    body: SprunjeQuery,
    service: CrudService = Depends(get_crud_service),
):
    """Same as the list endpoint with the query as a JSON body."""
    return _paginated(service.list(model, body))


# ============================================================================
# Records
# ============================================================================

@router.get("/{model}/{record_id}", response_model=APIResponse)
def read_record(
    model: str,
    record_id: str,
    deleted: str = Query("exclude"),
    service: CrudService = Depends(get_crud_service),
):
    return APIResponse(data=service.read(model, record_id, deleted))


@router.post("/{model}", response_model=APIResponse, status_code=201)
def create_record(
    model: str,
    body: Dict[str, Any] = Body(...),
    service: CrudService = Depends(get_crud_service),
):
    data, overrides = _split_overrides(body)
    record = service.create(model, data, overrides)
    return APIResponse(data=record, message=f"{model} created successfully")


@router.put("/{model}/{record_id}", response_model=APIResponse)
def update_record(
    model: str,
    record_id: str,
    body: Dict[str, Any] = Body(...),
    service: CrudService = Depends(get_crud_service),
):
    data, overrides = _split_overrides(body)
    record = service.update(model, record_id, data, overrides)
    return APIResponse(data=record, message=f"{model} updated successfully")


@router.delete("/{model}/{record_id}", response_model=APIResponse)
def delete_record(
    model: str,
    record_id: str,
    service: CrudService = Depends(get_crud_service),
):
    result = service.delete(model, record_id)
    return APIResponse(data=result, message=f"{model} deleted successfully")


@router.post("/{model}/{record_id}/restore", response_model=APIResponse)
def restore_record(
    model: str,
    record_id: str,
    service: CrudService = Depends(get_crud_service),
):
    record = service.restore(model, record_id)
    return APIResponse(data=record, message=f"{model} restored successfully")


# ============================================================================
# Custom Actions
# ============================================================================

@router.post("/{model}/{record_id}/actions/{action_key}", response_model=APIResponse)
def run_action(
    model: str,
    record_id: str,
    action_key: str,
    body: Optional[Dict[str, Any]] = Body(None),
    service: CrudService = Depends(get_crud_service),
):
    """Custom field_update action; the body is {field: value} (ignored by toggles)."""
    record = service.run_action(model, record_id, action_key, body or {})
    return APIResponse(data=record, message=f"Action '{action_key}' completed")


# ============================================================================
# Relationships
# ============================================================================

@router.post("/{model}/{record_id}/relationships/{relationship}/attach", response_model=APIResponse)
def attach_related(
    model: str,
    record_id: str,
    relationship: str,
    body: RelationshipIdsRequest,
    service: CrudService = Depends(get_crud_service),
):
    result = service.attach(model, record_id, relationship, body.ids, body.pivot_data)
    return APIResponse(data=result, message=f"{result['attached']} {relationship} attached")


@router.post("/{model}/{record_id}/relationships/{relationship}/detach", response_model=APIResponse)
def detach_related(
    model: str,
    record_id: str,
    relationship: str,
    body: RelationshipIdsRequest,
    service: CrudService = Depends(get_crud_service),
):
    result = service.detach(model, record_id, relationship, body.ids)
    return APIResponse(data=result, message=f"{result['detached']} {relationship} detached")
