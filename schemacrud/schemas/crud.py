"""
Request / Response Schemas for the Generic CRUD API
"""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


# ============================================================================
# Sprunje (list queries)
# ============================================================================

class SprunjeQuery(BaseModel):
    sort: Dict[str, str] = Field(default_factory=dict, description="field -> asc | desc")
    filters: Dict[str, Any] = Field(
        default_factory=dict,
        description="field -> value, or field -> {operator, value}",
    )
    search: Optional[str] = None
    page: int = 1
    per_page: Optional[int] = None
    deleted: str = Field("exclude", description="exclude | include | only (soft-delete models)")

    @field_validator("sort", mode="before")
    @classmethod
    def _parse_sort(cls, v: Any) -> Any:
        # "name" / "-created_at,name" shorthand from query strings
        if isinstance(v, str):
            sort = {}
            for item in v.split(","):
                item = item.strip()
                if not item:
                    continue
                if item.startswith("-"):
                    sort[item[1:]] = "desc"
                else:
                    sort[item] = "asc"
            return sort
        return v if v is not None else {}

    @field_validator("filters", mode="before")
    @classmethod
    def _none_filters(cls, v: Any) -> Any:
        return v if v is not None else {}

    class Config:
        json_schema_extra = {
            "example": {
                "sort": {"name": "asc"},
                "filters": {"is_active": True, "created_at": {"operator": "range", "value": ["2024-01-01", None]}},
                "search": "smith",
                "page": 1,
                "per_page": 25,
            }
        }


# ============================================================================
# Relationships
# ============================================================================

class RelationshipIdsRequest(BaseModel):
    ids: List[Any] = Field(..., min_length=1)
    pivot_data: Dict[str, Any] = Field(default_factory=dict)

