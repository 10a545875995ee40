"""
Sprunje: Generic List Query Engine
===================================
Sort / filter / search / paginate over one DynamicModel.

Every requested sort and filter field is checked against the schema
capability flags (sortable / filterable + declared operators) before a
statement is built; search runs only over searchable fields.
"""
import math
import operator as op
from typing import Any, Dict, List, Optional, Tuple

from loguru import logger
from sqlalchemy import String, and_, cast, func, or_, select
from sqlalchemy.engine import Connection
from sqlalchemy.sql import Select

from schemacrud.core.config import get_settings
from schemacrud.core.exceptions import InvalidRequestError
from schemacrud.models.schema import FilterOperator
from schemacrud.schemas.crud import SprunjeQuery
from schemacrud.services.dynamic_model import DynamicModel

LIKE_ESCAPE = "\\"

COMPARISONS = {
    FilterOperator.EQUALS: op.eq,
    FilterOperator.NOT_EQUALS: op.ne,
    FilterOperator.GT: op.gt,
    FilterOperator.GTE: op.ge,
    FilterOperator.LT: op.lt,
    FilterOperator.LTE: op.le,
}


def escape_like(value: str) -> str:
    return (
        value.replace(LIKE_ESCAPE, LIKE_ESCAPE * 2)
        .replace("%", LIKE_ESCAPE + "%")
        .replace("_", LIKE_ESCAPE + "_")
    )


class Sprunje:
    """Builds and runs the list query for one model."""

    def __init__(
        self,
        model: DynamicModel,
        default_page_size: Optional[int] = None,
        max_page_size: Optional[int] = None,
    ):
        settings = get_settings()
        self.model = model
        self.definition = model.definition
        self.default_page_size = default_page_size or settings.SPRUNJE_DEFAULT_PAGE_SIZE
        self.max_page_size = max_page_size or settings.SPRUNJE_MAX_PAGE_SIZE

    # ========================================================================
    # Public
    # ========================================================================

    def query(self, conn: Connection, request: Optional[SprunjeQuery] = None) -> Dict[str, Any]:
        """Run the query and return one page of listable rows with counts."""
        request = request or SprunjeQuery()

        sorts = self.validate_sorts(request.sort)
        conditions = self.build_filters(request.filters)
        search = self.build_search(request.search)
        if search is not None:
            conditions.append(search)
        page, per_page = self.paginate(request.page, request.per_page)

        base = self.model.select(request.deleted)
        filtered = base.where(and_(*conditions)) if conditions else base

        count = conn.execute(select(func.count()).select_from(base.subquery())).scalar_one()
        count_filtered = (
            conn.execute(select(func.count()).select_from(filtered.subquery())).scalar_one()
            if conditions else count
        )

        stmt = filtered.with_only_columns(*self.list_columns())
        stmt = self.apply_sorts(stmt, sorts)
        stmt = stmt.limit(per_page).offset((page - 1) * per_page)

        rows = [dict(row._mapping) for row in conn.execute(stmt)]
        logger.debug(
            f"Sprunje '{self.model.model}': page={page} per_page={per_page} "
            f"count={count} filtered={count_filtered}"
        )
        return {
            "rows": rows,
            "count": count,
            "count_filtered": count_filtered,
            "page": page,
            "per_page": per_page,
            "total_pages": math.ceil(count_filtered / per_page) if count_filtered else 0,
        }

    # ========================================================================
    # Sorting
    # ========================================================================

    def validate_sorts(self, sort: Dict[str, str]) -> List[Tuple[str, str]]:
        sortable = set(self.definition.sortable_fields)
        sorts = []
        for field, direction in (sort or {}).items():
            if field not in sortable or not self.model.has_column(field):
                raise InvalidRequestError(
                    f"Field '{field}' is not sortable",
                    model=self.model.model,
                    field=field,
                    operation="sort",
                )
            direction = str(direction or "asc").lower()
            if direction not in ("asc", "desc"):
                raise InvalidRequestError(
                    f"Invalid sort direction '{direction}' for field '{field}'",
                    model=self.model.model,
                    field=field,
                    operation="sort",
                )
            sorts.append((field, direction))
        return sorts

    def apply_sorts(self, stmt: Select, sorts: List[Tuple[str, str]]) -> Select:
        if not sorts:
            sorts = [
                (field, direction.value)
                for field, direction in self.definition.default_sort.items()
                if self.model.has_column(field)
            ]
        pk = self.model.primary_key
        for field, direction in sorts:
            column = self.model.column(field)
            stmt = stmt.order_by(column.desc() if direction == "desc" else column.asc())
        if pk not in {field for field, _ in sorts}:
            stmt = stmt.order_by(self.model.column(pk).asc())
        return stmt

    # ========================================================================
    # Filtering
    # ========================================================================

    def build_filters(self, filters: Dict[str, Any]) -> List[Any]:
        filterable = set(self.definition.filterable_fields)
        conditions = []
        for field_name, raw in (filters or {}).items():
            if field_name not in filterable or not self.model.has_column(field_name):
                raise InvalidRequestError(
                    f"Field '{field_name}' is not filterable",
                    model=self.model.model,
                    field=field_name,
                    operation="filter",
                )
            field = self.definition.fields[field_name]

            if isinstance(raw, dict) and "operator" in raw:
                operator_name, value = raw["operator"], raw.get("value")
            else:
                operator_name, value = None, raw

            if operator_name is None:
                operator = field.default_operator or FilterOperator.EQUALS
            else:
                try:
                    operator = FilterOperator(str(operator_name).lower())
                except ValueError:
                    operator = None
            allowed = field.filter_operators or [FilterOperator.EQUALS]
            if operator is None or operator not in allowed:
                raise InvalidRequestError(
                    f"Operator '{operator_name}' is not allowed for field '{field_name}' "
                    f"(allowed: {[allowed_op.value for allowed_op in allowed]})",
                    model=self.model.model,
                    field=field_name,
                    operation="filter",
                )

            condition = self._condition(field_name, operator, value)
            if condition is not None:
                conditions.append(condition)
        return conditions

    def _condition(self, field_name: str, operator: FilterOperator, value: Any):
        column = self.model.column(field_name)

        def typed(v: Any) -> Any:
            return self.model.cast_value(field_name, v)

        if operator == FilterOperator.IS_NULL:
            return column.is_(None) if value in (True, 1, "1", "true", None) else column.is_not(None)
        if operator in (FilterOperator.CONTAINS, FilterOperator.STARTS_WITH, FilterOperator.ENDS_WITH):
            if value is None or value == "":
                return None
            text = escape_like(str(value))
            pattern = {
                FilterOperator.CONTAINS: f"%{text}%",
                FilterOperator.STARTS_WITH: f"{text}%",
                FilterOperator.ENDS_WITH: f"%{text}",
            }[operator]
            return cast(column, String).ilike(pattern, escape=LIKE_ESCAPE)
        if operator == FilterOperator.IN:
            values = value if isinstance(value, list) else [v for v in str(value).split(",") if v != ""]
            for v in values:
                self._require_scalar(field_name, operator, v)
            return column.in_([typed(v) for v in values])
        if operator == FilterOperator.RANGE:
            low, high = self._range_bounds(field_name, value)
            parts = []
            if low is not None:
                parts.append(column >= typed(low))
            if high is not None:
                parts.append(column <= typed(high))
            return and_(*parts) if parts else None

        self._require_scalar(field_name, operator, value)
        if value is None:
            return column.is_(None) if operator == FilterOperator.EQUALS else column.is_not(None)
        return COMPARISONS[operator](column, typed(value))

    def _require_scalar(self, field_name: str, operator: FilterOperator, value: Any) -> None:
        if isinstance(value, (dict, list, tuple, set)):
            raise InvalidRequestError(
                f"Operator '{operator.value}' on '{field_name}' expects a single value, got {type(value).__name__}",
                model=self.model.model,
                field=field_name,
                operation="filter",
            )

    def _range_bounds(self, field_name: str, value: Any) -> Tuple[Any, Any]:
        if isinstance(value, dict):
            return value.get("min"), value.get("max")
        if isinstance(value, (list, tuple)) and len(value) == 2:
            return value[0], value[1]
        if isinstance(value, str) and "," in value:
            low, high = value.split(",", 1)
            return low or None, high or None
        raise InvalidRequestError(
            f"Range filter for '{field_name}' expects [min, max] or {{min, max}}",
            model=self.model.model,
            field=field_name,
            operation="filter",
        )

    # ========================================================================
    # Search / Pagination / Columns
    # ========================================================================

    def build_search(self, search: Optional[str]):
        """OR-ed contains predicate over searchable fields; None when nothing to search."""
        terms = (search or "").strip()
        if not terms:
            return None
        columns = [
            self.model.column(name)
            for name in self.definition.searchable_fields
            if name and self.model.has_column(name)
        ]
        if not columns:
            logger.debug(f"Sprunje '{self.model.model}': no searchable fields, search skipped")
            return None
        pattern = f"%{escape_like(terms)}%"
        return or_(*[cast(column, String).ilike(pattern, escape=LIKE_ESCAPE) for column in columns])

    def paginate(self, page: Optional[int], per_page: Optional[int]) -> Tuple[int, int]:
        page = max(1, int(page or 1))
        per_page = int(per_page or self.default_page_size)
        per_page = min(max(1, per_page), self.max_page_size)
        return page, per_page

    def list_columns(self) -> List[Any]:
        pk = self.model.primary_key
        columns = [self.model.column(pk)]
        for name in self.definition.listable_fields:
            if name != pk and self.model.has_column(name):
                columns.append(self.model.column(name))
        return columns
