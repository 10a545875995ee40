"""
Dynamic Model
==============
Configures a generic record mapper from a schema instead of one model class
per table: SQLAlchemy Core Table, connection name, fillable columns, type
casts and the soft-delete scope.

All statements go through SQLAlchemy expressions; column and table names come
from the validated schema only.
"""
import json
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON, Boolean, Column, Date, DateTime, Float, Integer, MetaData, Numeric,
    String, Table, Text, delete, insert, select, update,
)
from sqlalchemy.engine import Connection
from sqlalchemy.sql import Select

from schemacrud.core.exceptions import InvalidRequestError
from schemacrud.models.schema import (
    DELETED_AT_COLUMN, TIMESTAMP_COLUMNS, FieldDef, FieldType, SchemaDef,
)

# Soft-delete scopes
WITHOUT_TRASHED = "exclude"
WITH_TRASHED = "include"
ONLY_TRASHED = "only"
DELETED_SCOPES = (WITHOUT_TRASHED, WITH_TRASHED, ONLY_TRASHED)

COLUMN_TYPES = {
    FieldType.INTEGER: Integer,
    FieldType.LOOKUP: Integer,
    FieldType.FLOAT: Float,
    FieldType.DECIMAL: lambda: Numeric(18, 4, asdecimal=False),
    FieldType.CURRENCY: lambda: Numeric(18, 2, asdecimal=False),
    FieldType.BOOLEAN: Boolean,
    FieldType.DATE: Date,
    FieldType.DATETIME: DateTime,
    FieldType.JSON: JSON,
    FieldType.TEXT: Text,
    FieldType.TEXTAREA: Text,
    FieldType.PASSWORD: lambda: String(255),
}

CAST_TYPES = {
    FieldType.INTEGER: "integer",
    FieldType.LOOKUP: "integer",
    FieldType.FLOAT: "float",
    FieldType.DECIMAL: "float",
    FieldType.CURRENCY: "float",
    FieldType.BOOLEAN: "boolean",
    FieldType.JSON: "array",
    FieldType.DATE: "date",
    FieldType.DATETIME: "datetime",
}

TRUE_STRINGS = {"1", "true", "yes", "on", "y", "t"}
FALSE_STRINGS = {"0", "false", "no", "off", "n", "f", ""}


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _column_type(field: Optional[FieldDef]):
    if field is None:
        return Integer()
    factory = COLUMN_TYPES.get(field.type)
    if factory is None:
        length = field.validation.get("length")
        max_length = length.get("max") if isinstance(length, dict) else None
        return String(max_length or 255)
    return factory()


class DynamicModel:
    """Record mapper for one schema-described table."""

    def __init__(self, definition: SchemaDef):
        self.definition = definition
        self.model = definition.model
        self.table_name = definition.table
        self.connection = definition.connection
        self.primary_key = definition.primary_key
        self.timestamps = definition.timestamps
        self.soft_delete = definition.soft_delete

        self.fillable: List[str] = [
            name for name, field in definition.fields.items()
            if field.is_mass_assignable and not definition.is_autogenerated(name)
        ]
        self.casts: Dict[str, str] = {
            name: CAST_TYPES[field.type]
            for name, field in definition.fields.items()
            if field.is_persisted and field.type in CAST_TYPES
        }
        self.metadata = MetaData()
        self.table = self._build_table()

    def __repr__(self) -> str:
        return f"<DynamicModel {self.model} table={self.table_name} connection={self.connection or 'default'}>"

    # ========================================================================
    # Table
    # ========================================================================

    def _build_table(self) -> Table:
        fields = self.definition.fields
        pk_field = fields.get(self.primary_key)
        columns = [
            Column(
                self.primary_key,
                _column_type(pk_field),
                primary_key=True,
                autoincrement=pk_field is None or pk_field.auto_increment or pk_field.type == FieldType.INTEGER,
            )
        ]

        for name, field in fields.items():
            if name == self.primary_key or not field.is_persisted:
                continue
            if name in TIMESTAMP_COLUMNS and self.timestamps:
                continue
            if name == DELETED_AT_COLUMN and self.soft_delete:
                continue
            columns.append(Column(name, _column_type(field), nullable=field.nullable))

        if self.timestamps:
            columns.append(Column("created_at", DateTime, nullable=True))
            columns.append(Column("updated_at", DateTime, nullable=True))
        if self.soft_delete:
            columns.append(Column(DELETED_AT_COLUMN, DateTime, nullable=True))

        return Table(self.table_name, self.metadata, *columns)

    def column(self, name: str):
        return self.table.c[name]

    def has_column(self, name: str) -> bool:
        return name in self.table.c

    def create_table(self, conn: Connection) -> None:
        """Create the backing table if missing (fixtures and bootstrap scripts)."""
        self.metadata.create_all(conn, tables=[self.table])

    # ========================================================================
    # Casting
    # ========================================================================

    def cast_value(self, name: str, value: Any) -> Any:
        cast = self.casts.get(name)
        if cast is None or value is None:
            return value
        try:
            if cast == "integer":
                if isinstance(value, str) and value.strip() == "":
                    return None
                return int(value)
            if cast == "float":
                if isinstance(value, str) and value.strip() == "":
                    return None
                return float(value)
            if cast == "boolean":
                return self._to_bool(value)
            if cast == "array":
                return json.loads(value) if isinstance(value, str) else value
            if cast == "date":
                if isinstance(value, datetime):
                    return value.date()
                if isinstance(value, date):
                    return value
                return date.fromisoformat(str(value)[:10])
            if cast == "datetime":
                if isinstance(value, datetime):
                    return value
                if isinstance(value, date):
                    return datetime(value.year, value.month, value.day)
                return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except (TypeError, ValueError) as e:
            raise InvalidRequestError(
                f"Value {value!r} is not a valid {cast} for field '{name}'",
                model=self.model,
                field=name,
                operation="cast",
            ) from e
        return value

    @staticmethod
    def _to_bool(value: Any) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, (int, float, Decimal)):
            return bool(value)
        text = str(value).strip().lower()
        if text in TRUE_STRINGS:
            return True
        if text in FALSE_STRINGS:
            return False
        raise ValueError(f"cannot interpret {value!r} as boolean")

    def fill(self, data: Dict[str, Any]) -> Dict[str, Any]:
        """Mass-assignable subset of data, cast to column types."""
        return {name: self.cast_value(name, data[name]) for name in self.fillable if name in data}

    # ========================================================================
    # Scopes / Queries
    # ========================================================================

    def apply_deleted_scope(self, stmt: Select, deleted: str = WITHOUT_TRASHED) -> Select:
        if deleted not in DELETED_SCOPES:
            raise InvalidRequestError(
                f"Invalid deleted scope '{deleted}', expected one of {list(DELETED_SCOPES)}",
                model=self.model,
                operation="query",
            )
        if not self.soft_delete or deleted == WITH_TRASHED:
            return stmt
        column = self.table.c[DELETED_AT_COLUMN]
        if deleted == ONLY_TRASHED:
            return stmt.where(column.is_not(None))
        return stmt.where(column.is_(None))

    def select(self, deleted: str = WITHOUT_TRASHED) -> Select:
        return self.apply_deleted_scope(select(self.table), deleted)

    def find(self, conn: Connection, record_id: Any, deleted: str = WITHOUT_TRASHED) -> Optional[Dict[str, Any]]:
        stmt = self.select(deleted).where(self.table.c[self.primary_key] == self.cast_key(record_id))
        row = conn.execute(stmt).first()
        return dict(row._mapping) if row is not None else None

    def cast_key(self, record_id: Any) -> Any:
        pk_field = self.definition.fields.get(self.primary_key)
        if pk_field is None or pk_field.type == FieldType.INTEGER:
            try:
                return int(record_id)
            except (TypeError, ValueError) as e:
                raise InvalidRequestError(
                    f"Invalid {self.primary_key} '{record_id}'",
                    model=self.model,
                    field=self.primary_key,
                    operation="find",
                ) from e
        return record_id

    # ========================================================================
    # Mutations
    # ========================================================================

    def insert(self, conn: Connection, values: Dict[str, Any]) -> Any:
        values = dict(values)
        if self.timestamps:
            now = utcnow()
            values.setdefault("created_at", now)
            values.setdefault("updated_at", now)
        result = conn.execute(insert(self.table).values(**values))
        if self.primary_key in values:
            return values[self.primary_key]
        return result.inserted_primary_key[0]

    def update(self, conn: Connection, record_id: Any, values: Dict[str, Any]) -> int:
        values = dict(values)
        if self.timestamps:
            values["updated_at"] = utcnow()
        if not values:
            return 0
        stmt = update(self.table).where(self.table.c[self.primary_key] == self.cast_key(record_id)).values(**values)
        return conn.execute(stmt).rowcount

    def hard_delete(self, conn: Connection, record_id: Any) -> int:
        stmt = delete(self.table).where(self.table.c[self.primary_key] == self.cast_key(record_id))
        return conn.execute(stmt).rowcount

    def soft_delete_record(self, conn: Connection, record_id: Any) -> int:
        self._require_soft_delete("soft_delete")
        values = {DELETED_AT_COLUMN: utcnow()}
        if self.timestamps:
            values["updated_at"] = values[DELETED_AT_COLUMN]
        stmt = (
            update(self.table)
            .where(self.table.c[self.primary_key] == self.cast_key(record_id))
            .where(self.table.c[DELETED_AT_COLUMN].is_(None))
            .values(**values)
        )
        return conn.execute(stmt).rowcount

    def restore(self, conn: Connection, record_id: Any) -> int:
        self._require_soft_delete("restore")
        values: Dict[str, Any] = {DELETED_AT_COLUMN: None}
        if self.timestamps:
            values["updated_at"] = utcnow()
        stmt = update(self.table).where(self.table.c[self.primary_key] == self.cast_key(record_id)).values(**values)
        return conn.execute(stmt).rowcount

    def delete_where(self, conn: Connection, column: str, value: Any, soft: bool = False) -> int:
        """Delete (or soft-delete) every row whose column equals value."""
        condition = self.table.c[column] == value
        if soft:
            self._require_soft_delete("soft_delete")
            stmt = (
                update(self.table)
                .where(condition)
                .where(self.table.c[DELETED_AT_COLUMN].is_(None))
                .values(**{DELETED_AT_COLUMN: utcnow()})
            )
        else:
            stmt = delete(self.table).where(condition)
        return conn.execute(stmt).rowcount

    def _require_soft_delete(self, operation: str) -> None:
        if not self.soft_delete:
            raise InvalidRequestError(
                f"Model '{self.model}' does not support soft delete",
                model=self.model,
                operation=operation,
            )


def configure(definition: SchemaDef) -> DynamicModel:
    """Configure a DynamicModel from a (full, normalized) schema."""
    return DynamicModel(definition)
