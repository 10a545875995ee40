"""
Schema Generator
=================
Builds starter schema documents from an existing database:

    inspect(engine) -> tables, columns, primary keys, foreign keys
        -> one {model}.json per table (fields, permissions, default sort,
           lookups for foreign keys, details for referencing tables)

Generated files are a starting point; they pass normalize_schema / SchemaDef
validation unchanged but are meant to be edited by hand afterwards.
"""
import json
import re
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from loguru import logger
from sqlalchemy import JSON, Boolean, Date, DateTime, Float, Integer, Numeric, String, Text, inspect
from sqlalchemy.engine import Engine

from schemacrud.models.schema import DELETED_AT_COLUMN, TIMESTAMP_COLUMNS, is_identifier, singular

TABLE_PREFIXES = re.compile(r"^(tbl_|test_)")
NAME_COLUMNS = ("name", "title", "slug", "user_name", "username")
HIDDEN_COLUMNS = ("password", "token", "secret")
LIST_TYPES = ("string", "email", "boolean", "integer", "lookup")
DETAIL_LIST_FIELDS = 5

CRUD_OPERATIONS = ("create", "update", "delete")


# ============================================================================
# Type mapping
# ============================================================================

def field_type_for(sql_type: Any) -> str:
    """Schema field type for a reflected SQLAlchemy column type."""
    # Subclasses first: Text < String, Float < Numeric, DateTime before Date
    if isinstance(sql_type, Boolean):
        return "boolean"
    if isinstance(sql_type, Integer):
        return "integer"
    if isinstance(sql_type, Float):
        return "float"
    if isinstance(sql_type, Numeric):
        return "decimal"
    if isinstance(sql_type, DateTime):
        return "datetime"
    if isinstance(sql_type, Date):
        return "date"
    if isinstance(sql_type, JSON):
        return "json"
    if isinstance(sql_type, Text):
        return "text"
    return "string"


def _label(name: str) -> str:
    return name.replace("_", " ").title()


def _base_name(table: str) -> str:
    return TABLE_PREFIXES.sub("", table)


# ============================================================================
# Generator
# ============================================================================

class SchemaGenerator:
    """Turns reflected table metadata into schema documents."""

    def __init__(
        self,
        engine: Engine,
        connection: Optional[str] = None,
        operations: Iterable[str] = CRUD_OPERATIONS,
    ):
        self.engine = engine
        self.connection = connection
        self.operations = [op for op in operations if op in CRUD_OPERATIONS]

    def table_names(self, tables: Optional[Iterable[str]] = None) -> List[str]:
        available = inspect(self.engine).get_table_names()
        if not tables:
            return [name for name in available if is_identifier(name)]
        wanted = [name.strip() for name in tables if name and name.strip()]
        missing = [name for name in wanted if name not in available]
        if missing:
            logger.warning(f"Tables not found, skipped: {missing}")
        return [name for name in wanted if name in available and is_identifier(name)]

    def generate(self, tables: Optional[Iterable[str]] = None) -> Dict[str, Dict[str, Any]]:
        """Schema documents for the requested tables (all tables when None), keyed by model."""
        inspector = inspect(self.engine)
        names = self.table_names(tables)

        metadata = {}
        for name in names:
            metadata[name] = {
                "columns": inspector.get_columns(name),
                "primary_key": inspector.get_pk_constraint(name).get("constrained_columns") or [],
                "foreign_keys": inspector.get_foreign_keys(name),
            }

        schemas = {name: self._schema(name, meta) for name, meta in metadata.items()}
        for name, schema in schemas.items():
            details = self._details(name, metadata, schemas)
            if details:
                schema["details"] = details
        logger.info(f"Generated {len(schemas)} schema(s) from {self.engine.url.render_as_string(hide_password=True)}")
        return schemas

    # ------------------------------------------------------------------
    # One table
    # ------------------------------------------------------------------

    def _schema(self, table: str, meta: Dict[str, Any]) -> Dict[str, Any]:
        base = _base_name(table)
        column_names = [column["name"] for column in meta["columns"]]
        primary = (meta["primary_key"] or ["id"])[0]
        lookups = {
            fk["constrained_columns"][0]: fk
            for fk in meta["foreign_keys"]
            if len(fk.get("constrained_columns") or []) == 1 and fk.get("referred_table")
        }

        schema: Dict[str, Any] = {
            "model": table,
            "title": _label(base),
            "singular_title": _label(singular(base)),
            "description": f"Manage {base.replace('_', ' ')}",
            "table": table,
            "primary_key": primary,
            "timestamps": all(name in column_names for name in TIMESTAMP_COLUMNS),
            "soft_delete": DELETED_AT_COLUMN in column_names,
            "permissions": self._permissions(base),
            "default_sort": self._default_sort(column_names, primary),
        }
        if self.connection:
            schema["connection"] = self.connection
        title_field = next((name for name in NAME_COLUMNS if name in column_names), None)
        if title_field:
            schema["title_field"] = title_field

        schema["fields"] = {
            column["name"]: self._field(column, meta["primary_key"], lookups.get(column["name"]))
            for column in meta["columns"]
            if is_identifier(column["name"])
        }
        return schema

    def _permissions(self, base: str) -> Dict[str, str]:
        permissions = {"read": f"uri_{base}"}
        for operation in self.operations:
            permissions[operation] = f"{operation}_{singular(base)}"
        return permissions

    @staticmethod
    def _default_sort(column_names: List[str], primary: str) -> Dict[str, str]:
        for name in NAME_COLUMNS:
            if name in column_names:
                return {name: "asc"}
        return {primary: "asc"}

    def _field(self, column: Dict[str, Any], primary_key: List[str], fk: Optional[Dict[str, Any]]) -> Dict[str, Any]:
        name = column["name"]
        field_type = field_type_for(column["type"])
        is_timestamp = name in TIMESTAMP_COLUMNS or name == DELETED_AT_COLUMN
        is_primary = name in primary_key
        auto_increment = column.get("autoincrement") is True or (
            is_primary and len(primary_key) == 1 and field_type == "integer"
        )

        if fk is not None:
            field_type = "lookup"
        elif "password" in name and field_type == "string":
            field_type = "password"

        field: Dict[str, Any] = {"type": field_type, "label": _label(name)}
        if auto_increment:
            field["auto_increment"] = True
        if auto_increment or is_primary or is_timestamp:
            field["readonly"] = True
        if not column.get("nullable", True) and not is_timestamp and not auto_increment and column.get("default") is None:
            field["required"] = True

        field["sortable"] = field_type not in ("text", "json", "password")
        field["filterable"] = not auto_increment and not is_timestamp and field_type in ("string", "boolean", "integer", "lookup")
        field["searchable"] = not auto_increment and field_type in ("string", "text")
        field["listable"] = (
            name not in TIMESTAMP_COLUMNS
            and name != DELETED_AT_COLUMN
            and not any(hidden in name for hidden in HIDDEN_COLUMNS)
            and field_type in LIST_TYPES
        )

        validation = self._validation(name, column)
        if validation:
            field["validation"] = validation
        if fk is not None:
            field["lookup"] = {"model": fk["referred_table"], "id": (fk.get("referred_columns") or ["id"])[0]}
        return field

    @staticmethod
    def _validation(name: str, column: Dict[str, Any]) -> Dict[str, Any]:
        rules: Dict[str, Any] = {}
        length = getattr(column["type"], "length", None)
        if isinstance(column["type"], String) and length:
            rules["length"] = {"min": 1 if not column.get("nullable", True) else 0, "max": length}
        if "email" in name:
            rules["email"] = True
        if "url" in name or "link" in name:
            rules["url"] = True
        if "slug" in name:
            rules["slug"] = True
        return rules

    # ------------------------------------------------------------------
    # Details (tables holding a foreign key to this one)
    # ------------------------------------------------------------------

    @staticmethod
    def _details(table: str, metadata: Dict[str, Dict[str, Any]], schemas: Dict[str, Dict[str, Any]]) -> List[Dict[str, Any]]:
        details = []
        for other, meta in metadata.items():
            for fk in meta["foreign_keys"]:
                columns = fk.get("constrained_columns") or []
                if fk.get("referred_table") != table or len(columns) != 1:
                    continue
                child_fields = schemas[other]["fields"]
                list_fields = [
                    name for name, field in child_fields.items()
                    if field.get("listable") and name != columns[0]
                ][:DETAIL_LIST_FIELDS]
                details.append({
                    "model": other,
                    "foreign_key": columns[0],
                    "list_fields": list_fields,
                    "title": _label(_base_name(other)),
                })
        return details


# ============================================================================
# Output
# ============================================================================

def write_schemas(schemas: Dict[str, Dict[str, Any]], output_dir: Path, overwrite: bool = False) -> List[Path]:
    """Write {model}.json files; existing files are kept unless overwrite is set."""
    output_dir = Path(output_dir)
    output_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for model, schema in schemas.items():
        path = output_dir / f"{model}.json"
        if path.exists() and not overwrite:
            logger.warning(f"{path} exists, skipped (use overwrite to replace it)")
            continue
        path.write_text(json.dumps(schema, indent=2) + "\n", encoding="utf-8")
        written.append(path)
        logger.info(f"Schema written: {path}")
    return written
