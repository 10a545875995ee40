"""
Schema Store
=============
Loads raw schema documents from the schema directory:

    {SCHEMA_PATH}/{connection}/{model}.json   (connection-scoped, tried first)
    {SCHEMA_PATH}/{model}.json

Applies defaults and structural validation. Pure read, no caching.
"""
import json
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from loguru import logger

from schemacrud.core.config import get_settings
from schemacrud.core.exceptions import SchemaMalformedError, SchemaNotFoundError
from schemacrud.models.schema import is_identifier

SCHEMA_DEFAULTS = {
    "primary_key": "id",
    "timestamps": True,
    "soft_delete": False,
}

REQUIRED_KEYS = ("model", "table", "fields")


class SchemaStore:
    """Reads schema JSON documents from a directory tree."""

    def __init__(self, schema_path: Optional[Union[str, Path]] = None):
        self.schema_path = Path(schema_path or get_settings().SCHEMA_PATH)

    def candidate_paths(self, model: str, connection: Optional[str] = None) -> List[Path]:
        paths = []
        if connection:
            paths.append(self.schema_path / connection / f"{model}.json")
        paths.append(self.schema_path / f"{model}.json")
        return paths

    def exists(self, model: str, connection: Optional[str] = None) -> bool:
        if not is_identifier(model) or (connection and not is_identifier(connection)):
            return False
        return any(p.is_file() for p in self.candidate_paths(model, connection))

    def load(self, model: str, connection: Optional[str] = None) -> Dict[str, Any]:
        """
        Load, default and validate the schema document for a model.

        Raises SchemaNotFoundError when no document exists and
        SchemaMalformedError when the document fails structural validation.
        """
        if not is_identifier(model):
            raise SchemaNotFoundError(f"Invalid model name '{model}'", model=model, operation="load_schema")
        if connection and not is_identifier(connection):
            raise SchemaNotFoundError(
                f"Invalid connection name '{connection}'", model=model, operation="load_schema"
            )

        for path in self.candidate_paths(model, connection):
            if not path.is_file():
                continue

            logger.debug(f"Loading schema '{model}' from {path}")
            schema = self._read(path, model)
            schema = self.apply_defaults(schema)
            self.validate(schema, model)

            if connection and path.parent.name == connection and not schema.get("connection"):
                schema["connection"] = connection
            return schema

        raise SchemaNotFoundError(f"Schema not found for model '{model}'", model=model, operation="load_schema")

    # ========================================================================
    # Helpers
    # ========================================================================

    @staticmethod
    def _read(path: Path, model: str) -> Dict[str, Any]:
        try:
            with path.open("r", encoding="utf-8") as fh:
                schema = json.load(fh)
        except json.JSONDecodeError as e:
            raise SchemaMalformedError(
                f"Schema file for '{model}' is not valid JSON: {e}", model=model, operation="load_schema"
            ) from e

        if not isinstance(schema, dict):
            raise SchemaMalformedError(
                f"Schema file for '{model}' must contain a JSON object", model=model, operation="load_schema"
            )
        return schema

    @staticmethod
    def apply_defaults(schema: Dict[str, Any]) -> Dict[str, Any]:
        for key, value in SCHEMA_DEFAULTS.items():
            if schema.get(key) is None:
                schema[key] = value
        return schema

    @staticmethod
    def validate(schema: Dict[str, Any], model: Optional[str] = None) -> None:
        """Structural validation: required keys, typed field map, identifiers."""
        name = schema.get("model") or model

        for key in REQUIRED_KEYS:
            if not schema.get(key):
                raise SchemaMalformedError(
                    f"Schema for '{name}' is missing required key '{key}'", model=name, operation="load_schema"
                )

        if model is not None and schema["model"] != model:
            raise SchemaMalformedError(
                f"Schema model '{schema['model']}' does not match requested model '{model}'",
                model=model,
                operation="load_schema",
            )

        for key in ("model", "table", "primary_key"):
            if not is_identifier(schema[key]):
                raise SchemaMalformedError(
                    f"Schema '{key}' value '{schema[key]}' must contain only letters, digits and underscores",
                    model=name,
                    operation="load_schema",
                )

        fields = schema["fields"]
        if not isinstance(fields, dict):
            raise SchemaMalformedError(
                f"Schema for '{name}' must declare 'fields' as an object", model=name, operation="load_schema"
            )
        for field_name, field in fields.items():
            if not is_identifier(field_name):
                raise SchemaMalformedError(
                    f"Field name '{field_name}' must contain only letters, digits and underscores",
                    model=name,
                    field=field_name,
                    operation="load_schema",
                )
            if not isinstance(field, dict) or not field.get("type"):
                raise SchemaMalformedError(
                    f"Field '{field_name}' is missing a type", model=name, field=field_name, operation="load_schema"
                )
