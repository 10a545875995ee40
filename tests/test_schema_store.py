"""
tests/test_schema_store.py
Unit tests for schemacrud.services.schema_store.

Tests cover:
- Loading project schemas and applying defaults
- Connection-scoped lookup with fallback to the root directory
- Missing and invalid model names
- Structural validation failures (JSON, required keys, identifiers, field types)
"""

from __future__ import annotations

import json
import pathlib
from typing import Any, Dict

import pytest

from schemacrud.core.exceptions import SchemaMalformedError, SchemaNotFoundError
from schemacrud.services.schema_store import SchemaStore


def _write(path: pathlib.Path, data: Any) -> pathlib.Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(data if isinstance(data, str) else json.dumps(data), encoding="utf-8")
    return path


# ===========================================================================
# Loading
# ===========================================================================


class TestLoad:
    """Tests for SchemaStore.load on well-formed documents."""

    def test_loads_project_schema(self, store: SchemaStore) -> None:
        schema = store.load("users")
        assert schema["model"] == "users"
        assert schema["table"] == "users"
        assert schema["soft_delete"] is True
        assert "user_name" in schema["fields"]

    def test_defaults_applied(self, store: SchemaStore) -> None:
        schema = store.load("roles")
        assert schema["primary_key"] == "id"
        assert schema["timestamps"] is True
        assert schema["soft_delete"] is False

    def test_explicit_values_kept(self, store: SchemaStore) -> None:
        schema = store.load("activities")
        assert schema["timestamps"] is False

    def test_exists(self, store: SchemaStore) -> None:
        assert store.exists("users")
        assert not store.exists("nonexistent")
        assert not store.exists("../users")

    def test_minimal_document(self, schema_dir: pathlib.Path, minimal_raw_schema: Dict[str, Any]) -> None:
        _write(schema_dir / "widgets.json", minimal_raw_schema)
        schema = SchemaStore(schema_dir).load("widgets")
        assert schema["primary_key"] == "id"
        assert "connection" not in schema


class TestConnectionScopedLoad:
    """Tests for {path}/{connection}/{model}.json resolution."""

    def test_connection_directory_wins(
        self, schema_dir: pathlib.Path, minimal_raw_schema: Dict[str, Any]
    ) -> None:
        root_copy = dict(minimal_raw_schema, title="Root widgets")
        scoped_copy = dict(minimal_raw_schema, title="Reporting widgets")
        _write(schema_dir / "widgets.json", root_copy)
        _write(schema_dir / "reporting" / "widgets.json", scoped_copy)

        schema = SchemaStore(schema_dir).load("widgets", "reporting")
        assert schema["title"] == "Reporting widgets"
        assert schema["connection"] == "reporting"

    def test_falls_back_to_root(self, store: SchemaStore) -> None:
        schema = store.load("users", "reporting")
        assert schema["model"] == "users"
        assert "connection" not in schema

    def test_declared_connection_not_overridden(
        self, schema_dir: pathlib.Path, minimal_raw_schema: Dict[str, Any]
    ) -> None:
        _write(schema_dir / "reporting" / "widgets.json", dict(minimal_raw_schema, connection="warehouse"))
        schema = SchemaStore(schema_dir).load("widgets", "reporting")
        assert schema["connection"] == "warehouse"

    def test_invalid_connection_name(self, store: SchemaStore) -> None:
        with pytest.raises(SchemaNotFoundError):
            store.load("users", "../etc")


# ===========================================================================
# Not found
# ===========================================================================


class TestNotFound:

    def test_missing_model(self, store: SchemaStore) -> None:
        with pytest.raises(SchemaNotFoundError) as exc_info:
            store.load("nonexistent")
        assert exc_info.value.model == "nonexistent"
        assert exc_info.value.status_code == 404

    @pytest.mark.parametrize("name", ["../users", "users.json", "user names", ""])
    def test_invalid_model_name(self, store: SchemaStore, name: str) -> None:
        with pytest.raises(SchemaNotFoundError):
            store.load(name)


# ===========================================================================
# Malformed documents
# ===========================================================================


class TestMalformed:
    """Every structural failure surfaces as SchemaMalformedError."""

    def test_invalid_json(self, schema_dir: pathlib.Path) -> None:
        _write(schema_dir / "broken.json", '{"model": "broken", ')
        with pytest.raises(SchemaMalformedError):
            SchemaStore(schema_dir).load("broken")

    def test_not_an_object(self, schema_dir: pathlib.Path) -> None:
        _write(schema_dir / "listy.json", "[1, 2, 3]")
        with pytest.raises(SchemaMalformedError):
            SchemaStore(schema_dir).load("listy")

    @pytest.mark.parametrize("key", ["model", "table", "fields"])
    def test_missing_required_key(
        self, schema_dir: pathlib.Path, minimal_raw_schema: Dict[str, Any], key: str
    ) -> None:
        del minimal_raw_schema[key]
        _write(schema_dir / "widgets.json", minimal_raw_schema)
        with pytest.raises(SchemaMalformedError) as exc_info:
            SchemaStore(schema_dir).load("widgets")
        assert key in exc_info.value.message

    def test_model_mismatch(self, schema_dir: pathlib.Path, minimal_raw_schema: Dict[str, Any]) -> None:
        _write(schema_dir / "gadgets.json", minimal_raw_schema)
        with pytest.raises(SchemaMalformedError) as exc_info:
            SchemaStore(schema_dir).load("gadgets")
        assert "does not match" in exc_info.value.message

    def test_table_not_an_identifier(
        self, schema_dir: pathlib.Path, minimal_raw_schema: Dict[str, Any]
    ) -> None:
        minimal_raw_schema["table"] = "widgets; DROP TABLE users"
        _write(schema_dir / "widgets.json", minimal_raw_schema)
        with pytest.raises(SchemaMalformedError):
            SchemaStore(schema_dir).load("widgets")

    def test_field_without_type(self, schema_dir: pathlib.Path, minimal_raw_schema: Dict[str, Any]) -> None:
        minimal_raw_schema["fields"]["name"] = {"label": "Name"}
        _write(schema_dir / "widgets.json", minimal_raw_schema)
        with pytest.raises(SchemaMalformedError) as exc_info:
            SchemaStore(schema_dir).load("widgets")
        assert exc_info.value.field == "name"

    def test_fields_not_an_object(self, schema_dir: pathlib.Path, minimal_raw_schema: Dict[str, Any]) -> None:
        minimal_raw_schema["fields"] = ["id", "name"]
        _write(schema_dir / "widgets.json", minimal_raw_schema)
        with pytest.raises(SchemaMalformedError):
            SchemaStore(schema_dir).load("widgets")
