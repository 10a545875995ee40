"""
tests/test_schema_generator.py
Tests for schemacrud.services.schema_generator and the schemacrud CLI.

Tests cover:
- Column type mapping and field flags
- Lookups for foreign keys, details for referencing tables
- Timestamps / soft delete detection and permissions
- Generated documents load through normalize_schema + SchemaDef
- write_schemas overwrite handling
- scan / generate commands
"""

from __future__ import annotations

import json
import pathlib

import pytest
from sqlalchemy import Engine, create_engine, text
from typer.testing import CliRunner

from schemacrud.cli import app
from schemacrud.models.schema import FieldType, SchemaDef
from schemacrud.services.schema_generator import SchemaGenerator, write_schemas
from schemacrud.services.schema_normalizer import normalize_schema

DDL = [
    """
    CREATE TABLE authors (
        id INTEGER PRIMARY KEY,
        name VARCHAR(80) NOT NULL,
        email VARCHAR(120),
        bio TEXT,
        created_at DATETIME,
        updated_at DATETIME,
        deleted_at DATETIME
    )
    """,
    """
    CREATE TABLE posts (
        id INTEGER PRIMARY KEY,
        author_id INTEGER NOT NULL REFERENCES authors(id),
        title VARCHAR(200) NOT NULL,
        published BOOLEAN,
        price NUMERIC(10, 2)
    )
    """,
]


def _create(engine: Engine) -> Engine:
    with engine.begin() as conn:
        for statement in DDL:
            conn.execute(text(statement))
    return engine


@pytest.fixture()
def blog() -> Engine:
    engine = _create(create_engine("sqlite://"))
    yield engine
    engine.dispose()


@pytest.fixture()
def schemas(blog: Engine):
    return SchemaGenerator(blog).generate()


# ===========================================================================
# Generation
# ===========================================================================


class TestGenerate:

    def test_one_schema_per_table(self, schemas) -> None:
        assert set(schemas) == {"authors", "posts"}

    def test_field_types(self, schemas) -> None:
        authors = schemas["authors"]["fields"]
        posts = schemas["posts"]["fields"]
        assert authors["name"]["type"] == "string"
        assert authors["bio"]["type"] == "text"
        assert authors["created_at"]["type"] == "datetime"
        assert posts["published"]["type"] == "boolean"
        assert posts["price"]["type"] == "decimal"

    def test_primary_key_flags(self, schemas) -> None:
        id_field = schemas["authors"]["fields"]["id"]
        assert id_field["auto_increment"] is True
        assert id_field["readonly"] is True
        assert "required" not in id_field

    def test_required_and_length(self, schemas) -> None:
        name = schemas["authors"]["fields"]["name"]
        assert name["required"] is True
        assert name["validation"]["length"] == {"min": 1, "max": 80}
        assert schemas["authors"]["fields"]["email"]["validation"]["email"] is True

    def test_foreign_key_becomes_lookup(self, schemas) -> None:
        author_id = schemas["posts"]["fields"]["author_id"]
        assert author_id["type"] == "lookup"
        assert author_id["lookup"] == {"model": "authors", "id": "id"}

    def test_details_for_referencing_tables(self, schemas) -> None:
        details = schemas["authors"]["details"]
        assert details == [{
            "model": "posts",
            "foreign_key": "author_id",
            "list_fields": ["id", "title", "published"],
            "title": "Posts",
        }]
        assert "details" not in schemas["posts"]

    def test_timestamps_and_soft_delete(self, schemas) -> None:
        assert schemas["authors"]["timestamps"] is True
        assert schemas["authors"]["soft_delete"] is True
        assert schemas["posts"]["timestamps"] is False
        assert schemas["posts"]["soft_delete"] is False

    def test_permissions_and_sort(self, schemas) -> None:
        assert schemas["posts"]["permissions"] == {
            "read": "uri_posts",
            "create": "create_post",
            "update": "update_post",
            "delete": "delete_post",
        }
        assert schemas["authors"]["default_sort"] == {"name": "asc"}
        assert schemas["posts"]["default_sort"] == {"title": "asc"}
        assert schemas["authors"]["title_field"] == "name"

    def test_operations_subset(self, blog: Engine) -> None:
        schemas = SchemaGenerator(blog, operations=["update"]).generate(["posts"])
        assert schemas["posts"]["permissions"] == {"read": "uri_posts", "update": "update_post"}

    def test_requested_tables_only(self, blog: Engine) -> None:
        generator = SchemaGenerator(blog)
        assert list(generator.generate(["posts", "missing"])) == ["posts"]
        assert generator.table_names([" authors ", ""]) == ["authors"]

    def test_output_validates(self, schemas) -> None:
        for raw in schemas.values():
            definition = SchemaDef.model_validate(normalize_schema(raw))
            assert definition.primary_key == "id"
        posts = SchemaDef.model_validate(normalize_schema(schemas["posts"]))
        assert posts.fields["author_id"].type == FieldType.LOOKUP


# ===========================================================================
# Output
# ===========================================================================


class TestWriteSchemas:

    def test_writes_json_files(self, schemas, tmp_path: pathlib.Path) -> None:
        written = write_schemas(schemas, tmp_path / "out")
        assert sorted(p.name for p in written) == ["authors.json", "posts.json"]
        assert json.loads((tmp_path / "out" / "posts.json").read_text())["model"] == "posts"

    def test_existing_files_kept_unless_overwrite(self, schemas, tmp_path: pathlib.Path) -> None:
        (tmp_path / "authors.json").write_text("{}")
        written = write_schemas(schemas, tmp_path)
        assert [p.name for p in written] == ["posts.json"]
        assert (tmp_path / "authors.json").read_text() == "{}"

        written = write_schemas(schemas, tmp_path, overwrite=True)
        assert len(written) == 2
        assert json.loads((tmp_path / "authors.json").read_text())["model"] == "authors"


# ===========================================================================
# CLI
# ===========================================================================


class TestCli:

    @pytest.fixture()
    def runner(self) -> CliRunner:
        return CliRunner()

    def test_scan(self, engine: Engine, runner: CliRunner) -> None:
        _create(engine)
        result = runner.invoke(app, ["scan"])
        assert result.exit_code == 0
        assert "authors: id, name, email, bio, created_at, updated_at, deleted_at" in result.output
        assert "author_id -> authors(id)" in result.output

    def test_scan_empty_database(self, engine: Engine, runner: CliRunner) -> None:
        assert runner.invoke(app, ["scan"]).exit_code == 1

    def test_generate(self, engine: Engine, runner: CliRunner, tmp_path: pathlib.Path) -> None:
        _create(engine)
        result = runner.invoke(app, ["generate", "--tables", "posts", "--output-dir", str(tmp_path), "--no-delete"])
        assert result.exit_code == 0
        posts = json.loads((tmp_path / "posts.json").read_text())
        assert "delete" not in posts["permissions"]
        assert not (tmp_path / "authors.json").exists()

    def test_generate_skips_existing(self, engine: Engine, runner: CliRunner, tmp_path: pathlib.Path) -> None:
        _create(engine)
        (tmp_path / "posts.json").write_text("{}")
        result = runner.invoke(app, ["generate", "--output-dir", str(tmp_path)])
        assert result.exit_code == 0
        assert "Skipped 1 existing file(s)" in result.output
        assert (tmp_path / "posts.json").read_text() == "{}"
