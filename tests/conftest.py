"""
tests/conftest.py
Shared fixtures for the schemacrud test suite.

Schemas come from the project's schema/crud directory (copied into a
temporary directory per test); data lives in an in-memory SQLite database
shared through a StaticPool, with foreign keys enforced.
"""

from __future__ import annotations

import copy
import pathlib
import shutil
from typing import Any, Dict

import pytest
from sqlalchemy import create_engine, text
from sqlalchemy.pool import StaticPool

from schemacrud.database.session import dispose_engines, register_engine
from schemacrud.security.access import PermissionSetGate
from schemacrud.services.crud_service import CrudService
from schemacrud.services.dynamic_model import configure
from schemacrud.services.relationship_actions import RelationshipActionProcessor
from schemacrud.services.schema_cache import SchemaCache
from schemacrud.services.schema_service import SchemaService
from schemacrud.services.schema_store import SchemaStore

ROOT_DIR: pathlib.Path = pathlib.Path(__file__).resolve().parent.parent
SCHEMA_SOURCE_DIR: pathlib.Path = ROOT_DIR / "schema" / "crud"

ROLES = [
    (1, "user", "User"),
    (2, "admin", "Administrator"),
    (3, "editor", "Editor"),
    (4, "viewer", "Viewer"),
]


# ---------------------------------------------------------------------------
# Schema fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def schema_dir(tmp_path: pathlib.Path) -> pathlib.Path:
    """Fresh copy of the project schemas so tests may add or edit files."""
    target = tmp_path / "schema"
    shutil.copytree(SCHEMA_SOURCE_DIR, target)
    return target


@pytest.fixture()
def store(schema_dir: pathlib.Path) -> SchemaStore:
    return SchemaStore(schema_dir)


@pytest.fixture()
def schema_service(store: SchemaStore) -> SchemaService:
    return SchemaService(store=store, cache=SchemaCache(external=None, ttl=60, prefix="test:"))


@pytest.fixture()
def minimal_raw_schema() -> Dict[str, Any]:
    """Smallest valid schema document: one table, two fields."""
    return copy.deepcopy({
        "model": "widgets",
        "table": "widgets",
        "fields": {
            "id": {"type": "integer", "auto_increment": True},
            "name": {"type": "string", "sortable": True, "filterable": True, "searchable": True},
        },
    })


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def engine():
    """In-memory SQLite registered as the default connection."""
    engine = create_engine(
        "sqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    register_engine(None, engine)
    yield engine
    dispose_engines()


@pytest.fixture()
def database(engine, schema_service: SchemaService):
    """users / roles / activities tables, the role_users pivot and seeded roles."""
    for model in ("users", "roles", "activities"):
        dm = configure(schema_service.get_definition(model))
        with engine.begin() as conn:
            dm.create_table(conn)

    with engine.begin() as conn:
        conn.execute(text(
            """
            CREATE TABLE role_users (
                user_id INTEGER NOT NULL REFERENCES users(id),
                role_id INTEGER NOT NULL REFERENCES roles(id),
                created_at VARCHAR(32),
                PRIMARY KEY (user_id, role_id)
            )
            """
        ))
        for role_id, slug, name in ROLES:
            conn.execute(
                text("INSERT INTO roles (id, slug, name) VALUES (:id, :slug, :name)"),
                {"id": role_id, "slug": slug, "name": name},
            )
    return engine


@pytest.fixture()
def processor() -> RelationshipActionProcessor:
    return RelationshipActionProcessor()


@pytest.fixture()
def admin_gate() -> PermissionSetGate:
    return PermissionSetGate(super_admin=True)


@pytest.fixture()
def crud(database, schema_service: SchemaService, admin_gate: PermissionSetGate) -> CrudService:
    return CrudService(schema_service, admin_gate, actor_id=42)


@pytest.fixture()
def pivot_rows(database):
    """Callable returning (role_id, created_at) pivot rows of a user."""

    def _rows(user_id: int):
        with database.connect() as conn:
            return conn.execute(
                text("SELECT role_id, created_at FROM role_users WHERE user_id = :uid ORDER BY role_id"),
                {"uid": user_id},
            ).fetchall()

    return _rows
