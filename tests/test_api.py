"""
tests/test_api.py
HTTP-level tests for the generic CRUD router (FastAPI TestClient).
"""

from __future__ import annotations

from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient

from schemacrud.main import create_app
from schemacrud.security.jwt_handler import create_access_token
from schemacrud.services.schema_service import SchemaService

BASE = "/api/v1/crud"


def _headers(permissions: Optional[List[str]] = None, roles: Optional[List[str]] = None) -> Dict[str, str]:
    token = create_access_token("tester", user_id=42, permissions=permissions, roles=roles)
    return {"Authorization": f"Bearer {token}"}


ADMIN = _headers(roles=["SUPER_ADMIN"])
READER = _headers(permissions=["uri_users"])


@pytest.fixture()
def client(database, schema_service: SchemaService) -> TestClient:
    return TestClient(create_app(schema_service))


@pytest.fixture()
def alice(client: TestClient) -> dict:
    response = client.post(
        f"{BASE}/users",
        json={"user_name": "alice", "email": "alice@example.com", "password": "correct horse"},
        headers=ADMIN,
    )
    assert response.status_code == 201, response.text
    return response.json()["data"]


# ===========================================================================
# Auth / health
# ===========================================================================


class TestAuth:

    def test_missing_token(self, client: TestClient) -> None:
        response = client.get(f"{BASE}/users")
        assert response.status_code in (401, 403)

    def test_invalid_token(self, client: TestClient) -> None:
        response = client.get(f"{BASE}/users", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401

    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["database"] == "connected"


# ===========================================================================
# Schema endpoints
# ===========================================================================


class TestSchemaEndpoints:

    def test_list_context(self, client: TestClient) -> None:
        response = client.get(f"{BASE}/users/schema", params={"context": "list"}, headers=READER)
        assert response.status_code == 200
        fields = response.json()["data"]["fields"]
        assert "user_name" in fields
        assert "password" not in fields

    def test_include_related(self, client: TestClient) -> None:
        response = client.get(
            f"{BASE}/users/schema",
            params={"context": "detail", "include_related": "true"},
            headers=ADMIN,
        )
        assert "activities" in response.json()["data"]["related_schemas"]

    def test_schema_requires_read_permission(self, client: TestClient) -> None:
        response = client.get(f"{BASE}/roles/schema", headers=READER)
        assert response.status_code == 403
        assert response.json()["data"]["permission"] == "uri_roles"

    def test_unknown_model(self, client: TestClient) -> None:
        response = client.get(f"{BASE}/nonexistent/schema", headers=ADMIN)
        assert response.status_code == 404
        body = response.json()
        assert body["success"] is False
        assert body["data"]["model"] == "nonexistent"

    def test_reload(self, client: TestClient) -> None:
        assert client.post(f"{BASE}/users/schema/reload", headers=READER).status_code == 403
        response = client.post(f"{BASE}/users/schema/reload", headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["data"] == {"model": "users"}


# ===========================================================================
# Records
# ===========================================================================


class TestRecords:

    def test_create_and_read(self, client: TestClient, alice: dict) -> None:
        assert "password" not in alice
        response = client.get(f"{BASE}/users/{alice['id']}", headers=READER)
        assert response.status_code == 200
        assert response.json()["data"]["role_ids"] == [1]

    def test_create_forbidden(self, client: TestClient) -> None:
        response = client.post(f"{BASE}/users", json={"user_name": "x", "email": "x@example.com"}, headers=READER)
        assert response.status_code == 403
        assert response.json()["data"]["permission"] == "create_user"

    def test_relationship_overrides_in_body(self, client: TestClient) -> None:
        response = client.post(
            f"{BASE}/users",
            json={
                "user_name": "bob",
                "email": "bob@example.com",
                "relationship_actions": {"roles": {"attach": [3]}},
            },
            headers=ADMIN,
        )
        record_id = response.json()["data"]["id"]
        read = client.get(f"{BASE}/users/{record_id}", headers=ADMIN).json()["data"]
        assert sorted(read["role_ids"]) == [1, 3]

    def test_conflict_rolls_back(self, client: TestClient) -> None:
        response = client.post(
            f"{BASE}/users",
            json={
                "user_name": "bob",
                "email": "bob@example.com",
                "relationship_actions": {"roles": {"attach": [999]}},
            },
            headers=ADMIN,
        )
        assert response.status_code == 409
        assert client.get(f"{BASE}/users", headers=ADMIN).json()["total"] == 0

    def test_update(self, client: TestClient, alice: dict) -> None:
        response = client.put(
            f"{BASE}/users/{alice['id']}",
            json={"last_name": "Liddell", "role_ids": [2]},
            headers=ADMIN,
        )
        assert response.status_code == 200
        assert response.json()["data"]["last_name"] == "Liddell"
        read = client.get(f"{BASE}/users/{alice['id']}", headers=ADMIN).json()["data"]
        assert read["role_ids"] == [2]

    def test_delete_and_restore(self, client: TestClient, alice: dict) -> None:
        response = client.delete(f"{BASE}/users/{alice['id']}", headers=ADMIN)
        assert response.json()["data"]["soft_deleted"] is True
        assert client.get(f"{BASE}/users/{alice['id']}", headers=ADMIN).status_code == 404

        response = client.post(f"{BASE}/users/{alice['id']}/restore", headers=ADMIN)
        assert response.status_code == 200
        assert client.get(f"{BASE}/users/{alice['id']}", headers=ADMIN).status_code == 200

    def test_invalid_record_id(self, client: TestClient) -> None:
        assert client.get(f"{BASE}/users/abc", headers=ADMIN).status_code == 400


# ===========================================================================
# Listing
# ===========================================================================


class TestListing:

    @pytest.fixture(autouse=True)
    def people(self, client: TestClient) -> None:
        for name in ("carol", "alice", "bob"):
            client.post(f"{BASE}/users", json={"user_name": name, "email": f"{name}@example.com"}, headers=ADMIN)

    def test_query_string(self, client: TestClient) -> None:
        response = client.get(f"{BASE}/users", params={"sort": "-user_name", "per_page": 2}, headers=READER)
        body = response.json()
        assert [row["user_name"] for row in body["data"]] == ["carol", "bob"]
        assert body["total"] == 3
        assert body["total_pages"] == 2
        assert "password" not in body["data"][0]

    def test_bracket_filters(self, client: TestClient) -> None:
        response = client.get(f"{BASE}/users", params={"filters[user_name]": "ali"}, headers=READER)
        assert [row["user_name"] for row in response.json()["data"]] == ["alice"]

    def test_json_filters(self, client: TestClient) -> None:
        response = client.get(
            f"{BASE}/users",
            params={"filters": '{"email": {"operator": "starts_with", "value": "bo"}}'},
            headers=READER,
        )
        assert [row["user_name"] for row in response.json()["data"]] == ["bob"]

    def test_query_body(self, client: TestClient) -> None:
        response = client.post(
            f"{BASE}/users/query",
            json={"search": "CAR", "sort": {"user_name": "asc"}},
            headers=READER,
        )
        assert [row["user_name"] for row in response.json()["data"]] == ["carol"]
        assert response.json()["total_unfiltered"] == 3

    def test_unsortable_field(self, client: TestClient) -> None:
        response = client.get(f"{BASE}/users", params={"sort": "password"}, headers=READER)
        assert response.status_code == 400
        assert response.json()["data"]["field"] == "password"

    def test_malformed_filters(self, client: TestClient) -> None:
        response = client.get(f"{BASE}/users", params={"filters": "{oops"}, headers=READER)
        assert response.status_code == 400


# ===========================================================================
# Actions / relationships
# ===========================================================================


class TestActionsAndRelationships:

    def test_toggle_action(self, client: TestClient, alice: dict) -> None:
        response = client.post(f"{BASE}/users/{alice['id']}/actions/flag_enabled_action", headers=ADMIN)
        assert response.status_code == 200
        assert response.json()["data"]["flag_enabled"] is False

    def test_field_update_action(self, client: TestClient, alice: dict) -> None:
        response = client.post(
            f"{BASE}/users/{alice['id']}/actions/password_action",
            json={"password": "another secret"},
            headers=ADMIN,
        )
        assert response.status_code == 200

    def test_attach_detach(self, client: TestClient, alice: dict) -> None:
        url = f"{BASE}/users/{alice['id']}/relationships/roles"
        assert client.post(f"{url}/attach", json={"ids": [2, 4]}, headers=ADMIN).json()["data"]["attached"] == 2
        assert client.post(f"{url}/detach", json={"ids": [1]}, headers=ADMIN).json()["data"]["detached"] == 1
        read = client.get(f"{BASE}/users/{alice['id']}", headers=ADMIN).json()["data"]
        assert sorted(read["role_ids"]) == [2, 4]

    def test_attach_requires_ids(self, client: TestClient, alice: dict) -> None:
        url = f"{BASE}/users/{alice['id']}/relationships/roles/attach"
        assert client.post(url, json={"ids": []}, headers=ADMIN).status_code == 422
