"""
tests/test_security.py
Tests for access gates, token handling and password hashing.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from jose import jwt

from schemacrud.core.config import get_settings
from schemacrud.security.access import AccessGate, PermissionSetGate, gate_from_claims
from schemacrud.security.jwt_handler import create_access_token, read_actor_claims
from schemacrud.security.password import hash_password, is_hashed, verify_password


class TestAccessGate:

    def test_permission_set(self) -> None:
        gate = PermissionSetGate(["uri_users", "create_user"])
        assert isinstance(gate, AccessGate)
        assert gate.check_access("uri_users")
        assert not gate.check_access("delete_user")

    def test_super_admin_bypass(self) -> None:
        assert PermissionSetGate(super_admin=True).check_access("anything")
        assert PermissionSetGate(["SUPER_ADMIN"]).check_access("anything")

    def test_from_claims(self) -> None:
        assert gate_from_claims(["uri_users"], ["SUPER_ADMIN"]).check_access("delete_user")
        assert not gate_from_claims(["uri_users"], ["editor"]).check_access("delete_user")
        assert not gate_from_claims(None).check_access("uri_users")


class TestTokens:

    def test_round_trip(self) -> None:
        token = create_access_token("alice", user_id=7, permissions=["uri_users"], roles=["editor"])
        claims = read_actor_claims(token)
        assert claims.sub == "alice"
        assert claims.uid == 7
        assert claims.permissions == ["uri_users"]
        assert claims.roles == ["editor"]

    def test_defaults(self) -> None:
        claims = read_actor_claims(create_access_token("alice"))
        assert claims.uid is None
        assert claims.permissions == []
        assert claims.roles == []

    def test_expired(self) -> None:
        token = create_access_token("alice", expires_delta=timedelta(seconds=-10))
        assert read_actor_claims(token) is None

    def test_garbage(self) -> None:
        assert read_actor_claims("not.a.token") is None

    @pytest.mark.parametrize(
        "payload",
        [
            {"sub": "alice", "type": "refresh"},
            {"permissions": ["uri_users"], "type": "access"},
            {"sub": "alice", "permissions": "uri_users", "type": "access"},
        ],
    )
    def test_rejects_wrong_type_or_claims(self, payload) -> None:
        settings = get_settings()
        token = jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
        assert read_actor_claims(token) is None

class TestPasswords:

    def test_hash_and_verify(self) -> None:
        hashed = hash_password("correct horse")
        assert hashed != "correct horse"
        assert is_hashed(hashed)
        assert verify_password("correct horse", hashed)
        assert not verify_password("wrong horse", hashed)

    def test_plain_value_not_hashed(self) -> None:
        assert not is_hashed("correct horse")
