"""
Access Gate
============
The engine only asks "may the current subject perform permission P?".
Permission evaluation itself belongs to the caller.
"""
from typing import Iterable, Optional, Protocol, runtime_checkable

from loguru import logger

SUPER_ADMIN = "SUPER_ADMIN"


@runtime_checkable
class AccessGate(Protocol):
    def check_access(self, permission: str) -> bool:
        ...


class PermissionSetGate:
    """Gate backed by a fixed permission set (e.g. from token claims)."""

    def __init__(self, permissions: Iterable[str] = (), super_admin: bool = False):
        self.permissions = set(permissions or ())
        self.super_admin = super_admin or SUPER_ADMIN in self.permissions

    def check_access(self, permission: str) -> bool:
        # Super Admin bypasses all permission checks
        if self.super_admin:
            return True
        allowed = permission in self.permissions
        if not allowed:
            logger.debug(f"Access denied for permission '{permission}'")
        return allowed


def gate_from_claims(permissions: Optional[Iterable[str]], roles: Optional[Iterable[str]] = None) -> PermissionSetGate:
    return PermissionSetGate(permissions or (), super_admin=SUPER_ADMIN in set(roles or ()))
