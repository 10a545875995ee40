"""
FastAPI Security Dependencies: Current Actor, Access Gate, Services
"""
from typing import Any, List, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from schemacrud.security.access import AccessGate, gate_from_claims
from schemacrud.security.jwt_handler import read_actor_claims
from schemacrud.services.crud_service import CrudService
from schemacrud.services.schema_service import SchemaService

bearer_scheme = HTTPBearer()


class Actor:
    """The authenticated subject, as described by the token claims."""

    def __init__(
        self,
        username: str,
        user_id: Any = None,
        permissions: Optional[List[str]] = None,
        roles: Optional[List[str]] = None,
    ):
        self.username = username
        self.user_id = user_id
        self.permissions = list(permissions or [])
        self.roles = list(roles or [])

    @property
    def gate(self) -> AccessGate:
        return gate_from_claims(self.permissions, self.roles)


# ============================================================================
# Get Current Actor
# ============================================================================

async def get_current_actor(
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> Actor:
    """Actor described by the bearer token."""
    claims = read_actor_claims(credentials.credentials)
    if claims is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return Actor(
        username=claims.sub,
        user_id=claims.uid,
        permissions=claims.permissions,
        roles=claims.roles,
    )


async def get_access_gate(actor: Actor = Depends(get_current_actor)) -> AccessGate:
    return actor.gate


# ============================================================================
# Services
# ============================================================================

def get_schema_service(request: Request) -> SchemaService:
    """The SchemaService built at application startup."""
    return request.app.state.schema_service


def get_crud_service(
    actor: Actor = Depends(get_current_actor),
    schema_service: SchemaService = Depends(get_schema_service),
) -> CrudService:
    return CrudService(schema_service, actor.gate, actor_id=actor.user_id)
