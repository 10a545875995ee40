"""
Actor Tokens
=============
Bearer tokens carry the actor the CRUD engine works for:

    sub          username (required)
    uid          actor id, written into pivot data by the current_user token
    permissions  permission keys checked by the access gate
    roles        role codes (SUPER_ADMIN bypasses every check)
"""
from datetime import datetime, timedelta, timezone
from typing import Any, List, Optional

from jose import JWTError, jwt
from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from schemacrud.core.config import get_settings

settings = get_settings()

TOKEN_TYPE = "access"


class ActorClaims(BaseModel):
    model_config = ConfigDict(extra="ignore")

    sub: str = Field(..., min_length=1)
    uid: Any = None
    permissions: List[str] = Field(default_factory=list)
    roles: List[str] = Field(default_factory=list)

    @field_validator("permissions", "roles", mode="before")
    @classmethod
    def _none_is_empty(cls, v: Any) -> Any:
        return [] if v is None else v


def create_access_token(
    subject: str,
    user_id: Any = None,
    permissions: Optional[List[str]] = None,
    roles: Optional[List[str]] = None,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """Sign a token for one actor (used by the identity provider and tests)."""
    claims = ActorClaims(sub=subject, uid=user_id, permissions=permissions or [], roles=roles or [])
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    payload = {**claims.model_dump(), "exp": expire, "type": TOKEN_TYPE}
    return jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def read_actor_claims(token: str) -> Optional[ActorClaims]:
    """Verified actor claims, or None for a bad, expired or non-access token."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT decode error: {e}")
        return None

    if payload.get("type") != TOKEN_TYPE:
        logger.warning(f"Rejected token of type '{payload.get('type')}'")
        return None
    try:
        return ActorClaims.model_validate(payload)
    except ValidationError as e:
        logger.warning(f"Token claims are invalid: {e.errors()[0].get('msg') if e.errors() else e}")
        return None
