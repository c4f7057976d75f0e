"""
Role checks for API routes.

Roles are ranked; a route names the lowest role it accepts and every higher
role passes as well.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from fastapi import HTTPException, status, Depends
from fastapi.security import HTTPAuthorizationCredentials

from coprocure.core.security import decode_token, security


class Role(str, Enum):
    VIEWER = "viewer"
    OPERATOR = "operator"
    COMMITTEE = "committee"
    ADMIN = "admin"
    OWNER = "owner"


# Lowest to highest
ROLE_ORDER = [Role.VIEWER, Role.OPERATOR, Role.COMMITTEE, Role.ADMIN, Role.OWNER]
ROLE_RANK = {role: rank for rank, role in enumerate(ROLE_ORDER)}


def role_at_least(role: Role, minimum: Role) -> bool:
    return ROLE_RANK.get(role, 0) >= ROLE_RANK.get(minimum, 0)


@dataclass(frozen=True)
class ActorContext:
    """Who is acting: copied onto decisions and audit events."""
    user_id: Optional[str] = None
    role: str = Role.VIEWER.value
    company_id: Optional[str] = None

    def can(self, minimum: Role) -> bool:
        try:
            return role_at_least(Role(self.role), minimum)
        except ValueError:
            return False


def actor_from_payload(payload: dict) -> ActorContext:
    """Build the actor from verified JWT claims. Unknown roles degrade to viewer."""
    user_id = payload.get("sub") or payload.get("user_id")
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token carries no subject",
        )
    role = payload.get("role")
    if role not in {r.value for r in Role}:
        role = Role.VIEWER.value
    company_id = payload.get("company_id")
    return ActorContext(
        user_id=str(user_id),
        role=role,
        company_id=None if company_id is None else str(company_id),
    )


class RBACChecker:
    """FastAPI dependency: resolves the bearer token to an actor of at least ``minimum`` role."""

    def __init__(self, minimum: Role):
        self.minimum = minimum

    async def __call__(
        self,
        credentials: HTTPAuthorizationCredentials = Depends(security),
    ) -> ActorContext:
        actor = actor_from_payload(decode_token(credentials.credentials))
        if not actor.can(self.minimum):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Role '{actor.role}' cannot perform this action; requires {self.minimum.value}",
            )
        return actor


require_viewer = RBACChecker(Role.VIEWER)
require_operator = RBACChecker(Role.OPERATOR)
require_committee = RBACChecker(Role.COMMITTEE)
