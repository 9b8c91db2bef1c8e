"""Authentication helpers and FastAPI security dependencies.

This module decodes JWT tokens and exposes two dependencies:
`get_request_context`, which validates the bearer token and returns a
`RequestContext` (the caller's user id, organization and role), and
`require_coach`, which additionally restricts a route to coaching staff.

Token verification raises HTTPExceptions on failure so the helpers can
be used directly inside route dependencies.
"""

from dataclasses import dataclass

from fastapi import Depends, HTTPException, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from sqlmodel import Session
from .config import settings
from .database import get_session
from . import repositories

bearer_scheme = HTTPBearer()

COACH_ROLES = ('coach', 'super_coach', 'admin')
# roles allowed to edit any coach's client data in their organization
VIEW_ALL_ROLES = ('super_coach', 'admin')


@dataclass(frozen=True)
class RequestContext:
    user_id: int
    username: str
    organization_id: str
    role: str

    @property
    def is_coach(self) -> bool:
        return self.role in COACH_ROLES

    @property
    def can_view_all(self) -> bool:
        return self.role in VIEW_ALL_ROLES


def decode_token(token: str):
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail='token expired')
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail='invalid token')


def get_request_context(credentials: HTTPAuthorizationCredentials = Security(bearer_scheme),
                        db: Session = Depends(get_session)) -> RequestContext:
    """FastAPI dependency returning the authenticated caller's context.

    The user is re-read from the database so that deleted users and
    organization or role changes take effect before the token expires.
    """
    payload = decode_token(credentials.credentials)
    user_id = payload.get('user_id')
    if not user_id:
        raise HTTPException(status_code=401, detail='invalid token payload')
    user = repositories.UserRepository(db).get(user_id)
    if not user:
        raise HTTPException(status_code=401, detail='user not found')
    return RequestContext(
        user_id=user.id,
        username=user.username,
        organization_id=user.organization_id,
        role=user.role,
    )


def require_coach(ctx: RequestContext = Depends(get_request_context)) -> RequestContext:
    if not ctx.is_coach:
        raise HTTPException(status_code=403, detail='coach role required')
    return ctx
