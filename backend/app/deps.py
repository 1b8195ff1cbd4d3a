from __future__ import annotations
from typing import Callable, Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session

from .db import get_db
from .errors import AuthenticationError
from .models import Role, User
from .permissions import Action, Resource, require
from .security import TokenClaims, TokenService, get_token_service, parse_authorization_header


def get_bearer_token(authorization: Optional[str] = Header(default=None, alias="Authorization")) -> str:
    return parse_authorization_header(authorization)


def get_token_claims(
    token: str = Depends(get_bearer_token),
    tokens: TokenService = Depends(get_token_service),
) -> TokenClaims:
    return tokens.validate(token)


def get_current_user(
    claims: TokenClaims = Depends(get_token_claims),
    db: Session = Depends(get_db),
) -> User:
    user = db.get(User, claims.user_id)
    if user is None:
        raise AuthenticationError("User no longer exists", AuthenticationError.USER_NOT_FOUND)
    if not user.is_active:
        raise AuthenticationError("User account is deactivated", AuthenticationError.USER_INACTIVE)
    # a role change invalidates tokens issued under the old role
    if Role(user.role) is not claims.role:
        raise AuthenticationError("Token role is stale, please log in again", AuthenticationError.TOKEN_INVALID)
    return user


def require_permission(resource: Resource, action: Action) -> Callable[..., User]:
    def _guard(user: User = Depends(get_current_user)) -> User:
        require(Role(user.role), resource, action)
        return user

    return _guard
