from __future__ import annotations
import logging

from fastapi import APIRouter, Depends
from sqlalchemy import select
from sqlalchemy.orm import Session

from .db import get_db
from .deps import get_bearer_token, get_current_user, get_token_claims, require_permission
from .errors import AuthenticationError, ValidationError
from .models import User
from .permissions import Action, Resource
from .routers_users import create_user_record
from .schemas import (
    LoginRequest,
    LoginResponse,
    PasswordChange,
    RefreshResponse,
    UserCreate,
    UserOut,
    ValidateResponse,
)
from .security import TokenClaims, TokenService, get_token_service, hash_password, utcnow, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=LoginResponse)
def login(
    payload: LoginRequest,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
):
    username = payload.username.replace('\u00A0', ' ').strip()
    user = db.execute(select(User).where(User.username == username)).scalar_one_or_none()
    if user is None or not verify_password(payload.password, user.password_hash):
        logger.info("Failed login for %r", username)
        raise AuthenticationError("Invalid username or password", AuthenticationError.BAD_CREDENTIALS)
    if not user.is_active:
        raise AuthenticationError("Account is deactivated, contact an administrator", AuthenticationError.USER_INACTIVE)

    user.last_login_at = utcnow()
    db.add(user)
    db.commit()
    db.refresh(user)

    token = tokens.issue(user)
    logger.info("User %s (id=%s, role=%s) logged in", user.username, user.id, user.role)
    return LoginResponse(token=token, expires_at=tokens.expiry_of(token), user=UserOut.model_validate(user))


@router.get("/validate", response_model=ValidateResponse)
def validate(
    claims: TokenClaims = Depends(get_token_claims),
    user: User = Depends(get_current_user),
):
    return ValidateResponse(valid=True, user=UserOut.model_validate(user), expires_at=claims.expires_at)


@router.post("/refresh", response_model=RefreshResponse)
def refresh(
    token: str = Depends(get_bearer_token),
    user: User = Depends(get_current_user),
    tokens: TokenService = Depends(get_token_service),
):
    new_token = tokens.refresh(token)
    return RefreshResponse(token=new_token, expires_at=tokens.expiry_of(new_token))


@router.get("/me")
def me(user: User = Depends(get_current_user)):
    return {"user": UserOut.model_validate(user).model_dump(by_alias=True, mode="json")}


@router.post("/change-password")
def change_password(
    payload: PasswordChange,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    if not verify_password(payload.current_password, user.password_hash):
        raise ValidationError("Current password is incorrect", {"field": "currentPassword"})
    user.password_hash = hash_password(payload.new_password)
    db.add(user)
    db.commit()
    logger.info("User %s changed password", user.username)
    return {"ok": True}


@router.post("/register", response_model=LoginResponse, status_code=201)
def register(
    payload: UserCreate,
    db: Session = Depends(get_db),
    tokens: TokenService = Depends(get_token_service),
    _admin: User = Depends(require_permission(Resource.USERS, Action.CREATE)),
):
    """Admin-only account creation that also hands back a token for the new user."""
    user = create_user_record(db, payload)
    token = tokens.issue(user)
    return LoginResponse(token=token, expires_at=tokens.expiry_of(token), user=UserOut.model_validate(user))
