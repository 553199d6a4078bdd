from typing import Optional

import jwt
import structlog
from fastapi import APIRouter, Depends, HTTPException, status, Header
from sqlalchemy.orm import Session

from core.db import get_db
from models.user import User
from schemas.auth import RegisterRequest, LoginRequest, TokenPair, RefreshTokenRequest
from schemas.users import UserOut
from security.password import hash_password, verify_password
from security import jwt as jwt_utils
from services import token_blacklist

router = APIRouter(prefix="/auth", tags=["auth"])
log = structlog.get_logger(__name__)


def _bearer_token(authorization: Optional[str]) -> str:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return authorization.split(" ", 1)[1].strip()


def get_token_claims(authorization: Optional[str] = Header(default=None, alias="Authorization")) -> dict:
    token = _bearer_token(authorization)
    try:
        payload = jwt_utils.decode_access(token)
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    if token_blacklist.is_revoked(payload["jti"]):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Token has been logged out")
    return payload


def get_current_user(claims: dict = Depends(get_token_claims), db: Session = Depends(get_db)) -> User:
    try:
        user_id = int(claims["sub"])
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="User not found")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account disabled")
    return user


def require_admin(current_user: User = Depends(get_current_user)) -> User:
    if not current_user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return current_user


def _issue_tokens(user: User) -> TokenPair:
    return TokenPair(
        access_token=jwt_utils.create_access_token(str(user.id), role=user.role),
        refresh_token=jwt_utils.create_refresh_token(str(user.id)),
    )


@router.post("/register", response_model=UserOut, status_code=201)
def register(data: RegisterRequest, db: Session = Depends(get_db)):
    existing = db.query(User).filter(User.email == data.email.lower()).one_or_none()
    if existing:
        raise HTTPException(status_code=400, detail="Email already registered")
    user = User(
        first_name=data.first_name.strip(),
        last_name=data.last_name.strip(),
        email=data.email.lower(),
        password_hash=hash_password(data.password),
        role="customer",
        is_active=True,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    log.info("user_registered", user_id=user.id)
    return user


@router.post("/login", response_model=TokenPair)
def login(data: LoginRequest, db: Session = Depends(get_db)):
    user = db.query(User).filter(User.email == data.email.lower()).one_or_none()
    if not user or not verify_password(data.password, user.password_hash):
        raise HTTPException(status_code=400, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=403, detail="Account disabled")
    return _issue_tokens(user)


@router.post("/refresh-token", response_model=TokenPair)
def refresh_token(data: RefreshTokenRequest, db: Session = Depends(get_db)):
    try:
        payload = jwt_utils.decode_refresh(data.refresh_token)
    except jwt.PyJWTError:
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    if token_blacklist.is_revoked(payload["jti"]):
        raise HTTPException(status_code=401, detail="Invalid refresh token")
    user = db.get(User, int(payload["sub"]))
    if not user or not user.is_active:
        raise HTTPException(status_code=404, detail="User not found")
    # Refresh tokens are single use
    token_blacklist.revoke(payload["jti"], payload["exp"])
    return _issue_tokens(user)


@router.post("/logout")
def logout(claims: dict = Depends(get_token_claims)):
    token_blacklist.revoke(claims["jti"], claims["exp"])
    log.info("user_logged_out", user_id=claims["sub"])
    return {"detail": "Logged out"}


@router.get("/me", response_model=UserOut)
def me(current_user: User = Depends(get_current_user)):
    return current_user
