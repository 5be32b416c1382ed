"""Password hashing, JWT session tokens and the authenticated-user dependencies."""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Optional

import bcrypt
import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from .config import settings
from .permissions import Capabilities, capabilities_for
from ..models.base import get_db
from ..models.user import User

logger = logging.getLogger(__name__)

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/v1/auth/login", auto_error=False)


def get_password_hash(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain_password: str, hashed_password: Optional[str]) -> bool:
    if not hashed_password:
        return False
    try:
        return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
    except ValueError:
        return False


def _encode(data: dict, expires_delta: timedelta, token_type: str) -> str:
    payload = data.copy()
    payload.update({"exp": datetime.utcnow() + expires_delta, "type": token_type})
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Access token; its ``exp`` claim is the session idle timeout."""
    return _encode(data, expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES), "access")


def create_refresh_token(data: dict) -> str:
    # jti keeps a rotated token distinct from the one it replaces
    return _encode({**data, "jti": str(uuid.uuid4())}, timedelta(days=settings.REFRESH_TOKEN_EXPIRE_DAYS), "refresh")


def create_email_verification_token(user_id: str) -> str:
    return _encode({"sub": user_id}, timedelta(hours=settings.EMAIL_VERIFICATION_EXPIRE_HOURS), "email_verification")


def create_password_reset_token(user_id: str) -> str:
    return _encode(
        {"sub": user_id, "jti": str(uuid.uuid4())},
        timedelta(minutes=settings.PASSWORD_RESET_EXPIRE_MINUTES),
        "password_reset",
    )


def decode_access_token(token: str) -> Optional[dict]:
    """Return the token payload, or None when the token is invalid or expired."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    except jwt.ExpiredSignatureError:
        logger.debug("Rejected expired token")
        return None
    except jwt.InvalidTokenError:
        return None


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def get_current_user(
    token: Optional[str] = Depends(oauth2_scheme),
    db: Session = Depends(get_db),
) -> User:
    if not token:
        raise _unauthorized("Not authenticated")
    payload = decode_access_token(token)
    if payload is None or payload.get("type") != "access":
        raise _unauthorized("Invalid or expired token")

    user = db.query(User).filter(User.id == payload.get("sub")).first()
    if not user:
        raise _unauthorized("User not found")
    if not user.is_verified:
        raise _unauthorized("Please verify your email before accessing this resource")
    if not user.is_active:
        raise _unauthorized("Your account has been deactivated")
    return user


def require_role(*roles: str):
    """Dependency factory restricting an endpoint to the given roles."""
    def _checker(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient role")
        return current_user
    return _checker


def get_capabilities(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> Capabilities:
    """Resolve the requester's capability set once per request."""
    return capabilities_for(current_user, db)
