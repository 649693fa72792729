"""Authentication and route-level permission checks."""
from datetime import timedelta
from typing import Optional
import logging
import time
from uuid import UUID
from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from .config import settings
from .database import get_db
from .models import User
from .services.permissions import PermissionCache, PermissionEngine, load_role_permissions

# Password hashing
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
logger = logging.getLogger(__name__)

# Bearer token scheme
security = HTTPBearer()

_CREDENTIALS_ERROR = "Could not validate credentials"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify password against hash."""
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except Exception:
        # Invalid/corrupted hash should not crash login flow.
        logger.exception("Password verification failed due to invalid hash format")
        return False


def get_password_hash(password: str) -> str:
    """Hash password."""
    return pwd_context.hash(password)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create JWT access token."""
    to_encode = data.copy()
    now = int(time.time())
    if expires_delta:
        exp = now + int(expires_delta.total_seconds())
    else:
        exp = now + int(settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES) * 60
    to_encode.update({"exp": exp, "iat": now, "type": "access"})
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def _unauthorized(detail: str = _CREDENTIALS_ERROR) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def decode_token(token: str) -> dict:
    """Decode JWT token (exp checked with leeway)."""
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
            options={"verify_exp": False},
        )
    except JWTError:
        raise _unauthorized()

    exp = payload.get("exp")
    try:
        exp_int = int(exp)
    except (TypeError, ValueError):
        raise _unauthorized()
    if int(time.time()) > exp_int + int(settings.JWT_LEEWAY_SECONDS):
        raise _unauthorized("Token expired")
    return payload


def _parse_token_subject(payload: dict) -> UUID:
    """Parse and validate JWT subject as UUID."""
    sub = payload.get("sub")
    if not sub:
        raise _unauthorized()
    try:
        return UUID(str(sub))
    except ValueError:
        raise _unauthorized()


def get_current_user(
    credentials: HTTPAuthorizationCredentials = Depends(security),
    db: Session = Depends(get_db)
) -> User:
    """Get current authenticated user."""
    payload = decode_token(credentials.credentials)

    if payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type"
        )

    user_id = _parse_token_subject(payload)
    user = db.query(User).filter(User.id == user_id, User.is_active == True).first()  # noqa: E712
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive"
        )
    return user


def get_permission_cache(request: Request) -> PermissionCache:
    """Process-wide cache handle kept on the application state."""
    cache = getattr(request.app.state, "permission_cache", None)
    if cache is None:
        cache = PermissionCache(ttl_seconds=settings.PERMISSION_CACHE_TTL_SECONDS)
        request.app.state.permission_cache = cache
    return cache


def get_permission_engine(
    cache: PermissionCache = Depends(get_permission_cache),
    db: Session = Depends(get_db),
) -> PermissionEngine:
    return PermissionEngine(load_values=lambda: load_role_permissions(db), cache=cache)


class PermissionChecker:
    """Route dependency: require a role-level permission."""

    def __init__(self, resource: str, action: str):
        self.resource = resource
        self.action = action

    def __call__(
        self,
        current_user: User = Depends(get_current_user),
        permissions: PermissionEngine = Depends(get_permission_engine),
    ) -> User:
        if not permissions.is_allowed(current_user.role, self.resource, self.action):
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: {self.resource}.{self.action} required"
            )
        return current_user
