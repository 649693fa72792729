"""Auth endpoints."""
import logging

import redis
from redis.exceptions import RedisError
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.orm import Session

from ..auth import create_access_token, get_current_user, verify_password
from ..config import settings
from ..database import get_db
from ..models import User
from ..schemas import LoginRequest, TokenResponse, UserResponse

router = APIRouter(prefix="/auth", tags=["auth"])
logger = logging.getLogger(__name__)


class LoginThrottle:
    """Per-IP rate limit and per-account lockout kept in Redis (fail-open)."""

    def __init__(self, client):
        self.client = client

    def _incr_with_ttl(self, key: str, ttl_seconds: int) -> tuple[int, int]:
        value = self.client.incr(key)
        if value == 1:
            self.client.expire(key, ttl_seconds)
        ttl = self.client.ttl(key)
        if ttl is None or ttl < 0:
            ttl = ttl_seconds
        return int(value), int(ttl)

    def check(self, *, ip: str, email: str | None) -> None:
        try:
            attempts, ttl = self._incr_with_ttl(f"auth:rl:login:ip:{ip}", 60)
            if attempts > settings.AUTH_LOGIN_IP_LIMIT_PER_MINUTE:
                raise HTTPException(
                    status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                    detail="Too many login attempts. Try again later.",
                    headers={"Retry-After": str(ttl)},
                )
            if email:
                lock_ttl = self.client.ttl(f"auth:lock:login:user:{email}")
                if lock_ttl and lock_ttl > 0:
                    raise HTTPException(
                        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                        detail="Account temporarily locked due to failed logins. Try again later.",
                        headers={"Retry-After": str(int(lock_ttl))},
                    )
        except RedisError:
            # Fail open if Redis is down to avoid total auth outage.
            logger.exception("Redis error during login rate limiting (fail-open)")

    def register_failure(self, *, email: str) -> None:
        try:
            fails, _ = self._incr_with_ttl(f"auth:fail:login:user:{email}", settings.AUTH_LOGIN_USER_LOCK_SECONDS)
            if fails >= settings.AUTH_LOGIN_USER_FAIL_THRESHOLD:
                self.client.set(f"auth:lock:login:user:{email}", "1", ex=settings.AUTH_LOGIN_USER_LOCK_SECONDS)
        except RedisError:
            logger.exception("Redis error during login failure tracking (fail-open)")

    def clear(self, *, email: str) -> None:
        try:
            self.client.delete(f"auth:fail:login:user:{email}", f"auth:lock:login:user:{email}")
        except RedisError:
            logger.exception("Redis error during login failure cleanup (ignored)")


_throttle: LoginThrottle | None = None


def get_login_throttle() -> LoginThrottle:
    global _throttle
    if _throttle is None:
        _throttle = LoginThrottle(redis.from_url(settings.REDIS_URL, decode_responses=True))
    return _throttle


@router.post("/login", response_model=TokenResponse)
def login(
    payload: LoginRequest,
    request: Request,
    throttle: LoginThrottle = Depends(get_login_throttle),
    db: Session = Depends(get_db),
):
    """Login with email and password."""
    email = (payload.email or "").strip().lower()
    ip = request.client.host if request.client else "unknown"
    throttle.check(ip=ip, email=email or None)

    user = db.query(User).filter(User.email == email, User.is_active == True).first()  # noqa: E712
    if not user or not verify_password(payload.password, user.password_hash):
        if email:
            throttle.register_failure(email=email)
        logger.info("Failed login for %s from %s", email or "<empty>", ip)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Incorrect email or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    throttle.clear(email=email)
    token = create_access_token({"sub": str(user.id), "role": user.role})
    return TokenResponse(
        access_token=token,
        expires_in=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        user=UserResponse.model_validate(user),
    )


@router.get("/me", response_model=UserResponse)
def get_me(current_user: User = Depends(get_current_user)):
    return current_user
