import re
from datetime import datetime, timedelta, timezone
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext

from app.core.config import get_settings


pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

ACCESS_TOKEN = "access"
REFRESH_TOKEN = "refresh"


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def _create_token(
    subject: str,
    token_type: str,
    expire_minutes: int,
    role: str = "",
    token_version: int = 0,
) -> str:
    settings = get_settings()
    expire = datetime.now(timezone.utc) + timedelta(minutes=expire_minutes)
    to_encode: dict[str, Any] = {
        "sub": subject,
        "role": role,
        "ver": token_version,
        "type": token_type,
        "exp": expire,
    }
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.jwt_algorithm)


def create_access_token(subject: str, role: str = "", token_version: int = 0, expires_delta: int | None = None) -> str:
    settings = get_settings()
    expire_minutes = expires_delta if expires_delta else settings.access_token_expire_minutes
    return _create_token(subject, ACCESS_TOKEN, expire_minutes, role, token_version)


def create_refresh_token(subject: str, role: str = "", token_version: int = 0) -> str:
    settings = get_settings()
    return _create_token(subject, REFRESH_TOKEN, settings.refresh_token_expire_minutes, role, token_version)


def create_token_pair(subject: str, role: str = "", token_version: int = 0) -> dict[str, Any]:
    settings = get_settings()
    return {
        "access_token": create_access_token(subject, role, token_version),
        "refresh_token": create_refresh_token(subject, role, token_version),
        "token_type": "bearer",
        "expires_in": settings.access_token_expire_minutes * 60,
    }


def decode_token(token: str, expected_type: str = ACCESS_TOKEN) -> dict[str, Any] | None:
    settings = get_settings()
    try:
        claims = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None
    if claims.get("type") != expected_type:
        return None
    return claims


def validate_password_strength(password: str) -> list[str]:
    errors: list[str] = []
    if len(password) < 8:
        errors.append("Password must be at least 8 characters long")
    if not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if not re.search(r"\d", password):
        errors.append("Password must contain at least one number")
    if not re.search(r"[!@#$%^&*(),.?\":{}|<>]", password):
        errors.append("Password must contain at least one special character")
    return errors
