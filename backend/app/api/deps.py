from collections.abc import Callable

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.orm import Session

from app.core.config import get_settings
from app.core.security import ACCESS_TOKEN, decode_token
from app.db.session import get_db
from app.models.audit import AuditLog
from app.models.user import User
from app.services.rbac import ADMIN, has_minimum_role, has_permission


settings = get_settings()
oauth2_scheme = OAuth2PasswordBearer(tokenUrl=f"{settings.api_v1_prefix}/auth/login")


def resolve_user_from_claims(db: Session, claims: dict | None) -> User:
    if not claims:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")

    try:
        user_id = int(claims.get("sub", 0))
    except (TypeError, ValueError):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid or expired token")
    token_version = int(claims.get("ver", 0))

    user = db.get(User, user_id)
    if not user or not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account is inactive")
    if user.token_version != token_version:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Session expired")
    return user


def get_current_user(db: Session = Depends(get_db), token: str = Depends(oauth2_scheme)) -> User:
    return resolve_user_from_claims(db, decode_token(token, ACCESS_TOKEN))


def require_permission(resource: str, action: str) -> Callable:
    def checker(current_user: User = Depends(get_current_user)) -> User:
        if not has_permission(current_user, resource, action):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return current_user

    return checker


def require_minimum_role(minimum_role: str) -> Callable:
    def checker(current_user: User = Depends(get_current_user)) -> User:
        if not has_minimum_role(current_user, minimum_role):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return current_user

    return checker


def ensure_owner_or_admin(current_user: User, user_id: int) -> None:
    if current_user.id != user_id and current_user.role != ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied: you can only access your own resources",
        )


def log_action(
    db: Session,
    user_id: int | None,
    action: str,
    resource: str,
    record_id: int | None = None,
    detail: str = "",
) -> None:
    db.add(AuditLog(user_id=user_id, action=action, resource=resource, record_id=record_id, detail=detail[:255]))
    db.commit()
