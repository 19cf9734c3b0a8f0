import logging
from datetime import datetime, timezone
from urllib.parse import parse_qs

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import ValidationError
from sqlalchemy import or_, select
from sqlalchemy.orm import Session

from app.api.deps import get_current_user, log_action, resolve_user_from_claims
from app.core.security import (
    REFRESH_TOKEN,
    create_token_pair,
    decode_token,
    hash_password,
    validate_password_strength,
    verify_password,
)
from app.db.session import get_db
from app.models.user import User
from app.schemas.auth import (
    ChangePasswordRequest,
    LoginRequest,
    MessageResponse,
    RefreshRequest,
    RegisterRequest,
    TokenResponse,
)
from app.schemas.user import UserRead
from app.services.rbac import USER, permissions_for, role_display_name


router = APIRouter()
logger = logging.getLogger(__name__)


async def parse_request_payload(request: Request) -> dict:
    content_type = (request.headers.get("content-type") or "").split(";")[0].strip().lower()

    raw = (await request.body()).decode("utf-8", errors="ignore")
    if not raw:
        return {}

    if content_type in {"application/x-www-form-urlencoded", "text/plain", ""}:
        parsed = parse_qs(raw, keep_blank_values=True)
        return {key: values[0] if values else "" for key, values in parsed.items()}

    try:
        data = await request.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def user_profile(user: User) -> UserRead:
    return UserRead(
        id=user.id,
        username=user.username,
        email=user.email,
        role=user.role,
        role_display_name=role_display_name(user.role),
        is_active=user.is_active,
        last_login=user.last_login,
        permissions=permissions_for(user.role),
    )


def ensure_strong_password(password: str) -> None:
    errors = validate_password_strength(password)
    if errors:
        raise HTTPException(status_code=400, detail="; ".join(errors))


@router.post("/login")
async def login(request: Request, db: Session = Depends(get_db)) -> dict:
    payload_data = await parse_request_payload(request)
    try:
        payload = LoginRequest(**payload_data)
    except ValidationError:
        raise HTTPException(status_code=422, detail="Username and password are required")

    identifier = payload.username.strip()
    user = db.scalar(select(User).where(or_(User.username == identifier, User.email == identifier.lower())))
    if not user or not verify_password(payload.password, user.hashed_password):
        logger.info("Failed login for %s", identifier)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Account is inactive")

    user.last_login = datetime.now(timezone.utc)
    db.commit()
    db.refresh(user)
    logger.info("User %s logged in", user.username)

    tokens = TokenResponse(**create_token_pair(str(user.id), user.role, user.token_version))
    return {**tokens.model_dump(), "user": user_profile(user).model_dump()}


@router.post("/register", status_code=status.HTTP_201_CREATED)
def register(payload: RegisterRequest, db: Session = Depends(get_db)) -> dict:
    username = payload.username.strip()
    email = payload.email.strip().lower()
    if not username or not email:
        raise HTTPException(status_code=400, detail="Username and email are required")
    ensure_strong_password(payload.password)

    existing = db.scalar(select(User).where(or_(User.username == username, User.email == email)))
    if existing:
        raise HTTPException(status_code=409, detail="Username or email already exists")

    user = User(username=username, email=email, hashed_password=hash_password(payload.password), role=USER)
    db.add(user)
    db.commit()
    db.refresh(user)

    log_action(db, user.id, "register", "users", record_id=user.id, detail=f"User {user.username}")
    tokens = TokenResponse(**create_token_pair(str(user.id), user.role, user.token_version))
    return {**tokens.model_dump(), "user": user_profile(user).model_dump()}


@router.post("/refresh", response_model=TokenResponse)
def refresh(payload: RefreshRequest, db: Session = Depends(get_db)) -> TokenResponse:
    user = resolve_user_from_claims(db, decode_token(payload.refresh_token, REFRESH_TOKEN))
    return TokenResponse(**create_token_pair(str(user.id), user.role, user.token_version))


@router.post("/logout", response_model=MessageResponse)
def logout(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)) -> MessageResponse:
    current_user.token_version += 1
    db.commit()
    logger.info("User %s logged out", current_user.username)
    return MessageResponse(message="Logged out")


@router.get("/me", response_model=UserRead)
def me(current_user: User = Depends(get_current_user)) -> UserRead:
    return user_profile(current_user)


@router.post("/change-password", response_model=MessageResponse)
def change_password(
    payload: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> MessageResponse:
    if not verify_password(payload.current_password, current_user.hashed_password):
        raise HTTPException(status_code=400, detail="Current password is incorrect")
    ensure_strong_password(payload.new_password)

    current_user.hashed_password = hash_password(payload.new_password)
    current_user.token_version += 1
    db.commit()

    log_action(db, current_user.id, "change_password", "users", record_id=current_user.id)
    return MessageResponse(message="Password updated, please log in again")
