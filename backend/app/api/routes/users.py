from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from app.api.deps import ensure_owner_or_admin, get_current_user, log_action, require_minimum_role
from app.api.pagination import PageParams, paginate
from app.api.routes.auth import ensure_strong_password
from app.core.security import hash_password, verify_password
from app.db.session import get_db
from app.models.user import User
from app.schemas.user import UserCreate, UserPasswordUpdate, UserUpdate
from app.services.rbac import ADMIN, ROLES, is_valid_role, role_display_name


router = APIRouter()


def serialize_user(user: User) -> dict:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "role": user.role,
        "role_display_name": role_display_name(user.role),
        "is_active": user.is_active,
        "last_login": user.last_login.isoformat() if user.last_login else None,
        "created_at": user.created_at.isoformat(),
        "updated_at": user.updated_at.isoformat(),
    }


def get_user_or_404(db: Session, user_id: int) -> User:
    user = db.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


def ensure_unique_identity(db: Session, username: str | None, email: str | None, exclude_id: int | None = None) -> None:
    conditions = []
    if username:
        conditions.append(User.username == username)
    if email:
        conditions.append(User.email == email)
    if not conditions:
        return
    statement = select(User.id).where(or_(*conditions))
    if exclude_id is not None:
        statement = statement.where(User.id != exclude_id)
    if db.scalar(statement):
        raise HTTPException(status_code=409, detail="Username or email already exists")


@router.post("", status_code=status.HTTP_201_CREATED)
def create_user(
    payload: UserCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_minimum_role(ADMIN)),
) -> dict:
    if not is_valid_role(payload.role):
        raise HTTPException(status_code=400, detail=f"Invalid role. Must be one of: {', '.join(ROLES)}")
    username = payload.username.strip()
    email = payload.email.strip().lower()
    ensure_strong_password(payload.password)
    ensure_unique_identity(db, username, email)

    user = User(username=username, email=email, hashed_password=hash_password(payload.password), role=payload.role)
    db.add(user)
    db.commit()
    db.refresh(user)

    log_action(db, current_user.id, "create", "users", record_id=user.id, detail=f"User {user.username}")
    return serialize_user(user)


@router.get("")
def list_users(
    search: str = "",
    role: str | None = None,
    is_active: bool | None = None,
    params: PageParams = Depends(),
    db: Session = Depends(get_db),
    _: User = Depends(require_minimum_role(ADMIN)),
) -> dict:
    statement = select(User).order_by(User.created_at.desc(), User.id.desc())
    if search:
        pattern = f"%{search.strip()}%"
        statement = statement.where(or_(User.username.ilike(pattern), User.email.ilike(pattern)))
    if role:
        statement = statement.where(User.role == role)
    if is_active is not None:
        statement = statement.where(User.is_active.is_(is_active))

    rows, pagination = paginate(db, statement, params)
    return {"data": [serialize_user(user) for (user,) in rows], "pagination": pagination}


@router.get("/stats")
def user_stats(
    db: Session = Depends(get_db),
    _: User = Depends(require_minimum_role(ADMIN)),
) -> dict:
    total = db.scalar(select(func.count(User.id))) or 0
    active = db.scalar(select(func.count(User.id)).where(User.is_active.is_(True))) or 0
    by_role = dict(db.execute(select(User.role, func.count(User.id)).group_by(User.role)).all())
    return {
        "total_users": total,
        "active_users": active,
        "inactive_users": total - active,
        "by_role": {role: by_role.get(role, 0) for role in ROLES},
    }


@router.get("/role/{role}")
def users_by_role(
    role: str,
    db: Session = Depends(get_db),
    _: User = Depends(require_minimum_role(ADMIN)),
) -> list[dict]:
    if not is_valid_role(role):
        raise HTTPException(status_code=400, detail=f"Invalid role. Must be one of: {', '.join(ROLES)}")
    rows = db.scalars(
        select(User).where(User.role == role).where(User.is_active.is_(True)).order_by(User.username.asc())
    ).all()
    return [serialize_user(user) for user in rows]


@router.get("/{user_id}")
def get_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    ensure_owner_or_admin(current_user, user_id)
    return serialize_user(get_user_or_404(db, user_id))


@router.put("/{user_id}")
def update_user(
    user_id: int,
    payload: UserUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    ensure_owner_or_admin(current_user, user_id)
    user = get_user_or_404(db, user_id)
    changes = payload.model_dump(exclude_unset=True)

    if current_user.role != ADMIN and ("role" in changes or "is_active" in changes):
        raise HTTPException(status_code=403, detail="Only administrators can change role or status")
    if "role" in changes and not is_valid_role(changes["role"]):
        raise HTTPException(status_code=400, detail=f"Invalid role. Must be one of: {', '.join(ROLES)}")
    if user.id == current_user.id and changes.get("is_active") is False:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")

    if changes.get("username"):
        changes["username"] = changes["username"].strip()
    if changes.get("email"):
        changes["email"] = changes["email"].strip().lower()
    ensure_unique_identity(db, changes.get("username"), changes.get("email"), exclude_id=user.id)

    revoke = ("role" in changes and changes["role"] != user.role) or changes.get("is_active") is False
    for field, value in changes.items():
        if value is not None:
            setattr(user, field, value)
    if revoke:
        user.token_version += 1
    db.commit()
    db.refresh(user)

    log_action(db, current_user.id, "update", "users", record_id=user.id, detail=f"User {user.username}")
    return serialize_user(user)


@router.put("/{user_id}/password")
def update_password(
    user_id: int,
    payload: UserPasswordUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
) -> dict:
    ensure_owner_or_admin(current_user, user_id)
    user = get_user_or_404(db, user_id)

    # administrators may reset someone else's password without knowing it
    if current_user.role != ADMIN or current_user.id == user.id:
        if not verify_password(payload.current_password, user.hashed_password):
            raise HTTPException(status_code=400, detail="Current password is incorrect")
    ensure_strong_password(payload.new_password)

    user.hashed_password = hash_password(payload.new_password)
    user.token_version += 1
    db.commit()

    log_action(db, current_user.id, "change_password", "users", record_id=user.id)
    return {"message": "Password updated"}


@router.delete("/{user_id}")
def deactivate_user(
    user_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_minimum_role(ADMIN)),
) -> dict:
    user = get_user_or_404(db, user_id)
    if user.id == current_user.id:
        raise HTTPException(status_code=400, detail="You cannot deactivate your own account")

    user.is_active = False
    user.token_version += 1
    db.commit()

    log_action(db, current_user.id, "delete", "users", record_id=user.id, detail=f"User {user.username}")
    return {"message": "User deactivated"}
