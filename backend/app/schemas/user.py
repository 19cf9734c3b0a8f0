from datetime import datetime

from pydantic import BaseModel


class UserRead(BaseModel):
    id: int
    username: str
    email: str
    role: str
    role_display_name: str = ""
    is_active: bool = True
    last_login: datetime | None = None
    permissions: dict[str, list[str]] = {}


class UserCreate(BaseModel):
    username: str
    email: str
    password: str
    role: str = "user"


class UserUpdate(BaseModel):
    username: str | None = None
    email: str | None = None
    role: str | None = None
    is_active: bool | None = None


class UserPasswordUpdate(BaseModel):
    new_password: str
    current_password: str = ""
