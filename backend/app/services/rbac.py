"""Role-based authorization.

The matrix below is the only source of truth for what a role may do. The API
dependencies in ``app.api.deps`` enforce it on every request and ``/auth/me``
hands the same map to clients so they can hide what the caller cannot use.
"""

from __future__ import annotations

from typing import Protocol


ADMIN = "admin"
MANAGER = "manager"
USER = "user"

ROLES: tuple[str, ...] = (ADMIN, MANAGER, USER)

CRUD = ["read", "create", "update", "delete"]

ROLE_PERMISSIONS: dict[str, dict[str, list[str]]] = {
    ADMIN: {
        "dashboard": ["read"],
        "inventory": CRUD,
        "products": CRUD,
        "categories": CRUD,
        "warehouses": CRUD,
        "transactions": CRUD,
        "users": CRUD,
        "reports": ["read", "export"],
        "settings": ["read", "update"],
        "alerts": CRUD,
    },
    MANAGER: {
        "dashboard": ["read"],
        "inventory": ["read", "create", "update"],
        "products": ["read", "create", "update"],
        "categories": ["read", "create", "update"],
        "warehouses": ["read", "create", "update"],
        "transactions": ["read", "create", "update"],
        "users": ["read"],
        "reports": ["read", "export"],
        "settings": ["read"],
        "alerts": ["read", "update"],
    },
    USER: {
        "dashboard": ["read"],
        "inventory": ["read"],
        "products": ["read"],
        "categories": ["read"],
        "warehouses": ["read"],
        "transactions": ["read"],
        "reports": ["read"],
        "alerts": ["read"],
    },
}

ROLE_LEVELS: dict[str, int] = {ADMIN: 3, MANAGER: 2, USER: 1}

ROLE_DISPLAY_NAMES: dict[str, str] = {ADMIN: "Administrator", MANAGER: "Manager", USER: "User"}


class HasRole(Protocol):
    role: str


def is_valid_role(role: str) -> bool:
    return role in ROLE_PERMISSIONS


def permissions_for(role: str) -> dict[str, list[str]]:
    return {resource: list(actions) for resource, actions in ROLE_PERMISSIONS.get(role, {}).items()}


def flatten_permissions(role: str) -> list[str]:
    return sorted(f"{resource}:{action}" for resource, actions in ROLE_PERMISSIONS.get(role, {}).items() for action in actions)


def has_permission(user: HasRole | None, resource: str, action: str) -> bool:
    if user is None:
        return False
    return action in ROLE_PERMISSIONS.get(user.role, {}).get(resource, [])


def has_any_permission(user: HasRole | None, resource: str) -> bool:
    if user is None:
        return False
    return resource in ROLE_PERMISSIONS.get(user.role, {})


def has_role(user: HasRole | None, role: str) -> bool:
    return user is not None and user.role == role


def has_any_role(user: HasRole | None, roles: list[str] | tuple[str, ...]) -> bool:
    return user is not None and user.role in roles


def get_role_level(role: str) -> int:
    return ROLE_LEVELS.get(role, 0)


def has_minimum_role(user: HasRole | None, minimum_role: str) -> bool:
    if user is None:
        return False
    return get_role_level(user.role) >= get_role_level(minimum_role)


def role_display_name(role: str) -> str:
    return ROLE_DISPLAY_NAMES.get(role, role)
