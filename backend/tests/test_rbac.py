from types import SimpleNamespace

import pytest

from app.services import rbac


def actor(role: str) -> SimpleNamespace:
    return SimpleNamespace(role=role)


def test_user_cannot_delete_products():
    assert rbac.has_permission(actor("user"), "products", "delete") is False


def test_admin_can_delete_products():
    assert rbac.has_permission(actor("admin"), "products", "delete") is True


@pytest.mark.parametrize(
    ("role", "resource", "action", "expected"),
    [
        ("manager", "products", "update", True),
        ("manager", "products", "delete", False),
        ("manager", "users", "read", True),
        ("manager", "users", "create", False),
        ("manager", "alerts", "update", True),
        ("user", "users", "read", False),
        ("user", "reports", "export", False),
        ("admin", "reports", "export", True),
        ("admin", "settings", "update", True),
    ],
)
def test_permission_matrix(role, resource, action, expected):
    assert rbac.has_permission(actor(role), resource, action) is expected


def test_missing_user_has_no_permissions():
    assert rbac.has_permission(None, "dashboard", "read") is False
    assert rbac.has_minimum_role(None, "user") is False


def test_unknown_role_has_no_permissions():
    assert rbac.has_permission(actor("auditor"), "dashboard", "read") is False
    assert rbac.get_role_level("auditor") == 0


def test_minimum_role():
    assert rbac.has_minimum_role(actor("admin"), rbac.MANAGER) is True
    assert rbac.has_minimum_role(actor("manager"), rbac.MANAGER) is True
    assert rbac.has_minimum_role(actor("user"), rbac.MANAGER) is False


def test_role_helpers():
    assert rbac.has_role(actor("manager"), "manager") is True
    assert rbac.has_any_role(actor("user"), ["admin", "manager"]) is False
    assert rbac.has_any_permission(actor("user"), "users") is False
    assert rbac.has_any_permission(actor("manager"), "settings") is True
    assert rbac.role_display_name("admin") == "Administrator"
    assert rbac.is_valid_role("manager") and not rbac.is_valid_role("root")


def test_permissions_for_returns_copies():
    permissions = rbac.permissions_for("user")
    permissions["products"].append("delete")
    assert "delete" not in rbac.ROLE_PERMISSIONS["user"]["products"]
    assert "products:read" in rbac.flatten_permissions("user")
