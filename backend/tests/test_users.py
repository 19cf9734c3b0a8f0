from sqlalchemy import select

from app.models.audit import AuditLog


def test_admin_creates_and_lists_users(client, admin, headers_for, db_session):
    headers = headers_for(admin)

    created = client.post(
        "/api/v1/users",
        json={"username": "dana", "email": "dana@example.com", "password": "Str0ng!Pass", "role": "manager"},
        headers=headers,
    )
    assert created.status_code == 201
    assert created.json()["role"] == "manager"

    listing = client.get("/api/v1/users", params={"role": "manager"}, headers=headers)
    assert listing.status_code == 200
    body = listing.json()
    assert [user["username"] for user in body["data"]] == ["dana"]
    assert body["pagination"] == {
        "page": 1,
        "limit": 10,
        "total": 1,
        "total_pages": 1,
        "has_next": False,
        "has_prev": False,
    }

    audit = db_session.scalar(select(AuditLog).where(AuditLog.resource == "users"))
    assert audit.action == "create"
    assert audit.user_id == admin.id


def test_user_management_requires_admin(client, manager, headers_for):
    headers = headers_for(manager)
    assert client.get("/api/v1/users", headers=headers).status_code == 403
    assert client.get("/api/v1/users/stats", headers=headers).status_code == 403


def test_create_user_rejects_invalid_role(client, admin, headers_for):
    response = client.post(
        "/api/v1/users",
        json={"username": "x", "email": "x@example.com", "password": "Str0ng!Pass", "role": "root"},
        headers=headers_for(admin),
    )
    assert response.status_code == 400


def test_owner_can_read_self_but_not_others(client, staff, manager, headers_for):
    headers = headers_for(staff)
    assert client.get(f"/api/v1/users/{staff.id}", headers=headers).status_code == 200
    assert client.get(f"/api/v1/users/{manager.id}", headers=headers).status_code == 403


def test_non_admin_cannot_change_own_role(client, staff, headers_for):
    response = client.put(f"/api/v1/users/{staff.id}", json={"role": "admin"}, headers=headers_for(staff))
    assert response.status_code == 403


def test_owner_updates_own_email(client, staff, headers_for):
    response = client.put(
        f"/api/v1/users/{staff.id}", json={"email": "Sam.New@Example.com"}, headers=headers_for(staff)
    )
    assert response.status_code == 200
    assert response.json()["email"] == "sam.new@example.com"


def test_admin_deactivates_user(client, admin, staff, headers_for):
    staff_headers = headers_for(staff)

    response = client.delete(f"/api/v1/users/{staff.id}", headers=headers_for(admin))

    assert response.status_code == 200
    assert client.get("/api/v1/auth/me", headers=staff_headers).status_code == 401


def test_admin_cannot_deactivate_self(client, admin, headers_for):
    assert client.delete(f"/api/v1/users/{admin.id}", headers=headers_for(admin)).status_code == 400


def test_user_stats(client, admin, manager, staff, headers_for):
    response = client.get("/api/v1/users/stats", headers=headers_for(admin))

    assert response.status_code == 200
    assert response.json()["by_role"] == {"admin": 1, "manager": 1, "user": 1}
