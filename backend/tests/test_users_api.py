import pytest

from conftest import PASSWORD, auth_headers
from tourbook.db.models import UserRole


@pytest.fixture
async def admin(make_user):
    return await make_user(email="admin@example.com", role=UserRole.ADMIN, name="Ada Admin")


async def test_get_me_hides_private_fields(client, make_user):
    user = await make_user()

    response = await client.get("/api/v1/users/me", headers=auth_headers(user))

    doc = response.json()["data"]["doc"]
    assert doc["name"] == "Jonas Test"
    for private in ("password_hash", "password_reset_token", "password_reset_expires", "active", "version"):
        assert private not in doc


async def test_update_me(client, make_user):
    user = await make_user()

    response = await client.patch(
        "/api/v1/users/updateMe",
        json={"name": "Jonas New", "email": "NEW@example.com", "role": "admin"},
        headers=auth_headers(user),
    )

    doc = response.json()["data"]["user"]
    assert response.status_code == 200
    assert doc["name"] == "Jonas New"
    assert doc["email"] == "new@example.com"
    assert doc["role"] == "user"


async def test_update_me_rejects_password(client, make_user):
    user = await make_user()

    response = await client.patch(
        "/api/v1/users/updateMe",
        json={"password": "newpass123", "password_confirm": "newpass123"},
        headers=auth_headers(user),
    )

    assert response.status_code == 400
    assert response.json()["message"] == "This route is not for password updates. Please use /updateMyPassword."


async def test_delete_me_deactivates(client, make_user, admin):
    user = await make_user()

    deleted = await client.delete("/api/v1/users/deleteMe", headers=auth_headers(user))
    login = await client.post("/api/v1/users/login", json={"email": user.email, "password": PASSWORD})
    listing = await client.get("/api/v1/users", headers=auth_headers(admin))

    assert deleted.status_code == 204
    assert login.status_code == 401
    assert [doc["email"] for doc in listing.json()["data"]["doc"]] == ["admin@example.com"]


async def test_admin_routes_require_admin(client, make_user):
    user = await make_user()

    response = await client.get("/api/v1/users", headers=auth_headers(user))

    assert response.status_code == 403


async def test_admin_manages_users(client, make_user, admin):
    user = await make_user()

    fetched = await client.get(f"/api/v1/users/{user.id}", headers=auth_headers(admin))
    promoted = await client.patch(f"/api/v1/users/{user.id}", json={"role": "guide"}, headers=auth_headers(admin))
    bad_role = await client.patch(f"/api/v1/users/{user.id}", json={"role": "king"}, headers=auth_headers(admin))
    removed = await client.delete(f"/api/v1/users/{user.id}", headers=auth_headers(admin))
    gone = await client.get(f"/api/v1/users/{user.id}", headers=auth_headers(admin))

    assert fetched.json()["data"]["doc"]["email"] == user.email
    assert promoted.json()["data"]["doc"]["role"] == "guide"
    assert bad_role.status_code == 400
    assert removed.status_code == 204
    assert gone.status_code == 404


async def test_filter_users_by_role(client, make_user, admin):
    await make_user()
    await make_user(email="lead@example.com", role=UserRole.LEAD_GUIDE)

    response = await client.get("/api/v1/users?role=lead-guide", headers=auth_headers(admin))

    assert [doc["email"] for doc in response.json()["data"]["doc"]] == ["lead@example.com"]


async def test_users_cannot_filter_on_hidden_fields(client, admin):
    response = await client.get("/api/v1/users?password_hash=x", headers=auth_headers(admin))

    assert response.status_code == 400


async def test_update_me_with_taken_email(client, make_user):
    await make_user(email="taken@example.com")
    user = await make_user(email="mine@example.com")

    response = await client.patch(
        "/api/v1/users/updateMe", json={"email": "taken@example.com"}, headers=auth_headers(user)
    )
    me = await client.get("/api/v1/users/me", headers=auth_headers(user))

    assert response.status_code == 400
    assert response.json()["message"] == "Duplicate field value. Please use another value!"
    assert me.json()["data"]["doc"]["email"] == "mine@example.com"


async def test_admin_update_with_taken_email(client, make_user, admin):
    user = await make_user()

    response = await client.patch(
        f"/api/v1/users/{user.id}", json={"email": "admin@example.com"}, headers=auth_headers(admin)
    )

    assert response.status_code == 400
    assert response.json()["status"] == "fail"
