import pytest

from tabletop.permissions import UserRole, VIEW_ROLES, can_access, can_access_view, home_path


@pytest.mark.parametrize("required", [
    UserRole.OWNER,
    UserRole.KITCHEN,
    "BARTENDER",
    [UserRole.WAITSTAFF, UserRole.BARTENDER],
    [],
    "NOT_A_ROLE",
])
def test_owner_passes_every_check(required):
    assert can_access("OWNER", required)


def test_staff_roles_need_a_match():
    assert can_access("KITCHEN", "KITCHEN")
    assert not can_access("KITCHEN", "BARTENDER")
    assert can_access(UserRole.WAITSTAFF, [UserRole.KITCHEN, UserRole.WAITSTAFF])
    assert not can_access(UserRole.BARTENDER, [UserRole.KITCHEN, UserRole.WAITSTAFF])
    assert not can_access("KITCHEN", "OWNER")


def test_unknown_role_never_passes():
    assert not can_access("ADMIN", "KITCHEN")
    assert not can_access("", UserRole.OWNER)


@pytest.mark.parametrize("view", sorted(VIEW_ROLES))
def test_views(view):
    assert can_access_view("OWNER", view)
    expected = {
        "kitchen": UserRole.KITCHEN,
        "bar": UserRole.BARTENDER,
        "wait": UserRole.WAITSTAFF,
    }.get(view)
    for role in (UserRole.KITCHEN, UserRole.BARTENDER, UserRole.WAITSTAFF):
        assert can_access_view(role, view) == (role == expected)


def test_unknown_view_is_owner_only():
    assert can_access_view("OWNER", "secret")
    assert not can_access_view("KITCHEN", "secret")


def test_home_paths():
    assert home_path("OWNER") == "/dashboard"
    assert home_path(UserRole.KITCHEN) == "/kitchen"
    assert home_path("WAITSTAFF") == "/wait"
    assert home_path("BARTENDER") == "/bar"
    assert home_path(None) == "/login"
    assert home_path("ADMIN") == "/login"


def test_gate_rejects_with_login_redirect(client, api, owner):
    kitchen = api.add_staff(owner, "cook@cafe.test", "KITCHEN")

    for path in ("/analytics", "/staff", "/tables", "/menu-items", "/bar/orders", "/wait/orders"):
        response = client.get(path, headers=kitchen)
        assert response.status_code == 403, path
        assert response.json()["detail"] == {"message": "Not authorized", "redirect": "/login"}

    assert client.get("/kitchen/orders", headers=kitchen).status_code == 200


def test_owner_can_open_every_staff_view(client, owner):
    for path in ("/kitchen/orders", "/bar/orders", "/wait/orders", "/analytics", "/staff", "/tables"):
        assert client.get(path, headers=owner.headers).status_code == 200, path


def test_unauthenticated_requests_are_rejected(client):
    assert client.get("/kitchen/orders").status_code == 401
    assert client.get("/kitchen/orders", headers={"Authorization": "Bearer garbage"}).status_code == 401


def test_login_returns_home_path(client, owner):
    response = client.post("/token", data={"username": "owner@cafe.test", "password": "secret123"})
    assert response.json()["redirect"] == "/dashboard"
    assert response.json()["role"] == "OWNER"

    me = client.get("/users/me", headers=owner.headers).json()
    assert me["home"] == "/dashboard"
    assert me["restaurant"]["slug"] == "cafe-test"
