"""Accounts, login and role management."""

import pytest

from errors import InvalidInput, PermissionDenied
from extensions import db
from models import User
from modules.users.accounts import authenticate, change_role, create_user


def _authenticate(client, user_id: int) -> None:
    with client.session_transaction() as session:
        session["_user_id"] = str(user_id)
        session["_fresh"] = True


def test_create_user_normalizes_email(ctx):
    user = create_user("Grace", "  Grace@Lab.TEST ", "pw")
    assert user.email == "grace@lab.test"
    assert user.role == "member"
    assert authenticate("GRACE@lab.test", "pw") == user
    assert authenticate("grace@lab.test", "wrong") is None


def test_create_user_rejects_duplicates_and_bad_roles(ctx):
    create_user("Grace", "grace@lab.test", "pw")
    with pytest.raises(InvalidInput):
        create_user("Grace 2", "grace@lab.test", "pw")
    with pytest.raises(InvalidInput):
        create_user("Root", "root@lab.test", "pw", role="root")


def test_admin_promotes_member(admin, member):
    change_role(admin, member, "admin")
    assert db.session.get(User, member.id).role == "admin"


def test_members_cannot_change_roles(admin, member):
    with pytest.raises(PermissionDenied):
        change_role(member, admin, "member")


def test_admin_cannot_demote_another_admin(admin, member):
    change_role(admin, member, "admin")
    with pytest.raises(PermissionDenied):
        change_role(member, admin, "member")


def test_last_admin_cannot_step_down(admin):
    with pytest.raises(InvalidInput, match="At least one administrator"):
        change_role(admin, admin, "member")
    assert admin.role == "admin"


def test_admin_steps_down_when_another_remains(admin, member):
    change_role(admin, member, "admin")
    change_role(admin, admin, "member")
    assert db.session.get(User, admin.id).role == "member"


def test_confirm_name_must_match(admin, member):
    with pytest.raises(InvalidInput):
        change_role(admin, member, "admin", confirm_name="Someone Else")
    change_role(admin, member, "admin", confirm_name="Max Member")
    assert member.role == "admin"


def test_login_and_me(client, member_id):
    response = client.post("/users/login", json={"email": "member@lab.test", "password": "secret"})
    assert response.status_code == 200
    assert response.get_json()["user"]["role"] == "member"

    assert client.get("/users/me").get_json()["user"]["id"] == member_id

    client.post("/users/logout")
    assert client.get("/users/me").status_code == 401


def test_login_failure(client, member_id):
    response = client.post("/users/login", json={"email": "member@lab.test", "password": "nope"})
    assert response.status_code == 401
    assert response.get_json()["error_kind"] == "InvalidCredentials"


def test_user_admin_routes(client, admin_id, member_id):
    _authenticate(client, member_id)
    assert client.get("/users/").status_code == 403

    _authenticate(client, admin_id)
    assert client.get("/users/").get_json()["count"] == 2

    response = client.post("/users/add", json={"name": "Lin", "email": "lin@lab.test", "password": "pw"})
    assert response.status_code == 201

    response = client.post(f"/users/{member_id}/role", json={"role": "admin", "confirm_name": "Max Member"})
    assert response.get_json()["user"]["role"] == "admin"

    _authenticate(client, member_id)
    response = client.post(f"/users/{admin_id}/role", json={"role": "member"})
    assert response.status_code == 403
    assert response.get_json()["error_kind"] == "PermissionDenied"
