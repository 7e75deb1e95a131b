from datetime import timedelta

import pytest

import auth
from conftest import login_as, make_user
from errors import LastAdminProtected, NotFound
from schemas import UserRole


def test_session_round_trip():
    token = auth.issue_session("65a1b2c3d4e5f6a7b8c9d0e1", "a@example.com", UserRole.admin)
    payload = auth.decode_session(token)
    assert payload["sub"] == "65a1b2c3d4e5f6a7b8c9d0e1"
    assert payload["role"] == "ADMIN"


@pytest.mark.parametrize("token", [None, "", "garbage", "a.b.c"])
def test_bad_tokens_decode_to_none(token):
    assert auth.decode_session(token) is None


def test_expired_and_tampered_tokens(monkeypatch):
    expired = auth.issue_session("x", "a@example.com", "USER", expires_delta=timedelta(seconds=-1))
    assert auth.decode_session(expired) is None

    token = auth.issue_session("x", "a@example.com", "USER")
    monkeypatch.setattr(auth, "JWT_SECRET", "another-secret")
    assert auth.decode_session(token) is None


def test_register_login_and_me(client, db):
    res = client.post("/api/auth/register", json={"email": "Nuevo@Example.com", "password": "secreto1", "name": "Nuevo"})
    assert res.status_code == 200
    assert res.json()["user"]["email"] == "nuevo@example.com"
    assert res.json()["user"]["role"] == "USER"
    assert auth.SESSION_COOKIE in res.cookies

    client.cookies.clear()
    res = client.post("/api/auth/login", json={"email": "nuevo@example.com", "password": "wrong-pass"})
    assert res.status_code == 401

    res = client.post("/api/auth/login", json={"email": "NUEVO@example.com", "password": "secreto1"})
    assert res.status_code == 200
    assert db["auditlog"].find_one({"action": "LOGIN"})["details"] == {"email": "nuevo@example.com"}

    res = client.get("/api/auth/me")
    assert res.status_code == 200
    assert res.json()["user"]["name"] == "Nuevo"

    client.post("/api/auth/logout")
    client.cookies.clear()
    assert client.get("/api/auth/me").status_code == 401


def test_register_duplicate_email(client, db):
    make_user(db, email="dup@example.com")
    res = client.post("/api/auth/register", json={"email": "dup@example.com", "password": "secreto1"})
    assert res.status_code == 409


def test_admin_routes_reject_missing_or_customer_session(client, db):
    assert client.get("/api/admin/summary").status_code == 401
    login_as(client, make_user(db))
    res = client.get("/api/admin/summary")
    assert res.status_code == 401
    assert res.json()["code"] == "UNAUTHORIZED"


def test_session_for_deleted_user_is_anonymous(client, db):
    user = make_user(db)
    login_as(client, user)
    db["user"].delete_one({"_id": user["_id"]})
    assert client.get("/api/auth/me").status_code == 401


def test_last_admin_cannot_be_demoted(db, admin):
    result = auth.check_role_change(db, admin, UserRole.user)
    assert result is auth.RoleChangeResult.rejected_last_admin
    with pytest.raises(LastAdminProtected):
        auth.change_user(db, str(admin["_id"]), role=UserRole.user)
    assert db["user"].find_one({"_id": admin["_id"]})["role"] == "ADMIN"


def test_demotions_stop_at_one_admin(db):
    admins = [make_user(db, email=f"admin{i}@example.com", role="ADMIN") for i in range(4)]
    for other in admins[:-1]:
        assert auth.change_user(db, str(other["_id"]), role=UserRole.user)["role"] == "USER"
    with pytest.raises(LastAdminProtected):
        auth.change_user(db, str(admins[-1]["_id"]), role=UserRole.user)
    assert db["user"].count_documents({"role": "ADMIN"}) == 1


def test_role_change_to_same_or_higher_role_is_applied(db, admin):
    assert auth.check_role_change(db, admin, UserRole.admin) is auth.RoleChangeResult.applied
    customer = make_user(db)
    assert auth.check_role_change(db, customer, UserRole.admin) is auth.RoleChangeResult.applied


def test_change_unknown_user(db):
    with pytest.raises(NotFound):
        auth.change_user(db, "nope", name="X")


def test_admin_user_endpoint(admin_client, db, admin):
    customer = make_user(db)

    res = admin_client.patch(f"/api/admin/users/{admin['_id']}", json={"role": "USER"})
    assert res.status_code == 400
    assert res.json()["code"] == "LAST_ADMIN_PROTECTED"

    res = admin_client.patch(f"/api/admin/users/{customer['_id']}", json={"role": "ADMIN", "name": "Cliente"})
    assert res.status_code == 200
    assert res.json()["role"] == "ADMIN"
    assert db["auditlog"].find_one({"action": "USER_UPDATE"})["details"] == {"role": "ADMIN", "name": "Cliente"}

    assert admin_client.patch(f"/api/admin/users/{customer['_id']}", json={}).status_code == 400


def test_admin_lists_users_with_order_counts(admin_client, db):
    customer = make_user(db)
    db["order"].insert_one({"user_id": str(customer["_id"]), "status": "PENDING", "total": 1})
    users = admin_client.get("/api/admin/users").json()
    by_email = {u["email"]: u for u in users}
    assert by_email["cliente@example.com"]["orders_count"] == 1
    assert by_email["admin@goldlegacy.com"]["orders_count"] == 0
    assert "password_hash" not in by_email["cliente@example.com"]


def test_google_login_not_configured(client, monkeypatch):
    monkeypatch.setattr(auth, "GOOGLE_CLIENT_ID", None)
    res = client.get("/api/auth/google", follow_redirects=False)
    assert res.status_code == 302
    assert res.headers["location"] == "/iniciar-sesion?error=google_not_configured"


def test_google_login_sets_state(client, monkeypatch):
    monkeypatch.setattr(auth, "GOOGLE_CLIENT_ID", "cid")
    monkeypatch.setattr(auth, "GOOGLE_CLIENT_SECRET", "secret")
    res = client.get("/api/auth/google", follow_redirects=False)
    assert res.headers["location"].startswith(auth.GOOGLE_AUTH_URL)
    assert auth.GOOGLE_STATE_COOKIE in res.cookies


def test_google_callback_rejects_state_mismatch(client, monkeypatch):
    monkeypatch.setattr(auth, "GOOGLE_CLIENT_ID", "cid")
    monkeypatch.setattr(auth, "GOOGLE_CLIENT_SECRET", "secret")
    client.cookies.set(auth.GOOGLE_STATE_COOKIE, "expected")
    res = client.get("/api/auth/google/callback?code=abc&state=other", follow_redirects=False)
    assert res.headers["location"] == "/iniciar-sesion?error=invalid_state"


def test_google_callback_creates_user(client, db, monkeypatch):
    monkeypatch.setattr(auth, "GOOGLE_CLIENT_ID", "cid")
    monkeypatch.setattr(auth, "GOOGLE_CLIENT_SECRET", "secret")
    monkeypatch.setattr(auth, "fetch_google_profile", lambda code, uri: {"email": "G@Example.com", "name": "Gina"})
    client.cookies.set(auth.GOOGLE_STATE_COOKIE, "s1")

    res = client.get("/api/auth/google/callback?code=abc&state=s1", follow_redirects=False)

    assert res.headers["location"] == "/"
    assert auth.SESSION_COOKIE in res.cookies
    user = db["user"].find_one({"email": "g@example.com"})
    assert user["name"] == "Gina"
    assert user["role"] == "USER"


def test_google_profile_without_email(db):
    with pytest.raises(auth.OAuthError) as exc:
        auth.login_with_google(db, {"name": "Sin Email"})
    assert exc.value.reason == "no_email"
