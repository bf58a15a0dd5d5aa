import jwt
from fastapi.testclient import TestClient

from quizweb.config import settings
from quizweb.main import app
from quizweb.routers.auth import signin_limiter

from helpers import PASSWORD, auth_headers, make_user

client = TestClient(app)


def _signup(**overrides):
    payload = {"email": "ann@example.com", "password": PASSWORD, "role": "student", "display_name": "Ann"}
    payload.update(overrides)
    return client.post("/api/auth/signup", json=payload)


def test_signup_signin_and_me():
    r = _signup(email="  Ann@Example.com ")
    assert r.status_code == 201
    user_id = r.json()["user_id"]

    login = client.post("/api/auth/signin", json={"email": "ann@example.com", "password": PASSWORD, "role": "student"})
    assert login.status_code == 200
    body = login.json()
    assert body["user"]["email"] == "ann@example.com"
    assert "password_hash" not in body["user"]

    payload = jwt.decode(body["token"], settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    assert payload["id"] == user_id
    assert payload["role"] == "student"
    assert payload["display_name"] == "Ann"

    me = client.get("/api/auth/me", headers=auth_headers(body["token"]))
    assert me.status_code == 200
    assert me.json()["id"] == user_id
    assert client.post("/api/auth/signout", headers=auth_headers(body["token"])).status_code == 200


def test_signup_validation():
    assert _signup(email="not-an-email").status_code == 400
    assert _signup(password="12345").status_code == 400
    assert _signup(password="x" * 129).status_code == 400
    assert _signup(display_name=" A ").status_code == 400
    assert _signup(role="admin").status_code == 400
    assert _signup().status_code == 201
    dup = _signup(email="ANN@example.com")
    assert dup.status_code == 409
    assert dup.json()["error_code"] == "CONFLICT"


def test_signin_failures():
    _signup(role="teacher")
    bad = client.post("/api/auth/signin", json={"email": "ann@example.com", "password": "wrong-pass", "role": "teacher"})
    assert bad.status_code == 401
    assert bad.json()["detail"] == "Invalid email or password"
    unknown = client.post("/api/auth/signin", json={"email": "nobody@example.com", "password": PASSWORD, "role": "teacher"})
    assert unknown.status_code == 401
    wrong_portal = client.post("/api/auth/signin", json={"email": "ann@example.com", "password": PASSWORD, "role": "student"})
    assert wrong_portal.status_code == 403
    assert "teacher" in wrong_portal.json()["detail"]


def test_signin_rate_limit(monkeypatch):
    monkeypatch.setattr(signin_limiter, "max_hits", 2)
    _signup()
    creds = {"email": "ann@example.com", "password": "wrong-pass", "role": "student"}
    assert client.post("/api/auth/signin", json=creds).status_code == 401
    assert client.post("/api/auth/signin", json=creds).status_code == 401
    limited = client.post("/api/auth/signin", json=creds)
    assert limited.status_code == 429
    assert int(limited.headers["Retry-After"]) >= 1


def test_token_required_and_verified():
    assert client.get("/api/auth/me").status_code == 401
    assert client.get("/api/auth/me", headers=auth_headers("garbage")).status_code == 401
    expired = jwt.encode({"id": "x", "exp": 1}, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
    r = client.get("/api/auth/me", headers=auth_headers(expired))
    assert r.status_code == 401
    assert r.json()["detail"] == "token expired"


def test_user_profiles_and_visibility():
    teacher, t_headers = make_user(client, "teacher")
    student, s_headers = make_user(client, "student")
    other, _ = make_user(client, "student")

    listed = client.get("/api/users", params={"role": "student"}, headers=t_headers)
    assert listed.status_code == 200
    assert {u["id"] for u in listed.json()} == {student["id"], other["id"]}

    assert client.get(f"/api/users/{other['id']}", headers=s_headers).status_code == 200
    assert client.get(f"/api/users/{teacher['id']}", headers=s_headers).status_code == 403
    assert client.get(f"/api/users/{student['id']}", headers=t_headers).status_code == 200
    assert client.get("/api/users/missing", headers=t_headers).status_code == 404


def test_update_own_profile_only():
    student, s_headers = make_user(client, "student")
    other, _ = make_user(client, "student")
    r = client.put(f"/api/users/{student['id']}", json={"display_name": "  New Name ", "bio": "hi"}, headers=s_headers)
    assert r.status_code == 200
    assert r.json()["display_name"] == "New Name"
    assert r.json()["bio"] == "hi"
    assert client.put(f"/api/users/{student['id']}", json={}, headers=s_headers).status_code == 400
    assert client.put(f"/api/users/{other['id']}", json={"bio": "x"}, headers=s_headers).status_code == 403


def test_serve_entry_point_runs_uvicorn(monkeypatch):
    import uvicorn

    from quizweb import main

    calls = []
    monkeypatch.setattr(uvicorn, "run", lambda target, **kwargs: calls.append((target, kwargs)))
    monkeypatch.delenv("HOST", raising=False)
    monkeypatch.setenv("PORT", "9001")
    main.run()
    assert calls == [("quizweb.main:app", {"host": "127.0.0.1", "port": 9001})]
