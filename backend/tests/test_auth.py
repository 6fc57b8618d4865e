from datetime import timedelta

import pytest

from subscriptn.exceptions import ConflictError, ValidationError
from subscriptn.services import auth as auth_service


def test_password_is_hashed(db, make_user):
    user = make_user(username="alice", password="correct horse")

    assert user.password_hash != "correct horse"
    assert auth_service.authenticate_user(db, "alice", "correct horse").id == user.id
    assert auth_service.authenticate_user(db, "alice", "wrong") is None
    assert auth_service.authenticate_user(db, "bob", "correct horse") is None


def test_duplicate_username(db, make_user):
    make_user(username="alice")
    with pytest.raises(ConflictError):
        auth_service.create_user(db, "alice", "password123", "shop_owner")


def test_unknown_role(db):
    with pytest.raises(ValidationError):
        auth_service.create_user(db, "carol", "password123", "admin")


def test_session_token_round_trip():
    token = auth_service.create_session_token(42)
    assert auth_service.decode_session_token(token) == 42


def test_expired_or_forged_tokens_are_rejected():
    expired = auth_service.create_session_token(42, expires_delta=timedelta(seconds=-1))
    header, payload, _ = auth_service.create_session_token(42).split(".")

    assert auth_service.decode_session_token(expired) is None
    assert auth_service.decode_session_token("not.a.jwt") is None
    assert auth_service.decode_session_token(f"{header}.{payload}.forgedsignature") is None


# ============== HTTP ==============

def test_register_login_me_logout(client):
    registered = client.post("/auth/register", json={"username": "satoshi", "password": "hodlhodl", "role": "provider"})
    assert registered.status_code == 200
    assert registered.json()["success"] is True
    assert registered.json()["user"]["role"] == "provider"
    assert "password_hash" not in registered.json()["user"]

    assert client.get("/auth/me").status_code == 401

    login = client.post("/auth/login", json={"username": "satoshi", "password": "hodlhodl"})
    assert login.status_code == 200
    assert login.json()["user"]["username"] == "satoshi"
    cookie = login.headers["set-cookie"].lower()
    assert "session=" in cookie
    assert "httponly" in cookie

    me = client.get("/auth/me")
    assert me.status_code == 200
    assert me.json()["username"] == "satoshi"

    client.post("/auth/logout")
    client.cookies.clear()
    assert client.get("/auth/me").status_code == 401


def test_register_conflict_and_validation(client):
    assert client.post("/auth/register", json={"username": "dup", "password": "secret1"}).status_code == 200
    assert client.post("/auth/register", json={"username": "dup", "password": "secret1"}).status_code == 409
    assert client.post("/auth/register", json={"username": "ab", "password": "secret1"}).status_code == 400
    assert client.post("/auth/register", json={"username": "valid", "password": "123"}).status_code == 400


def test_bad_credentials(client, make_user):
    make_user(username="dave", password="password123")
    assert client.post("/auth/login", json={"username": "dave", "password": "nope"}).status_code == 401


def test_forged_cookie_is_401(client):
    client.cookies.set("session", "forged")
    assert client.get("/auth/me").status_code == 401
    assert client.get("/subscriptions").status_code == 401


def test_session_for_deleted_user(client_for, make_user, db):
    user = make_user()
    stale = client_for(user)
    db.delete(user)
    db.commit()

    assert stale.get("/auth/me").status_code == 401
