"""
tests/test_api_routes.py -- Integration tests for the account, session and OAuth routes.

These tests exercise the full stack: FastAPI routing -> dependency injection
-> AuthService -> SQLStore -> response serialization, so they catch error
mapping and header mistakes that unit tests on AuthService would miss.

Coverage:
  - Registration: 201, weak or over-72-byte password 400, duplicate 400
  - Login: 200 with session key and no-store, bad credentials 401
  - Session routes: authorize, logout, password change, missing/bad bearer 401
  - OAuth authorize: 303 with code and state; unknown client, bad redirect or
    a client with no redirect allowlist 400; dead session -> error=access_denied
  - OAuth token: code grant, refresh grant, replay, refresh by another client,
    bad client credentials, unsupported grant type
  - GET /api/v1/me with an access token

Fixtures used (from conftest.py):
  - api_client: TestClient with user "alice" registered; follow_redirects=False
"""

from __future__ import annotations

from urllib.parse import parse_qs, urlsplit

from fastapi.testclient import TestClient

from core.config import get_settings

PASSWORD = "correct horse battery staple"
REDIRECT = "https://alexa.example/callback"


def _login(client: TestClient, **overrides) -> str:
    body = {"username": "alice", "password": PASSWORD}
    body.update(overrides)
    resp = client.post("/api/v1/auth/login", json=body)
    assert resp.status_code == 200, resp.text
    return resp.json()["session_key"]


def _bearer(key: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {key}"}


def _authorize(client: TestClient, session_key: str, **overrides):
    form = {"sesh_key": session_key, "client_id": "alexa", "redirect_uri": REDIRECT, "state": "xyz"}
    form.update(overrides)
    return client.post("/oauth/authorize", data=form)


def _query(resp) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlsplit(resp.headers["location"]).query).items()}


def _code(client: TestClient) -> str:
    return _query(_authorize(client, _login(client)))["code"]


def _exchange(client: TestClient, code: str, auth=("alexa", "alexa-secret")):
    return client.post("/oauth/token", data={"grant_type": "authorization_code", "code": code}, auth=auth)


class TestRegistration:
    def test_register(self, api_client: TestClient) -> None:
        resp = api_client.post(
            "/api/v1/auth/users",
            json={"email": "bob@example.com", "username": "bob", "password": PASSWORD, "birthdate": "1985-02-03"},
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["username"] == "bob"
        assert "password_hash" not in data

    def test_weak_password(self, api_client: TestClient) -> None:
        resp = api_client.post(
            "/api/v1/auth/users",
            json={"email": "bob@example.com", "username": "bob", "password": "short", "birthdate": "1985-02-03"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid"

    def test_password_over_72_bytes(self, api_client: TestClient) -> None:
        resp = api_client.post(
            "/api/v1/auth/users",
            json={"email": "bob@example.com", "username": "bob", "password": "é" * 40, "birthdate": "1985-02-03"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid"

    def test_duplicate_username(self, api_client: TestClient) -> None:
        resp = api_client.post(
            "/api/v1/auth/users",
            json={"email": "new@example.com", "username": "alice", "password": PASSWORD, "birthdate": "1985-02-03"},
        )
        assert resp.status_code == 400

    def test_missing_field_is_422_without_echoing_values(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/users", json={"email": "x@example.com", "password": "hunter2"})
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"
        assert "hunter2" not in resp.text


class TestLogin:
    def test_login(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/login", json={"username": "alice", "password": PASSWORD})
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        data = resp.json()
        assert len(data["session_key"]) == 86
        assert data["user"]["username"] == "alice"

    def test_login_by_email(self, api_client: TestClient) -> None:
        assert _login(api_client, username="alice@example.com")

    def test_wrong_password_and_unknown_user_match(self, api_client: TestClient) -> None:
        wrong = api_client.post("/api/v1/auth/login", json={"username": "alice", "password": "nope nope nope"})
        unknown = api_client.post("/api/v1/auth/login", json={"username": "mallory", "password": PASSWORD})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["code"] == "bad_credentials"


class TestSessionRoutes:
    def test_authorize(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/authorize", headers=_bearer(_login(api_client)))
        assert resp.status_code == 200
        assert resp.json()["username"] == "alice"

    def test_missing_bearer(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/authorize")
        assert resp.status_code == 401
        assert resp.headers["www-authenticate"] == "Bearer"
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_malformed_bearer(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/authorize", headers=_bearer("not/a+key"))
        assert resp.status_code == 401

    def test_logout(self, api_client: TestClient) -> None:
        key = _login(api_client)
        assert api_client.post("/api/v1/auth/logout", headers=_bearer(key)).status_code == 200
        assert api_client.post("/api/v1/auth/authorize", headers=_bearer(key)).status_code == 401
        # Second logout is still fine
        assert api_client.post("/api/v1/auth/logout", headers=_bearer(key)).status_code == 200

    def test_change_password(self, api_client: TestClient) -> None:
        key = _login(api_client)
        resp = api_client.post(
            "/api/v1/auth/password",
            headers=_bearer(key),
            json={"old_password": PASSWORD, "new_password": "a brand new passphrase"},
        )
        assert resp.status_code == 204
        assert _login(api_client, password="a brand new passphrase")

    def test_change_password_wrong_old(self, api_client: TestClient) -> None:
        key = _login(api_client)
        resp = api_client.post(
            "/api/v1/auth/password",
            headers=_bearer(key),
            json={"old_password": "not my password", "new_password": "a brand new passphrase"},
        )
        assert resp.status_code == 401


class TestOAuthAuthorize:
    def test_redirects_with_code_and_state(self, api_client: TestClient) -> None:
        resp = _authorize(api_client, _login(api_client))
        assert resp.status_code == 303
        assert resp.headers["location"].startswith(REDIRECT + "?")
        params = _query(resp)
        assert params["state"] == "xyz"
        assert len(params["code"]) == 86

    def test_unknown_client(self, api_client: TestClient) -> None:
        resp = _authorize(api_client, _login(api_client), client_id="evil")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_client"

    def test_unregistered_redirect(self, api_client: TestClient) -> None:
        resp = _authorize(api_client, _login(api_client), redirect_uri="https://evil.example/steal")
        assert resp.status_code == 400
        assert "location" not in resp.headers

    def test_redirect_registered_to_other_client(self, api_client: TestClient) -> None:
        resp = _authorize(api_client, _login(api_client), client_id="tv")
        assert resp.status_code == 400
        assert "location" not in resp.headers

        own = _authorize(api_client, _login(api_client), client_id="tv", redirect_uri="https://tv.example/callback")
        assert own.status_code == 303

    def test_client_without_allowlist_cannot_redirect(self, api_client: TestClient, monkeypatch) -> None:
        monkeypatch.delitem(get_settings().oauth_redirect_uris, "tv")
        resp = _authorize(api_client, _login(api_client), client_id="tv", redirect_uri="https://evil.example/steal")
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_client"
        assert "location" not in resp.headers

    def test_logged_out_session_denied(self, api_client: TestClient) -> None:
        key = _login(api_client)
        api_client.post("/api/v1/auth/logout", headers=_bearer(key))
        resp = _authorize(api_client, key)
        assert resp.status_code == 303
        params = _query(resp)
        assert params["error"] == "access_denied"
        assert "code" not in params

    def test_malformed_session_key(self, api_client: TestClient) -> None:
        params = _query(_authorize(api_client, "%%%"))
        assert params["error"] == "invalid_request"


class TestOAuthToken:
    def test_code_grant(self, api_client: TestClient) -> None:
        resp = _exchange(api_client, _code(api_client))
        assert resp.status_code == 200
        assert resp.headers["cache-control"] == "no-store"
        data = resp.json()
        assert data["token_type"] == "bearer"
        assert data["expires_in"] == 3600
        assert data["access_token"] != data["refresh_token"]

    def test_code_replay(self, api_client: TestClient) -> None:
        code = _code(api_client)
        assert _exchange(api_client, code).status_code == 200
        resp = _exchange(api_client, code)
        assert resp.status_code == 400
        assert resp.json() == {"error": "invalid_grant"}

    def test_code_issued_to_other_client(self, api_client: TestClient) -> None:
        resp = _exchange(api_client, _code(api_client), auth=("tv", "tv-secret"))
        assert resp.status_code == 400
        assert resp.json() == {"error": "invalid_grant"}

    def test_bad_client_secret(self, api_client: TestClient) -> None:
        resp = _exchange(api_client, _code(api_client), auth=("alexa", "guess"))
        assert resp.status_code == 401
        assert resp.json() == {"error": "invalid_client"}
        assert resp.headers["www-authenticate"] == "Basic"

    def test_missing_client_credentials(self, api_client: TestClient) -> None:
        resp = api_client.post("/oauth/token", data={"grant_type": "authorization_code", "code": "AAAA"})
        assert resp.status_code == 401

    def test_refresh_grant(self, api_client: TestClient) -> None:
        first = _exchange(api_client, _code(api_client)).json()
        resp = api_client.post(
            "/oauth/token",
            data={"grant_type": "refresh_token", "refresh_token": first["refresh_token"]},
            auth=("alexa", "alexa-secret"),
        )
        assert resp.status_code == 200
        second = resp.json()
        assert second["access_token"] != first["access_token"]

        replay = api_client.post(
            "/oauth/token",
            data={"grant_type": "refresh_token", "refresh_token": first["refresh_token"]},
            auth=("alexa", "alexa-secret"),
        )
        assert replay.status_code == 400

    def test_refresh_by_other_client(self, api_client: TestClient) -> None:
        first = _exchange(api_client, _code(api_client)).json()
        stolen = api_client.post(
            "/oauth/token",
            data={"grant_type": "refresh_token", "refresh_token": first["refresh_token"]},
            auth=("tv", "tv-secret"),
        )
        assert stolen.status_code == 400
        assert stolen.json() == {"error": "invalid_grant"}

        resp = api_client.post(
            "/oauth/token",
            data={"grant_type": "refresh_token", "refresh_token": first["refresh_token"]},
            auth=("alexa", "alexa-secret"),
        )
        assert resp.status_code == 200

    def test_unsupported_grant(self, api_client: TestClient) -> None:
        resp = api_client.post("/oauth/token", data={"grant_type": "password"}, auth=("alexa", "alexa-secret"))
        assert resp.status_code == 400
        assert resp.json() == {"error": "unsupported_grant_type"}


class TestResource:
    def test_me_with_access_token(self, api_client: TestClient) -> None:
        token = _exchange(api_client, _code(api_client)).json()["access_token"]
        resp = api_client.get("/api/v1/me", headers=_bearer(token))
        assert resp.status_code == 200
        assert resp.json()["username"] == "alice"

    def test_session_key_is_not_an_access_token(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/me", headers=_bearer(_login(api_client)))
        assert resp.status_code == 401

    def test_me_without_token(self, api_client: TestClient) -> None:
        assert api_client.get("/api/v1/me").status_code == 401
