"""
tests/test_auth_api.py -- Integration tests for the auth REST endpoints.

These tests exercise the full stack: FastAPI routing -> governor check ->
bcrypt -> UserStore -> JWT issuance -> bearer-token dependency -> response
model serialization.

Coverage:
  - Register: 201 + token, display_name default, 409 on duplicate, 422 with field detail
  - Login: 200 + token, generic 401 for unknown user and wrong password
  - Lockout: five failures then 429 with Retry-After; success resets the count
  - Bearer gate: valid token 200, no header 401 no_credential, tampered token,
    wrong scheme and expired token 401 invalid_credential
  - Logout: advisory 200, token still verifies afterwards
  - Passwords are hashed verbatim; only the username is trimmed
  - Register volume limit (slowapi) answers 429 rate_limited with Retry-After
  - Unexpected errors return a bare 500 internal_error envelope
  - Responses never include the password hash

Fixtures used (from conftest.py):
  - api_client: (client, token, uid) for user "testmember" / "testpass123"
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from fastapi.testclient import TestClient

from api.limiter import limiter
from auth.tokens import create_access_token

REGISTER = "/api/v1/auth/register"
LOGIN = "/api/v1/auth/login"
LOGOUT = "/api/v1/auth/logout"
ME = "/api/v1/auth/me"
BASE_URL = "http://localhost"


def _tamper(token: str) -> str:
    """Graft another user's claims onto token's signature."""
    header, _payload, signature = token.split(".")
    _h, forged_payload, _s = create_access_token(999_999).split(".")
    return f"{header}.{forged_payload}.{signature}"


class TestRegistrationScenario:
    """Register alice, then use her token against an authenticated endpoint."""

    def test_register_then_authenticated_request(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post(REGISTER, json={"username": "alice", "password": "secret123"})
        assert resp.status_code == 201, resp.text
        body = resp.json()
        t1 = body["access_token"]
        assert body["token_type"] == "bearer"
        assert body["expires_in"] == 24 * 3600
        assert body["user"]["username"] == "alice"
        assert resp.headers["cache-control"] == "no-store"

        ok = client.get(ME, headers={"Authorization": f"Bearer {t1}"})
        assert ok.status_code == 200
        assert ok.json()["username"] == "alice"

        missing = client.get(ME)
        assert missing.status_code == 401
        assert missing.json()["error"]["code"] == "no_credential"
        assert missing.headers["www-authenticate"] == "Bearer"

        tampered = client.get(ME, headers={"Authorization": f"Bearer {_tamper(t1)}"})
        assert tampered.status_code == 401
        assert tampered.json()["error"]["code"] == "invalid_credential"


class TestRegister:
    def test_display_name_defaults_to_username(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post(REGISTER, json={"username": "bob_b", "password": "hunter22"})
        assert resp.status_code == 201
        user = resp.json()["user"]
        assert user["display_name"] == "bob_b"
        assert user["is_creator"] is False
        assert user["is_verified"] is False

    def test_profile_fields_are_stored(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post(
            REGISTER,
            json={
                "username": "carol",
                "password": "hunter22",
                "display_name": "Carol C",
                "bio": "photos mostly",
                "profile_image": "https://cdn.example.com/carol.jpg",
                "is_creator": True,
            },
        )
        assert resp.status_code == 201
        user = resp.json()["user"]
        assert user["display_name"] == "Carol C"
        assert user["bio"] == "photos mostly"
        assert user["is_creator"] is True

    def test_duplicate_username_conflicts(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post(REGISTER, json={"username": "testmember", "password": "another1"})
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    def test_validation_reports_fields(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post(REGISTER, json={"username": "ab", "password": "123"})
        assert resp.status_code == 422
        error = resp.json()["error"]
        assert error["code"] == "validation_error"
        fields = {item["field"] for item in error["detail"]}
        assert fields == {"username", "password"}

    def test_validation_never_echoes_password(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post(REGISTER, json={"username": "ab", "password": "pw-secret-x"})
        assert resp.status_code == 422
        assert "pw-secret-x" not in resp.text

    def test_response_has_no_credential(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post(REGISTER, json={"username": "dave", "password": "hunter22"})
        assert resp.status_code == 201
        assert "hashed_password" not in resp.json()["user"]
        assert "$2b$" not in resp.text


class TestLogin:
    def test_valid_login_returns_token(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, uid = api_client
        resp = client.post(LOGIN, json={"username": "testmember", "password": "testpass123"})
        assert resp.status_code == 200, resp.text
        body = resp.json()
        assert body["user"]["id"] == uid
        me = client.get(ME, headers={"Authorization": f"Bearer {body['access_token']}"})
        assert me.status_code == 200

    def test_wrong_password_is_generic(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post(LOGIN, json={"username": "testmember", "password": "wrongpass"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"

    def test_unknown_user_is_indistinguishable(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        unknown = client.post(LOGIN, json={"username": "nobody", "password": "wrongpass"})
        wrong = client.post(LOGIN, json={"username": "testmember", "password": "wrongpass"})
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()


class TestLoginLockout:
    def test_sixth_attempt_is_rate_limited(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        for _ in range(5):
            resp = client.post(LOGIN, json={"username": "testmember", "password": "wrongpass"})
            assert resp.status_code == 401
        resp = client.post(LOGIN, json={"username": "testmember", "password": "testpass123"})
        assert resp.status_code == 429
        assert int(resp.headers["retry-after"]) > 0
        error = resp.json()["error"]
        assert error["code"] == "rate_limited"
        assert error["retry_after"] > 0

    def test_locked_address_cannot_register(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        for _ in range(5):
            client.post(LOGIN, json={"username": "testmember", "password": "wrongpass"})
        resp = client.post(REGISTER, json={"username": "erin", "password": "hunter22"})
        assert resp.status_code == 429
        assert "login" not in resp.json()["error"]["message"].lower()

    def test_success_resets_counter(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        for _ in range(4):
            client.post(LOGIN, json={"username": "testmember", "password": "wrongpass"})
        ok = client.post(LOGIN, json={"username": "testmember", "password": "testpass123"})
        assert ok.status_code == 200
        for _ in range(4):
            resp = client.post(LOGIN, json={"username": "testmember", "password": "wrongpass"})
            assert resp.status_code == 401
        assert client.post(LOGIN, json={"username": "testmember", "password": "testpass123"}).status_code == 200


class TestBearerGate:
    def test_fixture_token_is_accepted(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, uid = api_client
        resp = client.get(ME, headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        assert resp.json()["id"] == uid

    def test_blank_header_is_no_credential(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.get(ME, headers={"Authorization": "   "})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "no_credential"

    def test_wrong_scheme_is_invalid(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.get(ME, headers={"Authorization": f"Basic {token}"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_credential"

    def test_empty_bearer_is_invalid(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.get(ME, headers={"Authorization": "Bearer"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_credential"

    def test_expired_token_is_invalid(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, uid = api_client
        old = create_access_token(uid, expire_seconds=60, now=datetime.now(timezone.utc) - timedelta(hours=1))
        resp = client.get(ME, headers={"Authorization": f"Bearer {old}"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_credential"

    def test_garbage_token_is_invalid(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.get(ME, headers={"Authorization": "Bearer not.a.jwt"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_credential"

    def test_token_for_missing_user_is_invalid(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.get(ME, headers={"Authorization": f"Bearer {create_access_token(424242)}"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_credential"


class TestLogout:
    def test_logout_is_advisory(self, api_client: tuple[TestClient, str, int]) -> None:
        """Logout changes nothing server-side: the same token keeps working until it expires."""
        client, token, _uid = api_client
        resp = client.post(LOGOUT, headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 200
        assert "message" in resp.json()
        assert client.get(ME, headers={"Authorization": f"Bearer {token}"}).status_code == 200


class TestPasswordIsVerbatim:
    def test_surrounding_spaces_are_part_of_the_password(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        password = " pw with spaces "
        resp = client.post(REGISTER, json={"username": "  frank  ", "password": password})
        assert resp.status_code == 201
        assert resp.json()["user"]["username"] == "frank"

        assert client.post(LOGIN, json={"username": "frank", "password": password}).status_code == 200
        assert client.post(LOGIN, json={"username": "frank", "password": password.strip()}).status_code == 401


class TestRegisterVolumeLimit:
    def test_register_flood_is_rate_limited(self, api_client: tuple[TestClient, str, int], monkeypatch) -> None:
        """The slowapi limit caps registrations per address, independent of the governor."""
        client, _token, _uid = api_client
        limiter.reset()
        monkeypatch.setattr(limiter, "enabled", True)
        try:
            for i in range(20):
                resp = client.post(REGISTER, json={"username": f"flood{i:02d}", "password": "hunter22"})
                assert resp.status_code == 201, resp.text
            resp = client.post(REGISTER, json={"username": "flood20", "password": "hunter22"})
        finally:
            limiter.reset()
        assert resp.status_code == 429
        assert resp.json()["error"]["code"] == "rate_limited"
        assert int(resp.headers["retry-after"]) > 0


class TestUnexpectedError:
    def test_internal_error_hides_detail(self, api_client: tuple[TestClient, str, int], monkeypatch) -> None:
        client, token, _uid = api_client

        def broken_lookup(user_id: int):
            raise RuntimeError("connection to db-primary:5432 refused")

        monkeypatch.setattr(client.app.state.user_store, "get_by_id", broken_lookup)
        quiet = TestClient(client.app, base_url=BASE_URL, raise_server_exceptions=False)
        resp = quiet.get(ME, headers={"Authorization": f"Bearer {token}"})
        assert resp.status_code == 500
        assert resp.json() == {
            "error": {"code": "internal_error", "message": "An unexpected error occurred."}
        }
        assert "db-primary" not in resp.text
