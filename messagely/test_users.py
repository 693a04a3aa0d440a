"""
Tests for the /users endpoints.

Tests cover:
- Token required (401) and owner-only access (403)
- User listing order
- User detail fields
- Messages to/from a user
"""

import pytest

from messagely.security import TokenIssuer


def register(client, username: str, password: str = "secret") -> str:
    """Helper to register a user and return their token."""
    response = client.post(
        "/auth/register",
        json={
            "username": username,
            "password": password,
            "first_name": username.title(),
            "last_name": "Tester",
            "phone": "+14155550100",
        },
    )
    assert response.status_code == 200
    return response.json()["token"]


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def send(client, token: str, to_username: str, body: str) -> dict:
    """Helper to send a message as the token's user."""
    response = client.post(
        "/messages",
        json={"to_username": to_username, "body": body},
        headers=auth_headers(token),
    )
    assert response.status_code == 201
    return response.json()


@pytest.fixture
def tokens(client):
    """Registered alice and bob."""
    return {
        "alice": register(client, "alice", "pw1"),
        "bob": register(client, "bob", "pw2"),
    }


class TestAuthentication:
    """ensure_logged_in behaviour on /users."""

    def test_missing_token(self, client):
        response = client.get("/users")

        assert response.status_code == 401
        assert response.json() == {"detail": "Unauthorized"}

    def test_invalid_token(self, client, tokens):
        response = client.get("/users", headers=auth_headers(tokens["alice"] + "x"))

        assert response.status_code == 401

    def test_non_bearer_scheme(self, client, tokens):
        response = client.get("/users", headers={"Authorization": f"Basic {tokens['alice']}"})

        assert response.status_code == 401

    def test_token_signed_with_other_secret(self, client):
        forged = TokenIssuer(secret_key="forged-secret-key-0123456789abcdef").issue({"username": "alice"})

        response = client.get("/users", headers=auth_headers(forged))

        assert response.status_code == 401


class TestListUsers:
    """GET /users."""

    def test_list_ordered_by_username(self, client):
        tokens = [register(client, name) for name in ["zed", "carol", "alice"]]

        response = client.get("/users", headers=auth_headers(tokens[0]))

        assert response.status_code == 200
        data = response.json()
        assert [u["username"] for u in data] == ["alice", "carol", "zed"]
        assert data[0] == {"username": "alice", "first_name": "Alice", "last_name": "Tester"}


class TestUserDetail:
    """GET /users/{username}."""

    def test_own_detail(self, client, tokens):
        response = client.get("/users/alice", headers=auth_headers(tokens["alice"]))

        assert response.status_code == 200
        data = response.json()
        assert set(data.keys()) == {
            "username", "first_name", "last_name", "phone", "join_at", "last_login_at"
        }
        assert data["username"] == "alice"
        assert "password" not in data

    def test_timestamps_are_utc(self, client, tokens):
        data = client.get("/users/alice", headers=auth_headers(tokens["alice"])).json()

        assert data["join_at"].endswith("Z")
        assert data["last_login_at"].endswith("Z")

    def test_other_users_detail_forbidden(self, client, tokens):
        response = client.get("/users/bob", headers=auth_headers(tokens["alice"]))

        assert response.status_code == 403
        assert response.json() == {"detail": "Forbidden"}

    def test_detail_requires_token(self, client, tokens):
        response = client.get("/users/alice")

        assert response.status_code == 401

    def test_token_for_unknown_user(self, client, token_issuer):
        token = token_issuer.issue({"username": "ghost"})

        response = client.get("/users/ghost", headers=auth_headers(token))

        assert response.status_code == 404


class TestUserMessages:
    """GET /users/{username}/to and /from."""

    def test_empty_lists(self, client, tokens):
        headers = auth_headers(tokens["alice"])

        assert client.get("/users/alice/to", headers=headers).json() == []
        assert client.get("/users/alice/from", headers=headers).json() == []

    def test_alice_sends_bob_hi(self, client, tokens):
        send(client, tokens["alice"], "bob", "hi")

        to_bob = client.get("/users/bob/to", headers=auth_headers(tokens["bob"]))
        assert to_bob.status_code == 200
        messages = to_bob.json()
        assert len(messages) == 1
        assert messages[0]["from_user"]["username"] == "alice"
        assert messages[0]["from_user"]["phone"] == "+14155550100"
        assert messages[0]["body"] == "hi"
        assert messages[0]["read_at"] is None

        from_alice = client.get("/users/alice/from", headers=auth_headers(tokens["alice"]))
        assert from_alice.status_code == 200
        messages = from_alice.json()
        assert len(messages) == 1
        assert messages[0]["to_user"]["username"] == "bob"
        assert messages[0]["body"] == "hi"

    def test_cannot_read_someone_elses_inbox(self, client, tokens):
        send(client, tokens["alice"], "bob", "hi")

        response = client.get("/users/bob/to", headers=auth_headers(tokens["alice"]))

        assert response.status_code == 403

    def test_cannot_read_someone_elses_outbox(self, client, tokens):
        response = client.get("/users/alice/from", headers=auth_headers(tokens["bob"]))

        assert response.status_code == 403
