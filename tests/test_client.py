import json

import httpx
import pytest

from client import ExpensesClient, SessionExpired


class FakeServer:
    """Answers like the API: one valid access token, rotating refresh tokens."""

    def __init__(self, refresh_ok: bool = True) -> None:
        self.refresh_ok = refresh_ok
        self.valid_access = "access-1"
        self.valid_refresh = "refresh-1"
        self.calls: list[tuple[str, str, str]] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        auth = request.headers.get("Authorization", "")
        self.calls.append((request.method, request.url.path, auth))
        if request.url.path == "/auth/login":
            return httpx.Response(
                200,
                json={
                    "message": "Login successful",
                    "user": {"id": 1, "name": "Alice", "email": "alice@example.com"},
                    "accessToken": "stale-access",
                    "refreshToken": self.valid_refresh,
                },
            )
        if request.url.path == "/auth/refresh":
            body = json.loads(request.content)
            if not self.refresh_ok or body.get("refreshToken") != self.valid_refresh:
                return httpx.Response(401, json={"message": "Invalid refresh token"})
            self.valid_refresh = "refresh-2"
            return httpx.Response(
                200, json={"accessToken": self.valid_access, "refreshToken": "refresh-2"}
            )
        if auth != f"Bearer {self.valid_access}":
            return httpx.Response(401, json={"message": "Token is not valid"})
        return httpx.Response(200, json=[{"id": 1, "name": "Salary"}])


def make_client(server: FakeServer) -> ExpensesClient:
    return ExpensesClient("http://testserver", transport=httpx.MockTransport(server))


def test_expired_access_token_is_refreshed_and_retried_once() -> None:
    server = FakeServer()
    with make_client(server) as api:
        api.login("alice@example.com", "hunter22")

        categories = api.categories()

    assert categories == [{"id": 1, "name": "Salary"}]
    assert api.access_token == "access-1"
    assert api.refresh_token == "refresh-2"
    paths = [(method, path) for method, path, _ in server.calls]
    assert paths == [
        ("POST", "/auth/login"),
        ("GET", "/categories"),
        ("POST", "/auth/refresh"),
        ("GET", "/categories"),
    ]
    assert server.calls[1][2] == "Bearer stale-access"
    assert server.calls[3][2] == "Bearer access-1"


def test_auth_endpoints_never_carry_bearer_token() -> None:
    server = FakeServer()
    with make_client(server) as api:
        api.access_token = "something"
        api.login("alice@example.com", "hunter22")

    assert server.calls[0][2] == ""


def test_rejected_refresh_clears_tokens() -> None:
    server = FakeServer(refresh_ok=False)
    with make_client(server) as api:
        api.login("alice@example.com", "hunter22")

        with pytest.raises(SessionExpired, match="Invalid refresh token"):
            api.categories()

    assert api.access_token is None
    assert api.refresh_token is None
    assert [path for _, path, _ in server.calls].count("/categories") == 1


def test_refresh_without_stored_token_expires_session() -> None:
    with make_client(FakeServer()) as api:
        with pytest.raises(SessionExpired):
            api.categories()
