"""
Expense Tracker API client

Holds the access/refresh token pair for one user and attaches the bearer
token to every call. A 401 on an authenticated call triggers a single
refresh followed by one retry of the original request; if the refresh is
rejected the stored tokens are dropped and SessionExpired is raised.
"""

import logging
from typing import Any, Optional

import httpx

logger = logging.getLogger(__name__)

_UNAUTHENTICATED_PATHS = {"/auth/login", "/auth/register", "/auth/refresh"}


class SessionExpired(Exception):
    """The refresh token was rejected; the user has to log in again."""


class ExpensesClient:
    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.http = httpx.Client(base_url=base_url, timeout=timeout, transport=transport)
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None

    def close(self) -> None:
        self.http.close()

    def __enter__(self) -> "ExpensesClient":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def _store_tokens(self, payload: dict[str, Any]) -> None:
        self.access_token = payload["accessToken"]
        self.refresh_token = payload["refreshToken"]

    def clear_tokens(self) -> None:
        self.access_token = None
        self.refresh_token = None

    def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if self.access_token and path not in _UNAUTHENTICATED_PATHS:
            headers["Authorization"] = f"Bearer {self.access_token}"
        return self.http.request(method, path, headers=headers, **kwargs)

    def refresh(self) -> None:
        if not self.refresh_token:
            self.clear_tokens()
            raise SessionExpired("No refresh token available")
        response = self.http.post(
            "/auth/refresh", json={"refreshToken": self.refresh_token}
        )
        if response.status_code != 200:
            logger.info(f"client_refresh_failed: status={response.status_code}")
            self.clear_tokens()
            raise SessionExpired(response.json().get("message", "Session expired"))
        self._store_tokens(response.json())

    def request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        response = self._send(method, path, **kwargs)
        if response.status_code != 401 or path in _UNAUTHENTICATED_PATHS:
            return response
        self.refresh()
        return self._send(method, path, **kwargs)

    def _json(self, method: str, path: str, **kwargs: Any) -> Any:
        response = self.request(method, path, **kwargs)
        response.raise_for_status()
        return response.json()

    # auth

    def register(self, name: str, email: str, password: str) -> dict[str, Any]:
        payload = self._json(
            "POST",
            "/auth/register",
            json={"name": name, "email": email, "password": password},
        )
        self._store_tokens(payload)
        return payload["user"]

    def login(self, email: str, password: str) -> dict[str, Any]:
        payload = self._json(
            "POST", "/auth/login", json={"email": email, "password": password}
        )
        self._store_tokens(payload)
        return payload["user"]

    def logout(self) -> None:
        try:
            self._json("POST", "/auth/logout")
        finally:
            self.clear_tokens()

    def me(self) -> dict[str, Any]:
        return self._json("GET", "/auth/me")

    # categories

    def categories(self) -> list[dict[str, Any]]:
        return self._json("GET", "/categories")

    def create_category(self, name: str, **fields: Any) -> dict[str, Any]:
        return self._json("POST", "/categories", json={"name": name, **fields})

    def delete_category(self, category_id: int) -> None:
        self._json("DELETE", f"/categories/{category_id}")

    # transactions

    def transactions(self, **params: Any) -> dict[str, Any]:
        return self._json("GET", "/transactions", params=params)

    def create_transaction(self, **fields: Any) -> dict[str, Any]:
        return self._json("POST", "/transactions", json=fields)

    def update_transaction(self, transaction_id: int, **fields: Any) -> dict[str, Any]:
        return self._json("PUT", f"/transactions/{transaction_id}", json=fields)

    def delete_transaction(self, transaction_id: int) -> None:
        self._json("DELETE", f"/transactions/{transaction_id}")

    def export_csv(self, **params: Any) -> str:
        response = self.request("GET", "/transactions/export.csv", params=params)
        response.raise_for_status()
        return response.text

    # dashboard

    def dashboard_stats(self, period: str = "month") -> dict[str, Any]:
        return self._json("GET", "/dashboard/stats", params={"period": period})

    def category_chart(
        self, period: str = "month", type: str = "expense"
    ) -> list[dict[str, Any]]:
        return self._json(
            "GET",
            "/dashboard/charts/categories",
            params={"period": period, "type": type},
        )

    def trend_chart(self, period: str = "month") -> list[dict[str, Any]]:
        return self._json("GET", "/dashboard/charts/trend", params={"period": period})

    def recent(self, limit: int = 5) -> list[dict[str, Any]]:
        return self._json("GET", "/dashboard/recent", params={"limit": limit})
