from __future__ import annotations

from typing import Any, Dict, Optional

import httpx

from todos.client.credentials import Credentials
from todos.client.errors import (
    ClientError,
    LoggedInError,
    NotLoggedInError,
    NotRefreshableError,
    StatusError,
)
from todos.logging import get_logger

logger = get_logger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


class Client:
    """Talks to a todos server on behalf of the locally stored credentials."""

    def __init__(
        self,
        creds: Optional[Credentials] = None,
        *,
        http: Optional[httpx.Client] = None,
    ) -> None:
        self.creds = creds if creds is not None else Credentials.load()
        self.http = http or httpx.Client(timeout=DEFAULT_TIMEOUT_SECONDS, follow_redirects=False)

    def close(self) -> None:
        self.http.close()

    def __enter__(self) -> "Client":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def request(
        self,
        method: str,
        path: str,
        *,
        auth: bool = False,
        data: Optional[Dict[str, Any]] = None,
    ) -> tuple[int, Dict[str, Any]]:
        """Send a JSON request and return the status code and decoded body."""
        headers = {"Accept": "application/json"}
        if auth:
            if not self.creds.is_logged_in():
                raise NotLoggedInError()
            headers["Authorization"] = f"Bearer {self.creds.tokens.access}"

        try:
            rep = self.http.request(method, self.creds.get_url(path), json=data, headers=headers)
        except httpx.HTTPError as exc:
            raise ClientError(f"could not reach {self.creds.endpoint}: {exc}") from exc

        content_type = rep.headers.get("content-type", "")
        if not content_type.startswith("application/json"):
            raise StatusError(rep.status_code, f"unexpected content type: {content_type}")
        try:
            body = rep.json()
        except ValueError as exc:
            raise StatusError(rep.status_code, "could not decode response") from exc
        if not isinstance(body, dict):
            raise StatusError(rep.status_code, "unexpected response body")
        return rep.status_code, body

    # authentication
    def login(self, username: Optional[str] = None, password: Optional[str] = None) -> None:
        """Log in and cache the issued tokens in the credentials file."""
        if self.creds.is_logged_in():
            raise LoggedInError()

        username = username or self.creds.username
        password = password or self.creds.password
        if not username or not password:
            raise ClientError("a username and password are required to login")

        status, rep = self.request(
            "POST",
            "/login",
            data={"username": username, "password": password, "no_cookie": True},
        )
        if status != 200 or not rep.get("success"):
            raise StatusError(status, rep.get("error"))

        self.creds.set_tokens(rep)
        logger.info("client_login", username=username)

    def logout(self, revoke_all: bool = False) -> None:
        """Revoke the cached tokens on the server, then forget them locally.

        An expired access token is refreshed first when possible. Local
        tokens are kept if the server rejects the request.
        """
        if not self.creds.is_logged_in():
            if not self.creds.is_refreshable():
                raise NotLoggedInError()
            try:
                self.refresh()
            except ClientError as exc:
                raise ClientError(f"could not refresh token to log it out: {exc}") from exc

        status, rep = self.request(
            "POST", "/logout", auth=True, data={"revoke_all": revoke_all}
        )
        # A 401 means the server already forgot the token
        if status not in (200, 204, 401) or (status != 401 and not rep.get("success")):
            raise StatusError(status, rep.get("error") or "could not logout the user")

        self.creds.revoke()

    def refresh(self) -> None:
        """Exchange the cached refresh token for a new pair."""
        if not self.creds.is_refreshable():
            raise NotRefreshableError()

        status, rep = self.request(
            "POST",
            "/refresh",
            data={"refresh_token": self.creds.tokens.refresh, "no_cookie": True},
        )
        if status != 200 or not rep.get("success"):
            raise StatusError(status, rep.get("error"))

        self.creds.set_tokens(rep)

    def check_login(self) -> None:
        """Make sure a usable access token is cached, refreshing or logging in."""
        if self.creds.is_logged_in():
            return
        if self.creds.is_refreshable():
            self.refresh()
            return
        self.login()

    # status
    def status(self) -> Dict[str, Any]:
        status, rep = self.request("GET", "/status")
        if status != 200 or rep.get("status") != "ok":
            raise StatusError(status, rep.get("error") or rep.get("status"))
        return rep

    def overview(self) -> Dict[str, Any]:
        status, rep = self.request("GET", "/", auth=True)
        if status != 200 or not rep.get("success"):
            raise StatusError(status, rep.get("error"))
        return rep

    # tasks
    def list_tasks(self, checklist: Optional[int] = None) -> list[Dict[str, Any]]:
        path = "/tasks" if checklist is None else f"/tasks?checklist={checklist}"
        status, rep = self.request("GET", path, auth=True)
        if status != 200 or not rep.get("success"):
            raise StatusError(status, rep.get("error"))
        return rep.get("tasks", [])

    def create_task(self, title: str, details: str = "", checklist: Optional[int] = None) -> int:
        data: Dict[str, Any] = {"title": title, "details": details}
        if checklist is not None:
            data["checklist"] = checklist
        status, rep = self.request("POST", "/tasks", auth=True, data=data)
        if status != 201 or not rep.get("success"):
            raise StatusError(status, rep.get("error"))
        return rep["task"]


__all__ = ["Client"]
