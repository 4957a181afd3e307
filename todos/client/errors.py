from __future__ import annotations

from http import HTTPStatus
from typing import Optional


class ClientError(Exception):
    """Base class for errors raised by the todos API client."""


class NoConfDirError(ClientError):
    def __init__(self) -> None:
        super().__init__("could not find a directory to write credentials to")


class NoCredentialsError(ClientError):
    def __init__(self) -> None:
        super().__init__("could not find credentials, run configure")


class NoEndpointError(ClientError):
    def __init__(self) -> None:
        super().__init__("no endpoint specified in credentials, run configure")


class LoggedInError(ClientError):
    def __init__(self) -> None:
        super().__init__("already logged in, logout before logging in again")


class NotLoggedInError(ClientError):
    def __init__(self) -> None:
        super().__init__("not logged in, run the login command first")


class NotRefreshableError(ClientError):
    def __init__(self) -> None:
        super().__init__("cannot refresh tokens, please login again")


class StatusError(ClientError):
    """The server answered with an unexpected status code."""

    def __init__(self, status_code: int, message: Optional[str] = None) -> None:
        self.status_code = status_code
        try:
            reason = HTTPStatus(status_code).phrase
        except ValueError:
            reason = "unknown status"
        self.message = message or reason
        super().__init__(f"[{status_code}] {self.message}")


__all__ = [
    "ClientError",
    "LoggedInError",
    "NoConfDirError",
    "NoCredentialsError",
    "NoEndpointError",
    "NotLoggedInError",
    "NotRefreshableError",
    "StatusError",
]
