"""Local credentials file used by the command line client.

The file lives at ``$TODOS_CONFIG_DIR/credentials.yaml`` (default
``~/.config/todos``) and holds the server endpoint, optionally the login
name and password, and the most recent token pair with its time window.
Only one set of credentials is kept at a time.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional
from urllib.parse import urljoin, urlparse

import jwt
import yaml

from todos.client.errors import (
    ClientError,
    NoConfDirError,
    NoCredentialsError,
    NoEndpointError,
)

CONFIG_DIR_ENV = "TODOS_CONFIG_DIR"
CREDENTIALS_FILE = "credentials.yaml"

_UNVERIFIED = {
    "verify_signature": False,
    "verify_exp": False,
    "verify_nbf": False,
    "verify_iat": False,
    "verify_aud": False,
}


def config_dir() -> Path:
    override = os.getenv(CONFIG_DIR_ENV)
    if override:
        return Path(override).expanduser()
    return Path("~/.config/todos").expanduser()


def credentials_path() -> Path:
    return config_dir() / CREDENTIALS_FILE


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _parse_time(value: Any) -> Optional[datetime]:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_time(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value else None


def _claim_time(claims: Mapping[str, Any], name: str) -> Optional[datetime]:
    value = claims.get(name)
    if value is None:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def parse_unverified(token: str) -> Dict[str, Any]:
    """Read a JWT's claims without checking its signature or time window."""
    try:
        return jwt.decode(token, options=_UNVERIFIED)
    except jwt.PyJWTError as exc:
        raise ClientError(f"could not parse token: {exc}") from exc


@dataclass
class TokenCache:
    access: str = ""
    refresh: str = ""
    issued_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    not_before: Optional[datetime] = None
    refresh_by: Optional[datetime] = None


@dataclass
class Credentials:
    endpoint: str = ""
    username: str = ""
    password: str = field(default="", repr=False)
    tokens: TokenCache = field(default_factory=TokenCache)
    path: Optional[Path] = field(default=None, repr=False, compare=False)
    clock: Callable[[], datetime] = field(default=_utcnow, repr=False, compare=False)

    @classmethod
    def load(cls, path: Optional[Path] = None) -> "Credentials":
        """Read credentials from disk, requiring at least a valid endpoint."""
        path = path or credentials_path()
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise NoCredentialsError() from None
        except OSError as exc:
            raise ClientError(f"could not read {path.name} in {path.parent}: {exc}") from exc

        try:
            data = yaml.safe_load(raw) or {}
        except yaml.YAMLError as exc:
            raise ClientError(f"could not unmarshal yaml: {exc}") from exc
        if not isinstance(data, dict):
            raise ClientError("could not unmarshal yaml: expected a mapping")

        tokens = data.get("tokens") or {}
        creds = cls(
            endpoint=data.get("endpoint") or "",
            username=data.get("username") or "",
            password=data.get("password") or "",
            tokens=TokenCache(
                access=tokens.get("access") or "",
                refresh=tokens.get("refresh") or "",
                issued_at=_parse_time(tokens.get("issued_at")),
                expires_at=_parse_time(tokens.get("expires_at")),
                not_before=_parse_time(tokens.get("not_before")),
                refresh_by=_parse_time(tokens.get("refresh_by")),
            ),
            path=path,
        )
        creds.validate()
        return creds

    def validate(self) -> None:
        if not self.endpoint:
            raise NoEndpointError()
        parsed = urlparse(self.endpoint)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ClientError(f"could not parse {self.endpoint!r} endpoint")

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"endpoint": self.endpoint}
        if self.username:
            data["username"] = self.username
        if self.password:
            data["password"] = self.password
        if self.tokens.access or self.tokens.refresh:
            tokens = asdict(self.tokens)
            for key in ("issued_at", "expires_at", "not_before", "refresh_by"):
                tokens[key] = _format_time(tokens[key])
            data["tokens"] = tokens
        return data

    def dump(self, path: Optional[Path] = None) -> Path:
        """Write the credentials, readable only by the current user."""
        path = path or self.path or credentials_path()
        try:
            path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
        except OSError as exc:
            raise NoConfDirError() from exc

        payload = yaml.safe_dump(self.to_dict(), default_flow_style=False, sort_keys=False)
        try:
            fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(payload)
        except OSError as exc:
            raise ClientError(f"could not write {path.name} to {path.parent}: {exc}") from exc
        self.path = path
        return path

    def is_logged_in(self) -> bool:
        """True while the cached access token has not expired."""
        if self.tokens.access and self.tokens.expires_at:
            return self.clock() < self.tokens.expires_at
        return False

    def is_refreshable(self) -> bool:
        """True when the cached refresh token may be exchanged right now."""
        if self.tokens.refresh and self.tokens.not_before and self.tokens.refresh_by:
            now = self.clock()
            return self.tokens.not_before < now < self.tokens.refresh_by
        return False

    def get_url(self, path: str) -> str:
        self.validate()
        return urljoin(self.endpoint, path)

    def set_tokens(self, tokens: Mapping[str, Any], *, save: bool = True) -> None:
        """Cache a token pair from a login or refresh response."""
        access = tokens.get("access_token")
        if not access:
            raise ClientError("response does not contain an access_token")
        refresh = tokens.get("refresh_token")
        if not refresh:
            raise ClientError("response does not contain a refresh_token")

        access_claims = parse_unverified(access)
        refresh_claims = parse_unverified(refresh)
        self.tokens = TokenCache(
            access=access,
            refresh=refresh,
            issued_at=_claim_time(access_claims, "iat"),
            expires_at=_claim_time(access_claims, "exp"),
            not_before=_claim_time(refresh_claims, "nbf"),
            refresh_by=_claim_time(refresh_claims, "exp"),
        )
        if save:
            self.dump()

    def revoke(self, *, save: bool = True) -> None:
        """Forget the cached tokens."""
        self.tokens = TokenCache()
        if save:
            self.dump()


__all__ = [
    "CONFIG_DIR_ENV",
    "CREDENTIALS_FILE",
    "Credentials",
    "TokenCache",
    "config_dir",
    "credentials_path",
    "parse_unverified",
]
