"""Paired access/refresh JWTs backed by revocable token records.

Every login produces one :class:`~todos.storage.models.Token` record and two
HS256-signed JWTs that share its ``jti``. The access token is valid from
issue until ``access_expires_at``; the refresh token only becomes valid
``overlap`` before the access token expires and stays valid until
``refresh_expires_at``. Deleting the record revokes both.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Mapping, Optional, Protocol

import jwt

from todos.logging import get_logger
from todos.service.errors import AuthenticationError, ServerError
from todos.storage.models import Token

logger = get_logger(__name__)

ACCESS_AUDIENCE = "access"
REFRESH_AUDIENCE = "refresh"
ACCESS_COOKIE = "access_token"
REFRESH_COOKIE = "refresh_token"
TOKEN_QUERY_PARAM = "token"

_REQUIRED_CLAIMS = ["jti", "aud", "iat", "exp"]


class InvalidTokenError(AuthenticationError):
    """A JWT failed signature, audience or time-window checks (401)."""


class TokenNotFoundError(AuthenticationError):
    """No bearer token could be located on the request (401)."""


class TokenSigningError(ServerError):
    """A JWT could not be signed (500)."""


class TokenStore(Protocol):
    def create_token(self, token: Token) -> Token:
        ...

    def get_token(self, token_id: uuid.UUID) -> Optional[Token]:
        ...

    def delete_token(self, token_id: uuid.UUID) -> bool:
        ...

    def delete_user_tokens(self, user_id: int) -> int:
        ...

    def delete_expired_tokens(self, now: datetime) -> int:
        ...


class RequestLike(Protocol):
    headers: Mapping[str, str]
    cookies: Mapping[str, str]
    query_params: Mapping[str, str]


@dataclass(frozen=True)
class TokenConfig:
    secret_key: str
    access_ttl: timedelta = timedelta(hours=4)
    refresh_ttl: timedelta = timedelta(hours=12)
    overlap: timedelta = timedelta(minutes=1)
    algorithm: str = "HS256"
    leeway: timedelta = timedelta(0)

    def __post_init__(self) -> None:
        if not self.secret_key:
            raise ValueError("a secret key is required to sign tokens")
        if self.access_ttl <= timedelta(0):
            raise ValueError("access token lifetime must be positive")
        if self.refresh_ttl <= self.access_ttl:
            raise ValueError("refresh tokens must outlive access tokens")
        if not timedelta(0) <= self.overlap < self.access_ttl:
            raise ValueError("overlap must be non-negative and shorter than the access lifetime")

    @classmethod
    def from_settings(cls, settings) -> "TokenConfig":
        return cls(
            secret_key=settings.secret_key,
            access_ttl=timedelta(minutes=settings.access_token_minutes),
            refresh_ttl=timedelta(minutes=settings.refresh_token_minutes),
            overlap=timedelta(seconds=settings.refresh_overlap_seconds),
        )


@dataclass(frozen=True)
class IssuedToken:
    """A persisted token record together with its signed JWTs."""

    record: Token
    access_token: str = field(repr=False)
    refresh_token: str = field(repr=False)

    @property
    def id(self) -> uuid.UUID:
        return self.record.id

    @property
    def user_id(self) -> int:
        return self.record.user_id


def _epoch(value: datetime) -> int:
    return int(value.timestamp())


def find_token(request: RequestLike) -> str:
    """Locate a bearer token on an incoming request.

    Looks at the ``Authorization`` header, then the ``access_token`` cookie,
    then the ``token`` query parameter. A present but malformed header is an
    error rather than a reason to fall through to the other sources.
    """
    header = request.headers.get("Authorization")
    if header:
        scheme, _, credentials = header.partition(" ")
        credentials = credentials.strip()
        if scheme.lower() != "bearer" or not credentials:
            raise TokenNotFoundError("could not parse Bearer token from Authorization header")
        return credentials

    cookie = request.cookies.get(ACCESS_COOKIE)
    if cookie:
        return cookie

    query = request.query_params.get(TOKEN_QUERY_PARAM)
    if query:
        return query

    raise TokenNotFoundError("no access token found in header, cookie, or request")


class TokenService:
    """Issues, verifies and revokes token pairs."""

    def __init__(
        self,
        store: TokenStore,
        config: TokenConfig,
        *,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self.store = store
        self.config = config
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def _now(self) -> datetime:
        return self._clock()

    def access_claims(self, record: Token) -> Dict[str, Any]:
        return {
            "jti": str(record.id),
            "aud": ACCESS_AUDIENCE,
            "iat": _epoch(record.issued_at),
            "exp": _epoch(record.access_expires_at),
        }

    def refresh_claims(self, record: Token) -> Dict[str, Any]:
        return {
            "jti": str(record.id),
            "aud": REFRESH_AUDIENCE,
            "iat": _epoch(record.issued_at),
            "nbf": _epoch(record.access_expires_at - self.config.overlap),
            "exp": _epoch(record.refresh_expires_at),
        }

    def _sign(self, claims: Dict[str, Any]) -> str:
        try:
            return jwt.encode(claims, self.config.secret_key, algorithm=self.config.algorithm)
        except (jwt.PyJWTError, NotImplementedError, TypeError, ValueError) as exc:
            raise TokenSigningError("could not sign token") from exc

    def sign(self, record: Token) -> IssuedToken:
        """Produce the access and refresh JWTs for an existing record."""
        return IssuedToken(
            record=record,
            access_token=self._sign(self.access_claims(record)),
            refresh_token=self._sign(self.refresh_claims(record)),
        )

    def create_auth_token(self, user_id: int) -> IssuedToken:
        """Create, sign and persist a new token pair for ``user_id``.

        Both JWTs are signed before the record is written, so a signing
        failure never leaves an orphaned record behind.
        """
        record = Token.new(
            user_id,
            access_ttl=self.config.access_ttl,
            refresh_ttl=self.config.refresh_ttl,
            now=self._now(),
        )
        issued = self.sign(record)
        self.store.create_token(record)
        logger.info("token_created", user_id=user_id, token_id=str(record.id))
        return issued

    def verify_auth_token(
        self, token: str, *, access: bool = False, refresh: bool = False
    ) -> uuid.UUID:
        """Check a JWT's signature and time window and return its ``jti``.

        With ``access`` or ``refresh`` set, the audience must match as well.
        Verification is stateless; callers confirm the record still exists.
        """
        if access and refresh:
            raise InvalidTokenError("token cannot be both an access and a refresh token")
        if not token:
            raise InvalidTokenError("missing token")

        audience: Optional[str] = None
        if access:
            audience = ACCESS_AUDIENCE
        elif refresh:
            audience = REFRESH_AUDIENCE

        try:
            claims = jwt.decode(
                token,
                self.config.secret_key,
                algorithms=[self.config.algorithm],
                audience=audience,
                leeway=self.config.leeway,
                options={"require": _REQUIRED_CLAIMS, "verify_aud": audience is not None},
            )
        except jwt.PyJWTError as exc:
            raise InvalidTokenError(f"could not verify token: {exc}") from exc

        try:
            return uuid.UUID(claims["jti"])
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise InvalidTokenError("could not parse token id") from exc

    def get(self, token_id: uuid.UUID) -> Optional[Token]:
        return self.store.get_token(token_id)

    def revoke(self, token_id: uuid.UUID) -> bool:
        deleted = self.store.delete_token(token_id)
        logger.info("token_revoked", token_id=str(token_id), deleted=deleted)
        return deleted

    def revoke_all(self, user_id: int) -> int:
        count = self.store.delete_user_tokens(user_id)
        logger.info("user_tokens_revoked", user_id=user_id, count=count)
        return count

    def cleanup_expired(self, now: Optional[datetime] = None) -> int:
        """Delete every record that can no longer be refreshed."""
        return self.store.delete_expired_tokens(now or self._now())


__all__ = [
    "ACCESS_AUDIENCE",
    "ACCESS_COOKIE",
    "REFRESH_AUDIENCE",
    "REFRESH_COOKIE",
    "IssuedToken",
    "InvalidTokenError",
    "TokenConfig",
    "TokenNotFoundError",
    "TokenService",
    "TokenSigningError",
    "TokenStore",
    "find_token",
]
