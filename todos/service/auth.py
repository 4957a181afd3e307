from __future__ import annotations

import threading
import uuid
from dataclasses import dataclass
from typing import Optional, Protocol, Tuple

from todos.logging import get_logger
from todos.service.errors import AuthenticationError, ServerError, ServiceError
from todos.service.passwords import (
    DEFAULT_PARAMS,
    DerivedKeyError,
    DerivedKeyParams,
    create_derived_key,
    needs_rehash,
    verify_derived_key,
)
from todos.service.tokens import IssuedToken, TokenService
from todos.storage.models import Token, User

logger = get_logger(__name__)


class UserStore(Protocol):
    def create_user(
        self,
        username: str,
        email: str,
        password: str,
        *,
        is_admin: bool = False,
    ) -> User:
        ...

    def get_user(self, user_id: int) -> Optional[User]:
        ...

    def get_login_record(self, username: str) -> Optional[Tuple[int, str]]:
        ...

    def update_user_password(self, user_id: int, password: str) -> bool:
        ...

    def touch_user(self, user_id: int, when=None) -> None:
        ...


@dataclass(frozen=True)
class AuthContext:
    """The authenticated user and the token record that vouched for them."""

    user: User
    token: Token

    @property
    def user_id(self) -> int:
        return self.user.id

    @property
    def is_admin(self) -> bool:
        return self.user.is_admin


def require_admin(ctx: Optional[AuthContext]) -> AuthContext:
    """Gate an operation on an authenticated administrator.

    A missing context means the authorization step never ran, which is a
    wiring bug rather than a client mistake.
    """
    if ctx is None:
        logger.error("admin_check_without_auth_context")
        raise ServerError("no authorized user on request")
    if not ctx.is_admin:
        logger.warning("admin_required", user_id=ctx.user_id)
        raise AuthenticationError("admin privileges required")
    return ctx


class AuthService:
    """User registration, credential checks and token lifecycle."""

    def __init__(
        self,
        store: UserStore,
        tokens: TokenService,
        *,
        params: DerivedKeyParams = DEFAULT_PARAMS,
    ) -> None:
        self.store = store
        self.tokens = tokens
        self.params = params
        self.logger = logger
        self._dummy_key: Optional[str] = None
        self._dummy_lock = threading.Lock()

    def _dummy_derived_key(self) -> str:
        with self._dummy_lock:
            if self._dummy_key is None:
                self._dummy_key = create_derived_key(uuid.uuid4().hex, self.params)
            return self._dummy_key

    def register(
        self, username: str, email: str, password: str, *, is_admin: bool = False
    ) -> User:
        """Create a user whose password is stored as a derived key."""
        try:
            derived = create_derived_key(password, self.params)
        except DerivedKeyError as exc:
            self.logger.error("derived_key_failed", username=username, error=str(exc))
            raise ServerError("could not create derived key") from exc
        user = self.store.create_user(username, email, derived, is_admin=is_admin)
        self.logger.info("user_registered", user_id=user.id, is_admin=is_admin)
        return user

    def login(self, username: str, password: str) -> IssuedToken:
        """Check credentials and issue a fresh token pair."""
        record = self.store.get_login_record(username)
        if record is None:
            # Spend the same effort as a real check so unknown names are not cheaper
            try:
                verify_derived_key(self._dummy_derived_key(), password)
            except DerivedKeyError:
                pass
            self.logger.warning("login_unknown_user")
            raise AuthenticationError("invalid username or password")

        user_id, derived = record
        try:
            valid = verify_derived_key(derived, password)
        except DerivedKeyError as exc:
            self.logger.error("derived_key_verify_failed", user_id=user_id, error=str(exc))
            raise ServerError("could not verify derived key") from exc
        if not valid:
            self.logger.warning("login_password_mismatch", user_id=user_id)
            raise AuthenticationError("invalid username or password")

        self._maybe_rehash(user_id, derived, password)
        self.store.touch_user(user_id)
        issued = self.tokens.create_auth_token(user_id)
        self.logger.info("login_succeeded", user_id=user_id, token_id=str(issued.id))
        return issued

    def _maybe_rehash(self, user_id: int, derived: str, password: str) -> None:
        if not needs_rehash(derived, self.params):
            return
        try:
            self.store.update_user_password(user_id, create_derived_key(password, self.params))
        except Exception as exc:
            self.logger.warning("derived_key_rehash_failed", user_id=user_id, error=str(exc))
            return
        self.logger.info("derived_key_rehashed", user_id=user_id)

    def lookup_token(self, token_id: uuid.UUID) -> Token:
        """Fetch a token record, treating a missing record as revoked."""
        try:
            token = self.tokens.get(token_id)
        except ServiceError:
            raise
        except Exception as exc:
            self.logger.error("token_lookup_failed", token_id=str(token_id), error=str(exc))
            raise ServerError("could not look up token") from exc
        if token is None:
            raise AuthenticationError("token has been revoked")
        return token

    def authorize(self, token_string: str) -> AuthContext:
        """Resolve an access token to the user it was issued to."""
        token_id = self.tokens.verify_auth_token(token_string, access=True)
        token = self.lookup_token(token_id)
        try:
            user = self.store.get_user(token.user_id)
        except Exception as exc:
            self.logger.error("auth_user_lookup_failed", user_id=token.user_id, error=str(exc))
            raise ServerError("could not look up user") from exc
        if user is None:
            self.logger.error("auth_user_missing", user_id=token.user_id)
            raise ServerError("token references a missing user")
        return AuthContext(user=user, token=token)

    def logout(self, token_string: str, *, revoke_all: bool = False) -> int:
        """Revoke the token behind ``token_string`` or every token of its user.

        Returns the number of records deleted.
        """
        token_id = self.tokens.verify_auth_token(token_string, access=True)
        token = self.lookup_token(token_id)
        if revoke_all:
            return self.tokens.revoke_all(token.user_id)
        return 1 if self.tokens.revoke(token.id) else 0

    def refresh(self, refresh_token: str) -> IssuedToken:
        """Exchange a refresh token for a new pair, consuming the old record.

        The new pair is stored before the old record is deleted, so a store
        failure leaves the presented refresh token usable.
        """
        token_id = self.tokens.verify_auth_token(refresh_token, refresh=True)
        old = self.lookup_token(token_id)
        issued = self.tokens.create_auth_token(old.user_id)
        # Only the caller that actually deletes the old record keeps its new pair
        if not self.tokens.revoke(old.id):
            self.tokens.revoke(issued.id)
            raise AuthenticationError("token has been revoked")
        self.logger.info(
            "token_refreshed", user_id=old.user_id, old_token_id=str(old.id), token_id=str(issued.id)
        )
        return issued


__all__ = ["AuthContext", "AuthService", "UserStore", "require_admin"]
