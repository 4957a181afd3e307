"""Unit tests for AuthService without the HTTP layer."""

from datetime import datetime, timedelta, timezone

import pytest

from todos.service.auth import AuthContext, AuthService, require_admin
from todos.service.errors import AuthenticationError, ServerError
from todos.service.passwords import DerivedKeyParams, parse_derived_key
from todos.service.tokens import InvalidTokenError, TokenConfig, TokenService
from todos.storage.errors import ConstraintViolation
from todos.storage.memory import MemoryStore

CHEAP = DerivedKeyParams(time_cost=1, memory_cost=1024, parallelism=1)
PASSWORD = "JanePassword123!"


@pytest.fixture
def store():
    return MemoryStore()


@pytest.fixture
def config():
    return TokenConfig(secret_key="unit-test-secret-key-that-is-long-enough")


@pytest.fixture
def auth(store, config):
    return AuthService(store, TokenService(store, config), params=CHEAP)


@pytest.fixture
def refreshable_auth(store, config):
    """Tokens are issued far enough in the past that refresh is already allowed."""
    offset = config.access_ttl - timedelta(seconds=30)
    tokens = TokenService(store, config, clock=lambda: datetime.now(timezone.utc) - offset)
    return AuthService(store, tokens, params=CHEAP)


@pytest.fixture
def jane(auth):
    return auth.register("jane", "jane@example.com", PASSWORD)


class TestRegister:
    def test_stores_derived_key_not_password(self, auth, store, jane):
        stored = store.users[jane.id].password
        assert stored != PASSWORD
        assert stored.startswith("$argon2id$v=19$m=1024,t=1,p=1$")
        assert not jane.is_admin

    def test_admin_flag(self, auth):
        admin = auth.register("root", "root@example.com", PASSWORD, is_admin=True)
        assert admin.is_admin

    def test_duplicate_username_propagates_constraint(self, auth, jane):
        with pytest.raises(ConstraintViolation):
            auth.register("jane", "other@example.com", PASSWORD)

    def test_duplicate_email_propagates_constraint(self, auth, jane):
        with pytest.raises(ConstraintViolation):
            auth.register("jane2", "jane@example.com", PASSWORD)


class TestLogin:
    def test_issues_persisted_token(self, auth, store, jane):
        issued = auth.login("jane", PASSWORD)
        assert issued.user_id == jane.id
        assert store.get_token(issued.id) == issued.record
        assert store.users[jane.id].last_seen is not None

    def test_each_login_gets_its_own_record(self, auth, store, jane):
        first = auth.login("jane", PASSWORD)
        second = auth.login("jane", PASSWORD)
        assert first.id != second.id
        assert len(store.tokens) == 2

    def test_wrong_password(self, auth, store, jane):
        with pytest.raises(AuthenticationError) as excinfo:
            auth.login("jane", "WrongPassword123!")
        assert excinfo.value.status_code == 401
        assert store.tokens == {}

    def test_unknown_user_is_indistinguishable(self, auth, jane):
        with pytest.raises(AuthenticationError) as unknown:
            auth.login("nobody", PASSWORD)
        with pytest.raises(AuthenticationError) as wrong:
            auth.login("jane", "WrongPassword123!")
        assert unknown.value.message == wrong.value.message

    def test_corrupt_derived_key_is_a_server_error(self, auth, store, jane):
        store.update_user_password(jane.id, "not-a-derived-key")
        with pytest.raises(ServerError) as excinfo:
            auth.login("jane", PASSWORD)
        assert excinfo.value.status_code == 500

    def test_rehashes_when_parameters_change(self, store, config, jane):
        stronger = DerivedKeyParams(time_cost=2, memory_cost=1024, parallelism=1)
        upgraded = AuthService(store, TokenService(store, config), params=stronger)
        upgraded.login("jane", PASSWORD)

        parsed = parse_derived_key(store.users[jane.id].password)
        assert parsed.time_cost == 2
        # The new key still verifies the same password
        upgraded.login("jane", PASSWORD)


class TestAuthorize:
    def test_resolves_user_and_token(self, auth, jane):
        issued = auth.login("jane", PASSWORD)
        ctx = auth.authorize(issued.access_token)
        assert isinstance(ctx, AuthContext)
        assert ctx.user_id == jane.id
        assert ctx.token == issued.record
        assert ctx.user.username == "jane"

    def test_refresh_token_cannot_authorize(self, refreshable_auth, jane):
        issued = refreshable_auth.login("jane", PASSWORD)
        with pytest.raises(InvalidTokenError):
            refreshable_auth.authorize(issued.refresh_token)

    def test_revoked_token_is_rejected(self, auth, jane):
        issued = auth.login("jane", PASSWORD)
        auth.tokens.revoke(issued.id)
        with pytest.raises(AuthenticationError):
            auth.authorize(issued.access_token)

    def test_missing_user_is_a_server_error(self, auth, store, jane):
        issued = auth.login("jane", PASSWORD)
        store.users.pop(jane.id)
        with pytest.raises(ServerError):
            auth.authorize(issued.access_token)

    def test_store_failure_is_a_server_error(self, auth, store, jane, monkeypatch):
        issued = auth.login("jane", PASSWORD)

        def broken(_token_id):
            raise RuntimeError("database went away")

        monkeypatch.setattr(store, "get_token", broken)
        with pytest.raises(ServerError):
            auth.authorize(issued.access_token)


class TestLogout:
    def test_revokes_only_the_presented_token(self, auth, store, jane):
        first = auth.login("jane", PASSWORD)
        second = auth.login("jane", PASSWORD)
        assert auth.logout(first.access_token) == 1
        assert store.get_token(first.id) is None
        assert store.get_token(second.id) is not None

    def test_revoke_all(self, auth, store, jane):
        other = auth.register("john", "john@example.com", PASSWORD)
        kept = auth.login("john", PASSWORD)
        presented = auth.login("jane", PASSWORD)
        auth.login("jane", PASSWORD)
        auth.login("jane", PASSWORD)

        assert auth.logout(presented.access_token, revoke_all=True) == 3
        assert [t.user_id for t in store.tokens.values()] == [other.id]
        assert store.get_token(kept.id) is not None

    def test_second_logout_is_rejected(self, auth, jane):
        issued = auth.login("jane", PASSWORD)
        auth.logout(issued.access_token)
        with pytest.raises(AuthenticationError):
            auth.logout(issued.access_token)

    def test_refresh_token_cannot_logout(self, refreshable_auth, store, jane):
        issued = refreshable_auth.login("jane", PASSWORD)
        with pytest.raises(InvalidTokenError):
            refreshable_auth.logout(issued.refresh_token)
        assert store.get_token(issued.id) is not None


class TestRefresh:
    def test_consumes_old_record_and_issues_new_pair(self, refreshable_auth, store, jane):
        old = refreshable_auth.login("jane", PASSWORD)
        new = refreshable_auth.refresh(old.refresh_token)

        assert new.id != old.id
        assert new.user_id == jane.id
        assert store.get_token(old.id) is None
        assert store.get_token(new.id) == new.record

    def test_refresh_token_is_single_use(self, refreshable_auth, jane):
        old = refreshable_auth.login("jane", PASSWORD)
        refreshable_auth.refresh(old.refresh_token)
        with pytest.raises(AuthenticationError):
            refreshable_auth.refresh(old.refresh_token)

    def test_old_access_token_stops_working(self, refreshable_auth, jane):
        old = refreshable_auth.login("jane", PASSWORD)
        refreshable_auth.refresh(old.refresh_token)
        with pytest.raises(AuthenticationError):
            refreshable_auth.authorize(old.access_token)

    def test_refresh_before_overlap_window(self, auth, jane):
        issued = auth.login("jane", PASSWORD)
        with pytest.raises(InvalidTokenError):
            auth.refresh(issued.refresh_token)

    def test_access_token_is_not_a_refresh_token(self, refreshable_auth, jane):
        issued = refreshable_auth.login("jane", PASSWORD)
        with pytest.raises(InvalidTokenError):
            refreshable_auth.refresh(issued.access_token)

    def test_lost_delete_race_is_rejected(self, refreshable_auth, store, jane, monkeypatch):
        issued = refreshable_auth.login("jane", PASSWORD)
        delete_token = store.delete_token
        monkeypatch.setattr(
            store,
            "delete_token",
            lambda token_id: False if token_id == issued.id else delete_token(token_id),
        )
        with pytest.raises(AuthenticationError):
            refreshable_auth.refresh(issued.refresh_token)
        # The pair minted for the losing caller is withdrawn again
        assert list(store.tokens) == [issued.id]

    def test_store_failure_keeps_old_record(self, refreshable_auth, store, jane, monkeypatch):
        issued = refreshable_auth.login("jane", PASSWORD)

        def fail(_token):
            raise RuntimeError("database unavailable")

        monkeypatch.setattr(store, "create_token", fail)
        with pytest.raises(RuntimeError):
            refreshable_auth.refresh(issued.refresh_token)
        assert store.get_token(issued.id) is not None

        monkeypatch.undo()
        assert refreshable_auth.refresh(issued.refresh_token).user_id == jane.id


class TestRequireAdmin:
    def test_admin_passes(self, auth):
        admin = auth.register("root", "root@example.com", PASSWORD, is_admin=True)
        ctx = auth.authorize(auth.login("root", PASSWORD).access_token)
        assert require_admin(ctx) is ctx
        assert ctx.user_id == admin.id

    def test_non_admin_is_unauthorized(self, auth, jane):
        ctx = auth.authorize(auth.login("jane", PASSWORD).access_token)
        with pytest.raises(AuthenticationError) as excinfo:
            require_admin(ctx)
        assert excinfo.value.status_code == 401

    def test_missing_context_is_a_server_error(self):
        with pytest.raises(ServerError):
            require_admin(None)
