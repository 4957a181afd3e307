from __future__ import annotations

from fastapi import Depends, Request

from todos.service.auth import AuthContext, require_admin
from todos.service.runtime import get_runtime
from todos.service.tokens import find_token


def get_user(request: Request) -> AuthContext:
    """Authorize the request's access token and attach the caller to it."""
    runtime = get_runtime()
    ctx = runtime.auth.authorize(find_token(request))
    request.state.auth = ctx
    return ctx


def get_admin_user(ctx: AuthContext = Depends(get_user)) -> AuthContext:
    return require_admin(ctx)
