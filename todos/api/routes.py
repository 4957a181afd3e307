from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi import Response as HTTPResponse
from fastapi.responses import JSONResponse

from todos import __version__
from todos.api.deps import get_admin_user, get_user
from todos.api.schemas import (
    ChecklistCreatedResponse,
    ChecklistCreateRequest,
    ChecklistDetailResponse,
    ChecklistListResponse,
    ChecklistOut,
    ChecklistUpdateRequest,
    LoginRequest,
    LoginResponse,
    LogoutRequest,
    OverviewResponse,
    RefreshRequest,
    RegisterRequest,
    RegisterResponse,
    Response,
    StatusResponse,
    TaskCreatedResponse,
    TaskCreateRequest,
    TaskDetailResponse,
    TaskListResponse,
    TaskOut,
    TaskUpdateRequest,
    UserOut,
)
from todos.logging import get_logger
from todos.service.auth import AuthContext
from todos.service.errors import BadRequestError, NotFoundError
from todos.service.runtime import get_runtime
from todos.service.tokens import (
    ACCESS_COOKIE,
    REFRESH_COOKIE,
    IssuedToken,
    TokenNotFoundError,
    find_token,
)

logger = get_logger(__name__)

router = APIRouter()


def _set_token_cookies(response: HTTPResponse, issued: IssuedToken) -> None:
    runtime = get_runtime()
    settings = runtime.settings
    config = runtime.tokens.config
    for name, value, ttl in (
        (ACCESS_COOKIE, issued.access_token, config.access_ttl),
        (REFRESH_COOKIE, issued.refresh_token, config.refresh_ttl),
    ):
        response.set_cookie(
            name,
            value,
            max_age=int(ttl.total_seconds()),
            path="/",
            domain=settings.cookie_domain,
            secure=settings.use_tls,
            httponly=True,
        )


# authentication
@router.post(
    "/register",
    status_code=201,
    response_model=RegisterResponse,
    response_model_exclude_none=True,
)
def register(body: RegisterRequest, admin: AuthContext = Depends(get_admin_user)):
    runtime = get_runtime()
    user = runtime.auth.register(
        body.username, body.email, body.password, is_admin=body.is_admin
    )
    logger.info("register_complete", user_id=user.id, registered_by=admin.user_id)
    return RegisterResponse(success=True, username=user.username)


@router.post("/login", response_model=LoginResponse, response_model_exclude_none=True)
def login(body: LoginRequest, response: HTTPResponse):
    runtime = get_runtime()
    issued = runtime.auth.login(body.username, body.password)
    if not body.no_cookie:
        _set_token_cookies(response, issued)
    return LoginResponse(
        success=True,
        access_token=issued.access_token,
        refresh_token=issued.refresh_token,
    )


@router.post("/logout", response_model=Response, response_model_exclude_none=True)
def logout(request: Request, body: Optional[LogoutRequest] = None):
    runtime = get_runtime()
    try:
        token_string = find_token(request)
    except TokenNotFoundError as exc:
        raise BadRequestError(exc.message) from exc
    revoke_all = bool(body and body.revoke_all)
    count = runtime.auth.logout(token_string, revoke_all=revoke_all)
    logger.info("logout_complete", revoke_all=revoke_all, revoked=count)
    return Response(success=True)


@router.post("/refresh", response_model=LoginResponse, response_model_exclude_none=True)
def refresh(body: RefreshRequest, response: HTTPResponse):
    runtime = get_runtime()
    issued = runtime.auth.refresh(body.refresh_token)
    if not body.no_cookie:
        _set_token_cookies(response, issued)
    return LoginResponse(
        success=True,
        access_token=issued.access_token,
        refresh_token=issued.refresh_token,
    )


# status and overview
@router.get("/status", response_model=StatusResponse)
def status():
    runtime = get_runtime()
    healthy = runtime.healthy
    body = StatusResponse(
        status="ok" if healthy else "unavailable",
        timestamp=datetime.now(timezone.utc),
        version=__version__,
    )
    if not healthy:
        return JSONResponse(status_code=503, content=body.model_dump(mode="json"))
    return body


@router.get("/", response_model=OverviewResponse, response_model_exclude_none=True)
def overview(ctx: AuthContext = Depends(get_user)):
    store = get_runtime().store
    return OverviewResponse(
        success=True,
        user=UserOut.model_validate(ctx.user),
        tasks=store.count_tasks(ctx.user_id),
        checklists=store.count_checklists(ctx.user_id),
    )


# tasks
@router.get("/tasks", response_model=TaskListResponse, response_model_exclude_none=True)
def list_tasks(checklist: Optional[int] = None, ctx: AuthContext = Depends(get_user)):
    store = get_runtime().store
    tasks = store.list_tasks(ctx.user_id, checklist_id=checklist)
    return TaskListResponse(tasks=[TaskOut.model_validate(t) for t in tasks])


@router.post(
    "/tasks",
    status_code=201,
    response_model=TaskCreatedResponse,
    response_model_exclude_none=True,
)
def create_task(body: TaskCreateRequest, ctx: AuthContext = Depends(get_user)):
    store = get_runtime().store
    task = store.create_task(
        ctx.user_id,
        body.title,
        body.details,
        completed=body.completed,
        archived=body.archived,
        checklist_id=body.checklist,
        deadline=body.deadline,
    )
    return TaskCreatedResponse(task=task.id)


@router.get("/tasks/{task_id}", response_model=TaskDetailResponse, response_model_exclude_none=True)
def get_task(task_id: int, ctx: AuthContext = Depends(get_user)):
    task = get_runtime().store.get_task(task_id, ctx.user_id)
    if task is None:
        raise NotFoundError("task not found")
    return TaskDetailResponse(task=TaskOut.model_validate(task))


@router.put("/tasks/{task_id}", response_model=Response, response_model_exclude_none=True)
def update_task(task_id: int, body: TaskUpdateRequest, ctx: AuthContext = Depends(get_user)):
    task = get_runtime().store.update_task(task_id, ctx.user_id, body.to_fields())
    if task is None:
        raise NotFoundError("task not found")
    return Response(success=True)


@router.delete("/tasks/{task_id}", response_model=Response, response_model_exclude_none=True)
def delete_task(task_id: int, ctx: AuthContext = Depends(get_user)):
    if not get_runtime().store.delete_task(task_id, ctx.user_id):
        raise NotFoundError("task not found")
    return Response(success=True)


# checklists
@router.get(
    "/checklists", response_model=ChecklistListResponse, response_model_exclude_none=True
)
def list_checklists(ctx: AuthContext = Depends(get_user)):
    checklists = get_runtime().store.list_checklists(ctx.user_id)
    return ChecklistListResponse(
        checklists=[ChecklistOut.model_validate(c) for c in checklists]
    )


@router.post(
    "/checklists",
    status_code=201,
    response_model=ChecklistCreatedResponse,
    response_model_exclude_none=True,
)
def create_checklist(body: ChecklistCreateRequest, ctx: AuthContext = Depends(get_user)):
    checklist = get_runtime().store.create_checklist(
        ctx.user_id,
        body.title,
        body.details,
        completed=body.completed,
        archived=body.archived,
    )
    return ChecklistCreatedResponse(checklist=checklist.id)


@router.get(
    "/checklists/{checklist_id}",
    response_model=ChecklistDetailResponse,
    response_model_exclude_none=True,
)
def get_checklist(checklist_id: int, ctx: AuthContext = Depends(get_user)):
    checklist = get_runtime().store.get_checklist(checklist_id, ctx.user_id)
    if checklist is None:
        raise NotFoundError("checklist not found")
    return ChecklistDetailResponse(checklist=ChecklistOut.model_validate(checklist))


@router.put(
    "/checklists/{checklist_id}", response_model=Response, response_model_exclude_none=True
)
def update_checklist(
    checklist_id: int, body: ChecklistUpdateRequest, ctx: AuthContext = Depends(get_user)
):
    checklist = get_runtime().store.update_checklist(checklist_id, ctx.user_id, body.to_fields())
    if checklist is None:
        raise NotFoundError("checklist not found")
    return Response(success=True)


@router.delete(
    "/checklists/{checklist_id}", response_model=Response, response_model_exclude_none=True
)
def delete_checklist(checklist_id: int, ctx: AuthContext = Depends(get_user)):
    if not get_runtime().store.delete_checklist(checklist_id, ctx.user_id):
        raise NotFoundError("checklist not found")
    return Response(success=True)
