from __future__ import annotations

from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Query, Request, Response
from pydantic import BaseModel

from credence.api.schemas import (
    AuthResponse,
    AuthTokensResponse,
    CreateUserRequest,
    Envelope,
    ForgotPasswordRequest,
    LoginRequest,
    RefreshTokenRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UpdateUserRequest,
    UserListResponse,
    UserResponse,
)
from credence.logging import get_logger
from credence.service.authorization import Principal, extract_bearer
from credence.service.errors import NotFoundError, raise_for_failure
from credence.service.results import ErrorKind, Failure
from credence.service.roles import GET_USERS, MANAGE_USERS
from credence.service.runtime import get_runtime
from credence.service.users import ensure_user_id
from credence.storage.models import Role

logger = get_logger(__name__)

router = APIRouter(prefix="/v1")


def _ok(data: Any) -> Envelope:
    if isinstance(data, BaseModel):
        data = data.model_dump(mode="json", by_alias=True)
    return Envelope(status="ok", data=data)


def _no_content() -> Response:
    return Response(status_code=204)


def require(*permissions: str, allow_self_access: bool = False):
    """Dependency factory gating a route on a bearer access token.

    With ``allow_self_access`` the ``userId`` path parameter may stand in for
    the permissions when it names the caller.
    """

    async def _dependency(
        request: Request, authorization: Optional[str] = Header(None)
    ) -> Principal:
        runtime = get_runtime()
        self_id = request.path_params.get("userId") if allow_self_access else None
        result = await runtime.authorization.authorize(
            extract_bearer(authorization),
            permissions,
            self_id,
            allow_self_access=allow_self_access,
        )
        if isinstance(result, Failure):
            if result.kind == ErrorKind.INSUFFICIENT_PERMISSIONS and self_id is not None:
                # malformed ids are a 400, not a 403
                ensure_user_id(self_id)
            raise_for_failure(result)
        return result

    return _dependency


# auth


@router.post("/auth/register", response_model=Envelope, status_code=201, tags=["auth"])
async def register(body: RegisterRequest):
    runtime = get_runtime()
    user, tokens = await runtime.auth.register(
        name=body.name, email=body.email, password=body.password
    )
    return _ok(
        AuthResponse(
            user=UserResponse.from_user(user),
            tokens=AuthTokensResponse.from_tokens(tokens),
        )
    )


@router.post("/auth/login", response_model=Envelope, tags=["auth"])
async def login(body: LoginRequest):
    runtime = get_runtime()
    result = await runtime.auth.login(email=body.email, password=body.password)
    if isinstance(result, Failure):
        raise_for_failure(result)
    user, tokens = result
    return _ok(
        AuthResponse(
            user=UserResponse.from_user(user),
            tokens=AuthTokensResponse.from_tokens(tokens),
        )
    )


@router.post("/auth/logout", status_code=204, response_class=Response, tags=["auth"])
async def logout(body: RefreshTokenRequest):
    runtime = get_runtime()
    result = await runtime.auth.logout(body.refresh_token)
    if isinstance(result, Failure):
        # logout reports an unknown token plainly
        raise NotFoundError(result.message or "Not found")
    return _no_content()


@router.post("/auth/refresh-tokens", response_model=Envelope, tags=["auth"])
async def refresh_tokens(body: RefreshTokenRequest):
    runtime = get_runtime()
    result = await runtime.auth.refresh_auth(body.refresh_token)
    if isinstance(result, Failure):
        raise_for_failure(result)
    return _ok(AuthTokensResponse.from_tokens(result))


@router.post(
    "/auth/forgot-password", status_code=204, response_class=Response, tags=["auth"]
)
async def forgot_password(body: ForgotPasswordRequest):
    runtime = get_runtime()
    await runtime.auth.forgot_password(body.email)
    return _no_content()


@router.post(
    "/auth/reset-password", status_code=204, response_class=Response, tags=["auth"]
)
async def reset_password(
    body: ResetPasswordRequest,
    token: str = Query(..., min_length=1, max_length=2048),
):
    runtime = get_runtime()
    result = await runtime.auth.reset_password(token, body.password)
    if isinstance(result, Failure):
        raise_for_failure(result)
    return _no_content()


@router.post(
    "/auth/send-verification-email",
    status_code=204,
    response_class=Response,
    tags=["auth"],
)
async def send_verification_email(principal: Principal = Depends(require())):
    runtime = get_runtime()
    await runtime.auth.send_verification_email(principal.user)
    return _no_content()


@router.post(
    "/auth/verify-email", status_code=204, response_class=Response, tags=["auth"]
)
async def verify_email(token: str = Query(..., min_length=1, max_length=2048)):
    runtime = get_runtime()
    result = await runtime.auth.verify_email(token)
    if isinstance(result, Failure):
        raise_for_failure(result)
    return _no_content()


# users


@router.post("/users", response_model=Envelope, status_code=201, tags=["users"])
async def create_user(
    body: CreateUserRequest, principal: Principal = Depends(require(MANAGE_USERS))
):
    runtime = get_runtime()
    user = await runtime.users.create_user(
        name=body.name, email=body.email, password=body.password, role=body.role
    )
    logger.info("admin_created_user", actor_id=principal.id, user_id=user.id)
    return _ok(UserResponse.from_user(user))


@router.get("/users", response_model=Envelope, tags=["users"])
async def list_users(
    name: Optional[str] = Query(None, min_length=1, max_length=100),
    role: Optional[Role] = Query(None),
    sort_by: Optional[str] = Query(None, alias="sortBy", max_length=32),
    limit: Optional[int] = Query(None, ge=1, le=100),
    page: Optional[int] = Query(None, ge=1, le=1000),
    principal: Principal = Depends(require(GET_USERS)),
):
    runtime = get_runtime()
    result = await runtime.users.query_users(
        name=name, role=role, sort_by=sort_by, limit=limit, page=page
    )
    return _ok(UserListResponse.from_result(result))


@router.get("/users/{userId}", response_model=Envelope, tags=["users"])
async def get_user(
    userId: str,
    principal: Principal = Depends(require(GET_USERS, allow_self_access=True)),
):
    runtime = get_runtime()
    user = await runtime.users.get_user(userId)
    return _ok(UserResponse.from_user(user))


@router.patch("/users/{userId}", response_model=Envelope, tags=["users"])
async def update_user(
    userId: str,
    body: UpdateUserRequest,
    principal: Principal = Depends(require(MANAGE_USERS, allow_self_access=True)),
):
    runtime = get_runtime()
    user = await runtime.users.update_user(
        userId, body.model_dump(exclude_none=True)
    )
    return _ok(UserResponse.from_user(user))


@router.delete(
    "/users/{userId}", status_code=204, response_class=Response, tags=["users"]
)
async def delete_user(
    userId: str,
    principal: Principal = Depends(require(MANAGE_USERS, allow_self_access=True)),
):
    runtime = get_runtime()
    await runtime.users.delete_user(userId)
    return _no_content()
