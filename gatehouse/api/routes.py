from __future__ import annotations

from typing import List

from fastapi import APIRouter, Depends, Path, Request, status

from gatehouse.api.deps import client_ip, get_principal
from gatehouse.api.schemas import (
    CategoryListResponse,
    CategoryRequest,
    CategoryResponse,
    EmailRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    RoleUpdateRequest,
    SessionResponse,
    UserProfile,
    UserSummary,
    VerifyRequest,
)
from gatehouse.service.access import enforce_roles
from gatehouse.service.runtime import get_runtime
from gatehouse.service.tokens import Principal
from gatehouse.storage.models import Role

router = APIRouter()

# Allowed roles are spelled out per route.
CATEGORY_CREATE_ROLES = frozenset({Role.ADMIN})
CATEGORY_UPDATE_ROLES = frozenset({Role.ADMIN, Role.SUPER_ADMIN})
CATEGORY_DELETE_ROLES = frozenset({Role.ADMIN})
ROLE_ADMIN_ROLES = frozenset({Role.SUPER_ADMIN})


# auth ----------------------------------------------------------------------


@router.post("/auth/send-otp", response_model=MessageResponse, tags=["auth"])
async def send_otp(body: EmailRequest):
    """Email a fresh verification code to an existing account.

    Raises:
        404: If no user has this email
    """
    runtime = get_runtime()
    await runtime.auth.send_otp(body.email)
    return MessageResponse(message=f"OTP sent to {body.email}!")


@router.post(
    "/auth/register",
    response_model=RegisterResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["auth"],
)
async def register(body: RegisterRequest):
    """Create a pending account and email its verification code.

    Raises:
        400: If the payload is invalid or the email is already registered
        403: If an elevated role is requested while self-assignment is disabled
    """
    runtime = get_runtime()
    user = await runtime.auth.register(body.name, body.email, body.password, body.role)
    return RegisterResponse(
        message="User created successfully",
        user=UserSummary(name=user.name, email=user.email, role=user.role, status=user.status),
    )


@router.post("/auth/verify", response_model=MessageResponse, tags=["auth"])
async def verify(body: VerifyRequest):
    """Activate an account with the emailed code.

    Raises:
        400: If the code is wrong or expired
        404: If no user has this email
    """
    runtime = get_runtime()
    await runtime.auth.verify(body.email, body.otp)
    return MessageResponse(message="User verified!")


@router.post("/auth/login", response_model=LoginResponse, tags=["auth"])
async def login(body: LoginRequest, request: Request):
    """Check credentials, record the login address and mint tokens.

    Raises:
        400: If the account is not verified or the password is wrong
        404: If no user has this email
    """
    runtime = get_runtime()
    tokens = await runtime.auth.login(
        body.email,
        body.password,
        ip=client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return LoginResponse(
        message="You are logged in",
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
    )


@router.get("/auth/me", response_model=UserProfile, tags=["auth"])
async def me(request: Request, principal: Principal = Depends(get_principal)):
    """Return the caller's account.

    Raises:
        400: If the caller never logged in from this address
        401: If the token is missing or invalid
        404: If the account no longer exists
    """
    runtime = get_runtime()
    user = await runtime.auth.get_profile(principal, ip=client_ip(request))
    return UserProfile.from_user(user)


@router.get("/auth/my-sessions", response_model=List[SessionResponse], tags=["auth"])
async def my_sessions(principal: Principal = Depends(get_principal)):
    """List every address the caller has logged in from."""
    runtime = get_runtime()
    sessions = await runtime.auth.list_sessions(principal)
    return [SessionResponse.from_session(s) for s in sessions]


# admin ---------------------------------------------------------------------


@router.patch("/admin/users/{user_id}/role", response_model=UserProfile, tags=["admin"])
async def update_user_role(
    body: RoleUpdateRequest,
    user_id: str = Path(..., max_length=64),
    principal: Principal = Depends(get_principal),
):
    """Change another account's role.

    Raises:
        403: Unless the caller is a super admin
        404: If the user does not exist
    """
    enforce_roles(principal, ROLE_ADMIN_ROLES)
    runtime = get_runtime()
    user = await runtime.auth.update_role(principal, user_id, body.role)
    return UserProfile.from_user(user)


# categories ----------------------------------------------------------------


@router.get("/categories", response_model=CategoryListResponse, tags=["categories"])
async def list_categories():
    runtime = get_runtime()
    categories = await runtime.catalog.list()
    return CategoryListResponse(items=[CategoryResponse.from_category(c) for c in categories])


@router.get("/categories/{category_id}", response_model=CategoryResponse, tags=["categories"])
async def get_category(category_id: str = Path(..., max_length=64)):
    runtime = get_runtime()
    category = await runtime.catalog.get(category_id)
    return CategoryResponse.from_category(category)


@router.post(
    "/categories",
    response_model=CategoryResponse,
    status_code=status.HTTP_201_CREATED,
    tags=["categories"],
)
async def create_category(body: CategoryRequest, principal: Principal = Depends(get_principal)):
    """Create a category.

    Raises:
        400: If the name is invalid or taken
        403: Unless the caller is an admin
    """
    enforce_roles(principal, CATEGORY_CREATE_ROLES)
    runtime = get_runtime()
    category = await runtime.catalog.create(body.name)
    return CategoryResponse.from_category(category)


@router.patch("/categories/{category_id}", response_model=CategoryResponse, tags=["categories"])
async def rename_category(
    body: CategoryRequest,
    category_id: str = Path(..., max_length=64),
    principal: Principal = Depends(get_principal),
):
    enforce_roles(principal, CATEGORY_UPDATE_ROLES)
    runtime = get_runtime()
    category = await runtime.catalog.rename(category_id, body.name)
    return CategoryResponse.from_category(category)


@router.delete("/categories/{category_id}", response_model=MessageResponse, tags=["categories"])
async def delete_category(
    category_id: str = Path(..., max_length=64),
    principal: Principal = Depends(get_principal),
):
    enforce_roles(principal, CATEGORY_DELETE_ROLES)
    runtime = get_runtime()
    await runtime.catalog.delete(category_id)
    return MessageResponse(message="Category deleted")
