"""Master-admin account management routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel, EmailStr, Field

from ..domain.account import Account, Role
from ..domain.contracts import CreateAccountInput
from ..domain.errors import AccessError
from ..domain.roles import RoleGuard
from ..domain.service import AccountService
from .deps import get_role_guard, get_service, require_master
from .routes import AccountResponse, http_error_from_access_error

router = APIRouter(prefix="/v1/admin/users", tags=["admin"])


class CreateUserRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=8)
    role: Role


class ChangeRoleRequest(BaseModel):
    role: Role


class UserListResponse(BaseModel):
    items: list[AccountResponse]


@router.get("/admins", response_model=UserListResponse)
def list_admins(
    _: Account = Depends(require_master),
    service: AccountService = Depends(get_service),
) -> UserListResponse:
    return UserListResponse(items=[AccountResponse.from_domain(a) for a in service.list_admins()])


@router.get("/members", response_model=UserListResponse)
def list_members(
    _: Account = Depends(require_master),
    service: AccountService = Depends(get_service),
) -> UserListResponse:
    return UserListResponse(items=[AccountResponse.from_domain(a) for a in service.list_members()])


@router.post("", response_model=AccountResponse, status_code=status.HTTP_201_CREATED)
def create_user(
    payload: CreateUserRequest,
    acting: Account = Depends(require_master),
    service: AccountService = Depends(get_service),
) -> AccountResponse:
    """Create an account with the requested role; it still has to enroll in MFA."""
    try:
        account = service.create_account(
            acting,
            CreateAccountInput(
                name=payload.name,
                email=payload.email,
                password=payload.password,
                role=payload.role,
            ),
        )
    except AccessError as exc:
        raise http_error_from_access_error(exc) from exc
    return AccountResponse.from_domain(account)


@router.patch("/{account_id}/role", response_model=AccountResponse)
def change_role(
    account_id: str,
    payload: ChangeRoleRequest,
    acting: Account = Depends(require_master),
    guard: RoleGuard = Depends(get_role_guard),
) -> AccountResponse:
    try:
        account = guard.change_role(acting, account_id, payload.role)
    except AccessError as exc:
        raise http_error_from_access_error(exc) from exc
    return AccountResponse.from_domain(account)


@router.delete("/{account_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_user(
    account_id: str,
    acting: Account = Depends(require_master),
    guard: RoleGuard = Depends(get_role_guard),
) -> Response:
    try:
        guard.delete_account(acting, account_id)
    except AccessError as exc:
        raise http_error_from_access_error(exc) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)
