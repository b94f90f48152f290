"""FastAPI dependencies resolving services and the acting account."""

from __future__ import annotations

from fastapi import Depends, Header, HTTPException, Request, status

from ..domain.account import Account
from ..domain.enrollment import EnrollmentStateMachine
from ..domain.roles import RoleGuard
from ..domain.service import AccountService
from ..security.tokens import bearer_subject


def get_service(request: Request) -> AccountService:
    """Resolve the `AccountService` stored on the FastAPI application state."""
    service: AccountService = request.app.state.account_service
    return service


def get_enrollment(request: Request) -> EnrollmentStateMachine:
    machine: EnrollmentStateMachine = request.app.state.enrollment
    return machine


def get_role_guard(request: Request) -> RoleGuard:
    guard: RoleGuard = request.app.state.role_guard
    return guard


def get_current_account(
    authorization: str | None = Header(default=None),
    service: AccountService = Depends(get_service),
) -> Account:
    """Return the account the bearer token acts as, or answer 401."""
    subject = bearer_subject(authorization)
    account = service.get_account(subject) if subject else None
    if account is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return account


def require_master(account: Account = Depends(get_current_account)) -> Account:
    """Allow only master admins through account-management routes."""
    if not account.is_master:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Access denied. Master admin privileges required.",
        )
    return account
