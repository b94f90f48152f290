"""HTTP route definitions for registration, login and MFA enrollment."""

from __future__ import annotations

import logging
import math
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status
from pydantic import BaseModel, EmailStr, Field

from ..config import get_settings
from ..domain.account import Account, Role
from ..domain.contracts import CreateAccountInput, EnrollmentTicket
from ..domain.enrollment import EnrollmentStateMachine
from ..domain.errors import AccessError
from ..domain.gate import ENROLLMENT_CONFIRM_ENDPOINT, ENROLLMENT_SETUP_ENDPOINT
from ..domain.service import AccountService
from ..security.qr import render_qr_svg
from ..security.rate_limiter import build_rate_limiter
from .deps import get_current_account, get_enrollment, get_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/v1")


class AccountResponse(BaseModel):
    """Serialised representation of an `Account` aggregate."""

    account_id: str
    name: str
    email: EmailStr
    role: Role
    created_at: str
    mfa_state: str
    mfa_confirmed: bool

    @classmethod
    def from_domain(cls, account: Account) -> "AccountResponse":
        """Build a response model from the domain aggregate."""
        return cls(
            account_id=account.account_id,
            name=account.name,
            email=account.email,
            role=account.role,
            created_at=account.created_at.isoformat(),
            mfa_state=account.enrollment.name,
            mfa_confirmed=account.mfa_confirmed,
        )


class RegisterRequest(BaseModel):
    """Payload accepted when a visitor signs up."""

    name: str = Field(..., min_length=1, max_length=255)
    email: EmailStr
    password: str = Field(..., min_length=8)


class EnrollmentResponse(BaseModel):
    """Secret material shown while enrollment awaits confirmation.

    ``recovery_codes`` is only filled the first time; re-displays omit them.
    """

    provisioning_uri: str
    secret: str
    qr_code_svg: str
    recovery_codes: list[str]
    replayed: bool

    @classmethod
    def from_ticket(cls, ticket: EnrollmentTicket) -> "EnrollmentResponse":
        return cls(
            provisioning_uri=ticket.provisioning_uri,
            secret=ticket.secret,
            qr_code_svg=render_qr_svg(ticket.provisioning_uri),
            recovery_codes=ticket.recovery_codes,
            replayed=ticket.replayed,
        )


class RegisterResponse(BaseModel):
    account: AccountResponse
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    enrollment: EnrollmentResponse


class TokenRequest(BaseModel):
    """JSON body used to exchange credentials for a JWT."""

    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    """Token issuance response containing the bearer token and metadata."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int
    mfa_confirmed: bool


class ConfirmEnrollmentRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=16)


class ConfirmEnrollmentResponse(BaseModel):
    mfa_confirmed_at: datetime
    status: str = "Two-factor authentication has been enabled successfully!"


settings = get_settings()
rate_limiter = build_rate_limiter(settings)


def _enforce_rate_limit(key: str) -> None:
    retry_after = rate_limiter.hit(key)
    if retry_after:
        logger.info("rate limited %s for %.1fs", key, retry_after)
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="rate limited",
            headers={"Retry-After": str(math.ceil(retry_after))},
        )


def http_error_from_access_error(exc: AccessError) -> HTTPException:
    """Translate a domain failure into an HTTP error carrying its message verbatim."""
    return HTTPException(status_code=exc.status_code, detail=str(exc))


@router.post("/register", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED)
def register(
    request: Request,
    payload: RegisterRequest,
    service: AccountService = Depends(get_service),
) -> RegisterResponse:
    """Create a member account and start its mandatory MFA enrollment."""
    client_host = request.client.host if request.client else "unknown"
    _enforce_rate_limit(f"register:{client_host}")
    try:
        registration = service.register(
            CreateAccountInput(name=payload.name, email=payload.email, password=payload.password)
        )
    except AccessError as exc:
        raise http_error_from_access_error(exc) from exc
    return RegisterResponse(
        account=AccountResponse.from_domain(registration.account),
        access_token=registration.access_token,
        expires_in=registration.expires_in,
        enrollment=EnrollmentResponse.from_ticket(registration.ticket),
    )


@router.post("/token", response_model=TokenResponse)
def issue_token(
    payload: TokenRequest,
    service: AccountService = Depends(get_service),
) -> TokenResponse:
    """Exchange email and password for a signed access token."""
    _enforce_rate_limit(f"token:{payload.email.lower()}")
    try:
        account, access_token, expires_in = service.authenticate(payload.email, payload.password)
    except AccessError as exc:
        raise http_error_from_access_error(exc) from exc
    return TokenResponse(
        access_token=access_token,
        expires_in=expires_in,
        mfa_confirmed=account.mfa_confirmed,
    )


@router.get("/mfa/setup", response_model=EnrollmentResponse, name=ENROLLMENT_SETUP_ENDPOINT)
def setup_two_factor(
    account: Account = Depends(get_current_account),
    enrollment: EnrollmentStateMachine = Depends(get_enrollment),
) -> EnrollmentResponse:
    """Begin enrollment, or re-display the secret still awaiting confirmation."""
    try:
        ticket = enrollment.begin(account.account_id)
    except AccessError as exc:
        raise http_error_from_access_error(exc) from exc
    return EnrollmentResponse.from_ticket(ticket)


@router.post("/mfa/confirm", response_model=ConfirmEnrollmentResponse, name=ENROLLMENT_CONFIRM_ENDPOINT)
def confirm_two_factor(
    payload: ConfirmEnrollmentRequest,
    account: Account = Depends(get_current_account),
    enrollment: EnrollmentStateMachine = Depends(get_enrollment),
) -> ConfirmEnrollmentResponse:
    """Confirm enrollment with a code from the authenticator app."""
    rate_key = f"mfa-confirm:{account.account_id}"
    _enforce_rate_limit(rate_key)
    try:
        confirmed_at = enrollment.confirm(account.account_id, payload.code)
    except AccessError as exc:
        raise http_error_from_access_error(exc) from exc
    rate_limiter.reset(rate_key)
    return ConfirmEnrollmentResponse(mfa_confirmed_at=confirmed_at)


@router.get("/me", response_model=AccountResponse)
def read_current_account(account: Account = Depends(get_current_account)) -> AccountResponse:
    """Return the authenticated account; only reachable once MFA is confirmed."""
    return AccountResponse.from_domain(account)
