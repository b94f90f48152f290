"""HTTP middleware applying the MFA enrollment gate to every request."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import Request
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import RedirectResponse, Response

from ..domain.gate import ENROLLMENT_ENDPOINTS, ENROLLMENT_SETUP_ENDPOINT, GateDecision, evaluate_gate
from ..security.tokens import bearer_subject

logger = logging.getLogger(__name__)


def _enrollment_endpoint(request: Request) -> str | None:
    """Return the enrollment route name addressed by the request path, if any.

    Routing has not run yet when middleware executes, so the path is compared
    against the reversed URL of each enrollment route.
    """
    path = request.url.path
    for name in ENROLLMENT_ENDPOINTS:
        if path == request.app.url_path_for(name):
            return name
    return None


class EnrollmentGateMiddleware(BaseHTTPMiddleware):
    """Redirect authenticated, unenrolled accounts to MFA setup.

    The account is resolved from the bearer token; requests without a valid
    token pass through and are left to the route dependencies.
    """

    def __init__(self, app: Any, *, redirect_status: int = 303) -> None:
        super().__init__(app)
        self.redirect_status = redirect_status

    async def dispatch(self, request: Request, call_next: Any) -> Response:
        subject = bearer_subject(request.headers.get("authorization"))
        account = None
        if subject:
            service = request.app.state.account_service
            account = await run_in_threadpool(service.get_account, subject)

        decision = evaluate_gate(
            account is not None,
            account.enrollment if account is not None else None,
            _enrollment_endpoint(request),
        )
        if decision is GateDecision.redirect_to_enrollment:
            logger.info("redirecting account %s from %s to mfa setup", account.account_id, request.url.path)
            return RedirectResponse(
                url=str(request.app.url_path_for(ENROLLMENT_SETUP_ENDPOINT)),
                status_code=self.redirect_status,
            )
        return await call_next(request)
