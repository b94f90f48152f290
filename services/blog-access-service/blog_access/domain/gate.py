"""Request-level enforcement of mandatory MFA enrollment."""

from __future__ import annotations

from enum import Enum

from .account import Confirmed, EnrollmentState

# Route names that stay reachable while enrollment is incomplete.
ENROLLMENT_SETUP_ENDPOINT = "mfa.setup"
ENROLLMENT_CONFIRM_ENDPOINT = "mfa.confirm"
ENROLLMENT_ENDPOINTS = frozenset({ENROLLMENT_SETUP_ENDPOINT, ENROLLMENT_CONFIRM_ENDPOINT})


class GateDecision(str, Enum):
    allow = "allow"
    redirect_to_enrollment = "redirect_to_enrollment"


def evaluate_gate(
    is_authenticated: bool,
    state: EnrollmentState | None,
    endpoint: str | None,
) -> GateDecision:
    """Decide whether a request may proceed.

    Unauthenticated requests are left to the authentication layer. An
    authenticated account that has not confirmed enrollment may only reach the
    enrollment endpoints; everything else is redirected to setup.
    """
    if not is_authenticated:
        return GateDecision.allow
    if isinstance(state, Confirmed):
        return GateDecision.allow
    if endpoint in ENROLLMENT_ENDPOINTS:
        return GateDecision.allow
    return GateDecision.redirect_to_enrollment
