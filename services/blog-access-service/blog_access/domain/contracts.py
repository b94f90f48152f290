"""Domain-level request and result contracts shared by multiple layers."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .account import Account, Role


@dataclass(slots=True)
class CreateAccountInput:
    """Validated inputs required to create an account."""

    name: str
    email: str
    password: str
    role: Role = Role.member


@dataclass(slots=True)
class EnrollmentTicket:
    """What a user is shown when enrollment begins or is re-displayed.

    ``recovery_codes`` is only populated on the call that generated them;
    a replayed ticket carries the same secret and an empty code list.
    """

    provisioning_uri: str
    secret: str
    recovery_codes: list[str] = field(default_factory=list)
    replayed: bool = False


@dataclass(slots=True)
class Registration:
    """Result of registering: the new account, its token and enrollment ticket."""

    account: Account
    access_token: str
    expires_in: int
    ticket: EnrollmentTicket


@dataclass(slots=True)
class AuditEvent:
    """Audit trail entry committed together with the change it records."""

    account_id: str | None
    event_type: str
    actor: str | None
    metadata: dict[str, Any] = field(default_factory=dict)
