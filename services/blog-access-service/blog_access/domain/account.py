from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Union


class Role(str, Enum):
    """Account roles; only `master` may manage other accounts."""

    master = "master"
    admin = "admin"
    member = "member"


@dataclass(frozen=True, slots=True)
class Unregistered:
    """No MFA material has been issued yet."""

    name = "unregistered"


@dataclass(frozen=True, slots=True)
class PendingConfirmation:
    """A sealed secret and recovery-code set exist but no code was confirmed."""

    secret: bytes
    recovery_codes: bytes
    name = "pending_confirmation"


@dataclass(frozen=True, slots=True)
class Confirmed:
    """Enrollment finished at ``confirmed_at``; terminal."""

    confirmed_at: datetime
    secret: bytes
    recovery_codes: bytes
    name = "confirmed"


EnrollmentState = Union[Unregistered, PendingConfirmation, Confirmed]


@dataclass(slots=True)
class Account:
    """Aggregate root for a blog user identity."""

    account_id: str
    name: str
    email: str
    role: Role
    created_at: datetime
    enrollment: EnrollmentState = field(default_factory=Unregistered)
    password_hash: str = field(default="", repr=False)

    @property
    def is_master(self) -> bool:
        return self.role is Role.master

    @property
    def mfa_confirmed(self) -> bool:
        return isinstance(self.enrollment, Confirmed)
