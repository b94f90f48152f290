"""Per-account MFA enrollment lifecycle.

States move strictly forward::

    Unregistered --begin--> PendingConfirmation --confirm--> Confirmed

``begin`` is idempotent while confirmation is pending: it re-displays the
stored secret instead of issuing a new one, since the user may already have
scanned it. ``Confirmed`` is terminal.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Callable

from .account import Account, Confirmed, EnrollmentState, PendingConfirmation, Unregistered
from .contracts import AuditEvent, EnrollmentTicket
from .errors import AccountNotFound, InvalidCode, InvalidState
from ..security.recovery import generate_recovery_codes
from ..security.totp import TotpEngine
from ..security.vault import SecretVault

if TYPE_CHECKING:
    from ..repository import AccountRepository

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EnrollmentStateMachine:
    """Owns every write to an account's MFA secret, recovery codes and confirmation time."""

    def __init__(
        self,
        repository: "AccountRepository",
        vault: SecretVault,
        totp: TotpEngine,
        *,
        issuer: str,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self._repository = repository
        self._vault = vault
        self._totp = totp
        self._issuer = issuer
        self._clock = clock

    def begin(self, account_id: str) -> EnrollmentTicket:
        """Issue (or re-display) the account's TOTP secret.

        Raises
        ------
        InvalidState
            The account already confirmed enrollment.
        CorruptSecret
            The stored secret of a pending enrollment cannot be opened.
        """
        account = self._load(account_id)
        state = account.enrollment

        if isinstance(state, Confirmed):
            raise InvalidState("two factor authentication is already confirmed")
        if isinstance(state, PendingConfirmation):
            return self._replay(account, state)

        secret = self._totp.generate_secret()
        codes = generate_recovery_codes()
        stored, created = self._repository.start_enrollment(
            account.account_id,
            secret=self._vault.seal(secret),
            recovery_codes=self._vault.seal(json.dumps(codes)),
            audit=AuditEvent(account.account_id, "mfa.enrollment_started", account.account_id),
        )
        if not created:
            # another request issued the secret first; show theirs
            if isinstance(stored, PendingConfirmation):
                return self._replay(account, stored)
            if isinstance(stored, Confirmed):
                raise InvalidState("two factor authentication is already confirmed")
            raise AccountNotFound()

        logger.info("mfa enrollment started for account %s", account.account_id)
        return EnrollmentTicket(
            provisioning_uri=self._totp.provisioning_uri(self._issuer, account.email, secret),
            secret=secret,
            recovery_codes=codes,
            replayed=False,
        )

    def confirm(self, account_id: str, code: str, now: datetime | None = None) -> datetime:
        """Verify ``code`` against the pending secret and mark enrollment confirmed.

        Returns the confirmation timestamp.

        Raises
        ------
        InvalidState
            Enrollment was never started or is already confirmed.
        InvalidCode
            The code does not match; nothing was changed and the caller may retry.
        CorruptSecret
            The stored secret cannot be opened.
        """
        account = self._load(account_id)
        state = account.enrollment
        if isinstance(state, Unregistered):
            raise InvalidState("two factor authentication setup has not been started")
        if isinstance(state, Confirmed):
            raise InvalidState("two factor authentication is already confirmed")

        moment = now or self._clock()
        secret = self._vault.open(state.secret)
        if not self._totp.verify(secret, code, moment):
            logger.info("rejected mfa confirmation code for account %s", account.account_id)
            raise InvalidCode()

        audit = AuditEvent(
            account.account_id,
            "mfa.confirmed",
            account.account_id,
            {"confirmed_at": moment.isoformat()},
        )
        if not self._repository.confirm_enrollment(account.account_id, moment, audit=audit):
            raise InvalidState("two factor authentication is already confirmed")

        logger.info("mfa enrollment confirmed for account %s", account.account_id)
        return moment

    def open_recovery_codes(self, state: EnrollmentState) -> list[str]:
        """Return the plaintext recovery codes held by a pending or confirmed state."""
        if isinstance(state, Unregistered):
            return []
        return list(json.loads(self._vault.open(state.recovery_codes)))

    def _replay(self, account: Account, state: PendingConfirmation) -> EnrollmentTicket:
        secret = self._vault.open(state.secret)
        return EnrollmentTicket(
            provisioning_uri=self._totp.provisioning_uri(self._issuer, account.email, secret),
            secret=secret,
            replayed=True,
        )

    def _load(self, account_id: str) -> Account:
        account = self._repository.get_account(account_id)
        if account is None:
            raise AccountNotFound()
        return account
