"""Account service orchestrating registration, login, listings and auditing."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from .account import Account, Role
from .contracts import CreateAccountInput, Registration
from .enrollment import EnrollmentStateMachine
from .errors import InvalidCredentials
from ..security.passwords import hash_password, verify_password
from ..security.tokens import issue_access_token

if TYPE_CHECKING:
    from ..repository import AccountRepository

logger = logging.getLogger(__name__)


class AccountService:
    """Account workflows backed by Postgres storage."""

    def __init__(
        self,
        repository: "AccountRepository",
        enrollment: EnrollmentStateMachine,
        *,
        password_rounds: int = 12,
    ) -> None:
        """Store dependencies used to orchestrate persistence and token issuance."""
        self._repository = repository
        self._enrollment = enrollment
        self._password_rounds = password_rounds

    def register(self, payload: CreateAccountInput) -> Registration:
        """Create a member account, sign it in and immediately begin MFA enrollment.

        New accounts are never left without an issued secret: the caller gets the
        provisioning URI and recovery codes in the same response, and the access
        gate keeps every other route closed until the code is confirmed.
        """
        account = self._create(payload, actor=None)
        self._repository.write_audit_event(
            account_id=account.account_id,
            event_type="account.registered",
            actor=account.account_id,
            metadata={"email": account.email},
        )
        access_token, expires_in = issue_access_token(
            subject=account.account_id, role=account.role.value
        )
        ticket = self._enrollment.begin(account.account_id)
        # reflect the enrollment state begin() just persisted
        account = self._repository.get_account(account.account_id) or account
        return Registration(
            account=account,
            access_token=access_token,
            expires_in=expires_in,
            ticket=ticket,
        )

    def create_account(self, acting: Account, payload: CreateAccountInput) -> Account:
        """Create an account with an explicit role on behalf of a master admin."""
        account = self._create(payload, actor=acting.account_id)
        self._repository.write_audit_event(
            account_id=account.account_id,
            event_type="account.created",
            actor=acting.account_id,
            metadata={"email": account.email, "role": account.role.value},
        )
        return account

    def authenticate(self, email: str, password: str) -> tuple[Account, str, int]:
        """Check credentials and return the account with a fresh access token."""
        account = self._repository.get_account_by_email(email)
        if account is None or not verify_password(password, account.password_hash):
            logger.info("failed login for %s", email.lower())
            raise InvalidCredentials()
        access_token, expires_in = issue_access_token(
            subject=account.account_id, role=account.role.value
        )
        return account, access_token, expires_in

    def get_account(self, account_id: str) -> Account | None:
        return self._repository.get_account(account_id)

    def list_admins(self) -> list[Account]:
        return self._repository.list_accounts([Role.master, Role.admin])

    def list_members(self) -> list[Account]:
        return self._repository.list_accounts([Role.member])

    def _create(self, payload: CreateAccountInput, actor: str | None) -> Account:
        account = self._repository.create_account(
            name=payload.name,
            email=payload.email,
            password_hash=hash_password(payload.password, rounds=self._password_rounds),
            role=payload.role,
        )
        logger.info("account %s created with role %s by %s", account.account_id, account.role.value, actor or "self")
        return account
