from __future__ import annotations

import json
import threading
import time
import uuid
from contextlib import contextmanager
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Iterable, Iterator

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from blog_access.api import admin, routes
from blog_access.api.middleware import EnrollmentGateMiddleware
from blog_access.domain.account import (
    Account,
    Confirmed,
    EnrollmentState,
    PendingConfirmation,
    Role,
    Unregistered,
)
from blog_access.domain.contracts import AuditEvent
from blog_access.domain.enrollment import EnrollmentStateMachine
from blog_access.domain.errors import DuplicateEmail
from blog_access.domain.roles import RoleGuard
from blog_access.domain.service import AccountService
from blog_access.security.passwords import hash_password
from blog_access.security.rate_limiter import SlidingWindowRateLimiter
from blog_access.security.tokens import issue_access_token
from blog_access.security.totp import TotpEngine
from blog_access.security.vault import SecretVault


@dataclass
class FakeAuditLogRecord:
    account_id: str | None
    event_type: str
    actor: str | None
    metadata: dict
    created_at: datetime


class FakeRoleScope:
    def __init__(self, repository: "FakeRepository") -> None:
        self._repository = repository

    def get_account(self, account_id: str) -> Account | None:
        return self._repository.get_account(account_id)

    def count_masters(self) -> int:
        count = sum(1 for a in self._repository.accounts.values() if a.role is Role.master)
        # widen the gap between reading the count and acting on it
        time.sleep(self._repository.count_delay)
        return count

    def update_role(self, account_id: str, role: Role) -> Account:
        with self._repository.lock:
            account = self._repository.accounts[account_id]
            account.role = role
            return replace(account)

    def delete_account(self, account_id: str) -> None:
        with self._repository.lock:
            self._repository.accounts.pop(account_id, None)

    def write_audit_event(self, event: AuditEvent) -> None:
        with self._repository.lock:
            self._repository.append_audit(event)


class FakeRepository:
    """In-memory repository mimicking the Postgres-backed behaviours."""

    def __init__(self, count_delay: float = 0.0) -> None:
        self.accounts: dict[str, Account] = {}
        self.audit_log: list[FakeAuditLogRecord] = []
        self.lock = threading.Lock()
        self.master_partition_lock = threading.Lock()
        self.count_delay = count_delay
        # set to an exception instance to make every audit insert fail
        self.audit_failure: Exception | None = None

    def add(
        self,
        *,
        email: str,
        role: Role = Role.member,
        enrollment: EnrollmentState | None = None,
        password: str = "correct-horse",
        name: str = "Test User",
    ) -> Account:
        account = Account(
            account_id=str(uuid.uuid4()),
            name=name,
            email=email.lower(),
            role=role,
            created_at=datetime.now(timezone.utc),
            enrollment=enrollment or Unregistered(),
            password_hash=hash_password(password, rounds=4),
        )
        with self.lock:
            self.accounts[account.account_id] = account
        return replace(account)

    def create_account(self, *, name: str, email: str, password_hash: str, role: Role) -> Account:
        with self.lock:
            if any(a.email == email.lower() for a in self.accounts.values()):
                raise DuplicateEmail()
            account = Account(
                account_id=str(uuid.uuid4()),
                name=name,
                email=email.lower(),
                role=role,
                created_at=datetime.now(timezone.utc),
                password_hash=password_hash,
            )
            self.accounts[account.account_id] = account
            return replace(account)

    def get_account(self, account_id: str) -> Account | None:
        with self.lock:
            account = self.accounts.get(account_id)
            return replace(account) if account else None

    def get_account_by_email(self, email: str) -> Account | None:
        with self.lock:
            for account in self.accounts.values():
                if account.email == email.lower():
                    return replace(account)
        return None

    def list_accounts(self, roles: Iterable[Role]) -> list[Account]:
        wanted = set(roles)
        with self.lock:
            found = [replace(a) for a in self.accounts.values() if a.role in wanted]
        return sorted(found, key=lambda a: a.created_at, reverse=True)

    def start_enrollment(
        self, account_id: str, *, secret: bytes, recovery_codes: bytes, audit: AuditEvent | None = None
    ):
        with self.lock:
            account = self.accounts.get(account_id)
            if account is None:
                return Unregistered(), False
            if not isinstance(account.enrollment, Unregistered):
                return account.enrollment, False
            if audit is not None:
                self.append_audit(audit)
            account.enrollment = PendingConfirmation(secret=secret, recovery_codes=recovery_codes)
            return account.enrollment, True

    def confirm_enrollment(
        self, account_id: str, confirmed_at: datetime, *, audit: AuditEvent | None = None
    ) -> bool:
        with self.lock:
            account = self.accounts.get(account_id)
            if account is None or not isinstance(account.enrollment, PendingConfirmation):
                return False
            if audit is not None:
                self.append_audit(audit)
            state = account.enrollment
            account.enrollment = Confirmed(
                confirmed_at=confirmed_at,
                secret=state.secret,
                recovery_codes=state.recovery_codes,
            )
            return True

    @contextmanager
    def role_mutation(self) -> Iterator[FakeRoleScope]:
        with self.master_partition_lock:
            with self.lock:
                accounts = {key: replace(value) for key, value in self.accounts.items()}
                audit_size = len(self.audit_log)
            try:
                yield FakeRoleScope(self)
            except BaseException:
                # roll back like the database transaction would
                with self.lock:
                    self.accounts = accounts
                    del self.audit_log[audit_size:]
                raise

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict | None = None,
    ) -> None:
        with self.lock:
            self.append_audit(AuditEvent(account_id, event_type, actor, metadata or {}))

    def append_audit(self, event: AuditEvent) -> None:
        """Record ``event``; callers hold ``lock``."""
        if self.audit_failure is not None:
            raise self.audit_failure
        self.audit_log.append(
            FakeAuditLogRecord(
                account_id=event.account_id,
                event_type=event.event_type,
                actor=event.actor,
                metadata=event.metadata,
                created_at=datetime.now(timezone.utc),
            )
        )

    def events(self, event_type: str) -> list[FakeAuditLogRecord]:
        return [record for record in self.audit_log if record.event_type == event_type]


@pytest.fixture
def vault() -> SecretVault:
    return SecretVault(SecretVault.generate_key())


@pytest.fixture
def totp() -> TotpEngine:
    return TotpEngine()


@pytest.fixture
def repository() -> FakeRepository:
    return FakeRepository()


@pytest.fixture
def enrollment(repository, vault, totp) -> EnrollmentStateMachine:
    return EnrollmentStateMachine(repository, vault, totp, issuer="Blog")


@pytest.fixture
def service(repository, enrollment) -> AccountService:
    return AccountService(repository, enrollment, password_rounds=4)


@pytest.fixture
def confirmed_state(vault):
    """Factory for a sealed, already-confirmed enrollment."""

    def _build(secret: str = "JBSWY3DPEHPK3PXPJBSWY3DPEHPK3PXP") -> Confirmed:
        return Confirmed(
            confirmed_at=datetime.now(timezone.utc),
            secret=vault.seal(secret),
            recovery_codes=vault.seal(json.dumps([])),
        )

    return _build


@pytest.fixture
def auth_headers():
    """Return a helper building a bearer header that acts as the given account."""

    def _headers(account: Account) -> dict[str, str]:
        token, _ = issue_access_token(subject=account.account_id, role=account.role.value)
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest.fixture
def api_client(repository, enrollment, service):
    """Provide a FastAPI test client wired like the service, with isolated state."""
    app = FastAPI()
    app.add_middleware(EnrollmentGateMiddleware)
    app.include_router(routes.router)
    app.include_router(admin.router)
    app.state.account_service = service
    app.state.enrollment = enrollment
    app.state.role_guard = RoleGuard(repository)

    original_limiter = routes.rate_limiter
    routes.rate_limiter = SlidingWindowRateLimiter(max_requests=3, window_seconds=60)

    with TestClient(app) as client:
        yield client

    routes.rate_limiter = original_limiter


@pytest.fixture
def slow_repository() -> FakeRepository:
    """Repository whose master count read is slow enough to expose check-then-act races."""
    return FakeRepository(count_delay=0.05)
