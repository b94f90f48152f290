"""Database repository for blog accounts, MFA enrollment and role changes."""

from __future__ import annotations

import uuid
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Iterable, Iterator

from psycopg import Cursor
from psycopg.errors import UniqueViolation
from psycopg.rows import tuple_row
from psycopg.types.json import Json
from psycopg_pool import ConnectionPool

from .domain.account import Account, Confirmed, EnrollmentState, PendingConfirmation, Role, Unregistered
from .domain.contracts import AuditEvent
from .domain.errors import DuplicateEmail

_ACCOUNT_COLUMNS = """
    account_id, name, email, role, created_at,
    mfa_secret, recovery_codes, mfa_confirmed_at, password_hash
"""

# Serialises every role mutation against the set of master accounts.
_MASTER_PARTITION_LOCK = "accounts.role.master"


def _map_record(row: tuple) -> Account:
    """Convert a raw database tuple into the domain ``Account`` dataclass."""
    return Account(
        account_id=str(row[0]),
        name=row[1],
        email=row[2],
        role=Role(row[3]),
        created_at=row[4],
        enrollment=_enrollment_from_columns(row[5], row[6], row[7]),
        password_hash=row[8] or "",
    )


def _insert_audit(cur: Cursor, event: AuditEvent) -> None:
    cur.execute(
        """
        INSERT INTO access_audit_log (account_id, event_type, actor, metadata)
        VALUES (%s, %s, %s, %s)
        """,
        (event.account_id, event.event_type, event.actor, Json(event.metadata)),
    )


def _enrollment_from_columns(
    secret: bytes | None,
    recovery_codes: bytes | None,
    confirmed_at: datetime | None,
) -> EnrollmentState:
    """Rebuild the tagged enrollment state from its nullable column encoding."""
    if secret is None:
        return Unregistered()
    if confirmed_at is None:
        return PendingConfirmation(secret=bytes(secret), recovery_codes=bytes(recovery_codes or b""))
    return Confirmed(
        confirmed_at=confirmed_at,
        secret=bytes(secret),
        recovery_codes=bytes(recovery_codes or b""),
    )


class RoleMutationScope:
    """Transaction-bound view handed to the role guard while the master lock is held."""

    def __init__(self, cursor: Cursor) -> None:
        self._cur = cursor

    def get_account(self, account_id: str) -> Account | None:
        self._cur.execute(
            f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE account_id = %s FOR UPDATE",
            (account_id,),
        )
        row = self._cur.fetchone()
        return _map_record(row) if row else None

    def count_masters(self) -> int:
        self._cur.execute("SELECT COUNT(*) FROM accounts WHERE role = %s", (Role.master.value,))
        return int(self._cur.fetchone()[0])

    def update_role(self, account_id: str, role: Role) -> Account:
        self._cur.execute(
            f"""
            UPDATE accounts SET role = %s, updated_at = NOW()
            WHERE account_id = %s
            RETURNING {_ACCOUNT_COLUMNS}
            """,
            (role.value, account_id),
        )
        return _map_record(self._cur.fetchone())

    def delete_account(self, account_id: str) -> None:
        self._cur.execute("DELETE FROM accounts WHERE account_id = %s", (account_id,))

    def write_audit_event(self, event: AuditEvent) -> None:
        _insert_audit(self._cur, event)


class AccountRepository:
    """Postgres-backed account persistence.

    Enrollment state is stored as three nullable columns (``mfa_secret``,
    ``recovery_codes``, ``mfa_confirmed_at``) and only ever surfaces as an
    ``EnrollmentState`` variant.
    """

    def __init__(self, pool: ConnectionPool) -> None:
        """Store the connection pool used for all database interactions."""
        self._pool = pool

    def create_account(self, *, name: str, email: str, password_hash: str, role: Role) -> Account:
        """Insert a new, unenrolled account; raise ``DuplicateEmail`` on conflict."""
        account_id = str(uuid.uuid4())
        now = datetime.now(timezone.utc)
        try:
            with self._pool.connection() as conn:
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute(
                        f"""
                        INSERT INTO accounts (account_id, name, email, password_hash, role, created_at, updated_at)
                        VALUES (%s, %s, %s, %s, %s, %s, %s)
                        RETURNING {_ACCOUNT_COLUMNS}
                        """,
                        (account_id, name, email.lower(), password_hash, role.value, now, now),
                    )
                    record = cur.fetchone()
                    conn.commit()
        except UniqueViolation as exc:
            raise DuplicateEmail() from exc
        return _map_record(record)

    def get_account(self, account_id: str) -> Account | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE account_id = %s",
                    (account_id,),
                )
                row = cur.fetchone()
        return _map_record(row) if row else None

    def get_account_by_email(self, email: str) -> Account | None:
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"SELECT {_ACCOUNT_COLUMNS} FROM accounts WHERE email = %s",
                    (email.lower(),),
                )
                row = cur.fetchone()
        return _map_record(row) if row else None

    def list_accounts(self, roles: Iterable[Role]) -> list[Account]:
        """Return accounts holding any of ``roles``, newest first."""
        role_values = [role.value for role in roles]
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    f"""
                    SELECT {_ACCOUNT_COLUMNS} FROM accounts
                    WHERE role = ANY(%s)
                    ORDER BY created_at DESC
                    """,
                    (role_values,),
                )
                return [_map_record(row) for row in cur.fetchall()]

    def start_enrollment(
        self,
        account_id: str,
        *,
        secret: bytes,
        recovery_codes: bytes,
        audit: AuditEvent | None = None,
    ) -> tuple[EnrollmentState, bool]:
        """Store sealed MFA material unless some is already present.

        Returns the persisted enrollment state and whether this call wrote it.
        A concurrent duplicate call loses the conditional update and receives
        the winner's state instead. ``audit`` is recorded in the same transaction
        when this call wins, so the material and its audit row commit together.
        """
        with self._pool.connection() as conn:
            with conn.cursor(row_factory=tuple_row) as cur:
                cur.execute(
                    """
                    UPDATE accounts
                    SET mfa_secret = %s, recovery_codes = %s, updated_at = NOW()
                    WHERE account_id = %s AND mfa_secret IS NULL
                    RETURNING mfa_secret, recovery_codes, mfa_confirmed_at
                    """,
                    (secret, recovery_codes, account_id),
                )
                row = cur.fetchone()
                created = row is not None
                if created and audit is not None:
                    _insert_audit(cur, audit)
                if not created:
                    cur.execute(
                        "SELECT mfa_secret, recovery_codes, mfa_confirmed_at FROM accounts WHERE account_id = %s",
                        (account_id,),
                    )
                    row = cur.fetchone()
                conn.commit()
        if row is None:
            return Unregistered(), False
        return _enrollment_from_columns(row[0], row[1], row[2]), created

    def confirm_enrollment(
        self, account_id: str, confirmed_at: datetime, *, audit: AuditEvent | None = None
    ) -> bool:
        """Set ``mfa_confirmed_at`` once; return ``False`` if it was already set."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    UPDATE accounts
                    SET mfa_confirmed_at = %s, updated_at = NOW()
                    WHERE account_id = %s AND mfa_secret IS NOT NULL AND mfa_confirmed_at IS NULL
                    """,
                    (confirmed_at, account_id),
                )
                updated = cur.rowcount == 1
                if updated and audit is not None:
                    _insert_audit(cur, audit)
                conn.commit()
        return updated

    @contextmanager
    def role_mutation(self) -> Iterator[RoleMutationScope]:
        """Open one transaction holding the master-partition lock.

        The lock is transaction scoped, so the count read and the mutation
        that follows it commit (or roll back) as a single unit.
        """
        with self._pool.connection() as conn:
            with conn.transaction():
                with conn.cursor(row_factory=tuple_row) as cur:
                    cur.execute("SELECT pg_advisory_xact_lock(hashtext(%s))", (_MASTER_PARTITION_LOCK,))
                    yield RoleMutationScope(cur)

    def write_audit_event(
        self,
        *,
        account_id: str | None,
        event_type: str,
        actor: str | None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        """Record an audit trail entry capturing access-control activity."""
        with self._pool.connection() as conn:
            with conn.cursor() as cur:
                _insert_audit(cur, AuditEvent(account_id, event_type, actor, metadata or {}))
                conn.commit()
